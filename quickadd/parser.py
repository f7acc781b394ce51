"""Quick-add parser: pulls due date, priority, project, labels and recurrence
out of a single Russian/English task title.

The parser is an ordered pipeline of small extractor stages. Each stage takes
a frozen ``_ParseState`` (the not-yet-consumed text plus everything extracted
so far) and returns a new one; a stage that matches erases its match from the
remaining text so later stages can't see it again. Order matters:

    priority -> project -> labels -> explicit time -> time-of-day marker
    -> recurrence -> absolute date -> time fallbacks

and finally the leftover text becomes the cleaned title.

Everything runs in UTC against an injected ``now``; nothing here reads the
local timezone or performs I/O, so ``parse`` is safe to call from any thread.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from types import MappingProxyType
import logging
import re
from typing import Callable, Optional, Tuple

from .models import ParsedTaskPatch, RepeatMode
from .utils import (
    at_time,
    ceil_to_hour,
    end_of_day,
    ensure_utc,
    nearest_day_of_month,
    next_weekday,
    now_utc,
    start_of_day,
)

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800

# --- Keyword dictionaries ---
# Keys are lowercase. Spelling variants get their own key instead of any
# stemming, so every accepted form is listed here.

PRIORITY_KEYWORDS = MappingProxyType({
    'срочно': 5,
    'urgent': 5,
    'важно': 4,
    'important': 4,
})

# datetime.weekday() numbering: Monday=0 .. Sunday=6
WEEKDAYS = MappingProxyType({
    'понедельник': 0, 'monday': 0, 'mon': 0,
    'вторник': 1, 'tuesday': 1, 'tue': 1,
    'среда': 2, 'среду': 2, 'wednesday': 2, 'wed': 2,
    'четверг': 3, 'thursday': 3, 'thu': 3,
    'пятница': 4, 'пятницу': 4, 'friday': 4, 'fri': 4,
    'суббота': 5, 'субботу': 5, 'saturday': 5, 'sat': 5,
    'воскресенье': 6, 'sunday': 6, 'sun': 6,
})

TIME_MARKERS = MappingProxyType({
    'утром': (8, 0),
    'morning': (8, 0),
    'днем': (13, 0),
    'днём': (13, 0),
    'afternoon': (13, 0),
    'вечером': (20, 0),
    'evening': (20, 0),
    'ночью': (23, 0),
    'night': (23, 0),
})

# "second day of each week" always means Tuesday
SECOND_DAY_OF_WEEK = 1


def _alternation(words) -> str:
    # longest first so e.g. 'среду' is tried before a shorter prefix form
    return '|'.join(re.escape(w) for w in sorted(words, key=len, reverse=True))


_WEEKDAY_ALT = _alternation(WEEKDAYS)
_FLAGS = re.IGNORECASE

# --- Matchers ---

_PRIORITY_NUM_RE = re.compile(r'!([1-5])\b')
_PRIORITY_WORD_RE = re.compile(r'!(' + _alternation(PRIORITY_KEYWORDS) + r')\b', _FLAGS)

# token = run of anything but whitespace and the marker characters !+*"
_PROJECT_QUOTED_RE = re.compile(r'\+"([^"]+)"')
_PROJECT_SIMPLE_RE = re.compile(r'\+([^\s!+*"]+)')
_LABEL_QUOTED_RE = re.compile(r'\*"([^"]+)"')
_LABEL_SIMPLE_RE = re.compile(r'\*([^\s!+*"]+)')

_HOUR = r'([01]?\d|2[0-3])'
_TIME_PREPOSITION = r'\b(?:во|в|at)\s+'
_COLON_TIME_RE = re.compile(r'(?:' + _TIME_PREPOSITION + r')?\b' + _HOUR + r':([0-5]\d)(?!\d)', _FLAGS)
_HOUR_ONLY_TIME_RE = re.compile(_TIME_PREPOSITION + _HOUR + r'\b(?![:\d])', _FLAGS)

_TIME_MARKER_RE = re.compile(
    r'(?:\b(?:in\s+the|at)\s+)?\b(' + _alternation(TIME_MARKERS) + r')\b', _FLAGS)

_DAILY_RE = re.compile(r'\b(?:каждый\s+день|every\s+day|daily)\b', _FLAGS)
# "second day of every week" is its own idiom, handled below
_WEEKLY_RE = re.compile(r'\b(?:каждую\s+неделю|(?P<of>of\s+)?every\s+week|weekly)\b', _FLAGS)
_MONTHLY_RE = re.compile(r'\b(?:каждый\s+месяц|every\s+month|monthly)\b', _FLAGS)
_HOURLY_RE = re.compile(r'\b(?:каждый\s+час|every\s+hour|hourly)\b', _FLAGS)
_EVERY_N_HOURS_RE = re.compile(
    r'\b(?:каждые\s+([1-9]\d*)\s+час(?:а|ов)?|every\s+([1-9]\d*)\s+hours?)\b', _FLAGS)

_SECOND_DAY_OF_WEEK_RE = re.compile(
    r'\b(?:второй\s+день\s+каждой\s+недели|second\s+day\s+of\s+(?:each|every)\s+week)\b', _FLAGS)
_EVERY_WEEKDAY_RE = re.compile(
    r'\b(?:каждый|каждую|каждое|every)\s+(' + _WEEKDAY_ALT + r')\b', _FLAGS)
_DAY_OF_MONTH = r'(0?[1-9]|[12]\d|3[01])'
_EVERY_DAY_OF_MONTH_RE = re.compile(
    r'\b(?:каждое\s+' + _DAY_OF_MONTH + r'(?:-?е|-го)?\s+числ[оа]'
    r'|every\s+' + _DAY_OF_MONTH + r'(?:st|nd|rd|th))\b', _FLAGS)

_TODAY_RE = re.compile(r'\b(?:сегодня|today)\b', _FLAGS)
_TOMORROW_RE = re.compile(r'\b(?:завтра|tomorrow)\b', _FLAGS)
_DAY_AFTER_TOMORROW_RE = re.compile(r'\b(?:послезавтра|(?:the\s+)?day\s+after\s+tomorrow)\b', _FLAGS)
# at most five digits keeps the resolved date inside datetime's range
_IN_N_DAYS_RE = re.compile(r'\b(?:через\s+(\d{1,5})\s+(?:день|дня|дней)|in\s+(\d{1,5})\s+days?)\b', _FLAGS)
_WEEKDAY_ONCE_RE = re.compile(r'\b(?:(?:во|в|on)\s+)?(' + _WEEKDAY_ALT + r')\b', _FLAGS)

_MULTISPACE_RE = re.compile(r'\s{2,}')

TimeHM = Tuple[int, int]


@dataclass(frozen=True)
class _ParseState:
    now: datetime
    remaining: str
    due_date: Optional[datetime] = None
    priority: Optional[int] = None
    project_name: Optional[str] = None
    labels: Tuple[str, ...] = ()
    repeat_after: Optional[int] = None
    repeat_mode: Optional[RepeatMode] = None
    explicit_time: Optional[TimeHM] = None
    marker_time: Optional[TimeHM] = None

    @property
    def effective_time(self) -> Optional[TimeHM]:
        # numeric time always beats a named marker
        return self.explicit_time if self.explicit_time is not None else self.marker_time

    @property
    def has_recurrence(self) -> bool:
        return self.repeat_after is not None or self.repeat_mode is not None

    def consume(self, match: re.Match, **changes) -> '_ParseState':
        """Erase match from the remaining text and record changes."""
        text = self.remaining
        return replace(self, remaining=text[:match.start()] + ' ' + text[match.end():], **changes)

    def at_effective_time(self, day: datetime) -> datetime:
        hm = self.effective_time
        if hm is None:
            return end_of_day(day)
        return at_time(day, *hm)


def _first_int(match: re.Match) -> int:
    """Value of the first non-empty group (patterns carry one group per language)."""
    return int(next(g for g in match.groups() if g is not None))


# --- Stages ---

def _extract_priority(state: _ParseState) -> _ParseState:
    m = _PRIORITY_NUM_RE.search(state.remaining)
    if m:
        return state.consume(m, priority=int(m.group(1)))
    m = _PRIORITY_WORD_RE.search(state.remaining)
    if m:
        return state.consume(m, priority=PRIORITY_KEYWORDS[m.group(1).lower()])
    return state


def _extract_project(state: _ParseState) -> _ParseState:
    m = _PROJECT_QUOTED_RE.search(state.remaining) or _PROJECT_SIMPLE_RE.search(state.remaining)
    if not m:
        return state
    name = m.group(1).strip()
    if not name:
        return state
    return state.consume(m, project_name=name)


def _extract_labels(state: _ParseState) -> _ParseState:
    remaining = state.remaining
    labels = list(state.labels)
    # quoted labels first so their inner words can't be picked up as simple ones
    for pattern in (_LABEL_QUOTED_RE, _LABEL_SIMPLE_RE):
        found = [m.group(1).strip() for m in pattern.finditer(remaining)]
        if found:
            labels.extend(label for label in found if label)
            remaining = pattern.sub(' ', remaining)
    if remaining == state.remaining:
        return state
    return replace(state, remaining=remaining, labels=tuple(labels))


def _extract_explicit_time(state: _ParseState) -> _ParseState:
    m = _COLON_TIME_RE.search(state.remaining)
    if m:
        return state.consume(m, explicit_time=(int(m.group(1)), int(m.group(2))))
    m = _HOUR_ONLY_TIME_RE.search(state.remaining)
    if m:
        return state.consume(m, explicit_time=(int(m.group(1)), 0))
    return state


def _extract_time_marker(state: _ParseState) -> _ParseState:
    m = _TIME_MARKER_RE.search(state.remaining)
    if not m:
        return state
    return state.consume(m, marker_time=TIME_MARKERS[m.group(1).lower()])


# Checked in order; the first hit wins and the rest are skipped.
_RECURRENCE_KEYWORDS = (
    (_DAILY_RE, SECONDS_PER_DAY, RepeatMode.INTERVAL),
    (_WEEKLY_RE, SECONDS_PER_WEEK, RepeatMode.INTERVAL),
    (_MONTHLY_RE, None, RepeatMode.MONTHLY_BY_DAY),
    (_HOURLY_RE, SECONDS_PER_HOUR, RepeatMode.INTERVAL),
)


def _standalone_match(pattern: re.Pattern, text: str) -> Optional[re.Match]:
    # a match that captured "of" belongs to the second-day-of-week idiom
    for m in pattern.finditer(text):
        if not m.groupdict().get('of'):
            return m
    return None


def _extract_recurrence_keyword(state: _ParseState) -> _ParseState:
    for pattern, repeat_after, mode in _RECURRENCE_KEYWORDS:
        m = _standalone_match(pattern, state.remaining)
        if m:
            return state.consume(m, repeat_after=repeat_after, repeat_mode=mode)
    m = _EVERY_N_HOURS_RE.search(state.remaining)
    if m:
        return state.consume(m, repeat_after=SECONDS_PER_HOUR * _first_int(m),
                             repeat_mode=RepeatMode.INTERVAL)
    return state


def _weekly_unless_recurring(state: _ParseState) -> dict:
    if state.has_recurrence:
        return {}
    return {'repeat_after': SECONDS_PER_WEEK, 'repeat_mode': RepeatMode.INTERVAL}


def _extract_second_day_of_week(state: _ParseState) -> _ParseState:
    if state.due_date is not None:
        return state
    m = _SECOND_DAY_OF_WEEK_RE.search(state.remaining)
    if not m:
        return state
    day = next_weekday(state.now, SECOND_DAY_OF_WEEK, allow_today=True)
    return state.consume(m, due_date=state.at_effective_time(day), **_weekly_unless_recurring(state))


def _extract_every_weekday(state: _ParseState) -> _ParseState:
    if state.due_date is not None:
        return state
    m = _EVERY_WEEKDAY_RE.search(state.remaining)
    if not m:
        return state
    # recurring weekdays include today, unlike a one-shot "on <weekday>"
    day = next_weekday(state.now, WEEKDAYS[m.group(1).lower()], allow_today=True)
    return state.consume(m, due_date=state.at_effective_time(day), **_weekly_unless_recurring(state))


def _extract_every_day_of_month(state: _ParseState) -> _ParseState:
    if state.due_date is not None:
        return state
    m = _EVERY_DAY_OF_MONTH_RE.search(state.remaining)
    if not m:
        return state
    changes = {}
    if not state.has_recurrence:
        changes['repeat_mode'] = RepeatMode.MONTHLY_BY_DAY
    day = nearest_day_of_month(state.now, _first_int(m))
    return state.consume(m, due_date=state.at_effective_time(day), **changes)


def _days_ahead(days: int) -> Callable[[_ParseState, re.Match], datetime]:
    return lambda state, m: start_of_day(state.now) + timedelta(days=days)


def _in_n_days(state: _ParseState, m: re.Match) -> datetime:
    return start_of_day(state.now) + timedelta(days=_first_int(m))


def _weekday_excluding_today(state: _ParseState, m: re.Match) -> datetime:
    return next_weekday(state.now, WEEKDAYS[m.group(1).lower()], allow_today=False)


# "day after tomorrow" is tried first so plain "tomorrow" can't claim its tail.
_ABSOLUTE_DATES = (
    (_TODAY_RE, _days_ahead(0)),
    (_DAY_AFTER_TOMORROW_RE, _days_ahead(2)),
    (_TOMORROW_RE, _days_ahead(1)),
    (_IN_N_DAYS_RE, _in_n_days),
    (_WEEKDAY_ONCE_RE, _weekday_excluding_today),
)


def _extract_absolute_date(state: _ParseState) -> _ParseState:
    if state.due_date is not None:
        return state
    for pattern, resolve in _ABSOLUTE_DATES:
        m = pattern.search(state.remaining)
        if m:
            return state.consume(m, due_date=state.at_effective_time(resolve(state, m)))
    return state


def _today_or_tomorrow(state: _ParseState) -> datetime:
    candidate = state.at_effective_time(start_of_day(state.now))
    if candidate < state.now:
        return state.at_effective_time(start_of_day(state.now) + timedelta(days=1))
    return candidate


def _apply_time_fallbacks(state: _ParseState) -> _ParseState:
    if state.due_date is not None:
        return state
    # time given without a date: the next time that clock reading comes round
    if state.effective_time is not None:
        return replace(state, due_date=_today_or_tomorrow(state))
    if state.repeat_after is not None and state.repeat_after < SECONDS_PER_DAY:
        return replace(state, due_date=ceil_to_hour(state.now))
    if state.repeat_mode == RepeatMode.MONTHLY_BY_DAY:
        return replace(state, due_date=_today_or_tomorrow(state))
    return state


STAGES: Tuple[Callable[[_ParseState], _ParseState], ...] = (
    _extract_priority,
    _extract_project,
    _extract_labels,
    _extract_explicit_time,
    _extract_time_marker,
    _extract_recurrence_keyword,
    _extract_second_day_of_week,
    _extract_every_weekday,
    _extract_every_day_of_month,
    _extract_absolute_date,
    _apply_time_fallbacks,
)


def clean_title(remaining: str, original: str) -> str | None:
    """Turn the leftover text into a display title.

    Returns None when nothing is left or when the result is just the original
    title again (ignoring case and runs of whitespace).
    """
    cleaned = _MULTISPACE_RE.sub(' ', remaining).strip()
    if not cleaned:
        return None
    if cleaned.lower() == _MULTISPACE_RE.sub(' ', original).strip().lower():
        return None
    return cleaned[0].upper() + cleaned[1:]


def parse(text: str | None, now: datetime | None = None) -> ParsedTaskPatch | None:
    """Parse a quick-add title.

    `now` is the reference instant (treated as UTC when naive); it defaults
    to the current time. Returns None when the text carries no markers at
    all, otherwise a ParsedTaskPatch with only the extracted fields set.
    """
    if not text or not text.strip():
        return None
    now = ensure_utc(now) if now is not None else now_utc()

    state = _ParseState(now=now, remaining=text)
    for stage in STAGES:
        state = stage(state)

    cleaned = clean_title(state.remaining, text)
    extracted = (
        state.due_date is not None
        or state.priority is not None
        or state.project_name is not None
        or bool(state.labels)
        or state.has_recurrence
    )
    if not extracted and cleaned is None:
        return None

    patch = ParsedTaskPatch(
        due_date=state.due_date,
        priority=state.priority,
        project_name=state.project_name,
        labels=state.labels or None,
        repeat_after=state.repeat_after,
        repeat_mode=state.repeat_mode,
        cleaned_title=cleaned,
    )
    logger.debug('quick-add parse %r -> %s', text, patch.to_json_dict())
    return patch
