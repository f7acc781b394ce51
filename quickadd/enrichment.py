"""Webhook enrichment: turn a freshly created Vikunja task's quick-add title
into real task fields.

Each step after the title/date update is isolated: if a project lookup fails
the update still happens without it, and if attaching labels fails the update
that already went through is kept.
"""
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import List, Optional

from . import config
from .models import ParsedTaskPatch, Task, TaskPatch, WebhookPayload
from .parser import parse
from .utils import parse_iso, to_iso
from .vikunja_client import VikunjaClient

logger = logging.getLogger(__name__)

TASK_CREATED_EVENT = 'task.created'


@dataclass
class EnrichmentResult:
    """What happened to one webhook; returned mainly for logs and tests."""
    task_id: int
    status: str
    parsed: Optional[ParsedTaskPatch] = None
    patch: Optional[TaskPatch] = None
    label_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def has_due_date(task: Task) -> bool:
    """True when the task already carries a real (non-sentinel) due date."""
    if not task.due_date:
        return False
    due = parse_iso(task.due_date)
    if due is None:
        # something is set, even if we can't read it; leave the task alone
        return True
    return due != parse_iso(config.VIKUNJA_EMPTY_DUE_DATE)


def build_task_patch(parsed: ParsedTaskPatch) -> TaskPatch:
    """Map parser output onto the Vikunja update body (project ID resolved separately)."""
    return TaskPatch(
        title=parsed.cleaned_title,
        due_date=to_iso(parsed.due_date) if parsed.due_date is not None else None,
        priority=parsed.priority,
        repeat_after=parsed.repeat_after,
        repeat_mode=int(parsed.repeat_mode) if parsed.repeat_mode is not None else None,
    )


async def enrich_task(payload: WebhookPayload, client: VikunjaClient,
                      now: datetime | None = None) -> EnrichmentResult:
    task = payload.data.task
    extra = {'task_id': task.id, 'event': payload.event_name}

    if payload.event_name != TASK_CREATED_EVENT:
        logger.debug('ignoring event %s for task %s', payload.event_name, task.id, extra=extra)
        return EnrichmentResult(task.id, 'ignored_event')

    if has_due_date(task):
        logger.info('task %s already has due_date %s, skipping enrichment', task.id, task.due_date, extra=extra)
        return EnrichmentResult(task.id, 'already_scheduled')

    parsed = parse(task.title, now)
    if parsed is None:
        logger.debug('no quick-add markers in task %s', task.id, extra=extra)
        return EnrichmentResult(task.id, 'no_match')

    logger.info('enriching task %s: %s', task.id, parsed.to_json_dict(), extra=extra)
    result = EnrichmentResult(task.id, 'updated', parsed=parsed)
    patch = build_task_patch(parsed)

    if parsed.project_name is not None:
        try:
            project_id = await client.resolve_project_id(parsed.project_name)
        except Exception as exc:
            logger.exception('failed to resolve project %r for task %s, continuing without it',
                             parsed.project_name, task.id, extra=extra)
            result.errors.append(f'project: {exc}')
        else:
            if project_id is None:
                logger.warning('project %r not found, leaving task %s in its project',
                               parsed.project_name, task.id, extra=extra)
            else:
                patch = patch.model_copy(update={'project_id': project_id})
                logger.info('resolved project %r -> %d', parsed.project_name, project_id, extra=extra)

    result.patch = patch
    if not patch.is_empty():
        try:
            await client.update_task(task.id, patch)
        except Exception as exc:
            logger.exception('failed to update task %s', task.id, extra=extra)
            result.status = 'update_failed'
            result.errors.append(f'update: {exc}')
            return result
        logger.info('task %s updated with %s', task.id, patch.as_update(), extra=extra)

    if parsed.labels:
        try:
            label_ids = await client.resolve_labels(parsed.labels)
            await client.set_task_labels(task.id, label_ids)
        except Exception as exc:
            logger.exception('failed to attach labels %s to task %s', list(parsed.labels), task.id, extra=extra)
            result.errors.append(f'labels: {exc}')
        else:
            result.label_ids = label_ids
            logger.info('labels %s attached to task %s as %s', list(parsed.labels), task.id, label_ids, extra=extra)

    return result
