import os
import pathlib
import sys
from datetime import datetime, timezone

import pytest

# Deterministic settings for the app under test; set before quickadd.config is
# imported anywhere.
os.environ.setdefault('VIKUNJA_BASE_URL', 'http://vikunja.test')
os.environ.setdefault('VIKUNJA_TOKEN', 'test-token')

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from quickadd.models import TaskPatch  # noqa: E402

# Wednesday. Jan 11 is Thu, Jan 15 Mon, Jan 16 Tue, Jan 17 the next Wed.
NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def d(y, mo, day, h, m):
    return datetime(y, mo, day, h, m, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


class FakeVikunjaClient:
    """In-memory stand-in for VikunjaClient that records what the
    enrichment flow asked for. Set the *_error attributes to make a call fail.
    """

    def __init__(self, projects=None, labels=None):
        self.projects = {k.lower(): v for k, v in (projects or {}).items()}
        self.labels = {k.lower(): v for k, v in (labels or {}).items()}
        self.next_label_id = 100
        self.updates: list[tuple[int, dict]] = []
        self.attached: list[tuple[int, list[int]]] = []
        self.project_error: Exception | None = None
        self.update_error: Exception | None = None
        self.label_error: Exception | None = None

    async def resolve_project_id(self, name):
        if self.project_error:
            raise self.project_error
        return self.projects.get(name.strip().lower())

    async def update_task(self, task_id, patch: TaskPatch):
        if self.update_error:
            raise self.update_error
        self.updates.append((task_id, patch.as_update()))
        return {}

    async def resolve_labels(self, names):
        if self.label_error:
            raise self.label_error
        ids = []
        for name in names:
            key = name.strip().lower()
            if key not in self.labels:
                self.labels[key] = self.next_label_id
                self.next_label_id += 1
            ids.append(self.labels[key])
        return ids

    async def set_task_labels(self, task_id, label_ids):
        self.attached.append((task_id, list(label_ids)))


@pytest.fixture
def fake_client():
    return FakeVikunjaClient(projects={'Home': 7, 'Work': 8}, labels={'chores': 21})


def make_payload(title, event_name='task.created', task_id=42, due_date='0001-01-01T00:00:00Z', **task_fields):
    task = {
        'id': task_id,
        'title': title,
        'done': False,
        'due_date': due_date,
        'priority': 0,
        'project_id': 1,
        'repeat_after': 0,
        'repeat_mode': 0,
        'labels': None,
    }
    task.update(task_fields)
    return {'event_name': event_name, 'time': '2024-01-10T12:00:00Z', 'data': {'task': task}}
