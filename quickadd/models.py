from datetime import datetime
from enum import IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict

from .utils import to_iso


class RepeatMode(IntEnum):
    """Vikunja task repeat modes."""
    INTERVAL = 0
    MONTHLY_BY_DAY = 1
    # Reserved for tasks whose repetition is set up by hand in Vikunja; the
    # quick-add parser never produces it.
    RESERVED = 3


class ParsedTaskPatch(BaseModel):
    """Fields extracted from a quick-add title. None means "not present"."""
    model_config = ConfigDict(frozen=True)

    due_date: Optional[datetime] = None
    priority: Optional[int] = None
    project_name: Optional[str] = None
    labels: Optional[tuple[str, ...]] = None
    repeat_after: Optional[int] = None
    repeat_mode: Optional[RepeatMode] = None
    cleaned_title: Optional[str] = None

    def to_json_dict(self) -> dict:
        out = self.model_dump(exclude_none=True, mode='json')
        if self.due_date is not None:
            out['due_date'] = to_iso(self.due_date)
        if self.repeat_mode is not None:
            out['repeat_mode'] = int(self.repeat_mode)
        return out


# --- Vikunja wire models ---
# Only the fields the enrichment flow reads are declared; everything else is
# tolerated so webhook payloads from newer Vikunja versions still validate.

class User(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: int
    username: str
    email: Optional[str] = None
    name: Optional[str] = None


class Label(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: int
    title: str
    hex_color: Optional[str] = None
    created_by: Optional[User] = None


class Project(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: int
    title: str
    description: Optional[str] = None
    is_archived: bool = False


class Task(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: int
    title: str
    description: Optional[str] = None
    done: Optional[bool] = None
    due_date: Optional[str] = None
    start_date: Optional[str] = None
    priority: Optional[int] = None
    project_id: Optional[int] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    created_by: Optional[User] = None
    labels: Optional[List[Label]] = None
    repeat_after: Optional[int] = None
    # plain int: whatever mode a hand-made task uses must not fail validation
    repeat_mode: Optional[int] = None


class WebhookData(BaseModel):
    model_config = ConfigDict(extra='allow')

    task: Task


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra='allow')

    event_name: str
    time: Optional[str] = None
    data: WebhookData


class TaskPatch(BaseModel):
    """Partial task update sent to Vikunja (merged over the current task)."""
    title: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[int] = None
    project_id: Optional[int] = None
    repeat_after: Optional[int] = None
    repeat_mode: Optional[int] = None

    def as_update(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.as_update()
