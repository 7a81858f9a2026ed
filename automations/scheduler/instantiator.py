"""TaskInstantiator — expands approved templates into concrete task records."""

from __future__ import annotations

import copy
import logging
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from automations.scheduler.models import Task, make_id

if TYPE_CHECKING:
    from automations.scheduler.models import Automation, TemplateEntry

logger = logging.getLogger(__name__)


class InstantiationError(Exception):
    """An approved template could not be turned into a task."""


class TemplateContent(BaseModel):
    """Fields a template must carry before it can become a task."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    title: str = Field(min_length=1)
    description: str = ""
    client_name: str = Field(min_length=1)
    client_group: str = Field(min_length=1)
    work_type: list[str] = Field(min_length=1)
    assigned_to: list[str] = Field(min_length=1)
    priority: str = Field(min_length=1)
    inward_entry_date: date
    inward_entry_time: time | None = None
    due_date: date | None = None
    target_date: date | None = None
    verification_assigned_to: str | None = None
    billed: bool = True

    @field_validator("work_type", "assigned_to", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @property
    def inward_entry_at(self) -> datetime:
        return datetime.combine(self.inward_entry_date, self.inward_entry_time or time())


def _build_task(entry: TemplateEntry, automation: Automation, now: datetime) -> Task:
    try:
        content = TemplateContent.model_validate(copy.deepcopy(entry.content))
    except ValidationError as exc:
        msg = (
            f"Template {entry.id} ('{entry.title}') in automation {automation.id}"
            f" is invalid: {exc.error_count()} error(s)"
        )
        raise InstantiationError(msg) from exc

    return Task(
        id=make_id(),
        automation_id=automation.id,
        template_id=entry.id,
        title=content.title,
        content=content.model_dump(mode="json"),
        assigned_by=automation.created_by,
        inward_entry_at=content.inward_entry_at.isoformat(),
        created_at=now.isoformat(),
    )


def instantiate(
    approved: list[TemplateEntry], automation: Automation, now: datetime
) -> list[Task]:
    """Create one task per approved template.

    All-or-nothing: if any template fails validation, no tasks are returned and
    :class:`InstantiationError` is raised. Template content is never mutated.
    """
    tasks = [_build_task(entry, automation, now) for entry in approved]
    logger.debug(
        "Instantiated %d task(s) for automation '%s' (%s)",
        len(tasks),
        automation.name,
        automation.id,
    )
    return tasks
