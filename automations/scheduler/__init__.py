"""Recurring automation engine — cadences, run guard, approval gate and task creation."""

from automations.scheduler.driver import (
    AutomationNotFoundError,
    FireOutcome,
    FireResult,
    SchedulerDriver,
    StatusReport,
    TickSummary,
)
from automations.scheduler.engine import SchedulerEngine
from automations.scheduler.models import (
    ApprovalState,
    Automation,
    CadenceConfigError,
    DayOfMonth,
    HalfYearly,
    OneShot,
    PeriodKey,
    Quarterly,
    Task,
    TemplateEntry,
    UnreadableCadence,
    Yearly,
)
from automations.scheduler.store import AutomationStore

__all__ = [
    "ApprovalState",
    "Automation",
    "AutomationNotFoundError",
    "AutomationStore",
    "CadenceConfigError",
    "DayOfMonth",
    "FireOutcome",
    "FireResult",
    "HalfYearly",
    "OneShot",
    "PeriodKey",
    "Quarterly",
    "SchedulerDriver",
    "SchedulerEngine",
    "StatusReport",
    "Task",
    "TemplateEntry",
    "TickSummary",
    "UnreadableCadence",
    "Yearly",
]
