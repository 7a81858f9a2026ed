"""Run guard — decides whether an automation may fire now, and records fires.

``mark_run`` is the only place a run marker is advanced. It returns a new
:class:`Automation`; persisting it together with the created tasks is the
store's job (see ``AutomationStore.record_fire``).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import assert_never

from automations.scheduler.cadence import clamp_day, localise, period_consumed
from automations.scheduler.models import (
    Automation,
    CadenceConfigError,
    DayOfMonth,
    HalfYearly,
    OneShot,
    PeriodKey,
    Quarterly,
    UnreadableCadence,
    Yearly,
)


def is_due(automation: Automation, now: datetime) -> bool:
    """Return True if *automation* has not fired in the current period and its
    trigger day (or instant) has been reached.

    Raises:
        CadenceConfigError: If the cadence fields are incomplete or contradictory.
    """
    cadence = automation.cadence
    cadence.validate()
    match cadence:
        case OneShot():
            return automation.last_run_at is None and now >= localise(cadence.instant, now)
        case DayOfMonth():
            if period_consumed(cadence, automation.last_run, now):
                return False
            return now.day >= clamp_day(now.year, now.month, cadence.day)
        case Quarterly() | HalfYearly():
            if now.month not in cadence.months:
                return False
            if period_consumed(cadence, automation.last_run, now):
                return False
            return now.day >= clamp_day(now.year, now.month, cadence.day)
        case Yearly():
            if period_consumed(cadence, automation.last_run, now):
                return False
            trigger_day = clamp_day(now.year, cadence.month, cadence.day)
            return (now.month, now.day) >= (cadence.month, trigger_day)
        case UnreadableCadence():
            raise CadenceConfigError(cadence.reason)
        case _:
            assert_never(cadence)


def mark_run(automation: Automation, now: datetime) -> Automation:
    """Return a copy of *automation* whose run marker records a fire at *now*."""
    if isinstance(automation.cadence, OneShot):
        return replace(automation, last_run_at=now.isoformat())
    return replace(
        automation,
        last_run=PeriodKey(now.year, now.month),
        last_run_at=now.isoformat(),
    )


def clear_run(automation: Automation) -> Automation:
    """Return a copy of *automation* with no run marker (never run)."""
    return replace(automation, last_run=None, last_run_at=None)
