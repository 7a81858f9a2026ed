"""Cadence resolution — next due instant and status label for an automation.

Everything here is pure: no I/O, no mutation. Calling :func:`resolve` twice
with the same inputs yields equal results.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import assert_never

from automations.scheduler.models import (
    Cadence,
    CadenceConfigError,
    DayOfMonth,
    HalfYearly,
    OneShot,
    PeriodKey,
    Quarterly,
    UnreadableCadence,
    Yearly,
)


class RunStatus(StrEnum):
    PENDING_THIS_MONTH = "pending_this_month"
    PENDING_NEXT_MONTH = "pending_next_month"
    COMPLETED_THIS_MONTH = "completed_this_month"
    PENDING = "pending"
    COMPLETED_THIS_QUARTER = "completed_this_quarter"
    COMPLETED_THIS_PERIOD = "completed_this_period"
    PENDING_THIS_YEAR = "pending_this_year"
    COMPLETED_THIS_YEAR = "completed_this_year"
    SCHEDULED = "scheduled"
    COMPLETED_OR_EXPIRED = "completed_or_expired"
    # Overlays applied by the status report, never returned by resolve().
    PENDING_APPROVAL = "pending_approval"
    CONFIG_ERROR = "config_error"


@dataclass(frozen=True)
class Resolution:
    next_run: datetime
    period_key: PeriodKey | None
    status: RunStatus


# -- Date helpers --------------------------------------------------------------


def clamp_day(year: int, month: int, day: int) -> int:
    """Return *day*, or the last day of the month when *day* overshoots it."""
    return min(day, calendar.monthrange(year, month)[1])


def trigger_date(year: int, month: int, day: int, like: datetime) -> datetime:
    """Midnight of (*year*, *month*, clamped *day*) in *like*'s timezone."""
    return datetime(year, month, clamp_day(year, month, day), tzinfo=like.tzinfo)


def localise(instant: datetime, now: datetime) -> datetime:
    """Attach *now*'s timezone to a naive *instant* so the two compare."""
    if instant.tzinfo is None and now.tzinfo is not None:
        return instant.replace(tzinfo=now.tzinfo)
    return instant


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def current_period(cadence: Cadence, now: datetime) -> PeriodKey | None:
    """Period key that *now* falls in for *cadence* (``None`` for one-shots)."""
    if isinstance(cadence, OneShot):
        return None
    if isinstance(cadence, Yearly):
        return PeriodKey(now.year)
    return PeriodKey(now.year, now.month)


def period_consumed(cadence: Cadence, last_run: PeriodKey | None, now: datetime) -> bool:
    """True when *last_run* falls in the same period as *now*."""
    if last_run is None:
        return False
    if isinstance(cadence, Yearly):
        return last_run.year == now.year
    return (last_run.year, last_run.month) == (now.year, now.month)


# -- Resolvers -----------------------------------------------------------------


def _resolve_day_of_month(
    cadence: DayOfMonth, now: datetime, last_run: PeriodKey | None
) -> Resolution:
    period = current_period(cadence, now)
    following = _next_month(now.year, now.month)
    if period_consumed(cadence, last_run, now):
        return Resolution(
            trigger_date(*following, cadence.day, now), period, RunStatus.COMPLETED_THIS_MONTH
        )
    if now.day >= clamp_day(now.year, now.month, cadence.day):
        return Resolution(
            trigger_date(*following, cadence.day, now), period, RunStatus.PENDING_NEXT_MONTH
        )
    return Resolution(
        trigger_date(now.year, now.month, cadence.day, now), period, RunStatus.PENDING_THIS_MONTH
    )


def _resolve_month_list(
    cadence: Quarterly | HalfYearly,
    now: datetime,
    last_run: PeriodKey | None,
    completed: RunStatus,
) -> Resolution:
    months = sorted(set(cadence.months))
    consumed = period_consumed(cadence, last_run, now)

    # The current month counts only while its trigger day is still ahead;
    # otherwise the next listed month, wrapping into next year.
    if (
        now.month in months
        and not consumed
        and now.day < clamp_day(now.year, now.month, cadence.day)
    ):
        year, month = now.year, now.month
    else:
        later = [m for m in months if m > now.month]
        year, month = (now.year, later[0]) if later else (now.year + 1, months[0])

    return Resolution(
        trigger_date(year, month, cadence.day, now),
        current_period(cadence, now),
        completed if consumed else RunStatus.PENDING,
    )


def _resolve_yearly(cadence: Yearly, now: datetime, last_run: PeriodKey | None) -> Resolution:
    period = current_period(cadence, now)
    if period_consumed(cadence, last_run, now):
        return Resolution(
            trigger_date(now.year + 1, cadence.month, cadence.day, now),
            period,
            RunStatus.COMPLETED_THIS_YEAR,
        )
    return Resolution(
        trigger_date(now.year, cadence.month, cadence.day, now),
        period,
        RunStatus.PENDING_THIS_YEAR,
    )


def _resolve_one_shot(cadence: OneShot, now: datetime) -> Resolution:
    instant = localise(cadence.instant, now)
    status = RunStatus.SCHEDULED if instant > now else RunStatus.COMPLETED_OR_EXPIRED
    return Resolution(instant, None, status)


def resolve(cadence: Cadence, now: datetime, last_run: PeriodKey | None = None) -> Resolution:
    """Compute the next due instant, period key and status label.

    Raises:
        CadenceConfigError: If the cadence fields are incomplete or contradictory.
    """
    cadence.validate()
    match cadence:
        case DayOfMonth():
            return _resolve_day_of_month(cadence, now, last_run)
        case Quarterly():
            return _resolve_month_list(cadence, now, last_run, RunStatus.COMPLETED_THIS_QUARTER)
        case HalfYearly():
            return _resolve_month_list(cadence, now, last_run, RunStatus.COMPLETED_THIS_PERIOD)
        case Yearly():
            return _resolve_yearly(cadence, now, last_run)
        case OneShot():
            return _resolve_one_shot(cadence, now)
        case UnreadableCadence():
            raise CadenceConfigError(cadence.reason)
        case _:
            assert_never(cadence)
