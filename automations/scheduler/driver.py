"""SchedulerDriver — per-tick due check, approval gate and atomic fire.

The driver holds no scheduling state between ticks; whether an automation has
already fired is read from its persisted run marker every time. Within one
process a per-automation lock keeps a tick and a force-run from both firing;
across processes the store's compare-and-set on ``last_run_at`` does.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from automations.config import settings
from automations.scheduler.approval import approved_of
from automations.scheduler.cadence import RunStatus, resolve
from automations.scheduler.guard import clear_run, is_due, mark_run
from automations.scheduler.instantiator import InstantiationError, instantiate
from automations.scheduler.models import CadenceConfigError, OneShot

if TYPE_CHECKING:
    from automations.scheduler.models import Automation
    from automations.scheduler.store import AutomationStore

logger = logging.getLogger(__name__)


class AutomationNotFoundError(LookupError):
    """No automation exists with the requested id."""


class FireOutcome(StrEnum):
    NOT_DUE = "not_due"
    AWAITING_APPROVAL = "awaiting_approval"
    FIRED = "fired"
    FAILED = "failed"
    CONFIG_ERROR = "config_error"
    SUPERSEDED = "superseded"


@dataclass
class FireResult:
    """What one due-check/fire cycle did for one automation."""

    automation_id: str
    name: str
    outcome: FireOutcome
    task_ids: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def tasks_created(self) -> int:
        return len(self.task_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "automationId": self.automation_id,
            "name": self.name,
            "outcome": str(self.outcome),
            "tasksCreated": self.tasks_created,
            "taskIds": list(self.task_ids),
            "error": self.error,
        }


@dataclass
class TickSummary:
    ran_at: datetime
    results: list[FireResult]

    @property
    def fired_count(self) -> int:
        return sum(1 for r in self.results if r.outcome == FireOutcome.FIRED)

    def count(self, outcome: FireOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "ranAt": self.ran_at.isoformat(),
            "processedCount": self.fired_count,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class StatusEntry:
    """Read-only view of one automation for operators."""

    id: str
    name: str
    cadence_kind: str
    status: RunStatus
    next_run: datetime | None
    last_run_at: str | None
    template_count: int
    approved_count: int
    tasks_created_count: int
    due: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cadenceKind": self.cadence_kind,
            "status": str(self.status),
            "nextRunDate": self.next_run.isoformat() if self.next_run else None,
            "lastRunDate": self.last_run_at,
            "templateCount": self.template_count,
            "approvedTemplateCount": self.approved_count,
            "tasksCreatedCount": self.tasks_created_count,
            "due": self.due,
            "error": self.error,
        }


@dataclass
class StatusReport:
    current_time: datetime
    entries: list[StatusEntry]

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentTime": self.current_time.isoformat(),
            "totalAutomations": len(self.entries),
            "statusReport": [e.to_dict() for e in self.entries],
        }


class SchedulerDriver:
    """Runs the due → approve → instantiate → mark cycle for every automation.

    Args:
        store: AutomationStore holding automations, run markers and tasks.
        timezone: IANA timezone used for "now" (default from settings).
    """

    def __init__(self, store: AutomationStore, timezone: str | None = None) -> None:
        self._store = store
        self._timezone = timezone or settings.scheduler_timezone
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def now(self) -> datetime:
        return datetime.now(ZoneInfo(self._timezone))

    def _lock_for(self, automation_id: str) -> asyncio.Lock:
        # Held weakly: an entry lives only while a caller holds or awaits it.
        lock = self._locks.get(automation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[automation_id] = lock
        return lock

    # -- Tick ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> TickSummary:
        """Process every automation once. Failures stay local to their automation."""
        now = now or self.now()
        automations = await self._store.list_automations()
        results: list[FireResult] = []
        for automation in automations:
            try:
                results.append(await self.run_automation(automation.id, now))
            except AutomationNotFoundError:
                logger.debug("Automation %s disappeared during tick", automation.id)

        summary = TickSummary(ran_at=now, results=results)
        logger.info(
            "Tick at %s: %d automation(s), %d fired, %d awaiting approval, %d failed,"
            " %d misconfigured",
            now.isoformat(),
            len(results),
            summary.fired_count,
            summary.count(FireOutcome.AWAITING_APPROVAL),
            summary.count(FireOutcome.FAILED),
            summary.count(FireOutcome.CONFIG_ERROR),
        )
        return summary

    async def run_automation(self, automation_id: str, now: datetime | None = None) -> FireResult:
        """Run one due-check/fire cycle for a single automation."""
        now = now or self.now()
        async with self._lock_for(automation_id):
            automation = await self._store.get_automation(automation_id)
            if automation is None:
                raise AutomationNotFoundError(automation_id)
            return await self._guarded_process(automation, now, force=False)

    async def force_run(self, automation_id: str, now: datetime | None = None) -> FireResult:
        """Clear the run marker, then run the normal due-check/fire cycle.

        Only the period check is bypassed: the trigger day, listed months and
        one-shot instant still apply, as does the approval gate. When nothing
        fires the marker stays cleared. A one-shot that already fired is
        terminal and is left untouched.
        """
        now = now or self.now()
        async with self._lock_for(automation_id):
            automation = await self._store.get_automation(automation_id)
            if automation is None:
                raise AutomationNotFoundError(automation_id)
            if isinstance(automation.cadence, OneShot) and automation.last_run_at is not None:
                logger.info(
                    "Force-run: one-shot '%s' (%s) already fired at %s",
                    automation.name,
                    automation.id,
                    automation.last_run_at,
                )
                return FireResult(automation.id, automation.name, FireOutcome.NOT_DUE)
            if not await self._store.clear_last_run(automation_id):
                raise AutomationNotFoundError(automation_id)
            logger.info("Force-run: cleared run marker for '%s' (%s)", automation.name, automation.id)
            return await self._guarded_process(clear_run(automation), now, force=True)

    async def reset_run_status(self, automation_id: str | None = None) -> int:
        """Clear run markers on one automation, or on every day-of-month automation."""
        if automation_id is None:
            return await self._store.reset_run_markers()
        async with self._lock_for(automation_id):
            return await self._store.reset_run_markers(automation_id)

    async def _guarded_process(
        self, automation: Automation, now: datetime, *, force: bool
    ) -> FireResult:
        try:
            return await self._process(automation, now, force=force)
        except Exception as exc:
            logger.exception("Automation '%s' (%s) failed", automation.name, automation.id)
            return FireResult(automation.id, automation.name, FireOutcome.FAILED, error=str(exc))

    async def _process(self, automation: Automation, now: datetime, *, force: bool) -> FireResult:
        try:
            automation.cadence.validate()
            due = is_due(automation, now)
        except CadenceConfigError as exc:
            logger.warning(
                "Automation '%s' (%s) has an invalid cadence: %s",
                automation.name,
                automation.id,
                exc,
            )
            return FireResult(
                automation.id, automation.name, FireOutcome.CONFIG_ERROR, error=str(exc)
            )

        if not due:
            return FireResult(automation.id, automation.name, FireOutcome.NOT_DUE)

        approved = approved_of(automation)
        if not approved:
            logger.warning(
                "Automation '%s' (%s) is due but has no approved templates (%d pending review)",
                automation.name,
                automation.id,
                automation.template_count,
            )
            return FireResult(automation.id, automation.name, FireOutcome.AWAITING_APPROVAL)

        try:
            tasks = instantiate(approved, automation, now)
        except InstantiationError as exc:
            logger.exception("Automation '%s' (%s) not fired", automation.name, automation.id)
            return FireResult(automation.id, automation.name, FireOutcome.FAILED, error=str(exc))

        fired = mark_run(automation, now)
        recorded = await self._store.record_fire(
            fired, tasks, expected_last_run_at=automation.last_run_at
        )
        if not recorded:
            return FireResult(automation.id, automation.name, FireOutcome.SUPERSEDED)

        logger.info(
            "Automation '%s' (%s) fired%s: created %d task(s)",
            automation.name,
            automation.id,
            " (forced)" if force else "",
            len(tasks),
        )
        return FireResult(
            automation.id, automation.name, FireOutcome.FIRED, task_ids=[t.id for t in tasks]
        )

    # -- Status ----------------------------------------------------------------

    async def status_report(self, now: datetime | None = None) -> StatusReport:
        """Build the operator status report. Never writes run markers."""
        now = now or self.now()
        automations = await self._store.list_automations()
        return StatusReport(current_time=now, entries=[status_of(a, now) for a in automations])


def status_of(automation: Automation, now: datetime) -> StatusEntry:
    """Project one automation into a status entry; misconfiguration degrades to an error entry."""
    entry = StatusEntry(
        id=automation.id,
        name=automation.name,
        cadence_kind=str(automation.cadence_kind),
        status=RunStatus.CONFIG_ERROR,
        next_run=None,
        last_run_at=automation.last_run_at,
        template_count=automation.template_count,
        approved_count=automation.approved_count,
        tasks_created_count=automation.tasks_created_count,
    )
    try:
        resolution = resolve(automation.cadence, now, automation.last_run)
        entry.due = is_due(automation, now)
    except CadenceConfigError as exc:
        entry.error = str(exc)
        return entry

    entry.next_run = resolution.next_run
    entry.status = resolution.status
    if entry.due and automation.approved_count == 0:
        entry.status = RunStatus.PENDING_APPROVAL
    return entry
