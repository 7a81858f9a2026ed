"""Automation data model — cadence variants, templates, run markers and tasks."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar


class CadenceKind(StrEnum):
    DAY_OF_MONTH = "day_of_month"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"
    ONE_SHOT = "one_shot"


class ApprovalState(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CadenceConfigError(ValueError):
    """An automation's cadence fields are incomplete or contradictory."""


# -- Cadence variants ----------------------------------------------------------
#
# Fields may be ``None`` when loaded from an incomplete record. ``validate()``
# is the strict check.


def _check_range(name: str, value: Any, low: int, high: int) -> None:
    if value is None:
        raise CadenceConfigError(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise CadenceConfigError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise CadenceConfigError(f"{name} must be between {low} and {high}, got {value}")


def _check_day(day: int | None) -> None:
    _check_range("day", day, 1, 31)


def _check_month(month: int | None) -> None:
    _check_range("month", month, 1, 12)


@dataclass(frozen=True)
class DayOfMonth:
    """Fires once a month, on or after ``day``."""

    day: int | None

    kind: ClassVar[CadenceKind] = CadenceKind.DAY_OF_MONTH

    def validate(self) -> None:
        _check_day(self.day)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "day": self.day}


@dataclass(frozen=True)
class _MonthList:
    months: tuple[int, ...]
    day: int | None

    kind: ClassVar[CadenceKind]
    max_months: ClassVar[int]

    def validate(self) -> None:
        if not self.months:
            raise CadenceConfigError(f"{self.kind} cadence needs at least one month")
        for month in self.months:
            _check_month(month)
        if len(set(self.months)) > self.max_months:
            raise CadenceConfigError(
                f"{self.kind} cadence allows at most {self.max_months} months,"
                f" got {len(set(self.months))}"
            )
        _check_day(self.day)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "months": list(self.months), "day": self.day}


@dataclass(frozen=True)
class Quarterly(_MonthList):
    """Fires once in each listed month, on or after ``day``."""

    kind: ClassVar[CadenceKind] = CadenceKind.QUARTERLY
    max_months: ClassVar[int] = 4


@dataclass(frozen=True)
class HalfYearly(_MonthList):
    """Same shape as :class:`Quarterly`, limited to two months."""

    kind: ClassVar[CadenceKind] = CadenceKind.HALF_YEARLY
    max_months: ClassVar[int] = 2


@dataclass(frozen=True)
class Yearly:
    """Fires once per calendar year, on or after ``month``/``day``."""

    month: int | None
    day: int | None

    kind: ClassVar[CadenceKind] = CadenceKind.YEARLY

    def validate(self) -> None:
        _check_month(self.month)
        _check_day(self.day)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "month": self.month, "day": self.day}


@dataclass(frozen=True)
class OneShot:
    """Fires exactly once, at or after ``instant``."""

    instant: datetime | None

    kind: ClassVar[CadenceKind] = CadenceKind.ONE_SHOT

    def validate(self) -> None:
        if self.instant is None:
            raise CadenceConfigError("one_shot cadence needs an instant")
        if not isinstance(self.instant, datetime):
            raise CadenceConfigError(f"one_shot instant must be a datetime, got {self.instant!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "instant": self.instant.isoformat() if self.instant else None,
        }


@dataclass(frozen=True)
class UnreadableCadence:
    """A stored cadence that could not be parsed. Never due.

    ``raw`` keeps the stored text so the record is written back unchanged.
    """

    kind: str
    raw: str
    reason: str

    def validate(self) -> None:
        raise CadenceConfigError(f"unreadable cadence: {self.reason}")

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "error": self.reason}


Cadence = DayOfMonth | Quarterly | HalfYearly | Yearly | OneShot | UnreadableCadence


def cadence_from_dict(data: dict[str, Any]) -> Cadence:
    """Build a cadence from its persisted form (``{"kind": ..., ...}``).

    Missing fields become ``None`` and are reported later by ``validate()``.
    Only an unknown ``kind`` or a non-object payload is rejected here.
    """
    if not isinstance(data, dict):
        raise CadenceConfigError(f"cadence must be an object, got {data!r}")
    kind = data.get("kind")
    if kind == CadenceKind.DAY_OF_MONTH:
        return DayOfMonth(day=data.get("day"))
    if kind in (CadenceKind.QUARTERLY, CadenceKind.HALF_YEARLY):
        cls = Quarterly if kind == CadenceKind.QUARTERLY else HalfYearly
        return cls(months=tuple(data.get("months") or ()), day=data.get("day"))
    if kind == CadenceKind.YEARLY:
        return Yearly(month=data.get("month"), day=data.get("day"))
    if kind == CadenceKind.ONE_SHOT:
        instant = data.get("instant")
        if isinstance(instant, str):
            instant = datetime.fromisoformat(instant)
        return OneShot(instant=instant)
    raise CadenceConfigError(f"Unknown cadence kind: {kind!r}")


# -- Run markers -----------------------------------------------------------------


@dataclass(frozen=True)
class PeriodKey:
    """Granularity at which "already ran" is tracked.

    ``month`` is ``None`` for yearly periods.
    """

    year: int
    month: int | None = None


# -- Templates, automations, tasks ------------------------------------------------


@dataclass
class TemplateEntry:
    """Content for one task, plus its human review state.

    Attributes:
        id: Unique identifier (UUID hex).
        content: Task fields copied into every task this template produces.
        approval_state: ``pending`` until an approver accepts or rejects it.
        created_at: ISO 8601 timestamp.
    """

    id: str
    content: dict[str, Any]
    approval_state: ApprovalState = ApprovalState.PENDING
    created_at: str = ""

    def __post_init__(self) -> None:
        self.approval_state = ApprovalState(self.approval_state)
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()

    @property
    def is_approved(self) -> bool:
        return self.approval_state == ApprovalState.APPROVED

    @property
    def title(self) -> str:
        return str(self.content.get("title", ""))


@dataclass
class Automation:
    """A recurring (or one-shot) batch of tasks created from templates.

    Attributes:
        id: Unique identifier (UUID hex).
        name: Human-readable name.
        cadence: When the automation becomes due.
        description: Optional longer description.
        created_by: User id of the administrator; stamped on tasks as ``assigned_by``.
        templates: Ordered template entries.
        generated_tasks: Ids of tasks produced by past fires, oldest first.
        last_run: Period of the last fire (period-based cadences only).
        last_run_at: ISO 8601 timestamp of the last fire.
        created_at: ISO 8601 timestamp.
    """

    id: str
    name: str
    cadence: Cadence
    description: str = ""
    created_by: str | None = None
    templates: list[TemplateEntry] = field(default_factory=list)
    generated_tasks: list[str] = field(default_factory=list)
    last_run: PeriodKey | None = None
    last_run_at: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()

    # -- Convenience properties ------------------------------------------------

    @property
    def cadence_kind(self) -> CadenceKind | str:
        return self.cadence.kind

    @property
    def template_count(self) -> int:
        return len(self.templates)

    @property
    def approved_count(self) -> int:
        return sum(1 for t in self.templates if t.is_approved)

    @property
    def tasks_created_count(self) -> int:
        return len(self.generated_tasks)

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``automations`` column order."""
        if isinstance(self.cadence, UnreadableCadence):
            cadence_json = self.cadence.raw
        else:
            cadence_json = json.dumps(self.cadence.to_dict())
        return (
            self.id,
            self.name,
            self.description,
            str(self.cadence_kind),
            cadence_json,
            self.created_by,
            self.created_at,
            self.last_run.month if self.last_run else None,
            self.last_run.year if self.last_run else None,
            self.last_run_at,
        )

    @classmethod
    def from_row(
        cls,
        row: tuple,
        templates: list[TemplateEntry] | None = None,
        generated_tasks: list[str] | None = None,
    ) -> Automation:
        """Deserialize from an ``automations`` row plus its child records.

        A cadence that cannot be parsed loads as :class:`UnreadableCadence`
        so one bad record does not hide the others.
        """
        last_run_month, last_run_year = row[7], row[8]
        try:
            cadence = cadence_from_dict(json.loads(row[4]))
        except (TypeError, ValueError) as exc:
            cadence = UnreadableCadence(kind=row[3], raw=row[4], reason=str(exc))
        return cls(
            id=row[0],
            name=row[1],
            description=row[2] or "",
            cadence=cadence,
            created_by=row[5],
            created_at=row[6],
            last_run=PeriodKey(last_run_year, last_run_month) if last_run_year else None,
            last_run_at=row[9],
            templates=templates or [],
            generated_tasks=generated_tasks or [],
        )


@dataclass
class Task:
    """A concrete task materialised from an approved template."""

    id: str
    automation_id: str
    template_id: str
    title: str
    content: dict[str, Any]
    assigned_by: str | None = None
    inward_entry_at: str | None = None
    status: str = "yet_to_start"
    verification_status: str = "completed"
    self_verification: bool = False
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.automation_id,
            self.template_id,
            self.title,
            json.dumps(self.content),
            self.assigned_by,
            self.inward_entry_at,
            self.status,
            self.verification_status,
            int(self.self_verification),
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        return cls(
            id=row[0],
            automation_id=row[1],
            template_id=row[2],
            title=row[3],
            content=json.loads(row[4]),
            assigned_by=row[5],
            inward_entry_at=row[6],
            status=row[7],
            verification_status=row[8],
            self_verification=bool(row[9]),
            created_at=row[10],
        )


def make_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex
