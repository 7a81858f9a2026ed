"""AutomationStore — aiosqlite persistence for automations, templates and tasks."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import aiosqlite

from automations.config import settings
from automations.scheduler.models import (
    ApprovalState,
    Automation,
    CadenceKind,
    Task,
    TemplateEntry,
    make_id,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS automations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    cadence_kind TEXT NOT NULL,
    cadence TEXT NOT NULL,
    created_by TEXT,
    created_at TEXT NOT NULL,
    last_run_month INTEGER,
    last_run_year INTEGER,
    last_run_at TEXT
);
CREATE TABLE IF NOT EXISTS automation_templates (
    id TEXT PRIMARY KEY,
    automation_id TEXT NOT NULL REFERENCES automations(id),
    position INTEGER NOT NULL,
    content TEXT NOT NULL,
    approval_state TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    automation_id TEXT NOT NULL REFERENCES automations(id),
    template_id TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    assigned_by TEXT,
    inward_entry_at TEXT,
    status TEXT NOT NULL,
    verification_status TEXT NOT NULL,
    self_verification INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_templates_automation ON automation_templates(automation_id);
CREATE INDEX IF NOT EXISTS idx_tasks_automation ON tasks(automation_id);
"""

_AUTOMATION_COLUMNS = (
    "id, name, description, cadence_kind, cadence, created_by, created_at,"
    " last_run_month, last_run_year, last_run_at"
)
_TEMPLATE_COLUMNS = "id, automation_id, position, content, approval_state, created_at"
_TASK_COLUMNS = (
    "id, automation_id, template_id, title, content, assigned_by, inward_entry_at,"
    " status, verification_status, self_verification, created_at"
)


def _template_from_row(row: tuple) -> TemplateEntry:
    return TemplateEntry(
        id=row[0],
        content=json.loads(row[3]),
        approval_state=ApprovalState(row[4]),
        created_at=row[5],
    )


class AutomationStore:
    """Persists automations in SQLite.

    Singleton accessed via ``AutomationStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: AutomationStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def get(cls) -> AutomationStore:
        """Return the shared AutomationStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA busy_timeout=5000")
        if not self._initialised:
            await db.executescript(_CREATE_TABLES)
            await db.commit()
            self._initialised = True
        return db

    async def _load(self, db: aiosqlite.Connection, rows: list[Any]) -> list[Automation]:
        """Attach templates and generated task ids to ``automations`` rows."""
        if not rows:
            return []
        ids = [row[0] for row in rows]
        placeholders = ", ".join("?" for _ in ids)

        templates: dict[str, list[TemplateEntry]] = defaultdict(list)
        cursor = await db.execute(
            f"SELECT {_TEMPLATE_COLUMNS} FROM automation_templates"
            f" WHERE automation_id IN ({placeholders}) ORDER BY position",
            ids,
        )
        for row in await cursor.fetchall():
            templates[row[1]].append(_template_from_row(row))

        task_ids: dict[str, list[str]] = defaultdict(list)
        cursor = await db.execute(
            f"SELECT automation_id, id FROM tasks"
            f" WHERE automation_id IN ({placeholders}) ORDER BY rowid",
            ids,
        )
        for automation_id, task_id in await cursor.fetchall():
            task_ids[automation_id].append(task_id)

        return [
            Automation.from_row(row, templates[row[0]], task_ids[row[0]]) for row in rows
        ]

    # -- Automations -----------------------------------------------------------

    async def add_automation(self, automation: Automation) -> Automation:
        """Insert a new automation with its templates. Returns the same object."""
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO automations ({_AUTOMATION_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                automation.to_row(),
            )
            await db.executemany(
                f"INSERT INTO automation_templates ({_TEMPLATE_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        t.id,
                        automation.id,
                        position,
                        json.dumps(t.content),
                        str(t.approval_state),
                        t.created_at,
                    )
                    for position, t in enumerate(automation.templates)
                ],
            )
            await db.commit()
            logger.info("Added automation: %s (%s)", automation.name, automation.id)
            return automation
        finally:
            await db.close()

    async def get_automation(self, automation_id: str) -> Automation | None:
        """Fetch an automation by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_AUTOMATION_COLUMNS} FROM automations WHERE id = ?",
                (automation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return (await self._load(db, [row]))[0]
        finally:
            await db.close()

    async def list_automations(self) -> list[Automation]:
        """Return all automations, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_AUTOMATION_COLUMNS} FROM automations ORDER BY created_at DESC"
            )
            rows = await cursor.fetchall()
            return await self._load(db, list(rows))
        finally:
            await db.close()

    # -- Templates -------------------------------------------------------------

    async def add_template(
        self, automation_id: str, content: dict[str, Any]
    ) -> TemplateEntry | None:
        """Append a pending template to an automation. None if the automation is unknown."""
        entry = TemplateEntry(id=make_id(), content=content)
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM automations WHERE id = ?", (automation_id,)
            )
            if (await cursor.fetchone())[0] == 0:
                return None
            cursor = await db.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM automation_templates"
                " WHERE automation_id = ?",
                (automation_id,),
            )
            position = (await cursor.fetchone())[0]
            await db.execute(
                f"INSERT INTO automation_templates ({_TEMPLATE_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    automation_id,
                    position,
                    json.dumps(entry.content),
                    str(entry.approval_state),
                    entry.created_at,
                ),
            )
            await db.commit()
            logger.info("Added template %s to automation %s", entry.id, automation_id)
            return entry
        finally:
            await db.close()

    async def set_template_approval(self, template_id: str, state: ApprovalState) -> bool:
        """Record a reviewer's decision. Returns True if a row was updated."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE automation_templates SET approval_state = ? WHERE id = ?",
                (str(ApprovalState(state)), template_id),
            )
            await db.commit()
            updated = cursor.rowcount > 0
            if updated:
                logger.info("Template %s marked %s", template_id, state)
            return updated
        finally:
            await db.close()

    # -- Run markers -----------------------------------------------------------

    async def clear_last_run(self, automation_id: str) -> bool:
        """Forget when an automation last ran. Returns True if the automation exists."""
        return await self.reset_run_markers(automation_id) > 0

    async def reset_run_markers(self, automation_id: str | None = None) -> int:
        """Clear run markers on one automation, or on every day-of-month automation.

        Returns the number of automations updated.
        """
        if automation_id is not None:
            where, params = "id = ?", (automation_id,)
        else:
            where, params = "cadence_kind = ?", (str(CadenceKind.DAY_OF_MONTH),)
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE automations"
                " SET last_run_month = NULL, last_run_year = NULL, last_run_at = NULL"
                f" WHERE {where}",
                params,
            )
            await db.commit()
            logger.info("Reset run markers on %d automation(s)", cursor.rowcount)
            return cursor.rowcount
        finally:
            await db.close()

    async def record_fire(
        self,
        automation: Automation,
        tasks: list[Task],
        expected_last_run_at: str | None,
    ) -> bool:
        """Persist a fire: new run marker plus its tasks, in one transaction.

        The marker is only written if the stored ``last_run_at`` still equals
        *expected_last_run_at*; otherwise nothing is written and False is
        returned (another writer fired first).
        """
        db = await self._connect()
        try:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "UPDATE automations"
                " SET last_run_month = ?, last_run_year = ?, last_run_at = ?"
                " WHERE id = ? AND last_run_at IS ?",
                (
                    automation.last_run.month if automation.last_run else None,
                    automation.last_run.year if automation.last_run else None,
                    automation.last_run_at,
                    automation.id,
                    expected_last_run_at,
                ),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                logger.warning(
                    "Run marker for automation %s changed concurrently; fire discarded",
                    automation.id,
                )
                return False
            await db.executemany(
                f"INSERT INTO tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [task.to_row() for task in tasks],
            )
            await db.commit()
            return True
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()

    # -- Tasks -----------------------------------------------------------------

    async def list_tasks(self, automation_id: str) -> list[Task]:
        """Return the tasks an automation has generated, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE automation_id = ? ORDER BY rowid",
                (automation_id,),
            )
            rows = await cursor.fetchall()
            return [Task.from_row(row) for row in rows]
        finally:
            await db.close()
