"""Shared test fixtures."""

from pathlib import Path

import pytest

from automations.scheduler.store import AutomationStore


@pytest.fixture
async def store(tmp_path: Path) -> AutomationStore:
    """Create an AutomationStore backed by a temp database."""
    AutomationStore._reset()
    yield AutomationStore(db_path=tmp_path / "test.db")
    AutomationStore._reset()
