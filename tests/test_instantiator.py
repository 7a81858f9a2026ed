"""Tests for TaskInstantiator — turning approved templates into tasks."""

import copy
from datetime import datetime

import pytest

from automations.scheduler.instantiator import InstantiationError, TemplateContent, instantiate
from automations.scheduler.models import ApprovalState, Automation, DayOfMonth, TemplateEntry

NOW = datetime(2024, 1, 15, 10, 0)


def _content(title: str = "GST return", **overrides) -> dict:
    content = {
        "title": title,
        "description": "File the monthly return",
        "client_name": "Acme Traders",
        "client_group": "Acme Group",
        "work_type": ["GST"],
        "assigned_to": ["user-1"],
        "priority": "high",
        "inward_entry_date": "2024-01-15",
        "inward_entry_time": "09:30",
    }
    content.update(overrides)
    return content


def _entry(entry_id: str = "t1", **overrides) -> TemplateEntry:
    return TemplateEntry(
        id=entry_id, content=_content(**overrides), approval_state=ApprovalState.APPROVED
    )


@pytest.fixture
def automation() -> Automation:
    return Automation(id="a1", name="Monthly GST", cadence=DayOfMonth(day=15), created_by="admin-1")


def test_one_task_per_template(automation: Automation) -> None:
    tasks = instantiate([_entry("t1"), _entry("t2", title="TDS return")], automation, NOW)

    assert [t.template_id for t in tasks] == ["t1", "t2"]
    assert [t.title for t in tasks] == ["GST return", "TDS return"]
    assert len({t.id for t in tasks}) == 2


def test_task_fields(automation: Automation) -> None:
    (task,) = instantiate([_entry()], automation, NOW)

    assert task.automation_id == "a1"
    assert task.assigned_by == "admin-1"
    assert task.status == "yet_to_start"
    assert task.verification_status == "completed"
    assert task.self_verification is False
    assert task.inward_entry_at == "2024-01-15T09:30:00"
    assert task.created_at == NOW.isoformat()
    assert task.content["client_name"] == "Acme Traders"
    assert task.content["billed"] is True


def test_inward_entry_without_time_uses_midnight(automation: Automation) -> None:
    (task,) = instantiate([_entry(inward_entry_time=None)], automation, NOW)
    assert task.inward_entry_at == "2024-01-15T00:00:00"


def test_template_content_is_not_mutated(automation: Automation) -> None:
    entry = _entry(assigned_to="user-9")
    before = copy.deepcopy(entry.content)

    (task,) = instantiate([entry], automation, NOW)

    assert entry.content == before
    assert task.content["assigned_to"] == ["user-9"]


def test_empty_approved_list_creates_nothing(automation: Automation) -> None:
    assert instantiate([], automation, NOW) == []


def test_invalid_template_fails_whole_batch(automation: Automation) -> None:
    entries = [_entry("t1"), _entry("t2", client_name=""), _entry("t3")]

    with pytest.raises(InstantiationError, match="t2"):
        instantiate(entries, automation, NOW)


def test_missing_required_field(automation: Automation) -> None:
    entry = _entry()
    del entry.content["inward_entry_date"]
    with pytest.raises(InstantiationError):
        instantiate([entry], automation, NOW)


# -- TemplateContent -----------------------------------------------------------


def test_blank_assignees_are_dropped() -> None:
    content = TemplateContent.model_validate(_content(assigned_to=["u1", "", "  ", None]))
    assert content.assigned_to == ["u1"]


def test_only_blank_assignees_is_invalid() -> None:
    with pytest.raises(ValueError):
        TemplateContent.model_validate(_content(assigned_to=["", " "]))


def test_single_work_type_string_is_listified() -> None:
    content = TemplateContent.model_validate(_content(work_type="Audit"))
    assert content.work_type == ["Audit"]


def test_extra_fields_are_kept() -> None:
    content = TemplateContent.model_validate(_content(work_done_by="First floor"))
    assert content.model_dump()["work_done_by"] == "First floor"
