"""Template approval gate."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from automations.scheduler.models import Automation, TemplateEntry


def approved_of(automation: Automation) -> list[TemplateEntry]:
    """Return the automation's approved templates, in their original order.

    An empty list means the automation must not fire, even when due.
    """
    return [t for t in automation.templates if t.is_approved]
