"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

from typing import Any

_scheduler_active = False
_last_scheduled_settlement: dict[str, Any] | None = None


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_scheduled_settlement(summary: dict[str, Any]) -> None:
    """Remember the outcome of the latest scheduled settlement for the health endpoint."""

    global _last_scheduled_settlement
    _last_scheduled_settlement = dict(summary)


def last_scheduled_settlement() -> dict[str, Any] | None:
    return _last_scheduled_settlement
