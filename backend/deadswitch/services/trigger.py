"""Trigger evaluation: decides whether a switch's silence window has elapsed."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from deadswitch.core.clock import as_utc

ZERO = timedelta(0)


@dataclass(frozen=True)
class Evaluation:
    active: bool
    overdue_by: timedelta
    trigger_at: datetime
    remaining: timedelta

    @property
    def expired(self) -> bool:
        return not self.active


def trigger_instant(last_seen: datetime, trigger_duration: int) -> datetime:
    return as_utc(last_seen) + timedelta(minutes=trigger_duration)


def evaluate(last_seen: datetime, trigger_duration: int, now: datetime) -> Evaluation:
    """
    A switch is expired once ``now - last_seen >= trigger_duration`` minutes.

    Pure: persisting the transition is the orchestrator's job, and switches
    already triggered are never passed here.
    """
    trigger_at = trigger_instant(last_seen, trigger_duration)
    now = as_utc(now)
    delta = now - trigger_at
    return Evaluation(
        active=delta < ZERO,
        overdue_by=max(delta, ZERO),
        trigger_at=trigger_at,
        remaining=max(-delta, ZERO),
    )


def format_remaining(remaining: timedelta) -> str:
    """Human readable remaining time used in reminder emails."""
    hours = remaining.total_seconds() / 3600
    if hours > 24:
        return f"{int(hours // 24)} day(s)"
    if hours > 1:
        return f"{round(hours)} hour(s)"
    return f"{max(round(remaining.total_seconds() / 60), 0)} minute(s)"
