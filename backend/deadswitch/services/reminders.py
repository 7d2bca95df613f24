"""Reminder scheduling: which reminders are due, and marking them sent once."""

from datetime import datetime, timedelta

from sqlmodel import Session

from deadswitch.core.clock import as_utc
from deadswitch.core.config import settings
from deadswitch.core.errors import InvalidInputError
from deadswitch.models.message import Message
from deadswitch.models.reminder import Reminder
from deadswitch.services import repository
from deadswitch.services.trigger import trigger_instant


def reminder_due_at(message: Message, reminder: Reminder) -> datetime:
    return trigger_instant(message.last_seen, message.trigger_duration) - timedelta(
        minutes=reminder.minutes_before
    )


def due_reminders(message: Message, now: datetime) -> list[Reminder]:
    """
    Every unsent reminder whose fire time has been reached.

    ``sent`` is the only gate: a sent reminder is never returned again, even
    if ``now`` moves backwards.
    """
    now = as_utc(now)
    return [
        reminder
        for reminder in message.reminders
        if not reminder.sent and now >= reminder_due_at(message, reminder)
    ]


def claim_reminder(session: Session, message: Message, reminder: Reminder) -> bool:
    """
    Flip ``sent`` to true before the dispatch attempt.

    Fails when another worker already claimed it, or when the owner checked in
    after ``message`` was read (the rearmed reminder is no longer due).
    """
    claimed = repository.claim_reminder(session, reminder.id, message.id, message.revision)
    if claimed:
        reminder.sent = True
    return claimed


def rearm(session: Session, message_id: str) -> bool:
    """Check-in: refresh last_seen and reset every reminder to unsent."""
    return repository.record_check_in(session, message_id)


def validate_offsets(offsets: list[int], trigger_duration: int) -> list[int]:
    """Offsets must be unique, non-negative and inside the trigger window."""
    if len(offsets) > settings.MAX_REMINDERS:
        raise InvalidInputError(f"At most {settings.MAX_REMINDERS} reminders allowed")
    if len(set(offsets)) != len(offsets):
        raise InvalidInputError("Reminder offsets must be unique")
    for minutes in offsets:
        if minutes < 0:
            raise InvalidInputError("Reminder offset cannot be negative")
        if minutes >= trigger_duration:
            raise InvalidInputError(
                "Reminder offset must be shorter than the trigger duration"
            )
    return sorted(offsets, reverse=True)


def build_reminders(offsets: list[int], trigger_duration: int) -> list[Reminder]:
    return [
        Reminder(minutes_before=minutes)
        for minutes in validate_offsets(offsets, trigger_duration)
    ]
