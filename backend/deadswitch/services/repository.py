"""
Persistence helpers for switches.

Every state change the sweep and check-ins race on is a single conditional
UPDATE; the rowcount tells the caller whether it won.
"""

from datetime import datetime, timedelta

from sqlalchemy import select as sa_select
from sqlalchemy import update
from sqlmodel import Session, select

from deadswitch.core.clock import utcnow
from deadswitch.core.errors import NotFoundError
from deadswitch.core.security import hash_token
from deadswitch.models.attachment import Attachment
from deadswitch.models.message import DeliveryStatus, Lifecycle, Message, MessageStatus
from deadswitch.models.reminder import Reminder
from deadswitch.models.settings import SETTINGS_ID, Settings


def _rowcount(session: Session, statement) -> int:
    result = session.exec(statement.execution_options(synchronize_session=False))
    session.commit()
    return result.rowcount


def _live(statement):
    return statement.where(Message.lifecycle == Lifecycle.ACTIVE)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def active_switch_ids(session: Session) -> list[str]:
    statement = _live(select(Message.id)).where(Message.status == MessageStatus.ACTIVE)
    return list(session.exec(statement.order_by(Message.last_seen)).all())


def pending_delivery_ids(session: Session) -> list[str]:
    statement = _live(select(Message.id)).where(
        Message.status == MessageStatus.TRIGGERED,
        Message.delivery == DeliveryStatus.PENDING,
    )
    return list(session.exec(statement).all())


def get_switch(session: Session, message_id: str) -> Message:
    message = session.get(Message, message_id)
    if not message or message.lifecycle == Lifecycle.DELETED:
        raise NotFoundError("Message not found")
    return message


def get_switch_by_token(session: Session, management_token: str) -> Message:
    statement = _live(select(Message)).where(
        Message.management_token_hash == hash_token(management_token)
    )
    message = session.exec(statement).first()
    if not message:
        raise NotFoundError("Unknown or revoked management token")
    return message


def list_switches(session: Session) -> list[Message]:
    statement = _live(select(Message)).order_by(Message.created_at.desc())
    return list(session.exec(statement).all())


def list_attachments(session: Session, message_id: str) -> list[Attachment]:
    statement = (
        select(Attachment)
        .where(
            Attachment.message_id == message_id,
            Attachment.lifecycle == Lifecycle.ACTIVE,
        )
        .order_by(Attachment.created_at)
    )
    return list(session.exec(statement).all())


def load_settings(session: Session) -> Settings:
    """Return the settings row, or an unsaved default when none exists yet."""
    return session.get(Settings, SETTINGS_ID) or Settings(id=SETTINGS_ID)


# ---------------------------------------------------------------------------
# Conditional updates
# ---------------------------------------------------------------------------


def claim_trigger(session: Session, message_id: str, revision: int) -> bool:
    """
    active -> triggered, only if nobody checked in since ``revision`` was read.

    The winner also takes the first delivery lease.
    """
    now = utcnow()
    statement = (
        _live(update(Message))
        .where(
            Message.id == message_id,
            Message.status == MessageStatus.ACTIVE,
            Message.revision == revision,
        )
        .values(
            status=MessageStatus.TRIGGERED,
            delivery=DeliveryStatus.SENDING,
            delivery_attempts=1,
            triggered_at=now,
            updated_at=now,
        )
    )
    return _rowcount(session, statement) == 1


def claim_reminder(session: Session, reminder_id: int, message_id: str, revision: int) -> bool:
    """sent: false -> true while the owning switch is still active at ``revision``."""
    switch_unchanged = (
        sa_select(Message.id)
        .where(
            Message.id == message_id,
            Message.status == MessageStatus.ACTIVE,
            Message.lifecycle == Lifecycle.ACTIVE,
            Message.revision == revision,
        )
        .exists()
    )
    statement = (
        update(Reminder)
        .where(
            Reminder.id == reminder_id,
            Reminder.sent == False,  # noqa: E712
            switch_unchanged,
        )
        .values(sent=True)
    )
    return _rowcount(session, statement) == 1


def record_check_in(session: Session, message_id: str, now: datetime | None = None) -> bool:
    """Refresh last_seen and rearm every reminder in one transaction."""
    now = now or utcnow()
    touched = session.exec(
        _live(update(Message))
        .where(Message.id == message_id, Message.status == MessageStatus.ACTIVE)
        .values(last_seen=now, revision=Message.revision + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if touched.rowcount != 1:
        session.rollback()
        return False
    session.exec(
        update(Reminder)
        .where(Reminder.message_id == message_id)
        .values(sent=False)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return True


def check_in_all(session: Session, now: datetime | None = None) -> int:
    """Check in every active switch (service-wide heartbeat)."""
    now = now or utcnow()
    ids = active_switch_ids(session)
    return sum(1 for message_id in ids if record_check_in(session, message_id, now))


def claim_delivery(session: Session, message_id: str, attempts: int) -> bool:
    """pending -> sending lease for a triggered switch awaiting delivery."""
    statement = (
        _live(update(Message))
        .where(
            Message.id == message_id,
            Message.status == MessageStatus.TRIGGERED,
            Message.delivery == DeliveryStatus.PENDING,
            Message.delivery_attempts == attempts,
        )
        .values(
            delivery=DeliveryStatus.SENDING,
            delivery_attempts=attempts + 1,
            updated_at=utcnow(),
        )
    )
    return _rowcount(session, statement) == 1


def finish_delivery(session: Session, message_id: str, **values) -> bool:
    """Release the sending lease, recording the outcome."""
    values.setdefault("updated_at", utcnow())
    statement = (
        update(Message)
        .where(Message.id == message_id, Message.delivery == DeliveryStatus.SENDING)
        .values(**values)
    )
    return _rowcount(session, statement) == 1


def requeue_stale_deliveries(session: Session, lease: timedelta, now: datetime | None = None) -> int:
    """Return deliveries whose lease holder vanished (crash) to pending."""
    cutoff = (now or utcnow()) - lease
    statement = (
        _live(update(Message))
        .where(
            Message.status == MessageStatus.TRIGGERED,
            Message.delivery == DeliveryStatus.SENDING,
            Message.updated_at < cutoff,
        )
        .values(delivery=DeliveryStatus.PENDING)
    )
    return _rowcount(session, statement)


def reset_delivery(session: Session, message_id: str) -> bool:
    """failed -> pending, for an explicit redelivery request."""
    statement = (
        _live(update(Message))
        .where(
            Message.id == message_id,
            Message.status == MessageStatus.TRIGGERED,
            Message.delivery == DeliveryStatus.FAILED,
        )
        .values(delivery=DeliveryStatus.PENDING, delivery_attempts=0, updated_at=utcnow())
    )
    return _rowcount(session, statement) == 1


def soft_delete(session: Session, message_id: str) -> None:
    message = get_switch(session, message_id)
    now = utcnow()
    message.lifecycle = Lifecycle.DELETED
    message.updated_at = now
    for attachment in list_attachments(session, message_id):
        attachment.lifecycle = Lifecycle.DELETED
        session.add(attachment)
    session.add(message)
    session.commit()


def update_switch(session: Session, message_id: str, revision: int, **values) -> bool:
    """Owner edit of an active switch, guarded like a check-in."""
    now = utcnow()
    statement = (
        _live(update(Message))
        .where(
            Message.id == message_id,
            Message.status == MessageStatus.ACTIVE,
            Message.revision == revision,
        )
        .values(revision=Message.revision + 1, updated_at=now, **values)
    )
    return _rowcount(session, statement) == 1


def replace_reminders(session: Session, message_id: str, reminders: list[Reminder]) -> None:
    for existing in session.exec(select(Reminder).where(Reminder.message_id == message_id)).all():
        session.delete(existing)
    for reminder in reminders:
        reminder.message_id = message_id
        session.add(reminder)
    session.commit()
