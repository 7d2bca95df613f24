"""
Owner-facing switch operations: create, read, check in, edit, delete and
attachments. The sweep lives in ``orchestrator``.
"""

from dataclasses import dataclass

from sqlmodel import Session

from deadswitch.core.config import settings
from deadswitch.core.errors import (
    InvalidInputError,
    NotFoundError,
    PersistenceConflict,
    SwitchTriggeredError,
    UnauthorizedError,
)
from deadswitch.core.logger import logger_config
from deadswitch.core.security import generate_token, hash_token, tokens_match
from deadswitch.models.attachment import Attachment
from deadswitch.models.message import Lifecycle, Message, MessageRead, ReminderRead
from deadswitch.services import repository
from deadswitch.services.codec import PayloadCodec
from deadswitch.services.reminders import build_reminders, validate_offsets
from deadswitch.services.storage import LocalStorage
from deadswitch.utils.validation import (
    sanitize_filename,
    validate_content,
    validate_email_format,
    validate_file,
    validate_trigger_duration,
)

logger = logger_config.get_logger("switches")


@dataclass
class CreatedSwitch:
    message: Message
    management_token: str


def to_read(session: Session, message: Message) -> MessageRead:
    return MessageRead(
        **message.model_dump(exclude={"content", "key_fragment", "management_token_hash"}),
        reminders=[
            ReminderRead(id=r.id, minutes_before=r.minutes_before, sent=r.sent)
            for r in message.reminders
        ],
        attachment_count=len(repository.list_attachments(session, message.id)),
    )


def _ensure_active(message: Message) -> None:
    if not message.is_active:
        raise SwitchTriggeredError(
            "The switch has already been triggered and can no longer be changed"
        )


def _reload(session: Session, message_id: str) -> Message:
    message = repository.get_switch(session, message_id)
    session.refresh(message)
    return message


def create_switch(
    session: Session,
    codec: PayloadCodec,
    content: str,
    recipient_email: str,
    trigger_duration: int,
    reminder_offsets: list[int] | None = None,
) -> CreatedSwitch:
    """
    Encrypt and store a new switch.

    The management token is returned here and nowhere else; only its hash
    is kept.
    """
    validate_trigger_duration(trigger_duration)
    validate_content(content)
    recipient = validate_email_format(recipient_email)
    reminders = build_reminders(reminder_offsets or [], trigger_duration)

    token = generate_token()
    sealed = codec.encrypt(content, token)
    message = Message(
        content=sealed.content,
        key_fragment=sealed.key_fragment,
        management_token_hash=hash_token(token),
        recipient_email=recipient,
        trigger_duration=trigger_duration,
        reminders=reminders,
    )
    session.add(message)
    session.commit()
    session.refresh(message)

    logger.info(
        "Switch created",
        extra={"message_id": message.id, "trigger_duration": trigger_duration},
    )
    return CreatedSwitch(message=message, management_token=token)


def read_content(session: Session, codec: PayloadCodec, management_token: str) -> str:
    """Decrypt a switch's content with its management token."""
    message = repository.get_switch_by_token(session, management_token)
    return codec.decrypt(message.content, message.key_fragment, management_token)


def _check_in(session: Session, message: Message) -> Message:
    _ensure_active(message)
    if not repository.record_check_in(session, message.id):
        # Lost to the sweep or a delete between read and write
        current = _reload(session, message.id)
        _ensure_active(current)
        raise PersistenceConflict("Check-in conflicted with a concurrent update")
    logger.info("Check-in recorded", extra={"message_id": message.id})
    return _reload(session, message.id)


def check_in(session: Session, management_token: str) -> Message:
    """Check in with a management token; unknown tokens are a not-found."""
    return _check_in(session, repository.get_switch_by_token(session, management_token))


def heartbeat(session: Session, message_id: str) -> Message:
    """Owner check-in from an authenticated session."""
    return _check_in(session, repository.get_switch(session, message_id))


def verify_heartbeat_token(session: Session, token: str) -> None:
    stored = repository.load_settings(session).heartbeat_token
    if not tokens_match(stored, token):
        raise UnauthorizedError("Invalid heartbeat token")


def quick_heartbeat(session: Session, token: str) -> int:
    """Check in every active switch using the service-wide heartbeat token."""
    verify_heartbeat_token(session, token)
    count = repository.check_in_all(session)
    logger.info("Quick heartbeat recorded", extra={"switches": count})
    return count


def update_switch(
    session: Session,
    codec: PayloadCodec,
    message_id: str,
    *,
    content: str | None = None,
    management_token: str | None = None,
    trigger_duration: int | None = None,
    reminder_offsets: list[int] | None = None,
) -> Message:
    """
    Edit an active switch.

    New content is re-encrypted, which needs the management token because
    the owner share of the key fragment is derived from it.
    """
    message = _reload(session, message_id)
    _ensure_active(message)

    values = {}
    duration = message.trigger_duration
    if trigger_duration is not None:
        duration = validate_trigger_duration(trigger_duration)
        values["trigger_duration"] = duration

    if content is not None:
        validate_content(content)
        if not management_token or not tokens_match(
            message.management_token_hash, hash_token(management_token)
        ):
            raise UnauthorizedError("A valid management token is required to change content")
        sealed = codec.encrypt(content, management_token)
        values["content"] = sealed.content
        values["key_fragment"] = sealed.key_fragment

    reminders = None
    if reminder_offsets is not None:
        reminders = build_reminders(reminder_offsets, duration)
    elif trigger_duration is not None:
        # Existing offsets must still fit the new window
        validate_offsets([r.minutes_before for r in message.reminders], duration)

    if not values and reminders is None:
        raise InvalidInputError("Nothing to update")

    if not repository.update_switch(session, message.id, message.revision, **values):
        current = _reload(session, message.id)
        _ensure_active(current)
        raise PersistenceConflict("The switch changed while it was being edited")

    if reminders is not None:
        repository.replace_reminders(session, message.id, reminders)

    logger.info("Switch updated", extra={"message_id": message.id})
    return _reload(session, message.id)


def _drop_blobs(storage: LocalStorage, attachments: list[Attachment]) -> None:
    for attachment in attachments:
        storage.delete(attachment.storage_location)


def delete_switch(session: Session, storage: LocalStorage, message_id: str) -> None:
    attachments = repository.list_attachments(session, message_id)
    repository.soft_delete(session, message_id)
    _drop_blobs(storage, attachments)
    logger.info("Switch deleted", extra={"message_id": message_id})


def delete_by_token(session: Session, storage: LocalStorage, management_token: str) -> None:
    message = repository.get_switch_by_token(session, management_token)
    delete_switch(session, storage, message.id)


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


def upload_attachment(
    session: Session,
    storage: LocalStorage,
    message_id: str,
    filename: str,
    mime_type: str,
    data: bytes,
) -> Attachment:
    message = _reload(session, message_id)
    if not message.is_active:
        raise SwitchTriggeredError("Cannot attach files to a triggered message")

    clean_name = sanitize_filename(filename)
    mime_type = mime_type or "application/octet-stream"
    validate_file(clean_name, len(data), mime_type)

    existing = repository.list_attachments(session, message_id)
    if len(existing) >= settings.MAX_ATTACHMENTS:
        raise InvalidInputError(f"Maximum {settings.MAX_ATTACHMENTS} attachments per message")
    if sum(a.size for a in existing) + len(data) > settings.MAX_TOTAL_ATTACHMENT_SIZE:
        raise InvalidInputError("Total attachment size exceeds the limit")

    location = storage.save(message_id, data)
    attachment = Attachment(
        message_id=message_id,
        filename=clean_name,
        size=len(data),
        mime_type=mime_type,
        storage_location=location,
    )
    session.add(attachment)
    try:
        session.commit()
    except Exception:
        session.rollback()
        storage.delete(location)
        raise
    session.refresh(attachment)

    logger.info(
        "Attachment uploaded",
        extra={"message_id": message_id, "attachment_id": attachment.id, "size": len(data)},
    )
    return attachment


def list_attachments(session: Session, message_id: str) -> list[Attachment]:
    repository.get_switch(session, message_id)
    return repository.list_attachments(session, message_id)


def delete_attachment(
    session: Session, storage: LocalStorage, message_id: str, attachment_id: str
) -> None:
    attachment = session.get(Attachment, attachment_id)
    if (
        not attachment
        or attachment.message_id != message_id
        or attachment.lifecycle != Lifecycle.ACTIVE
    ):
        raise NotFoundError("Attachment not found")

    session.delete(attachment)
    session.commit()
    storage.delete(attachment.storage_location)
    logger.info("Attachment deleted", extra={"attachment_id": attachment_id})
