"""Switch management routes for the authenticated owner."""

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlmodel import Session

from deadswitch.api.deps import get_orchestrator, get_storage, require_owner
from deadswitch.core.config import settings
from deadswitch.core.db import get_db_session
from deadswitch.core.errors import InvalidInputError
from deadswitch.models.attachment import AttachmentRead
from deadswitch.models.message import MessageRead
from deadswitch.schemas.messages import (
    CreateMessageRequest,
    CreateMessageResponse,
    StatusResponse,
    SweepReportResponse,
    UpdateMessageRequest,
)
from deadswitch.services import repository, switches
from deadswitch.services.codec import PayloadCodec, get_codec
from deadswitch.services.orchestrator import Orchestrator
from deadswitch.services.storage import LocalStorage

router = APIRouter(
    prefix="/messages", tags=["messages"], dependencies=[Depends(require_owner)]
)


@router.post("", response_model=CreateMessageResponse, status_code=status.HTTP_201_CREATED)
def create_message(
    create_request: CreateMessageRequest,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
) -> CreateMessageResponse:
    """
    Create a switch.

    The management token is only returned in this response; store it to
    check in, read or delete the switch without a session.
    """
    created = switches.create_switch(
        db_session,
        codec,
        content=create_request.content,
        recipient_email=create_request.recipient_email,
        trigger_duration=create_request.trigger_duration,
        reminder_offsets=create_request.reminders,
    )
    return CreateMessageResponse(
        message=switches.to_read(db_session, created.message),
        management_token=created.management_token,
    )


@router.get("", response_model=list[MessageRead])
def list_messages(db_session: Session = Depends(get_db_session)) -> list[MessageRead]:
    return [switches.to_read(db_session, m) for m in repository.list_switches(db_session)]


@router.get("/{message_id}", response_model=MessageRead)
def get_message(message_id: str, db_session: Session = Depends(get_db_session)) -> MessageRead:
    return switches.to_read(db_session, repository.get_switch(db_session, message_id))


@router.put("/{message_id}", response_model=MessageRead)
def update_message(
    message_id: str,
    update_request: UpdateMessageRequest,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
) -> MessageRead:
    message = switches.update_switch(
        db_session,
        codec,
        message_id,
        content=update_request.content,
        management_token=update_request.management_token,
        trigger_duration=update_request.trigger_duration,
        reminder_offsets=update_request.reminders,
    )
    return switches.to_read(db_session, message)


@router.delete("/{message_id}", response_model=StatusResponse)
def delete_message(
    message_id: str,
    db_session: Session = Depends(get_db_session),
    storage: LocalStorage = Depends(get_storage),
) -> StatusResponse:
    switches.delete_switch(db_session, storage, message_id)
    return StatusResponse(message="Message deleted")


@router.post("/{message_id}/heartbeat", response_model=MessageRead)
def heartbeat(message_id: str, db_session: Session = Depends(get_db_session)) -> MessageRead:
    """Check in for one switch: refresh last_seen and rearm its reminders."""
    return switches.to_read(db_session, switches.heartbeat(db_session, message_id))


@router.post("/{message_id}/redeliver", response_model=SweepReportResponse)
def redeliver(
    message_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> SweepReportResponse:
    """Retry delivery of a triggered switch whose attempts ran out."""
    report = orchestrator.redeliver(message_id)
    return SweepReportResponse(
        delivered=report.delivered,
        delivery_retries=report.delivery_retries,
        delivery_failed=report.delivery_failed,
        undecryptable=report.undecryptable,
        errors=report.errors,
    )


# ============================================================================
# ATTACHMENTS
# ============================================================================


@router.post(
    "/{message_id}/attachments",
    response_model=AttachmentRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    message_id: str,
    file: UploadFile = File(...),
    db_session: Session = Depends(get_db_session),
    storage: LocalStorage = Depends(get_storage),
):
    data = await file.read(settings.MAX_FILE_SIZE + 1)
    if len(data) > settings.MAX_FILE_SIZE:
        raise InvalidInputError("File exceeds maximum size")
    return switches.upload_attachment(
        db_session,
        storage,
        message_id,
        filename=file.filename or "",
        mime_type=file.content_type or "application/octet-stream",
        data=data,
    )


@router.get("/{message_id}/attachments", response_model=list[AttachmentRead])
def list_attachments(message_id: str, db_session: Session = Depends(get_db_session)):
    return switches.list_attachments(db_session, message_id)


@router.delete("/{message_id}/attachments/{attachment_id}", response_model=StatusResponse)
def delete_attachment(
    message_id: str,
    attachment_id: str,
    db_session: Session = Depends(get_db_session),
    storage: LocalStorage = Depends(get_storage),
) -> StatusResponse:
    switches.delete_attachment(db_session, storage, message_id, attachment_id)
    return StatusResponse(message="Attachment deleted")
