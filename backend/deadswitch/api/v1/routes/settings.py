"""Owner settings: SMTP, webhooks and the quick check-in token."""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from deadswitch.api.deps import get_mailer, require_owner
from deadswitch.core.config import settings
from deadswitch.core.db import get_db_session
from deadswitch.models.settings import SettingsRead, SettingsRequest
from deadswitch.models.webhook import WebhookCreate, WebhookRead
from deadswitch.schemas.messages import HeartbeatTokenResponse, StatusResponse
from deadswitch.services import auth as auth_service
from deadswitch.services import repository
from deadswitch.services import settings as settings_service
from deadswitch.services.codec import PayloadCodec, get_codec
from deadswitch.services.mailer import SMTPMailer

router = APIRouter(tags=["settings"], dependencies=[Depends(require_owner)])


@router.get("/settings", response_model=SettingsRead)
def get_settings(db_session: Session = Depends(get_db_session)) -> SettingsRead:
    return SettingsRead.from_settings(repository.load_settings(db_session))


@router.post("/settings", response_model=SettingsRead)
def save_settings(
    settings_request: SettingsRequest,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
) -> SettingsRead:
    record = settings_service.save_settings(db_session, codec, settings_request)
    return SettingsRead.from_settings(record)


@router.post("/settings/test", response_model=StatusResponse)
def test_smtp(
    settings_request: SettingsRequest,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
    mailer: SMTPMailer = Depends(get_mailer),
) -> StatusResponse:
    settings_service.test_smtp(db_session, codec, mailer, settings_request)
    return StatusResponse(message="SMTP connection successful")


@router.get("/heartbeat-token", response_model=HeartbeatTokenResponse)
def get_heartbeat_token(db_session: Session = Depends(get_db_session)) -> HeartbeatTokenResponse:
    token = auth_service.heartbeat_token(db_session)
    return HeartbeatTokenResponse(
        token=token,
        url=f"{settings.BASE_URL.rstrip('/')}{settings.API_V1_STR}/quick-heartbeat/{token}",
    )


# ============================================================================
# WEBHOOKS
# ============================================================================


@router.get("/webhooks", response_model=list[WebhookRead])
def list_webhooks(db_session: Session = Depends(get_db_session)):
    return settings_service.list_webhooks(db_session)


@router.post("/webhooks", response_model=WebhookRead, status_code=status.HTTP_201_CREATED)
def create_webhook(
    payload: WebhookCreate,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
):
    return settings_service.create_webhook(db_session, codec, payload)


@router.put("/webhooks/{webhook_id}", response_model=WebhookRead)
def update_webhook(
    webhook_id: int,
    payload: WebhookCreate,
    db_session: Session = Depends(get_db_session),
    codec: PayloadCodec = Depends(get_codec),
):
    return settings_service.update_webhook(db_session, codec, webhook_id, payload)


@router.delete("/webhooks/{webhook_id}", response_model=StatusResponse)
def delete_webhook(
    webhook_id: int, db_session: Session = Depends(get_db_session)
) -> StatusResponse:
    settings_service.delete_webhook(db_session, webhook_id)
    return StatusResponse(message="Webhook deleted")
