"""
The singleton settings row and the webhook store.

All writes go through ``save_settings`` or the webhook helpers so that
secrets are sealed at rest and URLs validated in one place.
"""

from sqlmodel import Session, select

from deadswitch.core.clock import utcnow
from deadswitch.core.errors import InvalidInputError, NotFoundError
from deadswitch.core.logger import logger_config
from deadswitch.models.settings import SETTINGS_ID, Settings, SettingsRequest
from deadswitch.models.webhook import Webhook, WebhookCreate
from deadswitch.services import repository
from deadswitch.services.codec import PayloadCodec
from deadswitch.services.mailer import SMTPMailer
from deadswitch.services.webhooks import WebhookTarget, validate_webhook_url
from deadswitch.utils.validation import validate_email_format

logger = logger_config.get_logger("settings")


def runtime_settings(session: Session, codec: PayloadCodec) -> Settings:
    """
    A detached snapshot of the settings with secrets opened.

    Never add the result to a session: it would persist plaintext secrets.
    """
    stored = repository.load_settings(session)
    snapshot = Settings.model_validate(stored.model_dump())
    snapshot.smtp_pass = codec.open_text(stored.smtp_pass)
    snapshot.webhook_secret = codec.open_text(stored.webhook_secret)
    return snapshot


def _clean_webhook_url(url: str, enabled: bool) -> str:
    url = (url or "").strip()
    if enabled and not url:
        raise InvalidInputError("Webhook URL is required")
    return validate_webhook_url(url) if url else ""


def save_settings(session: Session, codec: PayloadCodec, request: SettingsRequest) -> Settings:
    """Validate and persist settings; blank secrets keep the stored values."""
    webhook_url = _clean_webhook_url(request.webhook_url, request.webhook_enabled)
    owner_email = (
        validate_email_format(request.owner_email) if request.owner_email.strip() else ""
    )

    record = session.get(Settings, SETTINGS_ID) or Settings(id=SETTINGS_ID)
    record.smtp_host = request.smtp_host.strip()
    record.smtp_port = request.smtp_port.strip()
    record.smtp_user = request.smtp_user.strip()
    record.smtp_from = request.smtp_from.strip()
    record.smtp_from_name = request.smtp_from_name.strip()
    record.webhook_url = webhook_url
    record.webhook_enabled = request.webhook_enabled
    record.owner_email = owner_email
    if request.smtp_pass:
        record.smtp_pass = codec.seal_text(request.smtp_pass)
    if request.webhook_secret:
        record.webhook_secret = codec.seal_text(request.webhook_secret)

    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info("Settings saved")
    return record


def test_smtp(
    session: Session, codec: PayloadCodec, mailer: SMTPMailer, request: SettingsRequest
) -> None:
    """Try to authenticate against the submitted SMTP server."""
    candidate = Settings(
        smtp_host=request.smtp_host.strip(),
        smtp_port=request.smtp_port.strip(),
        smtp_user=request.smtp_user.strip(),
        smtp_pass=request.smtp_pass or runtime_settings(session, codec).smtp_pass,
    )
    mailer.test_connection(candidate)


# ---------------------------------------------------------------------------
# Webhook store
# ---------------------------------------------------------------------------


def list_webhooks(session: Session) -> list[Webhook]:
    return list(session.exec(select(Webhook).order_by(Webhook.created_at)).all())


def get_webhook(session: Session, webhook_id: int) -> Webhook:
    webhook = session.get(Webhook, webhook_id)
    if not webhook:
        raise NotFoundError("Webhook not found")
    return webhook


def create_webhook(session: Session, codec: PayloadCodec, payload: WebhookCreate) -> Webhook:
    webhook = Webhook(
        url=validate_webhook_url(payload.url),
        secret=codec.seal_text(payload.secret.strip()),
        enabled=payload.enabled,
    )
    session.add(webhook)
    session.commit()
    session.refresh(webhook)
    logger.info("Webhook created", extra={"webhook_id": webhook.id})
    return webhook


def update_webhook(
    session: Session, codec: PayloadCodec, webhook_id: int, payload: WebhookCreate
) -> Webhook:
    webhook = get_webhook(session, webhook_id)
    webhook.url = validate_webhook_url(payload.url)
    if payload.secret.strip():
        webhook.secret = codec.seal_text(payload.secret.strip())
    webhook.enabled = payload.enabled
    webhook.updated_at = utcnow()
    session.add(webhook)
    session.commit()
    session.refresh(webhook)
    return webhook


def delete_webhook(session: Session, webhook_id: int) -> None:
    session.delete(get_webhook(session, webhook_id))
    session.commit()
    logger.info("Webhook deleted", extra={"webhook_id": webhook_id})


def enabled_webhook_targets(session: Session, codec: PayloadCodec) -> list[WebhookTarget]:
    statement = select(Webhook).where(Webhook.enabled == True)  # noqa: E712
    return [
        WebhookTarget(
            url=webhook.url,
            secret=codec.open_text(webhook.secret),
            label=f"webhook:{webhook.id}",
        )
        for webhook in session.exec(statement).all()
    ]
