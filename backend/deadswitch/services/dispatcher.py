"""
Notification dispatch: reminder emails, the release email, owner notices and
signed webhooks.

Every channel is attempted on its own and reports its own DispatchResult, so
a webhook outage never stops the recipient email and vice versa. Nothing in
here raises for a delivery problem; callers inspect the results.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

import requests

from deadswitch.core.clock import utcnow
from deadswitch.core.config import settings
from deadswitch.core.errors import ConfigurationError, DispatchError
from deadswitch.core.logger import logger_config
from deadswitch.models.message import Message
from deadswitch.models.reminder import Reminder
from deadswitch.models.settings import Settings
from deadswitch.services.mailer import MailAttachment, OutgoingMail, SMTPMailer
from deadswitch.services.trigger import evaluate, format_remaining
from deadswitch.services.webhooks import (
    RETRYABLE_STATUSES,
    WebhookClient,
    WebhookTarget,
    encode_event,
)

logger = logger_config.get_logger("dispatch")

EMAIL = "email"
WEBHOOK = "webhook"
TRIGGER_EVENT = "switch.triggered"


@dataclass
class DispatchResult:
    channel: str
    target: str
    ok: bool
    skipped: bool = False
    attempts: int = 0
    status: int | None = None
    error: str | None = None

    @property
    def settled(self) -> bool:
        """Nothing left to retry on this channel."""
        return self.ok or self.skipped


def quick_heartbeat_link(config: Settings) -> str | None:
    if not config.heartbeat_token:
        return None
    return f"{settings.BASE_URL.rstrip('/')}{settings.API_V1_STR}/quick-heartbeat/{config.heartbeat_token}"


def build_trigger_event(message: Message, content: str) -> dict:
    return {
        "event": TRIGGER_EVENT,
        "message_id": message.id,
        "recipient_email": message.recipient_email,
        "content": content,
        "trigger_duration": message.trigger_duration,
        "last_seen": message.last_seen.isoformat(),
        "triggered_at": (message.triggered_at or utcnow()).isoformat(),
        "created_at": message.created_at.isoformat(),
        "status": "triggered",
    }


def webhook_targets(config: Settings, extra: list[WebhookTarget] | None = None) -> list[WebhookTarget]:
    targets = []
    if config.webhook_url:
        targets.append(
            WebhookTarget(
                url=config.webhook_url,
                secret=config.webhook_secret,
                enabled=config.webhook_enabled,
            )
        )
    targets.extend(extra or [])
    return targets


class NotificationDispatcher:
    def __init__(
        self,
        mailer: SMTPMailer | None = None,
        webhook_client: WebhookClient | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mailer = mailer or SMTPMailer(timeout=settings.DISPATCH_TIMEOUT_SECONDS)
        self.webhook_client = webhook_client or WebhookClient(
            timeout=settings.DISPATCH_TIMEOUT_SECONDS
        )
        self.max_retries = max(1, max_retries or settings.DISPATCH_MAX_RETRIES)
        self.retry_base_delay = (
            settings.DISPATCH_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )
        self.sleep = sleep

    # -- public channels ---------------------------------------------------

    def send_reminder(self, message: Message, reminder: Reminder, config: Settings) -> DispatchResult:
        remaining = evaluate(message.last_seen, message.trigger_duration, utcnow()).remaining
        lines = [
            "You have a scheduled message that will be sent in "
            f"{format_remaining(remaining)} unless you check in.",
            "",
            f"Recipient: {message.recipient_email}",
        ]
        link = quick_heartbeat_link(config)
        if link:
            lines += ["", "To confirm you are available, open the link below:", link]
        lines += ["", "---", "Sent by deadswitch"]

        result = self._send_email(
            config,
            lambda: OutgoingMail(
                to=self._owner_email(config),
                subject="Check-in required",
                body="\n".join(lines),
            ),
        )
        self._log(result, message, f"reminder {reminder.minutes_before}m")
        return result

    def send_trigger(
        self,
        message: Message,
        content: str,
        config: Settings,
        attachments: list[MailAttachment] | None = None,
    ) -> DispatchResult:
        body = (
            "Someone has arranged for this message to be delivered to you.\n\n"
            f"---\n\n{content}\n\n---\n\nSent by deadswitch"
        )
        result = self._send_email(
            config,
            lambda: OutgoingMail(
                to=message.recipient_email,
                subject="A message for you",
                body=body,
                attachments=attachments or [],
            ),
        )
        self._log(result, message, "release email")
        return result

    def send_owner_notice(
        self, message: Message, webhook_urls: list[str], config: Settings
    ) -> DispatchResult:
        body = (
            "Your scheduled message has been delivered as planned.\n\n"
            f"Recipient: {message.recipient_email}"
        )
        if webhook_urls:
            body += "\n\nTriggered webhooks:\n" + "\n".join(f"- {url}" for url in webhook_urls)
        body += "\n\n---\n\nSent by deadswitch"

        result = self._send_email(
            config,
            lambda: OutgoingMail(
                to=self._owner_email(config), subject="Message delivered", body=body
            ),
        )
        self._log(result, message, "owner notice")
        return result

    def send_webhook(
        self,
        event: dict,
        config: Settings,
        extra_targets: list[WebhookTarget] | None = None,
        delivered: set[str] | None = None,
    ) -> list[DispatchResult]:
        """POST the event to every enabled target; disabled ones are skipped.

        URLs in ``delivered`` already acknowledged this event on an earlier
        attempt and are not posted again.
        """
        targets = webhook_targets(config, extra_targets)
        enabled = [target for target in targets if target.enabled and target.url]
        if not enabled:
            return [DispatchResult(channel=WEBHOOK, target="", ok=False, skipped=True)]
        enabled = [target for target in enabled if target.url not in (delivered or ())]

        body = encode_event(event)
        results = []
        for target in enabled:
            result = self._post_webhook(target, event.get("event", TRIGGER_EVENT), body)
            results.append(result)
            if result.ok:
                logger.info(
                    "Webhook delivered",
                    extra={"target": target.label, "message_id": event.get("message_id")},
                )
            else:
                logger.error(
                    f"Webhook delivery failed: {result.error}",
                    extra={"target": target.label, "message_id": event.get("message_id")},
                )
        return results

    # -- internals -----------------------------------------------------------

    @staticmethod
    def _owner_email(config: Settings) -> str:
        if not config.owner_email:
            raise ConfigurationError("Owner email is not configured")
        return config.owner_email

    def _send_email(self, config: Settings, build: Callable[[], OutgoingMail]) -> DispatchResult:
        try:
            mail = build()
        except ConfigurationError as exc:
            return DispatchResult(channel=EMAIL, target="", ok=False, skipped=True, error=str(exc))

        if not config.smtp_configured:
            return DispatchResult(
                channel=EMAIL,
                target=mail.to,
                ok=False,
                skipped=True,
                error="SMTP is not configured",
            )

        attempts = 0
        last_error: Exception | None = None
        while attempts < self.max_retries:
            attempts += 1
            try:
                self.mailer.send(config, mail)
                return DispatchResult(channel=EMAIL, target=mail.to, ok=True, attempts=attempts)
            except ConfigurationError as exc:
                return DispatchResult(
                    channel=EMAIL,
                    target=mail.to,
                    ok=False,
                    skipped=True,
                    attempts=attempts,
                    error=str(exc),
                )
            except Exception as exc:
                last_error = DispatchError("Email send failed", channel=EMAIL, cause=exc)
            self._backoff(attempts)

        return DispatchResult(
            channel=EMAIL, target=mail.to, ok=False, attempts=attempts, error=str(last_error)
        )

    def _post_webhook(self, target: WebhookTarget, event_name: str, body: bytes) -> DispatchResult:
        attempts = 0
        last_error: DispatchError | None = None
        while attempts < self.max_retries:
            attempts += 1
            try:
                response = self.webhook_client.post(target, event_name, body)
            except requests.RequestException as exc:
                last_error = DispatchError("Webhook request failed", channel=WEBHOOK, cause=exc)
            else:
                if 200 <= response.status_code < 300:
                    return DispatchResult(
                        channel=WEBHOOK,
                        target=target.url,
                        ok=True,
                        attempts=attempts,
                        status=response.status_code,
                    )
                last_error = DispatchError(
                    f"Webhook returned HTTP {response.status_code}",
                    channel=WEBHOOK,
                    status=response.status_code,
                )
                if response.status_code not in RETRYABLE_STATUSES:
                    break
            self._backoff(attempts)

        return DispatchResult(
            channel=WEBHOOK,
            target=target.url,
            ok=False,
            attempts=attempts,
            status=last_error.status if last_error else None,
            error=str(last_error),
        )

    def _backoff(self, attempt: int) -> None:
        if attempt < self.max_retries and self.retry_base_delay > 0:
            self.sleep(self.retry_base_delay * (2 ** (attempt - 1)))

    @staticmethod
    def _log(result: DispatchResult, message: Message, what: str) -> None:
        context = {"message_id": message.id, "attempts": result.attempts}
        if result.ok:
            logger.info(f"Sent {what}", extra=context)
        elif result.skipped:
            logger.warning(f"Skipped {what}: {result.error}", extra=context)
        else:
            logger.error(f"Failed to send {what}: {result.error}", extra=context)
