"""
Switch lifecycle orchestration.

One sweep walks every live active switch: it sends due reminders, or, once
the silence window has elapsed, claims the trigger and releases the
content. Triggered switches whose delivery is still pending are retried on
later sweeps, so a crash between claim and send never loses the message.

Every switch is handled in its own database session and its own error
boundary; a failure in one never stops the others.
"""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields
from datetime import datetime, timedelta

from sqlmodel import Session

from deadswitch.core.clock import utcnow
from deadswitch.core.config import settings
from deadswitch.core.db import SessionFactory
from deadswitch.core.errors import (
    DeadSwitchError,
    DecryptionError,
    InvalidInputError,
    NotFoundError,
    PersistenceConflict,
)
from deadswitch.core.logger import logger_config
from deadswitch.models.message import DeliveryStatus, Lifecycle, Message, MessageStatus
from deadswitch.models.settings import Settings
from deadswitch.services import repository
from deadswitch.services.codec import PayloadCodec
from deadswitch.services.dispatcher import (
    DispatchResult,
    NotificationDispatcher,
    build_trigger_event,
)
from deadswitch.services.mailer import MailAttachment
from deadswitch.services.reminders import claim_reminder, due_reminders
from deadswitch.services.settings import enabled_webhook_targets, runtime_settings
from deadswitch.services.storage import LocalStorage
from deadswitch.services.trigger import evaluate
from deadswitch.services.webhooks import WebhookTarget

logger = logger_config.get_logger("sweep")


@dataclass
class SweepReport:
    scanned: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    triggered: int = 0
    delivered: int = 0
    delivery_retries: int = 0
    delivery_failed: int = 0
    undecryptable: int = 0
    requeued: int = 0
    conflicts: int = 0
    errors: int = 0
    halted: int = 0

    def merge(self, other: "SweepReport") -> None:
        for item in fields(self):
            setattr(self, item.name, getattr(self, item.name) + getattr(other, item.name))


@dataclass
class _SweepContext:
    """Read-mostly snapshot shared by every switch in one sweep."""

    config: Settings
    targets: list[WebhookTarget]
    now: datetime


def _channel_state(results: list[DispatchResult]) -> str:
    if any(not r.ok and not r.skipped for r in results):
        return "failed"
    if any(r.ok for r in results):
        return "ok"
    return "skipped"


class Orchestrator:
    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher: NotificationDispatcher,
        codec: PayloadCodec,
        storage: LocalStorage,
        clock: Callable[[], datetime] = utcnow,
        workers: int | None = None,
        max_delivery_attempts: int | None = None,
        delivery_lease: timedelta | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.codec = codec
        self.storage = storage
        self.clock = clock
        self.workers = max(1, workers or settings.SWEEP_WORKERS)
        self.max_delivery_attempts = max_delivery_attempts or settings.DELIVERY_MAX_ATTEMPTS
        self.delivery_lease = delivery_lease or timedelta(minutes=settings.DELIVERY_LEASE_MINUTES)

    # -- sweep ---------------------------------------------------------------

    def sweep(
        self, now: datetime | None = None, stop: threading.Event | None = None
    ) -> SweepReport:
        """Run one pass over live switches.

        Once ``stop`` is set, switches not yet started are left for the next sweep.
        """
        report = SweepReport()
        with self.session_factory() as session:
            context = self._context(session, now or self.clock())
            report.requeued = repository.requeue_stale_deliveries(
                session, self.delivery_lease, context.now
            )
            # Snapshot before triggering: fresh failures wait for the next sweep
            pending_ids = repository.pending_delivery_ids(session)
            active_ids = repository.active_switch_ids(session)

        report.scanned = len(active_ids)
        report.merge(self._run_all(self._process_switch, active_ids, context, stop))
        report.merge(self._run_all(self._retry_delivery, pending_ids, context, stop))

        logger.info(
            "Sweep finished",
            extra={item.name: getattr(report, item.name) for item in fields(report)},
        )
        return report

    def redeliver(self, message_id: str) -> SweepReport:
        """Explicit retry of a switch whose delivery ran out of attempts."""
        with self.session_factory() as session:
            message = repository.get_switch(session, message_id)
            if message.status != MessageStatus.TRIGGERED:
                raise InvalidInputError("Only triggered switches can be redelivered")
            if message.delivery == DeliveryStatus.UNDECRYPTABLE:
                raise InvalidInputError("Switch is undecryptable and needs operator attention")
            if message.delivery != DeliveryStatus.FAILED:
                raise InvalidInputError("Switch delivery has not failed")
            if not repository.reset_delivery(session, message_id):
                raise PersistenceConflict("Delivery state changed concurrently")
            context = self._context(session, self.clock())

        logger.info("Redelivery requested", extra={"message_id": message_id})
        return self._isolated(self._retry_delivery, message_id, context)

    def _context(self, session: Session, now: datetime) -> _SweepContext:
        return _SweepContext(
            config=runtime_settings(session, self.codec),
            targets=enabled_webhook_targets(session, self.codec),
            now=now,
        )

    def _run_all(
        self,
        handler: Callable[[str, _SweepContext], SweepReport],
        ids: list[str],
        context: _SweepContext,
        stop: threading.Event | None = None,
    ) -> SweepReport:
        report = SweepReport()
        if not ids:
            return report

        def run(message_id: str) -> SweepReport:
            if stop is not None and stop.is_set():
                return SweepReport(halted=1)
            return self._isolated(handler, message_id, context)

        if self.workers == 1 or len(ids) == 1:
            partials = [run(message_id) for message_id in ids]
        else:
            with ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="sweep"
            ) as pool:
                partials = list(pool.map(run, ids))
        for partial in partials:
            report.merge(partial)
        return report

    @staticmethod
    def _isolated(handler, message_id: str, context: _SweepContext) -> SweepReport:
        try:
            return handler(message_id, context)
        except PersistenceConflict:
            return SweepReport(conflicts=1)
        except Exception:
            logger.exception("Switch processing failed", extra={"message_id": message_id})
            return SweepReport(errors=1)

    # -- per switch ----------------------------------------------------------

    def _process_switch(self, message_id: str, context: _SweepContext) -> SweepReport:
        report = SweepReport()
        with self.session_factory() as session:
            try:
                message = repository.get_switch(session, message_id)
            except NotFoundError:
                return report
            if not message.is_active:
                return report

            evaluation = evaluate(message.last_seen, message.trigger_duration, context.now)
            due = due_reminders(message, context.now)

            if evaluation.active:
                self._send_reminders(session, message, due, context, report)
                return report

            if due:
                # Once expired the release supersedes any reminder still pending
                logger.info(
                    "Skipping unsent reminders of expired switch",
                    extra={"message_id": message.id, "skipped": len(due)},
                )

            if not repository.claim_trigger(session, message.id, message.revision):
                logger.info(
                    "Trigger claim lost to a concurrent update",
                    extra={"message_id": message.id},
                )
                report.conflicts += 1
                return report

            report.triggered += 1
            logger.warning(
                "Switch triggered",
                extra={
                    "message_id": message.id,
                    "overdue_seconds": int(evaluation.overdue_by.total_seconds()),
                },
            )
            session.refresh(message)
            self._deliver(session, message, context, report)
        return report

    def _send_reminders(
        self,
        session: Session,
        message: Message,
        due: list,
        context: _SweepContext,
        report: SweepReport,
    ) -> None:
        for reminder in due:
            if not claim_reminder(session, message, reminder):
                # Checked in or claimed elsewhere; the rest are stale too
                report.conflicts += 1
                return
            result = self.dispatcher.send_reminder(message, reminder, context.config)
            if result.ok:
                report.reminders_sent += 1
            else:
                report.reminders_failed += 1

    def _retry_delivery(self, message_id: str, context: _SweepContext) -> SweepReport:
        report = SweepReport()
        with self.session_factory() as session:
            try:
                message = repository.get_switch(session, message_id)
            except NotFoundError:
                return report
            if (
                message.status != MessageStatus.TRIGGERED
                or message.delivery != DeliveryStatus.PENDING
            ):
                return report
            if not repository.claim_delivery(session, message.id, message.delivery_attempts):
                report.conflicts += 1
                return report
            session.refresh(message)
            logger.info(
                "Retrying delivery",
                extra={"message_id": message.id, "attempt": message.delivery_attempts},
            )
            self._deliver(session, message, context, report)
        return report

    # -- delivery ------------------------------------------------------------

    def _deliver(
        self, session: Session, message: Message, context: _SweepContext, report: SweepReport
    ) -> None:
        """Caller holds the sending lease on ``message``."""
        try:
            content = self.codec.decrypt_with_escrow(message.content, message.key_fragment)
        except DecryptionError as exc:
            repository.finish_delivery(
                session,
                message.id,
                delivery=DeliveryStatus.UNDECRYPTABLE,
                last_error=str(exc),
            )
            logger.error(
                "Triggered switch cannot be decrypted; operator action required",
                extra={"message_id": message.id, "error": str(exc)},
            )
            report.undecryptable += 1
            return

        errors = []
        email_state = "ok" if message.email_delivered else None
        if email_state is None:
            try:
                attachments = self._load_attachments(session, message)
            except (DeadSwitchError, OSError) as exc:
                email_state = "failed"
                errors.append(f"email: {exc}")
                logger.error(
                    "Failed to load attachments for release",
                    extra={"message_id": message.id, "error": str(exc)},
                )
            else:
                result = self.dispatcher.send_trigger(
                    message, content, context.config, attachments
                )
                email_state = _channel_state([result])
                if not result.ok and not result.skipped:
                    errors.append(f"email: {result.error}")

        confirmed = set(message.webhooks_delivered or [])
        webhook_state = "ok" if message.webhook_delivered else None
        if webhook_state is None:
            results = self.dispatcher.send_webhook(
                build_trigger_event(message, content),
                context.config,
                context.targets,
                delivered=confirmed,
            )
            confirmed.update(r.target for r in results if r.ok)
            webhook_state = _channel_state(results)
            if webhook_state != "failed" and confirmed:
                webhook_state = "ok"
            errors.extend(f"webhook: {r.error}" for r in results if not r.ok and not r.skipped)
        webhook_urls = sorted(confirmed)

        email_done = email_state == "ok"
        webhook_done = webhook_state == "ok"
        settled = "failed" not in (email_state, webhook_state)

        if settled and (email_done or webhook_done):
            repository.finish_delivery(
                session,
                message.id,
                delivery=DeliveryStatus.DELIVERED,
                email_delivered=email_done,
                webhook_delivered=webhook_done,
                webhooks_delivered=webhook_urls,
                delivered_at=context.now,
                last_error=None,
            )
            report.delivered += 1
            logger.info(
                "Switch content delivered",
                extra={"message_id": message.id, "email": email_done, "webhook": webhook_done},
            )
            self._cleanup_attachments(session, message)
            self.dispatcher.send_owner_notice(message, webhook_urls, context.config)
            return

        if not errors:
            errors.append("no delivery channel is configured")

        exhausted = message.delivery_attempts >= self.max_delivery_attempts
        repository.finish_delivery(
            session,
            message.id,
            delivery=DeliveryStatus.FAILED if exhausted else DeliveryStatus.PENDING,
            email_delivered=email_done,
            webhook_delivered=webhook_done,
            webhooks_delivered=webhook_urls,
            last_error="; ".join(errors),
        )
        if exhausted:
            report.delivery_failed += 1
            logger.error(
                "Delivery attempts exhausted",
                extra={"message_id": message.id, "attempts": message.delivery_attempts},
            )
        else:
            report.delivery_retries += 1
            logger.warning(
                "Delivery incomplete, will retry",
                extra={"message_id": message.id, "attempts": message.delivery_attempts},
            )

    def _load_attachments(self, session: Session, message: Message) -> list[MailAttachment]:
        return [
            MailAttachment(
                filename=attachment.filename,
                mime_type=attachment.mime_type,
                data=self.storage.load(attachment.storage_location),
            )
            for attachment in repository.list_attachments(session, message.id)
        ]

    def _cleanup_attachments(self, session: Session, message: Message) -> None:
        for attachment in repository.list_attachments(session, message.id):
            self.storage.delete(attachment.storage_location)
            attachment.lifecycle = Lifecycle.DELETED
            session.add(attachment)
        session.commit()
