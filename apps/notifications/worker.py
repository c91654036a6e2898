"""Delivery worker draining the Notification queue.

The worker polls due PENDING/FAILED rows, claims each one with a conditional
UPDATE (the claim is the lease that keeps two workers from sending the same
row), resolves the recipient's LINE id and channel at send time and pushes
the message. Sends of one chunk run in parallel threads; database reads and
writes stay on the calling thread. A row that fails MAX_ATTEMPTS times stays
FAILED and is never polled again.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Sequence, Set

from django.conf import settings  # type: ignore
from django.db.models import F  # type: ignore
from django.utils import timezone  # type: ignore

from apps.line.client import LineApiError, send_line_multicast
from apps.line.services import ChannelCredentials, get_channel_credentials
from apps.scheduling.services import resolve_line_identity

from .errors import IdentityUnavailableError, NotificationError, TransportError
from .models import MAX_ATTEMPTS, DeliveryLog, Notification

logger = logging.getLogger(__name__)

Sender = Callable[[Sequence[str], str, ChannelCredentials], object]
IdentityResolver = Callable[[str, str], Optional[str]]
CredentialsResolver = Callable[[Optional[int]], Optional[ChannelCredentials]]

CLAIMABLE_STATUSES = (Notification.Status.PENDING, Notification.Status.FAILED)


@dataclass(frozen=True)
class WorkerConfig:
    batch_size: int = 10
    max_concurrency: int = 3
    max_execution_time_ms: int = 300_000
    delay_between_batches_ms: int = 1_000
    lease_seconds: int = 600

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.max_execution_time_ms < 0 or self.delay_between_batches_ms < 0:
            raise ValueError("time limits must be >= 0")

    @classmethod
    def from_settings(cls, **overrides) -> "WorkerConfig":
        """Defaults from settings.NOTIFICATION_WORKER, then explicit overrides."""
        conf = getattr(settings, "NOTIFICATION_WORKER", {})
        values = {
            "batch_size": conf.get("BATCH_SIZE", cls.batch_size),
            "max_concurrency": conf.get("CONCURRENCY", cls.max_concurrency),
            "max_execution_time_ms": conf.get("MAX_TIME_MS", cls.max_execution_time_ms),
            "delay_between_batches_ms": conf.get("DELAY_MS", cls.delay_between_batches_ms),
            "lease_seconds": conf.get("LEASE_SECONDS", cls.lease_seconds),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class WorkerResult:
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    expired_leases: int = 0
    execution_time_ms: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Delivery:
    """One claimed notification on its way through a chunk."""

    notification: Notification
    attempt: int
    line_id: Optional[str] = None
    credentials: Optional[ChannelCredentials] = None
    error: Optional[Exception] = None
    response: object = None

    @property
    def ready(self) -> bool:
        return self.error is None


@dataclass
class _ChunkOutcome:
    successful: int = 0
    failed: int = 0
    skipped: int = 0


class NotificationWorker:
    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        *,
        sender: Sender = send_line_multicast,
        identity_resolver: IdentityResolver = resolve_line_identity,
        credentials_resolver: CredentialsResolver = get_channel_credentials,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config or WorkerConfig.from_settings()
        self.sender = sender
        self.identity_resolver = identity_resolver
        self.credentials_resolver = credentials_resolver
        self.stop_event = stop_event or threading.Event()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> WorkerResult:
        started = time.monotonic()
        result = WorkerResult()
        handled: Set[int] = set()

        logger.info("Starting notification worker", extra={"config": asdict(self.config)})
        result.expired_leases = self.expire_stale_claims()

        with ThreadPoolExecutor(
            max_workers=self.config.max_concurrency,
            thread_name_prefix="notification-send",
        ) as executor:
            while self._elapsed_ms(started) < self.config.max_execution_time_ms:
                if self.stop_event.is_set():
                    logger.info("Stop requested; leaving worker loop")
                    break

                batch = self.fetch_due(exclude_ids=handled)
                if not batch:
                    logger.info("No pending notifications found. Worker completed.")
                    break

                logger.info("Processing batch %s with %s notifications", result.batches + 1, len(batch))
                outcome = self._process_batch(batch, executor)

                handled |= {n.pk for n in batch}
                result.total_processed += len(batch)
                result.successful += outcome.successful
                result.failed += outcome.failed
                result.skipped += outcome.skipped
                result.batches += 1
                logger.info(
                    "Batch %s completed: %s successful, %s failed, %s skipped",
                    result.batches,
                    outcome.successful,
                    outcome.failed,
                    outcome.skipped,
                )

                if len(batch) < self.config.batch_size:
                    # Everything due at fetch time has been handled
                    break
                if self.config.delay_between_batches_ms:
                    # wait() returns early when a stop is requested
                    self.stop_event.wait(self.config.delay_between_batches_ms / 1000)

        result.execution_time_ms = self._elapsed_ms(started)
        logger.info("Notification worker completed", extra={"result": result.as_dict()})
        return result

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # ------------------------------------------------------------------
    # Queue access
    # ------------------------------------------------------------------

    def fetch_due(self, exclude_ids: Optional[Set[int]] = None) -> List[Notification]:
        """Next batch: fresh rows before retries, then oldest scheduled first."""
        qs = Notification.objects.filter(
            status__in=CLAIMABLE_STATUSES,
            processing_attempts__lt=MAX_ATTEMPTS,
            scheduled_at__lte=timezone.now(),
        )
        if exclude_ids:
            qs = qs.exclude(pk__in=exclude_ids)
        return list(qs.order_by("processing_attempts", "scheduled_at", "pk")[: self.config.batch_size])

    def claim(self, notification: Notification) -> Optional[int]:
        """
        Atomically move a row to PROCESSING and count the attempt.

        Returns the new attempt number, or None when another worker claimed
        the row first (or it reached the attempt cap meanwhile).
        """
        claimed = Notification.objects.filter(
            pk=notification.pk,
            status__in=CLAIMABLE_STATUSES,
            processing_attempts__lt=MAX_ATTEMPTS,
        ).update(
            status=Notification.Status.PROCESSING,
            processing_attempts=F("processing_attempts") + 1,
            updated_at=timezone.now(),
        )
        if not claimed:
            return None
        attempt = (
            Notification.objects.filter(pk=notification.pk)
            .values_list("processing_attempts", flat=True)
            .get()
        )
        notification.status = Notification.Status.PROCESSING
        notification.processing_attempts = attempt
        return attempt

    def expire_stale_claims(self) -> int:
        """
        Fail rows left in PROCESSING longer than the lease.

        Their attempt was already counted by the claim, so they re-enter the
        retry cycle (or stay dead-lettered at the cap).
        """
        cutoff = timezone.now() - timedelta(seconds=self.config.lease_seconds)
        stale = list(
            Notification.objects.filter(
                status=Notification.Status.PROCESSING, updated_at__lt=cutoff
            ).only("id", "recipient_type", "recipient_id", "notification_type", "branch_id", "processing_attempts")
        )
        expired = 0
        for notification in stale:
            log = DeliveryLog(
                success=False,
                message="Processing lease expired before the send was confirmed",
                context=self._log_context(notification, notification.processing_attempts),
            )
            expired += Notification.objects.filter(
                pk=notification.pk, status=Notification.Status.PROCESSING
            ).update(status=Notification.Status.FAILED, logs=log.to_dict(), updated_at=timezone.now())
        if expired:
            logger.warning("Expired %s stale PROCESSING notifications", expired)
        return expired

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    def _process_batch(self, batch: List[Notification], executor: ThreadPoolExecutor) -> _ChunkOutcome:
        total = _ChunkOutcome()
        size = self.config.max_concurrency
        for start in range(0, len(batch), size):
            chunk = batch[start:start + size]
            outcome = self._process_chunk(chunk, executor)
            total.successful += outcome.successful
            total.failed += outcome.failed
            total.skipped += outcome.skipped
        return total

    def _process_chunk(self, chunk: List[Notification], executor: ThreadPoolExecutor) -> _ChunkOutcome:
        outcome = _ChunkOutcome()
        deliveries: List[_Delivery] = []

        for notification in chunk:
            attempt = self.claim(notification)
            if attempt is None:
                logger.info("Notification %s was claimed elsewhere; skipping", notification.pk)
                outcome.skipped += 1
                continue
            deliveries.append(self._prepare(notification, attempt))

        # Scatter: every ready send runs; a failing one does not cancel the rest
        futures = {
            id(delivery): executor.submit(
                self.sender, [delivery.line_id], delivery.notification.message, delivery.credentials
            )
            for delivery in deliveries
            if delivery.ready
        }

        # Gather
        for delivery in deliveries:
            future = futures.get(id(delivery))
            if future is not None:
                try:
                    delivery.response = future.result()
                except LineApiError as exc:
                    delivery.error = TransportError(str(exc))
                except Exception as exc:
                    delivery.error = TransportError(f"Unexpected send error: {exc}")

            try:
                if delivery.ready:
                    self._mark_sent(delivery)
                    outcome.successful += 1
                else:
                    self._mark_failed(delivery)
                    outcome.failed += 1
            except Exception:
                logger.exception("Could not record outcome of notification %s", delivery.notification.pk)
                outcome.failed += 1

        return outcome

    def _prepare(self, notification: Notification, attempt: int) -> _Delivery:
        """Send-time lookups of identity and channel; failures are recorded on the delivery."""
        delivery = _Delivery(notification=notification, attempt=attempt)
        try:
            delivery.line_id = self.identity_resolver(
                notification.recipient_type, notification.recipient_id
            )
            if not delivery.line_id:
                raise IdentityUnavailableError(
                    f"No LINE ID found or notifications disabled for "
                    f"{notification.recipient_type} {notification.recipient_id}"
                )
            delivery.credentials = self.credentials_resolver(notification.branch_id)
            if delivery.credentials is None:
                raise TransportError(f"No LINE channel configured for branch {notification.branch_id}")
        except NotificationError as exc:
            delivery.error = exc
        except Exception as exc:
            delivery.error = TransportError(f"Could not prepare delivery: {exc}")
        return delivery

    # ------------------------------------------------------------------
    # Outcome recording
    # ------------------------------------------------------------------

    @staticmethod
    def _log_context(notification: Notification, attempt: int) -> dict:
        return {
            "notification_id": notification.pk,
            "recipient_type": notification.recipient_type,
            "recipient_id": notification.recipient_id,
            "notification_type": notification.notification_type,
            "branch_id": notification.branch_id,
            "attempt": attempt,
            "timestamp": timezone.now().isoformat(),
        }

    def _mark_sent(self, delivery: _Delivery) -> None:
        notification = delivery.notification
        log = DeliveryLog(success=True, message="Message sent successfully via LINE")
        now = timezone.now()
        Notification.objects.filter(pk=notification.pk).update(
            status=Notification.Status.SENT,
            sent_at=now,
            logs=log.to_dict(),
            updated_at=now,
        )
        notification.status = Notification.Status.SENT
        notification.sent_at = now
        notification.logs = log.to_dict()

    def _mark_failed(self, delivery: _Delivery) -> None:
        notification = delivery.notification
        error = delivery.error
        context = self._log_context(notification, delivery.attempt)
        context["error_type"] = type(error).__name__
        log = DeliveryLog(success=False, message=str(error), context=context)

        Notification.objects.filter(pk=notification.pk).update(
            status=Notification.Status.FAILED,
            logs=log.to_dict(),
            updated_at=timezone.now(),
        )
        notification.status = Notification.Status.FAILED
        notification.logs = log.to_dict()

        dead_lettered = delivery.attempt >= MAX_ATTEMPTS
        logger.error(
            "Failed to process notification %s (attempt %s/%s)%s: %s",
            notification.pk,
            delivery.attempt,
            MAX_ATTEMPTS,
            "; dead-lettered" if dead_lettered else "",
            error,
            extra={"notification": context},
        )
