"""One dispatch run: create reminders, then deliver everything that is due.

`process_notifications` is what the beat task, the HTTP trigger and the
management command call. It never raises; whatever goes wrong ends up in the
returned result's `errors`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore

from .creator import CreationResult, NotificationCreator
from .errors import CriticalDispatchError
from .models import Notification
from .scheduling import local_now
from .worker import NotificationWorker, WorkerConfig

logger = logging.getLogger(__name__)

# Tuning of the delivery phase of a dispatch run; the standalone worker task
# uses settings.NOTIFICATION_WORKER instead.
DISPATCH_WORKER_TUNING = {
    "batch_size": 20,
    "max_concurrency": 5,
    "max_execution_time_ms": 120_000,
}


@dataclass
class DispatchResult:
    phase: str = "starting"
    reset: bool = False
    template_id: Optional[int] = None
    notifications_created: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    deleted_notifications: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def confirm_created_visible(created_ids: List[int], settle_delay: float) -> bool:
    """
    Read back the rows created in this run before delivery starts.

    The settle delay is only spent when the first read-back comes up short.
    """
    if not created_ids:
        return True
    expected = len(set(created_ids))
    visible = Notification.objects.filter(pk__in=created_ids).count()
    if visible >= expected:
        return True
    logger.warning("Only %s of %s created notifications visible; waiting %ss", visible, expected, settle_delay)
    if settle_delay:
        time.sleep(settle_delay)
    return Notification.objects.filter(pk__in=created_ids).count() >= expected


def process_notifications(
    reset: bool = False,
    template_id: Optional[int] = None,
    *,
    creator: Optional[NotificationCreator] = None,
    worker: Optional[NotificationWorker] = None,
    stop_event: Optional[threading.Event] = None,
) -> DispatchResult:
    started = time.monotonic()
    results = DispatchResult(reset=reset, template_id=template_id)

    logger.info(
        "=== NOTIFICATION DISPATCH STARTED === now=%s reset=%s template=%s",
        local_now().isoformat(),
        reset,
        template_id or "all",
    )

    try:
        # PHASE 1: create notifications
        results.phase = "creating"
        creation: CreationResult = (creator or NotificationCreator()).run(
            reset=reset, template_id=template_id, now=timezone.now()
        )
        results.notifications_created = creation.created
        results.deleted_notifications = creation.deleted
        results.errors.extend(creation.errors)

        settle_delay = float(settings.NOTIFICATIONS.get("SETTLE_DELAY_SECONDS", 0) or 0)
        if not confirm_created_visible(creation.created_ids, settle_delay):
            results.errors.append("Some created notifications were not visible before sending")

        # PHASE 2: send notifications
        results.phase = "sending"
        if stop_event is not None and stop_event.is_set():
            logger.info("Stop requested before delivery; skipping worker")
        else:
            worker = worker or NotificationWorker(
                WorkerConfig.from_settings(**DISPATCH_WORKER_TUNING),
                stop_event=stop_event,
            )
            worker_result = worker.run()
            results.notifications_sent = worker_result.successful
            results.notifications_failed = worker_result.failed

        results.phase = "completed"
    except Exception as exc:
        error = CriticalDispatchError(f"Critical error: {exc}")
        logger.exception("Critical error in notification processing")
        results.phase = "error"
        results.errors.append(str(error))

    results.execution_time_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "=== NOTIFICATION DISPATCH %s === created=%s sent=%s failed=%s deleted=%s errors=%s",
        results.phase.upper(),
        results.notifications_created,
        results.notifications_sent,
        results.notifications_failed,
        results.deleted_notifications,
        len(results.errors),
        extra={"dispatch": results.as_dict()},
    )
    return results
