"""Queue operations on the Notification table used by the creator."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from django.db import IntegrityError, transaction  # type: ignore
from django.utils import timezone  # type: ignore

from apps.scheduling.services import SessionInfo

from .errors import DuplicateNotificationError
from .models import MessageTemplate, Notification

logger = logging.getLogger(__name__)

UNIQUE_CONSTRAINT_NAME = "unique_daily_notification"


def notification_exists(
    recipient_id: str,
    recipient_type: str,
    notification_type: str,
    target_date: Optional[date],
) -> bool:
    lookup = {
        "recipient_id": recipient_id,
        "recipient_type": recipient_type,
        "notification_type": notification_type,
    }
    if target_date is None:
        lookup["target_date__isnull"] = True
    else:
        lookup["target_date"] = target_date
    return Notification.objects.filter(**lookup).exists()


def insert_notification(
    *,
    recipient_type: str,
    recipient_id: str,
    notification_type: str,
    message: str,
    target_date: Optional[date] = None,
    scheduled_at: Optional[datetime] = None,
    branch_id: Optional[int] = None,
    template: Optional[MessageTemplate] = None,
) -> Notification:
    """
    Insert a PENDING notification.

    Raises DuplicateNotificationError when a row for the same recipient,
    type and target date exists, including when a concurrent insert wins the
    race and the unique constraint fires.
    """
    if notification_exists(recipient_id, recipient_type, notification_type, target_date):
        raise DuplicateNotificationError(
            f"{recipient_type} {recipient_id} already has {notification_type} for {target_date}"
        )

    try:
        with transaction.atomic():
            return Notification.objects.create(
                recipient_type=recipient_type,
                recipient_id=recipient_id,
                notification_type=notification_type,
                message=message,
                target_date=target_date,
                scheduled_at=scheduled_at or timezone.now(),
                branch_id=branch_id,
                template=template,
                status=Notification.Status.PENDING,
                processing_attempts=0,
                logs={},
            )
    except IntegrityError as exc:
        if UNIQUE_CONSTRAINT_NAME in str(exc) or "UNIQUE constraint failed" in str(exc):
            raise DuplicateNotificationError(
                f"{recipient_type} {recipient_id} already has {notification_type} for {target_date}"
            ) from exc
        raise


def create_notification(**params) -> Optional[Notification]:
    """Idempotent insert: returns None instead of raising on duplicates."""
    try:
        return insert_notification(**params)
    except DuplicateNotificationError as exc:
        logger.info("Duplicate notification prevented: %s", exc)
        return None


def delete_pending_for_reset(
    template: MessageTemplate, notification_type: str, target_date: date
) -> int:
    """Remove still-PENDING rows of a template run; sent or failed rows stay."""
    deleted, _ = Notification.objects.filter(
        template=template,
        notification_type=notification_type,
        target_date=target_date,
        status=Notification.Status.PENDING,
    ).delete()
    return deleted


def already_processed_today(
    notification_type: str, target_date: date, since: datetime
) -> bool:
    """Any row of this type family for target_date created since `since`."""
    return Notification.objects.filter(
        notification_type=notification_type,
        target_date=target_date,
        created_at__gte=since,
    ).exists()


def resolve_branch_id(sessions: Iterable[SessionInfo]) -> Optional[int]:
    """The common branch of all sessions, otherwise the first session's branch."""
    sessions = list(sessions)
    branch_ids = {s.branch_id for s in sessions if s.branch_id is not None}
    if len(branch_ids) == 1:
        return branch_ids.pop()
    if sessions:
        return sessions[0].branch_id
    return None
