"""Creation of class reminder notifications from message templates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from django.conf import settings  # type: ignore

from apps.scheduling.models import RecipientType
from apps.scheduling.services import Recipient, recipients_with_classes

from .errors import TemplateValidationError
from .models import MessageTemplate
from .rendering import render_reminder
from .scheduling import (
    is_within_send_window,
    local_now,
    minutes_past_schedule,
    notification_type_for,
    start_of_local_day,
    target_date_for,
)
from .services import (
    already_processed_today,
    create_notification,
    delete_pending_for_reset,
    resolve_branch_id,
)

logger = logging.getLogger(__name__)

DirectoryLookup = Callable[..., List[Recipient]]


@dataclass
class CreationResult:
    created: int = 0
    skipped_duplicates: int = 0
    deleted: int = 0
    templates_processed: int = 0
    created_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class NotificationCreator:
    """
    Turns active before-class templates into per-recipient notifications.

    Errors are collected per template and per recipient in the result; they
    never propagate to the caller.
    """

    def __init__(
        self,
        directory: DirectoryLookup = recipients_with_classes,
        daily_guard: Optional[bool] = None,
    ):
        self.directory = directory
        if daily_guard is None:
            daily_guard = settings.NOTIFICATIONS.get("DAILY_GUARD", True)
        self.daily_guard = daily_guard

    def run(
        self,
        reset: bool = False,
        template_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CreationResult:
        result = CreationResult()
        now_local = local_now(now)

        templates = list(MessageTemplate.objects.dispatchable(template_id))
        logger.info(
            "Found %s active templates (reset=%s, template_id=%s)",
            len(templates),
            reset,
            template_id,
        )

        for template in templates:
            try:
                self._process_template(template, now_local, reset, result)
            except TemplateValidationError as exc:
                logger.warning("Skipping malformed template %s: %s", template.pk, exc)
                result.errors.append(str(exc))
            except Exception as exc:
                logger.error("Error processing template %s: %s", template.name, exc, exc_info=True)
                result.errors.append(f"Template {template.name}: {exc}")

        return result

    def _process_template(
        self,
        template: MessageTemplate,
        now_local: datetime,
        reset: bool,
        result: CreationResult,
    ) -> None:
        template.validate_schedule()

        if not is_within_send_window(now_local, template.timing_hour, template.timing_minute, reset):
            logger.debug(
                "Template %s not in send window (%s minutes past %02d:%02d)",
                template.name,
                minutes_past_schedule(now_local, template.timing_hour, template.timing_minute),
                template.timing_hour,
                template.timing_minute or 0,
            )
            return

        target_date = target_date_for(now_local, template.timing_value)
        notification_type = notification_type_for(template.timing_value)
        result.templates_processed += 1

        if reset:
            deleted = delete_pending_for_reset(template, notification_type, target_date)
            if deleted:
                logger.info(
                    "Reset: deleted %s PENDING notifications for template %s",
                    deleted,
                    template.name,
                )
            result.deleted += deleted
        elif self.daily_guard and already_processed_today(
            notification_type, target_date, since=start_of_local_day(now_local)
        ):
            logger.info(
                "Template %s already processed today for target date %s",
                template.name,
                target_date,
            )
            return

        recipients = self.directory(target_date, RecipientType.TEACHER) + self.directory(
            target_date, RecipientType.STUDENT
        )
        logger.info(
            "Template %s: %s recipients with classes on %s",
            template.name,
            len(recipients),
            target_date,
        )

        for recipient in recipients:
            try:
                self._create_for_recipient(
                    template, recipient, now_local, target_date, notification_type, result
                )
            except Exception as exc:
                logger.error(
                    "Failed to create notification for %s %s: %s",
                    recipient.recipient_type,
                    recipient.recipient_id,
                    exc,
                    exc_info=True,
                )
                result.errors.append(f"Failed to create notification for {recipient.name}: {exc}")

    def _create_for_recipient(
        self,
        template: MessageTemplate,
        recipient: Recipient,
        now_local: datetime,
        target_date,
        notification_type: str,
        result: CreationResult,
    ) -> None:
        message = render_reminder(
            template.content,
            recipient,
            target_date=target_date,
            current_date=now_local.date(),
            item_template=template.class_list_item_template,
            summary_template=template.class_list_summary_template,
            fallback_branch_name=template.branch.name if template.branch else "",
        )

        branch_id = resolve_branch_id(recipient.sessions)
        if branch_id is None:
            logger.warning(
                "No branch for %s %s; sessions have no branch information",
                recipient.recipient_type,
                recipient.name,
            )

        notification = create_notification(
            recipient_type=recipient.recipient_type,
            recipient_id=recipient.recipient_id,
            notification_type=notification_type,
            message=message,
            target_date=target_date,
            scheduled_at=now_local,
            branch_id=branch_id,
            template=template,
        )
        if notification is None:
            result.skipped_duplicates += 1
            return

        result.created += 1
        result.created_ids.append(notification.pk)
        logger.info(
            "Created notification %s for %s %s",
            notification.pk,
            recipient.recipient_type,
            recipient.name,
        )
