"""Notification models.

`MessageTemplate` describes when (day offset + local send time) and what to
send. `Notification` is one rendered reminder for one recipient; the table is
also the delivery queue polled by the worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from django.db import models  # type: ignore
from django.db.models import Q  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from apps.scheduling.models import RecipientType

from .errors import TemplateValidationError

MAX_ATTEMPTS = 3


class MessageTemplateQuerySet(models.QuerySet):
    def dispatchable(self, template_id: Optional[int] = None):
        """Active global before-class templates, optionally a single one."""
        qs = self.filter(
            template_type=MessageTemplate.TemplateType.BEFORE_CLASS,
            is_active=True,
            branch__isnull=True,
        ).select_related("branch")
        if template_id is not None:
            qs = qs.filter(pk=template_id)
        return qs.order_by("timing_hour", "timing_minute", "pk")


class MessageTemplate(models.Model):
    """A reminder rule: when to send and what to say."""

    class TemplateType(models.TextChoices):
        BEFORE_CLASS = "before_class", _("授業前通知")

    class TimingType(models.TextChoices):
        DAYS = "days", _("日前")

    name = models.CharField(max_length=100)
    template_type = models.CharField(
        max_length=30,
        choices=TemplateType.choices,
        default=TemplateType.BEFORE_CLASS,
    )
    content = models.TextField(help_text=_("Use {{variables}} as placeholders"))
    timing_type = models.CharField(max_length=20, choices=TimingType.choices, default=TimingType.DAYS)
    timing_value = models.PositiveSmallIntegerField(
        default=1, help_text=_("Days before the class (0 = same day)")
    )
    timing_hour = models.PositiveSmallIntegerField(default=9)
    timing_minute = models.PositiveSmallIntegerField(default=0)
    class_list_item_template = models.TextField(blank=True)
    class_list_summary_template = models.TextField(blank=True)
    branch = models.ForeignKey(
        "scheduling.Branch",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="message_templates",
        help_text=_("Empty = global template"),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MessageTemplateQuerySet.as_manager()

    class Meta:
        ordering = ["timing_value", "timing_hour", "timing_minute"]

    def __str__(self) -> str:
        return f"{self.name} ({self.timing_value}d @ {self.timing_hour:02d}:{self.timing_minute:02d})"

    def validate_schedule(self) -> None:
        """Raise TemplateValidationError when the rule cannot be evaluated."""
        problems = []
        if self.timing_hour is None or not 0 <= self.timing_hour <= 23:
            problems.append(f"timing_hour out of range: {self.timing_hour}")
        if self.timing_minute is not None and not 0 <= self.timing_minute <= 59:
            problems.append(f"timing_minute out of range: {self.timing_minute}")
        if self.timing_value is None or self.timing_value < 0:
            problems.append(f"timing_value must be >= 0: {self.timing_value}")
        if not (self.content or "").strip():
            problems.append("content is empty")
        if problems:
            raise TemplateValidationError(self.name, problems)


@dataclass(frozen=True)
class DeliveryLog:
    """Outcome of the last delivery attempt, persisted in Notification.logs."""

    success: bool
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.context:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["DeliveryLog"]:
        if not isinstance(data, dict) or "success" not in data:
            return None
        return cls(
            success=bool(data["success"]),
            message=str(data.get("message", "")),
            context=dict(data.get("context") or {}),
        )


class Notification(models.Model):
    """A rendered reminder queued for delivery to one recipient."""

    class Status(models.TextChoices):
        PENDING = "PENDING", _("送信待ち")
        PROCESSING = "PROCESSING", _("処理中")
        SENT = "SENT", _("送信済み")
        FAILED = "FAILED", _("送信失敗")

    recipient_type = models.CharField(max_length=10, choices=RecipientType.choices)
    recipient_id = models.CharField(max_length=64)
    notification_type = models.CharField(max_length=50)
    message = models.TextField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    processing_attempts = models.PositiveSmallIntegerField(default=0)
    scheduled_at = models.DateTimeField()
    target_date = models.DateField(null=True, blank=True)
    branch = models.ForeignKey(
        "scheduling.Branch",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notifications",
    )
    template = models.ForeignKey(
        MessageTemplate,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notifications",
    )
    logs = models.JSONField(default=dict, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["recipient_id", "recipient_type", "notification_type", "target_date"],
                condition=Q(target_date__isnull=False),
                name="unique_daily_notification",
            )
        ]
        indexes = [
            models.Index(fields=["status", "processing_attempts", "scheduled_at"]),
            models.Index(fields=["notification_type", "target_date", "created_at"]),
        ]
        ordering = ["scheduled_at"]

    def __str__(self) -> str:
        return f"{self.notification_type} to {self.recipient_type} {self.recipient_id} [{self.status}]"

    @property
    def delivery_log(self) -> Optional[DeliveryLog]:
        return DeliveryLog.from_dict(self.logs)

    @property
    def is_dead_lettered(self) -> bool:
        return self.status == self.Status.FAILED and self.processing_attempts >= MAX_ATTEMPTS
