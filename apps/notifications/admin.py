"""Admin registrations for notifications."""

from __future__ import annotations

from django.contrib import admin  # type: ignore

from .models import MAX_ATTEMPTS, MessageTemplate, Notification


@admin.register(MessageTemplate)
class MessageTemplateAdmin(admin.ModelAdmin):
    list_display = ("name", "template_type", "timing_value", "timing_hour", "timing_minute", "branch", "is_active")
    list_filter = ("template_type", "is_active", "branch")
    search_fields = ("name", "content")
    readonly_fields = ("created_at", "updated_at")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "recipient_type",
        "recipient_id",
        "notification_type",
        "target_date",
        "status",
        "processing_attempts",
        "scheduled_at",
        "sent_at",
        "dead_lettered",
    )
    list_filter = ("status", "recipient_type", "notification_type", "branch")
    search_fields = ("recipient_id", "message")
    date_hierarchy = "scheduled_at"
    readonly_fields = (
        "recipient_type",
        "recipient_id",
        "notification_type",
        "message",
        "status",
        "processing_attempts",
        "scheduled_at",
        "target_date",
        "branch",
        "template",
        "logs",
        "sent_at",
        "created_at",
        "updated_at",
    )

    @admin.display(boolean=True, description=f"Dead-lettered ({MAX_ATTEMPTS} attempts)")
    def dead_lettered(self, obj: Notification) -> bool:
        return obj.is_dead_lettered

    def has_add_permission(self, request):  # type: ignore
        return False
