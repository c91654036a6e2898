"""Serializers for the notification API."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import MessageTemplate, Notification


class DispatchRequestSerializer(serializers.Serializer):
    """Body of a manual dispatch trigger."""

    reset = serializers.BooleanField(default=False)
    template_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate_template_id(self, value):
        if value is not None and not MessageTemplate.objects.filter(pk=value).exists():
            raise serializers.ValidationError("Template not found.")
        return value


class NotificationSerializer(serializers.ModelSerializer):
    """Read-only view of a queued notification."""

    is_dead_lettered = serializers.BooleanField(read_only=True)

    class Meta:
        model = Notification
        fields = [
            "id",
            "recipient_type",
            "recipient_id",
            "notification_type",
            "message",
            "status",
            "processing_attempts",
            "is_dead_lettered",
            "scheduled_at",
            "target_date",
            "branch",
            "template",
            "logs",
            "sent_at",
            "created_at",
        ]
        read_only_fields = fields
