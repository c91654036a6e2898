"""Filters for the notification queue listing."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import MAX_ATTEMPTS, Notification


class NotificationFilter(django_filters.FilterSet):
    status = django_filters.MultipleChoiceFilter(choices=Notification.Status.choices)
    attempts_lt = django_filters.NumberFilter(field_name="processing_attempts", lookup_expr="lt")
    attempts_gte = django_filters.NumberFilter(field_name="processing_attempts", lookup_expr="gte")
    scheduled_before = django_filters.IsoDateTimeFilter(field_name="scheduled_at", lookup_expr="lte")
    scheduled_after = django_filters.IsoDateTimeFilter(field_name="scheduled_at", lookup_expr="gte")
    dead_lettered = django_filters.BooleanFilter(method="filter_dead_lettered")

    class Meta:
        model = Notification
        fields = ["status", "recipient_type", "recipient_id", "notification_type", "target_date", "branch", "template"]

    def filter_dead_lettered(self, queryset, name, value):
        dead = {"status": Notification.Status.FAILED, "processing_attempts__gte": MAX_ATTEMPTS}
        return queryset.filter(**dead) if value else queryset.exclude(**dead)
