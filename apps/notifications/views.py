"""API views for class reminder dispatch."""

from __future__ import annotations

import hmac
import logging
from dataclasses import asdict

from django.conf import settings  # type: ignore
from django.db.models import Count  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from .filters import NotificationFilter
from .models import MAX_ATTEMPTS, MessageTemplate, Notification
from .orchestrator import process_notifications
from .scheduling import local_now
from .serializers import DispatchRequestSerializer, NotificationSerializer
from .worker import WorkerConfig

logger = logging.getLogger(__name__)


class HasCronSecret(permissions.BasePermission):
    """
    Scheduler calls must carry `Authorization: Bearer <CRON_SECRET>`.

    Without a configured secret the endpoint is open only when DEBUG is on.
    """

    message = "Invalid or missing cron secret."

    def has_permission(self, request, view):  # type: ignore
        secret = getattr(settings, "CRON_SECRET", "")
        if not secret:
            return bool(settings.DEBUG)
        header = request.headers.get("Authorization", "")
        allowed = hmac.compare_digest(header, f"Bearer {secret}")
        if not allowed:
            logger.warning("Cron authentication failed (header present: %s)", bool(header))
        return allowed


class LazyAuthenticationMixin:
    """
    Authenticate only when a permission looks at request.user.

    The cron bearer secret is not a JWT; eager authentication would reject it
    before HasCronSecret gets to see the header.
    """

    def perform_authentication(self, request):  # type: ignore
        pass


class NotificationDispatchView(LazyAuthenticationMixin, APIView):
    """GET: scheduler trigger. POST: manual trigger by an administrator."""

    def get_permissions(self):  # type: ignore
        if self.request.method == "GET":
            return [HasCronSecret()]
        return [permissions.IsAdminUser()]

    def get(self, request):  # type: ignore
        logger.info("Scheduled notification dispatch triggered")
        results = process_notifications()
        return Response({"success": True, **results.as_dict()}, status=status.HTTP_200_OK)

    def post(self, request):  # type: ignore
        serializer = DispatchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reset = serializer.validated_data["reset"]
        template_id = serializer.validated_data.get("template_id")

        logger.info(
            "Manual notification dispatch requested by %s (reset=%s, template=%s)",
            request.user,
            reset,
            template_id or "all",
        )
        results = process_notifications(reset=reset, template_id=template_id)
        return Response(
            {"success": True, "manual": True, **results.as_dict()},
            status=status.HTTP_200_OK,
        )


class NotificationDispatchStatusView(LazyAuthenticationMixin, APIView):
    """Read-only wiring check: no notifications are created or sent."""

    permission_classes = [HasCronSecret | permissions.IsAdminUser]

    def get(self, request):  # type: ignore
        by_status = dict(
            Notification.objects.values_list("status").annotate(total=Count("id")).order_by()
        )
        dead_lettered = Notification.objects.filter(
            status=Notification.Status.FAILED, processing_attempts__gte=MAX_ATTEMPTS
        ).count()
        return Response(
            {
                "now": local_now().isoformat(),
                "active_templates": MessageTemplate.objects.dispatchable().count(),
                "queue": {
                    choice: by_status.get(choice, 0) for choice in Notification.Status.values
                },
                "dead_lettered": dead_lettered,
                "worker": asdict(WorkerConfig.from_settings()),
                "cron_secret_configured": bool(getattr(settings, "CRON_SECRET", "")),
            }
        )


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """Queue listing for administrators."""

    queryset = Notification.objects.select_related("branch", "template").order_by("-created_at")
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAdminUser]
    filterset_class = NotificationFilter
