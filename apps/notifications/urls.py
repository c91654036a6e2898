"""URL routing for notifications."""

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import NotificationDispatchStatusView, NotificationDispatchView, NotificationViewSet

router = DefaultRouter()
router.register(r'queue', NotificationViewSet, basename='notification')

urlpatterns = [
    path('dispatch/', NotificationDispatchView.as_view(), name='notification-dispatch'),
    path('dispatch/status/', NotificationDispatchStatusView.as_view(), name='notification-dispatch-status'),
    path('', include(router.urls)),
]
