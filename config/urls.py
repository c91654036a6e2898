"""URL configuration for the class reminder project.

The `urlpatterns` list routes URLs to views. It includes the Django admin,
the notification dispatch API and the generated API schema.
"""
from django.contrib import admin  # type: ignore
from django.urls import path, include  # type: ignore
from drf_spectacular.views import SpectacularAPIView  # type: ignore

urlpatterns = [
    path('admin/', admin.site.urls),
    # Application URLs
    path('api/v1/notifications/', include('apps.notifications.urls')),
    path('api/v1/schema/', SpectacularAPIView.as_view(), name='schema'),
]
