"""Admin registration for LINE channels."""

from __future__ import annotations

from django.contrib import admin

from .models import BranchLineChannel, LineChannel


class BranchLineChannelInline(admin.TabularInline):
    model = BranchLineChannel
    extra = 0


@admin.register(LineChannel)
class LineChannelAdmin(admin.ModelAdmin):
    list_display = ("name", "channel_id", "is_active", "is_default", "updated_at")
    list_filter = ("is_active", "is_default")
    search_fields = ("name", "channel_id")
    inlines = [BranchLineChannelInline]
