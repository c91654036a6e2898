"""Admin registration for the school directory."""

from __future__ import annotations

from django.contrib import admin

from .models import Booth, Branch, ClassSession, Student, Subject, Teacher


@admin.register(Teacher, Student)
class LineLinkedPersonAdmin(admin.ModelAdmin):
    list_display = ("name", "line_id", "line_notifications_enabled", "updated_at")
    list_filter = ("line_notifications_enabled",)
    search_fields = ("name", "line_id")


@admin.register(ClassSession)
class ClassSessionAdmin(admin.ModelAdmin):
    list_display = ("date", "start_time", "end_time", "teacher", "student", "subject", "booth", "branch")
    list_filter = ("date", "branch")
    search_fields = ("teacher__name", "student__name", "subject__name")
    list_select_related = ("teacher", "student", "subject", "booth", "branch")


admin.site.register(Branch)
admin.site.register(Subject)
admin.site.register(Booth)
