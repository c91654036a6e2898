"""Directory models for the school schedule."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class RecipientType(models.TextChoices):
    """Who a class reminder is addressed to."""

    TEACHER = "TEACHER", _("講師")
    STUDENT = "STUDENT", _("生徒")


class Branch(models.Model):
    """A school branch (校舎)."""

    name = models.CharField(max_length=100)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class LineLinkedPerson(models.Model):
    """Common fields of people who can receive LINE reminders."""

    name = models.CharField(max_length=100)
    line_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    line_notifications_enabled = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    @property
    def can_receive_line(self) -> bool:
        return bool(self.line_notifications_enabled and self.line_id)


class Teacher(LineLinkedPerson):
    pass


class Student(LineLinkedPerson):
    pass


class Subject(models.Model):
    name = models.CharField(max_length=100)

    def __str__(self) -> str:
        return self.name


class Booth(models.Model):
    name = models.CharField(max_length=50)
    branch = models.ForeignKey(
        Branch, on_delete=models.CASCADE, null=True, blank=True, related_name="booths"
    )

    def __str__(self) -> str:
        return self.name


class ClassSession(models.Model):
    """A single class on a given day; either side may still be unassigned."""

    date = models.DateField(db_index=True)
    start_time = models.TimeField()
    end_time = models.TimeField()
    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="class_sessions",
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="class_sessions",
    )
    subject = models.ForeignKey(
        Subject, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    booth = models.ForeignKey(
        Booth, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    branch = models.ForeignKey(
        Branch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="class_sessions",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["date", "start_time"]
        indexes = [models.Index(fields=["date", "start_time"])]

    def __str__(self) -> str:
        return f"{self.date} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return max(end - start, 0)
