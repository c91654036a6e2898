"""Shared fixtures: a small school directory and message templates."""

from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest

from apps.notifications.models import MessageTemplate
from apps.scheduling.models import Booth, Branch, ClassSession, Student, Subject, Teacher

TOKYO = ZoneInfo("Asia/Tokyo")


@pytest.fixture
def now_local():
    """08:05 JST on 2025-04-01, inside the window of an 08:00 template."""
    return datetime(2025, 4, 1, 8, 5, tzinfo=TOKYO)


@pytest.fixture
def branch(db):
    return Branch.objects.create(name="渋谷校")


@pytest.fixture
def teacher(db):
    return Teacher.objects.create(name="田中先生", line_id="U-teacher-1")


@pytest.fixture
def student(db):
    return Student.objects.create(name="山田太郎", line_id="U-student-1")


@pytest.fixture
def make_session(db, branch):
    subjects: dict[str, Subject] = {}

    def _make(date, start, end, *, teacher=None, student=None, subject="数学", booth="A", branch=branch):
        if subject and subject not in subjects:
            subjects[subject] = Subject.objects.create(name=subject)
        return ClassSession.objects.create(
            date=date,
            start_time=time.fromisoformat(start),
            end_time=time.fromisoformat(end),
            teacher=teacher,
            student=student,
            subject=subjects.get(subject) if subject else None,
            booth=Booth.objects.create(name=booth, branch=branch) if booth else None,
            branch=branch,
        )

    return _make


@pytest.fixture
def make_template(db):
    def _make(**overrides):
        values = {
            "name": "当日朝の通知",
            "content": "{{recipientName}}さん\n{{classDate}}の授業\n\n{{dailyClassList}}",
            "timing_value": 0,
            "timing_hour": 8,
            "timing_minute": 0,
        }
        values.update(overrides)
        return MessageTemplate.objects.create(**values)

    return _make


@pytest.fixture
def same_day_template(make_template):
    return make_template()


@pytest.fixture
def booked_day(now_local, teacher, student, make_session):
    """Two sessions of the teacher/student pair on the day of now_local."""
    day = now_local.date()
    make_session(day, "09:00", "10:00", teacher=teacher, student=student, subject="数学")
    make_session(day, "11:00", "12:00", teacher=teacher, student=student, subject="英語")
    return day
