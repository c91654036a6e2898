from datetime import datetime, timedelta

import pytest
from django.db import IntegrityError

from apps.notifications import services
from apps.notifications.creator import NotificationCreator
from apps.notifications.models import Notification
from apps.scheduling.models import RecipientType, Student, Teacher


@pytest.mark.django_db
def test_creates_one_notification_per_recipient_in_window(same_day_template, booked_day, now_local, branch):
    result = NotificationCreator().run(now=now_local)

    assert result.errors == []
    assert result.created == 2
    assert result.templates_processed == 1
    rows = Notification.objects.order_by("recipient_type")
    assert [r.recipient_type for r in rows] == [RecipientType.STUDENT, RecipientType.TEACHER]
    for row in rows:
        assert row.status == Notification.Status.PENDING
        assert row.processing_attempts == 0
        assert row.notification_type == "DAILY_SUMMARY_SAMEDAY"
        assert row.target_date == booked_day
        assert row.branch_id == branch.pk
        assert row.template_id == same_day_template.pk
    assert set(result.created_ids) == {r.pk for r in rows}


@pytest.mark.django_db
def test_out_of_window_creates_nothing(same_day_template, booked_day, now_local):
    result = NotificationCreator().run(now=now_local.replace(minute=20))

    assert result.created == 0
    assert result.templates_processed == 0
    assert not Notification.objects.exists()


@pytest.mark.django_db
def test_rendered_message_lists_the_classes(same_day_template, booked_day, now_local, teacher):
    NotificationCreator().run(now=now_local)

    message = Notification.objects.get(recipient_type=RecipientType.TEACHER).message
    assert message.startswith("田中先生さん\n2025年4月1日の授業")
    assert "【1】数学" in message
    assert "【2】英語" in message
    assert "授業数: 2コマ" in message


@pytest.mark.django_db
def test_second_run_is_idempotent(same_day_template, booked_day, now_local):
    creator = NotificationCreator(daily_guard=False)
    creator.run(now=now_local)

    second = creator.run(now=now_local + timedelta(minutes=5))

    assert second.created == 0
    assert second.skipped_duplicates == 2
    assert Notification.objects.count() == 2


@pytest.mark.django_db
def test_daily_guard_skips_template_already_processed_today(same_day_template, booked_day, now_local):
    NotificationCreator(daily_guard=True).run(now=now_local)
    Notification.objects.filter(recipient_type=RecipientType.STUDENT).delete()

    result = NotificationCreator(daily_guard=True).run(now=now_local + timedelta(minutes=5))

    assert result.created == 0
    assert Notification.objects.count() == 1


@pytest.mark.django_db
def test_opted_out_and_unlinked_recipients_are_skipped(same_day_template, now_local, make_session):
    day = now_local.date()
    opted_out = Teacher.objects.create(name="佐藤先生", line_id="U-2", line_notifications_enabled=False)
    unlinked = Student.objects.create(name="鈴木花子", line_id="")
    make_session(day, "09:00", "10:00", teacher=opted_out, student=unlinked)

    result = NotificationCreator().run(now=now_local)

    assert result.created == 0
    assert not Notification.objects.exists()


@pytest.mark.django_db
def test_session_without_counterpart_is_ignored(same_day_template, now_local, teacher, make_session):
    make_session(now_local.date(), "09:00", "10:00", teacher=teacher, student=None)

    assert NotificationCreator().run(now=now_local).created == 0


@pytest.mark.django_db
def test_reset_recreates_pending_and_keeps_sent(same_day_template, booked_day, now_local, teacher):
    pending = Notification.objects.create(
        recipient_type=RecipientType.TEACHER,
        recipient_id=str(teacher.pk),
        notification_type="DAILY_SUMMARY_SAMEDAY",
        message="old",
        target_date=booked_day,
        scheduled_at=now_local,
        template=same_day_template,
    )
    sent = Notification.objects.create(
        recipient_type=RecipientType.TEACHER,
        recipient_id=str(teacher.pk),
        notification_type="DAILY_SUMMARY_1D",
        message="yesterday's reminder",
        target_date=booked_day,
        scheduled_at=now_local - timedelta(days=1),
        status=Notification.Status.SENT,
        processing_attempts=1,
    )

    # Outside the window: only reset makes the template fire
    result = NotificationCreator().run(reset=True, now=now_local.replace(hour=20))

    assert result.deleted == 1
    assert result.created == 2
    assert not Notification.objects.filter(pk=pending.pk).exists()
    recreated = Notification.objects.get(
        recipient_type=RecipientType.TEACHER,
        recipient_id=str(teacher.pk),
        notification_type="DAILY_SUMMARY_SAMEDAY",
    )
    assert recreated.status == Notification.Status.PENDING
    assert recreated.message != "old"
    sent.refresh_from_db()
    assert sent.status == Notification.Status.SENT
    assert sent.message == "yesterday's reminder"


@pytest.mark.django_db
def test_reset_does_not_delete_sent_rows_of_same_run(same_day_template, booked_day, now_local):
    NotificationCreator().run(now=now_local)
    Notification.objects.update(status=Notification.Status.SENT)

    result = NotificationCreator().run(reset=True, now=now_local)

    assert result.deleted == 0
    assert result.created == 0
    assert result.skipped_duplicates == 2
    assert Notification.objects.filter(status=Notification.Status.SENT).count() == 2


@pytest.mark.django_db
def test_malformed_template_does_not_block_others(make_template, booked_day, now_local):
    make_template(name="broken", timing_hour=8, content="   ")
    make_template(name="ok")

    result = NotificationCreator().run(now=now_local)

    assert result.created == 2
    assert len(result.errors) == 1
    assert "broken" in result.errors[0]


@pytest.mark.django_db
def test_template_filter_and_inactive_templates(make_template, booked_day, now_local):
    make_template(name="inactive", is_active=False)
    chosen = make_template(name="chosen")
    make_template(name="other", timing_value=1)

    result = NotificationCreator().run(template_id=chosen.pk, now=now_local)

    assert result.templates_processed == 1
    assert set(Notification.objects.values_list("template_id", flat=True)) == {chosen.pk}


@pytest.mark.django_db
def test_concurrent_insert_is_treated_as_duplicate(same_day_template, booked_day, now_local, monkeypatch):
    original_create = Notification.objects.create
    calls = {"n": 0}

    def racing_create(**kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise IntegrityError("UNIQUE constraint failed: notifications_notification.recipient_id")
        return original_create(**kwargs)

    monkeypatch.setattr(Notification.objects, "create", racing_create)

    result = NotificationCreator().run(now=now_local)

    assert result.errors == []
    assert result.skipped_duplicates == 1
    assert result.created == 1


@pytest.mark.django_db
def test_other_insert_errors_are_recorded_per_recipient(same_day_template, booked_day, now_local, monkeypatch):
    def failing_insert(**kwargs):
        raise IntegrityError("NOT NULL constraint failed: notifications_notification.message")

    monkeypatch.setattr(services, "insert_notification", failing_insert)

    result = NotificationCreator().run(now=now_local)

    assert result.created == 0
    assert len(result.errors) == 2
    assert all(e.startswith("Failed to create notification for") for e in result.errors)


@pytest.mark.django_db
def test_directory_is_injectable(same_day_template, now_local):
    seen = []

    def directory(target_date, recipient_type):
        seen.append((target_date, recipient_type))
        return []

    NotificationCreator(directory=directory).run(now=now_local)

    assert seen == [
        (now_local.date(), RecipientType.TEACHER),
        (now_local.date(), RecipientType.STUDENT),
    ]


@pytest.mark.django_db
def test_next_day_template_targets_tomorrow(make_template, teacher, student, make_session, now_local):
    make_template(name="前日通知", timing_value=1, timing_hour=20, timing_minute=30)
    tomorrow = now_local.date() + timedelta(days=1)
    make_session(tomorrow, "09:00", "10:00", teacher=teacher, student=student)

    result = NotificationCreator().run(now=datetime(2025, 4, 1, 20, 40, tzinfo=now_local.tzinfo))

    assert result.created == 2
    assert set(Notification.objects.values_list("notification_type", "target_date")) == {
        ("DAILY_SUMMARY_1D", tomorrow)
    }
