import threading
import time
from datetime import timedelta
from unittest import mock

import pytest
from django.utils import timezone

from apps.line.client import LineApiError
from apps.line.services import ChannelCredentials
from apps.notifications.models import MAX_ATTEMPTS, Notification
from apps.notifications.worker import NotificationWorker, WorkerConfig
from apps.scheduling.models import RecipientType, Teacher

CREDENTIALS = ChannelCredentials(channel_access_token="token", channel_secret="secret", channel_id="ch-1")


class RecordingSender:
    """Stands in for send_line_multicast; fails for the given LINE ids."""

    def __init__(self, failing=(), delay=0.0):
        self.failing = set(failing)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self._active = 0
        self.peak_concurrency = 0

    def __call__(self, line_ids, message, credentials):
        with self._lock:
            self.calls.append((tuple(line_ids), message, credentials))
            self._active += 1
            self.peak_concurrency = max(self.peak_concurrency, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if set(line_ids) & self.failing:
                raise LineApiError("LINE multicast failed with status 400", status_code=400)
            return {}
        finally:
            with self._lock:
                self._active -= 1


def _config(**overrides):
    values = {"batch_size": 10, "max_concurrency": 3, "max_execution_time_ms": 30_000, "delay_between_batches_ms": 0}
    values.update(overrides)
    return WorkerConfig(**values)


def _worker(sender, **overrides):
    return NotificationWorker(
        _config(**overrides),
        sender=sender,
        credentials_resolver=lambda branch_id: CREDENTIALS,
    )


@pytest.fixture
def make_teachers(db):
    def _make(count):
        return [Teacher.objects.create(name=f"講師{i}", line_id=f"U-{i}") for i in range(count)]

    return _make


@pytest.fixture
def enqueue(db):
    def _enqueue(person, **overrides):
        values = {
            "recipient_type": RecipientType.TEACHER,
            "recipient_id": str(person.pk),
            "notification_type": "DAILY_SUMMARY_SAMEDAY",
            "message": f"reminder for {person.name}",
            "target_date": timezone.localdate(),
            "scheduled_at": timezone.now() - timedelta(minutes=1),
        }
        values.update(overrides)
        return Notification.objects.create(**values)

    return _enqueue


def test_config_rejects_nonsense():
    with pytest.raises(ValueError):
        WorkerConfig(batch_size=0)
    with pytest.raises(ValueError):
        WorkerConfig(max_concurrency=0)


def test_config_from_settings_with_overrides(settings):
    settings.NOTIFICATION_WORKER = {"BATCH_SIZE": 7, "CONCURRENCY": 2, "MAX_TIME_MS": 1000, "DELAY_MS": 5}

    config = WorkerConfig.from_settings(batch_size=20, max_concurrency=None)

    assert (config.batch_size, config.max_concurrency, config.max_execution_time_ms) == (20, 2, 1000)
    assert config.delay_between_batches_ms == 5
    assert config.lease_seconds == 600


@pytest.mark.django_db
def test_successful_delivery_marks_sent(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    sender = RecordingSender()

    result = _worker(sender).run()

    assert (result.total_processed, result.successful, result.failed) == (1, 1, 0)
    assert sender.calls == [(("U-0",), "reminder for 講師0", CREDENTIALS)]
    notification.refresh_from_db()
    assert notification.status == Notification.Status.SENT
    assert notification.processing_attempts == 1
    assert notification.sent_at is not None
    assert notification.delivery_log.success is True


@pytest.mark.django_db
def test_one_failing_send_does_not_affect_siblings(make_teachers, enqueue):
    teachers = make_teachers(5)
    rows = [enqueue(t) for t in teachers]
    sender = RecordingSender(failing={"U-2"})

    result = _worker(sender).run()

    assert (result.successful, result.failed) == (4, 1)
    statuses = {row.pk: Notification.objects.get(pk=row.pk).status for row in rows}
    assert statuses.pop(rows[2].pk) == Notification.Status.FAILED
    assert set(statuses.values()) == {Notification.Status.SENT}

    failed = Notification.objects.get(pk=rows[2].pk)
    log = failed.delivery_log
    assert log.success is False
    assert "400" in log.message
    assert log.context["error_type"] == "TransportError"
    assert log.context["recipient_id"] == str(teachers[2].pk)
    assert log.context["attempt"] == 1


@pytest.mark.django_db
def test_attempts_increase_until_dead_lettered(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    sender = RecordingSender(failing={"U-0"})
    worker = _worker(sender)

    seen = []
    for _ in range(MAX_ATTEMPTS):
        worker.run()
        notification.refresh_from_db()
        seen.append((notification.processing_attempts, notification.status))

    assert seen == [
        (1, Notification.Status.FAILED),
        (2, Notification.Status.FAILED),
        (3, Notification.Status.FAILED),
    ]
    assert notification.is_dead_lettered

    result = worker.run()

    assert result.total_processed == 0
    assert len(sender.calls) == MAX_ATTEMPTS
    notification.refresh_from_db()
    assert notification.processing_attempts == MAX_ATTEMPTS


@pytest.mark.django_db
def test_dead_lettered_rows_are_not_polled(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    enqueue(teacher, status=Notification.Status.FAILED, processing_attempts=3)

    assert _worker(RecordingSender()).fetch_due() == []


@pytest.mark.django_db
def test_future_and_finished_rows_are_not_polled(make_teachers, enqueue):
    a, b, c = make_teachers(3)
    enqueue(a, scheduled_at=timezone.now() + timedelta(hours=1))
    enqueue(b, status=Notification.Status.SENT, processing_attempts=1)
    due = enqueue(c, status=Notification.Status.FAILED, processing_attempts=1)

    assert [n.pk for n in _worker(RecordingSender()).fetch_due()] == [due.pk]


@pytest.mark.django_db
def test_fresh_rows_are_fetched_before_retries(make_teachers, enqueue):
    a, b = make_teachers(2)
    retry = enqueue(a, status=Notification.Status.FAILED, processing_attempts=2,
                    scheduled_at=timezone.now() - timedelta(hours=2))
    fresh = enqueue(b)

    assert [n.pk for n in _worker(RecordingSender()).fetch_due()] == [fresh.pk, retry.pk]


@pytest.mark.django_db
def test_claim_is_exclusive(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    first, second = _worker(RecordingSender()), _worker(RecordingSender())
    stale_copy = Notification.objects.get(pk=notification.pk)

    assert first.claim(notification) == 1
    assert second.claim(stale_copy) is None
    notification.refresh_from_db()
    assert notification.status == Notification.Status.PROCESSING
    assert notification.processing_attempts == 1


@pytest.mark.django_db
def test_rows_claimed_elsewhere_are_skipped(make_teachers, enqueue):
    for teacher in make_teachers(2):
        enqueue(teacher)
    sender = RecordingSender()

    class RacingWorker(NotificationWorker):
        def fetch_due(self, exclude_ids=None):
            batch = super().fetch_due(exclude_ids)
            Notification.objects.filter(pk__in=[n.pk for n in batch]).update(
                status=Notification.Status.PROCESSING
            )
            return batch

    result = RacingWorker(_config(), sender=sender, credentials_resolver=lambda b: CREDENTIALS).run()

    assert (result.skipped, result.successful, result.failed) == (2, 0, 0)
    assert sender.calls == []
    assert set(Notification.objects.values_list("processing_attempts", flat=True)) == {0}


@pytest.mark.django_db
def test_opt_out_after_queueing_fails_without_sending(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    Teacher.objects.filter(pk=teacher.pk).update(line_notifications_enabled=False)
    sender = RecordingSender()

    result = _worker(sender).run()

    assert result.failed == 1
    assert sender.calls == []
    notification.refresh_from_db()
    assert notification.status == Notification.Status.FAILED
    assert notification.delivery_log.context["error_type"] == "IdentityUnavailableError"


@pytest.mark.django_db
def test_missing_channel_is_a_transport_failure(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    sender = RecordingSender()

    NotificationWorker(_config(), sender=sender, credentials_resolver=lambda branch_id: None).run()

    notification.refresh_from_db()
    assert notification.status == Notification.Status.FAILED
    assert notification.delivery_log.context["error_type"] == "TransportError"
    assert sender.calls == []


@pytest.mark.django_db
def test_unexpected_sender_exception_is_recorded(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher)
    sender = mock.Mock(side_effect=RuntimeError("boom"))

    result = _worker(sender).run()

    assert result.failed == 1
    notification.refresh_from_db()
    assert notification.status == Notification.Status.FAILED
    assert "boom" in notification.delivery_log.message


@pytest.mark.django_db
def test_multiple_batches_until_queue_is_drained(make_teachers, enqueue):
    for teacher in make_teachers(5):
        enqueue(teacher)

    result = _worker(RecordingSender(), batch_size=2).run()

    assert result.batches == 3
    assert result.successful == 5
    assert not Notification.objects.exclude(status=Notification.Status.SENT).exists()


@pytest.mark.django_db
def test_failed_rows_are_not_retried_within_the_same_run(make_teachers, enqueue):
    for teacher in make_teachers(2):
        enqueue(teacher)
    sender = RecordingSender(failing={"U-0", "U-1"})

    result = _worker(sender, batch_size=2).run()

    assert result.total_processed == 2
    assert len(sender.calls) == 2
    assert set(Notification.objects.values_list("processing_attempts", flat=True)) == {1}


@pytest.mark.django_db
def test_sends_respect_max_concurrency(make_teachers, enqueue):
    for teacher in make_teachers(6):
        enqueue(teacher)
    sender = RecordingSender(delay=0.05)

    result = _worker(sender, max_concurrency=2).run()

    assert result.successful == 6
    assert sender.peak_concurrency <= 2


@pytest.mark.django_db
def test_stop_event_prevents_further_batches(make_teachers, enqueue):
    enqueue(make_teachers(1)[0])
    stop = threading.Event()
    stop.set()

    worker = NotificationWorker(_config(), sender=RecordingSender(), stop_event=stop)
    result = worker.run()

    assert result.total_processed == 0
    assert Notification.objects.get().status == Notification.Status.PENDING


@pytest.mark.django_db
def test_stale_processing_rows_are_released_and_retried(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher, status=Notification.Status.PROCESSING, processing_attempts=1)
    Notification.objects.filter(pk=notification.pk).update(updated_at=timezone.now() - timedelta(hours=1))
    sender = RecordingSender()

    result = _worker(sender).run()

    assert result.expired_leases == 1
    assert result.successful == 1
    notification.refresh_from_db()
    assert notification.status == Notification.Status.SENT
    assert notification.processing_attempts == 2


@pytest.mark.django_db
def test_recent_processing_rows_are_left_alone(make_teachers, enqueue):
    (teacher,) = make_teachers(1)
    notification = enqueue(teacher, status=Notification.Status.PROCESSING, processing_attempts=1)

    assert _worker(RecordingSender()).expire_stale_claims() == 0
    notification.refresh_from_db()
    assert notification.status == Notification.Status.PROCESSING


@pytest.mark.django_db
def test_default_credentials_come_from_channel_registry(make_teachers, enqueue, settings):
    settings.LINE_CHANNEL_ACCESS_TOKEN = "settings-token"
    enqueue(make_teachers(1)[0])
    sender = RecordingSender()

    NotificationWorker(_config(), sender=sender).run()

    (_, _, credentials), = sender.calls
    assert credentials.channel_access_token == "settings-token"
    assert credentials.source == "settings"
