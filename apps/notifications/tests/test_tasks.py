from unittest import mock

import pytest
from django.core.management import call_command

from apps.notifications.orchestrator import DispatchResult
from apps.notifications.tasks import dispatch_class_reminders, run_delivery_worker
from apps.notifications.worker import WorkerResult


@pytest.mark.django_db
def test_dispatch_task_returns_result_dict():
    with mock.patch(
        "apps.notifications.orchestrator.process_notifications",
        return_value=DispatchResult(phase="completed", notifications_created=1),
    ) as process:
        result = dispatch_class_reminders.delay(reset=True, template_id=5).get()

    process.assert_called_once_with(reset=True, template_id=5)
    assert result["phase"] == "completed"
    assert result["notifications_created"] == 1


@pytest.mark.django_db
def test_delivery_worker_task_drains_queue():
    with mock.patch(
        "apps.notifications.worker.NotificationWorker.run",
        return_value=WorkerResult(total_processed=2, successful=1, failed=1),
    ):
        result = run_delivery_worker()

    assert result["successful"] == 1
    assert result["failed"] == 1


@pytest.mark.django_db
def test_dispatch_command_prints_json(capsys):
    with mock.patch(
        "apps.notifications.management.commands.dispatch_notifications.process_notifications",
        return_value=DispatchResult(phase="completed", notifications_sent=3),
    ) as process:
        call_command("dispatch_notifications", "--reset", "--template-id", "4")

    kwargs = process.call_args.kwargs
    assert kwargs["reset"] is True
    assert kwargs["template_id"] == 4
    assert kwargs["stop_event"] is not None
    assert '"notifications_sent": 3' in capsys.readouterr().out


@pytest.mark.django_db
def test_dispatch_command_worker_only(capsys):
    with mock.patch(
        "apps.notifications.management.commands.dispatch_notifications.NotificationWorker"
    ) as worker_cls, mock.patch(
        "apps.notifications.management.commands.dispatch_notifications.process_notifications"
    ) as process:
        worker_cls.return_value.run.return_value = WorkerResult(total_processed=0)
        call_command("dispatch_notifications", "--worker-only")

    process.assert_not_called()
    assert '"total_processed": 0' in capsys.readouterr().out
