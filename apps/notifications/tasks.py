"""Celery-задачи напоминаний о занятиях."""

from __future__ import annotations

import logging
from typing import Optional

from celery import shared_task  # type: ignore

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (запускаются автоматически через Celery Beat)
# ============================================================================

@shared_task(name="notifications.dispatch_class_reminders")
def dispatch_class_reminders(reset: bool = False, template_id: Optional[int] = None) -> dict:
    """
    Создание и отправка напоминаний о занятиях.

    Запускается каждые 5 минут. Шаблоны вне своего 15-минутного окна
    пропускаются, так что большинство запусков только досылает повторы.

    Returns:
        dict: результат DispatchResult (счётчики и список ошибок)
    """
    from .orchestrator import process_notifications

    return process_notifications(reset=reset, template_id=template_id).as_dict()


@shared_task(name="notifications.run_delivery_worker")
def run_delivery_worker() -> dict:
    """
    Отправка накопившихся PENDING/FAILED уведомлений без создания новых.

    Returns:
        dict: результат WorkerResult
    """
    from .worker import NotificationWorker, WorkerConfig

    result = NotificationWorker(WorkerConfig.from_settings()).run()
    if result.total_processed:
        logger.info(
            "Воркер доставки: отправлено %s, ошибок %s",
            result.successful,
            result.failed,
        )
    return result.as_dict()
