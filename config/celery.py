import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("class_reminders")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Создание и отправка напоминаний о занятиях - каждые 5 минут.
    # Окно отправки шаблона - 15 минут, так что каждый шаблон
    # попадает минимум в два запуска; дубли отсекает дедупликация.
    "dispatch-class-reminders": {
        "task": "notifications.dispatch_class_reminders",
        "schedule": crontab(minute="*/5"),
        "options": {"expires": 240},
    },
    # Повторная отправка FAILED уведомлений вне окна шаблонов - каждые 30 минут
    "retry-failed-notifications": {
        "task": "notifications.run_delivery_worker",
        "schedule": crontab(minute="2,32"),
        "options": {"expires": 1500},
    },
}

app.conf.timezone = "Asia/Tokyo"
