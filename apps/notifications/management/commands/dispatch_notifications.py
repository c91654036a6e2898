from __future__ import annotations

import json
import signal
import threading

from django.core.management.base import BaseCommand  # type: ignore

from apps.notifications.orchestrator import process_notifications
from apps.notifications.worker import NotificationWorker


class Command(BaseCommand):
    help = "Создаёт напоминания о занятиях и отправляет их через LINE"

    def add_arguments(self, parser):  # type: ignore
        parser.add_argument("--reset", action="store_true", help="Игнорировать окно отправки и пересоздать неотправленные напоминания")
        parser.add_argument("--template-id", type=int, default=None, help="Обработать только один шаблон")
        parser.add_argument("--worker-only", action="store_true", help="Только отправить уже поставленные в очередь уведомления")

    def handle(self, *args, **options):  # type: ignore
        stop_event = threading.Event()

        def _request_stop(signum, frame):  # type: ignore
            self.stderr.write(f"Получен сигнал {signum}, завершаем текущий пакет...")
            stop_event.set()

        previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            if options["worker_only"]:
                result = NotificationWorker(stop_event=stop_event).run().as_dict()
            else:
                result = process_notifications(
                    reset=options["reset"],
                    template_id=options["template_id"],
                    stop_event=stop_event,
                ).as_dict()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        self.stdout.write(json.dumps(result, ensure_ascii=False, indent=2))
        if result.get("phase") == "error":
            self.stderr.write(self.style.ERROR("Рассылка завершилась критической ошибкой"))
