"""Send-window and target-date rules for message templates."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore

# Beat runs every few minutes; a template fires during the 15 minutes that
# follow its configured time. Repeated runs inside the window are absorbed by
# deduplication.
SEND_WINDOW_MINUTES = 15

NOTIFICATION_TYPE_PREFIX = "DAILY_SUMMARY"


def notification_timezone() -> ZoneInfo:
    return ZoneInfo(settings.NOTIFICATIONS.get("TIMEZONE") or settings.TIME_ZONE)


def local_now(now: datetime | None = None) -> datetime:
    """`now` (aware, default: current time) converted to the notification timezone."""
    return timezone.localtime(now or timezone.now(), notification_timezone())


def minutes_past_schedule(now_local: datetime, hour: int, minute: int | None) -> int:
    return (now_local.hour * 60 + now_local.minute) - (hour * 60 + (minute or 0))


def is_within_send_window(
    now_local: datetime,
    hour: int,
    minute: int | None,
    reset: bool = False,
) -> bool:
    """True when now is 0..14 minutes past hour:minute on the same day, or on reset."""
    if reset:
        return True
    diff = minutes_past_schedule(now_local, hour, minute)
    return 0 <= diff < SEND_WINDOW_MINUTES


def notification_type_for(timing_value: int) -> str:
    if timing_value == 0:
        return f"{NOTIFICATION_TYPE_PREFIX}_SAMEDAY"
    return f"{NOTIFICATION_TYPE_PREFIX}_{timing_value}D"


def target_date_for(now_local: datetime, timing_value: int) -> date:
    """Local calendar date the reminder is about."""
    return (now_local + timedelta(days=timing_value)).date()


def start_of_local_day(now_local: datetime) -> datetime:
    return now_local.replace(hour=0, minute=0, second=0, microsecond=0)
