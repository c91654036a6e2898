"""Rendering of class reminder messages.

Templates use `{{variable}}` placeholders. A reminder is built from three
templates: one item per class session, an optional summary block and the
template's main content, which receives the assembled class list as
`{{dailyClassList}}`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, time
from typing import Mapping, Optional, Sequence

from apps.scheduling.models import RecipientType
from apps.scheduling.services import Recipient, SessionInfo

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

DEFAULT_CLASS_LIST_ITEM_TEMPLATE = (
    "【{{classNumber}}】{{subjectName}}\n"
    "時間: {{startTime}}〜{{endTime}}（{{duration}}）\n"
    "講師: {{teacherName}}\n"
    "生徒: {{studentName}}\n"
    "ブース: {{boothName}}"
)

DEFAULT_CLASS_LIST_SUMMARY_TEMPLATE = (
    "授業数: {{classCount}}コマ\n"
    "開始: {{firstClassTime}} / 終了: {{lastClassTime}}"
)

RECIPIENT_TYPE_LABELS = {
    RecipientType.TEACHER: "講師",
    RecipientType.STUDENT: "生徒",
}

# The line carrying the recipient's own name is dropped from their items
_OWN_NAME_LINES = {
    RecipientType.TEACHER: re.compile(r"講師: \{\{\s*teacherName\s*\}\}\n?"),
    RecipientType.STUDENT: re.compile(r"生徒: \{\{\s*studentName\s*\}\}\n?"),
}

ITEM_SEPARATOR = "\n\n"


def replace_template_variables(template: str, variables: Mapping[str, object]) -> str:
    """Substitute {{name}} placeholders; unknown names are left as they are."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template or "")


def item_template_for(recipient_type: RecipientType, item_template: str) -> str:
    try:
        own_name_line = _OWN_NAME_LINES[RecipientType(recipient_type)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown recipient type: {recipient_type}") from None
    return own_name_line.sub("", item_template).rstrip("\n")


def format_clock(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def format_duration(total_minutes: int) -> str:
    """120 -> 2時間, 90 -> 1時間30分, 45 -> 45分."""
    hours, minutes = divmod(int(total_minutes), 60)
    if hours > 0:
        return f"{hours}時間{minutes}分" if minutes else f"{hours}時間"
    return f"{minutes}分"


def format_japanese_date(value: date) -> str:
    return f"{value.year}年{value.month}月{value.day}日"


@dataclass(frozen=True)
class ClassListSummary:
    class_count: int
    first_class_time: str
    last_class_time: str
    total_minutes: int

    @property
    def total_duration(self) -> str:
        return format_duration(self.total_minutes)

    def as_variables(self) -> dict[str, str]:
        return {
            "classCount": str(self.class_count),
            "firstClassTime": self.first_class_time,
            "lastClassTime": self.last_class_time,
        }


def summarize_sessions(sessions: Sequence[SessionInfo]) -> ClassListSummary:
    ordered = sorted(sessions, key=lambda s: s.start_time)
    return ClassListSummary(
        class_count=len(ordered),
        first_class_time=format_clock(ordered[0].start_time),
        last_class_time=format_clock(ordered[-1].end_time),
        total_minutes=sum(s.duration_minutes for s in ordered),
    )


def _item_variables(index: int, session: SessionInfo) -> dict[str, str]:
    return {
        "classNumber": str(index),
        "subjectName": session.subject_name or "科目未設定",
        "startTime": format_clock(session.start_time),
        "endTime": format_clock(session.end_time),
        "teacherName": session.teacher_name or "講師未設定",
        "studentName": session.student_name or "生徒未設定",
        "boothName": session.booth_name or "ブース未設定",
        "duration": f"{session.duration_minutes}分",
    }


def render_class_list(
    recipient: Recipient,
    item_template: Optional[str] = None,
    summary_template: Optional[str] = None,
) -> str:
    """Item blocks separated by blank lines, followed by the summary block."""
    template = item_template_for(
        recipient.recipient_type, item_template or DEFAULT_CLASS_LIST_ITEM_TEMPLATE
    )
    items = [
        replace_template_variables(template, _item_variables(index, session))
        for index, session in enumerate(recipient.sessions, start=1)
    ]
    class_list = ITEM_SEPARATOR.join(items)

    summary_template = summary_template or DEFAULT_CLASS_LIST_SUMMARY_TEMPLATE
    if summary_template and recipient.sessions:
        summary = summarize_sessions(recipient.sessions)
        class_list += ITEM_SEPARATOR + replace_template_variables(
            summary_template, summary.as_variables()
        )
    return class_list


def render_reminder(
    content: str,
    recipient: Recipient,
    *,
    target_date: date,
    current_date: date,
    item_template: Optional[str] = None,
    summary_template: Optional[str] = None,
    fallback_branch_name: str = "",
) -> str:
    """Full message text for one recipient."""
    if not recipient.sessions:
        raise ValueError(f"{recipient.recipient_type} {recipient.recipient_id} has no sessions")

    summary = summarize_sessions(recipient.sessions)
    first_session = sorted(recipient.sessions, key=lambda s: s.start_time)[0]

    variables = {
        "dailyClassList": render_class_list(recipient, item_template, summary_template),
        "recipientName": recipient.name,
        "recipientType": RECIPIENT_TYPE_LABELS[RecipientType(recipient.recipient_type)],
        "classDate": format_japanese_date(target_date),
        "currentDate": format_japanese_date(current_date),
        "totalDuration": summary.total_duration,
        "branchName": first_session.branch_name or fallback_branch_name or "",
        **summary.as_variables(),
    }
    return replace_template_variables(content, variables)
