"""Recipient directory used by the class reminder pipeline.

Only people who opted in to LINE notifications and have a linked LINE id are
returned, together with the sessions they attend on the requested date.
A session counts only when both its teacher and its student are assigned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import List, Optional

from django.db.models import Prefetch  # type: ignore

from .models import ClassSession, RecipientType, Student, Teacher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionInfo:
    class_id: int
    subject_name: Optional[str]
    start_time: time
    end_time: time
    teacher_name: Optional[str]
    student_name: Optional[str]
    booth_name: Optional[str]
    branch_id: Optional[int]
    branch_name: Optional[str]

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return max(end - start, 0)


@dataclass
class Recipient:
    recipient_type: RecipientType
    recipient_id: str
    line_id: str
    name: str
    sessions: List[SessionInfo] = field(default_factory=list)


def _session_info(session: ClassSession) -> SessionInfo:
    return SessionInfo(
        class_id=session.pk,
        subject_name=session.subject.name if session.subject else None,
        start_time=session.start_time,
        end_time=session.end_time,
        teacher_name=session.teacher.name if session.teacher else None,
        student_name=session.student.name if session.student else None,
        booth_name=session.booth.name if session.booth else None,
        branch_id=session.branch_id,
        branch_name=session.branch.name if session.branch else None,
    )


def _recipient_model(recipient_type: RecipientType):
    if recipient_type == RecipientType.TEACHER:
        return Teacher
    if recipient_type == RecipientType.STUDENT:
        return Student
    raise ValueError(f"Unknown recipient type: {recipient_type}")


def _counterpart_field(recipient_type: RecipientType) -> str:
    # A teacher's session needs a student and vice versa
    if recipient_type == RecipientType.TEACHER:
        return "student"
    if recipient_type == RecipientType.STUDENT:
        return "teacher"
    raise ValueError(f"Unknown recipient type: {recipient_type}")


def recipients_with_classes(target_date: date, recipient_type: RecipientType) -> List[Recipient]:
    """Opted-in recipients of one type with their sessions on target_date."""
    model = _recipient_model(recipient_type)
    counterpart = _counterpart_field(recipient_type)

    sessions_qs = (
        ClassSession.objects.filter(date=target_date, **{f"{counterpart}__isnull": False})
        .select_related("teacher", "student", "subject", "booth", "branch")
        .order_by("start_time", "pk")
    )

    people = (
        model.objects.filter(
            line_notifications_enabled=True,
            line_id__isnull=False,
            class_sessions__date=target_date,
            **{f"class_sessions__{counterpart}__isnull": False},
        )
        .exclude(line_id="")
        .distinct()
        .prefetch_related(Prefetch("class_sessions", queryset=sessions_qs, to_attr="day_sessions"))
        .order_by("pk")
    )

    recipients = []
    for person in people:
        sessions = [_session_info(s) for s in person.day_sessions]
        if not sessions:
            continue
        recipients.append(
            Recipient(
                recipient_type=recipient_type,
                recipient_id=str(person.pk),
                line_id=person.line_id,
                name=person.name,
                sessions=sessions,
            )
        )
    return recipients


def resolve_line_identity(recipient_type: str, recipient_id: str) -> Optional[str]:
    """
    Current LINE id of a recipient, or None when unlinked or opted out.

    Looked up at send time, so an opt-out after a reminder was queued still
    stops the delivery.
    """
    model = _recipient_model(RecipientType(recipient_type))
    person = model.objects.filter(pk=recipient_id).only(
        "line_id", "line_notifications_enabled"
    ).first()
    if person is None:
        logger.warning("%s %s no longer exists", recipient_type, recipient_id)
        return None
    if not person.can_receive_line:
        return None
    return person.line_id
