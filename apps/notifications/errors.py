"""Error taxonomy of the reminder pipeline."""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for reminder pipeline errors."""


class TemplateValidationError(NotificationError):
    """A message template is malformed; only that template is skipped."""

    def __init__(self, template_name: str, problems: list[str]):
        self.template_name = template_name
        self.problems = problems
        super().__init__(f"Template {template_name} is invalid: {'; '.join(problems)}")


class DuplicateNotificationError(NotificationError):
    """A matching notification already exists. Treated as a no-op."""


class TransportError(NotificationError):
    """The message could not be handed over to LINE."""


class IdentityUnavailableError(NotificationError):
    """The recipient has no linked LINE id or opted out of notifications."""


class CriticalDispatchError(NotificationError):
    """Unexpected failure while orchestrating a dispatch run."""
