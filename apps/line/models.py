"""LINE channel registry."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.db.models import Q  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.infrastructure.fields import EncryptedCharField


class LineChannel(models.Model):
    """A LINE Official Account channel; tokens are stored encrypted."""

    name = models.CharField(max_length=100)
    channel_id = models.CharField(max_length=64, unique=True)
    channel_access_token = EncryptedCharField()
    channel_secret = EncryptedCharField()
    is_active = models.BooleanField(default=True)
    is_default = models.BooleanField(
        default=False,
        help_text=_("Used for branches without a channel of their own."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["is_default"],
                condition=Q(is_default=True),
                name="single_default_line_channel",
            )
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.channel_id})"


class BranchLineChannel(models.Model):
    """Links a branch to the channel its reminders are sent through."""

    branch = models.ForeignKey(
        "scheduling.Branch", on_delete=models.CASCADE, related_name="line_channels"
    )
    channel = models.ForeignKey(
        LineChannel, on_delete=models.CASCADE, related_name="branch_links"
    )
    is_primary = models.BooleanField(default=True)

    class Meta:
        unique_together = ("branch", "channel")

    def __str__(self) -> str:
        return f"{self.branch_id} -> {self.channel_id}"
