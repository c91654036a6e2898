"""Channel credential resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings  # type: ignore

from .models import BranchLineChannel, LineChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelCredentials:
    channel_access_token: str
    channel_secret: str
    channel_id: Optional[str] = None
    source: str = "branch"

    def __repr__(self) -> str:
        # Tokens must never end up in logs
        return f"ChannelCredentials(channel_id={self.channel_id!r}, source={self.source!r})"


def _from_channel(channel: LineChannel, source: str) -> Optional[ChannelCredentials]:
    if not channel.channel_access_token:
        logger.warning("LINE channel %s has no usable access token", channel.channel_id)
        return None
    return ChannelCredentials(
        channel_access_token=channel.channel_access_token,
        channel_secret=channel.channel_secret,
        channel_id=channel.channel_id,
        source=source,
    )


def get_channel_credentials(branch_id: Optional[int] = None) -> Optional[ChannelCredentials]:
    """
    Credentials for sending on behalf of a branch.

    Order: the branch's primary active channel, any active channel linked to
    the branch, the default channel, then the global channel from settings.
    Returns None when nothing is configured.
    """
    if branch_id is not None:
        link = (
            BranchLineChannel.objects.filter(branch_id=branch_id, channel__is_active=True)
            .select_related("channel")
            .order_by("-is_primary", "pk")
            .first()
        )
        if link is not None:
            credentials = _from_channel(link.channel, "branch")
            if credentials:
                return credentials

    default_channel = LineChannel.objects.filter(is_default=True, is_active=True).first()
    if default_channel is not None:
        credentials = _from_channel(default_channel, "default")
        if credentials:
            return credentials

    token = getattr(settings, "LINE_CHANNEL_ACCESS_TOKEN", "")
    if token:
        return ChannelCredentials(
            channel_access_token=token,
            channel_secret=getattr(settings, "LINE_CHANNEL_SECRET", ""),
            source="settings",
        )

    logger.warning("No LINE channel configured for branch %s and no default channel", branch_id)
    return None
