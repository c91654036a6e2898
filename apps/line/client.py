"""Thin client for the LINE Messaging API push endpoints."""

from __future__ import annotations

import logging
from typing import Sequence

import requests
from django.conf import settings  # type: ignore

from .services import ChannelCredentials

logger = logging.getLogger(__name__)

MULTICAST_PATH = "/v2/bot/message/multicast"
# LINE limits: 500 recipients per multicast, 5000 characters per text message
MAX_MULTICAST_RECIPIENTS = 500
MAX_TEXT_LENGTH = 5000


class LineApiError(Exception):
    """Raised when LINE rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def send_line_multicast(
    line_ids: Sequence[str],
    message: str,
    credentials: ChannelCredentials,
) -> dict:
    """
    Send one text message to up to 500 LINE users.

    Returns the decoded response body (LINE answers `{}` on success).
    Raises LineApiError on an empty message, transport errors and non-2xx
    responses. Text longer than 5000 characters is cut and logged.
    """
    recipients = [line_id for line_id in line_ids if line_id]
    if not recipients:
        raise LineApiError("No LINE recipients given")
    if len(recipients) > MAX_MULTICAST_RECIPIENTS:
        raise LineApiError(f"Too many recipients for one multicast: {len(recipients)}")

    text = (message or "").strip()
    if not text:
        raise LineApiError("Refusing to send an empty message")
    if len(text) > MAX_TEXT_LENGTH:
        logger.warning(
            "LINE message truncated from %s to %s characters; channel=%s",
            len(text),
            MAX_TEXT_LENGTH,
            credentials.channel_id,
        )
        text = text[:MAX_TEXT_LENGTH]
    payload = {
        "to": recipients,
        "messages": [{"type": "text", "text": text}],
    }
    url = f"{settings.LINE_API_BASE_URL.rstrip('/')}{MULTICAST_PATH}"
    headers = {"Authorization": f"Bearer {credentials.channel_access_token}"}

    try:
        response = requests.post(
            url,
            json=payload,
            headers=headers,
            timeout=settings.LINE_API_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise LineApiError(f"LINE request failed: {exc}") from exc

    if not response.ok:
        logger.error(
            "LINE multicast %s; channel=%s; body=%s",
            response.status_code,
            credentials.channel_id,
            response.text,
        )
        raise LineApiError(
            f"LINE multicast failed with status {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        return response.json()
    except ValueError:
        return {}
