"""Error taxonomy for talking to a JointSpace TV."""
from __future__ import annotations

import json
import re
from typing import Optional

from .constants import ERROR_MESSAGES

_TITLE_RE = re.compile(r"<title>([^<]+)</title>", re.IGNORECASE)
_PARA_RE = re.compile(r"<p[^>]*>([^<]+)</p>", re.IGNORECASE)


class JointSpaceError(Exception):
    """Base class; nothing below the queue/notifier lets one of these escape."""


class DeviceUnreachableError(JointSpaceError):
    """Timeout, refused connection, TLS failure."""


class AuthenticationError(JointSpaceError):
    """401 without a usable Digest challenge, or 401 after a correct header."""


class DeviceRequestError(JointSpaceError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class LongPollError(JointSpaceError):
    """No transport produced a notification this cycle."""


def parse_error_response(status: int, text: Optional[str] = None) -> str:
    """
    Turn a non-2xx answer into something a user can read.
    Known statuses win; then a JSON error_text, then HTML title/paragraph.
    """
    if status in ERROR_MESSAGES:
        return ERROR_MESSAGES[status]

    body = (text or "").strip()
    if body.startswith("{"):
        try:
            data = json.loads(body)
        except ValueError:
            data = None
        if isinstance(data, dict):
            msg = data.get("error_text") or data.get("error_id")
            if msg:
                return str(msg)

    if "<html" in body.lower():
        title = _TITLE_RE.search(body)
        if title and title.group(1).strip() != "Status page":
            return title.group(1).strip()
        para = _PARA_RE.search(body)
        if para:
            return para.group(1).strip()

    return f"Request failed with status {status}"
