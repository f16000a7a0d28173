from __future__ import annotations

import os
import re

from .constants import (
    CHANNEL_NAME_MAX_CHARS,
    DEFAULT_DISPLAY_NAME,
    DISPLAY_NAME_MAX_CHARS,
    ROOM_KEY_SEP,
    STATUS_LOBBY,
    STATUS_PLAYING,
)

_CHANNEL_NAME_RE = re.compile(r"[A-Za-z0-9_-]+")
_WHITESPACE_RE = re.compile(r"\s+")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def valid_channel_name(value) -> bool:
    if not isinstance(value, str):
        return False
    if not value or len(value) > CHANNEL_NAME_MAX_CHARS:
        return False
    return _CHANNEL_NAME_RE.fullmatch(value) is not None


def room_key(app: str, room: str) -> str:
    # The separator is outside the channel name alphabet, so keys are unambiguous.
    return f"{app}{ROOM_KEY_SEP}{room}"


def normalize_display_name(value) -> str:
    s = "" if value is None else str(value)
    s = _WHITESPACE_RE.sub(" ", s).strip()
    s = s[:DISPLAY_NAME_MAX_CHARS]
    return s or DEFAULT_DISPLAY_NAME


def normalize_presence_status(value) -> str:
    return STATUS_PLAYING if value == STATUS_PLAYING else STATUS_LOBBY


def normalize_meta(value) -> dict[str, str]:
    meta = value if isinstance(value, dict) else {}
    return {
        "name": normalize_display_name(meta.get("name")),
        "status": normalize_presence_status(meta.get("status")),
    }
