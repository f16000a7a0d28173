from __future__ import annotations

import time
from typing import Any

from .constants import T_ERROR


def now_ms() -> int:
    return int(time.time() * 1000)


def make_message(msg_type: str, **fields: Any) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": str(msg_type)}
    msg.update(fields)
    return msg


def make_error(reason: str, **extra: Any) -> dict[str, Any]:
    return make_message(T_ERROR, reason=reason, **extra)


def validate_message(msg: Any) -> None:
    """Check the outer shape of an inbound message.

    Field-level problems are protocol errors that the router reports with
    their own reasons.
    """
    if not isinstance(msg, dict):
        raise TypeError("message must be a JSON object")
