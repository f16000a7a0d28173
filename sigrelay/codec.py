from __future__ import annotations

import json


def encode(obj) -> str:
    # ASCII output: lone surrogates from peers stay escaped and the frame is
    # always valid UTF-8.
    return json.dumps(obj, separators=(",", ":"))


def decode(data: str | bytes | bytearray):
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return json.loads(data)


def frame_size(data: str | bytes | bytearray) -> int:
    """Size of a frame in bytes as it travelled on the wire."""
    if isinstance(data, str):
        return len(data.encode("utf-8", "surrogatepass"))
    return len(data)
