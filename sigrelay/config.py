from __future__ import annotations

from dataclasses import dataclass

from .constants import DEFAULT_MAX_ROOM_SIZE


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8787
    ws_path: str = "/ws"
    max_room_size: int = DEFAULT_MAX_ROOM_SIZE
    ping_interval_s: float = 30.0
    ping_timeout_s: float = 30.0
    max_message_bytes: int = 64 * 1024  # 64 KiB default
    log_level: str = "INFO"
    log_websockets_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None
