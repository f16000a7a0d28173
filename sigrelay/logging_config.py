from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

# Parent of sigrelay.hub, sigrelay.router, sigrelay.session and sigrelay.rooms.
PACKAGE_LOGGER = "sigrelay"

# websockets logs handshakes and keepalive timeouts under this name.
WEBSOCKETS_LOGGER = "websockets"

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    """Turn a level name ("debug", "WARN") or number into a logging level."""
    if isinstance(value, int):
        return value
    text = str(value or "").strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    level = logging.getLevelNamesMapping().get(text)
    if level is not None:
        return level
    try:
        return int(text)
    except ValueError:
        return default


def _log_file(cfg: HubRuntimeConfig, override_file: str | None) -> Path | None:
    value = cfg.log_file if override_file is None else override_file
    if value is None or not str(value).strip():
        return None
    return Path(os.path.expanduser(str(value)))


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def build_handlers(
    cfg: HubRuntimeConfig, override_file: str | None = None
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    path = _log_file(cfg, override_file)
    if path is not None:
        handlers.append(_file_handler(path))

    formatter = logging.Formatter(
        fmt=str(cfg.log_format or "").strip() or DEFAULT_FORMAT,
        datefmt=str(cfg.log_datefmt or "").strip() or None,
    )
    for h in handlers:
        h.setFormatter(formatter)
    return handlers


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Route sigrelay and websockets logs to the configured handlers.

    The relay's own loggers follow ``log_level`` (or ``override_level``);
    the websockets library follows ``log_websockets_level``. An empty
    ``override_file`` turns file logging off.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)
    ws_level = parse_level(cfg.log_websockets_level, logging.WARNING)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in build_handlers(cfg, override_file):
        root.addHandler(h)
    root.setLevel(level)

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    logging.getLogger(WEBSOCKETS_LOGGER).setLevel(ws_level)

    logging.captureWarnings(True)
