from __future__ import annotations

import argparse
import os
import sys
import tomllib
from collections.abc import Mapping
from dataclasses import asdict, replace
from pathlib import Path

from .config import HubRuntimeConfig
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import HubService
from .util import expand_path

_INT_KEYS = ("port", "max_room_size", "max_message_bytes")
_FLOAT_KEYS = ("ping_interval_s", "ping_timeout_s")


def _load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _coerce_updates(updates: dict[str, object]) -> dict[str, object]:
    for k in _INT_KEYS:
        if k in updates:
            updates[k] = int(updates[k])  # type: ignore[arg-type]
    for k in _FLOAT_KEYS:
        if k in updates:
            updates[k] = float(updates[k])  # type: ignore[arg-type]
    if "log_console" in updates:
        updates["log_console"] = bool(updates["log_console"])
    for k in ("log_file", "log_datefmt"):
        if k in updates and updates[k] == "":
            updates[k] = None
    return updates


def apply_config_data(cfg: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "websockets_level" in log_table:
            mapped["log_websockets_level"] = log_table.get("websockets_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}
    updates = _coerce_updates(updates)
    return replace(cfg, **updates) if updates else cfg


def apply_env(cfg: HubRuntimeConfig, env: Mapping[str, str]) -> HubRuntimeConfig:
    updates: dict[str, object] = {}
    if env.get("HOST"):
        updates["host"] = env["HOST"]
    if env.get("PORT"):
        updates["port"] = env["PORT"]
    if env.get("MAX_ROOM_SIZE"):
        updates["max_room_size"] = env["MAX_ROOM_SIZE"]
    updates = _coerce_updates(updates)
    return replace(cfg, **updates) if updates else cfg


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    d = HubRuntimeConfig()
    content = f"""# sigrelay configuration (TOML)
#
# Values here are overridden by the HOST, PORT and MAX_ROOM_SIZE environment
# variables, which are in turn overridden by command-line flags.

[hub]

# Listen address and WebSocket path. /healthz and /stats are served on the
# same port.
host = {d.host!r}
port = {d.port}
ws_path = {d.ws_path!r}

# Maximum members per room (at least 2).
max_room_size = {d.max_room_size}

# Keepalive. Connections that do not answer a ping within ping_timeout_s are
# closed and leave their room. 0 disables.
ping_interval_s = {d.ping_interval_s}
ping_timeout_s = {d.ping_timeout_s}

# Largest accepted inbound frame in bytes. 0 disables the limit.
max_message_bytes = {d.max_message_bytes}

[logging]

# Log level for sigrelay itself.
level = {d.log_level!r}

# Log level for the websockets library.
websockets_level = {d.log_websockets_level!r}

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = {d.log_format!r}
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sigrelay", description="Run a WebRTC signalling relay"
    )

    p.add_argument(
        "--config",
        default=None,
        help=f"Path to a TOML config file (default: {default_config_path()} if present)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write a default config file to the config path and exit",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 8787)")
    p.add_argument("--ws-path", default=None, help="WebSocket path (default: /ws)")

    p.add_argument(
        "--max-room-size", type=int, default=None, help="Maximum members per room"
    )

    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Keepalive ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close connection if pong not received within this many seconds (0 disables)",
    )
    p.add_argument(
        "--max-message-bytes",
        type=int,
        default=None,
        help="Largest accepted inbound frame in bytes (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )

    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(
    args: argparse.Namespace, env: Mapping[str, str] | None = None
) -> HubRuntimeConfig:
    explicit = args.config is not None
    config_path = expand_path(str(args.config)) if explicit else str(default_config_path())

    cfg = HubRuntimeConfig(config_path=config_path)

    # A missing default config is fine; a missing explicit one is an error.
    if explicit or os.path.exists(config_path):
        cfg = apply_config_data(cfg, _load_toml(config_path))

    cfg = apply_env(cfg, os.environ if env is None else env)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.ws_path is not None:
        cfg = replace(cfg, ws_path=str(args.ws_path))

    if args.max_room_size is not None:
        cfg = replace(cfg, max_room_size=int(args.max_room_size))

    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.max_message_bytes is not None:
        cfg = replace(cfg, max_message_bytes=int(args.max_message_bytes))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.write_config:
        config_path = str(args.config) if args.config else str(default_config_path())
        if os.path.exists(config_path):
            print(f"Config already exists: {config_path}", file=sys.stderr)
            raise SystemExit(1)
        _write_default_config(config_path)
        print(f"Wrote default config: {config_path}", file=sys.stderr)
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.run_forever()


if __name__ == "__main__":
    main()
