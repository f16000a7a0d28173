"""Statistics tracking and reporting for the sigrelay hub."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Manages hub statistics collection and reporting.

    Tracks counters for:
    - Connections and inbound messages
    - Bytes in/out
    - Joins (accepted and rejected) and parts
    - Relayed signals, directs and broadcasts
    - Metadata updates and pings
    - Errors sent and failed deliveries
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "msgs_in": 0,
            "msgs_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "joins": 0,
            "joins_rejected": 0,
            "parts": 0,
            "signals_relayed": 0,
            "directs_relayed": 0,
            "broadcasts": 0,
            "meta_updates": 0,
            "pings_in": 0,
            "errors_sent": 0,
            "send_failures": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self.hub._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.hub._state_lock:
            return int(self._counters.get(key, 0))

    def uptime_s(self) -> float:
        started = self.started_monotonic
        return (time.monotonic() - started) if started is not None else 0.0

    def snapshot(self) -> dict[str, Any]:
        """Counters plus current client and room gauges."""
        with self.hub._state_lock:
            session_stats = self.hub.session_manager.get_stats()
            room_stats = self.hub.room_manager.get_stats()
            counters = dict(self._counters)

        return {
            "uptime_s": round(self.uptime_s(), 1),
            "clients": session_stats["total"],
            "clients_joined": session_stats["joined"],
            "rooms": room_stats["rooms_total"],
            "memberships": room_stats["memberships"],
            "max_room_size": self.hub.max_room_size,
            "counters": counters,
        }

    def format_stats(self) -> str:
        """Format current statistics as a single human-readable line."""
        from . import __version__

        snap = self.snapshot()
        c = snap["counters"]

        parts: list[str] = [
            f"sigrelay {__version__} stats",
            f"uptime_s={snap['uptime_s']:.1f}",
            f"clients={snap['clients']} joined={snap['clients_joined']}",
            f"rooms={snap['rooms']} memberships={snap['memberships']}",
            "io: msgs_in={} msgs_bad={} bytes_in={} bytes_out={}".format(
                c.get("msgs_in", 0),
                c.get("msgs_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            ),
            "events: joins={} rejected={} parts={} signals={} directs={} broadcasts={} meta={}".format(
                c.get("joins", 0),
                c.get("joins_rejected", 0),
                c.get("parts", 0),
                c.get("signals_relayed", 0),
                c.get("directs_relayed", 0),
                c.get("broadcasts", 0),
                c.get("meta_updates", 0),
            ),
            "errors_sent={} send_failures={} pings_in={}".format(
                c.get("errors_sent", 0),
                c.get("send_failures", 0),
                c.get("pings_in", 0),
            ),
        ]
        return "; ".join(parts)
