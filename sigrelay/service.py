from __future__ import annotations

import asyncio
import logging
import random
import signal
import threading
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any
from urllib.parse import urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.http11 import Request, Response

from . import __version__
from .codec import encode
from .config import HubRuntimeConfig
from .constants import DEFAULT_MAX_ROOM_SIZE, MIN_MAX_ROOM_SIZE
from .envelope import make_error
from .rooms import RoomManager
from .router import MessageRouter
from .session import Client, SessionManager
from .stats import StatsManager

# (connection, encoded frame) pairs queued under the state lock and sent after it.
Outgoing = tuple[Any, str]


class HubService:
    def __init__(
        self, config: HubRuntimeConfig, *, rng: random.Random | None = None
    ) -> None:
        self.config = config
        self.log = logging.getLogger("sigrelay.hub")

        # Clients, rooms and names are only touched with this lock held, so a
        # capacity check and the insert that follows it cannot interleave with
        # another client's join.
        self._state_lock = threading.RLock()

        self._shutdown = asyncio.Event()
        # Set once the listening socket is bound; see bound_port.
        self.ready = asyncio.Event()
        self._server: Server | None = None

        # Random source for name suffixes (None uses the random module).
        self.rng = rng

        self.stats_manager = StatsManager(self)

        # Room registry: room key -> member ids
        self.room_manager = RoomManager()

        # Client registry and teardown
        self.session_manager = SessionManager(self)

        # Join handshake and relay protocol
        self.router = MessageRouter(self)

        self.max_room_size = self._effective_max_room_size(config.max_room_size)

    def _effective_max_room_size(self, value: Any) -> int:
        try:
            n = int(value)
        except (TypeError, ValueError):
            n = 0
        if n < MIN_MAX_ROOM_SIZE:
            self.log.warning(
                "max_room_size=%r is below %s; using %s",
                value,
                MIN_MAX_ROOM_SIZE,
                DEFAULT_MAX_ROOM_SIZE,
            )
            return DEFAULT_MAX_ROOM_SIZE
        return n

    # Core entry points. Each runs wholly under the state lock and returns the
    # frames to send; none of them performs I/O.

    def handle_connect(self, connection: Any) -> str:
        with self._state_lock:
            client = self.session_manager.on_connect(connection)
        self.stats_manager.inc("connections")
        return client.id

    def handle_message(self, client_id: str, data: str | bytes) -> list[Outgoing]:
        outgoing: list[Outgoing] = []
        with self._state_lock:
            client = self.session_manager.get_client(client_id)
            if client is None:
                return outgoing
            self.router.route_message(client, data, outgoing)
        return outgoing

    def handle_close(self, client_id: str) -> list[Outgoing]:
        """Teardown for a closed or failed connection. Idempotent."""
        outgoing: list[Outgoing] = []
        with self._state_lock:
            client = self.session_manager.on_close(client_id, outgoing)

        if client is not None:
            self.log.info(
                "Client closed id=%s room=%s name=%r",
                client.id,
                client.key or "-",
                client.meta.get("name") if client.meta else None,
            )
        return outgoing

    def _queue_message(
        self, outgoing: list[Outgoing], connection: Any, msg: dict[str, Any]
    ) -> None:
        try:
            payload = encode(msg)
        except (TypeError, ValueError, RecursionError) as e:
            self.stats_manager.inc("send_failures")
            self.log.warning("Dropped unencodable frame type=%r err=%r", msg.get("type"), e)
            return
        self.stats_manager.inc("bytes_out", len(payload))
        outgoing.append((connection, payload))

    def _emit_error(
        self,
        outgoing: list[Outgoing],
        client: Client,
        reason: str,
        **extra: Any,
    ) -> None:
        self.stats_manager.inc("errors_sent")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Error to id=%s reason=%s extra=%r", client.id, reason, extra)
        self._queue_message(outgoing, client.connection, make_error(reason, **extra))

    # Transport

    async def deliver(self, outgoing: list[Outgoing]) -> None:
        """Send queued frames. A failed send is dropped; there is no retry.

        Each connection gets its frames in queue order. Connections are sent
        to concurrently, so one slow peer does not hold up the others.
        """
        if not outgoing:
            return

        batches: dict[int, tuple[Any, list[str]]] = {}
        for connection, payload in outgoing:
            batches.setdefault(id(connection), (connection, []))[1].append(payload)

        await asyncio.gather(
            *(self._send_all(conn, payloads) for conn, payloads in batches.values())
        )

    async def _send_all(self, connection: Any, payloads: list[str]) -> None:
        for i, payload in enumerate(payloads):
            try:
                await connection.send(payload)
            except ConnectionClosed:
                # The rest would fail the same way.
                dropped = len(payloads) - i
                self.stats_manager.inc("send_failures", dropped)
                self.log.debug("Send to closed connection dropped frames=%s", dropped)
                return
            except UnicodeEncodeError as e:
                self.stats_manager.inc("send_failures")
                self.log.warning("Send skipped bytes=%s err=%s", len(payload), e)
            except OSError as e:
                self.stats_manager.inc("send_failures")
                self.log.warning("Send failed bytes=%s err=%s", len(payload), e)

    async def _handler(self, connection: ServerConnection) -> None:
        client_id = self.handle_connect(connection)
        try:
            async for data in connection:
                await self.deliver(self.handle_message(client_id, data))
        except ConnectionClosedError as e:
            self.log.debug("Connection lost id=%s err=%s", client_id, e)
        finally:
            await self.deliver(self.handle_close(client_id))

    def _json_response(
        self, connection: ServerConnection, status: HTTPStatus, body: dict[str, Any]
    ) -> Response:
        response = connection.respond(status, encode(body) + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json; charset=utf-8"
        return response

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        path = urlsplit(request.path).path

        if path == "/healthz":
            now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            return self._json_response(connection, HTTPStatus.OK, {"ok": True, "now": now})

        if path == "/stats":
            return self._json_response(
                connection, HTTPStatus.OK, self.stats_manager.snapshot()
            )

        if path != self.config.ws_path:
            return self._json_response(
                connection, HTTPStatus.NOT_FOUND, {"error": "not-found"}
            )

        # Let the handshake proceed; non-upgrade requests get 426 from websockets.
        return None

    @property
    def bound_port(self) -> int | None:
        """The TCP port actually listened on (useful with port 0)."""
        if self._server is None:
            return None
        sockets = self._server.sockets
        return sockets[0].getsockname()[1] if sockets else None

    async def serve_forever(self) -> None:
        self.stats_manager.set_start_time()
        self._shutdown.clear()

        ping_interval = float(self.config.ping_interval_s) or None
        ping_timeout = float(self.config.ping_timeout_s) or None

        async with serve(
            self._handler,
            self.config.host,
            int(self.config.port),
            process_request=self._process_request,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            max_size=int(self.config.max_message_bytes) or None,
        ) as server:
            self._server = server
            self.log.info(
                "sigrelay %s listening on ws://%s:%s%s",
                __version__,
                self.config.host,
                self.bound_port,
                self.config.ws_path,
            )
            self.log.info(
                "Policy max_room_size=%s ping_interval_s=%s ping_timeout_s=%s max_message_bytes=%s",
                self.max_room_size,
                self.config.ping_interval_s,
                self.config.ping_timeout_s,
                self.config.max_message_bytes,
            )
            self.ready.set()
            try:
                await self._shutdown.wait()
            finally:
                self.ready.clear()

        self._server = None
        self.log.info("Shutting down: %s", self.stats_manager.format_stats())
        with self._state_lock:
            self.session_manager.clear_all()
            self.room_manager.clear_all()

    async def _main(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass
        await self.serve_forever()

    def run_forever(self) -> None:
        asyncio.run(self._main())

    def stop(self) -> None:
        self._shutdown.set()
