from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import decode, frame_size
from .constants import (
    DEFAULT_DISPLAY_NAME,
    E_INVALID_APP_OR_ROOM,
    E_INVALID_JSON,
    E_INVALID_META_PATCH,
    E_JOIN_REQUIRED_FIRST,
    E_MISSING_TARGET,
    E_PEER_NOT_FOUND,
    E_PEER_OUTSIDE_ROOM,
    E_ROOM_FULL,
    E_UNKNOWN_MESSAGE_TYPE,
    STATUS_LOBBY,
    T_BROADCAST,
    T_DIRECT,
    T_JOIN,
    T_META_UPDATED,
    T_PEER_JOINED,
    T_PEER_META,
    T_PING,
    T_PONG,
    T_SET_META,
    T_SIGNAL,
    T_WELCOME,
)
from .envelope import make_message, now_ms, validate_message
from .names import unique_name
from .session import Client
from .util import (
    normalize_display_name,
    normalize_meta,
    normalize_presence_status,
    room_key,
    valid_channel_name,
)

if TYPE_CHECKING:
    from .service import HubService, Outgoing


class MessageRouter:
    """
    Handles message routing and dispatching for the sigrelay hub.

    This class is responsible for:
    - Decoding and validating incoming frames
    - The join handshake for clients that have not joined a room
    - Dispatching joined clients' messages by type
    - Relaying signals, directs and broadcasts within a room
    - Presence metadata updates
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.router")
        self._joined_handlers = {
            T_SIGNAL: self._handle_signal,
            T_DIRECT: self._handle_direct,
            T_BROADCAST: self._handle_broadcast,
            T_SET_META: self._handle_set_meta,
            T_PING: self._handle_ping,
        }

    def route_message(
        self,
        client: Client,
        data: str | bytes,
        outgoing: list[Outgoing],
    ) -> None:
        """
        Main entry point for routing an incoming frame.

        This method should be called with the state lock held.
        """
        nbytes = frame_size(data)
        self.hub.stats_manager.inc("msgs_in")
        self.hub.stats_manager.inc("bytes_in", nbytes)

        try:
            msg = decode(data)
            validate_message(msg)
        except (TypeError, ValueError, RecursionError) as e:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors;
            # RecursionError comes from deeply nested arrays or objects.
            self.hub.stats_manager.inc("msgs_bad")
            self.log.debug(
                "Bad message id=%s bytes=%s err=%r", client.id, nbytes, e
            )
            self.hub._emit_error(outgoing, client, E_INVALID_JSON)
            return

        t = msg.get("type")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX id=%s t=%r joined=%s bytes=%s",
                client.id,
                t,
                client.joined,
                nbytes,
            )

        if not client.joined:
            self._handle_pre_join(client, msg, outgoing)
            return

        handler = self._joined_handlers.get(t) if isinstance(t, str) else None
        if handler is None:
            self.hub._emit_error(
                outgoing, client, E_UNKNOWN_MESSAGE_TYPE, received=t
            )
            return

        handler(client, msg, outgoing)

    def _handle_pre_join(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        """Handle messages before the join handshake (only join is allowed)."""
        if msg.get("type") != T_JOIN:
            self.hub._emit_error(outgoing, client, E_JOIN_REQUIRED_FIRST)
            return

        app = msg.get("app")
        room = msg.get("room")
        if not valid_channel_name(app) or not valid_channel_name(room):
            self.hub.stats_manager.inc("joins_rejected")
            self.hub._emit_error(outgoing, client, E_INVALID_APP_OR_ROOM)
            return

        key = room_key(app, room)
        max_room_size = self.hub.max_room_size
        if self.hub.room_manager.size(key) >= max_room_size:
            self.hub.stats_manager.inc("joins_rejected")
            self.log.info(
                "JOIN rejected id=%s room=%s reason=room-full max=%s",
                client.id,
                key,
                max_room_size,
            )
            self.hub._emit_error(outgoing, client, E_ROOM_FULL, max=max_room_size)
            return

        # Names and peers are taken from the room as it is before insertion.
        meta = normalize_meta(msg.get("meta"))
        meta["name"] = unique_name(
            meta["name"],
            self.hub.session_manager.used_names(key, exclude_id=client.id),
            rng=self.hub.rng,
        )

        peers = self.hub.room_manager.get_room_members(key)
        peer_meta = []
        for peer_id in peers:
            peer = self.hub.session_manager.get_client(peer_id)
            peer_meta.append(
                {"id": peer_id, "meta": dict(peer.meta) if peer and peer.meta else None}
            )

        self.hub.room_manager.add_member(key, client.id)
        client.app = app
        client.room = room
        client.meta = meta
        self.hub.stats_manager.inc("joins")

        self.log.info(
            "JOIN id=%s room=%s name=%r members=%s",
            client.id,
            key,
            meta["name"],
            len(peers) + 1,
        )

        welcome = make_message(
            T_WELCOME,
            id=client.id,
            app=app,
            room=room,
            peers=peers,
            peerMeta=peer_meta,
            meta=dict(meta),
            maxRoomSize=max_room_size,
        )
        self.hub._queue_message(outgoing, client.connection, welcome)

        joined = make_message(T_PEER_JOINED, id=client.id, meta=dict(meta))
        for peer_id in peers:
            peer = self.hub.session_manager.get_client(peer_id)
            if peer is None:
                continue
            self.hub._queue_message(outgoing, peer.connection, joined)

    def _resolve_target(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> Client | None:
        """Look up the addressee of a signal/direct, reporting failures."""
        target_id = msg.get("to")
        if not isinstance(target_id, str):
            self.hub._emit_error(outgoing, client, E_MISSING_TARGET)
            return None

        target = self.hub.session_manager.get_client(target_id)
        if target is None:
            self.hub._emit_error(outgoing, client, E_PEER_NOT_FOUND, to=target_id)
            return None

        if target.app != client.app or target.room != client.room:
            self.hub._emit_error(
                outgoing, client, E_PEER_OUTSIDE_ROOM, to=target_id
            )
            return None

        return target

    def _handle_signal(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        target = self._resolve_target(client, msg, outgoing)
        if target is None:
            return

        self.hub.stats_manager.inc("signals_relayed")
        self.hub._queue_message(
            outgoing,
            target.connection,
            make_message(T_SIGNAL, **{"from": client.id, "signal": msg.get("signal")}),
        )

    def _handle_direct(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        target = self._resolve_target(client, msg, outgoing)
        if target is None:
            return

        self.hub.stats_manager.inc("directs_relayed")
        self.hub._queue_message(
            outgoing,
            target.connection,
            make_message(T_DIRECT, **{"from": client.id, "payload": msg.get("payload")}),
        )

    def _handle_broadcast(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        key = client.key
        if key is None or not self.hub.room_manager.has_room(key):
            return

        self.hub.stats_manager.inc("broadcasts")
        out = make_message(T_BROADCAST, **{"from": client.id, "payload": msg.get("payload")})
        for peer_id in self.hub.room_manager.get_room_members(key):
            if peer_id == client.id:
                continue
            peer = self.hub.session_manager.get_client(peer_id)
            if peer is None:
                continue
            self.hub._queue_message(outgoing, peer.connection, out)

    def _handle_set_meta(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        patch = msg.get("patch")
        if not isinstance(patch, dict):
            self.hub._emit_error(outgoing, client, E_INVALID_META_PATCH)
            return

        prior = client.meta or {}
        meta = {
            "name": prior.get("name") or DEFAULT_DISPLAY_NAME,
            "status": prior.get("status") or STATUS_LOBBY,
        }

        key = client.key
        if "name" in patch and key is not None:
            meta["name"] = unique_name(
                normalize_display_name(patch["name"]),
                self.hub.session_manager.used_names(key, exclude_id=client.id),
                rng=self.hub.rng,
            )

        if "status" in patch:
            meta["status"] = normalize_presence_status(patch["status"])

        client.meta = meta
        self.hub.stats_manager.inc("meta_updates")

        self.log.info(
            "META id=%s room=%s name=%r status=%s",
            client.id,
            key,
            meta["name"],
            meta["status"],
        )

        self.hub._queue_message(
            outgoing,
            client.connection,
            make_message(T_META_UPDATED, id=client.id, meta=dict(meta)),
        )

        if key is None:
            return
        notice = make_message(T_PEER_META, id=client.id, meta=dict(meta))
        for peer_id in self.hub.room_manager.get_room_members(key):
            if peer_id == client.id:
                continue
            peer = self.hub.session_manager.get_client(peer_id)
            if peer is None:
                continue
            self.hub._queue_message(outgoing, peer.connection, notice)

    def _handle_ping(
        self,
        client: Client,
        msg: dict[str, Any],
        outgoing: list[Outgoing],
    ) -> None:
        self.hub.stats_manager.inc("pings_in")
        self.hub._queue_message(
            outgoing, client.connection, make_message(T_PONG, now=now_ms())
        )
