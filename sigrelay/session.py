from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import T_PEER_LEFT
from .envelope import make_message
from .util import room_key

if TYPE_CHECKING:
    from .service import HubService, Outgoing


@dataclass
class Client:
    """One accepted connection.

    ``app``, ``room`` and ``meta`` stay None until the join handshake
    completes and ``app``/``room`` never change afterwards.
    """

    id: str
    connection: Any
    app: str | None = None
    room: str | None = None
    meta: dict[str, str] | None = None

    @property
    def joined(self) -> bool:
        return self.app is not None and self.room is not None

    @property
    def key(self) -> str | None:
        if self.app is None or self.room is None:
            return None
        return room_key(self.app, self.room)


class SessionManager:
    """
    Manages client lifecycle for sigrelay connections.

    This class is responsible for:
    - Client creation with a fresh id per connection
    - Client lookup by id
    - Collecting the display names in use in a room
    - Teardown: leaving the room and notifying remaining members
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.session")
        self.clients: dict[str, Client] = {}

    def on_connect(self, connection: Any) -> Client:
        """
        Create an unjoined client for a new connection.

        Must be called with state lock held.
        """
        client_id = str(uuid.uuid4())
        while client_id in self.clients:
            client_id = str(uuid.uuid4())

        client = Client(id=client_id, connection=connection)
        self.clients[client_id] = client
        self.log.info("Client connected id=%s", client_id)
        return client

    def get_client(self, client_id: str) -> Client | None:
        return self.clients.get(client_id)

    def used_names(self, key: str, exclude_id: str | None = None) -> set[str]:
        """Lower-cased display names of the members of a room.

        Must be called with state lock held.
        """
        used: set[str] = set()
        for member_id in self.hub.room_manager.get_room_members(key):
            if exclude_id is not None and member_id == exclude_id:
                continue
            member = self.clients.get(member_id)
            name = member.meta.get("name") if member and member.meta else None
            if isinstance(name, str) and name:
                used.add(name.lower())
        return used

    def on_close(self, client_id: str, outgoing: list[Outgoing]) -> Client | None:
        """
        Tear down a client: leave its room and forget it.

        Remaining members are sent ``peer-left``. Calling this again for the
        same id does nothing and returns None.
        Must be called with state lock held.
        """
        client = self.clients.pop(client_id, None)
        if client is None:
            return None

        key = client.key
        if key is not None and self.hub.room_manager.remove_member(key, client_id):
            self.hub.stats_manager.inc("parts")
            notice = make_message(T_PEER_LEFT, id=client_id)
            for member_id in self.hub.room_manager.get_room_members(key):
                member = self.clients.get(member_id)
                if member is None:
                    continue
                self.hub._queue_message(outgoing, member.connection, notice)

        return client

    def clear_all(self) -> list[Any]:
        """
        Clear all clients and return their connections for closing.

        Must be called with state lock held.
        """
        connections = [c.connection for c in self.clients.values()]
        self.clients.clear()
        return connections

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        total = len(self.clients)
        joined = sum(1 for c in self.clients.values() if c.joined)
        return {
            "total": total,
            "joined": joined,
        }
