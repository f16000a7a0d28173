"""Room membership for the sigrelay hub.

A room is keyed by ``room_key(app, room)`` and holds the ids of its current
members in join order. A key is present only while its room has members.
"""

from __future__ import annotations

import logging
from typing import Any


class RoomManager:
    """Maps room keys to ordered member-id sets."""

    def __init__(self) -> None:
        self.log = logging.getLogger("sigrelay.rooms")
        # dict keys keep join order for the peer list handed to new members
        self.rooms: dict[str, dict[str, None]] = {}

    def clear_all(self) -> None:
        """Clear all room state. Called during hub shutdown."""
        self.rooms.clear()

    def has_room(self, key: str) -> bool:
        return key in self.rooms

    def get_room_members(self, key: str) -> list[str]:
        """Get ids currently in a room, oldest member first."""
        members = self.rooms.get(key)
        return list(members) if members else []

    def size(self, key: str) -> int:
        members = self.rooms.get(key)
        return len(members) if members else 0

    def ensure(self, key: str) -> dict[str, None]:
        """Get the member set for a room, creating it if needed."""
        members = self.rooms.get(key)
        if members is None:
            members = {}
            self.rooms[key] = members
            self.log.debug("Room created key=%s", key)
        return members

    def add_member(self, key: str, client_id: str) -> None:
        """Add a client to a room, creating the room if needed."""
        self.ensure(key)[client_id] = None

    def remove_member(self, key: str, client_id: str) -> bool:
        """Remove a client from a room, dropping the room once empty.

        Returns True if the client was a member.
        """
        members = self.rooms.get(key)
        if members is None or client_id not in members:
            return False

        del members[client_id]
        if not members:
            self.rooms.pop(key, None)
            self.log.debug("Room removed key=%s", key)
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for hub stats."""
        rooms_total = len(self.rooms)
        memberships = sum(len(v) for v in self.rooms.values())
        top_rooms = sorted(
            ((key, len(members)) for key, members in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
