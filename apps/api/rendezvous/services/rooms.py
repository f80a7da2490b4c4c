"""In-memory room membership registry."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class RoomExistsError(RuntimeError):
    """Raised when creating a room whose code is already taken."""


class RoomMissingError(KeyError):
    """Raised when mutating a room that does not exist."""


@dataclass(slots=True)
class Room:
    room_code: str
    created_at: datetime
    peers: list[str] = field(default_factory=list)


class RoomRegistry:
    """Map room codes to ordered member lists. Empty rooms are never kept."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}

    def get(self, room_code: str) -> Optional[Room]:
        return self._rooms.get(room_code)

    def create_with_sole_member(self, room_code: str, peer_id: str, now: datetime) -> Room:
        """Create a room holding only ``peer_id``.

        Callers must check ``get`` first while holding the service lock.
        """

        if room_code in self._rooms:
            raise RoomExistsError(room_code)
        room = Room(room_code=room_code, created_at=now, peers=[peer_id])
        self._rooms[room_code] = room
        logger.info("Room %s created by %s", room_code, peer_id)
        return room

    def add_member(self, room_code: str, peer_id: str) -> bool:
        """Append ``peer_id`` to the room; return False if it was already a member."""

        room = self._rooms.get(room_code)
        if room is None:
            raise RoomMissingError(room_code)
        if peer_id in room.peers:
            return False
        room.peers.append(peer_id)
        return True

    def remove_member(self, room_code: str, peer_id: str) -> int:
        """Remove ``peer_id`` and return how many members remain.

        The room is deleted as part of this call once its last member leaves.
        """

        room = self._rooms.get(room_code)
        if room is None:
            return 0
        room.peers = [member for member in room.peers if member != peer_id]
        remaining = len(room.peers)
        if remaining == 0:
            self._rooms.pop(room_code, None)
            logger.info("Room %s deleted (empty)", room_code)
        return remaining

    def __contains__(self, room_code: object) -> bool:
        return room_code in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
