"""In-memory registry of connected peers and their liveness."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional


@dataclass(slots=True)
class PeerRecord:
    peer_id: str
    connected_at: datetime
    last_activity: datetime
    room_code: str


class PeerRegistry:
    """Track peer activity so idle peers can be reclaimed."""

    def __init__(self) -> None:
        self._peers: Dict[str, PeerRecord] = {}

    def register(self, peer_id: str, room_code: str, now: datetime) -> PeerRecord:
        """Insert or overwrite the peer's record with fresh timestamps."""

        record = PeerRecord(peer_id=peer_id, connected_at=now, last_activity=now, room_code=room_code)
        self._peers[peer_id] = record
        return record

    def touch(self, peer_id: str, now: datetime) -> None:
        record = self._peers.get(peer_id)
        if record is not None:
            record.last_activity = now

    def get(self, peer_id: str) -> Optional[PeerRecord]:
        return self._peers.get(peer_id)

    def remove(self, peer_id: str) -> None:
        self._peers.pop(peer_id, None)

    def all_stale(self, now: datetime, timeout: timedelta) -> list[str]:
        """Return ids of peers idle for longer than ``timeout``."""

        return [peer_id for peer_id, record in self._peers.items() if now - record.last_activity > timeout]

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)
