"""In-memory signaling service: room membership, role assignment and signal mailboxes.

Peers never hold a connection open. They register, push signals for other peers,
and poll their own mailbox. A background sweep reclaims peers that stop polling.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..core.config import settings
from ..schemas.signaling import JoinResponse, RegisterResponse, Signal, SignalType
from .mailbox import SignalMailbox
from .peers import PeerRegistry
from .rooms import Room, RoomRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SignalingError(Exception):
    """Base class for errors surfaced to signaling clients."""

    status_code = 400


class ValidationError(SignalingError):
    """A required request field was missing."""


class RoomNotFoundError(SignalingError):
    """A legacy join referenced a room that does not exist."""

    status_code = 404


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way JavaScript's ``toISOString`` does."""

    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SignalingService:
    """Serialize every state mutation behind one lock.

    Each public coroutine runs as a single critical section, so check-then-act
    steps such as create-if-absent or remove-and-maybe-delete never interleave.
    """

    def __init__(self, timeout: timedelta | None = None, clock: Clock = utcnow) -> None:
        self._peers = PeerRegistry()
        self._rooms = RoomRegistry()
        self._mailbox = SignalMailbox()
        self._lock = asyncio.Lock()
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.peer_timeout
        self._started = time.monotonic()
        self._sweep_task: Optional[asyncio.Task[None]] = None

    @property
    def peer_count(self) -> int:
        return len(self._peers)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def now(self) -> datetime:
        return self._clock()

    async def register(
        self,
        peer_id: str | None = None,
        room_code: str | None = None,
        is_initiator: bool | None = None,
    ) -> RegisterResponse:
        """Register a peer and create or join a room.

        The role is decided here from room existence; the client's ``is_initiator``
        hint is accepted for compatibility and ignored.
        """

        async with self._lock:
            now = self._clock()
            resolved_id = peer_id or self._generate_peer_id()
            resolved_room = room_code or resolved_id

            previous = self._peers.get(resolved_id)
            if previous is not None and previous.room_code != resolved_room:
                self._leave_room(resolved_id, previous.room_code)

            self._peers.register(resolved_id, resolved_room, now)

            room = self._rooms.get(resolved_room)
            if room is None:
                room = self._rooms.create_with_sole_member(resolved_room, resolved_id, now)
                initiator = True
            else:
                # Only the creator of a private room keeps the Initiator role on re-register;
                # anyone else entering an existing room is a Joiner.
                initiator = not room_code and bool(room.peers) and room.peers[0] == resolved_id
                self._admit(room, resolved_id)

            logger.info(
                "Registered %s in room %s as %s (peers=%s)",
                resolved_id,
                resolved_room,
                "initiator" if initiator else "joiner",
                ", ".join(room.peers),
            )
            return RegisterResponse(
                peer_id=resolved_id,
                room_code=resolved_room,
                is_initiator=initiator,
                peers_in_room=list(room.peers),
            )

    async def send_signal(
        self,
        from_: str | None,
        to: str | None,
        type_: str | None,
        sdp: object | None = None,
        candidate: object | None = None,
    ) -> None:
        """Queue a signal for ``to``. Neither side has to be registered."""

        if not from_ or not to or not type_:
            raise ValidationError("from, to, and type are required")

        async with self._lock:
            self._mailbox.enqueue(to, self._signal(type_, from_, to, sdp=sdp, candidate=candidate))
            self._peers.touch(from_, self._clock())
        logger.info("Signal %s from %s to %s", type_, from_, to)

    async def poll(self, peer_id: str | None) -> list[Signal]:
        """Drain and return the peer's pending signals."""

        if not peer_id:
            raise ValidationError("peerId is required")

        async with self._lock:
            self._peers.touch(peer_id, self._clock())
            signals = self._mailbox.drain_all(peer_id)

        if signals:
            logger.info("Poll: returning %d signals to peer %s", len(signals), peer_id)
            for index, signal in enumerate(signals):
                logger.debug("  [%d] type=%s from=%s", index, signal.type, signal.from_)
        return signals

    async def join_legacy(self, peer_id: str | None, room_code: str | None) -> JoinResponse:
        """Join an existing room without creating it.

        Only the existing members are told about the newcomer; the newcomer gets
        no notifications about them.
        """

        if not peer_id or not room_code:
            raise ValidationError("peerId and roomCode are required")

        async with self._lock:
            room = self._rooms.get(room_code)
            if room is None:
                raise RoomNotFoundError("Room not found")

            if self._rooms.add_member(room_code, peer_id):
                for other in room.peers:
                    if other != peer_id:
                        self._mailbox.enqueue(other, self._signal(SignalType.PEER_CONNECTED, peer_id, other))
                logger.info("Peer %s joined room %s via legacy join", peer_id, room_code)

            return JoinResponse(room_code=room_code, peers=list(room.peers))

    async def disconnect(self, peer_id: str | None) -> bool:
        """Remove a peer entirely. Returns False when the peer was unknown."""

        if not peer_id:
            return False
        async with self._lock:
            return self._disconnect(peer_id)

    async def sweep(self, now: datetime | None = None, timeout: timedelta | None = None) -> list[str]:
        """Disconnect every peer idle for longer than ``timeout``."""

        async with self._lock:
            now = now or self._clock()
            timeout = timeout if timeout is not None else self._timeout
            stale = self._peers.all_stale(now, timeout)
            evicted = []
            for peer_id in stale:
                logger.info("Removing inactive peer: %s", peer_id)
                if self._disconnect(peer_id):
                    evicted.append(peer_id)
            return evicted

    def start_sweeper(self, interval: float | None = None) -> None:
        """Schedule the periodic sweep on the running event loop."""

        if self._sweep_task is None or self._sweep_task.done():
            period = interval if interval is not None else settings.sweep_interval_seconds
            self._sweep_task = asyncio.create_task(self._sweep_loop(period))

    async def stop_sweeper(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                evicted = await self.sweep()
            except Exception:  # noqa: BLE001 - keep sweeping on the next tick
                logger.exception("Inactive peer sweep failed")
                continue
            if evicted:
                logger.info(
                    "Swept %d inactive peers; %d peers and %d rooms remain",
                    len(evicted),
                    self.peer_count,
                    self.room_count,
                )

    def _disconnect(self, peer_id: str) -> bool:
        record = self._peers.get(peer_id)
        if record is None:
            return False
        self._leave_room(peer_id, record.room_code)
        self._peers.remove(peer_id)
        self._mailbox.discard(peer_id)
        logger.info("Peer %s disconnected", peer_id)
        return True

    def _leave_room(self, peer_id: str, room_code: str) -> None:
        room = self._rooms.get(room_code)
        if room is None or peer_id not in room.peers:
            return
        self._rooms.remove_member(room_code, peer_id)
        for other in room.peers:
            self._mailbox.enqueue(other, self._signal(SignalType.PEER_DISCONNECTED, peer_id))

    def _admit(self, room: Room, peer_id: str) -> None:
        """Add ``peer_id`` to ``room`` and introduce it to every other member, both ways."""

        others = [member for member in room.peers if member != peer_id]
        if not self._rooms.add_member(room.room_code, peer_id):
            logger.info("Peer %s already in room %s", peer_id, room.room_code)
            return
        for other in others:
            self._mailbox.enqueue(other, self._signal(SignalType.PEER_CONNECTED, peer_id, other))
        for other in others:
            self._mailbox.enqueue(peer_id, self._signal(SignalType.PEER_CONNECTED, other, peer_id))

    def _signal(
        self,
        type_: str | SignalType,
        from_: str,
        to: str | None = None,
        *,
        sdp: object | None = None,
        candidate: object | None = None,
    ) -> Signal:
        kind = type_.value if isinstance(type_, SignalType) else type_
        return Signal(
            type=kind,
            from_=from_,
            to=to,
            sdp=sdp,
            candidate=candidate,
            timestamp=format_timestamp(self._clock()),
        )

    def _generate_peer_id(self) -> str:
        while True:
            candidate = str(random.randint(100_000, 999_999))
            if candidate not in self._peers:
                return candidate


service = SignalingService()


def get_signaling_service() -> SignalingService:
    """FastAPI dependency returning the process-wide signaling service."""

    return service
