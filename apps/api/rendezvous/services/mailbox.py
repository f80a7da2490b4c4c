"""Per-peer signal queues drained by polling."""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict

from ..schemas.signaling import Signal

logger = logging.getLogger(__name__)


class SignalMailbox:
    """FIFO mailboxes keyed by peer id. Unbounded."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Signal]] = {}

    def enqueue(self, peer_id: str, signal: Signal) -> None:
        queue = self._queues.get(peer_id)
        if queue is None:
            queue = self._queues[peer_id] = deque()
        queue.append(signal)
        logger.debug("Queued %s from %s for %s (pending=%d)", signal.type, signal.from_, peer_id, len(queue))

    def drain_all(self, peer_id: str) -> list[Signal]:
        """Return every pending signal for the peer and leave its queue empty."""

        queue = self._queues.get(peer_id)
        if not queue:
            return []
        signals = list(queue)
        queue.clear()
        return signals

    def discard(self, peer_id: str) -> None:
        self._queues.pop(peer_id, None)

    def pending(self, peer_id: str) -> int:
        queue = self._queues.get(peer_id)
        return len(queue) if queue else 0

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._queues
