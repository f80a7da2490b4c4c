"""Tests for the signaling service state machine."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from rendezvous.services.signaling import RoomNotFoundError, SignalingService, ValidationError


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 10, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def _kinds(signals) -> list[tuple[str, str]]:
    return [(signal.type, signal.from_) for signal in signals]


@pytest.mark.asyncio
async def test_register_fresh_room_makes_initiator():
    service = SignalingService()

    result = await service.register("111111", "ABC")

    assert result.is_initiator is True
    assert result.room_code == "ABC"
    assert result.peers_in_room == ["111111"]
    assert service.room_count == 1


@pytest.mark.asyncio
async def test_register_existing_room_notifies_both_sides():
    service = SignalingService()
    first = await service.register(room_code="ABC")
    assert first.is_initiator is True
    assert len(first.peer_id) == 6 and first.peer_id.isdigit()

    second = await service.register("222222", "ABC")

    assert second.is_initiator is False
    assert second.peers_in_room == [first.peer_id, "222222"]

    first_signals = await service.poll(first.peer_id)
    second_signals = await service.poll("222222")
    assert _kinds(first_signals) == [("peer-connected", "222222")]
    assert first_signals[0].to == first.peer_id
    assert _kinds(second_signals) == [("peer-connected", first.peer_id)]
    assert second_signals[0].to == "222222"


@pytest.mark.asyncio
async def test_initiator_hint_is_ignored():
    service = SignalingService()

    first = await service.register("a", "room", is_initiator=False)
    second = await service.register("b", "room", is_initiator=True)

    assert first.is_initiator is True
    assert second.is_initiator is False


@pytest.mark.asyncio
async def test_duplicate_register_does_not_duplicate_membership_or_signals():
    service = SignalingService()
    await service.register("a", "room")
    await service.register("b", "room")
    retry = await service.register("b", "room")

    assert retry.is_initiator is False
    assert retry.peers_in_room == ["a", "b"]
    assert _kinds(await service.poll("a")) == [("peer-connected", "b")]
    assert _kinds(await service.poll("b")) == [("peer-connected", "a")]


@pytest.mark.asyncio
async def test_third_peer_is_introduced_to_everyone():
    service = SignalingService()
    await service.register("a", "room")
    await service.register("b", "room")
    await service.poll("a")
    await service.poll("b")

    result = await service.register("c", "room")

    assert result.peers_in_room == ["a", "b", "c"]
    assert _kinds(await service.poll("a")) == [("peer-connected", "c")]
    assert _kinds(await service.poll("b")) == [("peer-connected", "c")]
    assert _kinds(await service.poll("c")) == [("peer-connected", "a"), ("peer-connected", "b")]


@pytest.mark.asyncio
async def test_register_without_room_creates_private_room():
    service = SignalingService()

    result = await service.register("123456")

    assert result.is_initiator is True
    assert result.room_code == "123456"
    assert result.peers_in_room == ["123456"]

    joiner = await service.register("654321", "123456")
    assert joiner.is_initiator is False
    assert joiner.peers_in_room == ["123456", "654321"]


@pytest.mark.asyncio
async def test_private_room_owner_reregister_keeps_members():
    service = SignalingService()
    await service.register("owner")
    await service.register("guest", "owner")

    again = await service.register("owner")

    assert again.is_initiator is True
    assert again.peers_in_room == ["owner", "guest"]


@pytest.mark.asyncio
async def test_register_into_new_room_leaves_previous_room():
    service = SignalingService()
    await service.register("a", "one")
    await service.register("b", "one")
    await service.poll("a")

    await service.register("b", "two")

    assert _kinds(await service.poll("a")) == [("peer-disconnected", "b")]
    rejoin = await service.register("c", "one")
    assert rejoin.peers_in_room == ["a", "c"]


@pytest.mark.asyncio
async def test_poll_drains_queue_once():
    service = SignalingService()
    await service.send_signal("a", "b", "offer", sdp={"type": "offer", "sdp": "v=0"})
    await service.send_signal("a", "b", "ice-candidate", candidate={"candidate": "cand"})

    signals = await service.poll("b")

    assert [signal.type for signal in signals] == ["offer", "ice-candidate"]
    assert signals[0].sdp == {"type": "offer", "sdp": "v=0"}
    assert signals[1].candidate == {"candidate": "cand"}
    assert signals[0].timestamp.endswith("Z")
    assert await service.poll("b") == []


@pytest.mark.asyncio
async def test_poll_unknown_peer_returns_empty():
    service = SignalingService()

    assert await service.poll("nobody") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "from_, to, type_",
    [(None, "b", "offer"), ("a", None, "offer"), ("a", "b", None), ("", "b", "offer")],
)
async def test_send_signal_requires_fields(from_, to, type_):
    service = SignalingService()

    with pytest.raises(ValidationError):
        await service.send_signal(from_, to, type_)

    assert await service.poll("b") == []


@pytest.mark.asyncio
async def test_poll_requires_peer_id():
    service = SignalingService()

    with pytest.raises(ValidationError):
        await service.poll(None)


@pytest.mark.asyncio
async def test_send_signal_refreshes_sender_activity():
    clock = FakeClock()
    service = SignalingService(timeout=timedelta(minutes=5), clock=clock)
    await service.register("a", "room")

    clock.advance(minutes=4)
    await service.send_signal("a", "b", "offer")
    clock.advance(minutes=4)

    assert await service.sweep() == []
    assert service.peer_count == 1


@pytest.mark.asyncio
async def test_join_legacy_notifies_existing_members_only():
    service = SignalingService()
    await service.register("a", "room")

    result = await service.join_legacy("b", "room")

    assert result.room_code == "room"
    assert result.peers == ["a", "b"]
    assert _kinds(await service.poll("a")) == [("peer-connected", "b")]
    assert await service.poll("b") == []

    await service.join_legacy("b", "room")
    assert await service.poll("a") == []


@pytest.mark.asyncio
async def test_join_legacy_errors():
    service = SignalingService()

    with pytest.raises(ValidationError):
        await service.join_legacy("a", None)
    with pytest.raises(RoomNotFoundError):
        await service.join_legacy("a", "missing")

    assert service.room_count == 0


@pytest.mark.asyncio
async def test_disconnect_last_member_deletes_room():
    service = SignalingService()
    await service.register("a", "room")

    assert await service.disconnect("a") is True

    assert service.room_count == 0
    assert service.peer_count == 0
    fresh = await service.register("b", "room")
    assert fresh.is_initiator is True
    assert fresh.peers_in_room == ["b"]


@pytest.mark.asyncio
async def test_disconnect_notifies_remaining_members_and_discards_mailbox():
    service = SignalingService()
    await service.register("a", "room")
    await service.register("b", "room")
    await service.poll("a")

    assert await service.disconnect("b") is True

    signals = await service.poll("a")
    assert _kinds(signals) == [("peer-disconnected", "b")]
    assert signals[0].to is None
    # "b" had an undrained peer-connected signal that must be gone.
    assert await service.poll("b") == []
    assert service.room_count == 1


@pytest.mark.asyncio
async def test_disconnect_unknown_peer_is_noop():
    service = SignalingService()
    await service.register("a", "room")

    assert await service.disconnect("ghost") is False
    assert await service.disconnect(None) is False
    assert service.peer_count == 1


@pytest.mark.asyncio
async def test_sweep_matches_disconnect():
    clock = FakeClock()
    service = SignalingService(timeout=timedelta(minutes=5), clock=clock)
    await service.register("a", "room")
    await service.register("b", "room")
    await service.poll("a")

    clock.advance(minutes=3)
    await service.poll("a")
    clock.advance(minutes=3)

    evicted = await service.sweep()

    assert evicted == ["b"]
    assert service.peer_count == 1
    assert _kinds(await service.poll("a")) == [("peer-disconnected", "b")]
    assert await service.poll("b") == []


@pytest.mark.asyncio
async def test_sweep_with_explicit_now_and_timeout():
    clock = FakeClock()
    service = SignalingService(clock=clock)
    await service.register("a", "solo")

    assert await service.sweep(clock.current + timedelta(seconds=10), timedelta(seconds=30)) == []
    assert await service.sweep(clock.current + timedelta(seconds=31), timedelta(seconds=30)) == ["a"]
    assert service.room_count == 0
    # A second sweep or a racing disconnect finds nothing left to do.
    assert await service.sweep(clock.current + timedelta(seconds=31), timedelta(seconds=30)) == []
    assert await service.disconnect("a") is False


@pytest.mark.asyncio
async def test_sweeper_task_starts_and_stops():
    service = SignalingService()

    service.start_sweeper(3600)
    task = service._sweep_task
    assert task is not None and not task.done()

    await service.stop_sweeper()

    assert task.cancelled()
    assert service._sweep_task is None


@pytest.mark.asyncio
async def test_register_without_code_into_foreign_room_is_joiner():
    service = SignalingService()
    creator = await service.register("a", "X")
    await service.register("b", "X")
    await service.poll("a")
    await service.poll("b")

    result = await service.register("X")

    assert creator.is_initiator is True
    assert result.is_initiator is False
    assert result.room_code == "X"
    assert result.peers_in_room == ["a", "b", "X"]
    assert _kinds(await service.poll("a")) == [("peer-connected", "X")]
    assert _kinds(await service.poll("X")) == [("peer-connected", "a"), ("peer-connected", "b")]


@pytest.mark.asyncio
async def test_concurrent_registrations_elect_one_initiator():
    service = SignalingService()

    results = await asyncio.gather(*(service.register(str(i), "R") for i in range(10)))

    assert sum(result.is_initiator for result in results) == 1
    members = results[-1].peers_in_room
    assert sorted(members) == sorted(str(i) for i in range(10))
    assert len(set(members)) == 10
    assert service.room_count == 1


@pytest.mark.asyncio
async def test_concurrent_disconnect_and_sweep_broadcast_once():
    clock = FakeClock()
    service = SignalingService(timeout=timedelta(minutes=5), clock=clock)
    await service.register("a", "room")
    await service.register("b", "room")
    await service.poll("a")
    clock.advance(minutes=6)
    await service.poll("a")

    disconnected, evicted = await asyncio.gather(service.disconnect("b"), service.sweep())

    # Exactly one of the two removes the peer; the other finds nothing to do.
    assert (disconnected is True) != (evicted == ["b"])
    assert _kinds(await service.poll("a")) == [("peer-disconnected", "b")]
    assert service.peer_count == 1
    assert service.room_count == 1
