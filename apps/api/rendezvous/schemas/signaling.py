"""Data contracts for the signaling endpoints.

Field names are camelCase on the wire to stay compatible with existing mobile clients.
"""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SignalType(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    PEER_CONNECTED = "peer-connected"
    PEER_DISCONNECTED = "peer-disconnected"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Signal(BaseModel):
    """A queued handshake message. Immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str
    from_: str = Field(..., alias="from")
    to: str | None = None
    sdp: Any | None = None
    candidate: Any | None = None
    timestamp: str


class RegisterRequest(CamelModel):
    peer_id: str | None = None
    room_code: str | None = None
    is_initiator: bool | None = Field(default=None, description="Client role hint; ignored by the server")


class RegisterResponse(CamelModel):
    success: bool = True
    peer_id: str
    room_code: str
    is_initiator: bool
    peers_in_room: list[str]


class SignalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    type: str | None = None
    sdp: Any | None = None
    candidate: Any | None = None


class SuccessResponse(BaseModel):
    success: bool = True


class PollResponse(BaseModel):
    signals: list[Signal] = Field(default_factory=list)


class JoinRequest(CamelModel):
    peer_id: str | None = None
    room_code: str | None = None


class JoinResponse(CamelModel):
    success: bool = True
    room_code: str
    peers: list[str]


class DisconnectRequest(CamelModel):
    peer_id: str | None = None


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str
    peers: int = Field(..., ge=0)
    rooms: int = Field(..., ge=0)


class StatusResponse(BaseModel):
    status: str
    peers: int = Field(..., ge=0)
    rooms: int = Field(..., ge=0)
    uptime: float = Field(..., ge=0, description="Seconds since the service started")


class ErrorResponse(BaseModel):
    error: str
