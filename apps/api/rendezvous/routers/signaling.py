"""Pull-based signaling endpoints: register, signal, poll, join and disconnect."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..schemas import signaling as schemas
from ..services.signaling import SignalingService, get_signaling_service

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse},
    404: {"model": schemas.ErrorResponse},
}


@router.post("/register", response_model=schemas.RegisterResponse)
async def register(
    payload: schemas.RegisterRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> schemas.RegisterResponse:
    """Register a peer and create or join its room."""

    return await service.register(payload.peer_id, payload.room_code, payload.is_initiator)


@router.post("/signal", response_model=schemas.SuccessResponse, responses={400: ERROR_RESPONSES[400]})
async def send_signal(
    payload: schemas.SignalRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> schemas.SuccessResponse:
    """Queue an offer, answer or ICE candidate for another peer."""

    await service.send_signal(
        payload.from_,
        payload.to,
        payload.type,
        sdp=payload.sdp,
        candidate=payload.candidate,
    )
    return schemas.SuccessResponse()


@router.get(
    "/poll",
    response_model=schemas.PollResponse,
    response_model_exclude_none=True,
    responses={400: ERROR_RESPONSES[400]},
)
async def poll(
    peer_id: str | None = Query(default=None, alias="peerId"),
    service: SignalingService = Depends(get_signaling_service),
) -> schemas.PollResponse:
    """Return and clear the caller's pending signals."""

    signals = await service.poll(peer_id)
    return schemas.PollResponse(signals=signals)


@router.post("/join", response_model=schemas.JoinResponse, responses=ERROR_RESPONSES)
async def join(
    payload: schemas.JoinRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> schemas.JoinResponse:
    """Legacy join of an existing room."""

    return await service.join_legacy(payload.peer_id, payload.room_code)


@router.post("/disconnect", response_model=schemas.SuccessResponse)
async def disconnect(
    payload: schemas.DisconnectRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> schemas.SuccessResponse:
    await service.disconnect(payload.peer_id)
    return schemas.SuccessResponse()
