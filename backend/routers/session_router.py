"""
Session HTTP endpoints.

Routes:
  POST /api/sessions                              — Create a room (and host its loop here)
  POST /api/sessions/{code}/join                  — Player joins the lobby
  GET  /api/sessions/{code}                       — Public session (murderer/weapon hidden)
  GET  /api/sessions/{code}/players/{player_id}   — Private player record
  POST /api/sessions/{code}/actions               — Submit a phase action
  POST /api/sessions/{code}/votes                 — Cast a vote
  POST /api/sessions/{code}/advance               — Host advances (optionally forced)
  POST /api/sessions/{code}/restart               — Host restarts back to the lobby
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from models.errors import ErrorCode
from models.session import (
    ActionRequest,
    ActionResult,
    CreateSessionRequest,
    CreateSessionResponse,
    JoinSessionRequest,
    JoinSessionResponse,
    VoteRequest,
)
from services.session_facade import SessionFacade

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])

ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.PLAYER_NOT_FOUND: 404,
    ErrorCode.STALE_SUBMISSION: 409,
    ErrorCode.GAME_IN_PROGRESS: 409,
    ErrorCode.NOT_ENOUGH_PLAYERS: 409,
    ErrorCode.NOT_HOST: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_ACTION: 422,
    ErrorCode.MISSING_CAPABILITY: 422,
    ErrorCode.ROOM_CODE_EXHAUSTED: 503,
    ErrorCode.STORE_UNAVAILABLE: 503,
}


def get_facade(request: Request) -> SessionFacade:
    return request.app.state.facade


def _unwrap(result: ActionResult) -> Dict[str, Any]:
    """Return the result's data, or raise the HTTP error its code maps to."""
    if not result.ok:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error, 400),
            detail={"error": result.error.value if result.error else None, "detail": result.detail},
        )
    return result.data


@router.post("/sessions", response_model=CreateSessionResponse, status_code=201)
async def create_session(
    body: CreateSessionRequest = CreateSessionRequest(),
    facade: SessionFacade = Depends(get_facade),
):
    """Create a room in the lobby. This process runs the room's phase loop."""
    data = _unwrap(await facade.create_session(body.host_id))
    _unwrap(await facade.host_session(data["code"]))
    return CreateSessionResponse(code=data["code"], host_id=data["host_id"])


@router.post("/sessions/{code}/join", response_model=JoinSessionResponse)
async def join_session(
    code: str,
    body: JoinSessionRequest,
    facade: SessionFacade = Depends(get_facade),
):
    data = _unwrap(await facade.join_session(code, body.display_name, body.player_id))
    return JoinSessionResponse(player_id=data["player_id"], code=data["code"])


@router.get("/sessions/{code}")
async def get_session(code: str, facade: SessionFacade = Depends(get_facade)):
    """
    Public session state.
    The murderer and weapon are withheld until the reveal; each player learns
    their own role from their private record.
    """
    data = _unwrap(await facade.get_session(code))
    return {**data["session"], "time_remaining": data["time_remaining"]}


@router.get("/sessions/{code}/players/{player_id}")
async def get_player(
    code: str,
    player_id: str,
    requester_id: str = Query(..., description="Must match player_id; records are private"),
    facade: SessionFacade = Depends(get_facade),
):
    """The caller's own Player Record: role, hand, inbox and private intel."""
    return _unwrap(await facade.get_player(code, player_id, requester_id=requester_id))["player"]


@router.post("/sessions/{code}/actions")
async def submit_action(
    code: str,
    body: ActionRequest,
    facade: SessionFacade = Depends(get_facade),
):
    result = await facade.submit_action(code, body.player_id, body.phase, body.payload)
    _unwrap(result)
    return {"applied": result.applied}


@router.post("/sessions/{code}/votes")
async def cast_vote(
    code: str,
    body: VoteRequest,
    facade: SessionFacade = Depends(get_facade),
):
    target = body.target if isinstance(body.target, str) else body.target.model_dump()
    result = await facade.cast_vote(code, body.player_id, body.phase, target)
    _unwrap(result)
    return {"applied": result.applied}


@router.post("/sessions/{code}/advance")
async def advance_phase(
    code: str,
    host_id: str = Query(..., description="Must match the session's host_id"),
    forced: bool = Query(False, description="Skip the exit conditions"),
    facade: SessionFacade = Depends(get_facade),
):
    result = await facade.advance_phase(code, forced=forced, requested_by=host_id)
    data = _unwrap(result)
    return {"applied": result.applied, "phase": data["phase"]}


@router.post("/sessions/{code}/restart")
async def restart_session(
    code: str,
    host_id: str = Query(..., description="Must match the session's host_id"),
    facade: SessionFacade = Depends(get_facade),
):
    data = _unwrap(await facade.restart_session(code, requested_by=host_id))
    logger.info(f"[{code.upper()}] Restart requested by host")
    return {"status": "restarted", "phase": data["phase"]}
