"""
WebSocket Hub — pushes live session and player documents to clients.

URL: /ws/{code}?playerId={player_id}

Connection flow:
  1. Validate the session exists (and the player, when one is given)
  2. Accept and register the connection
  3. Subscribe to the session document and the player's own record; every
     snapshot is forwarded as {"type": "session" | "player", "data": ...}
  4. Message loop (_dispatch_message)
  5. On disconnect: unsubscribe and drop the connection

Client → server message types:
  ping    — keep-alive heartbeat → responds with "pong"
  action  — {"phase", "payload"} submit for the current phase
  vote    — {"phase", "target"} cast a vote

Store listeners may fire on a background thread, so snapshots are handed to
the event loop through an asyncio.Queue.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from models.session import ActionResult, PlayerRecord, SessionState
from services.session_facade import SessionFacade, normalize_code

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """Tracks active WebSocket connections per session."""

    def __init__(self):
        # {code: {player_id: WebSocket}}
        self._sessions: Dict[str, Dict[str, WebSocket]] = {}

    async def connect(self, code: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._sessions.setdefault(code, {})[player_id] = ws
        logger.debug(f"[{code}] {player_id} connected ({self.count(code)} total)")

    def disconnect(self, code: str, player_id: str) -> None:
        conns = self._sessions.get(code, {})
        conns.pop(player_id, None)
        if not conns:
            self._sessions.pop(code, None)

    def count(self, code: str) -> int:
        return len(self._sessions.get(code, {}))

    async def send_to(self, code: str, player_id: str, message: Dict) -> None:
        ws = self._sessions.get(code, {}).get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{code}] send_to {player_id} failed: {exc}")
                self.disconnect(code, player_id)


manager = ConnectionManager()


def _session_message(session: Optional[SessionState]) -> Dict[str, Any]:
    return {"type": "session", "data": session.to_public() if session else None}


def _player_message(player: Optional[PlayerRecord]) -> Dict[str, Any]:
    return {"type": "player", "data": player.model_dump(mode="json") if player else None}


def _result_message(request_type: str, result: ActionResult) -> Dict[str, Any]:
    return {
        "type": "result",
        "request": request_type,
        "ok": result.ok,
        "applied": result.applied,
        "error": result.error.value if result.error else None,
        "detail": result.detail,
    }


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{code}")
async def websocket_endpoint(
    ws: WebSocket,
    code: str,
    playerId: str = Query(..., description="Player id from the join response"),
):
    facade: SessionFacade = ws.app.state.facade
    code = normalize_code(code)

    if not (await facade.get_session(code)).ok:
        await ws.close(code=4404, reason="Session not found")
        return
    if not (await facade.get_player(code, playerId)).ok:
        await ws.close(code=4403, reason="Player not found in this session")
        return

    await manager.connect(code, playerId, ws)

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def _push(build: Callable[[Any], Dict[str, Any]]) -> Callable[[Any], None]:
        return lambda doc: loop.call_soon_threadsafe(outbox.put_nowait, build(doc))

    unsubscribers: List[Callable[[], None]] = []
    for result in (
        await facade.subscribe_session(code, _push(_session_message)),
        await facade.subscribe_player(code, playerId, _push(_player_message), requester_id=playerId),
    ):
        if result.ok:
            unsubscribers.append(result.data["unsubscribe"])
        else:
            logger.warning(f"[{code}] Subscription for {playerId} failed: {result.detail}")

    async def _forward() -> None:
        while True:
            message = await outbox.get()
            await manager.send_to(code, playerId, message)

    forwarder = asyncio.create_task(_forward())

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(code, playerId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            msg_type = data.get("type", "")
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            await _dispatch_message(facade, code, playerId, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        manager.disconnect(code, playerId)
        logger.debug(f"[{code}] {playerId} disconnected ({manager.count(code)} left)")


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _dispatch_message(
    facade: SessionFacade,
    code: str,
    player_id: str,
    msg_type: str,
    data: Dict,
) -> None:
    if msg_type == "ping":
        await manager.send_to(code, player_id, {"type": "pong"})

    elif msg_type == "action":
        result = await facade.submit_action(code, player_id, data.get("phase", ""), data.get("payload") or {})
        await manager.send_to(code, player_id, _result_message(msg_type, result))

    elif msg_type == "vote":
        result = await facade.cast_vote(code, player_id, data.get("phase", ""), data.get("target"))
        await manager.send_to(code, player_id, _result_message(msg_type, result))

    else:
        await manager.send_to(code, player_id, {
            "type": "error",
            "message": f"Unknown message type: {msg_type}",
            "code": "UNKNOWN_TYPE",
        })
