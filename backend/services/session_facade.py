"""
Session Facade — the client-visible API.

Composes the Player Registry and the Round Controller over one explicitly
constructed store and auth provider. Built once at startup by the app lifespan
and torn down with shutdown().

No exception crosses this boundary: every operation resolves to an
ActionResult, either success (with `applied=False` for idempotent no-ops) or a
typed failure carrying an ErrorCode.
"""
import logging
import random
import string
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from agents.player_registry import PlayerRegistry
from agents.role_assigner import RoleAssigner
from agents.round_controller import RoundController
from config import Settings, settings
from models.errors import (
    ErrorCode,
    Forbidden,
    GameError,
    InvalidAction,
    MissingCapability,
    NotHost,
    RoomCodeExhausted,
    StaleSubmission,
)
from models.phases import Phase
from models.session import SCENARIOS, ActionResult, PlayerRecord, SessionState
from services.auth import AuthProvider
from services.media import RECORDING_MAX_SECONDS, MediaCapture
from services.session_store import SessionStore, player_path, session_path

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _coerce_phase(phase: Union[Phase, str]) -> Phase:
    try:
        return Phase(phase)
    except ValueError:
        raise InvalidAction(f"Unknown phase: {phase!r}") from None


def _require_owner(player_id: str, requester_id: Optional[str]) -> None:
    if requester_id is not None and requester_id != player_id:
        raise Forbidden(f"{requester_id} cannot read the record of {player_id}")


class SessionFacade:
    def __init__(
        self,
        store: SessionStore,
        auth: AuthProvider,
        config: Settings = settings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.auth = auth
        self.config = config
        self.clock = clock
        self.assigner = RoleAssigner(rng)
        self.registry = PlayerRegistry(store, config, self.assigner, clock)
        self.controller = RoundController(store, self.registry, self.assigner, config, clock)

    async def _call(self, code: str, operation: str, fn: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        try:
            return await fn()
        except StaleSubmission as exc:
            logger.debug(f"[{code}] {operation} dropped: {exc.detail}")
            return ActionResult.failure(exc)
        except GameError as exc:
            logger.info(f"[{code}] {operation} rejected: {exc.detail}")
            return ActionResult.failure(exc)
        except Exception:
            logger.warning(f"[{code}] {operation} failed", exc_info=True)
            return ActionResult(
                ok=False,
                applied=False,
                error=ErrorCode.STORE_UNAVAILABLE,
                detail="Storage is temporarily unavailable; try again.",
            )

    def _new_code(self) -> str:
        rng = self.assigner.rng
        return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(self.config.room_code_length))

    # ── Sessions ───────────────────────────────────────────────────────────────

    async def create_session(self, host_id: Optional[str] = None) -> ActionResult:
        """Allocate a fresh room code and write a lobby session for the host."""

        async def _create() -> ActionResult:
            host = host_id or self.auth.get_current_user_id()
            for _ in range(self.config.room_code_attempts):
                code = self._new_code()
                if await self.store.get_document(session_path(code)) is None:
                    break
            else:
                raise RoomCodeExhausted(
                    f"No free room code after {self.config.room_code_attempts} attempts"
                )

            session = SessionState(
                code=code,
                host_id=host,
                phase_started_at=self.clock(),
                scenario=self.assigner.rng.choice(SCENARIOS),
            )
            await self.store.set_document(session_path(code), session.model_dump(mode="json"))
            logger.info(f"Session {code} created by host {host} ({session.scenario.title})")
            return ActionResult.success(code=code, host_id=host)

        return await self._call("-", "create_session", _create)

    async def get_session(self, code: str) -> ActionResult:
        code = normalize_code(code)

        async def _get() -> ActionResult:
            session = await self.registry.get_session(code)
            return ActionResult.success(
                session=session.to_public(),
                time_remaining=self.controller.time_remaining(session),
            )

        return await self._call(code, "get_session", _get)

    async def host_session(self, code: str) -> ActionResult:
        """Start the session's polling loop in this process (needs a running event loop)."""
        code = normalize_code(code)

        async def _host() -> ActionResult:
            await self.registry.get_session(code)
            self.controller.start_loop(code)
            return ActionResult.success(code=code)

        return await self._call(code, "host_session", _host)

    async def restart_session(self, code: str, requested_by: Optional[str] = None) -> ActionResult:
        code = normalize_code(code)

        async def _restart() -> ActionResult:
            session = await self.registry.get_session(code)
            self._require_host(session, requested_by)
            await self.controller.restart(code)
            self.controller.start_loop(code)
            return ActionResult.success(phase=Phase.LOBBY.value)

        return await self._call(code, "restart_session", _restart)

    async def advance_phase(
        self, code: str, forced: bool = False, requested_by: Optional[str] = None
    ) -> ActionResult:
        """
        Host control. Forced: advance now. Not forced: advance only if an exit
        condition already holds (same check the polling loop makes).
        """
        code = normalize_code(code)

        async def _advance() -> ActionResult:
            session = await self.registry.get_session(code)
            self._require_host(session, requested_by)
            if forced:
                new_phase = await self.controller.advance(code, expected=session.phase)
            else:
                new_phase = await self.controller.tick(code)
            return ActionResult.success(
                applied=new_phase is not None,
                phase=(new_phase or session.phase).value,
            )

        return await self._call(code, "advance_phase", _advance)

    @staticmethod
    def _require_host(session: SessionState, requested_by: Optional[str]) -> None:
        if requested_by is not None and requested_by != session.host_id:
            raise NotHost("Only the host can do that")

    # ── Players ────────────────────────────────────────────────────────────────

    async def join_session(
        self, code: str, display_name: str, player_id: Optional[str] = None
    ) -> ActionResult:
        code = normalize_code(code)

        async def _join() -> ActionResult:
            name = (display_name or "").strip()
            if not name:
                raise InvalidAction("Display name is required")
            pid = await self.registry.join(code, name, player_id or self.auth.get_current_user_id())
            return ActionResult.success(player_id=pid, code=code)

        return await self._call(code, "join_session", _join)

    async def get_player(
        self, code: str, player_id: str, requester_id: Optional[str] = None
    ) -> ActionResult:
        """A Player Record is readable only by its own player once a requester is named."""
        code = normalize_code(code)

        async def _get() -> ActionResult:
            _require_owner(player_id, requester_id)
            player = await self.registry.get_player(code, player_id)
            return ActionResult.success(player=player.model_dump(mode="json"))

        return await self._call(code, "get_player", _get)

    async def submit_action(
        self, code: str, player_id: str, phase: Union[Phase, str], payload: Dict[str, Any]
    ) -> ActionResult:
        code = normalize_code(code)

        async def _submit() -> ActionResult:
            applied = await self.registry.submit(code, player_id, _coerce_phase(phase), payload or {})
            return ActionResult.success(applied=applied)

        return await self._call(code, "submit_action", _submit)

    async def cast_vote(
        self, code: str, player_id: str, phase: Union[Phase, str], target: Any
    ) -> ActionResult:
        code = normalize_code(code)

        async def _vote() -> ActionResult:
            applied = await self.registry.vote(code, player_id, _coerce_phase(phase), target)
            return ActionResult.success(applied=applied)

        return await self._call(code, "cast_vote", _vote)

    async def capture_and_submit(
        self,
        code: str,
        player_id: str,
        phase: Union[Phase, str],
        media: MediaCapture,
        text: Optional[str] = None,
        prompt_index: Optional[int] = None,
    ) -> ActionResult:
        """
        Run a media capture and submit the handle it returns. A capture failure
        only affects this player; the phase still closes on the timer.
        """
        code = normalize_code(code)

        async def _capture() -> ActionResult:
            target_phase = _coerce_phase(phase)
            try:
                if target_phase == Phase.SKETCH_ROUND:
                    handle = await media.capture_image()
                    payload: Dict[str, Any] = {"sketch": handle, "prompt_index": prompt_index}
                elif target_phase == Phase.PUZZLE_TRANSCRIPT:
                    handle = await media.record_audio(RECORDING_MAX_SECONDS)
                    payload = {"text": text or "", "recording": handle}
                else:
                    raise InvalidAction(f"{target_phase.value} takes no media")
            except GameError:
                raise
            except Exception as exc:
                raise MissingCapability(f"Capture failed: {exc}") from exc
            applied = await self.registry.submit(code, player_id, target_phase, payload)
            return ActionResult.success(applied=applied, handle=handle)

        return await self._call(code, "capture_and_submit", _capture)

    # ── Subscriptions ──────────────────────────────────────────────────────────

    async def subscribe_session(
        self, code: str, on_change: Callable[[Optional[SessionState]], None]
    ) -> ActionResult:
        """On success, data["unsubscribe"] cancels the subscription."""
        code = normalize_code(code)

        async def _subscribe() -> ActionResult:
            await self.registry.get_session(code)
            unsubscribe = self.store.subscribe(
                session_path(code),
                lambda doc: on_change(SessionState(**doc) if doc else None),
            )
            return ActionResult.success(unsubscribe=unsubscribe)

        return await self._call(code, "subscribe_session", _subscribe)

    async def subscribe_player(
        self,
        code: str,
        player_id: str,
        on_change: Callable[[Optional[PlayerRecord]], None],
        requester_id: Optional[str] = None,
    ) -> ActionResult:
        code = normalize_code(code)

        async def _subscribe() -> ActionResult:
            _require_owner(player_id, requester_id)
            await self.registry.get_session(code)
            await self.registry.get_player(code, player_id)
            unsubscribe = self.store.subscribe(
                player_path(code, player_id),
                lambda doc: on_change(PlayerRecord(**doc) if doc else None),
            )
            return ActionResult.success(unsubscribe=unsubscribe)

        return await self._call(code, "subscribe_player", _subscribe)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        await self.controller.shutdown()
        self.store.close()
