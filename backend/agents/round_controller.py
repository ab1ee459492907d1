"""
Round Controller — the phase state machine. Pure deterministic Python.

Responsibilities:
- Exit conditions: all-submitted or timer expiry, evaluated by a polling loop
- Phase transitions along PHASE_ORDER (host force-advance skips the conditions)
- Entry actions: murderer/weapon assignment, sketch prompts, sketch lineup,
  sketch-winner advantage, transcript puzzle, rumor dealing, tallies
- Restart back to the lobby

Every entry action starts from a fresh read of the session and of every
Player Record; nothing is carried over in memory between transitions.
"""
import asyncio
import logging
import time
import weakref
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agents.player_registry import PlayerRegistry
from agents.role_assigner import INNOCENT_FALLBACK_MESSAGE, RoleAssigner
from agents.vote_tally import tally_final_vote, tally_round_results, tally_sketch_votes
from config import Settings, settings
from models.errors import GameError, InvalidAction, NotEnoughPlayers, SessionNotFound
from models.phases import PHASE_SPECS, Phase, next_phase
from models.session import PhaseArtifacts, PlayerRecord, SessionState, SketchEntry
from services.session_store import SessionStore, player_path, session_path

logger = logging.getLogger(__name__)

EXIT_ALL_SUBMITTED = "all_submitted"
EXIT_TIMER = "timer"

EntryAction = Callable[[SessionState, List[PlayerRecord]], Awaitable[Dict[str, Any]]]


class RoundController:
    def __init__(
        self,
        store: SessionStore,
        registry: PlayerRegistry,
        assigner: Optional[RoleAssigner] = None,
        config: Settings = settings,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.registry = registry
        self.assigner = assigner or registry.assigner
        self.config = config
        self.clock = clock
        # Guards against double-advance when the loop and a host override race.
        # Weak values: a room's lock disappears once nobody holds or awaits it.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._loops: Dict[str, asyncio.Task] = {}
        self._entry_actions: Dict[Phase, EntryAction] = {
            Phase.SUSPECT_VOTE: self._enter_suspect_vote,
            Phase.ROUND_RESULTS: self._enter_round_results,
            Phase.SKETCH_ROUND: self._enter_sketch_round,
            Phase.SKETCH_VOTE: self._enter_sketch_vote,
            Phase.DEBRIEF2: self._enter_debrief2,
            Phase.PUZZLE_TRANSCRIPT: self._enter_puzzle_transcript,
            Phase.RUMOR_EXCHANGE: self._enter_rumor_exchange,
            Phase.REVEAL: self._enter_reveal,
        }

    def _lock(self, code: str) -> asyncio.Lock:
        lock = self._locks.get(code)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[code] = lock
        return lock

    # ── Exit conditions ────────────────────────────────────────────────────────

    def time_remaining(self, session: SessionState) -> Optional[float]:
        """Seconds left in the current phase, or None for untimed phases."""
        duration = PHASE_SPECS[session.phase].duration
        if duration is None:
            return None
        return max(0.0, duration - (self.clock() - session.phase_started_at))

    def timer_expired(self, session: SessionState) -> bool:
        duration = PHASE_SPECS[session.phase].duration
        if duration is None:
            return False
        return self.clock() - session.phase_started_at >= duration

    def all_submitted(self, session: SessionState, players: List[PlayerRecord]) -> bool:
        """True when every roster member has raised this phase's completion flag."""
        flag = PHASE_SPECS[session.phase].required_flag
        if flag is None or not session.roster:
            return False
        by_id = {p.id: p for p in players}
        return all(
            pid in by_id and getattr(by_id[pid].flags, flag)
            for pid in session.roster_ids()
        )

    def exit_reason(self, session: SessionState, players: List[PlayerRecord]) -> Optional[str]:
        if self.all_submitted(session, players):
            return EXIT_ALL_SUBMITTED
        if self.timer_expired(session):
            return EXIT_TIMER
        return None

    # ── Transitions ────────────────────────────────────────────────────────────

    async def tick(self, code: str) -> Optional[Phase]:
        """
        One polling step. Advances when an exit condition holds.
        Returns the new phase, or None when nothing changed.
        """
        return await self._tick(await self.registry.get_session(code))

    async def _tick(self, session: SessionState) -> Optional[Phase]:
        players = await self.registry.get_players(session)
        reason = self.exit_reason(session, players)
        if reason is None:
            return None
        logger.info(f"[{session.code}] {session.phase.value} exit condition met ({reason})")
        return await self.advance(session.code, expected=session.phase)

    async def advance(self, code: str, expected: Optional[Phase] = None) -> Optional[Phase]:
        """
        Move to the next phase and run its entry action exactly once.

        `expected` makes the call idempotent: if the session has already left
        that phase (another caller won the race) nothing happens and None is
        returned.
        """
        async with self._lock(code):
            session = await self.registry.get_session(code)
            if expected is not None and session.phase != expected:
                logger.debug(f"[{code}] Advance from {expected.value} skipped; already {session.phase.value}")
                return None

            current = session.phase
            target = next_phase(current)
            if target is None:
                raise InvalidAction("The game is over; restart to play again")
            if current == Phase.LOBBY and len(session.roster) < self.config.min_players:
                raise NotEnoughPlayers(
                    f"Need at least {self.config.min_players} players to start; got {len(session.roster)}."
                )

            updates: Dict[str, Any] = {}
            action = self._entry_actions.get(target)
            if action is not None:
                players = await self.registry.get_players(session)
                updates.update(await action(session, players))

            updates["phase"] = target.value
            updates["phase_started_at"] = self.clock()
            await self.store.update_document(session_path(code), updates)
            logger.info(f"[{code}] Phase: {current.value} → {target.value}")
            return target

    async def restart(self, code: str) -> None:
        """
        Back to the lobby with the same roster. Clears the murderer, weapons and
        artifacts; every Player Record is reset except id and display name.
        """
        async with self._lock(code):
            session = await self.registry.get_session(code)
            players = await self.registry.get_players(session)
            await asyncio.gather(*(
                self.store.set_document(player_path(code, p.id), p.reset().model_dump(mode="json"))
                for p in players
            ))
            await self.store.update_document(session_path(code), {
                "phase": Phase.LOBBY.value,
                "phase_started_at": self.clock(),
                "murderer_id": None,
                "chosen_weapon": None,
                "weapon_pool": [],
                "phase_artifacts": PhaseArtifacts().model_dump(mode="json"),
                "game_number": session.game_number + 1,
            })
            logger.info(f"[{code}] Restarted (game {session.game_number + 1}, {len(players)} players kept)")

    # ── Entry actions ──────────────────────────────────────────────────────────

    async def _enter_suspect_vote(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        """Assemble the weapon pool, then pick the murderer and the weapon."""
        code = session.code
        if session.murderer_id:
            logger.warning(f"[{code}] Murderer already assigned; keeping existing assignment")
            return {}

        suggestions = [p.submissions.brainstorm.weapon for p in players if p.submissions.brainstorm]
        pool = self.assigner.build_weapon_pool(suggestions)
        player_ids = [p.id for p in players]
        murderer_id = self.assigner.pick_murderer(player_ids)
        weapon = self.assigner.pick_weapon(pool)

        await asyncio.gather(*(
            self.store.update_document(player_path(code, pid), {"is_murderer": pid == murderer_id})
            for pid in player_ids
        ))
        logger.info(
            f"[{code}] Roles assigned to {len(player_ids)} players; "
            f"weapon pool of {len(pool)} from {len([w for w in suggestions if w])} suggestions"
        )
        logger.debug(f"[{code}] Murderer={murderer_id} weapon={weapon}")
        return {"murderer_id": murderer_id, "weapon_pool": pool, "chosen_weapon": weapon}

    async def _enter_round_results(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        results = tally_round_results(players, session.murderer_id, session.chosen_weapon)
        logger.info(
            f"[{session.code}] Round results: perfect={results.perfect} suspect_only={results.suspect_only} "
            f"weapon_only={results.weapon_only} neither={results.neither}"
        )
        return {"phase_artifacts.round_results": results.model_dump(mode="json")}

    async def _enter_sketch_round(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        prompts = self.assigner.pick_sketch_prompts(players, session.murderer_id)
        fillers = sum(1 for p in prompts if p.filler)
        if fillers:
            logger.info(f"[{session.code}] Sketch prompts backfilled with {fillers} filler prompt(s)")
        return {"phase_artifacts.sketch_prompts": [p.model_dump(mode="json") for p in prompts]}

    async def _enter_sketch_vote(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        sketches = [
            SketchEntry(
                player_id=p.id,
                sketch=p.submissions.sketch.sketch,
                prompt_index=p.submissions.sketch.prompt_index,
            )
            for p in players
            if p.submissions.sketch is not None
        ]
        logger.info(f"[{session.code}] Sketch lineup: {len(sketches)} of {len(players)} submitted")
        return {"phase_artifacts.sketches": [s.model_dump(mode="json") for s in sketches]}

    async def _enter_debrief2(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        """Sketch winner learns, privately, that one other player is innocent."""
        code = session.code
        results = tally_sketch_votes(players, session.phase_artifacts.sketches)
        winner_id = results.winner_id
        if winner_id is None:
            logger.info(f"[{code}] No sketch votes; no advantage this game")
        else:
            innocent_id = self.assigner.pick_innocent(session.roster_ids(), session.murderer_id, winner_id)
            if innocent_id is None:
                message = INNOCENT_FALLBACK_MESSAGE
            else:
                names = {e.id: e.display_name for e in session.roster}
                message = f"Your sketch won the lineup. The evidence clears {names[innocent_id]}: they are innocent."
            await self.store.update_document(player_path(code, winner_id), {"private_intel": message})
            logger.info(f"[{code}] Sketch winner {winner_id} with {results.tally.get(winner_id, 0)} votes")
        return {"phase_artifacts.sketch_results": results.model_dump(mode="json")}

    async def _enter_puzzle_transcript(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        puzzle = self.assigner.build_transcript(players, session.chosen_weapon)
        return {"phase_artifacts.puzzle": puzzle.model_dump(mode="json")}

    async def _enter_rumor_exchange(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        rumors = [p.submissions.rumor.text for p in players if p.submissions.rumor is not None]
        hands = self.assigner.deal_rumors(rumors, [p.id for p in players])
        await asyncio.gather(*(
            self.store.update_document(player_path(session.code, pid), {
                "hand": [card.model_dump() for card in cards],
                "rumors_sent": {},
            })
            for pid, cards in hands.items()
        ))
        if not rumors:
            logger.info(f"[{session.code}] No rumors written; dealing default rumors")
        return {}

    async def _enter_reveal(self, session: SessionState, players: List[PlayerRecord]) -> Dict[str, Any]:
        result = tally_final_vote(players, session.murderer_id, session.chosen_weapon)
        result.victim = session.scenario.victim
        murderer = next((p for p in players if p.id == session.murderer_id), None)
        answers = murderer.submissions.brainstorm.answers if murderer and murderer.submissions.brainstorm else {}
        result.motive_summary = session.scenario.render_intro(answers)
        result.murderer_alibi = answers.get("alibi") or None
        logger.info(
            f"[{session.code}] Final vote: suspect={result.suspect_choice} weapon={result.weapon_choice} "
            f"caught={result.caught}"
        )
        return {"phase_artifacts.final_result": result.model_dump(mode="json")}

    # ── Host polling loop ──────────────────────────────────────────────────────

    def start_loop(self, code: str) -> asyncio.Task:
        """Start (or return the running) polling task for a session."""
        task = self._loops.get(code)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._poll(code))
        self._loops[code] = task
        return task

    def is_hosting(self, code: str) -> bool:
        task = self._loops.get(code)
        return task is not None and not task.done()

    def lobby_expired(self, session: SessionState) -> bool:
        return (
            session.phase == Phase.LOBBY
            and self.clock() - session.phase_started_at >= self.config.lobby_timeout_seconds
        )

    async def _poll(self, code: str) -> None:
        """
        Tick until the game reaches REVEAL, the lobby sits idle past
        lobby_timeout_seconds, or the session disappears. restart() puts the
        room back in the lobby; the facade starts a new loop for it.
        """
        logger.info(f"[{code}] Host loop started (every {self.config.poll_interval_seconds}s)")
        try:
            while True:
                try:
                    session = await self.registry.get_session(code)
                    if session.phase == Phase.REVEAL:
                        logger.info(f"[{code}] Game over; stopping host loop")
                        return
                    if self.lobby_expired(session):
                        logger.info(f"[{code}] Lobby idle for {self.config.lobby_timeout_seconds}s; stopping host loop")
                        return
                    if await self._tick(session) == Phase.REVEAL:
                        logger.info(f"[{code}] Game over; stopping host loop")
                        return
                except SessionNotFound:
                    logger.warning(f"[{code}] Session vanished; stopping host loop")
                    return
                except GameError as exc:
                    logger.warning(f"[{code}] Tick skipped: {exc.detail}")
                except Exception:
                    logger.warning(f"[{code}] Tick failed; retrying next interval", exc_info=True)
                await asyncio.sleep(self.config.poll_interval_seconds)
        finally:
            if self._loops.get(code) is asyncio.current_task():
                del self._loops[code]
            logger.info(f"[{code}] Host loop stopped")

    async def stop_loop(self, code: str) -> None:
        task = self._loops.get(code)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = [t for t in self._loops.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
