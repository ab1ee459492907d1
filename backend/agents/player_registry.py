"""
Player Registry — joins, submissions and votes.

Every write here is player-owned: a player only writes their own record, with
one exception (rumor cards are appended to the recipient's inbox).

Submissions and votes are tagged with the phase the client believes is current.
A tag that no longer matches the session raises StaleSubmission, so answers for
a phase that has just closed are never recorded against the next one.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from agents.role_assigner import RoleAssigner
from config import Settings, settings
from models.errors import (
    GameInProgress,
    InvalidAction,
    PlayerNotFound,
    SessionNotFound,
    StaleSubmission,
)
from models.phases import PHASE_SPECS, Phase, PhaseKind
from models.session import (
    BrainstormPayload,
    FinalVoteChoice,
    InboxCard,
    PlayerRecord,
    RosterEntry,
    RumorPayload,
    RumorSendPayload,
    SessionState,
    SketchPayload,
)
from services.session_store import ArrayAppend, SessionStore, player_path, session_path

logger = logging.getLogger(__name__)

# phase → (submissions field, payload model)
SUBMISSION_FIELDS: Dict[Phase, Tuple[str, Type[BaseModel]]] = {
    Phase.BRAINSTORM: ("brainstorm", BrainstormPayload),
    Phase.SKETCH_ROUND: ("sketch", SketchPayload),
    Phase.PUZZLE_TRANSCRIPT: ("rumor", RumorPayload),
}

# phase → vote_choices field
VOTE_FIELDS: Dict[Phase, str] = {
    Phase.SUSPECT_VOTE: "suspect_vote",
    Phase.WEAPON_VOTE: "weapon_vote",
    Phase.SKETCH_VOTE: "sketch_vote",
    Phase.FINAL_VOTE: "final_vote",
}


def _card_key(index: int) -> str:
    # Firestore field paths must not start with a digit
    return f"card_{index}"


class PlayerRegistry:
    def __init__(
        self,
        store: SessionStore,
        config: Settings = settings,
        assigner: Optional[RoleAssigner] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self.assigner = assigner or RoleAssigner()
        self.clock = clock

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def get_session(self, code: str) -> SessionState:
        doc = await self.store.get_document(session_path(code))
        if doc is None:
            raise SessionNotFound(f"Room {code} not found")
        return SessionState(**doc)

    async def get_player(self, code: str, player_id: str) -> PlayerRecord:
        doc = await self.store.get_document(player_path(code, player_id))
        if doc is None:
            raise PlayerNotFound(f"Player {player_id} is not in room {code}")
        return PlayerRecord(**doc)

    async def get_players(self, session: SessionState) -> List[PlayerRecord]:
        """All Player Records in roster order. Missing records are skipped."""
        docs = await asyncio.gather(
            *(self.store.get_document(player_path(session.code, pid)) for pid in session.roster_ids())
        )
        return [PlayerRecord(**d) for d in docs if d is not None]

    # ── Join ───────────────────────────────────────────────────────────────────

    async def join(self, code: str, display_name: str, player_id: str) -> str:
        """
        Add a player to the lobby. Re-joining with a known id keeps the single
        roster entry and refreshes the Player Record's display name. The roster
        name only follows while the room is still in the lobby; once the game
        starts the roster is frozen.

        The roster check and write happen in one store transaction, so two
        players joining (or renaming) at once never overwrite each other.
        """
        max_players = self.config.max_players

        def decide(doc):
            if doc is None:
                raise SessionNotFound(f"Room {code} not found")
            session = SessionState(**doc)
            if session.in_roster(player_id):
                if session.phase != Phase.LOBBY:
                    return None, "rejoined"
                roster = [
                    RosterEntry(id=e.id, display_name=display_name if e.id == player_id else e.display_name)
                    for e in session.roster
                ]
                return {"roster": [e.model_dump() for e in roster]}, "renamed"
            if session.phase != Phase.LOBBY:
                raise GameInProgress(f"Room {code} has already started")
            if len(session.roster) >= max_players:
                raise InvalidAction(f"Room {code} is full (maximum {max_players} players)")
            entry = RosterEntry(id=player_id, display_name=display_name)
            return {"roster": ArrayAppend(entry.model_dump())}, "joined"

        outcome = await self.store.transact(session_path(code), decide)

        record_path = player_path(code, player_id)
        if outcome == "joined" or await self.store.get_document(record_path) is None:
            record = PlayerRecord(id=player_id, display_name=display_name)
            await self.store.set_document(record_path, record.model_dump(mode="json"))
        else:
            await self.store.update_document(record_path, {"display_name": display_name})
        logger.info(f"[{code}] Player {player_id} {outcome} as {display_name}")
        return player_id

    # ── Submissions ────────────────────────────────────────────────────────────

    def _check_phase(self, session: SessionState, player_id: str, phase: Phase, kind: PhaseKind) -> None:
        if not session.in_roster(player_id):
            raise PlayerNotFound(f"Player {player_id} is not in room {session.code}")
        if session.phase != phase:
            raise StaleSubmission(
                f"{phase.value} is not the current phase (now {session.phase.value})"
            )
        if PHASE_SPECS[phase].kind != kind:
            verb = "votes" if kind == PhaseKind.VOTE else "actions"
            raise InvalidAction(f"{phase.value} does not accept {verb}")

    async def submit(self, code: str, player_id: str, phase: Phase, payload: Dict[str, Any]) -> bool:
        """Record a player's answer for the current phase. Returns False for no-ops."""
        session = await self.get_session(code)
        self._check_phase(session, player_id, phase, PhaseKind.ACTION)

        if phase == Phase.RUMOR_EXCHANGE:
            return await self._send_rumor(session, player_id, payload)

        field, model = SUBMISSION_FIELDS[phase]
        try:
            parsed = model.model_validate(payload)
        except ValidationError as exc:
            raise InvalidAction(f"Invalid {phase.value} submission: {exc}") from exc

        if isinstance(parsed, BrainstormPayload):
            unknown = sorted(set(parsed.answers) - set(session.scenario.question_ids()))
            if unknown:
                raise InvalidAction(f"No such question in {session.scenario.title}: {', '.join(unknown)}")

        if isinstance(parsed, SketchPayload) and parsed.prompt_index is not None:
            if parsed.prompt_index >= len(session.phase_artifacts.sketch_prompts):
                raise InvalidAction(f"No sketch prompt #{parsed.prompt_index}")

        await self.store.update_document(player_path(code, player_id), {
            f"submissions.{field}": parsed.model_dump(mode="json"),
            f"flags.{PHASE_SPECS[phase].required_flag}": True,
        })
        logger.debug(f"[{code}] {player_id} submitted {phase.value}")
        return True

    async def _send_rumor(self, session: SessionState, player_id: str, payload: Dict[str, Any]) -> bool:
        """
        Forward one hand card to another player's inbox.

        The murderer must alter the text before it leaves their hand. Everyone
        else must retype it exactly; the card text as dealt is what gets delivered.
        """
        try:
            parsed = RumorSendPayload.model_validate(payload)
        except ValidationError as exc:
            raise InvalidAction(f"Invalid rumor: {exc}") from exc

        code = session.code
        player = await self.get_player(code, player_id)
        if parsed.card_index >= len(player.hand):
            raise InvalidAction(f"No rumor card #{parsed.card_index} in hand")

        key = _card_key(parsed.card_index)
        if key in player.rumors_sent:
            logger.debug(f"[{code}] {player_id} re-sent {key}; ignoring")
            return False

        card = player.hand[parsed.card_index]
        if session.murderer_id == player_id:
            if not parsed.text.strip() or parsed.text.strip() == card.text.strip():
                raise InvalidAction("Change the rumor before passing it on")
            text = parsed.text
        else:
            if parsed.text != card.text:
                raise InvalidAction("Retyped rumor does not match the card")
            text = card.text

        recipient_id = parsed.recipient_id or self.assigner.pick_recipient(player_id, session.roster_ids())
        if recipient_id is None:
            raise InvalidAction("There is nobody to pass the rumor to")
        if recipient_id == player_id or not session.in_roster(recipient_id):
            raise InvalidAction(f"Cannot send a rumor to {recipient_id}")

        hand_size = len(player.hand)

        def claim(doc):
            if doc is None:
                raise PlayerNotFound(f"Player {player_id} is not in room {code}")
            sent = doc.get("rumors_sent") or {}
            if key in sent:
                return None, False
            updates: Dict[str, Any] = {f"rumors_sent.{key}": recipient_id}
            if len(sent) + 1 >= hand_size:
                updates["flags.has_sent_rumors"] = True
            return updates, True

        # Claim the card first; only the winning send reaches an inbox
        if not await self.store.transact(player_path(code, player_id), claim):
            logger.debug(f"[{code}] {player_id} sent {key} concurrently; ignoring duplicate")
            return False

        inbox_card = InboxCard(id=str(uuid.uuid4()), text=text, received_at=self.clock())
        await self.store.update_document(
            player_path(code, recipient_id), {"inbox": ArrayAppend(inbox_card.model_dump())}
        )
        return True

    # ── Votes ──────────────────────────────────────────────────────────────────

    async def vote(self, code: str, player_id: str, phase: Phase, target: Any) -> bool:
        """Cast a write-once vote. A second vote in the same phase is a no-op (False)."""
        session = await self.get_session(code)
        self._check_phase(session, player_id, phase, PhaseKind.VOTE)

        field = VOTE_FIELDS[phase]
        value = self._validate_vote(session, player_id, phase, target)
        flag = PHASE_SPECS[phase].required_flag

        def decide(doc):
            if doc is None:
                raise PlayerNotFound(f"Player {player_id} is not in room {code}")
            if (doc.get("vote_choices") or {}).get(field) is not None:
                return None, False
            return {f"vote_choices.{field}": value, f"flags.{flag}": True}, True

        applied = await self.store.transact(player_path(code, player_id), decide)
        if applied:
            logger.debug(f"[{code}] {player_id} voted in {phase.value}")
        else:
            logger.debug(f"[{code}] {player_id} already voted in {phase.value}; ignoring")
        return applied

    def _validate_vote(self, session: SessionState, player_id: str, phase: Phase, target: Any) -> Any:
        if phase == Phase.FINAL_VOTE:
            try:
                choice = FinalVoteChoice.model_validate(
                    target.model_dump() if isinstance(target, FinalVoteChoice) else target
                )
            except ValidationError as exc:
                raise InvalidAction(f"Final vote needs a suspect and a weapon: {exc}") from exc
            if not session.in_roster(choice.suspect):
                raise InvalidAction(f"Unknown suspect {choice.suspect}")
            if choice.weapon not in session.weapon_pool:
                raise InvalidAction(f"Unknown weapon {choice.weapon}")
            return choice.model_dump()

        if not isinstance(target, str) or not target:
            raise InvalidAction(f"{phase.value} needs a single target")

        if phase == Phase.SUSPECT_VOTE:
            if not session.in_roster(target):
                raise InvalidAction(f"Unknown suspect {target}")
        elif phase == Phase.WEAPON_VOTE:
            if target not in session.weapon_pool:
                raise InvalidAction(f"Unknown weapon {target}")
        elif phase == Phase.SKETCH_VOTE:
            if target == player_id:
                raise InvalidAction("You cannot vote for your own sketch")
            if target not in {s.player_id for s in session.phase_artifacts.sketches}:
                raise InvalidAction(f"{target} has no sketch in the lineup")
        return target
