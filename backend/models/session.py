from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Union
from collections import defaultdict
from datetime import datetime, timezone

from models.errors import ErrorCode, GameError
from models.phases import Phase


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class ScenarioQuestion(BaseModel):
    id: str
    text: str


class Scenario(BaseModel):
    id: str
    title: str
    victim: str
    setting: str
    # str.format template over question ids, e.g. "... craving {food}."
    intro_template: str = ""
    questions: List[ScenarioQuestion] = []

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def render_intro(self, answers: Dict[str, str]) -> str:
        """Fill the template from dossier answers; blanks read as '???'."""
        filled = defaultdict(lambda: "???", {k: v for k, v in answers.items() if v})
        return self.intro_template.format_map(filled)


SCENARIOS: List[Scenario] = [
    Scenario(
        id="cabin",
        title="Murder at the Cabin",
        victim="The Caretaker",
        setting="a snowed-in lakeside cabin with no phone signal",
        intro_template="The caretaker was found beside {object}. The suspect kept talking about {snack}.",
        questions=[
            ScenarioQuestion(id="object", text="Name something heavy you would find in a cabin."),
            ScenarioQuestion(id="snack", text="What snack would you fight someone for?"),
            ScenarioQuestion(id="alibi", text="Where were you 5 minutes ago?"),
        ],
    ),
    Scenario(
        id="corporate",
        title="The Boardroom Betrayal",
        victim="The CEO",
        setting="a glass-walled boardroom after the quarterly review",
        intro_template="Police found {object} near the body. The suspect claimed they were craving {food}.",
        questions=[
            ScenarioQuestion(id="object", text="Name a heavy office object."),
            ScenarioQuestion(id="food", text="What fast food are you craving right now?"),
            ScenarioQuestion(id="alibi", text="Where were you 5 minutes ago?"),
        ],
    ),
    Scenario(
        id="wedding",
        title="The Wedding Crasher",
        victim="The Best Man",
        setting="a vineyard reception that ran far too late",
        intro_template="The murder weapon was a {object}. Witnesses say the killer smelled like {smell}.",
        questions=[
            ScenarioQuestion(id="object", text="Name a sharp object found at a wedding."),
            ScenarioQuestion(id="smell", text="What is your favorite weird smell?"),
            ScenarioQuestion(id="alibi", text="Who were you dancing with?"),
        ],
    ),
]


# ── Per-phase submission payloads ─────────────────────────────────────────────

class BrainstormPayload(BaseModel):
    weapon: str = Field(default="", max_length=60)
    description: str = Field(default="", max_length=280)  # becomes a sketch prompt
    answers: Dict[str, str] = {}  # scenario question id → dossier answer

    @field_validator("weapon", "description")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("answers")
    @classmethod
    def _strip_answers(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key, answer in v.items():
            if len(answer) > 120:
                raise ValueError(f"answer to {key!r} is too long")
        return {key: answer.strip() for key, answer in v.items()}


class SketchPayload(BaseModel):
    sketch: str = Field(..., min_length=1)  # opaque media handle
    prompt_index: Optional[int] = Field(default=None, ge=0)


class RumorPayload(BaseModel):
    text: str = Field(..., min_length=1, max_length=280)
    recording: Optional[str] = None  # opaque audio handle

    @field_validator("text")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("rumor text must not be blank")
        return v


class RumorSendPayload(BaseModel):
    """One rumor card forwarded during RUMOR_EXCHANGE."""

    card_index: int = Field(..., ge=0)
    text: str
    recipient_id: Optional[str] = None  # None = random other player


class FinalVoteChoice(BaseModel):
    suspect: str
    weapon: str


# ── Player Record ─────────────────────────────────────────────────────────────

class PlayerSubmissions(BaseModel):
    brainstorm: Optional[BrainstormPayload] = None
    sketch: Optional[SketchPayload] = None
    rumor: Optional[RumorPayload] = None


class VoteChoices(BaseModel):
    suspect_vote: Optional[str] = None
    weapon_vote: Optional[str] = None
    sketch_vote: Optional[str] = None
    final_vote: Optional[FinalVoteChoice] = None


class PlayerFlags(BaseModel):
    has_submitted_brainstorm: bool = False
    has_voted_suspect: bool = False
    has_voted_weapon: bool = False
    has_submitted_sketch: bool = False
    has_voted_sketch: bool = False
    has_submitted_rumor: bool = False
    has_sent_rumors: bool = False
    has_voted_final: bool = False


class RumorCard(BaseModel):
    text: str


class InboxCard(BaseModel):
    id: str
    text: str
    received_at: float


class PlayerRecord(BaseModel):
    id: str
    display_name: str
    is_murderer: bool = False
    submissions: PlayerSubmissions = Field(default_factory=PlayerSubmissions)
    vote_choices: VoteChoices = Field(default_factory=VoteChoices)
    flags: PlayerFlags = Field(default_factory=PlayerFlags)
    hand: List[RumorCard] = []
    rumors_sent: Dict[str, str] = {}  # card index (as str) → recipient id
    inbox: List[InboxCard] = []       # append-only; written by other players
    private_intel: Optional[str] = None

    def reset(self) -> "PlayerRecord":
        """Fresh record for a restarted game; identity survives."""
        return PlayerRecord(id=self.id, display_name=self.display_name)


# ── Phase artifacts (written only by the round controller) ───────────────────

class RoundResults(BaseModel):
    perfect: int = 0
    suspect_only: int = 0
    weapon_only: int = 0
    neither: int = 0


class SketchPrompt(BaseModel):
    text: str
    filler: bool = False


class SketchEntry(BaseModel):
    player_id: str
    sketch: str
    prompt_index: Optional[int] = None


class SketchResults(BaseModel):
    tally: Dict[str, int] = {}
    winner_id: Optional[str] = None


class TranscriptPuzzle(BaseModel):
    lines: List[str] = []
    weapon_hint: str = ""


class FinalResult(BaseModel):
    suspect_tally: Dict[str, int] = {}
    weapon_tally: Dict[str, int] = {}
    suspect_choice: Optional[str] = None
    weapon_choice: Optional[str] = None
    murderer_id: Optional[str] = None
    chosen_weapon: Optional[str] = None
    caught: bool = False
    victim: str = ""
    motive_summary: str = ""  # scenario intro filled from the murderer's dossier
    murderer_alibi: Optional[str] = None


class PhaseArtifacts(BaseModel):
    round_results: Optional[RoundResults] = None
    sketch_prompts: List[SketchPrompt] = []
    sketches: List[SketchEntry] = []
    sketch_results: Optional[SketchResults] = None
    puzzle: Optional[TranscriptPuzzle] = None
    final_result: Optional[FinalResult] = None


# ── Session ───────────────────────────────────────────────────────────────────

class RosterEntry(BaseModel):
    id: str
    display_name: str


class SessionState(BaseModel):
    code: str
    host_id: str
    phase: Phase = Phase.LOBBY
    phase_started_at: float = 0.0
    roster: List[RosterEntry] = []
    murderer_id: Optional[str] = None
    weapon_pool: List[str] = []
    chosen_weapon: Optional[str] = None
    phase_artifacts: PhaseArtifacts = Field(default_factory=PhaseArtifacts)
    scenario: Scenario = Field(default_factory=lambda: SCENARIOS[0])
    game_number: int = 1
    created_at: datetime = Field(default_factory=_utcnow)

    def roster_ids(self) -> List[str]:
        return [entry.id for entry in self.roster]

    def in_roster(self, player_id: str) -> bool:
        return any(entry.id == player_id for entry in self.roster)

    def to_public(self) -> Dict[str, Any]:
        """Murderer and weapon stay hidden until REVEAL."""
        data = self.model_dump(mode="json")
        if self.phase != Phase.REVEAL:
            data["murderer_id"] = None
            data["chosen_weapon"] = None
        return data


# ── Facade results ────────────────────────────────────────────────────────────

class ActionResult(BaseModel):
    """Outcome of every facade operation; failures never escape as exceptions."""

    ok: bool
    applied: bool = True  # False for idempotent no-ops (repeat votes, resent cards)
    error: Optional[ErrorCode] = None
    detail: str = ""
    data: Dict[str, Any] = {}

    @classmethod
    def success(cls, applied: bool = True, **data: Any) -> "ActionResult":
        return cls(ok=True, applied=applied, data=data)

    @classmethod
    def failure(cls, exc: GameError) -> "ActionResult":
        return cls(ok=False, applied=False, error=exc.code, detail=exc.detail)


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateSessionRequest(BaseModel):
    host_id: Optional[str] = None  # stable auth id; issued server-side when omitted


class CreateSessionResponse(BaseModel):
    code: str
    host_id: str


class JoinSessionRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=40)
    player_id: Optional[str] = None


class JoinSessionResponse(BaseModel):
    player_id: str
    code: str


class ActionRequest(BaseModel):
    player_id: str
    phase: Phase
    payload: Dict[str, Any] = {}


class VoteRequest(BaseModel):
    player_id: str
    phase: Phase
    target: Union[str, FinalVoteChoice]
