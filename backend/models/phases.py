"""
Phase table for the round state machine.

The game is a single linear pass through PHASE_ORDER. The only way back is an
explicit restart, which returns the session to LOBBY.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Phase(str, Enum):
    LOBBY = "lobby"
    BRAINSTORM = "brainstorm"              # players suggest weapons + a description
    SUSPECT_VOTE = "suspect_vote"
    WEAPON_VOTE = "weapon_vote"
    ROUND_RESULTS = "round_results"
    DEBRIEF1 = "debrief1"
    SKETCH_ROUND = "sketch_round"
    SKETCH_VOTE = "sketch_vote"
    DEBRIEF2 = "debrief2"
    ROLE_REVEAL = "role_reveal"
    PUZZLE_TRANSCRIPT = "puzzle_transcript"  # players write rumors from the transcript
    RUMOR_EXCHANGE = "rumor_exchange"
    FINAL_DEBATE = "final_debate"
    FINAL_VOTE = "final_vote"
    REVEAL = "reveal"


class PhaseKind(str, Enum):
    ACTION = "action"      # submit_action
    VOTE = "vote"          # cast_vote
    DISPLAY = "display"    # nothing to submit; timer or host only


@dataclass(frozen=True)
class PhaseSpec:
    phase: Phase
    kind: PhaseKind
    duration: Optional[int] = None         # seconds; None = never expires
    required_flag: Optional[str] = None    # PlayerFlags field checked for all-submitted


PHASE_ORDER = (
    Phase.LOBBY,
    Phase.BRAINSTORM,
    Phase.SUSPECT_VOTE,
    Phase.WEAPON_VOTE,
    Phase.ROUND_RESULTS,
    Phase.DEBRIEF1,
    Phase.SKETCH_ROUND,
    Phase.SKETCH_VOTE,
    Phase.DEBRIEF2,
    Phase.ROLE_REVEAL,
    Phase.PUZZLE_TRANSCRIPT,
    Phase.RUMOR_EXCHANGE,
    Phase.FINAL_DEBATE,
    Phase.FINAL_VOTE,
    Phase.REVEAL,
)

PHASE_SPECS: Dict[Phase, PhaseSpec] = {
    spec.phase: spec
    for spec in (
        PhaseSpec(Phase.LOBBY, PhaseKind.DISPLAY),
        PhaseSpec(Phase.BRAINSTORM, PhaseKind.ACTION, 120, "has_submitted_brainstorm"),
        PhaseSpec(Phase.SUSPECT_VOTE, PhaseKind.VOTE, 90, "has_voted_suspect"),
        PhaseSpec(Phase.WEAPON_VOTE, PhaseKind.VOTE, 90, "has_voted_weapon"),
        PhaseSpec(Phase.ROUND_RESULTS, PhaseKind.DISPLAY, 30),
        PhaseSpec(Phase.DEBRIEF1, PhaseKind.DISPLAY, 240),
        PhaseSpec(Phase.SKETCH_ROUND, PhaseKind.ACTION, 150, "has_submitted_sketch"),
        PhaseSpec(Phase.SKETCH_VOTE, PhaseKind.VOTE, 90, "has_voted_sketch"),
        PhaseSpec(Phase.DEBRIEF2, PhaseKind.DISPLAY, 240),
        PhaseSpec(Phase.ROLE_REVEAL, PhaseKind.DISPLAY, 30),
        PhaseSpec(Phase.PUZZLE_TRANSCRIPT, PhaseKind.ACTION, 120, "has_submitted_rumor"),
        PhaseSpec(Phase.RUMOR_EXCHANGE, PhaseKind.ACTION, 120, "has_sent_rumors"),
        PhaseSpec(Phase.FINAL_DEBATE, PhaseKind.DISPLAY, 240),
        PhaseSpec(Phase.FINAL_VOTE, PhaseKind.VOTE, 90, "has_voted_final"),
        PhaseSpec(Phase.REVEAL, PhaseKind.DISPLAY),
    )
}


def next_phase(current: Phase) -> Optional[Phase]:
    """Return the phase after `current`, or None at REVEAL (restart is explicit)."""
    idx = PHASE_ORDER.index(current)
    if idx + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[idx + 1]
