"""
Role Assignment — deterministic-given-seed random selections.

Responsibilities:
- Assemble the weapon pool from player suggestions plus defaults
- Pick the murderer and the murder weapon
- Pick sketch prompts from innocent players' descriptions
- Build the anonymised transcript puzzle
- Deal rumor cards
- Pick the innocent player disclosed to the sketch winner

No I/O here; the round controller reads state, calls these, and writes results.
"""
import random
from typing import Dict, Iterable, List, Optional, Sequence

from models.session import PlayerRecord, RumorCard, SketchPrompt, TranscriptPuzzle


# ── Fallback content (used when players submit nothing) ───────────────────────

DEFAULT_WEAPONS: List[str] = [
    "Fire Poker",
    "Canoe Paddle",
    "Cast-Iron Skillet",
    "Frozen Trout",
]

FILLER_SKETCH_PROMPTS: List[str] = [
    "A figure in a dripping raincoat standing by the woodpile.",
    "Muddy boot prints leading from the boathouse to the back door.",
]

DEFAULT_RUMORS: List[str] = [
    "Someone heard footsteps on the porch long after midnight.",
    "The caretaker was arguing with a guest about the firewood.",
]

SKETCH_PROMPT_COUNT = 2
HAND_SIZE = 2

INNOCENT_FALLBACK_MESSAGE = (
    "The cabin keeps its secrets. There is nobody else the evidence can clear this time."
)


def mask_weapon(weapon: str) -> str:
    """'Fire Poker' → 'F___ _____' (first letter kept, spaces kept)."""
    if not weapon:
        return ""
    return weapon[0] + "".join(" " if ch == " " else "_" for ch in weapon[1:])


class RoleAssigner:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    # ── Murderer + weapon ──────────────────────────────────────────────────────

    def build_weapon_pool(self, suggestions: Iterable[str]) -> List[str]:
        """Player suggestions first (deduped case-insensitively), then defaults."""
        pool: List[str] = []
        seen = set()
        for weapon in list(suggestions) + DEFAULT_WEAPONS:
            name = (weapon or "").strip()
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            pool.append(name)
        return pool

    def pick_murderer(self, roster_ids: Sequence[str]) -> str:
        if not roster_ids:
            raise ValueError("Cannot pick a murderer from an empty roster")
        return self.rng.choice(list(roster_ids))

    def pick_weapon(self, weapon_pool: Sequence[str]) -> str:
        if not weapon_pool:
            raise ValueError("Cannot pick a weapon from an empty pool")
        return self.rng.choice(list(weapon_pool))

    # ── Sketch round ───────────────────────────────────────────────────────────

    def pick_sketch_prompts(
        self, players: Sequence[PlayerRecord], murderer_id: Optional[str]
    ) -> List[SketchPrompt]:
        """
        Two descriptions from two different non-murderers, sampled without
        replacement. Short rounds are backfilled with filler text.
        """
        candidates = [
            p
            for p in players
            if p.id != murderer_id
            and p.submissions.brainstorm is not None
            and p.submissions.brainstorm.description
        ]
        chosen = self.rng.sample(candidates, min(SKETCH_PROMPT_COUNT, len(candidates)))
        prompts = [SketchPrompt(text=p.submissions.brainstorm.description) for p in chosen]

        filler = iter(FILLER_SKETCH_PROMPTS)
        while len(prompts) < SKETCH_PROMPT_COUNT:
            prompts.append(SketchPrompt(text=next(filler), filler=True))
        return prompts

    # ── Sketch-winner advantage ────────────────────────────────────────────────

    def pick_innocent(
        self,
        roster_ids: Sequence[str],
        murderer_id: Optional[str],
        winner_id: Optional[str],
    ) -> Optional[str]:
        pool = [pid for pid in roster_ids if pid not in (murderer_id, winner_id)]
        if not pool:
            return None
        return self.rng.choice(pool)

    # ── Transcript puzzle ──────────────────────────────────────────────────────

    def build_transcript(
        self, players: Sequence[PlayerRecord], chosen_weapon: Optional[str]
    ) -> TranscriptPuzzle:
        lines = [
            p.submissions.brainstorm.description
            for p in players
            if p.submissions.brainstorm is not None and p.submissions.brainstorm.description
        ]
        self.rng.shuffle(lines)
        return TranscriptPuzzle(lines=lines, weapon_hint=mask_weapon(chosen_weapon or ""))

    # ── Rumor exchange ─────────────────────────────────────────────────────────

    def deal_rumors(
        self, rumors: Sequence[str], player_ids: Sequence[str]
    ) -> Dict[str, List[RumorCard]]:
        """HAND_SIZE cards per player, each drawn independently (with replacement)."""
        deck = [r for r in rumors if r] or list(DEFAULT_RUMORS)
        return {
            pid: [RumorCard(text=self.rng.choice(deck)) for _ in range(HAND_SIZE)]
            for pid in player_ids
        }

    def pick_recipient(self, sender_id: str, roster_ids: Sequence[str]) -> Optional[str]:
        others = [pid for pid in roster_ids if pid != sender_id]
        if not others:
            return None
        return self.rng.choice(others)
