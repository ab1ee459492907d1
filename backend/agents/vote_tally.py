"""
Vote tallying — pure functions over fresh Player Records.

Tallies are always recomputed from the full set of records at transition time,
never accumulated incrementally, so late or out-of-order writes are counted.

Plurality ties go to the choice seen first while iterating in roster order.
That tie-break is arbitrary but deterministic.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models.session import FinalResult, PlayerRecord, RoundResults, SketchEntry, SketchResults

PERFECT = "perfect"
SUSPECT_ONLY = "suspect_only"
WEAPON_ONLY = "weapon_only"
NEITHER = "neither"


def plurality(votes: Iterable[Optional[str]]) -> Tuple[Optional[str], Dict[str, int]]:
    """Return (winning choice or None, {choice: count}); empty votes are skipped."""
    tally: Dict[str, int] = {}
    for vote in votes:
        if vote:
            tally[vote] = tally.get(vote, 0) + 1

    winner: Optional[str] = None
    best = 0
    for choice, count in tally.items():
        if count > best:
            winner, best = choice, count
    return winner, tally


def classify_guess(
    suspect_vote: Optional[str],
    weapon_vote: Optional[str],
    murderer_id: Optional[str],
    chosen_weapon: Optional[str],
) -> str:
    suspect_ok = suspect_vote is not None and suspect_vote == murderer_id
    weapon_ok = weapon_vote is not None and weapon_vote == chosen_weapon
    if suspect_ok and weapon_ok:
        return PERFECT
    if suspect_ok:
        return SUSPECT_ONLY
    if weapon_ok:
        return WEAPON_ONLY
    return NEITHER


def tally_round_results(
    players: Sequence[PlayerRecord],
    murderer_id: Optional[str],
    chosen_weapon: Optional[str],
) -> RoundResults:
    """
    Count first-round (suspect, weapon) guesses per bucket. Only counts are
    kept: the session is publicly readable before REVEAL, and a per-player
    bucket would tell everyone who voted for the murderer.
    """
    result = RoundResults()
    for p in players:
        bucket = classify_guess(
            p.vote_choices.suspect_vote, p.vote_choices.weapon_vote, murderer_id, chosen_weapon
        )
        setattr(result, bucket, getattr(result, bucket) + 1)
    return result


def tally_sketch_votes(players: Sequence[PlayerRecord], sketches: List[SketchEntry]) -> SketchResults:
    """Count votes for submitted sketches; votes for anything else are ignored."""
    owners = {s.player_id for s in sketches}
    votes = [
        p.vote_choices.sketch_vote
        for p in players
        if p.vote_choices.sketch_vote in owners and p.vote_choices.sketch_vote != p.id
    ]
    winner, tally = plurality(votes)
    return SketchResults(tally=tally, winner_id=winner)


def tally_final_vote(
    players: Sequence[PlayerRecord],
    murderer_id: Optional[str],
    chosen_weapon: Optional[str],
) -> FinalResult:
    """
    Plurality on each field independently. The murderer is caught only when
    BOTH the suspect plurality and the weapon plurality are correct.
    """
    final_votes = [p.vote_choices.final_vote for p in players if p.vote_choices.final_vote]
    suspect_choice, suspect_tally = plurality(v.suspect for v in final_votes)
    weapon_choice, weapon_tally = plurality(v.weapon for v in final_votes)
    caught = (
        suspect_choice is not None
        and suspect_choice == murderer_id
        and weapon_choice is not None
        and weapon_choice == chosen_weapon
    )
    return FinalResult(
        suspect_tally=suspect_tally,
        weapon_tally=weapon_tally,
        suspect_choice=suspect_choice,
        weapon_choice=weapon_choice,
        murderer_id=murderer_id,
        chosen_weapon=chosen_weapon,
        caught=caught,
    )
