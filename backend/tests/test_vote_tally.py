"""Tally tests: pure functions, no store."""

from agents.vote_tally import (
    NEITHER,
    PERFECT,
    SUSPECT_ONLY,
    WEAPON_ONLY,
    classify_guess,
    plurality,
    tally_final_vote,
    tally_round_results,
    tally_sketch_votes,
)
from models.session import FinalVoteChoice, PlayerRecord, SketchEntry, VoteChoices


def _player(pid, suspect=None, weapon=None, sketch=None, final=None):
    return PlayerRecord(
        id=pid,
        display_name=pid.upper(),
        vote_choices=VoteChoices(
            suspect_vote=suspect,
            weapon_vote=weapon,
            sketch_vote=sketch,
            final_vote=FinalVoteChoice(suspect=final[0], weapon=final[1]) if final else None,
        ),
    )


def test_round_results_worked_example():
    players = [
        _player("a", "c", "Axe"),
        _player("b", "c", "Knife"),
        _player("c", "d", "Axe"),
        _player("d", "b", "Axe"),
    ]
    results = tally_round_results(players, murderer_id="c", chosen_weapon="Axe")
    assert results.perfect == 1
    assert results.suspect_only == 1
    assert results.weapon_only == 2
    assert results.neither == 0
    assert "buckets" not in results.model_dump()


def test_round_results_missing_votes_count_as_neither():
    players = [_player("a"), _player("b", "c", None)]
    results = tally_round_results(players, murderer_id="c", chosen_weapon="Axe")
    assert results.neither == 1
    assert results.suspect_only == 1


def test_plurality_tie_goes_to_first_seen():
    winner, tally = plurality(["b", "a", "a", "b", None])
    assert tally == {"b": 2, "a": 2}
    assert winner == "b"


def test_plurality_of_nothing():
    assert plurality([]) == (None, {})


def test_final_vote_right_suspect_wrong_weapon_is_not_caught():
    players = [
        _player("a", final=("c", "Knife")),
        _player("b", final=("c", "Knife")),
        _player("c", final=("a", "Axe")),
    ]
    result = tally_final_vote(players, murderer_id="c", chosen_weapon="Axe")
    assert result.suspect_choice == "c"
    assert result.weapon_choice == "Knife"
    assert result.caught is False


def test_final_vote_both_right_is_caught():
    players = [
        _player("a", final=("c", "Axe")),
        _player("b", final=("c", "Axe")),
        _player("c", final=("b", "Knife")),
    ]
    result = tally_final_vote(players, murderer_id="c", chosen_weapon="Axe")
    assert result.caught is True
    assert result.suspect_tally == {"c": 2, "b": 1}


def test_final_vote_without_votes_is_not_caught():
    result = tally_final_vote([_player("a"), _player("b")], murderer_id="a", chosen_weapon="Axe")
    assert result.suspect_choice is None
    assert result.caught is False


def test_sketch_votes_ignore_self_and_unknown_targets():
    sketches = [SketchEntry(player_id="a", sketch="img-a"), SketchEntry(player_id="b", sketch="img-b")]
    players = [
        _player("a", sketch="a"),      # self vote
        _player("b", sketch="a"),
        _player("c", sketch="zzz"),    # no such sketch
        _player("d", sketch="b"),
    ]
    results = tally_sketch_votes(players, sketches)
    assert results.tally == {"a": 1, "b": 1}
    assert results.winner_id == "a"


def test_classify_guess_buckets():
    assert classify_guess("c", "Axe", "c", "Axe") == PERFECT
    assert classify_guess("c", "Knife", "c", "Axe") == SUSPECT_ONLY
    assert classify_guess("d", "Axe", "c", "Axe") == WEAPON_ONLY
    assert classify_guess(None, None, "c", "Axe") == NEITHER


def test_round_results_do_not_name_who_guessed_right():
    players = [_player("a", "c", "Axe"), _player("b", "a", "Knife"), _player("c", "a", "Axe")]
    dumped = tally_round_results(players, murderer_id="c", chosen_weapon="Axe").model_dump(mode="json")
    assert dumped == {"perfect": 1, "suspect_only": 0, "weapon_only": 1, "neither": 1}
