import random

import pytest

from agents.role_assigner import (
    DEFAULT_RUMORS,
    DEFAULT_WEAPONS,
    FILLER_SKETCH_PROMPTS,
    HAND_SIZE,
    RoleAssigner,
    mask_weapon,
)
from models.session import BrainstormPayload, PlayerRecord, PlayerSubmissions


def _player(pid, description="", weapon=""):
    return PlayerRecord(
        id=pid,
        display_name=pid.upper(),
        submissions=PlayerSubmissions(
            brainstorm=BrainstormPayload(weapon=weapon, description=description)
        ),
    )


def test_weapon_pool_from_no_suggestions_uses_defaults():
    pool = RoleAssigner(random.Random(1)).build_weapon_pool([])
    assert pool == DEFAULT_WEAPONS


def test_weapon_pool_dedups_case_insensitively_and_keeps_suggestions_first():
    pool = RoleAssigner(random.Random(1)).build_weapon_pool(["Axe", " axe ", "", "fire poker"])
    assert pool[0] == "Axe"
    assert pool[1] == "fire poker"
    assert "Fire Poker" not in pool
    assert len(pool) == 2 + len(DEFAULT_WEAPONS) - 1


def test_pick_weapon_from_empty_pool_raises():
    with pytest.raises(ValueError):
        RoleAssigner().pick_weapon([])


def test_sketch_prompts_never_use_the_murderer():
    players = [_player("a", "tall hat"), _player("b", "red scarf"), _player("c", "muddy boots")]
    for seed in range(20):
        prompts = RoleAssigner(random.Random(seed)).pick_sketch_prompts(players, murderer_id="c")
        assert sorted(p.text for p in prompts) == ["red scarf", "tall hat"]
        assert not any(p.filler for p in prompts)


def test_sketch_prompts_backfill_with_filler():
    players = [_player("a", "tall hat"), _player("b", ""), _player("c", "muddy boots")]
    prompts = RoleAssigner(random.Random(3)).pick_sketch_prompts(players, murderer_id="c")
    assert prompts[0].text == "tall hat"
    assert prompts[1].filler is True
    assert prompts[1].text == FILLER_SKETCH_PROMPTS[0]


def test_pick_innocent_excludes_murderer_and_winner():
    assigner = RoleAssigner(random.Random(5))
    for _ in range(20):
        assert assigner.pick_innocent(["a", "b", "c", "d"], "a", "b") in ("c", "d")
    assert assigner.pick_innocent(["a", "b"], "a", "b") is None


def test_deal_rumors_falls_back_to_default_deck():
    hands = RoleAssigner(random.Random(2)).deal_rumors([], ["a", "b", "c"])
    assert set(hands) == {"a", "b", "c"}
    for cards in hands.values():
        assert len(cards) == HAND_SIZE
        assert all(card.text in DEFAULT_RUMORS for card in cards)


def test_deal_rumors_draws_from_submitted_rumors():
    hands = RoleAssigner(random.Random(2)).deal_rumors(["only rumor"], ["a", "b"])
    assert [c.text for c in hands["a"]] == ["only rumor", "only rumor"]


def test_pick_recipient_is_never_the_sender():
    assigner = RoleAssigner(random.Random(9))
    for _ in range(20):
        assert assigner.pick_recipient("a", ["a", "b", "c"]) in ("b", "c")
    assert assigner.pick_recipient("a", ["a"]) is None


def test_transcript_masks_weapon_and_keeps_descriptions():
    players = [_player("a", "tall hat"), _player("b", "red scarf"), _player("c")]
    puzzle = RoleAssigner(random.Random(4)).build_transcript(players, "Fire Poker")
    assert sorted(puzzle.lines) == ["red scarf", "tall hat"]
    assert puzzle.weapon_hint == "F___ _____"


def test_mask_weapon_empty():
    assert mask_weapon("") == ""
