"""Bracket plans: counts, wiring consistency, byes and drop-down tables."""
import pytest

from app.models.match import BYE, ROLE_LOSER, ROLE_STANDING, ROLE_WINNER
from app.services.bracket_builder import (
    build_bracket_plan,
    build_double_elimination,
    build_round_robin,
    build_single_elimination,
    drop_down_table,
    expected_match_count,
)
from app.services.errors import ConfigurationError


def seeds(n):
    return [f"p{i}" for i in range(1, n + 1)]


def assert_wiring_consistent(plan):
    """Every downstream pointer has a matching upstream source on the same slot, and vice versa."""
    by_code = plan.by_code()
    for m in plan.matches:
        for target_code, slot, role in (
            (m.winner_next_code, m.winner_next_slot, ROLE_WINNER),
            (m.loser_next_code, m.loser_next_slot, ROLE_LOSER),
        ):
            if target_code is None:
                continue
            target = by_code[target_code]
            if slot == "A":
                assert (target.source_a_code, target.source_a_role) == (m.code, role)
            else:
                assert (target.source_b_code, target.source_b_role) == (m.code, role)
        for source_code, role in ((m.source_a_code, m.source_a_role), (m.source_b_code, m.source_b_role)):
            if source_code is None:
                continue
            source = by_code[source_code]
            pointer = source.winner_next_code if role == ROLE_WINNER else source.loser_next_code
            assert pointer == m.code


# ============================================================================
# Single elimination
# ============================================================================


@pytest.mark.parametrize("n", range(2, 20))
def test_single_elimination_match_count(n):
    plan = build_single_elimination(seeds(n))
    assert len(plan.matches) == plan.size - 1
    assert len(plan.matches) == expected_match_count("single_elimination", n)
    assert_wiring_consistent(plan)


def test_five_participants_get_three_byes_for_top_seeds():
    plan = build_single_elimination(seeds(5))
    assert plan.size == 8
    assert plan.total_rounds == 3

    first_round = [m for m in plan.matches if m.round_number == 1]
    assert len(first_round) == 4
    byes = [m for m in first_round if m.is_bye]
    real = [m for m in first_round if not m.is_bye]
    assert len(byes) == 3
    assert len(real) == 1
    assert {m.slot_a_ref for m in byes} == {"p1", "p2", "p3"}
    assert all(m.slot_b_ref == BYE for m in byes)
    assert (real[0].slot_a_ref, real[0].slot_b_ref) == ("p4", "p5")


def test_first_round_lines_follow_standard_seed_order():
    plan = build_single_elimination(seeds(8))
    lines = [(m.slot_a_seed, m.slot_b_seed) for m in plan.matches if m.round_number == 1]
    assert lines == [(1, 8), (4, 5), (2, 7), (3, 6)]


def test_round_flags_and_codes():
    plan = build_single_elimination(seeds(8))
    by_code = plan.by_code()
    assert by_code["W_R3_01"].is_final
    assert by_code["W_R2_01"].is_semifinal and by_code["W_R2_02"].is_semifinal
    assert all(by_code[f"W_R1_0{p}"].is_quarterfinal for p in range(1, 5))
    assert [m.match_number for m in plan.matches] == list(range(1, 8))
    assert by_code["W_R1_03"].winner_next_code == "W_R2_02"
    assert by_code["W_R1_03"].winner_next_slot == "A"
    assert by_code["W_R2_02"].placeholder_side_b == "W:W_R1_04"


def test_single_participant_gets_walkover_match():
    plan = build_single_elimination(["solo"])
    assert len(plan.matches) == 1
    only = plan.matches[0]
    assert only.is_bye and only.is_final
    assert (only.slot_a_ref, only.slot_b_ref) == ("solo", BYE)


def test_plans_are_deterministic():
    for kind in ("single_elimination", "double_elimination", "round_robin"):
        assert build_bracket_plan(seeds(6), kind) == build_bracket_plan(seeds(6), kind)


# ============================================================================
# Double elimination
# ============================================================================


@pytest.mark.parametrize("n", range(3, 18))
def test_double_elimination_match_count(n):
    plan = build_double_elimination(seeds(n))
    assert len(plan.matches) == 2 * plan.size - 2
    assert len(plan.side("WINNERS")) == plan.size - 1
    assert len(plan.side("LOSERS")) == plan.size - 2
    assert len(plan.side("GRAND_FINAL")) == 1
    assert_wiring_consistent(plan)


def test_double_elimination_needs_three():
    with pytest.raises(ConfigurationError) as exc:
        build_double_elimination(seeds(2))
    assert exc.value.code == "BRACKET_SIZE_MISMATCH"


def test_drop_down_table_size_4():
    assert drop_down_table(4) == [
        ("W_R1_01", "L_R1_01", "A"),
        ("W_R1_02", "L_R1_01", "B"),
        ("W_R2_01", "L_R2_01", "B"),
    ]


def test_drop_down_table_size_8():
    assert drop_down_table(8) == [
        ("W_R1_01", "L_R1_01", "A"),
        ("W_R1_02", "L_R1_01", "B"),
        ("W_R1_03", "L_R1_02", "A"),
        ("W_R1_04", "L_R1_02", "B"),
        ("W_R2_01", "L_R2_02", "B"),
        ("W_R2_02", "L_R2_01", "B"),
        ("W_R3_01", "L_R4_01", "B"),
    ]


def test_drop_down_table_size_16():
    table = {wb: (lb, slot) for wb, lb, slot in drop_down_table(16)}
    assert len(table) == 15
    assert table["W_R1_08"] == ("L_R1_04", "B")
    # Round 2 is mirrored, round 3 is straight, the final is mirrored
    assert table["W_R2_01"] == ("L_R2_04", "B")
    assert table["W_R2_04"] == ("L_R2_01", "B")
    assert table["W_R3_01"] == ("L_R4_01", "B")
    assert table["W_R3_02"] == ("L_R4_02", "B")
    assert table["W_R4_01"] == ("L_R6_01", "B")
    # Every losers-bracket slot fed by a drop-down is fed exactly once
    targets = [(lb, slot) for lb, slot in table.values()]
    assert len(targets) == len(set(targets))


def test_double_elimination_plan_matches_drop_down_table():
    plan = build_double_elimination(seeds(16))
    by_code = plan.by_code()
    for wb, lb, slot in drop_down_table(16):
        assert (by_code[wb].loser_next_code, by_code[wb].loser_next_slot) == (lb, slot)


def test_grand_final_fed_by_both_bracket_finals():
    plan = build_double_elimination(seeds(8))
    gf = plan.by_code()["GF"]
    assert gf.is_final
    assert (gf.source_a_code, gf.source_b_code) == ("W_R3_01", "L_R4_01")
    assert not plan.by_code()["W_R3_01"].is_final
    assert plan.total_rounds == 3 + 4 + 1


# ============================================================================
# Round robin
# ============================================================================


@pytest.mark.parametrize("n", range(2, 10))
def test_round_robin_match_count(n):
    plan = build_round_robin(seeds(n))
    assert len(plan.matches) == n * (n - 1) // 2
    assert all(m.slot_a_ref and m.slot_b_ref for m in plan.matches)


def test_round_robin_playoff_fed_by_standings():
    plan = build_round_robin(seeds(6), playoff_size=4)
    assert len(plan.matches) == 15 + 3
    assert len(plan.matches) == expected_match_count("round_robin", 6, playoff_size=4)
    first = [m for m in plan.side("PLAYOFF") if m.round_number == 1]
    assert [(m.source_a_standing, m.source_b_standing) for m in first] == [(1, 4), (2, 3)]
    assert all(m.source_a_role == ROLE_STANDING for m in first)
    assert all(m.slot_a_ref is None for m in first)
    assert plan.by_code()["PO_R2_01"].is_final
    assert plan.total_rounds == 5 + 2


@pytest.mark.parametrize("playoff_size", [3, 8])
def test_round_robin_rejects_bad_playoff_size(playoff_size):
    with pytest.raises(ConfigurationError):
        build_round_robin(seeds(6), playoff_size=playoff_size)


def test_unknown_kind_rejected():
    with pytest.raises(ConfigurationError):
        build_bracket_plan(seeds(4), "swiss")
