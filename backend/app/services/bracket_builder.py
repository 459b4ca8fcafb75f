"""
Bracket Builder: pure construction of a fully wired match plan.

Given a seeded participant list (best first) and a bracket kind, produce an
immutable BracketPlan: every match with its round/position, pre-filled slots
(seeds and byes), upstream sources and downstream winner/loser targets.
No persistence side effects; app.services.bracket_coordinator persists plans.

Kinds:
  single_elimination: S-1 matches, S = next power of two >= N
  double_elimination: winners bracket (S-1), losers bracket (S-2), grand final (1)
  round_robin       : N(N-1)/2 pool matches, plus an optional P-1 match playoff
                       fed by final pool standings
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Dict, List, Optional, Sequence, Tuple

from app.models.category import BracketKind
from app.models.match import (
    BYE,
    ROLE_LOSER,
    ROLE_STANDING,
    ROLE_WINNER,
    SLOT_A,
    SLOT_B,
    BracketSide,
)
from app.services.errors import ConfigurationError
from app.utils.round_robin import rr_match_count, rr_pairings_by_round, rr_round_count
from app.utils.seeding import first_round_pairings, next_power_of_two

logger = logging.getLogger(__name__)

SIDE_PREFIX = {
    BracketSide.winners.value: "W",
    BracketSide.losers.value: "L",
    BracketSide.pool.value: "P",
    BracketSide.playoff.value: "PO",
}
GRAND_FINAL_CODE = "GF"
THIRD_PLACE_CODE = "3RD"


@dataclass(frozen=True)
class PlannedMatch:
    code: str
    side: str
    round_number: int
    match_position: int
    match_number: int
    slot_a_ref: Optional[str] = None
    slot_b_ref: Optional[str] = None
    slot_a_seed: Optional[int] = None
    slot_b_seed: Optional[int] = None
    placeholder_side_a: str = "TBD"
    placeholder_side_b: str = "TBD"
    source_a_code: Optional[str] = None
    source_a_role: Optional[str] = None
    source_a_standing: Optional[int] = None
    source_b_code: Optional[str] = None
    source_b_role: Optional[str] = None
    source_b_standing: Optional[int] = None
    winner_next_code: Optional[str] = None
    winner_next_slot: Optional[str] = None
    loser_next_code: Optional[str] = None
    loser_next_slot: Optional[str] = None
    is_bye: bool = False
    is_final: bool = False
    is_semifinal: bool = False
    is_quarterfinal: bool = False


@dataclass(frozen=True)
class BracketPlan:
    kind: str
    size: int
    total_rounds: int
    participants: Tuple[str, ...]
    matches: Tuple[PlannedMatch, ...]

    def by_code(self) -> Dict[str, PlannedMatch]:
        return {m.code: m for m in self.matches}

    def side(self, side: str) -> List[PlannedMatch]:
        return [m for m in self.matches if m.side == side]


@dataclass
class _Node:
    """Mutable working copy of a PlannedMatch while wiring."""

    code: str
    side: str
    round_number: int
    match_position: int
    slot_a_ref: Optional[str] = None
    slot_b_ref: Optional[str] = None
    slot_a_seed: Optional[int] = None
    slot_b_seed: Optional[int] = None
    placeholder_side_a: str = "TBD"
    placeholder_side_b: str = "TBD"
    source_a_code: Optional[str] = None
    source_a_role: Optional[str] = None
    source_a_standing: Optional[int] = None
    source_b_code: Optional[str] = None
    source_b_role: Optional[str] = None
    source_b_standing: Optional[int] = None
    winner_next_code: Optional[str] = None
    winner_next_slot: Optional[str] = None
    loser_next_code: Optional[str] = None
    loser_next_slot: Optional[str] = None
    is_bye: bool = False
    is_final: bool = False
    is_semifinal: bool = False
    is_quarterfinal: bool = False


def match_code(side: str, round_number: int, position: int) -> str:
    return f"{SIDE_PREFIX[side]}_R{round_number}_{position:02d}"


def _link(src: _Node, dst: _Node, role: str, slot: str) -> None:
    """Wire src's winner (or loser) into dst's slot. Each slot and each target is set once."""
    if role == ROLE_WINNER:
        if src.winner_next_code is not None:
            raise ConfigurationError(f"{src.code} already has a winner target", code="WIRING_CONFLICT")
        src.winner_next_code, src.winner_next_slot = dst.code, slot
        label = f"W:{src.code}"
    else:
        if src.loser_next_code is not None:
            raise ConfigurationError(f"{src.code} already has a loser target", code="WIRING_CONFLICT")
        src.loser_next_code, src.loser_next_slot = dst.code, slot
        label = f"L:{src.code}"
    if slot == SLOT_A:
        if dst.source_a_code is not None:
            raise ConfigurationError(f"{dst.code} slot A already has a source", code="WIRING_CONFLICT")
        dst.source_a_code, dst.source_a_role, dst.placeholder_side_a = src.code, role, label
    else:
        if dst.source_b_code is not None:
            raise ConfigurationError(f"{dst.code} slot B already has a source", code="WIRING_CONFLICT")
        dst.source_b_code, dst.source_b_role, dst.placeholder_side_b = src.code, role, label


def _freeze(nodes: Sequence[_Node]) -> Tuple[PlannedMatch, ...]:
    names = {f.name for f in fields(PlannedMatch)}
    frozen = []
    for number, node in enumerate(nodes, start=1):
        values = {k: v for k, v in vars(node).items() if k in names}
        frozen.append(PlannedMatch(match_number=number, **values))
    return tuple(frozen)


def _elimination_tree(size: int, side: str) -> List[List[_Node]]:
    """Empty single elimination tree: rounds[r-1] holds round r, winners wired forward."""
    total_rounds = size.bit_length() - 1
    rounds: List[List[_Node]] = []
    for r in range(1, total_rounds + 1):
        count = size >> r
        rounds.append([_Node(code=match_code(side, r, p), side=side, round_number=r, match_position=p)
                       for p in range(1, count + 1)])
    for r in range(1, total_rounds):
        for idx, node in enumerate(rounds[r - 1]):
            _link(node, rounds[r][idx // 2], ROLE_WINNER, SLOT_A if idx % 2 == 0 else SLOT_B)
    return rounds


def _flag_late_rounds(rounds: List[List[_Node]], final_is_bracket_final: bool = True) -> None:
    total = len(rounds)
    if total >= 1 and final_is_bracket_final:
        rounds[total - 1][0].is_final = True
    if total >= 2:
        for node in rounds[total - 2]:
            node.is_semifinal = True
    if total >= 3:
        for node in rounds[total - 3]:
            node.is_quarterfinal = True


def _seed_first_round(first_round: List[_Node], seeded: Sequence[str], size: int) -> None:
    """Place seeds by standard order; seeds beyond N are byes (so the top seeds receive them)."""
    n = len(seeded)
    for node, (seed_a, seed_b) in zip(first_round, first_round_pairings(size)):
        node.slot_a_seed = seed_a if seed_a <= n else None
        node.slot_b_seed = seed_b if seed_b <= n else None
        node.slot_a_ref = seeded[seed_a - 1] if seed_a <= n else BYE
        node.slot_b_ref = seeded[seed_b - 1] if seed_b <= n else BYE
        node.placeholder_side_a = f"SEED_{seed_a}" if seed_a <= n else "BYE"
        node.placeholder_side_b = f"SEED_{seed_b}" if seed_b <= n else "BYE"
        node.is_bye = BYE in (node.slot_a_ref, node.slot_b_ref)


def losers_round_count(size: int) -> List[int]:
    """Match count per losers-bracket round (index 0 = LB round 1)."""
    k = size.bit_length() - 1
    return [size >> ((j + 1) // 2 + 1) for j in range(1, 2 * (k - 1) + 1)]


def drop_down_target(size: int, wb_round: int, wb_position: int) -> Tuple[int, int, str]:
    """
    Losers-bracket (round, position, slot) receiving the loser of a winners-bracket match.

    WB round 1, match p     -> LB round 1, match ceil(p/2), slot A (p odd) / B (p even)
    WB round r>=2, match p  -> LB round 2r-2, slot B; position p for odd r,
                               reversed (count+1-p) for even r so early rematches are avoided
    """
    if wb_round == 1:
        return 1, (wb_position + 1) // 2, SLOT_A if wb_position % 2 == 1 else SLOT_B
    count = size >> wb_round
    position = count + 1 - wb_position if wb_round % 2 == 0 else wb_position
    return 2 * wb_round - 2, position, SLOT_B


def drop_down_table(size: int) -> List[Tuple[str, str, str]]:
    """(winners match code, losers match code, slot) for every drop-down of a bracket size."""
    k = size.bit_length() - 1
    table = []
    for r in range(1, k + 1):
        for p in range(1, (size >> r) + 1):
            lb_round, lb_pos, slot = drop_down_target(size, r, p)
            table.append((
                match_code(BracketSide.winners.value, r, p),
                match_code(BracketSide.losers.value, lb_round, lb_pos),
                slot,
            ))
    return table


def build_single_elimination(seeded: Sequence[str]) -> BracketPlan:
    n = len(seeded)
    if n == 0:
        return BracketPlan(BracketKind.single_elimination.value, 0, 0, (), ())
    if n == 1:
        # Lone entrant: one walkover match, auto-completed on persist
        node = _Node(
            code=match_code(BracketSide.winners.value, 1, 1),
            side=BracketSide.winners.value,
            round_number=1,
            match_position=1,
            slot_a_ref=seeded[0],
            slot_b_ref=BYE,
            slot_a_seed=1,
            placeholder_side_a="SEED_1",
            placeholder_side_b="BYE",
            is_bye=True,
            is_final=True,
        )
        return BracketPlan(BracketKind.single_elimination.value, 2, 1, tuple(seeded), _freeze([node]))

    size = next_power_of_two(n)
    rounds = _elimination_tree(size, BracketSide.winners.value)
    _seed_first_round(rounds[0], seeded, size)
    _flag_late_rounds(rounds)
    nodes = [node for rnd in rounds for node in rnd]
    return BracketPlan(BracketKind.single_elimination.value, size, len(rounds), tuple(seeded), _freeze(nodes))


def build_double_elimination(seeded: Sequence[str]) -> BracketPlan:
    n = len(seeded)
    if n < 3:
        raise ConfigurationError(
            f"double elimination requires at least 3 participants, got {n}", code="BRACKET_SIZE_MISMATCH"
        )
    size = next_power_of_two(n)
    k = size.bit_length() - 1

    wb = _elimination_tree(size, BracketSide.winners.value)
    _seed_first_round(wb[0], seeded, size)
    _flag_late_rounds(wb, final_is_bracket_final=False)

    lb_side = BracketSide.losers.value
    lb: List[List[_Node]] = [
        [_Node(code=match_code(lb_side, j, p), side=lb_side, round_number=j, match_position=p)
         for p in range(1, count + 1)]
        for j, count in enumerate(losers_round_count(size), start=1)
    ]
    for j in range(1, len(lb)):
        src_round, dst_round = lb[j - 1], lb[j]
        if (j + 1) % 2 == 0:
            # Even LB round: survivors keep their line, slot B awaits a drop-down
            for idx, node in enumerate(src_round):
                _link(node, dst_round[idx], ROLE_WINNER, SLOT_A)
        else:
            for idx, node in enumerate(src_round):
                _link(node, dst_round[idx // 2], ROLE_WINNER, SLOT_A if idx % 2 == 0 else SLOT_B)

    for r in range(1, k + 1):
        for node in wb[r - 1]:
            lb_round, lb_pos, slot = drop_down_target(size, r, node.match_position)
            _link(node, lb[lb_round - 1][lb_pos - 1], ROLE_LOSER, slot)

    grand_final = _Node(
        code=GRAND_FINAL_CODE,
        side=BracketSide.grand_final.value,
        round_number=1,
        match_position=1,
        is_final=True,
    )
    _link(wb[-1][0], grand_final, ROLE_WINNER, SLOT_A)
    _link(lb[-1][0], grand_final, ROLE_WINNER, SLOT_B)

    nodes = [node for rnd in wb for node in rnd] + [node for rnd in lb for node in rnd] + [grand_final]
    total_rounds = len(wb) + len(lb) + 1
    return BracketPlan(BracketKind.double_elimination.value, size, total_rounds, tuple(seeded), _freeze(nodes))


def build_round_robin(seeded: Sequence[str], playoff_size: int = 0) -> BracketPlan:
    n = len(seeded)
    if n < 2:
        raise ConfigurationError(f"round robin requires at least 2 participants, got {n}")
    pool_side = BracketSide.pool.value
    nodes: List[_Node] = []
    for round_number, position, idx_a, idx_b in rr_pairings_by_round(n):
        nodes.append(_Node(
            code=match_code(pool_side, round_number, position),
            side=pool_side,
            round_number=round_number,
            match_position=position,
            slot_a_ref=seeded[idx_a],
            slot_b_ref=seeded[idx_b],
            slot_a_seed=idx_a + 1,
            slot_b_seed=idx_b + 1,
            placeholder_side_a=f"SEED_{idx_a + 1}",
            placeholder_side_b=f"SEED_{idx_b + 1}",
        ))
    total_rounds = rr_round_count(n)

    if playoff_size:
        if playoff_size < 2 or playoff_size & (playoff_size - 1) or playoff_size > n:
            raise ConfigurationError(
                f"playoff_size must be a power of two between 2 and {n}, got {playoff_size}",
                code="BRACKET_SIZE_MISMATCH",
            )
        playoff = _elimination_tree(playoff_size, BracketSide.playoff.value)
        for node, (rank_a, rank_b) in zip(playoff[0], first_round_pairings(playoff_size)):
            node.source_a_role, node.source_a_standing = ROLE_STANDING, rank_a
            node.source_b_role, node.source_b_standing = ROLE_STANDING, rank_b
            node.placeholder_side_a = f"STANDING_{rank_a}"
            node.placeholder_side_b = f"STANDING_{rank_b}"
        _flag_late_rounds(playoff)
        nodes.extend(node for rnd in playoff for node in rnd)
        total_rounds += len(playoff)

    return BracketPlan(BracketKind.round_robin.value, n, total_rounds, tuple(seeded), _freeze(nodes))


def build_bracket_plan(seeded: Sequence[str], kind: str, playoff_size: int = 0) -> BracketPlan:
    """Dispatch on bracket kind. Same input always yields the same plan."""
    if kind == BracketKind.single_elimination:
        plan = build_single_elimination(seeded)
    elif kind == BracketKind.double_elimination:
        plan = build_double_elimination(seeded)
    elif kind == BracketKind.round_robin:
        plan = build_round_robin(seeded, playoff_size)
    else:
        raise ConfigurationError(f"Unknown bracket kind: {kind}", code="UNKNOWN_BRACKET_KIND")
    logger.debug("Planned %s bracket: %d participants, size %d, %d matches", kind, len(seeded), plan.size,
                 len(plan.matches))
    return plan


def expected_match_count(kind: str, participants: int, playoff_size: int = 0) -> int:
    """Closed-form match counts (N >= 2)."""
    if kind == BracketKind.round_robin:
        return rr_match_count(participants) + (playoff_size - 1 if playoff_size else 0)
    size = next_power_of_two(participants)
    if kind == BracketKind.double_elimination:
        return 2 * size - 2
    return size - 1
