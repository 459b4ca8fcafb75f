"""
Round Robin Pairings and Standings

Deterministic pool play:
1. Circle-method pairings; odd pools get a rotating BYE (no match row)
2. Seeds 1 and 2 meet in the last round
3. Standings ranked by wins, then set/game/point difference, then seed
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


def rr_round_count(pool_size: int) -> int:
    """
    Return number of RR rounds for a pool of n participants.
    Even n: n-1 rounds. Odd n: n rounds (with BYE).
    """
    if pool_size < 2:
        return 0
    if pool_size % 2 == 0:
        return pool_size - 1
    return pool_size


def rr_match_count(pool_size: int) -> int:
    """C(n, 2) = n*(n-1)/2."""
    return (pool_size * (pool_size - 1)) // 2


def rr_pairings_by_round(pool_size: int) -> List[Tuple[int, int, int, int]]:
    """
    Round-robin pairings. Returns list of (round_number, position_in_round, idx_a, idx_b).
    idx_a, idx_b are 0-based seed positions (0 = seed 1).

    Circle method: fix position 0, rotate the rest. Pair (i, n2-1-i); skip BYE pairs.
    """
    n = pool_size
    if n < 2:
        return []
    n2 = n + 1 if n % 2 == 1 else n
    half = n2 // 2
    bye_idx = n if n % 2 == 1 else -1

    result: List[Tuple[int, int, int, int]] = []
    positions = list(range(n2))

    for round_num in range(1, n2):
        seq = 0
        for i in range(half):
            a, b = positions[i], positions[n2 - 1 - i]
            if a == bye_idx or b == bye_idx:
                continue
            seq += 1
            result.append((round_num, seq, min(a, b), max(a, b)))
        # Rotate: keep 0, move last to second, shift others
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]

    return enforce_top2_last_round(result)


def enforce_top2_last_round(pairings: List[Tuple[int, int, int, int]]) -> List[Tuple[int, int, int, int]]:
    """
    Swap whole rounds so the (0, 1) pairing (seeds 1 and 2) is played in the last round.
    Round contents are kept; only round numbers move.
    """
    if not pairings:
        return pairings
    rounds: Dict[int, List[Tuple[int, int, int, int]]] = defaultdict(list)
    for pairing in pairings:
        rounds[pairing[0]].append(pairing)

    last_round = max(rounds)
    top2_round = next(
        (r for r, items in rounds.items() if any((a, b) == (0, 1) for _, _, a, b in items)),
        None,
    )
    if top2_round is None or top2_round == last_round:
        return pairings

    swapped = {top2_round: rounds[last_round], last_round: rounds[top2_round]}
    result: List[Tuple[int, int, int, int]] = []
    for round_num in sorted(rounds):
        items = swapped.get(round_num, rounds[round_num])
        for _, seq, a, b in sorted(items, key=lambda x: x[1]):
            result.append((round_num, seq, a, b))
    return result


@dataclass
class PoolResult:
    """One finished pool match as seen by the standings table."""

    ref_a: str
    ref_b: str
    winner_ref: Optional[str]
    sets_a: int = 0
    sets_b: int = 0
    games_a: int = 0
    games_b: int = 0
    points_a: int = 0
    points_b: int = 0


@dataclass
class StandingRow:
    participant_ref: str
    seed: int
    played: int = 0
    wins: int = 0
    losses: int = 0
    set_diff: int = 0
    game_diff: int = 0
    point_diff: int = 0


def standing_rank_key(row: StandingRow) -> tuple:
    """Sort key for pool standings. Lower = better."""
    return (-row.wins, -row.set_diff, -row.game_diff, -row.point_diff, row.seed)


def compute_standings(seeded_refs: Sequence[str], results: Iterable[PoolResult]) -> List[StandingRow]:
    """Rank pool participants. seeded_refs is the pool in seed order (best first)."""
    rows = {ref: StandingRow(participant_ref=ref, seed=i + 1) for i, ref in enumerate(seeded_refs)}
    for r in results:
        a = rows.get(r.ref_a)
        b = rows.get(r.ref_b)
        if a is None or b is None:
            continue
        a.played += 1
        b.played += 1
        if r.winner_ref == r.ref_a:
            a.wins += 1
            b.losses += 1
        elif r.winner_ref == r.ref_b:
            b.wins += 1
            a.losses += 1
        a.set_diff += r.sets_a - r.sets_b
        b.set_diff += r.sets_b - r.sets_a
        a.game_diff += r.games_a - r.games_b
        b.game_diff += r.games_b - r.games_a
        a.point_diff += r.points_a - r.points_b
        b.point_diff += r.points_b - r.points_a
    return sorted(rows.values(), key=standing_rank_key)
