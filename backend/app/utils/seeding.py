"""
Seeding and seed placement.

Deterministic rules for ordering registered participants into a seed list and
for placing seeds on the first-round lines of an elimination bracket.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from app.models.category import SeedingMethod


@dataclass
class SeedEntry:
    """
    One registered participant as supplied by the registration subsystem.

    participant_ref is opaque ("17" for singles, "17+42" for a doubles team).
    """

    participant_ref: str
    seed: Optional[int] = None
    ranking_points: float = 0.0
    registered_at: Optional[datetime] = None


def next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


def standard_seed_order(size: int) -> List[int]:
    """
    Return 1-based seeds in bracket line order for a power-of-two size.

    Built by repeated doubling: every seed s is paired with (2k + 1 - s), so the
    top two seeds can only meet in the final, the top four in the semifinals, etc.

        size 8 -> [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if size < 1 or size & (size - 1):
        raise ValueError(f"size must be a power of two, got {size}")
    order = [1]
    while len(order) < size:
        total = len(order) * 2 + 1
        order = [s for seed in order for s in (seed, total - seed)]
    return order


def first_round_pairings(size: int) -> List[Tuple[int, int]]:
    """Seed pairs (slot A seed, slot B seed) for each round-1 line, left to right."""
    order = standard_seed_order(size)
    return [(order[i], order[i + 1]) for i in range(0, len(order), 2)]


def seed_rank_key(entry: SeedEntry, method: str, category_id: int, index: int) -> tuple:
    """
    Return sort key for seeding. Lower = better.

    manual: explicit seed, then input order.
    ranking: ranking points (desc), then explicit seed.
    registration_order: registration time (asc), then input order.
    stable_hash breaks any remaining tie.
    """
    stable_hash = _stable_hash(category_id, entry.participant_ref)
    explicit_seed = entry.seed if entry.seed is not None else 10**9
    if method == SeedingMethod.ranking:
        return (-entry.ranking_points, explicit_seed, stable_hash)
    if method == SeedingMethod.registration_order:
        registered = entry.registered_at.timestamp() if entry.registered_at else float("inf")
        return (registered, index, stable_hash)
    return (explicit_seed, index, stable_hash)


def order_participants(entries: Sequence[SeedEntry], method: str, category_id: int) -> List[str]:
    """Return participant refs in final seed order (best first)."""
    refs = [e.participant_ref for e in entries]
    if len(set(refs)) != len(refs):
        raise ValueError("duplicate participant reference in seed list")
    keyed = sorted(
        enumerate(entries),
        key=lambda pair: seed_rank_key(pair[1], method, category_id, pair[0]),
    )
    return [entry.participant_ref for _, entry in keyed]


def _stable_hash(category_id: int, participant_ref: str) -> int:
    """Deterministic hash for tiebreak. Same inputs always yield same value."""
    s = f"{category_id}:{participant_ref}"
    return int(hashlib.sha256(s.encode()).hexdigest()[:12], 16)
