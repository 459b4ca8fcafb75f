"""
Score parser and win-condition validation.

Supports payloads like:
  {"sets": [{"a": 11, "b": 7}, {"a": 9, "b": 11}, {"a": 11, "b": 4}]}  → structured
  "11-7 9-11 11-4"   → space-separated display string
  "6-3, 4-6, 7-6"    → comma-separated variant
  {"display": "8-4"} → extracts display string first

Each pair is one scoring unit (a game in points, or a set in games, depending
on the category's ScoringRules). Parsing is separate from validation: a
retirement score may be parsed and stored without satisfying the win condition.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from app.models.match import SLOT_A, SLOT_B
from app.services.errors import InvalidScore
from app.services.scoring_rules import UNIT_SET, ScoringRules


class SetScore(BaseModel):
    a: int = Field(ge=0)
    b: int = Field(ge=0)


class ScorePayload(BaseModel):
    """Typed score structure: one entry per game/set, side A first."""

    sets: List[SetScore]

    def to_json(self) -> Dict[str, Any]:
        return {"sets": [{"a": s.a, "b": s.b} for s in self.sets]}


@dataclass
class ParsedScore:
    sets: List[Tuple[int, int]]  # (side_a, side_b) per unit
    team_a_sets_won: int
    team_b_sets_won: int
    team_a_total: int
    team_b_total: int

    @property
    def display(self) -> str:
        return " ".join(f"{a}-{b}" for a, b in self.sets)


def parse_score(score: Union[ScorePayload, Dict[str, Any], str, None]) -> Optional[ParsedScore]:
    """Parse a score payload into structured unit counts.

    Returns None if the score cannot be parsed.
    """
    if not score:
        return None

    if isinstance(score, ScorePayload):
        return _from_pairs([(s.a, s.b) for s in score.sets])

    raw: Optional[str] = None
    if isinstance(score, str):
        raw = score
    elif isinstance(score, dict):
        if "sets" in score and isinstance(score["sets"], list):
            return _parse_structured_sets(score["sets"])
        raw = str(score.get("display") or score.get("score") or "")
    if not raw or not raw.strip():
        return None

    return _parse_score_string(raw.strip())


def _parse_structured_sets(sets_list: list) -> Optional[ParsedScore]:
    pairs: List[Tuple[int, int]] = []
    for s in sets_list:
        if not isinstance(s, dict):
            return None
        if "a" not in s or "b" not in s:
            return None
        try:
            a = int(s["a"])
            b = int(s["b"])
        except (TypeError, ValueError):
            return None
        pairs.append((a, b))
    return _from_pairs(pairs)


def _parse_score_string(raw: str) -> Optional[ParsedScore]:
    """Parse strings like '8-4', '6-3 4-6 10-7', '6-3, 4-6, 10-7'."""
    # Normalize: replace commas with spaces, collapse whitespace
    normalized = raw.replace(",", " ").strip()
    pairs: List[Tuple[int, int]] = []
    for part in normalized.split():
        pair = part.split("-")
        if len(pair) != 2:
            return None
        try:
            pairs.append((int(pair[0]), int(pair[1])))
        except ValueError:
            return None
    return _from_pairs(pairs)


def _from_pairs(pairs: List[Tuple[int, int]]) -> Optional[ParsedScore]:
    if not pairs or any(a < 0 or b < 0 for a, b in pairs):
        return None
    return ParsedScore(
        sets=pairs,
        team_a_sets_won=sum(1 for a, b in pairs if a > b),
        team_b_sets_won=sum(1 for a, b in pairs if b > a),
        team_a_total=sum(a for a, _ in pairs),
        team_b_total=sum(b for _, b in pairs),
    )


def _unit_is_valid(winner_pts: int, loser_pts: int, rules: ScoringRules) -> bool:
    if rules.timed:
        return winner_pts > loser_pts
    target = rules.points_to_win
    if winner_pts < target:
        return False
    if rules.point_cap is not None:
        if winner_pts > rules.point_cap:
            return False
        if winner_pts == rules.point_cap and loser_pts >= rules.point_cap - rules.win_by:
            # Capped finish (e.g. 7-6 tiebreak set, 15-14 capped rally game)
            return loser_pts < rules.point_cap
    if winner_pts == target:
        return loser_pts <= target - rules.win_by
    # Extended play ends the moment the margin is reached
    return winner_pts - loser_pts == rules.win_by


def determine_winner(parsed: Optional[ParsedScore], rules: ScoringRules) -> str:
    """
    Validate a complete score against the rules and return the winning slot ("A" | "B").

    Raises InvalidScore if any unit is not a legal finished unit, if no side
    reached the majority threshold, or if units were recorded after the match
    was already decided.
    """
    if parsed is None:
        raise InvalidScore("Score payload is missing or unparseable")
    if len(parsed.sets) > rules.best_of:
        raise InvalidScore(f"{len(parsed.sets)} {rules.unit}s recorded; format is best of {rules.best_of}")

    need = rules.units_to_win
    won = {SLOT_A: 0, SLOT_B: 0}
    for index, (a, b) in enumerate(parsed.sets, start=1):
        if won[SLOT_A] >= need or won[SLOT_B] >= need:
            raise InvalidScore(f"{rules.unit} {index} recorded after the match was decided")
        if a == b:
            raise InvalidScore(f"{rules.unit} {index} is tied ({a}-{b})")
        winner_pts, loser_pts = max(a, b), min(a, b)
        if not _unit_is_valid(winner_pts, loser_pts, rules):
            raise InvalidScore(
                f"{rules.unit} {index} score {a}-{b} does not satisfy to-{rules.points_to_win} "
                f"win-by-{rules.win_by}" + (f" cap-{rules.point_cap}" if rules.point_cap else "")
            )
        won[SLOT_A if a > b else SLOT_B] += 1

    if won[SLOT_A] >= need:
        return SLOT_A
    if won[SLOT_B] >= need:
        return SLOT_B
    raise InvalidScore(f"No side reached {need} {rules.unit}s won (best of {rules.best_of})")


def score_columns(parsed: ParsedScore, rules: ScoringRules) -> Dict[str, Any]:
    """Map a parsed score onto the sets/games/points columns of a Match row."""
    columns: Dict[str, Any] = {
        "final_score": parsed.display,
        "sets_won_a": parsed.team_a_sets_won,
        "sets_won_b": parsed.team_b_sets_won,
    }
    if rules.unit == UNIT_SET:
        columns.update(games_won_a=parsed.team_a_total, games_won_b=parsed.team_b_total, points_won_a=0, points_won_b=0)
    else:
        columns.update(
            games_won_a=parsed.team_a_sets_won,
            games_won_b=parsed.team_b_sets_won,
            points_won_a=parsed.team_a_total,
            points_won_b=parsed.team_b_total,
        )
    return columns


def score_to_json(parsed: ParsedScore) -> Dict[str, Any]:
    return {"sets": [{"a": a, "b": b} for a, b in parsed.sets]}
