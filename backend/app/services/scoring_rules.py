"""
Scoring Rules: match_format / scoring_format threshold table (Single Source of Truth)

The table below is the default configuration. A category may override any
threshold (best_of, points_to_win, win_by, point_cap); the engine never
hardcodes a win condition outside this module.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

from app.services.errors import ConfigurationError

# =============================================================================
# Default threshold table
# =============================================================================

# Unit scored per entry in a score payload:
#   "game": rally/side-out games scored in points (11-9, 21-19, ...)
#   "set" : tennis-style sets scored in games (6-4, 7-6, ...)
UNIT_GAME = "game"
UNIT_SET = "set"


@dataclass(frozen=True)
class ScoringRules:
    best_of: int
    points_to_win: int
    win_by: int = 2
    point_cap: Optional[int] = None
    unit: str = UNIT_GAME
    timed: bool = False

    @property
    def units_to_win(self) -> int:
        return self.best_of // 2 + 1


MATCH_FORMATS: Dict[str, ScoringRules] = {
    "best_of_1": ScoringRules(best_of=1, points_to_win=21),
    "best_of_3": ScoringRules(best_of=3, points_to_win=11),
    "best_of_5": ScoringRules(best_of=5, points_to_win=11),
    "games_to_11": ScoringRules(best_of=1, points_to_win=11),
    "games_to_15": ScoringRules(best_of=1, points_to_win=15),
    "games_to_21": ScoringRules(best_of=1, points_to_win=21),
    # Timed games: whoever leads when time expires wins the game
    "timed": ScoringRules(best_of=1, points_to_win=1, win_by=1, timed=True),
}

# Set-based scoring formats replace the per-unit thresholds
SET_SCORING_FORMATS = frozenset({"traditional", "no_ad"})
GAME_SCORING_FORMATS = frozenset({"rally_point", "side_out"})
TRADITIONAL_SET = {"points_to_win": 6, "win_by": 2, "point_cap": 7, "unit": UNIT_SET}


def rules_for_format(
    match_format: str,
    scoring_format: str = "rally_point",
    best_of: Optional[int] = None,
    points_to_win: Optional[int] = None,
    win_by: Optional[int] = None,
    point_cap: Optional[int] = None,
) -> ScoringRules:
    """
    Resolve the effective scoring rules for a format plus optional overrides.

    Raises ConfigurationError for unknown formats or inconsistent thresholds.
    """
    base = MATCH_FORMATS.get(match_format)
    if base is None:
        raise ConfigurationError(f"Unknown match_format: {match_format}", code="UNKNOWN_MATCH_FORMAT")
    if scoring_format not in SET_SCORING_FORMATS and scoring_format not in GAME_SCORING_FORMATS:
        raise ConfigurationError(f"Unknown scoring_format: {scoring_format}", code="UNKNOWN_SCORING_FORMAT")

    rules = base
    if scoring_format in SET_SCORING_FORMATS and not base.timed:
        rules = replace(rules, **TRADITIONAL_SET)

    overrides = {
        k: v
        for k, v in (
            ("best_of", best_of),
            ("points_to_win", points_to_win),
            ("win_by", win_by),
            ("point_cap", point_cap),
        )
        if v is not None
    }
    if overrides:
        # A target on a timed format turns it into a played-to game; the clock no longer decides
        if rules.timed and overrides.keys() & {"points_to_win", "win_by", "point_cap"}:
            overrides["timed"] = False
        rules = replace(rules, **overrides)

    if rules.best_of < 1 or rules.best_of % 2 == 0:
        raise ConfigurationError(f"best_of must be a positive odd number, got {rules.best_of}")
    if rules.points_to_win < 1 or rules.win_by < 1:
        raise ConfigurationError("points_to_win and win_by must be >= 1")
    if rules.point_cap is not None and rules.point_cap < rules.points_to_win:
        raise ConfigurationError(
            f"point_cap ({rules.point_cap}) must be >= points_to_win ({rules.points_to_win})"
        )
    return rules


def rules_for_category(category) -> ScoringRules:
    """Effective rules for a Category row."""
    return rules_for_format(
        category.match_format,
        category.scoring_format,
        best_of=category.best_of,
        points_to_win=category.points_to_win,
        win_by=category.win_by,
        point_cap=category.point_cap,
    )
