from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.bracket import Bracket

# Slot sentinels. Participant references are opaque strings; these two values never collide
# with a real reference because account ids never start with "__".
BYE = "__BYE__"
WALKOVER = "__WALKOVER__"
SENTINELS = frozenset({BYE, WALKOVER})

SLOT_A = "A"
SLOT_B = "B"

ROLE_WINNER = "WINNER"
ROLE_LOSER = "LOSER"
ROLE_STANDING = "STANDING"


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    postponed = "postponed"
    completed = "completed"
    forfeited = "forfeited"
    no_contest = "no_contest"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset(
    s.value for s in (MatchStatus.completed, MatchStatus.forfeited, MatchStatus.no_contest, MatchStatus.cancelled)
)


class BracketSide(str, Enum):
    winners = "WINNERS"
    losers = "LOSERS"
    grand_final = "GRAND_FINAL"
    third_place = "THIRD_PLACE"
    pool = "POOL"
    playoff = "PLAYOFF"


class Match(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint(
            "bracket_id", "bracket_side", "round_number", "match_position", name="uq_match_bracket_position"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    category_id: int = Field(foreign_key="category.id")
    match_code: str  # e.g. "W_R1_03", "L_R2_01", "GF", "3RD"
    match_number: int  # 1..N across the bracket, display order
    bracket_side: str = Field(default=BracketSide.winners.value)
    round_number: int  # 1 = first round, numbered per side
    match_position: int  # 1-based, left-to-right within the round

    # Slots: a participant reference, a sentinel, or null while an upstream source is pending
    slot_a_ref: Optional[str] = Field(default=None)
    slot_b_ref: Optional[str] = Field(default=None)
    slot_a_seed: Optional[int] = Field(default=None)
    slot_b_seed: Optional[int] = Field(default=None)
    placeholder_side_a: str = Field(default="TBD")
    placeholder_side_b: str = Field(default="TBD")

    # Upstream sources -> slot (at most one per slot)
    source_match_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_match_b_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_a_role: Optional[str] = Field(default=None)  # "WINNER" | "LOSER" | "STANDING"
    source_b_role: Optional[str] = Field(default=None)
    source_a_standing: Optional[int] = Field(default=None)  # STANDING role: 1-based pool rank
    source_b_standing: Optional[int] = Field(default=None)

    # Downstream propagation targets
    winner_next_match_id: Optional[int] = Field(default=None, foreign_key="match.id", index=True)
    winner_next_slot: Optional[str] = Field(default=None)  # "A" | "B"
    loser_next_match_id: Optional[int] = Field(default=None, foreign_key="match.id", index=True)
    loser_next_slot: Optional[str] = Field(default=None)

    # External, advisory
    court_id: Optional[int] = Field(default=None)
    referee_id: Optional[str] = Field(default=None)
    scheduled_date: Optional[date] = Field(default=None)
    scheduled_time: Optional[time] = Field(default=None)

    status: str = Field(default=MatchStatus.scheduled.value, index=True)

    # Score payload (typed structure serialized by app.services.score_parser)
    score_json: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    final_score: Optional[str] = Field(default=None)
    sets_won_a: int = Field(default=0)
    sets_won_b: int = Field(default=0)
    games_won_a: int = Field(default=0)
    games_won_b: int = Field(default=0)
    points_won_a: int = Field(default=0)
    points_won_b: int = Field(default=0)
    submitted_by: Optional[str] = Field(default=None)

    winner_ref: Optional[str] = Field(default=None)
    loser_ref: Optional[str] = Field(default=None)
    winner_slot: Optional[str] = Field(default=None)

    # Exceptional transitions
    forfeit_reason: Optional[str] = Field(default=None)
    forfeiting_side: Optional[str] = Field(default=None)  # "A" | "B" | "BOTH"
    postpone_reason: Optional[str] = Field(default=None)
    reschedule_date: Optional[date] = Field(default=None)
    cancel_reason: Optional[str] = Field(default=None)

    # Display/reporting only
    is_bye: bool = Field(default=False)
    is_final: bool = Field(default=False)
    is_semifinal: bool = Field(default=False)
    is_quarterfinal: bool = Field(default=False)

    score_verified: bool = Field(default=False)
    score_verified_by: Optional[str] = Field(default=None)
    score_verified_at: Optional[datetime] = Field(default=None)

    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    # Optimistic concurrency token for direct operations on this row
    lock_version: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    bracket: "Bracket" = Relationship(back_populates="matches")

    def slot_ref(self, slot: str) -> Optional[str]:
        return self.slot_a_ref if slot == SLOT_A else self.slot_b_ref

    def slot_seed(self, slot: str) -> Optional[int]:
        return self.slot_a_seed if slot == SLOT_A else self.slot_b_seed
