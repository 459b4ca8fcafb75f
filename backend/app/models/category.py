from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from app.models.bracket import Bracket
    from app.models.tournament import Tournament


class BracketKind(str, Enum):
    single_elimination = "single_elimination"
    double_elimination = "double_elimination"
    round_robin = "round_robin"


class SeedingMethod(str, Enum):
    manual = "manual"
    ranking = "ranking"
    registration_order = "registration_order"


class Category(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "name", name="uq_tournament_category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    category_type: str = Field(default="singles")  # singles | doubles | mixed_doubles

    # Format rules (consumed by the builder and the match state machine)
    bracket_kind: BracketKind = Field(
        default=BracketKind.single_elimination, sa_column=Column(String, nullable=False)
    )
    seeding_method: SeedingMethod = Field(default=SeedingMethod.manual, sa_column=Column(String, nullable=False))
    match_format: str = Field(default="best_of_3")  # see app.services.scoring_rules.MATCH_FORMATS
    scoring_format: str = Field(default="rally_point")  # rally_point | side_out | no_ad | traditional
    third_place_playoff: bool = Field(default=False)
    playoff_size: int = Field(default=0)  # round robin -> bracket; 0 = pool only

    # Optional overrides of the scoring threshold table
    best_of: Optional[int] = Field(default=None)
    points_to_win: Optional[int] = Field(default=None)
    win_by: Optional[int] = Field(default=None)
    point_cap: Optional[int] = Field(default=None)

    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="categories")
    brackets: List["Bracket"] = Relationship(back_populates="category")
