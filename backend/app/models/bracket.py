from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from app.models.category import BracketKind

if TYPE_CHECKING:
    from app.models.category import Category
    from app.models.match import Match


class Bracket(SQLModel, table=True):
    # One bracket per category
    __table_args__ = (SAUniqueConstraint("category_id", name="uq_bracket_category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    category_id: int = Field(foreign_key="category.id")
    name: str
    kind: BracketKind = Field(sa_column=Column(String, nullable=False))
    size: int  # power of two including byes (pool size for round robin)
    total_rounds: int
    current_round: int = Field(default=1)
    participants_count: int
    matches_count: int
    status: str = Field(default="active")  # "active" | "completed" | "cancelled"
    third_place_playoff: bool = Field(default=False)

    # Final placings (filled when the deciding match finishes)
    winner_ref: Optional[str] = Field(default=None)
    runner_up_ref: Optional[str] = Field(default=None)
    third_place_ref: Optional[str] = Field(default=None)
    fourth_place_ref: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    # Relationships
    category: "Category" = Relationship(back_populates="brackets")
    matches: List["Match"] = Relationship(back_populates="bracket")
