"""Domain event outbox for terminal match transitions."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class MatchEvent(SQLModel, table=True):
    """One row per terminal transition, written in the same transaction as the transition."""

    __tablename__ = "match_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    event_type: str  # MatchCompleted | MatchForfeited | MatchCancelled
    winner_ref: Optional[str] = Field(default=None)
    loser_ref: Optional[str] = Field(default=None)
    propagated: bool = Field(default=False)
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    status: str = Field(default="pending")  # pending | dispatched | failed
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dispatched_at: Optional[datetime] = Field(default=None)
