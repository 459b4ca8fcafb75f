from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator, model_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.tournament import Tournament, TournamentStatus

router = APIRouter()

# Allowed tournament status transitions
ALLOWED_STATUS_TRANSITIONS = {
    TournamentStatus.draft.value: {TournamentStatus.active.value, TournamentStatus.cancelled.value},
    TournamentStatus.active.value: {TournamentStatus.completed.value, TournamentStatus.cancelled.value},
    TournamentStatus.completed.value: set(),
    TournamentStatus.cancelled.value: set(),
}


class TournamentCreate(BaseModel):
    name: str
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


class TournamentStatusUpdate(BaseModel):
    status: TournamentStatus


class TournamentResponse(BaseModel):
    id: int
    name: str
    location: Optional[str]
    start_date: Optional[date]
    end_date: Optional[date]
    status: str
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a new tournament in draft status"""
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.patch("/tournaments/{tournament_id}/status", response_model=TournamentResponse)
def update_tournament_status(
    tournament_id: int, payload: TournamentStatusUpdate, session: Session = Depends(get_session)
):
    """Move a tournament along draft -> active -> completed (or cancelled)."""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    current = str(getattr(tournament.status, "value", tournament.status))
    new = payload.status.value
    if new != current and new not in ALLOWED_STATUS_TRANSITIONS.get(current, set()):
        raise HTTPException(
            status_code=409,
            detail=f"INVALID_TRANSITION: Cannot move tournament from '{current}' to '{new}'",
        )

    tournament.status = new
    tournament.updated_at = datetime.utcnow()
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament
