"""
Bracket read side plus dependency repair.
GET endpoints are side-effect free.
"""
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from app.database import get_session
from app.services.bracket_coordinator import (
    get_bracket_status,
    get_bracket_view,
    list_bracket_events,
    repair_bracket,
)
from app.utils.version_guards import get_bracket_or_404

router = APIRouter()


class BracketResponse(BaseModel):
    id: int
    tournament_id: int
    category_id: int
    name: str
    kind: str
    size: int
    status: str
    total_rounds: int
    current_round: int
    participants_count: int
    matches_count: int
    third_place_playoff: bool
    winner_ref: Optional[str] = None
    runner_up_ref: Optional[str] = None
    third_place_ref: Optional[str] = None
    fourth_place_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SlotView(BaseModel):
    participant_ref: Optional[str] = None
    seed: Optional[int] = None
    placeholder: str
    source_match_id: Optional[int] = None
    source_role: Optional[str] = None
    resolved: bool
    is_bye: bool
    is_walkover: bool


class MatchView(BaseModel):
    id: int
    match_code: str
    match_number: int
    bracket_side: str
    round_number: int
    match_position: int
    status: str
    slot_a: SlotView
    slot_b: SlotView
    ready: bool
    score: Optional[Dict[str, Any]] = None
    final_score: Optional[str] = None
    winner_ref: Optional[str] = None
    loser_ref: Optional[str] = None
    winner_next_match_id: Optional[int] = None
    winner_next_slot: Optional[str] = None
    loser_next_match_id: Optional[int] = None
    loser_next_slot: Optional[str] = None
    court_id: Optional[int] = None
    referee_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    forfeit_reason: Optional[str] = None
    is_bye: bool
    is_final: bool
    is_semifinal: bool
    is_quarterfinal: bool
    score_verified: bool
    lock_version: int


class RoundView(BaseModel):
    round_number: int
    matches: List[MatchView]


class SideView(BaseModel):
    side: str
    rounds: List[RoundView]


class BracketView(BaseModel):
    id: int
    tournament_id: int
    category_id: int
    name: str
    kind: str
    size: int
    status: str
    total_rounds: int
    current_round: int
    participants_count: int
    matches_count: int
    third_place_playoff: bool
    winner_ref: Optional[str] = None
    runner_up_ref: Optional[str] = None
    third_place_ref: Optional[str] = None
    fourth_place_ref: Optional[str] = None
    sides: List[SideView]


class BracketStatusResponse(BaseModel):
    bracket_id: int
    kind: str
    status: str
    total_matches: int
    finished_matches: int
    by_status: Dict[str, int]
    progress_pct: float
    current_round: int
    total_rounds: int
    ready_matches: int
    pending_slots: int
    walkover_slots: int
    winner_ref: Optional[str] = None


class MatchEventResponse(BaseModel):
    id: int
    bracket_id: int
    match_id: int
    event_type: str
    winner_ref: Optional[str] = None
    loser_ref: Optional[str] = None
    propagated: bool
    payload: Optional[Dict[str, Any]] = None
    status: str
    error_message: Optional[str] = None
    created_at: datetime
    dispatched_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ResolveDependenciesResponse(BaseModel):
    matches_processed: int
    slots_written: int
    matches_auto_resolved: int
    matches_created: int
    conflicts: int
    unresolved_before: int
    unresolved_after: int


@router.get("/brackets/{bracket_id}", response_model=BracketView)
def read_bracket(bracket_id: int, session: Session = Depends(get_session)):
    """Bracket tree: sides -> rounds -> matches with current slot resolution."""
    return get_bracket_view(session, bracket_id)


@router.get("/brackets/{bracket_id}/summary", response_model=BracketResponse)
def read_bracket_summary(bracket_id: int, session: Session = Depends(get_session)):
    return get_bracket_or_404(session, bracket_id)


@router.get("/brackets/{bracket_id}/status", response_model=BracketStatusResponse)
def read_bracket_status(bracket_id: int, session: Session = Depends(get_session)):
    return get_bracket_status(session, bracket_id)


@router.get("/brackets/{bracket_id}/events", response_model=List[MatchEventResponse])
def read_bracket_events(bracket_id: int, session: Session = Depends(get_session)):
    """Domain event outbox for external consumers (oldest first)."""
    return list_bracket_events(session, bracket_id)


@router.post("/brackets/{bracket_id}/resolve-dependencies", response_model=ResolveDependenciesResponse)
def resolve_dependencies(bracket_id: int, session: Session = Depends(get_session)):
    """
    Re-run propagation for every finished match of the bracket.

    Idempotent: safe to call multiple times.
    """
    return repair_bracket(session, bracket_id)
