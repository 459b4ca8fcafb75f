"""
Match runtime: start, scoring, exceptional transitions and assignment.
Each endpoint is one transaction; downstream slots are filled in the same commit.
"""
from datetime import date, time
from typing import List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session

from app.database import get_session
from app.routes.brackets import MatchView
from app.services import reschedule_handler
from app.services.bracket_coordinator import (
    MatchResult,
    assign_match,
    match_view,
    start_match,
    submit_score,
    verify_score,
)
from app.services.score_parser import ScorePayload
from app.utils.version_guards import get_match_or_404

router = APIRouter()


class ScoreSubmission(BaseModel):
    score: Union[ScorePayload, str]
    submitted_by: Optional[str] = None
    correction: bool = False


class ForfeitRequest(BaseModel):
    forfeiting_side: str
    reason: str
    partial_score: Optional[Union[ScorePayload, str]] = None

    @field_validator("forfeiting_side")
    @classmethod
    def validate_side(cls, v):
        v = (v or "").strip().upper()
        if v not in ("A", "B", "BOTH"):
            raise ValueError("forfeiting_side must be A, B or BOTH")
        return v


class PostponeRequest(BaseModel):
    reschedule_date: date
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: Optional[time] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class VerifyRequest(BaseModel):
    verified_by: str


class AssignmentUpdate(BaseModel):
    court_id: Optional[int] = Field(default=None, ge=1)
    referee_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None


class WalkoverResolution(BaseModel):
    slot: str
    participant_ref: Optional[str] = None


class SlotWriteResponse(BaseModel):
    match_id: int
    slot: str
    participant_ref: str


class MatchResultResponse(BaseModel):
    match_id: int
    status: str
    winner_ref: Optional[str] = None
    loser_ref: Optional[str] = None
    event_type: Optional[str] = None
    propagated: bool = False
    downstream: List[SlotWriteResponse] = []
    auto_resolved: List[int] = []
    created: List[int] = []
    requires_admin_action: bool = False

    class Config:
        from_attributes = True


def _to_response(result: MatchResult) -> MatchResultResponse:
    return MatchResultResponse.model_validate(result)


@router.get("/matches/{match_id}", response_model=MatchView)
def get_match(match_id: int, session: Session = Depends(get_session)):
    return match_view(get_match_or_404(session, match_id))


@router.post("/matches/{match_id}/start", response_model=MatchResultResponse)
def start(match_id: int, session: Session = Depends(get_session)):
    """scheduled -> in_progress (both slots must be resolved)."""
    return _to_response(start_match(session, match_id))


@router.post("/matches/{match_id}/score", response_model=MatchResultResponse)
def score(match_id: int, payload: ScoreSubmission, session: Session = Depends(get_session)):
    """Submit a final score; the winner (and loser) propagate downstream in the same commit."""
    return _to_response(
        submit_score(session, match_id, payload.score, submitted_by=payload.submitted_by,
                     correction=payload.correction)
    )


@router.post("/matches/{match_id}/forfeit", response_model=MatchResultResponse)
def forfeit(match_id: int, payload: ForfeitRequest, session: Session = Depends(get_session)):
    return _to_response(
        reschedule_handler.forfeit(session, match_id, payload.forfeiting_side, payload.reason,
                                   partial_score=payload.partial_score)
    )


@router.post("/matches/{match_id}/postpone", response_model=MatchResultResponse)
def postpone(match_id: int, payload: PostponeRequest, session: Session = Depends(get_session)):
    return _to_response(reschedule_handler.postpone(session, match_id, payload.reschedule_date, payload.reason))


@router.post("/matches/{match_id}/reschedule", response_model=MatchResultResponse)
def reschedule(match_id: int, payload: RescheduleRequest, session: Session = Depends(get_session)):
    return _to_response(reschedule_handler.reschedule(session, match_id, payload.new_date, payload.new_time))


@router.post("/matches/{match_id}/cancel", response_model=MatchResultResponse)
def cancel(match_id: int, payload: CancelRequest, session: Session = Depends(get_session)):
    return _to_response(reschedule_handler.cancel(session, match_id, payload.reason))


@router.post("/matches/{match_id}/verify", response_model=MatchView)
def verify(match_id: int, payload: VerifyRequest, session: Session = Depends(get_session)):
    return match_view(verify_score(session, match_id, payload.verified_by))


@router.patch("/matches/{match_id}/assignment", response_model=MatchView)
def update_assignment(match_id: int, payload: AssignmentUpdate, session: Session = Depends(get_session)):
    """Advisory court/referee/time assignment. Omitted fields are left unchanged."""
    return match_view(
        assign_match(
            session,
            match_id,
            court_id=payload.court_id,
            referee_id=payload.referee_id,
            scheduled_date=payload.scheduled_date,
            scheduled_time=payload.scheduled_time,
        )
    )


@router.post("/matches/{match_id}/walkover-resolution", response_model=MatchResultResponse)
def walkover_resolution(match_id: int, payload: WalkoverResolution, session: Session = Depends(get_session)):
    """Replace a walkover slot with a participant, or with a bye when participant_ref is null."""
    return _to_response(
        reschedule_handler.resolve_walkover(session, match_id, payload.slot, payload.participant_ref)
    )
