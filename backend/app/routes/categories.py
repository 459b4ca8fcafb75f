from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlmodel import Session, select

from app.database import get_session
from app.models.category import BracketKind, Category, SeedingMethod
from app.models.tournament import Tournament
from app.routes.brackets import BracketResponse
from app.services.bracket_coordinator import build_bracket
from app.services.scoring_rules import rules_for_format
from app.utils.seeding import SeedEntry

router = APIRouter()


class CategoryCreate(BaseModel):
    name: str
    category_type: str = "singles"
    bracket_kind: BracketKind = BracketKind.single_elimination
    seeding_method: SeedingMethod = SeedingMethod.manual
    match_format: str = "best_of_3"
    scoring_format: str = "rally_point"
    third_place_playoff: bool = False
    playoff_size: int = 0
    best_of: Optional[int] = None
    points_to_win: Optional[int] = None
    win_by: Optional[int] = None
    point_cap: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @field_validator("category_type")
    @classmethod
    def validate_category_type(cls, v):
        if v not in ("singles", "doubles", "mixed_doubles"):
            raise ValueError("category_type must be singles, doubles or mixed_doubles")
        return v

    @model_validator(mode="after")
    def validate_playoff(self):
        if self.playoff_size and self.bracket_kind != BracketKind.round_robin:
            raise ValueError("playoff_size only applies to round_robin categories")
        if self.playoff_size < 0:
            raise ValueError("playoff_size must be >= 0")
        return self


class CategoryResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    category_type: str
    bracket_kind: str
    seeding_method: str
    match_format: str
    scoring_format: str
    third_place_playoff: bool
    playoff_size: int
    best_of: Optional[int] = None
    points_to_win: Optional[int] = None
    win_by: Optional[int] = None
    point_cap: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantIn(BaseModel):
    participant_ref: str
    seed: Optional[int] = Field(default=None, ge=1)
    ranking_points: float = 0.0
    registered_at: Optional[datetime] = None


class BuildBracketRequest(BaseModel):
    participants: List[ParticipantIn]
    name: Optional[str] = None


@router.get("/tournaments/{tournament_id}/categories", response_model=List[CategoryResponse])
def list_categories(tournament_id: int, session: Session = Depends(get_session)):
    """List all categories for a tournament"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return session.exec(select(Category).where(Category.tournament_id == tournament_id).order_by(Category.id)).all()


@router.post("/tournaments/{tournament_id}/categories", response_model=CategoryResponse, status_code=201)
def create_category(tournament_id: int, category_data: CategoryCreate, session: Session = Depends(get_session)):
    """Create a category. The scoring configuration is validated up front."""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    existing = session.exec(
        select(Category).where(Category.tournament_id == tournament_id, Category.name == category_data.name)
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail=f"CATEGORY_EXISTS: Category '{category_data.name}' already exists")

    rules_for_format(
        category_data.match_format,
        category_data.scoring_format,
        best_of=category_data.best_of,
        points_to_win=category_data.points_to_win,
        win_by=category_data.win_by,
        point_cap=category_data.point_cap,
    )

    values = category_data.model_dump()
    values["bracket_kind"] = category_data.bracket_kind.value
    values["seeding_method"] = category_data.seeding_method.value
    category = Category(tournament_id=tournament_id, **values)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(category_id: int, session: Session = Depends(get_session)):
    """Get a category by ID"""
    category = session.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.post("/categories/{category_id}/bracket", response_model=BracketResponse, status_code=201)
def create_bracket(category_id: int, payload: BuildBracketRequest, session: Session = Depends(get_session)):
    """Seed the participants and build the category's bracket."""
    entries = [
        SeedEntry(
            participant_ref=p.participant_ref.strip(),
            seed=p.seed,
            ranking_points=p.ranking_points,
            registered_at=p.registered_at,
        )
        for p in payload.participants
    ]
    return build_bracket(session, category_id, entries, name=payload.name)
