"""Shared builders for bracket engine tests."""
from datetime import date
from typing import Dict, List

from sqlmodel import Session, select

from app.models.category import Category
from app.models.match import Match
from app.models.match_event import MatchEvent
from app.models.tournament import Tournament
from app.services.bracket_coordinator import build_bracket, submit_score

A_WINS = "11-5"
B_WINS = "5-11"


def make_category(session: Session, name: str = "Open Singles", **overrides) -> Category:
    """Draft tournament plus one category scored as a single game to 11."""
    tournament = Tournament(name="Spring Open", location="Center Courts", start_date=date(2026, 4, 10),
                            end_date=date(2026, 4, 12))
    session.add(tournament)
    session.commit()
    session.refresh(tournament)

    values = {
        "tournament_id": tournament.id,
        "name": name,
        "bracket_kind": "single_elimination",
        "seeding_method": "manual",
        "match_format": "games_to_11",
        "scoring_format": "rally_point",
    }
    values.update(overrides)
    category = Category(**values)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


def players(n: int) -> List[str]:
    return [f"p{i}" for i in range(1, n + 1)]


def build(session: Session, n: int, **category_overrides):
    category = make_category(session, **category_overrides)
    return build_bracket(session, category.id, players(n))


def matches_by_code(session: Session, bracket_id: int) -> Dict[str, Match]:
    rows = session.exec(
        select(Match).where(Match.bracket_id == bracket_id).execution_options(populate_existing=True)
    ).all()
    return {m.match_code: m for m in rows}


def events_for(session: Session, bracket_id: int) -> List[MatchEvent]:
    return list(session.exec(
        select(MatchEvent)
        .where(MatchEvent.bracket_id == bracket_id)
        .order_by(MatchEvent.id)
        .execution_options(populate_existing=True)
    ).all())


def play(session: Session, bracket_id: int, code: str, winner: str = "A"):
    match = matches_by_code(session, bracket_id)[code]
    return submit_score(session, match.id, A_WINS if winner == "A" else B_WINS, submitted_by="ref-1")
