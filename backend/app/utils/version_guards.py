"""
Row Version Guards and Lookups

Reusable guards for serializing writes to a single match:
- Lookups that raise NotFoundError instead of returning None
- Optimistic compare-and-swap on Match.lock_version
- Pessimistic row locks (SELECT ... FOR UPDATE) taken in id order
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List

from sqlalchemy import update
from sqlmodel import Session, select

from app.models.bracket import Bracket
from app.models.category import Category
from app.models.match import Match
from app.models.tournament import Tournament
from app.services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError(f"Tournament {tournament_id} not found")
    return tournament


def get_category_or_404(session: Session, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def get_bracket_or_404(session: Session, bracket_id: int) -> Bracket:
    bracket = session.get(Bracket, bracket_id)
    if not bracket:
        raise NotFoundError(f"Bracket {bracket_id} not found")
    return bracket


def get_match_or_404(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match:
        raise NotFoundError(f"Match {match_id} not found")
    return match


def lock_matches(session: Session, match_ids: Iterable[int]) -> List[Match]:
    """
    Lock match rows in ascending id order and return them fresh from the database.

    Taking locks in a fixed order keeps two writers that need the same pair of
    rows (e.g. both semifinals) from deadlocking. SQLite ignores FOR UPDATE; its
    database-level write lock serializes writers instead.
    """
    ids = sorted(set(match_ids))
    if not ids:
        return []
    rows = session.exec(
        select(Match)
        .where(Match.id.in_(ids))
        .order_by(Match.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).all()
    if len(rows) != len(ids):
        missing = set(ids) - {m.id for m in rows}
        raise NotFoundError(f"Match {min(missing)} not found")
    return list(rows)


def compare_and_swap(session: Session, match: Match, changes: Dict[str, Any]) -> Match:
    """
    Apply column changes to a match only if nobody changed it since it was read.

    UPDATE match SET ..., lock_version = v + 1 WHERE id = :id AND lock_version = v

    Raises ConflictError when the row version moved on. The in-memory object is
    refreshed from the database afterwards.
    """
    session.flush()
    expected = match.lock_version
    values = dict(changes)
    values["lock_version"] = expected + 1
    values["updated_at"] = datetime.utcnow()
    result = session.execute(
        update(Match)
        .where(Match.id == match.id, Match.lock_version == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Concurrent modification of match %s (expected version %s)", match.id, expected)
        raise ConflictError(
            f"Match {match.id} was modified by another request; reload and retry",
            code="CONCURRENT_MODIFICATION",
        )
    session.refresh(match)
    return match
