"""Domain event outbox and in-process dispatch.

Terminal match transitions are recorded as MatchEvent rows inside the same
transaction as the transition. After the transaction commits, pending events
are handed to subscribers (e.g. a notification service). Subscriber failures
are logged and recorded on the event; they never roll back engine state.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from sqlmodel import Session, select

from app.models.match import Match
from app.models.match_event import MatchEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[MatchEvent], None]


def record_event(
    session: Session,
    match: Match,
    event_type: str,
    winner_ref: Optional[str] = None,
    loser_ref: Optional[str] = None,
    propagated: bool = False,
    **payload,
) -> MatchEvent:
    """Add an outbox row for a terminal transition. Caller owns the transaction."""
    event = MatchEvent(
        bracket_id=match.bracket_id,
        match_id=match.id,
        event_type=event_type,
        winner_ref=winner_ref,
        loser_ref=loser_ref,
        propagated=propagated,
        payload={"match_code": match.match_code, "status": match.status, **payload},
    )
    session.add(event)
    session.flush()
    logger.info(
        "%s recorded for match %s (%s): winner=%s loser=%s propagated=%s",
        event_type, match.id, match.match_code, winner_ref, loser_ref, propagated,
    )
    return event


class EventDispatcher:
    """
    Fan-out of committed MatchEvent rows to in-process subscribers.

    Reads EVENT_DISPATCH_DRY_RUN from the environment. In dry-run mode events
    are logged and marked dispatched without calling subscribers.
    """

    def __init__(self, dry_run: Optional[bool] = None):
        if dry_run is None:
            dry_run = os.getenv("EVENT_DISPATCH_DRY_RUN", "false").lower() in ("true", "1", "yes")
        self.dry_run = dry_run
        self.subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)

    def dispatch(self, session: Session, event_ids: Iterable[int]) -> dict:
        """
        Deliver the given events and mark each dispatched or failed.

        Returns:
            dict with keys: total, dispatched, failed
        """
        ids = list(event_ids)
        if not ids:
            return {"total": 0, "dispatched": 0, "failed": 0}

        events = session.exec(
            select(MatchEvent).where(MatchEvent.id.in_(ids), MatchEvent.status == "pending").order_by(MatchEvent.id)
        ).all()
        dispatched = 0
        failed = 0
        for event in events:
            if self.dry_run:
                logger.info(f"[DRY RUN] {event.event_type} for match {event.match_id}")
            else:
                try:
                    for subscriber in self.subscribers:
                        subscriber(event)
                except Exception as e:
                    logger.exception("Event subscriber failed for event %s", event.id)
                    event.status = "failed"
                    event.error_message = str(e)
                    session.add(event)
                    failed += 1
                    continue
            event.status = "dispatched"
            event.dispatched_at = datetime.now(timezone.utc)
            session.add(event)
            dispatched += 1
        session.commit()
        return {"total": len(events), "dispatched": dispatched, "failed": failed}

    def dispatch_pending(self, session: Session, bracket_id: Optional[int] = None) -> dict:
        """Retry every pending event (optionally for one bracket)."""
        query = select(MatchEvent.id).where(MatchEvent.status == "pending")
        if bracket_id is not None:
            query = query.where(MatchEvent.bracket_id == bracket_id)
        return self.dispatch(session, session.exec(query).all())


# Singleton instance
_dispatcher: Optional[EventDispatcher] = None


def get_event_dispatcher() -> EventDispatcher:
    """Get or create the singleton EventDispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
    return _dispatcher


def reset_event_dispatcher() -> None:
    """Drop the singleton so the next call re-reads the environment (tests)."""
    global _dispatcher
    _dispatcher = None
