"""
Reschedule/Forfeit Handler: exceptional transitions fed back through the
Progression Resolver.

- forfeit: one side (non-forfeiting side wins) or both sides (no contest,
  WALKOVER written downstream)
- postpone / reschedule: never touch slots or propagation
- cancel: terminal, nothing propagates; a non-final match cancelled in an
  active bracket is reported as needing administrative action
- resolve_walkover: replace a WALKOVER slot with a participant or a BYE
"""
import logging
from datetime import date, time
from typing import Any, Dict, Optional, Union

from sqlmodel import Session

from app.models.bracket import Bracket
from app.models.match import BYE, SLOT_A, SLOT_B, WALKOVER, BracketSide, Match, MatchStatus
from app.services import match_state
from app.services.advancement_service import resolve_byes, write_slot
from app.services.bracket_coordinator import (
    MatchResult,
    execute_transition,
    lock_for_transition,
    result_from,
    unit_of_work,
)
from app.services.errors import ConflictError, ValidationError
from app.services.score_parser import ScorePayload, parse_score
from app.utils.version_guards import get_bracket_or_404, get_match_or_404

logger = logging.getLogger(__name__)


def forfeit(
    session: Session,
    match_id: int,
    forfeiting_side: str,
    reason: str,
    partial_score: Optional[Union[ScorePayload, Dict[str, Any], str]] = None,
) -> MatchResult:
    parsed = None
    if partial_score is not None:
        parsed = parse_score(partial_score)
        if parsed is None:
            raise ValidationError("Partial score could not be parsed", code="INVALID_SCORE")
    side = (forfeiting_side or "").upper()

    def _forfeit(match: Match) -> match_state.Transition:
        return match_state.forfeit(match, side, reason, partial_score=parsed)

    result = execute_transition(session, match_id, _forfeit, forfeiting_side=side, reason=reason)
    logger.info("Match %s forfeited by %s (%s)", match_id, side, reason)
    return result


def postpone(session: Session, match_id: int, reschedule_date: Optional[date],
             reason: Optional[str] = None) -> MatchResult:
    return execute_transition(session, match_id, lambda m: match_state.postpone(m, reschedule_date, reason))


def reschedule(session: Session, match_id: int, new_date: date, new_time: Optional[time] = None) -> MatchResult:
    return execute_transition(session, match_id, lambda m: match_state.reschedule(m, new_date, new_time))


def _flag_broken_line(match: Match, bracket: Bracket, result: MatchResult) -> None:
    if bracket.status != "active" or match.is_final or match.bracket_side == BracketSide.pool:
        return
    result.requires_admin_action = True
    logger.warning(
        "Match %s (%s) cancelled inside active bracket %s; downstream line will not resolve without "
        "administrative action",
        match.id, match.match_code, bracket.id,
    )


def cancel(session: Session, match_id: int, reason: Optional[str] = None) -> MatchResult:
    return execute_transition(
        session,
        match_id,
        lambda m: match_state.cancel(m, reason),
        on_terminal=_flag_broken_line,
        reason=reason,
    )


def resolve_walkover(session: Session, match_id: int, slot: str,
                     participant_ref: Optional[str] = None) -> MatchResult:
    """
    Administrative resolution of a WALKOVER slot left by a double forfeit.

    participant_ref fills the slot; None turns it into a BYE so the match
    auto-resolves in favour of the other side (or keeps propagating a BYE).
    """
    slot = (slot or "").upper()
    if slot not in (SLOT_A, SLOT_B):
        raise ValidationError(f"slot must be 'A' or 'B', got {slot!r}")
    if participant_ref == WALKOVER or (participant_ref is not None and not participant_ref.strip()):
        raise ValidationError("participant_ref must be a participant reference or null")
    value = participant_ref if participant_ref is not None else BYE

    with unit_of_work(session) as event_ids:
        match = lock_for_transition(session, get_match_or_404(session, match_id))
        if match.status not in (MatchStatus.scheduled, MatchStatus.postponed):
            raise ConflictError(f"Match {match.id} is '{match.status}'", code="INVALID_TRANSITION")
        if match.slot_ref(slot) != WALKOVER:
            raise ConflictError(f"Match {match.id} slot {slot} does not hold a walkover", code="NO_WALKOVER")
        write_slot(session, match.id, slot, value, previous_ref=WALKOVER)
        logger.info("Walkover in match %s slot %s resolved to %s", match.id, slot, value)

        bracket = get_bracket_or_404(session, match.bracket_id)
        propagation = resolve_byes(session, bracket, [match.id])
        event_ids.extend(propagation.event_ids)
        session.refresh(match)
        result = result_from(match, propagation)
    return result
