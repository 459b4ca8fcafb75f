"""
Bracket Coordinator: runs the builder, the match state machine and the
progression resolver against the database.

Every mutating operation is one transaction: the match's own transition, the
downstream slot writes it causes and the outbox events are committed together
or rolled back together. Events are dispatched only after the commit.

Per-match serialization:
  - the match row is locked (SELECT ... FOR UPDATE) and then updated with a
    compare-and-swap on lock_version, so a concurrent writer fails with
    ConflictError instead of propagating twice;
  - a semifinal in a bracket with a 3rd-place playoff also locks its sibling
    semifinal (in id order) so exactly one of them creates that match.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from sqlmodel import Session, select

from app.models.bracket import Bracket
from app.models.category import BracketKind
from app.models.match import BYE, TERMINAL_STATUSES, WALKOVER, BracketSide, Match, MatchStatus
from app.models.match_event import MatchEvent
from app.models.tournament import TournamentStatus
from app.services import match_state
from app.services.advancement_service import (
    PropagationResult,
    advance_from_match,
    outcome_refs,
    resolve_byes,
    resolve_pending_propagation,
)
from app.services.bracket_builder import BracketPlan, build_bracket_plan
from app.services.errors import (
    AlreadyBuilt,
    ConflictError,
    InsufficientParticipants,
    ValidationError,
)
from app.services.event_dispatcher import get_event_dispatcher, record_event
from app.services.score_parser import ScorePayload, parse_score
from app.services.scoring_rules import rules_for_category
from app.utils.seeding import SeedEntry, order_participants
from app.utils.version_guards import (
    compare_and_swap,
    get_bracket_or_404,
    get_category_or_404,
    get_match_or_404,
    get_tournament_or_404,
    lock_matches,
)

logger = logging.getLogger(__name__)

SIDE_ORDER = [
    BracketSide.pool.value,
    BracketSide.winners.value,
    BracketSide.playoff.value,
    BracketSide.losers.value,
    BracketSide.grand_final.value,
    BracketSide.third_place.value,
]


@dataclass
class MatchResult:
    match_id: int
    status: str
    winner_ref: Optional[str] = None
    loser_ref: Optional[str] = None
    event_type: Optional[str] = None
    propagated: bool = False
    downstream: List[Dict[str, Any]] = field(default_factory=list)
    auto_resolved: List[int] = field(default_factory=list)
    created: List[int] = field(default_factory=list)
    requires_admin_action: bool = False


@contextmanager
def unit_of_work(session: Session) -> Iterator[List[int]]:
    """
    Commit once on success, roll back on any exception.

    Yields a list the caller fills with outbox event ids; they are dispatched
    after the commit.
    """
    event_ids: List[int] = []
    try:
        yield event_ids
        session.commit()
    except Exception:
        session.rollback()
        raise
    if event_ids:
        get_event_dispatcher().dispatch(session, event_ids)


def result_from(match: Match, propagation: Optional[PropagationResult] = None,
                event_type: Optional[str] = None) -> MatchResult:
    result = MatchResult(
        match_id=match.id,
        status=match.status,
        winner_ref=match.winner_ref,
        loser_ref=match.loser_ref,
        event_type=event_type,
    )
    if propagation is not None:
        result.propagated = propagation.propagated
        result.downstream = [
            {"match_id": w.match_id, "slot": w.slot, "participant_ref": w.participant_ref} for w in propagation.writes
        ]
        result.auto_resolved = list(propagation.auto_resolved)
        result.created = list(propagation.created)
    return result


def lock_for_transition(session: Session, match: Match) -> Match:
    ids = [match.id]
    if match.is_semifinal:
        bracket = session.get(Bracket, match.bracket_id)
        if bracket is not None and bracket.third_place_playoff:
            ids.extend(session.exec(
                select(Match.id).where(
                    Match.bracket_id == match.bracket_id,
                    Match.bracket_side == match.bracket_side,
                    Match.is_semifinal == True,  # noqa: E712
                )
            ).all())
    locked = lock_matches(session, ids)
    return next(m for m in locked if m.id == match.id)


def execute_transition(
    session: Session,
    match_id: int,
    make_transition: Callable[[Match], match_state.Transition],
    on_terminal: Optional[Callable[[Match, Bracket, MatchResult], None]] = None,
    **event_payload,
) -> MatchResult:
    """
    Lock the match, apply the transition with a compare-and-swap and, if the
    match became terminal, propagate and record the domain event.
    """
    with unit_of_work(session) as event_ids:
        match = lock_for_transition(session, get_match_or_404(session, match_id))
        transition = make_transition(match)
        previous = outcome_refs(match) if transition.is_correction else None
        compare_and_swap(session, match, transition.changes)
        logger.info("Match %s (%s): %s -> %s", match.id, match.match_code, transition.from_status,
                    transition.to_status)

        if not transition.terminal:
            return result_from(match)

        propagation = advance_from_match(session, match, previous=previous)
        event = record_event(
            session,
            match,
            transition.event_type,
            match.winner_ref,
            match.loser_ref,
            propagated=propagation.propagated,
            correction=transition.is_correction,
            **event_payload,
        )
        event_ids.append(event.id)
        event_ids.extend(propagation.event_ids)
        result = result_from(match, propagation, transition.event_type)
        if on_terminal is not None:
            on_terminal(match, get_bracket_or_404(session, match.bracket_id), result)
    return result


# =============================================================================
# BuildBracket
# =============================================================================


def _coerce_entries(participants: Sequence[Union[SeedEntry, str]]) -> List[SeedEntry]:
    return [p if isinstance(p, SeedEntry) else SeedEntry(participant_ref=str(p)) for p in participants]


def _persist_plan(session: Session, bracket: Bracket, plan: BracketPlan) -> Dict[str, Match]:
    rows: Dict[str, Match] = {}
    for planned in plan.matches:
        row = Match(
            bracket_id=bracket.id,
            category_id=bracket.category_id,
            match_code=planned.code,
            match_number=planned.match_number,
            bracket_side=planned.side,
            round_number=planned.round_number,
            match_position=planned.match_position,
            slot_a_ref=planned.slot_a_ref,
            slot_b_ref=planned.slot_b_ref,
            slot_a_seed=planned.slot_a_seed,
            slot_b_seed=planned.slot_b_seed,
            placeholder_side_a=planned.placeholder_side_a,
            placeholder_side_b=planned.placeholder_side_b,
            source_a_role=planned.source_a_role,
            source_b_role=planned.source_b_role,
            source_a_standing=planned.source_a_standing,
            source_b_standing=planned.source_b_standing,
            winner_next_slot=planned.winner_next_slot,
            loser_next_slot=planned.loser_next_slot,
            is_bye=planned.is_bye,
            is_final=planned.is_final,
            is_semifinal=planned.is_semifinal,
            is_quarterfinal=planned.is_quarterfinal,
        )
        session.add(row)
        rows[planned.code] = row
    session.flush()

    # Second pass: codes -> ids now that every row has one
    for planned in plan.matches:
        row = rows[planned.code]
        if planned.source_a_code:
            row.source_match_a_id = rows[planned.source_a_code].id
        if planned.source_b_code:
            row.source_match_b_id = rows[planned.source_b_code].id
        if planned.winner_next_code:
            row.winner_next_match_id = rows[planned.winner_next_code].id
        if planned.loser_next_code:
            row.loser_next_match_id = rows[planned.loser_next_code].id
        session.add(row)
    session.flush()
    return rows


def build_bracket(
    session: Session,
    category_id: int,
    participants: Sequence[Union[SeedEntry, str]],
    name: Optional[str] = None,
) -> Bracket:
    """
    Build and persist the bracket of a category.

    participants are ordered per the category's seeding method. Byes resolve
    immediately. A draft tournament becomes active.

    Raises:
        AlreadyBuilt: the category already has a bracket
        InsufficientParticipants: fewer than 2 participants
        ConfigurationError: kind/size mismatch or invalid scoring configuration
    """
    with unit_of_work(session) as event_ids:
        category = get_category_or_404(session, category_id)
        existing = session.exec(select(Bracket).where(Bracket.category_id == category.id)).first()
        if existing is not None:
            raise AlreadyBuilt(f"Category {category.id} already has bracket {existing.id}")

        entries = _coerce_entries(participants)
        if len(entries) < 2:
            raise InsufficientParticipants(f"A bracket needs at least 2 participants, got {len(entries)}")
        if any(not e.participant_ref or e.participant_ref in (BYE, WALKOVER) for e in entries):
            raise ValidationError("Participant references must be non-empty and must not be reserved values")
        try:
            seeded = order_participants(entries, category.seeding_method, category.id)
        except ValueError as e:
            raise ValidationError(str(e), code="DUPLICATE_PARTICIPANT")

        rules_for_category(category)
        plan = build_bracket_plan(seeded, category.bracket_kind, category.playoff_size)

        bracket = Bracket(
            tournament_id=category.tournament_id,
            category_id=category.id,
            name=name or f"{category.name} bracket",
            kind=plan.kind,
            size=plan.size,
            total_rounds=plan.total_rounds,
            participants_count=len(seeded),
            matches_count=len(plan.matches),
            third_place_playoff=category.third_place_playoff and plan.kind != BracketKind.double_elimination,
        )
        session.add(bracket)
        session.flush()
        rows = _persist_plan(session, bracket, plan)

        tournament = get_tournament_or_404(session, category.tournament_id)
        if tournament.status == TournamentStatus.draft:
            tournament.status = TournamentStatus.active.value
            session.add(tournament)

        bye_ids = [rows[m.code].id for m in plan.matches if m.is_bye]
        propagation = resolve_byes(session, bracket, bye_ids)
        event_ids.extend(propagation.event_ids)
        logger.info(
            "Built %s bracket %s for category %s: %d participants, size %d, %d matches, %d byes",
            plan.kind, bracket.id, category.id, len(seeded), plan.size, len(plan.matches), len(bye_ids),
        )
    session.refresh(bracket)
    return bracket


# =============================================================================
# Match operations
# =============================================================================


def start_match(session: Session, match_id: int) -> MatchResult:
    return execute_transition(session, match_id, match_state.start)


def submit_score(
    session: Session,
    match_id: int,
    score: Union[ScorePayload, Dict[str, Any], str],
    submitted_by: Optional[str] = None,
    correction: bool = False,
) -> MatchResult:
    """
    Validate a score against the category rules, complete the match and
    propagate its result.

    Raises NotReadyError, InvalidScore, AlreadyCompleted (without correction),
    or ConflictError when a correction would change a downstream match that
    already progressed.
    """
    parsed = parse_score(score)

    def _complete(match: Match) -> match_state.Transition:
        rules = rules_for_category(get_category_or_404(session, match.category_id))
        return match_state.complete(match, parsed, rules, submitted_by=submitted_by, correction=correction)

    return execute_transition(session, match_id, _complete)


def verify_score(session: Session, match_id: int, verified_by: str) -> Match:
    """Mark a completed match's score as verified."""
    if not verified_by or not verified_by.strip():
        raise ValidationError("verified_by is required")
    with unit_of_work(session):
        match = lock_for_transition(session, get_match_or_404(session, match_id))
        if match.status != MatchStatus.completed or match.is_bye:
            raise ConflictError(
                f"Only a scored, completed match can be verified (match {match.id} is '{match.status}')",
                code="INVALID_TRANSITION",
            )
        compare_and_swap(session, match, {
            "score_verified": True,
            "score_verified_by": verified_by.strip(),
            "score_verified_at": datetime.utcnow(),
        })
    session.refresh(match)
    return match


def assign_match(
    session: Session,
    match_id: int,
    court_id: Optional[int] = None,
    referee_id: Optional[str] = None,
    scheduled_date: Optional[date] = None,
    scheduled_time: Optional[time] = None,
) -> Match:
    """Record advisory court/referee/time assignment on a non-terminal match. None leaves a field unchanged."""
    with unit_of_work(session):
        match = lock_for_transition(session, get_match_or_404(session, match_id))
        if match.status in TERMINAL_STATUSES:
            raise ConflictError(f"Match {match.id} is '{match.status}' and cannot be assigned",
                                code="INVALID_TRANSITION")
        changes = {
            k: v
            for k, v in (
                ("court_id", court_id),
                ("referee_id", referee_id),
                ("scheduled_date", scheduled_date),
                ("scheduled_time", scheduled_time),
            )
            if v is not None
        }
        if changes:
            compare_and_swap(session, match, changes)
    session.refresh(match)
    return match


# =============================================================================
# Read side
# =============================================================================


def _slot_view(match: Match, slot: str) -> Dict[str, Any]:
    ref = match.slot_ref(slot)
    lower = slot.lower()
    return {
        "participant_ref": ref,
        "seed": match.slot_seed(slot),
        "placeholder": getattr(match, f"placeholder_side_{lower}"),
        "source_match_id": getattr(match, f"source_match_{lower}_id"),
        "source_role": getattr(match, f"source_{lower}_role"),
        "resolved": ref is not None and ref not in (BYE, WALKOVER),
        "is_bye": ref == BYE,
        "is_walkover": ref == WALKOVER,
    }


def match_view(match: Match) -> Dict[str, Any]:
    return {
        "id": match.id,
        "match_code": match.match_code,
        "match_number": match.match_number,
        "bracket_side": match.bracket_side,
        "round_number": match.round_number,
        "match_position": match.match_position,
        "status": match.status,
        "slot_a": _slot_view(match, "A"),
        "slot_b": _slot_view(match, "B"),
        "ready": match_state.is_ready(match),
        "score": match.score_json,
        "final_score": match.final_score,
        "winner_ref": match.winner_ref,
        "loser_ref": match.loser_ref,
        "winner_next_match_id": match.winner_next_match_id,
        "winner_next_slot": match.winner_next_slot,
        "loser_next_match_id": match.loser_next_match_id,
        "loser_next_slot": match.loser_next_slot,
        "court_id": match.court_id,
        "referee_id": match.referee_id,
        "scheduled_date": match.scheduled_date,
        "scheduled_time": match.scheduled_time,
        "forfeit_reason": match.forfeit_reason,
        "is_bye": match.is_bye,
        "is_final": match.is_final,
        "is_semifinal": match.is_semifinal,
        "is_quarterfinal": match.is_quarterfinal,
        "score_verified": match.score_verified,
        "lock_version": match.lock_version,
    }


def _bracket_matches(session: Session, bracket_id: int) -> List[Match]:
    return list(session.exec(
        select(Match)
        .where(Match.bracket_id == bracket_id)
        .order_by(Match.round_number, Match.match_position)
    ).all())


def get_bracket_view(session: Session, bracket_id: int) -> Dict[str, Any]:
    """Read-only tree: sides -> rounds -> matches with current slot resolution."""
    bracket = get_bracket_or_404(session, bracket_id)
    matches = _bracket_matches(session, bracket.id)
    sides = []
    for side in SIDE_ORDER:
        side_matches = [m for m in matches if m.bracket_side == side]
        if not side_matches:
            continue
        rounds: Dict[int, List[Dict[str, Any]]] = {}
        for m in side_matches:
            rounds.setdefault(m.round_number, []).append(match_view(m))
        sides.append({
            "side": side,
            "rounds": [{"round_number": r, "matches": rounds[r]} for r in sorted(rounds)],
        })
    return {
        "id": bracket.id,
        "tournament_id": bracket.tournament_id,
        "category_id": bracket.category_id,
        "name": bracket.name,
        "kind": bracket.kind,
        "size": bracket.size,
        "status": bracket.status,
        "total_rounds": bracket.total_rounds,
        "current_round": bracket.current_round,
        "participants_count": bracket.participants_count,
        "matches_count": bracket.matches_count,
        "third_place_playoff": bracket.third_place_playoff,
        "winner_ref": bracket.winner_ref,
        "runner_up_ref": bracket.runner_up_ref,
        "third_place_ref": bracket.third_place_ref,
        "fourth_place_ref": bracket.fourth_place_ref,
        "sides": sides,
    }


def get_bracket_status(session: Session, bracket_id: int) -> Dict[str, Any]:
    """Totals of matches by status, progress and rounds."""
    bracket = get_bracket_or_404(session, bracket_id)
    matches = _bracket_matches(session, bracket.id)
    by_status = {s.value: 0 for s in MatchStatus}
    for m in matches:
        by_status[m.status] = by_status.get(m.status, 0) + 1
    finished = sum(1 for m in matches if m.status in TERMINAL_STATUSES)
    open_matches = [m for m in matches if m.status not in TERMINAL_STATUSES]
    return {
        "bracket_id": bracket.id,
        "kind": bracket.kind,
        "status": bracket.status,
        "total_matches": len(matches),
        "finished_matches": finished,
        "by_status": by_status,
        "progress_pct": round(100.0 * finished / len(matches), 1) if matches else 0.0,
        "current_round": bracket.current_round,
        "total_rounds": bracket.total_rounds,
        "ready_matches": sum(1 for m in open_matches if match_state.is_ready(m)),
        "pending_slots": sum(
            (m.slot_a_ref is None) + (m.slot_b_ref is None) for m in open_matches
        ),
        "walkover_slots": sum(
            (m.slot_a_ref == WALKOVER) + (m.slot_b_ref == WALKOVER) for m in open_matches
        ),
        "winner_ref": bracket.winner_ref,
    }


def list_bracket_events(session: Session, bracket_id: int) -> List[MatchEvent]:
    bracket = get_bracket_or_404(session, bracket_id)
    return list(session.exec(
        select(MatchEvent).where(MatchEvent.bracket_id == bracket.id).order_by(MatchEvent.id)
    ).all())


def repair_bracket(session: Session, bracket_id: int) -> Dict[str, Any]:
    """Transactional wrapper around the dependency repair."""
    with unit_of_work(session) as event_ids:
        report = resolve_pending_propagation(session, bracket_id)
        event_ids.extend(report.pop("event_ids"))
    logger.info("Repaired bracket %s: %s", bracket_id, report)
    return report
