"""
Progression Resolver: when a match enters a terminal state, write its winner
(and loser) into the downstream slots named by winner_next/loser_next.

Slot writes are per-slot compare-and-swaps:

    UPDATE match SET slot_b_ref = :p
     WHERE id = :downstream AND slot_b_ref IS NULL AND status IN ('scheduled', 'postponed')

so two sibling matches feeding the two slots of one downstream match never
clobber each other, and a slot is written at most once. A score correction
overwrites the slot only while it still holds the previous value and the
downstream match has not progressed; otherwise the correction is a conflict.

Writes that complete a bye (one slot BYE) auto-resolve that match and keep
propagating. The 3rd-place playoff is created lazily once both semifinal
losers are known; a round-robin playoff is seeded from final pool standings.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from app.models.bracket import Bracket
from app.models.category import BracketKind
from app.models.match import (
    BYE,
    ROLE_LOSER,
    SENTINELS,
    SLOT_A,
    SLOT_B,
    TERMINAL_STATUSES,
    WALKOVER,
    BracketSide,
    Match,
    MatchStatus,
)
from app.services import match_state
from app.services.bracket_builder import THIRD_PLACE_CODE
from app.services.errors import BracketIntegrityError, ConflictError
from app.services.event_dispatcher import record_event
from app.utils.round_robin import PoolResult, StandingRow, compute_standings, rr_round_count
from app.utils.version_guards import compare_and_swap, get_bracket_or_404

logger = logging.getLogger(__name__)

WRITABLE_STATUSES = (MatchStatus.scheduled.value, MatchStatus.postponed.value)


@dataclass
class SlotWrite:
    match_id: int
    slot: str
    participant_ref: str
    previous_ref: Optional[str] = None


@dataclass
class PropagationResult:
    writes: List[SlotWrite] = field(default_factory=list)
    auto_resolved: List[int] = field(default_factory=list)
    created: List[int] = field(default_factory=list)
    event_ids: List[int] = field(default_factory=list)
    skipped: int = 0

    @property
    def propagated(self) -> bool:
        return bool(self.writes)


def outcome_refs(match: Match) -> Optional[Tuple[str, str]]:
    """(winner, loser) to propagate for a terminal match; WALKOVER pair for a no contest."""
    if match.status == MatchStatus.no_contest:
        return WALKOVER, WALKOVER
    if match.status in (MatchStatus.completed, MatchStatus.forfeited) and match.winner_ref is not None:
        return match.winner_ref, match.loser_ref
    return None


def _real(ref: Optional[str]) -> Optional[str]:
    return None if ref in SENTINELS else ref


def _fresh(session: Session, match_id: int) -> Match:
    target = session.get(Match, match_id, populate_existing=True)
    if target is None:
        raise BracketIntegrityError(f"Propagation target match {match_id} is missing", code="TARGET_MISSING")
    return target


def write_slot(
    session: Session,
    target_id: int,
    slot: str,
    participant_ref: str,
    previous_ref: Optional[str] = None,
) -> Optional[SlotWrite]:
    """
    Compare-and-swap one downstream slot.

    First write: the slot must be empty. Correction: the slot must still hold
    previous_ref. Either way the downstream match must not have progressed past
    scheduled/postponed. Returns None when the slot already holds the value
    (replay) or the downstream match was cancelled, raises ConflictError otherwise.
    """
    if slot not in (SLOT_A, SLOT_B):
        raise BracketIntegrityError(f"Invalid target slot {slot!r} for match {target_id}", code="WIRING_INVALID")
    attr = "slot_a_ref" if slot == SLOT_A else "slot_b_ref"
    column = getattr(Match, attr)
    current_clause = column.is_(None) if previous_ref is None else column == previous_ref

    session.flush()
    result = session.execute(
        update(Match)
        .where(Match.id == target_id, current_clause, Match.status.in_(WRITABLE_STATUSES))
        .values(**{attr: participant_ref, "lock_version": Match.lock_version + 1, "updated_at": datetime.utcnow()})
        .execution_options(synchronize_session=False)
    )
    target = _fresh(session, target_id)

    if result.rowcount == 1:
        if participant_ref == WALKOVER:
            logger.warning("Walkover written to match %s slot %s; administrative resolution required",
                           target_id, slot)
        else:
            logger.info("Propagated %s into match %s slot %s (was %s)", participant_ref, target_id, slot,
                        previous_ref)
        return SlotWrite(target_id, slot, participant_ref, previous_ref)

    current = target.slot_ref(slot)
    if current == participant_ref:
        return None
    if target.status == MatchStatus.cancelled:
        # Cancelled line is left for an administrator
        logger.warning("Skipped write of %s into cancelled match %s slot %s", participant_ref, target_id, slot)
        return None
    if target.status not in WRITABLE_STATUSES:
        logger.warning("Rejected write into match %s slot %s: downstream is '%s'", target_id, slot, target.status)
        raise ConflictError(
            f"Downstream match {target_id} is '{target.status}'; slot {slot} can no longer change",
            code="DOWNSTREAM_PROGRESSED",
        )
    logger.warning("Rejected write into match %s slot %s: holds %s, expected %s", target_id, slot, current,
                   previous_ref)
    raise ConflictError(
        f"Match {target_id} slot {slot} holds {current!r}, expected {previous_ref!r}",
        code="SLOT_ALREADY_FILLED",
    )


def _propagate_outcome(
    session: Session,
    match: Match,
    result: PropagationResult,
    previous: Optional[Tuple[Optional[str], Optional[str]]] = None,
    repair: bool = False,
) -> List[int]:
    """Write one match's winner/loser downstream. Returns the ids of touched downstream matches."""
    outcome = outcome_refs(match)
    if outcome is None:
        return []
    winner, loser = outcome
    old_winner, old_loser = previous if previous else (None, None)
    targets = []
    if match.winner_next_match_id is not None and winner is not None:
        targets.append((match.winner_next_match_id, match.winner_next_slot, winner, old_winner))
    if match.loser_next_match_id is not None and loser is not None:
        targets.append((match.loser_next_match_id, match.loser_next_slot, loser, old_loser))

    touched = []
    for target_id, slot, value, old_value in targets:
        if previous is not None and old_value == value:
            continue
        if repair:
            target = _fresh(session, target_id)
            current = target.slot_ref(slot)
            if current == value:
                touched.append(target_id)
                continue
            if current is not None or target.status not in WRITABLE_STATUSES:
                logger.warning("Repair skipped match %s slot %s: holds %s, source %s says %s",
                               target_id, slot, current, match.id, value)
                result.skipped += 1
                continue
        write = write_slot(session, target_id, slot, value, previous_ref=old_value)
        if write is not None:
            result.writes.append(write)
        touched.append(target_id)
    return touched


def _after_terminal(session: Session, bracket: Bracket, match: Match, result: PropagationResult,
                    queue: Deque[int]) -> None:
    if match.is_semifinal:
        queue.extend(ensure_third_place_match(session, bracket, match, result))
    if match.bracket_side == BracketSide.pool:
        queue.extend(seed_playoff_from_standings(session, bracket, result))


def _drain(session: Session, bracket: Bracket, queue: Deque[int], result: PropagationResult) -> None:
    """Auto-resolve byes reached by propagation until nothing is left to resolve."""
    while queue:
        target = _fresh(session, queue.popleft())
        transition = match_state.auto_resolve_bye(target)
        if transition is None:
            continue
        compare_and_swap(session, target, transition.changes)
        result.auto_resolved.append(target.id)
        logger.info("Bye auto-resolved: match %s (%s) winner %s", target.id, target.match_code, transition.winner_ref)
        writes_before = len(result.writes)
        touched = _propagate_outcome(session, target, result)
        event = record_event(
            session,
            target,
            transition.event_type,
            transition.winner_ref,
            transition.loser_ref,
            propagated=len(result.writes) > writes_before,
            bye=True,
        )
        result.event_ids.append(event.id)
        _after_terminal(session, bracket, target, result, queue)
        queue.extend(touched)


def advance_from_match(
    session: Session,
    match: Match,
    previous: Optional[Tuple[Optional[str], Optional[str]]] = None,
) -> PropagationResult:
    """
    Propagate a match that has just entered a terminal state.

    previous is the (winner, loser) pair already propagated when this call
    follows a score correction. Caller owns the transaction.
    """
    bracket = get_bracket_or_404(session, match.bracket_id)
    result = PropagationResult()
    queue: Deque[int] = deque(_propagate_outcome(session, match, result, previous=previous))
    _after_terminal(session, bracket, match, result, queue)
    _drain(session, bracket, queue, result)
    refresh_bracket_progress(session, bracket)
    return result


def resolve_byes(session: Session, bracket: Bracket, match_ids: Sequence[int]) -> PropagationResult:
    """Auto-resolve the given matches if they are byes, then keep propagating."""
    result = PropagationResult()
    _drain(session, bracket, deque(match_ids), result)
    refresh_bracket_progress(session, bracket)
    return result


def ensure_third_place_match(
    session: Session, bracket: Bracket, semifinal: Match, result: PropagationResult
) -> List[int]:
    """
    Create the 3rd-place playoff the first time both semifinal losers are known.

    Wires both semifinals' loser_next pointers to the new match and writes the
    losers into it. Returns the new match id (empty when nothing was created).
    """
    if not bracket.third_place_playoff or bracket.kind == BracketKind.double_elimination:
        return []
    existing = session.exec(
        select(Match).where(Match.bracket_id == bracket.id, Match.bracket_side == BracketSide.third_place.value)
    ).first()
    if existing is not None:
        return []
    semis = session.exec(
        select(Match)
        .where(
            Match.bracket_id == bracket.id,
            Match.bracket_side == semifinal.bracket_side,
            Match.is_semifinal == True,  # noqa: E712
        )
        .order_by(Match.match_position)
        .execution_options(populate_existing=True)
    ).all()
    if len(semis) != 2:
        return []
    outcomes = [outcome_refs(m) for m in semis]
    if any(o is None for o in outcomes):
        return []

    third = Match(
        bracket_id=bracket.id,
        category_id=bracket.category_id,
        match_code=THIRD_PLACE_CODE,
        match_number=bracket.matches_count + 1,
        bracket_side=BracketSide.third_place.value,
        round_number=1,
        match_position=1,
        source_match_a_id=semis[0].id,
        source_a_role=ROLE_LOSER,
        source_match_b_id=semis[1].id,
        source_b_role=ROLE_LOSER,
        placeholder_side_a=f"L:{semis[0].match_code}",
        placeholder_side_b=f"L:{semis[1].match_code}",
    )
    session.add(third)
    session.flush()
    for semi, slot in zip(semis, (SLOT_A, SLOT_B)):
        semi.loser_next_match_id = third.id
        semi.loser_next_slot = slot
        session.add(semi)
    bracket.matches_count += 1
    session.add(bracket)
    session.flush()
    result.created.append(third.id)
    logger.info("Created 3rd-place match %s for bracket %s", third.id, bracket.id)

    for slot, (_, loser) in zip((SLOT_A, SLOT_B), outcomes):
        write = write_slot(session, third.id, slot, loser)
        if write is not None:
            result.writes.append(write)
    return [third.id]


def pool_standings(session: Session, bracket: Bracket) -> List[StandingRow]:
    """Current standings of a round-robin pool, ranked best first."""
    pool = session.exec(
        select(Match).where(Match.bracket_id == bracket.id, Match.bracket_side == BracketSide.pool.value)
    ).all()
    seeds: Dict[int, str] = {}
    results = []
    for m in pool:
        seeds[m.slot_a_seed] = m.slot_a_ref
        seeds[m.slot_b_seed] = m.slot_b_ref
        if m.status in (MatchStatus.completed, MatchStatus.forfeited, MatchStatus.no_contest):
            results.append(PoolResult(
                ref_a=m.slot_a_ref,
                ref_b=m.slot_b_ref,
                winner_ref=m.winner_ref,
                sets_a=m.sets_won_a,
                sets_b=m.sets_won_b,
                games_a=m.games_won_a,
                games_b=m.games_won_b,
                points_a=m.points_won_a,
                points_b=m.points_won_b,
            ))
    seeded_refs = [seeds[s] for s in sorted(seeds)]
    return compute_standings(seeded_refs, results)


def seed_playoff_from_standings(session: Session, bracket: Bracket, result: PropagationResult) -> List[int]:
    """
    Fill the playoff's STANDING slots once every pool match is terminal.

    Re-running after a pool score correction overwrites slots whose standing
    changed, subject to the same downstream-progress check as any correction.
    """
    first_round = session.exec(
        select(Match)
        .where(
            Match.bracket_id == bracket.id,
            Match.bracket_side == BracketSide.playoff.value,
            Match.round_number == 1,
        )
        .order_by(Match.match_position)
    ).all()
    if not first_round:
        return []
    unfinished = session.exec(
        select(Match.id).where(
            Match.bracket_id == bracket.id,
            Match.bracket_side == BracketSide.pool.value,
            Match.status.not_in(sorted(TERMINAL_STATUSES)),
        )
    ).first()
    if unfinished is not None:
        return []

    ranked = [row.participant_ref for row in pool_standings(session, bracket)]
    touched = []
    for m in first_round:
        for slot, rank in ((SLOT_A, m.source_a_standing), (SLOT_B, m.source_b_standing)):
            if rank is None or rank > len(ranked):
                raise BracketIntegrityError(f"Playoff match {m.id} slot {slot} has no standing source {rank}")
            ref = ranked[rank - 1]
            current = m.slot_ref(slot)
            if current == ref:
                continue
            write = write_slot(session, m.id, slot, ref, previous_ref=current)
            if write is not None:
                result.writes.append(write)
        touched.append(m.id)
    logger.info("Seeded playoff of bracket %s from pool standings: %s", bracket.id, ranked[: len(first_round) * 2])
    return touched


def _stage_round(match: Match, bracket: Bracket) -> int:
    """Round index in play order across all sides of a bracket."""
    side = match.bracket_side
    if side in (BracketSide.grand_final, BracketSide.third_place):
        return bracket.total_rounds
    if side == BracketSide.losers:
        return (bracket.size.bit_length() - 1) + match.round_number
    if side == BracketSide.playoff:
        return rr_round_count(bracket.participants_count) + match.round_number
    return match.round_number


def _deciding_match(matches: Sequence[Match], bracket: Bracket) -> Optional[Match]:
    if bracket.kind == BracketKind.double_elimination:
        side = BracketSide.grand_final
    elif bracket.kind == BracketKind.round_robin:
        side = BracketSide.playoff
    else:
        side = BracketSide.winners
    return next((m for m in matches if m.bracket_side == side and m.is_final), None)


def _apply_placings(session: Session, bracket: Bracket, matches: Sequence[Match]) -> None:
    deciding = _deciding_match(matches, bracket)
    if deciding is None:
        # Pool only: the table decides every place
        ranked = [row.participant_ref for row in pool_standings(session, bracket)] + [None] * 4
        bracket.winner_ref, bracket.runner_up_ref, bracket.third_place_ref, bracket.fourth_place_ref = ranked[:4]
        return
    outcome = outcome_refs(deciding) or (None, None)
    bracket.winner_ref, bracket.runner_up_ref = _real(outcome[0]), _real(outcome[1])
    third = next((m for m in matches if m.bracket_side == BracketSide.third_place), None)
    if third is not None:
        third_outcome = outcome_refs(third) or (None, None)
        bracket.third_place_ref, bracket.fourth_place_ref = _real(third_outcome[0]), _real(third_outcome[1])


def refresh_bracket_progress(session: Session, bracket: Bracket) -> Bracket:
    """Recompute current_round, and completion plus placings once every match is terminal."""
    session.flush()
    matches = session.exec(
        select(Match).where(Match.bracket_id == bracket.id).execution_options(populate_existing=True)
    ).all()
    unfinished = [m for m in matches if m.status not in TERMINAL_STATUSES]
    if unfinished:
        bracket.current_round = min(_stage_round(m, bracket) for m in unfinished)
    elif matches and bracket.status != "cancelled":
        bracket.current_round = bracket.total_rounds
        _apply_placings(session, bracket, matches)
        if bracket.status != "completed":
            bracket.status = "completed"
            bracket.completed_at = datetime.utcnow()
            logger.info("Bracket %s completed: winner %s, runner-up %s", bracket.id, bracket.winner_ref,
                        bracket.runner_up_ref)
    session.add(bracket)
    session.flush()
    return bracket


def _count_unresolved(session: Session, bracket_id: int) -> int:
    matches = session.exec(
        select(Match).where(Match.bracket_id == bracket_id).execution_options(populate_existing=True)
    ).all()
    return sum(
        1
        for m in matches
        if m.status not in TERMINAL_STATUSES
        and (m.slot_a_ref in (None, WALKOVER) or m.slot_b_ref in (None, WALKOVER))
    )


def resolve_pending_propagation(session: Session, bracket_id: int) -> Dict:
    """
    Bulk repair: re-run propagation for every terminal match of a bracket.

    Fills downstream slots that are still empty, auto-resolves byes left
    behind, creates a missing 3rd-place match and seeds a finished pool's
    playoff. Slots holding a different value are reported, never overwritten.

    Returns:
        Dict with:
        - matches_processed: terminal matches examined
        - slots_written: downstream slots filled
        - matches_auto_resolved: byes completed
        - matches_created: lazily created matches
        - conflicts: slots left untouched because they disagree with their source
        - unresolved_before / unresolved_after: open matches with a pending or walkover slot

    Guarantees:
        - Idempotent (safe to call multiple times)
        - Deterministic ordering (processes by match id)
    """
    bracket = get_bracket_or_404(session, bracket_id)
    unresolved_before = _count_unresolved(session, bracket.id)

    terminal = session.exec(
        select(Match)
        .where(Match.bracket_id == bracket.id, Match.status.in_(sorted(TERMINAL_STATUSES)))
        .order_by(Match.id)
    ).all()
    result = PropagationResult()
    queue: Deque[int] = deque()
    for match in terminal:
        queue.extend(_propagate_outcome(session, match, result, repair=True))

    semifinal = next((m for m in terminal if m.is_semifinal), None)
    if semifinal is not None:
        queue.extend(ensure_third_place_match(session, bracket, semifinal, result))
    queue.extend(seed_playoff_from_standings(session, bracket, result))

    pending_byes = session.exec(
        select(Match.id)
        .where(
            Match.bracket_id == bracket.id,
            Match.status == MatchStatus.scheduled.value,
            (Match.slot_a_ref == BYE) | (Match.slot_b_ref == BYE),
        )
        .order_by(Match.id)
    ).all()
    queue.extend(pending_byes)
    _drain(session, bracket, queue, result)
    refresh_bracket_progress(session, bracket)

    return {
        "matches_processed": len(terminal),
        "slots_written": len(result.writes),
        "matches_auto_resolved": len(result.auto_resolved),
        "matches_created": len(result.created),
        "conflicts": result.skipped,
        "unresolved_before": unresolved_before,
        "unresolved_after": _count_unresolved(session, bracket.id),
        "event_ids": result.event_ids,
    }
