"""
Match State Machine: lifecycle of one match.

    scheduled -> in_progress -> completed | forfeited | no_contest
    scheduled -> postponed -> scheduled          (reschedule loop)
    scheduled | in_progress | postponed -> cancelled   (terminal)

Functions here are pure: they read a Match, validate the requested transition
and return a Transition describing the column changes and the winner/loser
outcome. They never touch the session; the coordinator applies the changes
with a compare-and-swap on Match.lock_version.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, Optional

from app.models.match import (
    BYE,
    SLOT_A,
    SLOT_B,
    TERMINAL_STATUSES,
    WALKOVER,
    Match,
    MatchStatus,
)
from app.services.errors import AlreadyCompleted, ConflictError, NotReadyError, ValidationError
from app.services.score_parser import ParsedScore, determine_winner, score_columns, score_to_json
from app.services.scoring_rules import ScoringRules

FORFEIT_BOTH = "BOTH"

EVENT_COMPLETED = "MatchCompleted"
EVENT_FORFEITED = "MatchForfeited"
EVENT_CANCELLED = "MatchCancelled"

EVENT_FOR_STATUS = {
    MatchStatus.completed.value: EVENT_COMPLETED,
    MatchStatus.forfeited.value: EVENT_FORFEITED,
    MatchStatus.no_contest.value: EVENT_FORFEITED,
    MatchStatus.cancelled.value: EVENT_CANCELLED,
}


@dataclass
class Transition:
    from_status: str
    to_status: str
    changes: Dict[str, Any] = field(default_factory=dict)
    winner_ref: Optional[str] = None
    loser_ref: Optional[str] = None
    is_correction: bool = False

    @property
    def terminal(self) -> bool:
        return self.to_status in TERMINAL_STATUSES

    @property
    def event_type(self) -> Optional[str]:
        return EVENT_FOR_STATUS.get(self.to_status)

    @property
    def has_outcome(self) -> bool:
        """Terminal with a winner/loser pair to propagate (walkover sentinels included)."""
        return self.to_status != MatchStatus.cancelled and self.winner_ref is not None


def other_slot(slot: str) -> str:
    return SLOT_B if slot == SLOT_A else SLOT_A


def is_ready(match: Match) -> bool:
    """Both slots hold a concrete participant (no pending source, bye or walkover sentinel)."""
    return all(ref is not None and ref not in (BYE, WALKOVER) for ref in (match.slot_a_ref, match.slot_b_ref))


def require_ready(match: Match) -> None:
    for slot, ref in ((SLOT_A, match.slot_a_ref), (SLOT_B, match.slot_b_ref)):
        if ref is None:
            raise NotReadyError(f"Match {match.id} slot {slot} is waiting on an upstream result")
        if ref == WALKOVER:
            raise NotReadyError(
                f"Match {match.id} slot {slot} holds a walkover awaiting administrative resolution",
                code="WALKOVER_UNRESOLVED",
            )
        if ref == BYE:
            raise NotReadyError(f"Match {match.id} is a bye and resolves automatically", code="BYE_MATCH")


def _outcome(match: Match, winner_slot: str) -> Dict[str, Any]:
    winner = match.slot_ref(winner_slot)
    loser = match.slot_ref(other_slot(winner_slot))
    return {"winner_slot": winner_slot, "winner_ref": winner, "loser_ref": loser}


def _invalid(match: Match, action: str) -> ConflictError:
    return ConflictError(f"Cannot {action} match {match.id} in status '{match.status}'", code="INVALID_TRANSITION")


def start(match: Match, now: Optional[datetime] = None) -> Transition:
    """scheduled -> in_progress. Court/time assignment is optional."""
    if match.status != MatchStatus.scheduled:
        raise _invalid(match, "start")
    require_ready(match)
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.in_progress.value,
        changes={"status": MatchStatus.in_progress.value, "started_at": now or datetime.utcnow()},
    )


def complete(
    match: Match,
    parsed: Optional[ParsedScore],
    rules: ScoringRules,
    submitted_by: Optional[str] = None,
    correction: bool = False,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Validate a full score and resolve the winner/loser pair.

    A score may be submitted from scheduled (the match is considered started)
    or in_progress. A completed match only accepts a new score with the
    correction flag; the correction clears score verification.
    """
    now = now or datetime.utcnow()
    if match.status == MatchStatus.completed:
        if not correction:
            raise AlreadyCompleted(f"Match {match.id} is already completed; set correction to resubmit")
        if match.is_bye:
            raise ValidationError(f"Match {match.id} is a bye; there is no score to correct", code="BYE_MATCH")
    elif correction:
        raise _invalid(match, "correct the score of")
    elif match.status not in (MatchStatus.scheduled, MatchStatus.in_progress):
        raise _invalid(match, "score")
    if not correction:
        require_ready(match)

    winner_slot = determine_winner(parsed, rules)
    changes: Dict[str, Any] = {
        "status": MatchStatus.completed.value,
        "score_json": score_to_json(parsed),
        "submitted_by": submitted_by,
        "completed_at": now,
        "score_verified": False,
        "score_verified_by": None,
        "score_verified_at": None,
    }
    changes.update(score_columns(parsed, rules))
    changes.update(_outcome(match, winner_slot))
    if match.started_at is None:
        changes["started_at"] = now
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.completed.value,
        changes=changes,
        winner_ref=changes["winner_ref"],
        loser_ref=changes["loser_ref"],
        is_correction=correction,
    )


def forfeit(
    match: Match,
    forfeiting_side: str,
    reason: str,
    partial_score: Optional[ParsedScore] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Any non-terminal -> forfeited (one side) or no_contest (both sides).

    The non-forfeiting side wins. A double forfeit has no winner; downstream
    slots receive the WALKOVER sentinel. A partial score is only accepted for a
    retirement during play and is stored without win-condition validation.
    """
    if match.status in TERMINAL_STATUSES:
        if match.status == MatchStatus.completed:
            raise AlreadyCompleted(f"Match {match.id} is already completed")
        raise _invalid(match, "forfeit")
    if forfeiting_side not in (SLOT_A, SLOT_B, FORFEIT_BOTH):
        raise ValidationError(f"forfeiting_side must be 'A', 'B' or 'BOTH', got {forfeiting_side!r}")
    if not reason or not reason.strip():
        raise ValidationError("A forfeit requires a reason")
    if partial_score is not None and match.status != MatchStatus.in_progress:
        raise ValidationError("A partial score is only accepted for a retirement during play")
    require_ready(match)

    now = now or datetime.utcnow()
    changes: Dict[str, Any] = {
        "forfeiting_side": forfeiting_side,
        "forfeit_reason": reason.strip(),
        "completed_at": now,
    }
    if partial_score is not None:
        changes["score_json"] = score_to_json(partial_score)
        changes["final_score"] = f"{partial_score.display} ret."

    if forfeiting_side == FORFEIT_BOTH:
        changes.update(status=MatchStatus.no_contest.value, winner_slot=None, winner_ref=None, loser_ref=None)
        return Transition(
            from_status=match.status,
            to_status=MatchStatus.no_contest.value,
            changes=changes,
            winner_ref=WALKOVER,
            loser_ref=WALKOVER,
        )

    changes["status"] = MatchStatus.forfeited.value
    changes.update(_outcome(match, other_slot(forfeiting_side)))
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.forfeited.value,
        changes=changes,
        winner_ref=changes["winner_ref"],
        loser_ref=changes["loser_ref"],
    )


def postpone(match: Match, reschedule_date: Optional[date], reason: Optional[str] = None) -> Transition:
    """scheduled -> postponed. Does not touch slots or propagation."""
    if match.status != MatchStatus.scheduled:
        raise _invalid(match, "postpone")
    if reschedule_date is None:
        raise ValidationError("Postponing a match requires a reschedule date")
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.postponed.value,
        changes={
            "status": MatchStatus.postponed.value,
            "reschedule_date": reschedule_date,
            "postpone_reason": reason,
        },
    )


def reschedule(match: Match, new_date: date, new_time: Optional[time] = None) -> Transition:
    """scheduled | postponed -> scheduled with a new date/time."""
    if match.status not in (MatchStatus.scheduled, MatchStatus.postponed):
        raise _invalid(match, "reschedule")
    if new_date is None:
        raise ValidationError("Rescheduling requires a new date")
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.scheduled.value,
        changes={
            "status": MatchStatus.scheduled.value,
            "scheduled_date": new_date,
            "scheduled_time": new_time,
            "reschedule_date": None,
        },
    )


def cancel(match: Match, reason: Optional[str] = None, now: Optional[datetime] = None) -> Transition:
    """Terminal. Blocks all further transitions; nothing propagates."""
    if match.status not in (MatchStatus.scheduled, MatchStatus.in_progress, MatchStatus.postponed):
        raise _invalid(match, "cancel")
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.cancelled.value,
        changes={"status": MatchStatus.cancelled.value, "cancel_reason": reason, "completed_at": now or datetime.utcnow()},
    )


def auto_resolve_bye(match: Match, now: Optional[datetime] = None) -> Optional[Transition]:
    """
    Resolve a match holding a BYE sentinel once both slots are filled.

    The filled side wins; BYE vs BYE yields a BYE winner so the empty line keeps
    propagating. Returns None when the match is not a resolvable bye.
    """
    if match.status != MatchStatus.scheduled:
        return None
    a, b = match.slot_a_ref, match.slot_b_ref
    if a is None or b is None or WALKOVER in (a, b) or BYE not in (a, b):
        return None
    winner_slot = SLOT_B if a == BYE else SLOT_A
    changes: Dict[str, Any] = {
        "status": MatchStatus.completed.value,
        "is_bye": True,
        "completed_at": now or datetime.utcnow(),
    }
    changes.update(_outcome(match, winner_slot))
    return Transition(
        from_status=match.status,
        to_status=MatchStatus.completed.value,
        changes=changes,
        winner_ref=changes["winner_ref"],
        loser_ref=changes["loser_ref"],
    )
