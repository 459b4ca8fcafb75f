"""Forfeits, double forfeits, postponement and cancellation inside a live bracket."""
from datetime import date, time

import pytest
from sqlmodel import Session

from app.models.match import BYE, WALKOVER
from app.services import reschedule_handler
from app.services.bracket_coordinator import get_bracket_status, start_match
from app.services.errors import AlreadyCompleted, ConflictError, NotReadyError, ValidationError
from tests.helpers import build, events_for, matches_by_code, play


def test_semifinal_forfeit_for_injury_feeds_final_and_third_place(session: Session):
    bracket = build(session, 4, third_place_playoff=True)
    semi = matches_by_code(session, bracket.id)["W_R1_01"]

    result = reschedule_handler.forfeit(session, semi.id, "A", "injury")

    m = matches_by_code(session, bracket.id)
    assert result.status == "forfeited"
    assert result.event_type == "MatchForfeited"
    assert (result.winner_ref, result.loser_ref) == ("p4", "p1")
    assert m["W_R2_01"].slot_a_ref == "p4"
    assert "3RD" not in m

    play(session, bracket.id, "W_R1_02")
    third = matches_by_code(session, bracket.id)["3RD"]
    assert (third.slot_a_ref, third.slot_b_ref) == ("p1", "p3")

    forfeit_event = events_for(session, bracket.id)[0]
    assert forfeit_event.payload["reason"] == "injury"
    assert forfeit_event.payload["forfeiting_side"] == "A"


def test_retirement_during_play_keeps_partial_score(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_02"]
    start_match(session, semi.id)

    result = reschedule_handler.forfeit(session, semi.id, "b", "cramp", partial_score="8-6")

    semi = matches_by_code(session, bracket.id)["W_R1_02"]
    assert result.winner_ref == "p2"
    assert semi.forfeiting_side == "B"
    assert semi.final_score == "8-6 ret."


def test_unparseable_partial_score_rejected(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_01"]
    with pytest.raises(ValidationError) as exc:
        reschedule_handler.forfeit(session, semi.id, "A", "cramp", partial_score="eight-six")
    assert exc.value.code == "INVALID_SCORE"


def test_forfeit_after_completion_rejected(session: Session):
    bracket = build(session, 4)
    play(session, bracket.id, "W_R1_01")
    semi = matches_by_code(session, bracket.id)["W_R1_01"]
    with pytest.raises(AlreadyCompleted):
        reschedule_handler.forfeit(session, semi.id, "B", "left early")


def test_double_forfeit_writes_walkover_downstream(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_01"]

    result = reschedule_handler.forfeit(session, semi.id, "BOTH", "neither side showed")

    m = matches_by_code(session, bracket.id)
    assert result.status == "no_contest"
    assert result.winner_ref is None
    assert m["W_R1_01"].winner_ref is None
    assert m["W_R2_01"].slot_a_ref == WALKOVER
    assert result.downstream == [{"match_id": m["W_R2_01"].id, "slot": "A", "participant_ref": WALKOVER}]

    play(session, bracket.id, "W_R1_02")
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    with pytest.raises(NotReadyError) as exc:
        start_match(session, final.id)
    assert exc.value.code == "WALKOVER_UNRESOLVED"
    assert get_bracket_status(session, bracket.id)["walkover_slots"] == 1


def test_walkover_resolved_with_participant(session: Session):
    bracket = build(session, 4)
    reschedule_handler.forfeit(session, matches_by_code(session, bracket.id)["W_R1_01"].id, "BOTH", "no show")
    play(session, bracket.id, "W_R1_02")
    final = matches_by_code(session, bracket.id)["W_R2_01"]

    result = reschedule_handler.resolve_walkover(session, final.id, "a", "p4")

    assert result.status == "scheduled"
    assert result.downstream == []
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    assert (final.slot_a_ref, final.slot_b_ref) == ("p4", "p2")
    assert start_match(session, final.id).status == "in_progress"


def test_walkover_resolved_as_bye_completes_bracket(session: Session):
    bracket = build(session, 4)
    reschedule_handler.forfeit(session, matches_by_code(session, bracket.id)["W_R1_01"].id, "BOTH", "no show")
    play(session, bracket.id, "W_R1_02")
    final = matches_by_code(session, bracket.id)["W_R2_01"]

    result = reschedule_handler.resolve_walkover(session, final.id, "A")

    assert result.status == "completed"
    assert result.winner_ref == "p2"
    assert result.auto_resolved == [final.id]
    session.refresh(bracket)
    assert bracket.status == "completed"
    assert (bracket.winner_ref, bracket.runner_up_ref) == ("p2", None)


def test_resolve_walkover_requires_walkover_slot(session: Session):
    bracket = build(session, 4)
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    with pytest.raises(ConflictError) as exc:
        reschedule_handler.resolve_walkover(session, final.id, "A", "p1")
    assert exc.value.code == "NO_WALKOVER"
    with pytest.raises(ValidationError):
        reschedule_handler.resolve_walkover(session, final.id, "C", "p1")
    with pytest.raises(ValidationError):
        reschedule_handler.resolve_walkover(session, final.id, "A", WALKOVER)


def test_postpone_and_reschedule_leave_slots_alone(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_01"]

    postponed = reschedule_handler.postpone(session, semi.id, date(2026, 4, 11), "rain")
    assert postponed.status == "postponed"
    assert postponed.event_type is None
    with pytest.raises(ConflictError):
        start_match(session, semi.id)

    back = reschedule_handler.reschedule(session, semi.id, date(2026, 4, 11), time(9, 0))
    assert back.status == "scheduled"

    semi = matches_by_code(session, bracket.id)["W_R1_01"]
    assert (semi.slot_a_ref, semi.slot_b_ref) == ("p1", "p4")
    assert semi.scheduled_date == date(2026, 4, 11)
    assert semi.reschedule_date is None
    assert events_for(session, bracket.id) == []


def test_postponed_downstream_still_receives_winner(session: Session):
    bracket = build(session, 4)
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    reschedule_handler.postpone(session, final.id, date(2026, 4, 12))

    play(session, bracket.id, "W_R1_01")

    final = matches_by_code(session, bracket.id)["W_R2_01"]
    assert final.status == "postponed"
    assert final.slot_a_ref == "p1"


def test_cancel_mid_bracket_requires_admin_action(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_01"]

    result = reschedule_handler.cancel(session, semi.id, "venue closed")

    assert result.status == "cancelled"
    assert result.event_type == "MatchCancelled"
    assert result.requires_admin_action is True
    assert result.propagated is False
    m = matches_by_code(session, bracket.id)
    assert m["W_R2_01"].slot_a_ref is None
    assert events_for(session, bracket.id)[0].payload["reason"] == "venue closed"

    with pytest.raises(ConflictError):
        reschedule_handler.cancel(session, semi.id)


def test_cancel_final_needs_no_admin_action(session: Session):
    bracket = build(session, 4)
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    result = reschedule_handler.cancel(session, final.id, "weather")
    assert result.requires_admin_action is False


def test_bye_is_never_a_walkover(session: Session):
    bracket = build(session, 3)
    m = matches_by_code(session, bracket.id)
    assert m["W_R1_01"].slot_b_ref == BYE
    assert get_bracket_status(session, bracket.id)["walkover_slots"] == 0


def test_results_still_recorded_when_downstream_was_cancelled(session: Session):
    bracket = build(session, 4)
    final = matches_by_code(session, bracket.id)["W_R2_01"]
    reschedule_handler.cancel(session, final.id, "weather")

    result = play(session, bracket.id, "W_R1_01")
    assert result.status == "completed"
    assert result.winner_ref == "p1"
    assert result.propagated is False

    semi = matches_by_code(session, bracket.id)["W_R1_02"]
    forfeit = reschedule_handler.forfeit(session, semi.id, "B", "illness")
    assert forfeit.status == "forfeited"

    m = matches_by_code(session, bracket.id)
    assert m["W_R1_01"].status == "completed"
    assert m["W_R1_02"].winner_ref == "p2"
    assert (m["W_R2_01"].slot_a_ref, m["W_R2_01"].slot_b_ref) == (None, None)
    assert m["W_R2_01"].status == "cancelled"

    completed = events_for(session, bracket.id)[1]
    assert completed.event_type == "MatchCompleted"
    assert completed.propagated is False


def test_postponed_match_can_be_cancelled(session: Session):
    bracket = build(session, 4)
    semi = matches_by_code(session, bracket.id)["W_R1_02"]
    reschedule_handler.postpone(session, semi.id, date(2026, 4, 13), "rain")

    result = reschedule_handler.cancel(session, semi.id, "rain again")

    assert result.status == "cancelled"
    assert result.requires_admin_action is True
