"""
Bracket engine services.

- bracket_builder: pure plan construction (no session)
- match_state: pure transition validation (no session)
- advancement_service: downstream slot writes, byes, 3rd place, playoff seeding
- bracket_coordinator / reschedule_handler: transactional entry points used by routes
- event_dispatcher: MatchEvent outbox and post-commit fan-out

Routes never raise engine errors themselves; services raise app.services.errors types.
"""
