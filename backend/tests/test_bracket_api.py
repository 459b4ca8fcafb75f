"""HTTP surface: categories, bracket build, match operations and repair."""
import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def tournament(client: TestClient):
    """Create a tournament for testing"""
    response = client.post(
        "/api/tournaments",
        json={"name": "API Open", "location": "Hall 2", "start_date": "2026-06-01", "end_date": "2026-06-02"},
    )
    return response.json()


def _category(client: TestClient, tournament_id: int, **overrides):
    payload = {"name": "Men's Singles", "match_format": "games_to_11", "scoring_format": "rally_point"}
    payload.update(overrides)
    return client.post(f"/api/tournaments/{tournament_id}/categories", json=payload)


def _bracket(client: TestClient, tournament_id: int, n: int, **overrides):
    category = _category(client, tournament_id, **overrides).json()
    participants = [{"participant_ref": f"p{i}", "seed": i} for i in range(1, n + 1)]
    response = client.post(f"/api/categories/{category['id']}/bracket", json={"participants": participants})
    assert response.status_code == 201, response.text
    return response.json()


def _matches(client: TestClient, bracket_id: int):
    view = client.get(f"/api/brackets/{bracket_id}").json()
    return {
        m["match_code"]: m
        for side in view["sides"]
        for rnd in side["rounds"]
        for m in rnd["matches"]
    }


# ============================================================================
# Categories
# ============================================================================


def test_create_category(tournament, client: TestClient):
    """Test creating a category with its format rules"""
    response = _category(client, tournament["id"], bracket_kind="double_elimination", seeding_method="ranking")

    assert response.status_code == 201
    data = response.json()
    assert data["bracket_kind"] == "double_elimination"
    assert data["seeding_method"] == "ranking"
    assert data["match_format"] == "games_to_11"

    listed = client.get(f"/api/tournaments/{tournament['id']}/categories").json()
    assert [c["id"] for c in listed] == [data["id"]]


def test_duplicate_category_name_rejected(tournament, client: TestClient):
    """Test that category names are unique within a tournament"""
    assert _category(client, tournament["id"]).status_code == 201
    response = _category(client, tournament["id"])
    assert response.status_code == 409
    assert response.json()["detail"].startswith("CATEGORY_EXISTS")


def test_unknown_match_format_rejected(tournament, client: TestClient):
    """Test that scoring configuration is validated when the category is created"""
    response = _category(client, tournament["id"], match_format="best_of_9")
    assert response.status_code == 400
    assert response.json()["detail"].startswith("UNKNOWN_MATCH_FORMAT")


def test_playoff_size_only_for_round_robin(tournament, client: TestClient):
    response = _category(client, tournament["id"], playoff_size=4)
    assert response.status_code == 422


# ============================================================================
# Bracket build and read side
# ============================================================================


def test_build_bracket_endpoint(tournament, client: TestClient):
    """Test building a 5-participant bracket over HTTP"""
    bracket = _bracket(client, tournament["id"], 5)

    assert bracket["size"] == 8
    assert bracket["matches_count"] == 7
    assert bracket["status"] == "active"

    matches = _matches(client, bracket["id"])
    assert matches["W_R1_01"]["status"] == "completed"
    assert matches["W_R2_02"]["ready"] is True
    assert matches["W_R2_01"]["slot_b"]["resolved"] is False

    assert client.get(f"/api/tournaments/{tournament['id']}").json()["status"] == "active"


def test_build_bracket_twice_conflicts(tournament, client: TestClient):
    category = _category(client, tournament["id"]).json()
    body = {"participants": [{"participant_ref": "a"}, {"participant_ref": "b"}]}
    assert client.post(f"/api/categories/{category['id']}/bracket", json=body).status_code == 201

    response = client.post(f"/api/categories/{category['id']}/bracket", json=body)
    assert response.status_code == 409
    assert response.json()["detail"].startswith("ALREADY_BUILT")


def test_build_bracket_too_few_participants(tournament, client: TestClient):
    category = _category(client, tournament["id"]).json()
    response = client.post(
        f"/api/categories/{category['id']}/bracket", json={"participants": [{"participant_ref": "a"}]}
    )
    assert response.status_code == 400
    assert response.json()["detail"].startswith("INSUFFICIENT_PARTICIPANTS")


def test_missing_bracket_is_404(client: TestClient):
    response = client.get("/api/brackets/424242")
    assert response.status_code == 404
    assert response.json()["detail"].startswith("NOT_FOUND")


def test_bracket_summary_and_status(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)

    summary = client.get(f"/api/brackets/{bracket['id']}/summary").json()
    assert summary["kind"] == "single_elimination"
    assert summary["total_rounds"] == 2

    status = client.get(f"/api/brackets/{bracket['id']}/status").json()
    assert status["total_matches"] == 3
    assert status["ready_matches"] == 2
    assert status["progress_pct"] == 0.0


# ============================================================================
# Match operations
# ============================================================================


def test_score_flow_over_http(tournament, client: TestClient):
    """Test start, score, propagation, events and verification"""
    bracket = _bracket(client, tournament["id"], 4)
    matches = _matches(client, bracket["id"])
    semi_id = matches["W_R1_01"]["id"]

    response = client.post(f"/api/matches/{semi_id}/start")
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"

    response = client.post(
        f"/api/matches/{semi_id}/score",
        json={"score": {"sets": [{"a": 11, "b": 6}]}, "submitted_by": "ref-3"},
    )
    assert response.status_code == 200
    result = response.json()
    assert result["winner_ref"] == "p1"
    assert result["event_type"] == "MatchCompleted"
    assert result["downstream"] == [{"match_id": matches["W_R2_01"]["id"], "slot": "A", "participant_ref": "p1"}]

    match = client.get(f"/api/matches/{matches['W_R2_01']['id']}").json()
    assert match["slot_a"]["participant_ref"] == "p1"

    response = client.post(f"/api/matches/{semi_id}/score", json={"score": "11-2"})
    assert response.status_code == 409
    assert response.json()["detail"].startswith("ALREADY_COMPLETED")

    response = client.post(f"/api/matches/{semi_id}/verify", json={"verified_by": "td"})
    assert response.status_code == 200
    assert response.json()["score_verified"] is True

    events = client.get(f"/api/brackets/{bracket['id']}/events").json()
    assert [e["event_type"] for e in events] == ["MatchCompleted"]
    assert events[0]["status"] == "dispatched"


def test_invalid_score_is_422(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    semi_id = _matches(client, bracket["id"])["W_R1_01"]["id"]

    response = client.post(f"/api/matches/{semi_id}/score", json={"score": "11-10"})
    assert response.status_code == 422
    assert response.json()["detail"].startswith("INVALID_SCORE")


def test_unready_match_is_409(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    final_id = _matches(client, bracket["id"])["W_R2_01"]["id"]

    response = client.post(f"/api/matches/{final_id}/start")
    assert response.status_code == 409
    assert response.json()["detail"].startswith("MATCH_NOT_READY")


def test_forfeit_and_walkover_resolution_over_http(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    matches = _matches(client, bracket["id"])

    response = client.post(
        f"/api/matches/{matches['W_R1_01']['id']}/forfeit",
        json={"forfeiting_side": "both", "reason": "no show"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "no_contest"

    final = client.get(f"/api/matches/{matches['W_R2_01']['id']}").json()
    assert final["slot_a"]["is_walkover"] is True

    response = client.post(
        f"/api/matches/{matches['W_R2_01']['id']}/walkover-resolution",
        json={"slot": "A", "participant_ref": "p4"},
    )
    assert response.status_code == 200
    final = client.get(f"/api/matches/{matches['W_R2_01']['id']}").json()
    assert final["slot_a"]["participant_ref"] == "p4"


def test_forfeit_side_validated(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    semi_id = _matches(client, bracket["id"])["W_R1_01"]["id"]
    response = client.post(f"/api/matches/{semi_id}/forfeit", json={"forfeiting_side": "C", "reason": "x"})
    assert response.status_code == 422


def test_postpone_reschedule_cancel_over_http(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    semi_id = _matches(client, bracket["id"])["W_R1_02"]["id"]

    response = client.post(f"/api/matches/{semi_id}/postpone", json={"reschedule_date": "2026-06-02"})
    assert response.json()["status"] == "postponed"

    response = client.post(
        f"/api/matches/{semi_id}/reschedule", json={"new_date": "2026-06-02", "new_time": "14:30:00"}
    )
    assert response.json()["status"] == "scheduled"

    response = client.post(f"/api/matches/{semi_id}/cancel", json={"reason": "venue"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "cancelled"
    assert body["requires_admin_action"] is True


def test_assignment_patch(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 4)
    final_id = _matches(client, bracket["id"])["W_R2_01"]["id"]

    response = client.patch(
        f"/api/matches/{final_id}/assignment",
        json={"court_id": 4, "referee_id": "ref-9", "scheduled_time": "16:00:00"},
    )
    assert response.status_code == 200
    data = response.json()
    assert (data["court_id"], data["referee_id"], data["scheduled_time"]) == (4, "ref-9", "16:00:00")


def test_resolve_dependencies_endpoint(tournament, client: TestClient):
    bracket = _bracket(client, tournament["id"], 5)

    response = client.post(f"/api/brackets/{bracket['id']}/resolve-dependencies")
    assert response.status_code == 200
    report = response.json()
    assert report["matches_processed"] == 3
    assert report["slots_written"] == 0
    assert report["conflicts"] == 0

    again = client.post(f"/api/brackets/{bracket['id']}/resolve-dependencies").json()
    assert again == report


def test_health_check(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
