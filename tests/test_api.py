"""
HTTP API tests (FastAPI TestClient over the in-memory database).
"""

import uuid
import warnings

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import get_db
from main import app
from models import RoundPhase
from schemas import ParticipantResponse, RoundResponse, SessionResponse


@pytest.fixture
def client(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # no context manager: the lifespan would create tables on the real engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_game(client, players=3, lives=3, activate=True):
    session = client.post("/api/sessions", json={"name": "Friday Night", "initial_lives": lives}).json()
    ids = []
    for i in range(players):
        resp = client.post(
            f"/api/sessions/{session['id']}/participants",
            json={"identity": f"user-{i}", "nickname": f"Player {i}"}
        )
        assert resp.status_code == 201
        pid = resp.json()["id"]
        if activate:
            assert client.post(f"/api/participants/{pid}/activate").status_code == 200
        ids.append(pid)
    return session["id"], ids


def _start(client, session_id):
    resp = client.post(f"/api/sessions/{session_id}/start")
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_create_and_get_session(client):
    resp = client.post("/api/sessions", json={"name": "Finals Cup", "venue": "Hall A"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "waiting"
    assert body["initial_lives"] == 5

    fetched = client.get(f"/api/sessions/{body['id']}").json()
    assert fetched["venue"] == "Hall A"
    assert client.get("/api/sessions/active").json()["id"] == body["id"]


def test_unknown_session_returns_error_body(client):
    resp = client.get(f"/api/sessions/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


def test_duplicate_enrollment_is_conflict(client):
    session_id, _ = _create_game(client, players=1)
    resp = client.post(
        f"/api/sessions/{session_id}/participants",
        json={"identity": "user-0", "nickname": "Again"}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "DuplicateIdentity"


def test_start_with_one_player_has_winner(client):
    session_id, ids = _create_game(client, players=1)
    body = _start(client, session_id)

    assert body["completed"] is True
    assert body["winner_id"] == ids[0]
    assert body["round"] is None
    assert body["session"]["status"] == "completed"


def test_full_round_over_http(client):
    session_id, ids = _create_game(client, players=3, lives=2)
    body = _start(client, session_id)
    assert body["round"]["phase"] == "selectTwo"
    assert body["round"]["mode"] == "finals"

    picks = [["rock", "paper"], ["rock", "scissors"], ["paper", "scissors"]]
    for pid, gestures in zip(ids, picks):
        resp = client.post(
            f"/api/sessions/{session_id}/rounds/1/selection",
            json={"participant_id": pid, "gestures": gestures}
        )
        assert resp.status_code == 200
    assert resp.json()["transitions"] == ["excludeOne"]

    client.post(f"/api/sessions/{session_id}/rounds/1/final", json={"participant_id": ids[0], "kept": "rock"})
    client.post(f"/api/sessions/{session_id}/rounds/1/final", json={"participant_id": ids[1], "dropped": "scissors"})
    resp = client.post(f"/api/sessions/{session_id}/rounds/1/final", json={"participant_id": ids[2], "kept": "paper"})
    assert resp.json()["phase"] == "revealing"

    round_one = client.get(f"/api/sessions/{session_id}/rounds/1").json()
    assert round_one["outcome"] == "elimination"
    assert round_one["losing_gestures"] == ["paper"]

    loser = client.get(f"/api/participants/{ids[2]}").json()
    assert loser["current_lives"] == 1

    history = client.get(f"/api/participants/{ids[2]}/history").json()
    assert history[0]["lives_lost"] == 1


def test_final_with_both_kept_and_dropped_is_invalid(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)
    resp = client.post(
        f"/api/sessions/{session_id}/rounds/1/final",
        json={"participant_id": ids[0], "kept": "rock", "dropped": "paper"}
    )
    assert resp.status_code == 422


def test_selection_in_wrong_phase(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)
    for pid in ids:
        client.post(
            f"/api/sessions/{session_id}/rounds/1/selection",
            json={"participant_id": pid, "gestures": ["rock", "paper"]}
        )

    resp = client.post(
        f"/api/sessions/{session_id}/rounds/1/selection",
        json={"participant_id": ids[0], "gestures": ["scissors", "paper"]}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "WrongPhase"


def test_preliminary_hides_selections_until_reveal(client):
    session_id, ids = _create_game(client, players=5)
    _start(client, session_id)
    for pid in ids[:4]:
        client.post(
            f"/api/sessions/{session_id}/rounds/1/selection",
            json={"participant_id": pid, "gestures": ["rock", "paper"]}
        )

    state = client.get(f"/api/sessions/{session_id}/state", params={"participant_id": ids[0]}).json()
    views = {c["participant_id"]: c for c in state["choices"]}

    assert views[ids[0]]["selected_gestures"] == ["rock", "paper"]
    assert views[ids[1]]["selected_gestures"] is None
    assert views[ids[1]]["has_selected"] is True
    assert state["living_count"] == 5


def test_finals_show_selections_during_exclude_one(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)
    client.post(
        f"/api/sessions/{session_id}/rounds/1/selection",
        json={"participant_id": ids[0], "gestures": ["rock", "paper"]}
    )
    client.post(
        f"/api/sessions/{session_id}/rounds/1/selection",
        json={"participant_id": ids[1], "gestures": ["rock", "scissors"]}
    )
    client.post(f"/api/sessions/{session_id}/rounds/1/final", json={"participant_id": ids[1], "kept": "rock"})

    choices = client.get(
        f"/api/sessions/{session_id}/rounds/1/choices", params={"participant_id": ids[0]}
    ).json()
    other = next(c for c in choices if c["participant_id"] == ids[1])

    assert other["selected_gestures"] == ["rock", "scissors"]
    assert other["final_gesture"] is None
    assert other["has_finalized"] is True


def test_resolve_endpoint_is_idempotent(client):
    session_id, ids = _create_game(client, players=2, lives=3)
    _start(client, session_id)
    for pid in ids:
        client.post(
            f"/api/sessions/{session_id}/rounds/1/selection",
            json={"participant_id": pid, "gestures": ["rock", "paper"]}
        )
    client.post(f"/api/sessions/{session_id}/rounds/1/final", json={"participant_id": ids[0], "kept": "rock"})

    first = client.post(f"/api/sessions/{session_id}/rounds/1/resolve").json()
    second = client.post(f"/api/sessions/{session_id}/rounds/1/resolve").json()

    assert first["already_resolved"] is False
    assert [d["participant_id"] for d in first["deltas"]] == [ids[1]]
    assert second["already_resolved"] is True
    assert second["deltas"] == []
    assert client.get(f"/api/participants/{ids[1]}").json()["current_lives"] == 2


def test_skip_endpoint(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)
    client.post(
        f"/api/sessions/{session_id}/rounds/1/selection",
        json={"participant_id": ids[0], "gestures": ["rock", "paper"]}
    )

    body = client.post(f"/api/sessions/{session_id}/rounds/1/skip").json()

    assert body["transitions"] == ["excludeOne"]
    assert body["phase"] == "excludeOne"


def test_events_feed(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)

    feed = client.get(f"/api/sessions/{session_id}/events").json()
    types = [e["type"] for e in feed["events"]]
    assert types[0] == "sessionCreated"
    assert "roundCreated" in types
    assert feed["state_version"] == len(types)

    last_id = feed["events"][-1]["id"]
    assert client.get(f"/api/sessions/{session_id}/events", params={"after": last_id}).json()["events"] == []


def test_deactivate_and_heartbeat(client):
    session_id, ids = _create_game(client, players=1)

    assert client.post(f"/api/participants/{ids[0]}/heartbeat").json() == {"status": "ok"}
    body = client.post(f"/api/participants/{ids[0]}/deactivate").json()
    assert body["locked"] is False
    assert body["participant"]["status"] == "enrolled"


def test_scheduler_tick_advances_sessions(client):
    session_id, ids = _create_game(client, players=2)
    _start(client, session_id)

    report = client.post("/api/scheduler/tick", json={"elapsed": 10}).json()

    assert report["count"] == 1
    assert report["results"][0]["ok"] is True
    assert report["results"][0]["transitions"][0] == "excludeOne"


def test_scheduler_requires_token_when_configured(client, game_settings):
    game_settings.scheduler_token = "s3cret"

    assert client.post("/api/scheduler/start-due").status_code == 401
    ok = client.post("/api/scheduler/start-due", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200
    assert ok.json()["count"] == 0


def test_scheduler_timeouts(client):
    _create_game(client, players=2)
    report = client.post("/api/scheduler/timeouts", json={"threshold_seconds": 0}).json()
    assert report["count"] == 2
    assert {r["action"] for r in report["results"]} == {"deactivated"}


def test_response_models_read_orm_rows(db, started_game):
    game_session, players, round_obj = started_game(players=2)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        session_view = SessionResponse.model_validate(game_session)
        participant_view = ParticipantResponse.model_validate(players[0])
        round_view = RoundResponse.model_validate(round_obj)

    assert session_view.id == game_session.id
    assert participant_view.current_lives == 5
    assert round_view.phase == RoundPhase.SELECT_TWO
