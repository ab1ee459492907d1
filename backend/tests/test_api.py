"""API route tests."""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _create(client):
    r = client.post("/api/sessions", json={"host_id": "host"})
    assert r.status_code == 201
    return r.json()["code"]


def _lobby(client, names=("Ann", "Ben", "Cat")):
    code = _create(client)
    for name in names:
        r = client.post(f"/api/sessions/{code}/join", json={"display_name": name, "player_id": name.lower()})
        assert r.status_code == 200
    return code


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_create_and_get_session(client):
    code = _create(client)
    r = client.get(f"/api/sessions/{code}")
    assert r.status_code == 200
    state = r.json()
    assert state["code"] == code
    assert state["phase"] == "lobby"
    assert state["roster"] == []
    assert state["time_remaining"] is None


def test_get_session_404(client):
    r = client.get("/api/sessions/ZZZZ")
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "session_not_found"


def test_join_validation(client):
    code = _create(client)
    r = client.post(f"/api/sessions/{code}/join", json={"display_name": ""})
    assert r.status_code == 422
    r = client.post("/api/sessions/ZZZZ/join", json={"display_name": "Ann"})
    assert r.status_code == 404


def test_join_twice_keeps_one_entry(client):
    code = _lobby(client, names=("Ann",))
    r = client.post(f"/api/sessions/{code}/join", json={"display_name": "Annie", "player_id": "ann"})
    assert r.json() == {"player_id": "ann", "code": code}
    roster = client.get(f"/api/sessions/{code}").json()["roster"]
    assert roster == [{"id": "ann", "display_name": "Annie"}]


def test_advance_requires_host(client):
    code = _lobby(client)
    assert client.post(f"/api/sessions/{code}/advance").status_code == 422
    r = client.post(f"/api/sessions/{code}/advance", params={"host_id": "ann", "forced": True})
    assert r.status_code == 403
    r = client.post(f"/api/sessions/{code}/advance", params={"host_id": "host", "forced": True})
    assert r.status_code == 200
    assert r.json() == {"applied": True, "phase": "brainstorm"}


def test_advance_needs_players(client):
    code = _lobby(client, names=("Ann",))
    r = client.post(f"/api/sessions/{code}/advance", params={"host_id": "host", "forced": True})
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "not_enough_players"


def test_actions_and_votes(client):
    code = _lobby(client)
    client.post(f"/api/sessions/{code}/advance", params={"host_id": "host", "forced": True})

    r = client.post(f"/api/sessions/{code}/actions", json={
        "player_id": "ann", "phase": "brainstorm", "payload": {"weapon": "Axe", "description": "tall hat"},
    })
    assert r.status_code == 200
    assert r.json() == {"applied": True}

    r = client.post(f"/api/sessions/{code}/votes", json={
        "player_id": "ann", "phase": "suspect_vote", "target": "ben",
    })
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "stale_submission"

    r = client.post(f"/api/sessions/{code}/votes", json={
        "player_id": "ann", "phase": "brainstorm", "target": "ben",
    })
    assert r.status_code == 422

    player = client.get(f"/api/sessions/{code}/players/ann", params={"requester_id": "ann"}).json()
    assert player["submissions"]["brainstorm"] == {"weapon": "Axe", "description": "tall hat", "answers": {}}
    assert player["flags"]["has_submitted_brainstorm"] is True


def test_unknown_player_record(client):
    code = _create(client)
    r = client.get(f"/api/sessions/{code}/players/nobody", params={"requester_id": "nobody"})
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "player_not_found"


def test_player_record_is_private(client):
    code = _lobby(client)
    url = f"/api/sessions/{code}/players/ann"
    assert client.get(url).status_code == 422
    r = client.get(url, params={"requester_id": "ben"})
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "forbidden"
    assert "is_murderer" not in r.text
    r = client.get(url, params={"requester_id": "ann"})
    assert r.status_code == 200
    assert r.json()["id"] == "ann"


def test_round_results_carry_counts_only(client):
    code = _lobby(client)
    advance = {"host_id": "host", "forced": True}
    while client.get(f"/api/sessions/{code}").json()["phase"] != "round_results":
        client.post(f"/api/sessions/{code}/advance", params=advance)
    results = client.get(f"/api/sessions/{code}").json()["phase_artifacts"]["round_results"]
    assert results == {"perfect": 0, "suspect_only": 0, "weapon_only": 0, "neither": 3}


def test_full_game_reaches_reveal_and_restarts(client):
    code = _lobby(client)
    advance = {"host_id": "host", "forced": True}
    client.post(f"/api/sessions/{code}/advance", params=advance)
    client.post(f"/api/sessions/{code}/advance", params=advance)

    state = client.get(f"/api/sessions/{code}").json()
    assert state["phase"] == "suspect_vote"
    assert state["murderer_id"] is None
    assert state["weapon_pool"]

    murderers = [
        pid for pid in ("ann", "ben", "cat")
        if client.get(f"/api/sessions/{code}/players/{pid}", params={"requester_id": pid}).json()["is_murderer"]
    ]
    assert len(murderers) == 1

    while client.get(f"/api/sessions/{code}").json()["phase"] != "reveal":
        assert client.post(f"/api/sessions/{code}/advance", params=advance).status_code == 200
    state = client.get(f"/api/sessions/{code}").json()
    assert state["murderer_id"] == murderers[0]
    assert state["phase_artifacts"]["final_result"]["caught"] is False

    r = client.post(f"/api/sessions/{code}/advance", params=advance)
    assert r.status_code == 422

    r = client.post(f"/api/sessions/{code}/restart", params={"host_id": "host"})
    assert r.status_code == 200
    state = client.get(f"/api/sessions/{code}").json()
    assert state["phase"] == "lobby"
    assert [e["id"] for e in state["roster"]] == ["ann", "ben", "cat"]


def test_websocket_pushes_snapshots(client):
    code = _lobby(client)
    with client.websocket_connect(f"/ws/{code}?playerId=ann") as ws:
        first = ws.receive_json()
        second = ws.receive_json()
        assert {first["type"], second["type"]} == {"session", "player"}

        ws.send_json({"type": "ping"})
        messages = [ws.receive_json()]
        assert messages[0]["type"] == "pong"

        ws.send_json({"type": "action", "data": {"phase": "suspect_vote", "payload": {}}})
        result = ws.receive_json()
        assert result["type"] == "result"
        assert result["error"] == "stale_submission"


def test_websocket_unknown_session(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/ZZZZ?playerId=ann") as ws:
            ws.receive_json()
    assert exc.value.code == 4404
