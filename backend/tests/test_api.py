import time

import pytest
from fastapi.testclient import TestClient

from combosim.core.config import Settings
from combosim.main import create_app
from combosim.models import MAX_DECK_SIZE, ParseResult
from combosim.services import session as session_module
from combosim.services import sim_runner

DECK = "# two pairs\n2 card a\n2 card b\nbad line"
COMBO = "2 card a"


@pytest.fixture
def client():
    app = create_app(Settings(workers=2, inline_below=10_000_000))
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_parse_reports_warnings(client):
    response = client.post("/api/parse", json={"deck_text": DECK, "combo_text": COMBO})
    assert response.status_code == 200
    body = response.json()
    assert body["deck"] == ["card a", "card a", "card b", "card b"]
    assert body["combo"][0][0][0]["min"] == 2
    assert body["warnings"] == ["Line with invalid format ignored: bad line."]
    assert body["fingerprint"]


def test_estimate_and_cache(client):
    payload = {"deck_text": DECK, "combo_text": COMBO, "hand_size": 2, "trials": 20_000, "seed": 1}
    first = client.post("/api/estimate", json=payload).json()
    assert abs(first["probability"] - 1 / 6) < 0.02
    assert first["cached"] is False
    assert first["warnings"] == ["Line with invalid format ignored: bad line."]

    second = client.post("/api/estimate", json=payload).json()
    assert second["cached"] is True
    assert second["probability"] == first["probability"]

    assert client.get("/api/cache").json() == [[f"{first['fingerprint']}:seed=1", first["probability"]]]

    skipped = client.post("/api/estimate", json={**payload, "skip_if_unchanged": True})
    assert skipped.status_code == 409


def test_rejects_bad_request(client):
    response = client.post("/api/estimate", json={"deck_text": DECK, "combo_text": COMBO, "trials": 0})
    assert response.status_code == 422


def test_background_simulation(client):
    payload = {"deck_text": "3 card a", "combo_text": "card a", "hand_size": 3, "trials": 1000}
    sim_id = client.post("/api/simulations", json=payload).json()["id"]
    status = None
    for _ in range(200):
        status = client.get(f"/api/simulations/{sim_id}/status").json()
        if status["status"] != "running":
            break
        time.sleep(0.01)
    assert status["status"] == "done"
    result = client.get(f"/api/simulations/{sim_id}").json()
    assert result["probability"] == 1.0


def test_unknown_simulation_is_404(client):
    assert client.get("/api/simulations/nope").status_code == 404
    assert client.get("/api/simulations/nope/status").status_code == 404


def test_defaults(client):
    body = client.get("/api/libraries/defaults").json()
    assert body["hand_size"] == 5 and body["trials"] == 10_000
    assert "40 total" in body["deck"]


def test_oversized_deck_line_is_a_warning(client):
    payload = {"deck_text": "70000 total\n1 card a", "combo_text": "card a", "hand_size": 1, "trials": 100}
    response = client.post("/api/estimate", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["probability"] == 1.0
    assert len(body["warnings"]) == 1
    assert client.post("/api/simulations", json={**payload, "trials": 200}).status_code == 200


def test_invalid_parsed_request_is_422(client, monkeypatch):
    oversized = ParseResult(deck=["card a"] * (MAX_DECK_SIZE + 1))
    monkeypatch.setattr(sim_runner, "parse_text_request", lambda request: oversized)
    payload = {"deck_text": "", "combo_text": "card a"}
    assert client.post("/api/estimate", json=payload).status_code == 422
    assert client.post("/api/simulations", json=payload).status_code == 422


def test_worker_failure_surfaces(client, monkeypatch):
    def broken(task):
        raise RuntimeError("boom")

    monkeypatch.setattr(session_module, "run_share", broken)
    payload = {"deck_text": "3 card a", "combo_text": "card a", "hand_size": 1, "trials": 100}
    response = client.post("/api/estimate", json=payload)
    assert response.status_code == 500
    assert "boom" in response.json()["detail"]

    sim_id = client.post("/api/simulations", json={**payload, "trials": 101}).json()["id"]
    status = None
    for _ in range(200):
        status = client.get(f"/api/simulations/{sim_id}/status").json()
        if status["status"] != "running":
            break
        time.sleep(0.01)
    assert status["status"] == "error"
    assert "boom" in status["error"]


def test_sample_endpoint(client):
    body = client.post("/api/sample", json={"deck_text": "2 card a", "combo_text": "2 card a", "hand_size": 2}).json()
    assert body == {"hand": ["card a", "card a"], "satisfied": True, "warnings": []}
