"""
REST API Tests

Card flow over HTTP and the mapping of session errors to status codes.
"""

import pytest
from fastapi.testclient import TestClient

from mysihat_app.api import create_api, error_status
from mysihat_app.errors import (
    IdentityNotFound,
    IllegalTransition,
    IncompleteVisit,
    InvalidCode,
    InvalidDate,
    MalformedPayload,
)
from mysihat_app.models import SessionStage

AHMAD = "920815-01-5234"


@pytest.fixture
def client(terminal):
    return TestClient(create_api(terminal))


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_codes(client):
    diagnoses = client.get("/api/codes/diagnoses").json()
    medications = client.get("/api/codes/medications").json()

    assert diagnoses[0] == {"code": "R50", "name": "Fever"}
    assert len(diagnoses) == 9
    assert medications[-1] == {"code": "N02BA01", "name": "Aspirin"}


def test_load_card(client):
    response = client.post("/api/card/load", json={"identity": AHMAD})

    assert response.status_code == 200
    card = response.json()
    assert card["name"] == "Ahmad bin Abdullah"
    assert card["blood_type"] == "O+"
    assert card["visit_count"] == 3

    assert client.get("/api/card").json() == card


def test_load_errors(client):
    assert client.post("/api/card/load", json={"identity": "000000-00-0000"}).status_code == 404

    client.post("/api/card/load", json={"identity": AHMAD})
    assert client.post("/api/card/load", json={"identity": AHMAD}).status_code == 409


def test_card_endpoints_require_card(client):
    assert client.get("/api/card").status_code == 409
    assert client.get("/api/card/history").status_code == 409
    assert client.get("/api/card/storage").status_code == 409


def test_history_and_storage(client):
    client.post("/api/card/load", json={"identity": AHMAD})

    history = client.get("/api/card/history").json()
    assert [v["date"] for v in history] == ["251201", "251120", "251105"]
    assert history[0]["chip_data"] == "251201|R50|N02BE01"
    assert history[0]["diagnosis"] == "Fever"

    oldest = client.get("/api/card/history", params={"newest_first": False, "limit": 1}).json()
    assert [v["date"] for v in oldest] == ["251105"]

    latest = client.get("/api/card/history", params={"limit": 2}).json()
    assert [v["date"] for v in latest] == ["251201", "251120"]

    storage = client.get("/api/card/storage").json()
    assert storage["history_bytes"] == 54
    assert storage["percent_used"] == 3.5
    assert storage["over_budget"] is False


def test_commit_flow(client):
    client.post("/api/card/load", json={"identity": AHMAD})

    assert client.post("/api/card/commit", json={"medication": "N02BA01"}).status_code == 409
    assert client.post("/api/card/diagnosis", json={"code": "XX99"}).status_code == 400

    response = client.post("/api/card/diagnosis", json={"code": "R51"})
    assert response.json()["stage"] == "pending"

    assert client.post("/api/card/commit", json={"medication": ""}).status_code == 400
    assert client.post("/api/card/commit", json={"medication": "N02BA01", "date": "26-01"}).status_code == 400

    response = client.post("/api/card/commit", json={"medication": "N02BA01", "date": "260101"})
    assert response.status_code == 200
    result = response.json()
    assert result["stage"] == "committed"
    assert result["visit"]["chip_data"] == "260101|R51|N02BA01"
    assert result["visit"]["encoded_size"] == 18
    assert result["evicted"] is None
    assert result["storage"]["history_bytes"] == 72
    assert result["storage"]["percent_used"] == 3.6

    status = client.get("/api/status").json()
    assert status["visits_written"] == 1
    assert status["errors"] == 4

    response = client.post("/api/card/reset")
    assert response.json()["stage"] == "no_card"
    assert client.get("/api/status").json()["identity"] is None


def test_error_status_mapping():
    assert error_status(IdentityNotFound("x")) == 404
    assert error_status(IllegalTransition("commit", SessionStage.NO_CARD)) == 409
    assert error_status(InvalidCode("XX99", "diagnosis")) == 400
    assert error_status(InvalidDate("2601")) == 400
    assert error_status(IncompleteVisit("medication required")) == 400
    assert error_status(MalformedPayload("bad payload")) == 422


def test_commit_response_from_locked_result(client, terminal, monkeypatch):
    write_visit = terminal.write_visit

    def write_then_reset(*args):
        # Another request resets the session right after the commit
        result = write_visit(*args)
        terminal.next_patient()
        return result

    monkeypatch.setattr(terminal, "write_visit", write_then_reset)
    client.post("/api/card/load", json={"identity": AHMAD})
    client.post("/api/card/diagnosis", json={"code": "R51"})

    response = client.post("/api/card/commit", json={"medication": "N02BA01", "date": "260101"})

    assert response.status_code == 200
    assert response.json()["stage"] == "committed"
    assert response.json()["storage"]["history_bytes"] == 72
    assert client.get("/api/card/storage").status_code == 409
