"""Tests for the HTTP surface."""

import re
import uuid

import pytest
from fastapi.testclient import TestClient

from narrative_pipeline.assistant import statuses
from narrative_pipeline.config import settings
from narrative_pipeline.database import get_db
from narrative_pipeline.dependencies import get_llm_client, get_stage_invoker, get_telemetry
from narrative_pipeline.exceptions import StaleControlRecordError
from narrative_pipeline.main import app
from narrative_pipeline.stages.base import BaseStage
from narrative_pipeline.stages.registry import STAGES

from conftest import RecordingInvoker

AUTH = {"Authorization": "Bearer user-token"}
ELAPSED = re.compile(r"^\d{2}:\d{2}:\d{2}\.\d{3}$")


@pytest.fixture
def invoker():
    return RecordingInvoker()


@pytest.fixture
def client(test_db, llm_client, telemetry, invoker):
    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_telemetry] = lambda: telemetry
    app.dependency_overrides[get_llm_client] = lambda: llm_client
    app.dependency_overrides[get_stage_invoker] = lambda: invoker

    yield TestClient(app)

    app.dependency_overrides.clear()


def test_health(client):
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_router_stage_schedules_next_stage(client, invoker, make_record):
    """Test that the router's trigger is fired with the caller's token."""
    record = make_record(statuses.PREP_PROMPT)

    response = client.post("/stages/router", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "Complete"
    assert ELAPSED.match(body["elapsedTime"])
    assert invoker.calls == [("prep_prompt", str(record.id), "user-token")]


def test_stage_run_returns_envelope(client, invoker, seeded, make_record):
    """Test a full stage run through the endpoint."""
    record = make_record(statuses.CHECK_LOOP_BATCH, iteration_json='{"chapterKeyMoments": [], "isFinalChunk": true}')

    response = client.post("/stages/check_loop_batch", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 200
    assert response.json()["status"] == statuses.PARSE_RESPONSE
    assert invoker.calls == [("router", str(record.id), "user-token")]


def test_skipped_stage_fires_nothing(client, invoker, make_record):
    """Test that a duplicate trigger is a harmless no-op."""
    record = make_record(statuses.COMPLETE)

    response = client.post("/stages/run_assistant", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 200
    assert response.json()["outcome"] == "Skipped"
    assert invoker.calls == []


def test_missing_token(client, make_record):
    """Test that a request without a bearer token is rejected."""
    record = make_record(statuses.PREP_PROMPT)

    response = client.post("/stages/router", json={"request_id": str(record.id)})

    assert response.status_code == 400
    assert "error" in response.json()


def test_bad_token(client, make_record, monkeypatch):
    """Test that an unknown token is unauthorized."""
    monkeypatch.setattr(settings, "API_TOKENS", ["good-token"])
    record = make_record(statuses.PREP_PROMPT)

    response = client.post("/stages/router", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_invalid_body(client):
    """Test that a malformed body is a 400."""
    response = client.post("/stages/router", json={"request_id": "not-a-uuid"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_wrong_method(client):
    """Test that stages only accept POST."""
    response = client.get("/stages/router", headers=AUTH)

    assert response.status_code == 405
    assert "error" in response.json()


def test_unknown_record(client):
    """Test that an unknown control record is a 404."""
    response = client.post("/stages/router", json={"request_id": str(uuid.uuid4())}, headers=AUTH)

    assert response.status_code == 404
    assert "Record not found" in response.json()["error"]


def test_unknown_stage(client, make_record):
    """Test that an unknown stage name is a 404."""
    record = make_record(statuses.PREP_PROMPT)

    response = client.post("/stages/prep_json", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 404


def test_unknown_assistant_is_500(client, invoker, make_record):
    """Test that merging for an unregistered assistant surfaces as a 500."""
    record = make_record(statuses.CHECK_LOOP_BATCH, name="WF_NotRegistered", iteration_json='{"isFinalChunk": true}')

    response = client.post("/stages/check_loop_batch", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Unrecognized assistant: WF_NotRegistered"}
    assert invoker.calls == []


def test_stale_write_is_409(client, make_record, monkeypatch):
    """Test that a lost compare-and-swap race is a 409."""

    class RacingStage(BaseStage):
        NAME = "racing"

        def execute(self, request_id, token=None):
            raise StaleControlRecordError(request_id, 1)

    monkeypatch.setitem(STAGES, RacingStage.NAME, RacingStage)
    record = make_record(statuses.PREP_PROMPT)

    response = client.post("/stages/racing", json={"request_id": str(record.id)}, headers=AUTH)

    assert response.status_code == 409


def test_create_run_fires_router(client, invoker):
    """Test control record creation."""
    response = client.post(
        "/runs",
        json={"wf_assistant_name": "WF_StoryArcCraftingAssistant", "status": statuses.PREP_PROMPT},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "Complete"
    assert body["message"] == "wf_record created"
    assert invoker.calls == [("router", body["request_id"], "user-token")]


def test_create_run_requires_status(client, invoker):
    """Test that a control record needs an assistant name and status."""
    response = client.post("/runs", json={"wf_assistant_name": "WF_StoryArcCraftingAssistant"}, headers=AUTH)

    assert response.status_code == 400
    assert invoker.calls == []


def test_get_run_snapshot(client, make_record):
    """Test reading a control record back."""
    record = make_record(statuses.COMPLETE, final_json='{"storyArcs": [], "isFinalChunk": true}')

    response = client.get(f"/runs/{record.id}", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == statuses.COMPLETE
    assert body["final_json"] == {"storyArcs": [], "isFinalChunk": True}


def test_get_unknown_run(client):
    """Test that an unknown run is a 404."""
    response = client.get(f"/runs/{uuid.uuid4()}", headers=AUTH)

    assert response.status_code == 404
