"""Tests for the LLM provider adapter."""

import httpx

from narrative_pipeline.services.llm_client import POLL_PHASE, LLMClient, RequestLogMeta
from narrative_pipeline.services.telemetry import POLLING_LOG, PRIMARY_LOG, Telemetry

from conftest import RecordingTelemetry

URL = "https://api.test/v1/threads/thread_1/runs/run_1"


def _client(handler, telemetry=None):
    return LLMClient(telemetry=telemetry or RecordingTelemetry(), transport=httpx.MockTransport(handler))


def test_transport_error_is_reported_not_raised():
    """Test that a connection failure comes back as success=False."""
    telemetry = RecordingTelemetry()

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    response = _client(handler, telemetry).send("POST", URL, {}, {"a": 1}, RequestLogMeta(run_type="StartRun"))

    assert not response.success
    assert "connection refused" in response.error
    log_table, entry = telemetry.requests[0]
    assert log_table == PRIMARY_LOG
    assert entry["status_code"] == 500
    assert entry["run_type"] == "StartRun"


def test_non_json_body_is_a_failure():
    """Test that an unparseable body is a transport failure."""

    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    response = _client(handler).send("GET", URL, {})

    assert not response.success


def test_error_status_with_json_is_transport_success():
    """Test that non-2xx JSON responses are left to the caller."""

    def handler(request):
        return httpx.Response(404, json={"error": {"message": "No thread found"}})

    response = _client(handler).send("GET", URL, {})

    assert response.success
    assert response.status_code == 404
    assert response.data["error"]["message"] == "No thread found"


def test_soft_error_logged_with_500():
    """Test that a 200 carrying an error field is logged as a 500."""
    telemetry = RecordingTelemetry()

    def handler(request):
        return httpx.Response(200, json={"error": "rate limited"})

    response = _client(handler, telemetry).send("POST", URL, {}, {"x": 1})

    assert response.success
    assert response.status_code == 200
    assert telemetry.requests[0][1]["status_code"] == 500
    assert telemetry.requests[0][1]["error"] == "rate limited"


def test_instructions_are_stripped():
    """Test that echoed assistant instructions are dropped from the response."""

    def handler(request):
        return httpx.Response(200, json={"id": "run_1", "instructions": "long system prompt", "status": "queued"})

    response = _client(handler).send("POST", URL, {}, {})

    assert response.data == {"id": "run_1", "status": "queued"}


def test_active_polls_use_polling_log():
    """Test that still-active polls go to the high-volume table."""
    telemetry = RecordingTelemetry()
    statuses = iter(["in_progress", "completed"])

    def handler(request):
        return httpx.Response(200, json={"id": "run_1", "status": next(statuses)})

    client = _client(handler, telemetry)
    meta = RequestLogMeta(run_type=POLL_PHASE, ids={"thread_id": "thread_1", "run_id": "run_1"})
    client.send("GET", URL, {}, None, meta)
    client.send("GET", URL, {}, None, meta)

    assert [table for table, _ in telemetry.requests] == [POLLING_LOG, PRIMARY_LOG]
    assert telemetry.requests[0][1]["thread_id"] == "thread_1"


def test_get_sends_no_body():
    """Test that GET requests ignore the body."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    _client(handler).send("GET", URL, {}, {"ignored": True})

    assert seen[0].content == b""


def test_logging_failure_does_not_fail_call():
    """Test that a broken telemetry port never fails the provider call."""

    class BrokenTelemetry(Telemetry):
        def log_request(self, log_table, entry):
            raise RuntimeError("log store down")

    def handler(request):
        return httpx.Response(200, json={"id": "thread_1", "object": "thread"})

    response = _client(handler, BrokenTelemetry()).send("POST", URL, {}, {})

    assert response.success
    assert response.data["id"] == "thread_1"
