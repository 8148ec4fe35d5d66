"""Pytest configuration and fixtures."""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import narrative_pipeline.models  # noqa: F401
from narrative_pipeline.assistant import dispatcher as phases
from narrative_pipeline.database import Base
from narrative_pipeline.models.warehouse import AssistantPrompt, AssistantScriptMapping, HttpPhaseMapping
from narrative_pipeline.services.control_store import ControlStore
from narrative_pipeline.services.llm_client import LLMClient
from narrative_pipeline.services.telemetry import Telemetry

ASSISTANT = "WF_ChapterKeyMomentsExtractionAssistant"
API = "https://api.test/v1"

PHASE_ROUTES = {
    phases.INITIATE_CONVERSATION: ("POST", f"{API}/threads"),
    phases.POST_MESSAGE: ("POST", f"{API}/threads/{{{{thread_id}}}}/messages"),
    phases.START_RUN: ("POST", f"{API}/threads/{{{{thread_id}}}}/runs"),
    phases.POLL_RUN_STATUS: ("GET", f"{API}/threads/{{{{thread_id}}}}/runs/{{{{run_id}}}}"),
    phases.RETRIEVE_RESPONSE: ("GET", f"{API}/threads/{{{{thread_id}}}}/messages"),
    phases.REQUEST_NEXT_BATCH: ("POST", f"{API}/threads/{{{{thread_id}}}}/messages"),
    phases.RESEND_LAST_RESPONSE: ("POST", f"{API}/threads/{{{{thread_id}}}}/messages"),
}


class RecordingTelemetry(Telemetry):
    """Keeps telemetry in memory so tests can assert on it."""

    def __init__(self):
        self.activities = []
        self.requests = []

    def log_activity(self, record_id, event, details=None, assistant_name=None, ef_log_id=None):
        self.activities.append({"record_id": record_id, "event": event, "details": details})

    def log_request(self, log_table, entry):
        self.requests.append((log_table, entry))

    def events(self):
        return [a["event"] for a in self.activities]


class RecordingInvoker:
    """Stage invoker that records calls instead of POSTing."""

    def __init__(self):
        self.calls = []

    def invoke(self, stage, request_id, token):
        self.calls.append((stage, str(request_id), token))
        return {"success": True}


class FakeProvider:
    """Assistants-style provider answering from a script.

    ``run_statuses`` are returned by successive polls (the last one repeats);
    ``replies`` are returned by successive message retrievals.
    """

    def __init__(self, run_statuses=("completed",), replies=('{"isFinalChunk": true}',)):
        self.run_statuses = list(run_statuses)
        self.replies = list(replies)
        self.requests = []
        self.fail_paths = {}
        self._messages = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        for (fail_method, suffix), (status_code, body) in self.fail_paths.items():
            if method == fail_method and path.endswith(suffix):
                return httpx.Response(status_code, json=body)

        if method == "POST" and path == "/v1/threads":
            return httpx.Response(200, json={"id": "thread_1", "object": "thread"})
        if method == "POST" and path.endswith("/messages"):
            self._messages += 1
            return httpx.Response(200, json={"id": f"msg_{self._messages}", "object": "thread.message"})
        if method == "POST" and path.endswith("/runs"):
            return httpx.Response(200, json={"id": "run_1", "object": "thread.run", "status": "queued"})
        if method == "GET" and "/runs/" in path:
            status = self.run_statuses.pop(0) if len(self.run_statuses) > 1 else self.run_statuses[0]
            body = {"id": "run_1", "object": "thread.run"}
            if status is not None:
                body["status"] = status
            return httpx.Response(200, json=body)
        if method == "GET" and path.endswith("/messages"):
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
            data = []
            if reply is not None:
                data.append({"role": "assistant", "content": [{"type": "text", "text": {"value": reply}}]})
            return httpx.Response(200, json={"object": "list", "data": data})
        return httpx.Response(404, json={"error": {"message": f"no route for {method} {path}"}})

    def bodies(self, method="POST", suffix="/messages"):
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == method and r.url.path.endswith(suffix)
        ]


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across sessions and threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()

    yield db

    db.close()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def llm_client(telemetry, provider):
    return LLMClient(telemetry=telemetry, transport=httpx.MockTransport(provider))


@pytest.fixture
def store(test_db):
    return ControlStore(test_db)


def seed_assistant(
    db,
    name=ASSISTANT,
    provider="OPENAI",
    assistant_id="asst_123",
    batch_style="chapterBatch",
    temperature=None,
    skip_phases=(),
    **prompt_fields,
):
    """Insert phase mappings, script mapping and prompt record for an assistant."""
    for phase, (method, url) in PHASE_ROUTES.items():
        if phase in skip_phases:
            continue
        db.add(
            HttpPhaseMapping(
                request_key=name,
                call_logic_key=phases.CALL_LOGIC_KEY,
                run_type=phase,
                request_method=method,
                request_url=url,
                content_type="application/json",
                provider=provider,
                model="gpt-4o",
                temperature=temperature,
            )
        )
    db.add(AssistantScriptMapping(wf_assistant_name=name, assistant_id=assistant_id))
    prompt_defaults = {
        "primary_prompt": "Extract key moments.",
        "next_batch_prompt": "Continue with the next batch.",
    }
    prompt_defaults.update(prompt_fields)
    db.add(AssistantPrompt(assistant_name=name, batch_style=batch_style, **prompt_defaults))
    db.commit()


@pytest.fixture
def seeded(test_db):
    seed_assistant(test_db)
    return test_db


@pytest.fixture
def make_record(store):
    def _make(status, name=ASSISTANT, **fields):
        fields.setdefault("gpt_prompt", "Extract key moments.")
        fields.setdefault("gpt_json", '{"chapters": []}')
        return store.create(wf_assistant_name=name, status=status, **fields)

    return _make
