"""Tests for the phase dispatcher."""

import json
import uuid

import pytest

from narrative_pipeline.assistant import dispatcher as phases
from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.assistant.dispatcher import (
    ASSISTANT_CONFIG_MISSING,
    DEFAULT_RESEND_PROMPT,
    MAPPING_NOT_FOUND,
    MISSING_IDENTIFIER,
    UNKNOWN_PHASE,
    MissingIdentifierError,
    PhaseDispatcher,
    render_url,
)
from narrative_pipeline.services.llm_client import build_provider_headers

from conftest import ASSISTANT, seed_assistant


def _context(**fields):
    values = {"request_id": uuid.uuid4(), "assistant_name": ASSISTANT}
    values.update(fields)
    return PhaseContext(**values)


def test_render_url_substitutes_ids():
    """Test placeholder substitution from the context."""
    context = _context(thread_id="thread_9", run_id="run_4")

    url = render_url("https://api.test/v1/threads/{{thread_id}}/runs/{{ run_id }}", context)

    assert url == "https://api.test/v1/threads/thread_9/runs/run_4"


def test_render_url_missing_id():
    """Test that an unresolved placeholder is an error."""
    with pytest.raises(MissingIdentifierError):
        render_url("https://api.test/v1/threads/{{thread_id}}", _context())


def test_initiate_conversation_returns_new_context(seeded, llm_client, telemetry, provider):
    """Test that the returned context carries the new thread id and the input is untouched."""
    context = _context()

    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.INITIATE_CONVERSATION, context)

    assert result.success
    assert result.context.thread_id == "thread_1"
    assert context.thread_id is None
    assert provider.requests[0].url == "https://api.test/v1/threads"


def test_post_message_body(seeded, llm_client, telemetry, provider):
    """Test that the message content joins prompt and payload."""
    context = _context(thread_id="thread_1", gpt_prompt="Do the thing.", gpt_json='{"chapters": [1]}')

    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.POST_MESSAGE, context)

    assert result.success
    assert result.context.message_id == "msg_1"
    assert provider.bodies() == [{"role": "user", "content": 'Do the thing. {"chapters": [1]}'}]
    assert provider.requests[0].url.path == "/v1/threads/thread_1/messages"


def test_post_message_requires_thread(seeded, llm_client, telemetry, provider):
    """Test that a missing prerequisite id fails without any HTTP call."""
    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.POST_MESSAGE, _context())

    assert not result.success
    assert result.reason == MISSING_IDENTIFIER
    assert provider.requests == []
    assert "PhaseError:PostMessage" in telemetry.events()


def test_poll_requires_run_id(seeded, llm_client, telemetry, provider):
    """Test that polling needs both thread and run ids."""
    context = _context(thread_id="thread_1")

    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.POLL_RUN_STATUS, context)

    assert result.reason == MISSING_IDENTIFIER
    assert provider.requests == []


def test_missing_mapping(test_db, llm_client, telemetry, provider):
    """Test that a missing phase mapping is fatal and logged."""
    result = PhaseDispatcher(test_db, llm_client, telemetry).execute_phase(phases.INITIATE_CONVERSATION, _context())

    assert not result.success
    assert result.reason == MAPPING_NOT_FOUND
    assert provider.requests == []
    error = telemetry.activities[0]
    assert error["event"] == "PhaseError:InitiateConversation"
    assert error["details"]["assistant_name"] == ASSISTANT


def test_unknown_phase(seeded, llm_client, telemetry):
    """Test that an unknown phase name is rejected."""
    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase("DeleteThread", _context())

    assert result.reason == UNKNOWN_PHASE


def test_start_run_requires_assistant_id(test_db, llm_client, telemetry, provider):
    """Test that StartRun without an assistant id is fatal."""
    seed_assistant(test_db, assistant_id=None)

    result = PhaseDispatcher(test_db, llm_client, telemetry).execute_phase(
        phases.START_RUN, _context(thread_id="thread_1")
    )

    assert result.reason == ASSISTANT_CONFIG_MISSING
    assert provider.requests == []


def test_start_run_body_and_headers(test_db, llm_client, telemetry, provider, monkeypatch):
    """Test StartRun body fields and the threads-provider headers."""
    from narrative_pipeline.config import settings

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    seed_assistant(test_db, temperature=0.3)

    result = PhaseDispatcher(test_db, llm_client, telemetry).execute_phase(
        phases.START_RUN, _context(thread_id="thread_1")
    )

    assert result.success
    assert result.context.run_id == "run_1"
    request = provider.requests[0]
    assert json.loads(request.content) == {"model": "gpt-4o", "assistant_id": "asst_123", "temperature": 0.3}
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["OpenAI-Beta"] == "assistants=v2"


def test_start_run_omits_unset_temperature(seeded, llm_client, telemetry, provider):
    """Test that temperature is only sent when configured."""
    PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.START_RUN, _context(thread_id="thread_1"))

    assert "temperature" not in json.loads(provider.requests[0].content)


def test_request_next_batch_requires_prompt(test_db, llm_client, telemetry, provider):
    """Test that RequestNextBatch needs the assistant's next-batch prompt."""
    seed_assistant(test_db, next_batch_prompt=None)

    result = PhaseDispatcher(test_db, llm_client, telemetry).execute_phase(
        phases.REQUEST_NEXT_BATCH, _context(thread_id="thread_1")
    )

    assert result.reason == ASSISTANT_CONFIG_MISSING


def test_resend_falls_back_to_default_prompt(seeded, llm_client, telemetry, provider):
    """Test that the resend phase has a built-in instruction."""
    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(
        phases.RESEND_LAST_RESPONSE, _context(thread_id="thread_1")
    )

    assert result.success
    assert provider.bodies() == [{"role": "user", "content": DEFAULT_RESEND_PROMPT}]


def test_poll_uses_get_without_body(seeded, llm_client, telemetry, provider):
    """Test that GET phases send no body."""
    context = _context(thread_id="thread_1", run_id="run_1")

    result = PhaseDispatcher(seeded, llm_client, telemetry).execute_phase(phases.POLL_RUN_STATUS, context)

    assert result.data["status"] == "completed"
    assert provider.requests[0].method == "GET"
    assert provider.requests[0].content == b""


def test_provider_headers():
    """Test header shapes for each provider family."""
    google = build_provider_headers("GOOGLEAI", "g-key")
    assert google == {"Content-Type": "application/json", "x-goog-api-key": "g-key"}

    router = build_provider_headers("OPENROUTER", "or-key", "application/json")
    assert router["Authorization"] == "Bearer or-key"
    assert "HTTP-Referer" in router
    assert "X-Title" in router

    other = build_provider_headers("ANTHROPIC", "a-key", "text/plain")
    assert other == {"Content-Type": "text/plain", "Authorization": "Bearer a-key"}
