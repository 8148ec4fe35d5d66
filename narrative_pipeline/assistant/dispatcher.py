"""Phase dispatcher: turns a phase name and context into a provider call."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.config import settings
from narrative_pipeline.models.warehouse import AssistantPrompt, AssistantScriptMapping, HttpPhaseMapping
from narrative_pipeline.services.llm_client import LLMClient, RequestLogMeta, build_provider_headers
from narrative_pipeline.services.telemetry import Telemetry

logger = logging.getLogger(__name__)

CALL_LOGIC_KEY = "RunGPTAssistant"

INITIATE_CONVERSATION = "InitiateConversation"
POST_MESSAGE = "PostMessage"
START_RUN = "StartRun"
POLL_RUN_STATUS = "PollRunStatus"
RETRIEVE_RESPONSE = "RetrieveResponse"
REQUEST_NEXT_BATCH = "RequestNextBatch"
RESEND_LAST_RESPONSE = "ResendLastResponse"

PHASES = (
    INITIATE_CONVERSATION,
    POST_MESSAGE,
    START_RUN,
    POLL_RUN_STATUS,
    RETRIEVE_RESPONSE,
    REQUEST_NEXT_BATCH,
    RESEND_LAST_RESPONSE,
)

REQUIRED_IDS = {
    INITIATE_CONVERSATION: (),
    POST_MESSAGE: ("thread_id",),
    START_RUN: ("thread_id",),
    POLL_RUN_STATUS: ("thread_id", "run_id"),
    RETRIEVE_RESPONSE: ("thread_id",),
    REQUEST_NEXT_BATCH: ("thread_id",),
    RESEND_LAST_RESPONSE: ("thread_id",),
}

DEFAULT_RESEND_PROMPT = (
    "Your last response was not valid JSON. Resend your last response as a single valid "
    "JSON object only, with no commentary or markdown."
)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

# Failure reasons
MAPPING_NOT_FOUND = "MappingNotFound"
ASSISTANT_CONFIG_MISSING = "AssistantConfigMissing"
MISSING_IDENTIFIER = "MissingIdentifier"
UNKNOWN_PHASE = "UnknownPhase"
TRANSPORT_FAILURE = "TransportFailure"


@dataclass
class PhaseResult:
    """Result of one phase; ``context`` carries any ids the provider returned."""

    success: bool
    context: PhaseContext
    data: Any = None
    status_code: Optional[int] = None
    reason: Optional[str] = None


class MissingIdentifierError(ValueError):
    """A URL placeholder or prerequisite id is absent from the context."""


def render_url(template: str, context: PhaseContext) -> str:
    """Substitute ``{{thread_id}}``-style placeholders from the context."""

    def _replace(match):
        name = match.group(1)
        value = getattr(context, name, None)
        if not value:
            raise MissingIdentifierError(name)
        return str(value)

    return PLACEHOLDER.sub(_replace, template)


class PhaseDispatcher:
    """Resolves per-phase HTTP configuration and executes the call."""

    def __init__(self, db: Session, llm_client: LLMClient, telemetry: Optional[Telemetry] = None):
        self.db = db
        self.llm = llm_client
        self.telemetry = telemetry or Telemetry()

    def execute_phase(self, phase: str, context: PhaseContext) -> PhaseResult:
        """
        Execute one assistant phase.

        Args:
            phase: One of PHASES
            context: Current execution context

        Returns:
            PhaseResult; failures are reported, never raised
        """
        if phase not in REQUIRED_IDS:
            return self._fail(phase, context, UNKNOWN_PHASE, f"Unknown phase: {phase}")

        mapping = self._get_mapping(context.assistant_name, phase)
        if mapping is None:
            return self._fail(
                phase,
                context,
                MAPPING_NOT_FOUND,
                f"Failed to fetch mapping for: {context.assistant_name}",
            )

        missing = [name for name in REQUIRED_IDS[phase] if not getattr(context, name)]
        if missing:
            return self._fail(phase, context, MISSING_IDENTIFIER, f"Missing ids: {', '.join(missing)}", mapping)

        try:
            url = render_url(mapping.request_url, context)
        except MissingIdentifierError as e:
            return self._fail(phase, context, MISSING_IDENTIFIER, f"URL placeholder not set: {e}", mapping)

        body = self._build_body(phase, context, mapping)
        if body is None:
            return self._fail(
                phase,
                context,
                ASSISTANT_CONFIG_MISSING,
                f"Assistant configuration incomplete for: {context.assistant_name}",
                mapping,
            )

        headers = build_provider_headers(
            mapping.provider,
            settings.provider_api_key(mapping.provider),
            mapping.content_type,
        )
        meta = RequestLogMeta(
            request_key=context.assistant_name,
            run_type=phase,
            call_logic_key=mapping.call_logic_key,
            request_purpose=mapping.request_purpose,
            provider=mapping.provider,
            model=mapping.model,
            narrative_project_id=context.narrative_project_id,
            ef_log_id=context.ef_log_id,
            ids=context.ids(),
        )

        logger.info(f"[{context.request_id}] {phase}: {mapping.request_method} {url}")
        response = self.llm.send(mapping.request_method, url, headers, body, meta)
        if not response.success:
            return PhaseResult(
                success=False,
                context=context,
                reason=TRANSPORT_FAILURE,
                data={"error": response.error},
            )

        return PhaseResult(
            success=True,
            context=context.with_response_ids(response.data),
            data=response.data,
            status_code=response.status_code,
        )

    def _build_body(self, phase: str, context: PhaseContext, mapping: HttpPhaseMapping) -> Optional[Dict[str, Any]]:
        """Request body for a phase; None when required assistant config is missing."""
        if phase == POST_MESSAGE:
            content = f"{context.gpt_prompt or ''} {context.gpt_json or ''}".strip()
            return {"role": "user", "content": content}

        if phase == START_RUN:
            script = self._get_script_mapping(context.assistant_name)
            if script is None or not script.assistant_id:
                return None
            body = {"model": mapping.model, "assistant_id": script.assistant_id}
            if mapping.temperature is not None:
                body["temperature"] = mapping.temperature
            return body

        if phase == REQUEST_NEXT_BATCH:
            prompt = self._get_prompt(context.assistant_name)
            if prompt is None or not prompt.next_batch_prompt:
                return None
            return {"role": "user", "content": prompt.next_batch_prompt}

        if phase == RESEND_LAST_RESPONSE:
            prompt = self._get_prompt(context.assistant_name)
            content = (prompt.resend_prompt if prompt else None) or DEFAULT_RESEND_PROMPT
            return {"role": "user", "content": content}

        return {}

    def _get_mapping(self, assistant_name: str, phase: str) -> Optional[HttpPhaseMapping]:
        return (
            self.db.query(HttpPhaseMapping)
            .filter(
                HttpPhaseMapping.request_key == assistant_name,
                HttpPhaseMapping.call_logic_key == CALL_LOGIC_KEY,
                HttpPhaseMapping.run_type == phase,
            )
            .first()
        )

    def _get_script_mapping(self, assistant_name: str) -> Optional[AssistantScriptMapping]:
        return (
            self.db.query(AssistantScriptMapping)
            .filter(AssistantScriptMapping.wf_assistant_name == assistant_name)
            .first()
        )

    def _get_prompt(self, assistant_name: str) -> Optional[AssistantPrompt]:
        return (
            self.db.query(AssistantPrompt)
            .filter(AssistantPrompt.assistant_name == assistant_name)
            .first()
        )

    def _fail(self, phase, context, reason, message, mapping=None) -> PhaseResult:
        details = {
            "phase": phase,
            "reason": reason,
            "message": message,
            "assistant_name": context.assistant_name,
            "request_id": str(context.request_id),
            **{k: v for k, v in context.ids().items()},
        }
        if mapping is not None:
            details.update(
                url=mapping.request_url,
                provider=mapping.provider,
                model=mapping.model,
            )
        logger.error(f"{phase} failed: {message} | {details}")
        self.telemetry.log_activity(
            context.request_id,
            f"PhaseError:{phase}",
            details,
            assistant_name=context.assistant_name,
            ef_log_id=context.ef_log_id,
        )
        return PhaseResult(success=False, context=context, reason=reason, data=details)
