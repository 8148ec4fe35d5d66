"""Shared conversation plumbing for stages that talk to the assistant."""

import logging
from typing import Any, Optional

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.assistant.dispatcher import (
    ASSISTANT_CONFIG_MISSING,
    MAPPING_NOT_FOUND,
    MISSING_IDENTIFIER,
    RETRIEVE_RESPONSE,
    START_RUN,
    UNKNOWN_PHASE,
    PhaseDispatcher,
    PhaseResult,
)
from narrative_pipeline.assistant.polling import MAX_ATTEMPTS, TIMED_OUT, RunPoller
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.stages.base import BaseStage

logger = logging.getLogger(__name__)

CONFIG_FAILURES = (MAPPING_NOT_FOUND, ASSISTANT_CONFIG_MISSING, MISSING_IDENTIFIER, UNKNOWN_PHASE)


def extract_assistant_text(data: Any) -> Optional[str]:
    """Text of the newest assistant message in a message-list response."""
    if not isinstance(data, dict):
        return None
    for message in data.get("data") or []:
        if not isinstance(message, dict) or message.get("role") != "assistant":
            continue
        content = message.get("content") or []
        if content and isinstance(content[0], dict):
            return (content[0].get("text") or {}).get("value") or None
        return None
    return None


def halt_status_for_run(run_status: str) -> str:
    """``failed`` -> ``Halt:RunFailed``, ``requires_action`` -> ``Halt:RunRequiresAction``."""
    label = "".join(part.capitalize() for part in run_status.split("_"))
    return statuses.halt(f"Run{label}")


class AssistantRunStage(BaseStage):
    """Base for stages that drive provider phases."""

    def __init__(self, db, llm_client=None, telemetry=None, **kwargs):
        super().__init__(db, llm_client, telemetry, **kwargs)
        self.dispatcher = PhaseDispatcher(db, self.llm, self.telemetry)

    def _call(self, phase: str, context: PhaseContext, expect_id: Optional[str] = None) -> PhaseResult:
        """Execute a phase; a missing expected id or provider error counts as failure."""
        result = self.dispatcher.execute_phase(phase, context)
        if not result.success:
            return result

        data = result.data if isinstance(result.data, dict) else {}
        if data.get("error") or (result.status_code and result.status_code >= 400):
            result.success = False
            result.reason = "ProviderError"
        elif expect_id and not getattr(result.context, expect_id):
            result.success = False
            result.reason = "ProviderError"
        return result

    def _phase_failed(self, record: ControlRecord, phase: str, result: PhaseResult) -> str:
        if result.reason in CONFIG_FAILURES:
            status = statuses.halt(result.reason)
        else:
            status = statuses.POTENTIAL_RESTART
        logger.error(f"[{record.id}] {phase} failed ({result.reason}); status -> {status}")
        self.telemetry.log_activity(
            record.id,
            f"{phase}:Failed",
            {"reason": result.reason, "data": result.data},
            assistant_name=record.wf_assistant_name,
            ef_log_id=result.context.ef_log_id,
        )
        self.store.set_status(record, status)
        return status

    def _start_run(self, record: ControlRecord, context: PhaseContext) -> str:
        """StartRun, then poll and retrieve."""
        result = self._call(START_RUN, context, expect_id="run_id")
        if not result.success:
            return self._phase_failed(record, START_RUN, result)

        context = result.context
        self.store.update(record, run_id=context.run_id, status=statuses.RUN_STARTED)
        return self._poll_and_retrieve(record, context)

    def _poll_and_retrieve(self, record: ControlRecord, context: PhaseContext) -> str:
        poller = RunPoller(self.dispatcher, self.store, sleep=self.sleep, clock=self.clock)
        poll = poller.poll_until_terminal(context, record)

        if not poll.success:
            status = statuses.POLLING_NEEDED if poll.reason in (MAX_ATTEMPTS, TIMED_OUT) else statuses.POTENTIAL_RESTART
            self.telemetry.log_activity(
                record.id,
                f"PollRunStatus:{poll.reason}",
                {"attempts": poll.attempts, "elapsed_s": round(context.elapsed_seconds(self.clock), 3)},
                assistant_name=record.wf_assistant_name,
                ef_log_id=context.ef_log_id,
            )
            self.store.set_status(record, status)
            return status

        if poll.status != "completed":
            status = halt_status_for_run(poll.status)
            self.store.set_status(record, status)
            return status

        return self._retrieve(record, poll.context)

    def _retrieve(self, record: ControlRecord, context: PhaseContext) -> str:
        result = self._call(RETRIEVE_RESPONSE, context)
        text = extract_assistant_text(result.data) if result.success else None
        if not text:
            logger.error(f"[{record.id}] no assistant message in retrieved response")
            self.store.set_status(record, statuses.RETRIEVE_NEEDED)
            return statuses.RETRIEVE_NEEDED

        self.store.update(record, iteration_json=text, resume_attempts=0, status=statuses.CHECK_LOOP_BATCH)
        logger.info(f"[{record.id}] saved assistant text ({len(text)} chars)")
        return statuses.CHECK_LOOP_BATCH
