"""Run status polling loop."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, stop_any, wait_fixed

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.assistant.dispatcher import POLL_RUN_STATUS, PhaseDispatcher
from narrative_pipeline.config import settings
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.services.control_store import ControlStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = "MaxAttempts"
TIMED_OUT = "TimedOut"
UNKNOWN_ERROR = "UnknownError"


@dataclass
class PollResult:
    """Polling outcome. ``success`` means a terminal status was observed,
    not that the run itself succeeded."""

    success: bool
    context: PhaseContext
    status: Optional[str] = None
    reason: Optional[str] = None
    data: Any = None
    attempts: int = 0


class RunPoller:
    """Polls ``PollRunStatus`` until the provider run reaches a terminal status."""

    def __init__(
        self,
        dispatcher: PhaseDispatcher,
        store: ControlStore,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.dispatcher = dispatcher
        self.store = store
        self.interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
        self.max_attempts = settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.timeout = settings.POLL_TIMEOUT_SECONDS if timeout is None else timeout
        self.sleep = sleep
        self.clock = clock

    def poll_until_terminal(self, context: PhaseContext, record: ControlRecord) -> PollResult:
        """
        Poll until terminal status, attempt cap, or invocation time budget.

        The time budget is measured from ``context.started_at`` (the start of
        the enclosing invocation), not from the first poll.

        Args:
            context: Context with thread_id and run_id set
            record: Control record; receives deduplicated RunStatus writes

        Returns:
            PollResult
        """
        state = {"context": context, "data": None, "attempts": 0}

        def poll_once() -> Optional[str]:
            state["attempts"] += 1
            result = self.dispatcher.execute_phase(POLL_RUN_STATUS, state["context"])
            state["context"] = result.context
            state["data"] = result.data
            if not result.success:
                logger.error(f"[{context.request_id}] poll call failed: {result.reason}")
                return None

            run_status = result.data.get("status") if isinstance(result.data, dict) else None
            if not run_status:
                logger.error(f"[{context.request_id}] poll response carried no status")
                return None

            self._persist_status(record, run_status)
            logger.info(
                f"poll batch: {context.ef_log_id} || attempt: {state['attempts']} "
                f"|| status: {run_status} || elapsed: {context.elapsed_seconds(self.clock):.1f}s"
            )
            return run_status

        def budget_exhausted(retry_state) -> bool:
            return context.elapsed_seconds(self.clock) >= self.timeout

        retrying = Retrying(
            retry=retry_if_result(lambda s: s is not None and s not in statuses.TERMINAL_RUN_STATUSES),
            stop=stop_any(stop_after_attempt(self.max_attempts), budget_exhausted),
            wait=wait_fixed(self.interval),
            sleep=self.sleep,
        )

        try:
            run_status = retrying(poll_once)
        except RetryError:
            reason = MAX_ATTEMPTS if state["attempts"] >= self.max_attempts else TIMED_OUT
            logger.warning(f"[{context.request_id}] polling stopped: {reason} after {state['attempts']} attempts")
            return PollResult(
                success=False,
                context=state["context"],
                reason=reason,
                data=state["data"],
                attempts=state["attempts"],
            )

        if run_status is None:
            return PollResult(
                success=False,
                context=state["context"],
                reason=UNKNOWN_ERROR,
                data=state["data"],
                attempts=state["attempts"],
            )

        return PollResult(
            success=True,
            context=state["context"],
            status=run_status,
            data=state["data"],
            attempts=state["attempts"],
        )

    def _persist_status(self, record: ControlRecord, run_status: str) -> None:
        new_status = statuses.run_status(run_status)
        if record.status != new_status:
            self.store.set_status(record, new_status)
