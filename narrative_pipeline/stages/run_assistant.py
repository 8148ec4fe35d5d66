"""Run GPT Assistant stage: new thread, initial message, run, poll, retrieve."""

import logging

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.assistant.dispatcher import INITIATE_CONVERSATION, POST_MESSAGE
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.stages.assistant_run import AssistantRunStage

logger = logging.getLogger(__name__)


class RunAssistantStage(AssistantRunStage):
    """Starts a fresh assistant conversation for the control record."""

    NAME = "run_assistant"
    ENTRY_STATUSES = (statuses.RUN_ASSISTANT, statuses.POTENTIAL_RESTART)

    def _run(self, record: ControlRecord, context: PhaseContext) -> str:
        if record.thread_id:
            # Replaying create-thread on an existing conversation is not guarded
            logger.warning(f"[{record.id}] thread {record.thread_id} already exists; starting a new one")

        # A new run begins: clear everything accumulated by the previous one.
        # A restart keeps its resume count so the worker can still give up on it.
        restart = {} if record.status == statuses.POTENTIAL_RESTART else {"resume_attempts": 0}
        self.store.update(
            record,
            **restart,
            iteration_json=None,
            concatenated_json=None,
            final_json=None,
            retry_count=0,
            thread_id=None,
            message_id=None,
            run_id=None,
        )
        context = context.model_copy(update={"thread_id": None, "message_id": None, "run_id": None})

        result = self._call(INITIATE_CONVERSATION, context, expect_id="thread_id")
        if not result.success:
            return self._phase_failed(record, INITIATE_CONVERSATION, result)
        context = result.context
        self.store.update(record, thread_id=context.thread_id, status=statuses.THREAD_CREATED)

        result = self._call(POST_MESSAGE, context, expect_id="message_id")
        if not result.success:
            return self._phase_failed(record, POST_MESSAGE, result)
        context = result.context
        self.store.update(record, message_id=context.message_id, status=statuses.MESSAGE_POSTED)

        return self._start_run(record, context)
