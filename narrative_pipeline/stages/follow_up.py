"""Follow-up messages on an existing thread: next batch and resend."""

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.dispatcher import REQUEST_NEXT_BATCH, RESEND_LAST_RESPONSE
from narrative_pipeline.stages.assistant_run import AssistantRunStage


class FollowUpMessageStage(AssistantRunStage):
    """Posts one follow-up message, then runs, polls and retrieves."""

    PHASE = ""

    def _run(self, record, context):
        result = self._call(self.PHASE, context, expect_id="message_id")
        if not result.success:
            return self._phase_failed(record, self.PHASE, result)

        context = result.context
        self.store.update(record, message_id=context.message_id, status=statuses.MESSAGE_POSTED)
        return self._start_run(record, context)


class RequestNextBatchStage(FollowUpMessageStage):
    """Ask the assistant for the next chunk of a batched answer."""

    NAME = "request_next_batch"
    ENTRY_STATUSES = (statuses.AWAITING_NEXT_BATCH, statuses.REQUEST_NEXT_BATCH)
    PHASE = REQUEST_NEXT_BATCH


class ResendLastResponseStage(FollowUpMessageStage):
    """Ask the assistant to resend a reply that was not valid JSON."""

    NAME = "resend_last_response"
    ENTRY_STATUSES = (statuses.RESEND_LAST_RESPONSE,)
    PHASE = RESEND_LAST_RESPONSE
