"""Stages that resume an interrupted run."""

from narrative_pipeline.assistant import statuses
from narrative_pipeline.stages.assistant_run import AssistantRunStage


class PollRunStatusStage(AssistantRunStage):
    """Continue polling a run whose previous poll budget ran out."""

    NAME = "poll_run_status"
    ENTRY_STATUSES = (statuses.POLLING_NEEDED,)

    def _run(self, record, context):
        return self._poll_and_retrieve(record, context)


class RetrieveResponseStage(AssistantRunStage):
    """Retry fetching the assistant reply of a completed run."""

    NAME = "retrieve_response"
    ENTRY_STATUSES = (statuses.RETRIEVE_NEEDED,)

    def _run(self, record, context):
        return self._retrieve(record, context)
