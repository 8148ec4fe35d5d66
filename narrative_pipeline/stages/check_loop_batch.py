"""Check Loop Batch stage."""

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.batching import BatchProcessor
from narrative_pipeline.stages.base import BaseStage


class CheckLoopBatchStage(BaseStage):
    """Validate the latest chunk, accumulate it and merge on the final one."""

    NAME = "check_loop_batch"
    ENTRY_STATUSES = (statuses.CHECK_LOOP_BATCH,)

    def _run(self, record, context):
        processor = BatchProcessor(self.db, self.store, self.telemetry)
        return processor.process(record, ef_log_id=context.ef_log_id)
