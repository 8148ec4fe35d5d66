"""Router: decides which stage continues a control record."""

import logging

from narrative_pipeline.assistant import statuses
from narrative_pipeline.stages.base import BaseStage, StageOutcome

logger = logging.getLogger(__name__)


class RouterStage(BaseStage):
    """Maps the record's status to the stage that resumes it.

    The router never writes the record; it only names the stage to fire.
    """

    NAME = "router"

    def execute(self, request_id, token=None) -> StageOutcome:
        record = self.store.get(request_id)
        status = record.status
        logger.info(f"Running logic for status: {status}")

        if record.testing_router_block:
            self.telemetry.log_activity(
                record.id,
                "Router:No EF Called",
                {"status": "Testing = True"},
                assistant_name=record.wf_assistant_name,
            )
            return StageOutcome(outcome="Complete", message="Router blocked for testing", status=status)

        stage = statuses.route_for(status)
        if stage is None:
            logger.warning(f"Unrecognized status: {status} | request_id: {request_id}")
            return StageOutcome(outcome="Complete", message=f"No stage for status {status!r}", status=status)

        self.telemetry.log_activity(
            record.id,
            "Router:CalledEF",
            {"status": status, "stage": stage},
            assistant_name=record.wf_assistant_name,
        )
        return StageOutcome(outcome="Complete", message=f"Routing to {stage}", status=status, trigger=stage)
