"""Base stage: one stateless invocation against one control record."""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.context import PhaseContext
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.services.control_store import ControlStore
from narrative_pipeline.services.llm_client import LLMClient
from narrative_pipeline.services.telemetry import Telemetry

logger = logging.getLogger(__name__)

ROUTER_STAGE = "router"


@dataclass
class StageOutcome:
    """What a stage did; ``trigger`` names the stage to fire next, if any."""

    outcome: str
    message: str
    status: Optional[str] = None
    trigger: Optional[str] = None


class BaseStage:
    """Base class for all stages.

    Subclasses set NAME and ENTRY_STATUSES and implement ``_run``. A record
    whose status is not an entry status is left untouched, which makes a
    duplicate trigger harmless.
    """

    NAME = ""
    ENTRY_STATUSES: Tuple[str, ...] = ()

    def __init__(
        self,
        db: Session,
        llm_client: Optional[LLMClient] = None,
        telemetry: Optional[Telemetry] = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        """Initialize base stage."""
        self.db = db
        self.telemetry = telemetry or Telemetry()
        self.llm = llm_client or LLMClient(telemetry=self.telemetry)
        self.store = ControlStore(db)
        self.sleep = sleep
        self.clock = clock

    def execute(self, request_id, token: Optional[str] = None) -> StageOutcome:
        """
        Run the stage for one control record.

        Args:
            request_id: Control record id
            token: Caller's bearer token, forwarded to the next stage

        Returns:
            StageOutcome

        Raises:
            ControlRecordNotFound: If the record does not exist
            StaleControlRecordError: If another invocation wrote the record first
        """
        record = self.store.get(request_id)
        context = PhaseContext.from_record(record, token=token, started_at=self.clock())
        logger.info(f"Stage {self.NAME} started for {request_id} (status: {record.status})")

        if self.ENTRY_STATUSES and record.status not in self.ENTRY_STATUSES:
            logger.warning(f"Stage {self.NAME} skipped for {request_id}: status is {record.status!r}")
            self._activity(context, f"{self.NAME}:Skipped", {"status": record.status})
            return StageOutcome(
                outcome="Skipped",
                message=f"{self.NAME} not applicable in status {record.status!r}",
                status=record.status,
            )

        status = self._run(record, context)

        self._activity(context, f"{self.NAME}:{status}", {"status": status})
        return StageOutcome(
            outcome="Complete",
            message=f"{self.NAME} finished with status {status!r}",
            status=status,
            trigger=ROUTER_STAGE if statuses.advances_automatically(status) else None,
        )

    def _run(self, record: ControlRecord, context: PhaseContext) -> str:
        """Stage logic; returns the status written to the record."""
        raise NotImplementedError

    def _activity(self, context: PhaseContext, event: str, details=None) -> None:
        self.telemetry.log_activity(
            context.request_id,
            event,
            details,
            assistant_name=context.assistant_name,
            ef_log_id=context.ef_log_id,
        )
