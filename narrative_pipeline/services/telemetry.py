"""Best-effort telemetry for provider calls and workflow events.

Nothing here may abort the pipeline: every write is wrapped and failures are
downgraded to a log warning.
"""

import json
import logging
from typing import Any, Dict, Optional

from narrative_pipeline.models.logs import ActivityLogEntry, LLMPollingRequestLog, LLMRequestLog

logger = logging.getLogger(__name__)

PRIMARY_LOG = "llm_request_tracking"
POLLING_LOG = "llm_polling_request_tracking"

_REQUEST_LOG_MODELS = {
    PRIMARY_LOG: LLMRequestLog,
    POLLING_LOG: LLMPollingRequestLog,
}


class Telemetry:
    """Telemetry port; the base implementation records nothing."""

    def log_activity(
        self,
        record_id,
        event: str,
        details: Any = None,
        assistant_name: Optional[str] = None,
        ef_log_id: Optional[str] = None,
    ) -> None:
        pass

    def log_request(self, log_table: str, entry: Dict[str, Any]) -> None:
        pass


NullTelemetry = Telemetry


class DatabaseTelemetry(Telemetry):
    """Writes telemetry rows through a private session per write."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def log_activity(self, record_id, event, details=None, assistant_name=None, ef_log_id=None):
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        self._write(
            ActivityLogEntry(
                wf_control_id=record_id,
                ef_log_id=ef_log_id,
                event=event,
                details=details,
                assistant_name=assistant_name,
            )
        )

    def log_request(self, log_table, entry):
        model = _REQUEST_LOG_MODELS.get(log_table)
        if model is None:
            logger.warning(f"Unknown request log table: {log_table}")
            return
        try:
            row = model(**entry)
        except Exception as e:
            logger.warning(f"LLM Logging Failed: {e}")
            return
        self._write(row)

    def _write(self, row) -> None:
        db = None
        try:
            db = self.session_factory()
            db.add(row)
            db.commit()
        except Exception as e:
            logger.warning(f"{row.__tablename__} insert failed: {e}")
            if db is not None:
                try:
                    db.rollback()
                except Exception:
                    logger.warning("Telemetry rollback failed", exc_info=True)
        finally:
            if db is not None:
                db.close()
