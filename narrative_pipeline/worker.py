"""Background worker that resumes stalled control records."""

import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from narrative_pipeline.assistant import statuses
from narrative_pipeline.config import settings
from narrative_pipeline.database import SessionLocal
from narrative_pipeline.exceptions import StaleControlRecordError
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.services.control_store import ControlStore
from narrative_pipeline.services.stage_invoker import StageInvoker
from narrative_pipeline.stages.base import ROUTER_STAGE

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

RESUME_EXHAUSTED = statuses.halt("ResumeAttemptsExhausted")


class ResumeWorker:
    """Sweeps records parked in a recoverable status and re-fires the router."""

    def __init__(self, invoker: Optional[StageInvoker] = None, session_factory=SessionLocal, clock=datetime.utcnow):
        """Initialize worker."""
        self.invoker = invoker or StageInvoker()
        self.session_factory = session_factory
        self.clock = clock
        self.poll_interval = settings.WORKER_POLL_INTERVAL
        self.grace = timedelta(seconds=settings.RESUME_GRACE_SECONDS)
        self.max_attempts = settings.MAX_RESUME_ATTEMPTS

    def run(self, stop_event=None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info("Resume worker started")

        while True:
            if stop_event and stop_event.is_set():
                logger.info("Worker stop signal received")
                break

            try:
                db = self.session_factory()
                try:
                    resumed = self.sweep(db)
                finally:
                    db.close()
                if not resumed:
                    time.sleep(self.poll_interval)

            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                time.sleep(self.poll_interval)

    def get_stalled_records(self, db: Session) -> List[ControlRecord]:
        """Records in a recoverable status untouched for the grace period."""
        cutoff = self.clock() - self.grace
        return (
            db.query(ControlRecord)
            .filter(
                ControlRecord.status.in_(statuses.RECOVERABLE_STATUSES),
                ControlRecord.updated_at <= cutoff,
            )
            .order_by(ControlRecord.updated_at)
            .all()
        )

    def sweep(self, db: Session) -> int:
        """Resume every stalled record once; returns how many were re-fired."""
        store = ControlStore(db)
        resumed = 0
        for record in self.get_stalled_records(db):
            try:
                if self.resume(store, record):
                    resumed += 1
            except StaleControlRecordError:
                logger.info(f"Record {record.id} changed during sweep, skipping")
        return resumed

    def resume(self, store: ControlStore, record: ControlRecord) -> bool:
        attempts = (record.resume_attempts or 0) + 1
        if attempts > self.max_attempts:
            store.set_status(record, RESUME_EXHAUSTED)
            logger.error(f"Record {record.id} halted after {self.max_attempts} resume attempts")
            return False

        # Claiming the record bumps its version and updated_at, so a second
        # worker sweeping at the same time gets a stale write instead.
        store.update(record, resume_attempts=attempts)
        logger.warning(f"Resuming record {record.id} from {record.status!r} ({attempts}/{self.max_attempts})")
        self.invoker.invoke(ROUTER_STAGE, record.id, settings.SERVICE_TOKEN)
        return True


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = ResumeWorker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    worker = ResumeWorker()
    worker.run()


if __name__ == "__main__":
    main()
