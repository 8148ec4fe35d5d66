"""Control record store with compare-and-swap updates."""

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from narrative_pipeline.exceptions import ControlRecordNotFound, StaleControlRecordError
from narrative_pipeline.models.control import ControlRecord

logger = logging.getLogger(__name__)


class ControlStore:
    """Get/update access to ``wf_assistant_automation_control`` rows."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, request_id) -> ControlRecord:
        """Load a control record.

        Raises:
            ControlRecordNotFound: If no row has this id
        """
        record = self.db.get(ControlRecord, request_id)
        if record is None:
            logger.error(f"wf_assistant_automation_control: Failed to fetch record with id={request_id}")
            raise ControlRecordNotFound(request_id)
        return record

    def create(self, **fields) -> ControlRecord:
        record = ControlRecord(**fields)
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Created control record {record.id} (status: {record.status})")
        return record

    def update(self, record: ControlRecord, **fields) -> ControlRecord:
        """Write ``fields`` to the row iff its version still matches ``record``.

        Raises:
            StaleControlRecordError: If another invocation wrote the row first
        """
        expected = record.version or 0
        values = dict(fields)
        values["version"] = expected + 1
        values["updated_at"] = datetime.utcnow()

        result = self.db.execute(
            update(ControlRecord)
            .where(ControlRecord.id == record.id, ControlRecord.version == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.error(f"Stale write to control record {record.id}: expected version {expected}")
            raise StaleControlRecordError(record.id, expected)

        self.db.commit()
        self.db.refresh(record)
        if "status" in fields:
            logger.info(f"Control record {record.id} status -> {fields['status']}")
        return record

    def set_status(self, record: ControlRecord, status: str, **fields) -> ControlRecord:
        return self.update(record, status=status, **fields)
