"""Telemetry tables for provider calls and workflow events."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, Text, Uuid

from narrative_pipeline.database import Base
from narrative_pipeline.models.types import JSONType


class ActivityLogEntry(Base):
    """Workflow status transition or error event."""

    __tablename__ = "wf_assistant_activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wf_control_id = Column(Uuid(as_uuid=True))
    ef_log_id = Column(Text)  # groups all events of one invocation
    event = Column(Text, nullable=False)
    details = Column(Text)
    assistant_name = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class _RequestLogColumns:
    """Columns shared by both provider request log tables."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    ef_log_id = Column(Text)
    narrative_project_id = Column(Uuid(as_uuid=True))
    request_key = Column(Text)
    call_logic_key = Column(Text)
    request_purpose = Column(Text)
    provider = Column(Text)
    run_type = Column(Text)
    model = Column(Text)
    url = Column(Text)
    method = Column(Text)
    request_payload = Column(JSONType)
    response_raw = Column(JSONType)
    error = Column(JSONType)
    status_code = Column(Integer)
    duration_ms = Column(Integer)
    thread_id = Column(Text)
    run_id = Column(Text)
    message_id = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class LLMRequestLog(_RequestLogColumns, Base):
    """Primary provider request log."""

    __tablename__ = "llm_request_tracking"


class LLMPollingRequestLog(_RequestLogColumns, Base):
    """High-volume log for polls that observed a still-active run."""

    __tablename__ = "llm_polling_request_tracking"
