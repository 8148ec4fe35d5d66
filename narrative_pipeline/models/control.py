"""Assistant automation control model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid

from narrative_pipeline.database import Base


class ControlRecord(Base):
    """One row per in-flight assistant run; all workflow state lives here."""

    __tablename__ = "wf_assistant_automation_control"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    status = Column(Text)
    wf_assistant_name = Column(Text, nullable=False)
    narrative_project_id = Column(Uuid(as_uuid=True), ForeignKey("narrative_projects.id", ondelete="SET NULL"))

    # Inputs assembled by the prep stages
    gpt_prompt = Column(Text)
    gpt_json = Column(Text)

    # Batch accumulation
    iteration_json = Column(Text)
    concatenated_json = Column(Text)
    final_json = Column(Text)
    retry_count = Column(Integer, default=0)

    # Provider-assigned identifiers
    thread_id = Column(Text)
    run_id = Column(Text)
    message_id = Column(Text)

    # Bumped on every write; updates are conditioned on it
    version = Column(Integer, nullable=False, default=0)

    testing_router_block = Column(Boolean, nullable=False, default=False)
    resume_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_wf_control_status", "status"),
    )
