"""Narrative project model."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Text, Uuid

from narrative_pipeline.database import Base
from narrative_pipeline.models.types import JSONType


class NarrativeProject(Base):
    """A user's narrative project; scopes domain data and prompt modules."""

    __tablename__ = "narrative_projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    module_triggers = Column(JSONType)  # {module_name: bool}
    created_at = Column(DateTime, default=datetime.utcnow)
