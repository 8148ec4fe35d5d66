"""Read-only reference configuration authored outside the pipeline."""

import uuid

from sqlalchemy import Column, Float, Index, Text, Uuid

from narrative_pipeline.database import Base
from narrative_pipeline.models.types import JSONType


class HttpPhaseMapping(Base):
    """HTTP call template for one assistant phase."""

    __tablename__ = "http_request_mapping_warehouse"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_key = Column(Text, nullable=False)  # assistant name
    call_logic_key = Column(Text, nullable=False)  # 'RunGPTAssistant'
    run_type = Column(Text, nullable=False)  # phase name
    request_purpose = Column(Text)
    provider = Column(Text)
    request_method = Column(Text, nullable=False, default="POST")
    request_url = Column(Text, nullable=False)  # may contain {{thread_id}} / {{run_id}}
    content_type = Column(Text)
    model = Column(Text)
    temperature = Column(Float)

    __table_args__ = (
        Index("idx_http_mapping_lookup", "request_key", "call_logic_key", "run_type", unique=True),
    )


class AssistantScriptMapping(Base):
    """Assistant identity at the provider and how its output is parsed."""

    __tablename__ = "wf_script_mapping_warehouse"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wf_assistant_name = Column(Text, nullable=False, unique=True)
    assistant_id = Column(Text)
    script_mapping_result_parsing = Column(JSONType)


class AssistantPrompt(Base):
    """Prompt templates and batching style for an assistant."""

    __tablename__ = "wf_assistant_prompt_warehouse"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assistant_name = Column(Text, nullable=False, unique=True)
    primary_prompt = Column(Text)
    batch_style = Column(Text)  # Null means single-shot output
    next_batch_prompt = Column(Text)
    resend_prompt = Column(Text)
    no_modules_prompt = Column(Text)
    module_plugins = Column(JSONType)  # {module_name: prompt snippet}
