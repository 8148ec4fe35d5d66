"""Control record Pydantic schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ControlCreate(BaseModel):
    """Schema for creating a control record."""

    wf_assistant_name: str
    status: str
    narrative_project_id: Optional[UUID] = None
    gpt_prompt: Optional[str] = None
    gpt_json: Optional[str] = None
    testing_router_block: bool = False


class ControlCreateResponse(BaseModel):
    outcome: str
    message: str
    request_id: UUID


class ControlSnapshot(BaseModel):
    """Current state of a control record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: Optional[str]
    wf_assistant_name: str
    narrative_project_id: Optional[UUID] = None
    retry_count: Optional[int] = None
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    message_id: Optional[str] = None
    version: int
    final_json: Optional[Any] = None
    updated_at: Optional[datetime] = None
