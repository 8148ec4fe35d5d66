"""Stage invocation Pydantic schemas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class StageRequest(BaseModel):
    """Body every stage is invoked with."""

    request_id: UUID


class StageResponse(BaseModel):
    """Envelope returned once a stage invocation completes."""

    outcome: str
    message: str
    elapsedTime: str  # HH:MM:SS.mmm
    status: Optional[str] = None
