"""Immutable execution context threaded through phase calls."""

import time
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ID_FIELDS = ("thread_id", "message_id", "run_id")

# Provider object type tag -> context field it populates
OBJECT_ID_FIELDS = {
    "thread": "thread_id",
    "thread.message": "message_id",
    "thread.run": "run_id",
}


class PhaseContext(BaseModel):
    """Everything one phase call needs, copied rather than mutated."""

    model_config = ConfigDict(frozen=True)

    request_id: uuid.UUID
    assistant_name: str
    narrative_project_id: Optional[uuid.UUID] = None
    gpt_prompt: Optional[str] = None
    gpt_json: Optional[str] = None
    thread_id: Optional[str] = None
    message_id: Optional[str] = None
    run_id: Optional[str] = None
    token: Optional[str] = None
    ef_log_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = Field(default_factory=time.monotonic)

    @classmethod
    def from_record(cls, record, token: Optional[str] = None, **overrides) -> "PhaseContext":
        """Build a context from a control record snapshot."""
        values = {
            "request_id": record.id,
            "assistant_name": record.wf_assistant_name,
            "narrative_project_id": record.narrative_project_id,
            "gpt_prompt": record.gpt_prompt,
            "gpt_json": record.gpt_json,
            "thread_id": record.thread_id,
            "message_id": record.message_id,
            "run_id": record.run_id,
            "token": token,
        }
        values.update(overrides)
        return cls(**values)

    def with_ids(self, **ids: Optional[str]) -> "PhaseContext":
        """Return a copy with the given provider ids set."""
        update = {k: v for k, v in ids.items() if k in ID_FIELDS and v}
        if not update:
            return self
        return self.model_copy(update=update)

    def with_response_ids(self, data) -> "PhaseContext":
        """Return a copy carrying the id of a thread/message/run response object."""
        if not isinstance(data, dict):
            return self
        field = OBJECT_ID_FIELDS.get(data.get("object"))
        if field and data.get("id"):
            return self.with_ids(**{field: data["id"]})
        return self

    def ids(self) -> dict:
        return {name: getattr(self, name) for name in ID_FIELDS}

    def elapsed_seconds(self, clock=time.monotonic) -> float:
        return clock() - self.started_at
