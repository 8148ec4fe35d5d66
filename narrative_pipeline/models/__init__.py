"""SQLAlchemy ORM models."""

from narrative_pipeline.models.narrative import NarrativeProject
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.models.warehouse import AssistantPrompt, AssistantScriptMapping, HttpPhaseMapping
from narrative_pipeline.models.logs import ActivityLogEntry, LLMPollingRequestLog, LLMRequestLog

__all__ = [
    "NarrativeProject",
    "ControlRecord",
    "HttpPhaseMapping",
    "AssistantScriptMapping",
    "AssistantPrompt",
    "ActivityLogEntry",
    "LLMRequestLog",
    "LLMPollingRequestLog",
]
