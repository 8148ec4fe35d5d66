"""FastAPI dependencies for auth and service wiring."""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from narrative_pipeline.config import settings
from narrative_pipeline.database import SessionLocal
from narrative_pipeline.services.llm_client import LLMClient
from narrative_pipeline.services.stage_invoker import StageInvoker
from narrative_pipeline.services.telemetry import DatabaseTelemetry, Telemetry


def require_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the caller's bearer token; it is forwarded to the next stage."""
    token = (authorization or "").strip()
    scheme, _, value = token.partition(" ")
    if scheme.lower() == "bearer":
        token = value.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Missing token")

    if settings.API_TOKENS and token not in settings.API_TOKENS:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token


def get_telemetry() -> Telemetry:
    return DatabaseTelemetry(SessionLocal)


def get_llm_client(telemetry: Telemetry = Depends(get_telemetry)) -> LLMClient:
    return LLMClient(telemetry=telemetry)


def get_stage_invoker() -> StageInvoker:
    return StageInvoker()
