"""LLM provider HTTP adapter with request logging."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from narrative_pipeline.assistant.statuses import ACTIVE_RUN_STATUSES
from narrative_pipeline.config import settings
from narrative_pipeline.services.telemetry import POLLING_LOG, PRIMARY_LOG, Telemetry

logger = logging.getLogger(__name__)

POLL_PHASE = "PollRunStatus"


@dataclass
class ProviderResponse:
    """Outcome of one provider call; ``success`` is about transport only."""

    success: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RequestLogMeta:
    """Context recorded alongside each provider request."""

    request_key: Optional[str] = None
    run_type: Optional[str] = None
    call_logic_key: Optional[str] = None
    request_purpose: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    narrative_project_id: Any = None
    ef_log_id: Optional[str] = None
    ids: Dict[str, Optional[str]] = field(default_factory=dict)


def build_provider_headers(provider: Optional[str], api_key: str, content_type: Optional[str] = None) -> Dict[str, str]:
    """Build HTTP headers for a provider."""
    headers = {"Content-Type": content_type or "application/json"}
    name = (provider or "").upper()

    if name == "GOOGLEAI":
        headers["x-goog-api-key"] = api_key
    elif name == "OPENROUTER":
        headers["Authorization"] = f"Bearer {api_key}"
        headers["HTTP-Referer"] = settings.OPENROUTER_HTTP_REFERER
        if settings.SITE_NAME:
            headers["X-Title"] = settings.SITE_NAME
    elif name == "OPENAI":
        headers["Authorization"] = f"Bearer {api_key}"
        headers["OpenAI-Beta"] = "assistants=v2"
    else:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def select_log_table(run_type: Optional[str], data: Any) -> str:
    """Route still-active polls to the high-volume table."""
    if run_type == POLL_PHASE and isinstance(data, dict) and data.get("status") in ACTIVE_RUN_STATUSES:
        return POLLING_LOG
    return PRIMARY_LOG


class LLMClient:
    """Sends provider requests and records each one through telemetry."""

    def __init__(self, telemetry: Optional[Telemetry] = None, transport: Optional[httpx.BaseTransport] = None):
        """Initialize the client.

        Args:
            telemetry: Telemetry port for request logs
            transport: Optional httpx transport (tests inject a mock)
        """
        self.telemetry = telemetry or Telemetry()
        self.transport = transport
        self.timeout = settings.LLM_HTTP_TIMEOUT

    def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Dict[str, Any]] = None,
        log_meta: Optional[RequestLogMeta] = None,
    ) -> ProviderResponse:
        """
        Execute one provider call.

        Never raises: transport and parse failures come back as
        ``ProviderResponse(success=False)``. A top-level ``error`` field in the
        JSON body is logged as a soft error but still reported as success.

        Args:
            method: HTTP method
            url: Fully resolved URL
            headers: Request headers
            body: JSON body (ignored for GET)
            log_meta: Context for the request log

        Returns:
            ProviderResponse
        """
        meta = log_meta or RequestLogMeta()
        method = (method or "POST").upper()
        request_kwargs = {"headers": headers}
        if method != "GET" and body:
            request_kwargs["json"] = body

        started = time.monotonic()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, **request_kwargs)
            duration_ms = int((time.monotonic() - started) * 1000)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(f"{meta.run_type} request to {url} failed after {duration_ms}ms: {e}")
            self._record(meta, PRIMARY_LOG, method, url, body, None, str(e), 500, duration_ms)
            return ProviderResponse(success=False, error=str(e), duration_ms=duration_ms)

        if isinstance(data, dict) and "instructions" in data:
            data = {k: v for k, v in data.items() if k != "instructions"}

        soft_error = data.get("error") if isinstance(data, dict) else None
        if soft_error:
            logger.warning(f"{meta.run_type} soft error from {meta.provider}: {soft_error}")
        status_code = 500 if soft_error and response.status_code == 200 else response.status_code

        self._record(
            meta,
            select_log_table(meta.run_type, data),
            method,
            url,
            body,
            data,
            soft_error,
            status_code,
            duration_ms,
        )
        return ProviderResponse(
            success=True,
            status_code=response.status_code,
            data=data,
            duration_ms=duration_ms,
        )

    def _record(self, meta, log_table, method, url, body, data, error, status_code, duration_ms):
        entry = {
            "ef_log_id": meta.ef_log_id,
            "narrative_project_id": meta.narrative_project_id,
            "request_key": meta.request_key,
            "call_logic_key": meta.call_logic_key,
            "request_purpose": meta.request_purpose,
            "provider": meta.provider,
            "run_type": meta.run_type,
            "model": meta.model,
            "url": url,
            "method": method,
            "request_payload": body,
            "response_raw": data,
            "error": error,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "thread_id": meta.ids.get("thread_id"),
            "run_id": meta.ids.get("run_id"),
            "message_id": meta.ids.get("message_id"),
        }
        try:
            self.telemetry.log_request(log_table, entry)
        except Exception as e:
            logger.warning(f"LLM Logging Failed: {e}")
