"""Fires pipeline stages over HTTP."""

import logging
from typing import Any, Dict, Optional

import httpx

from narrative_pipeline.config import settings

logger = logging.getLogger(__name__)


class StageInvoker:
    """POSTs ``{request_id}`` to a named stage, forwarding the bearer token."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or settings.STAGE_BASE_URL).rstrip("/")
        self.overrides = dict(settings.STAGE_URL_OVERRIDES)
        self.transport = transport
        self.timeout = settings.STAGE_INVOKE_TIMEOUT

    def url_for(self, stage: str) -> str:
        return self.overrides.get(stage) or f"{self.base_url}/{stage}"

    def invoke(self, stage: str, request_id, token: Optional[str]) -> Dict[str, Any]:
        """Call a stage and return its JSON reply or an error dict; never raises."""
        url = self.url_for(stage)
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.info(f"-> CALLED STAGE: {stage} | request_id: {request_id}")
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, headers=headers, json={"request_id": str(request_id)})
        except httpx.HTTPError as e:
            logger.error(f"Stage POST error ({stage}): {e}")
            return {"success": False, "error": str(e) or "Unknown error"}

        if response.is_success:
            try:
                return response.json()
            except ValueError:
                return {"success": True, "raw": response.text}

        logger.error(f"Stage POST failed [{response.status_code}] ({stage}): {response.text}")
        return {
            "success": False,
            "error": f"Stage POST failed: {response.text}",
            "status": response.status_code,
        }
