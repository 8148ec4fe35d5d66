"""Stage routes: each POST is one stateless pipeline invocation."""

import logging
import time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from narrative_pipeline.database import get_db
from narrative_pipeline.dependencies import get_llm_client, get_stage_invoker, get_telemetry, require_token
from narrative_pipeline.exceptions import ControlRecordNotFound, StaleControlRecordError, UnknownAssistantError
from narrative_pipeline.schemas.stage import StageRequest, StageResponse
from narrative_pipeline.services.llm_client import LLMClient
from narrative_pipeline.services.stage_invoker import StageInvoker
from narrative_pipeline.services.telemetry import Telemetry
from narrative_pipeline.stages.registry import STAGES
from narrative_pipeline.utils import format_ms_to_time

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stages", tags=["stages"])


@router.post("/{stage_name}", response_model=StageResponse)
def run_stage(
    stage_name: str,
    data: StageRequest,
    background_tasks: BackgroundTasks,
    token: str = Depends(require_token),
    db: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm_client),
    telemetry: Telemetry = Depends(get_telemetry),
    invoker: StageInvoker = Depends(get_stage_invoker),
):
    """Run one stage for a control record and schedule the next trigger."""
    started = time.monotonic()

    stage_class = STAGES.get(stage_name)
    if stage_class is None:
        raise HTTPException(status_code=404, detail=f"Unknown stage: {stage_name}")

    stage = stage_class(db, llm_client=llm_client, telemetry=telemetry)
    try:
        outcome = stage.execute(data.request_id, token=token)
    except ControlRecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StaleControlRecordError as e:
        logger.warning(f"Stage {stage_name}: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except UnknownAssistantError as e:
        logger.error(f"Stage {stage_name} for {data.request_id}: {e}")
        telemetry.log_activity(data.request_id, f"{stage_name}:Error", {"error": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    if outcome.trigger:
        background_tasks.add_task(invoker.invoke, outcome.trigger, data.request_id, token)

    return StageResponse(
        outcome=outcome.outcome,
        message=outcome.message,
        elapsedTime=format_ms_to_time((time.monotonic() - started) * 1000),
        status=outcome.status,
    )
