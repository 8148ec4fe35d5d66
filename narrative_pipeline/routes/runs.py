"""Control record routes."""

import json
import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from narrative_pipeline.database import get_db
from narrative_pipeline.dependencies import get_stage_invoker, require_token
from narrative_pipeline.exceptions import ControlRecordNotFound
from narrative_pipeline.schemas.control import ControlCreate, ControlCreateResponse, ControlSnapshot
from narrative_pipeline.services.control_store import ControlStore
from narrative_pipeline.services.stage_invoker import StageInvoker
from narrative_pipeline.stages.base import ROUTER_STAGE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", response_model=ControlCreateResponse)
def create_run(
    data: ControlCreate,
    background_tasks: BackgroundTasks,
    token: str = Depends(require_token),
    db: Session = Depends(get_db),
    invoker: StageInvoker = Depends(get_stage_invoker),
):
    """Create a control record and hand it to the router."""
    record = ControlStore(db).create(
        wf_assistant_name=data.wf_assistant_name,
        status=data.status,
        narrative_project_id=data.narrative_project_id,
        gpt_prompt=data.gpt_prompt,
        gpt_json=data.gpt_json,
        testing_router_block=data.testing_router_block,
        retry_count=0,
    )

    background_tasks.add_task(invoker.invoke, ROUTER_STAGE, record.id, token)

    return ControlCreateResponse(
        outcome="Complete",
        message="wf_record created",
        request_id=record.id,
    )


@router.get("/{request_id}", response_model=ControlSnapshot)
def get_run(
    request_id: uuid.UUID,
    token: str = Depends(require_token),
    db: Session = Depends(get_db),
):
    """Get a control record's status, ids and merged output."""
    try:
        record = ControlStore(db).get(request_id)
    except ControlRecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    snapshot = ControlSnapshot.model_validate(record)
    if record.final_json:
        try:
            snapshot.final_json = json.loads(record.final_json)
        except ValueError:
            snapshot.final_json = record.final_json
    return snapshot
