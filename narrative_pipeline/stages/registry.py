"""Stage registry: stage name -> stage class."""

from typing import Dict, Type

from narrative_pipeline.stages.base import BaseStage
from narrative_pipeline.stages.check_loop_batch import CheckLoopBatchStage
from narrative_pipeline.stages.follow_up import RequestNextBatchStage, ResendLastResponseStage
from narrative_pipeline.stages.parse_response import ParseResponseStage
from narrative_pipeline.stages.poll_run import PollRunStatusStage, RetrieveResponseStage
from narrative_pipeline.stages.prep_prompt import PrepPromptStage
from narrative_pipeline.stages.router import RouterStage
from narrative_pipeline.stages.run_assistant import RunAssistantStage

STAGES: Dict[str, Type[BaseStage]] = {
    stage.NAME: stage
    for stage in (
        RouterStage,
        PrepPromptStage,
        RunAssistantStage,
        PollRunStatusStage,
        RetrieveResponseStage,
        CheckLoopBatchStage,
        RequestNextBatchStage,
        ResendLastResponseStage,
        ParseResponseStage,
    )
}
