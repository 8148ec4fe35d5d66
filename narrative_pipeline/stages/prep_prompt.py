"""Prep Prompt stage."""

import logging

from narrative_pipeline.assistant import statuses
from narrative_pipeline.exceptions import ConfigurationMissingError
from narrative_pipeline.services.prompt_builder import PromptBuilder
from narrative_pipeline.stages.base import BaseStage

logger = logging.getLogger(__name__)


class PrepPromptStage(BaseStage):
    """Write the assembled instruction prompt into ``gpt_prompt``."""

    NAME = "prep_prompt"
    ENTRY_STATUSES = (statuses.PREP_PROMPT,)

    def _run(self, record, context):
        try:
            prompt = PromptBuilder(self.db).build(record.wf_assistant_name, record.narrative_project_id)
        except ConfigurationMissingError as e:
            logger.error(f"[{record.id}] {e}")
            status = statuses.halt("PromptConfigMissing")
            self.store.set_status(record, status)
            return status

        self.store.update(record, gpt_prompt=prompt, status=statuses.RUN_ASSISTANT)
        logger.info(f"[{record.id}] Final prompt assembled and saved")
        return statuses.RUN_ASSISTANT
