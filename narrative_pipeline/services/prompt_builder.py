"""Assembles an assistant's instruction prompt from its prompt warehouse record."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from narrative_pipeline.exceptions import ConfigurationMissingError
from narrative_pipeline.models.narrative import NarrativeProject
from narrative_pipeline.models.warehouse import AssistantPrompt

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"


def assemble_prompt(
    primary_prompt: str,
    module_plugins: Optional[dict],
    module_triggers: Optional[dict],
    no_modules_prompt: Optional[str] = None,
) -> str:
    """
    Join the primary prompt with the module snippets the project enables.

    Args:
        primary_prompt: Base instruction text
        module_plugins: Module name -> snippet
        module_triggers: Module name -> enabled flag from the narrative project
        no_modules_prompt: Fallback snippet when no module is enabled

    Returns:
        Final prompt text
    """
    triggers = module_triggers or {}
    snippets = [
        snippet
        for name, snippet in (module_plugins or {}).items()
        if snippet and triggers.get(name) is True
    ]
    if not snippets and no_modules_prompt:
        snippets.append(no_modules_prompt)
    return SECTION_SEPARATOR.join([primary_prompt, *snippets])


class PromptBuilder:
    def __init__(self, db: Session):
        self.db = db

    def build(self, assistant_name: str, narrative_project_id=None) -> str:
        """Build the prompt for an assistant within a narrative project.

        Raises:
            ConfigurationMissingError: If there is no prompt record or primary prompt
        """
        prompt = (
            self.db.query(AssistantPrompt)
            .filter(AssistantPrompt.assistant_name == assistant_name)
            .first()
        )
        if prompt is None:
            raise ConfigurationMissingError(f"No matching prompt record for assistant {assistant_name!r}")
        if not prompt.primary_prompt:
            raise ConfigurationMissingError(f"No primary prompt defined for assistant {assistant_name!r}")

        project = self.db.get(NarrativeProject, narrative_project_id) if narrative_project_id else None
        triggers = project.module_triggers if project else None

        return assemble_prompt(
            prompt.primary_prompt,
            prompt.module_plugins,
            triggers,
            prompt.no_modules_prompt,
        )
