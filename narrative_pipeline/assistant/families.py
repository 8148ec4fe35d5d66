"""Per-assistant sanitize and merge rules.

Each assistant family declares which free-text fields must be escaped before
parsing and how its output fields are combined across chunks.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from narrative_pipeline.exceptions import UnknownAssistantError

FLAT_ARRAY = "flat_array"
GROUPED_MAP = "grouped_map"

DEFAULT_GROUP_KEY = "chapterRange"
UNKNOWN_GROUP = "UnknownRange"


@dataclass(frozen=True)
class FieldMerge:
    """How one output field is merged across chunks."""

    name: str
    strategy: str = FLAT_ARRAY
    group_key_field: str = DEFAULT_GROUP_KEY


@dataclass(frozen=True)
class AssistantFamily:
    name: str
    sanitize_fields: Tuple[str, ...] = ()
    merge_fields: Optional[Tuple[FieldMerge, ...]] = None


def _family(name, sanitize=(), merge=None):
    return AssistantFamily(
        name=name,
        sanitize_fields=tuple(sanitize),
        merge_fields=tuple(merge) if merge is not None else None,
    )


ASSISTANT_FAMILIES: Dict[str, AssistantFamily] = {
    family.name: family
    for family in (
        _family(
            "WF_StoryArcCraftingAssistant",
            merge=[FieldMerge("storyArcs")],
        ),
        _family(
            "WF_ChapterCraftingAssistant",
            merge=[
                FieldMerge("chapterPlan"),
                FieldMerge("observations", GROUPED_MAP),
                FieldMerge("unadaptedBeats"),
            ],
        ),
        _family(
            "WF_Scene_ConceptCreation",
            merge=[
                FieldMerge("sceneConcepts"),
                FieldMerge("observations", GROUPED_MAP),
            ],
        ),
        _family(
            "WF_CharacterAssignmentSceneReview",
            merge=[
                FieldMerge("characterAssignments"),
                FieldMerge("newCharacterRoles"),
                FieldMerge("observations", GROUPED_MAP),
            ],
        ),
        _family(
            "WF_ChapterNarrativeFlowBuilder",
            sanitize=["chapterDraft"],
            merge=[FieldMerge("chapterDrafts")],
        ),
        _family(
            "WF_ChapterKeyMomentsExtractionAssistant",
            merge=[FieldMerge("chapterKeyMoments")],
        ),
        # Sanitized only; these single-record writers have no batch merge
        _family("WF_Scene_ProseWriter", sanitize=["prose"]),
        _family("WF_SceneConceptExpansion", sanitize=["sceneText"]),
    )
}


def sanitize_fields_for(assistant_name: str) -> Tuple[str, ...]:
    """Free-text fields to escape for an assistant; empty when unknown."""
    family = ASSISTANT_FAMILIES.get(assistant_name)
    return family.sanitize_fields if family else ()


def merge_fields_for(assistant_name: str) -> Tuple[FieldMerge, ...]:
    """Merge spec for an assistant.

    Raises:
        UnknownAssistantError: If the assistant declares no merge spec
    """
    family = ASSISTANT_FAMILIES.get(assistant_name)
    if family is None or family.merge_fields is None:
        raise UnknownAssistantError(assistant_name)
    return family.merge_fields
