"""Fans a merged assistant document out into a destination table."""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import MetaData, Table
from sqlalchemy.orm import Session

from narrative_pipeline.exceptions import ConfigurationMissingError
from narrative_pipeline.models.warehouse import AssistantScriptMapping

logger = logging.getLogger(__name__)


def apply_flattening(parsed: Dict[str, Any], flatten_map: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Flatten nested child arrays into their parents.

    A ``flatten_map`` key ``"chapterPlan.scenes"`` turns each chapter's
    ``scenes`` into top-level ``chapterPlan`` rows that inherit the chapter's
    other fields.
    """
    result = dict(parsed)
    for full_key in flatten_map or {}:
        map_key, _, nested_key = full_key.partition(".")
        parents = parsed.get(map_key)
        if not nested_key or not isinstance(parents, list):
            continue

        flattened = []
        for parent in parents:
            children = parent.get(nested_key) if isinstance(parent, dict) else None
            if not isinstance(children, list):
                continue
            inherited = {k: v for k, v in parent.items() if k != nested_key}
            for child in children:
                flattened.append({**inherited, **child})
        result[map_key] = flattened
    return result


def map_fields(record: Dict[str, Any], field_mappings: Dict[str, str]) -> Dict[str, Any]:
    """Rename JSON fields to table columns, keeping only mapped fields."""
    return {column: record[json_field] for json_field, column in field_mappings.items() if json_field in record}


class ResultParser:
    """Writes ``final_json`` rows using the assistant's parsing mapping."""

    def __init__(self, db: Session):
        self.db = db

    def load_mapping(self, assistant_name: str) -> Dict[str, Any]:
        script = (
            self.db.query(AssistantScriptMapping)
            .filter(AssistantScriptMapping.wf_assistant_name == assistant_name)
            .first()
        )
        mapping = script.script_mapping_result_parsing if script else None
        if isinstance(mapping, str):
            mapping = json.loads(mapping)
        if not mapping:
            raise ConfigurationMissingError(f"No result parsing mapping for {assistant_name!r}")
        return mapping

    def parse(self, request_id, final_json: str, mapping: Dict[str, Any], narrative_project_id=None) -> int:
        """
        Insert or update one destination row per entry of the mapped segment.

        Args:
            request_id: Control record id (for log context)
            final_json: Merged assistant document
            mapping: destinationTable, segmentToParse, operationType,
                includeNarrativeProjectID, idFieldName, fieldMappings, flattenMap
            narrative_project_id: Project id stamped on rows when requested

        Returns:
            Number of rows written

        Raises:
            ValueError: If final_json is not valid JSON
            sqlalchemy.exc.NoSuchTableError: If the destination table is missing
        """
        final = json.loads(final_json)
        if not isinstance(final, dict):
            raise ValueError("final_json is not a JSON object")
        final = apply_flattening(final, mapping.get("flattenMap"))

        segment = mapping.get("segmentToParse")
        records: List[Any] = final.get(segment)
        if not isinstance(records, list):
            logger.error(f"[{request_id}] Expected an array in final_json[{segment!r}], got: {type(records).__name__}")
            return 0

        destination = mapping.get("destinationTable")
        if not destination:
            raise ConfigurationMissingError(f"[{request_id}] result parsing mapping has no destinationTable")
        table = Table(destination, MetaData(), autoload_with=self.db.connection())
        field_mappings = mapping.get("fieldMappings") or {}
        id_field = mapping.get("idFieldName") or "id"
        is_update = mapping.get("operationType") == "update"

        written = 0
        for item in records:
            if not isinstance(item, dict):
                continue
            values = map_fields(item, field_mappings)
            if mapping.get("includeNarrativeProjectID") and narrative_project_id:
                values["narrative_project_id"] = str(narrative_project_id)

            unknown = [name for name in values if name not in table.c]
            if unknown:
                logger.warning(f"[{request_id}] Dropping unmapped columns for {table.name}: {unknown}")
                values = {k: v for k, v in values.items() if k in table.c}

            if is_update:
                record_id = item.get(id_field)
                if not record_id:
                    logger.warning(f"[{request_id}] No value for id field {id_field!r} in record: {item}")
                    continue
                values.pop(id_field, None)
                values.pop("id", None)
                self.db.execute(table.update().where(table.c.id == record_id).values(**values))
            else:
                self.db.execute(table.insert().values(**values))
            written += 1

        self.db.commit()
        logger.info(f"[{request_id}] Completed processing {written} records for table: {table.name}")
        return written
