"""Batch continuation, JSON repair and chunk merging for assistant output."""

import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from narrative_pipeline.assistant import statuses
from narrative_pipeline.assistant.families import (
    GROUPED_MAP,
    UNKNOWN_GROUP,
    merge_fields_for,
    sanitize_fields_for,
)
from narrative_pipeline.config import settings
from narrative_pipeline.models.control import ControlRecord
from narrative_pipeline.models.warehouse import AssistantPrompt
from narrative_pipeline.services.control_store import ControlStore
from narrative_pipeline.services.telemetry import Telemetry

logger = logging.getLogger(__name__)

JSON_ESCAPES = set('"\\/bfnrtu')

# A value's closing quote is followed by the next key, or by the end of the
# enclosing object/array.
_VALUE_END = re.compile(r'\s*(?:,\s*"[^"\\]*"\s*:|[}\]])')


def find_json_span(raw: Any) -> Optional[str]:
    """Return the text from the first ``{`` to the last ``}``, or None."""
    if not isinstance(raw, str):
        return None
    first = raw.find("{")
    last = raw.rfind("}")
    if first == -1 or last == -1 or first >= last:
        return None
    return raw[first:last + 1]


def extract_json_block(raw: Any) -> Optional[str]:
    """Return the first ``{...}`` span of an LLM reply if it parses as JSON."""
    span = find_json_span(raw)
    if span is None:
        logger.warning("No JSON block detected in assistant response")
        return None
    try:
        json.loads(span)
    except ValueError as e:
        logger.error(f"extract_json_block failed to parse cleaned block: {e}")
        return None
    return span


def _escape_free_text(text: str) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if nxt and nxt in JSON_ESCAPES:
                out.append(ch + nxt)
                i += 2
                continue
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            if text[i + 1:i + 2] != "\n":
                out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _find_value_end(raw: str, start: int) -> int:
    """Index of the closing quote of a string value opened just before ``start``."""
    i = start
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and raw[i + 1:i + 2] in JSON_ESCAPES:
            i += 2
            continue
        if ch == '"' and _VALUE_END.match(raw, i + 1):
            return i
        i += 1
    return -1


def sanitize_json_fields(raw_json: Optional[str], field_names: Iterable[str]) -> Optional[str]:
    """
    Escape backslashes, quotes and newlines inside named free-text fields.

    Already-valid escape sequences are left alone, so sanitizing valid JSON
    returns it unchanged.

    Args:
        raw_json: Raw JSON text from the assistant
        field_names: Field names whose string values are prose

    Returns:
        The repaired JSON text
    """
    if not raw_json or not isinstance(raw_json, str):
        return raw_json

    for field_name in field_names:
        opener = re.compile(r'"' + re.escape(field_name) + r'"\s*:\s*"')
        pos = 0
        while True:
            match = opener.search(raw_json, pos)
            if not match:
                break
            value_start = match.end()
            value_end = _find_value_end(raw_json, value_start)
            if value_end == -1:
                break
            cleaned = _escape_free_text(raw_json[value_start:value_end])
            raw_json = f'{raw_json[:match.start()]}"{field_name}": "{cleaned}{raw_json[value_end:]}'
            pos = match.start() + len(field_name) + 5 + len(cleaned) + 1
    return raw_json


def sanitize_json_before_parse(raw_json: Optional[str], assistant_name: str) -> Optional[str]:
    """Apply the assistant family's sanitizer; unknown assistants pass through."""
    fields = sanitize_fields_for(assistant_name)
    if not fields:
        return raw_json
    return sanitize_json_fields(raw_json, fields)


def validate_raw_json(raw_json: Optional[str]) -> bool:
    if not raw_json or not isinstance(raw_json, str):
        logger.warning("No JSON string provided for validation")
        return False
    try:
        json.loads(raw_json)
    except ValueError as e:
        logger.error(f"Malformed JSON detected: {e}")
        return False
    return True


def should_continue_batching(parsed: Any, batch_style: Optional[str]) -> bool:
    """More chunks are expected iff a batch style is set and ``isFinalChunk`` is false."""
    if not isinstance(parsed, dict):
        return False
    return bool(batch_style) and parsed.get("isFinalChunk") is False


def append_chunk(concatenated: Optional[str], chunk: str, delimiter: Optional[str] = None) -> str:
    delimiter = delimiter or settings.CHUNK_DELIMITER
    if not concatenated:
        return chunk
    return f"{concatenated}{delimiter}\n{chunk}"


def split_and_merge_chunks(concatenated: str, delimiter: Optional[str], assistant_name: str) -> Dict[str, Any]:
    """
    Merge every delimited chunk into one document.

    Segments that fail to parse are logged and skipped.

    Args:
        concatenated: All chunks joined by the delimiter
        delimiter: Chunk delimiter
        assistant_name: Selects the merge spec

    Returns:
        Merged document with ``isFinalChunk: true``

    Raises:
        UnknownAssistantError: If the assistant has no merge spec
    """
    merge_fields = merge_fields_for(assistant_name)
    delimiter = delimiter or settings.CHUNK_DELIMITER

    merged: Dict[str, Any] = {}
    for spec in merge_fields:
        merged[spec.name] = {} if spec.strategy == GROUPED_MAP else []
    merged["isFinalChunk"] = True

    parts = [p.strip() for p in (concatenated or "").split(delimiter)]
    for part in filter(None, parts):
        try:
            obj = json.loads(part)
        except ValueError as e:
            logger.error(f"Failed to parse segment: {e}")
            continue
        if not isinstance(obj, dict):
            logger.error("Skipping segment that is not a JSON object")
            continue

        for spec in merge_fields:
            value = obj.get(spec.name)
            if not isinstance(value, list):
                continue
            if spec.strategy == GROUPED_MAP:
                merged[spec.name][obj.get(spec.group_key_field) or UNKNOWN_GROUP] = value
            else:
                merged[spec.name].extend(value)

    logger.info(f"Final merged JSON structure ready for {assistant_name}")
    return merged


class BatchProcessor:
    """Validates one retrieved chunk and advances the control record."""

    def __init__(self, db: Session, store: ControlStore, telemetry: Optional[Telemetry] = None):
        self.db = db
        self.store = store
        self.telemetry = telemetry or Telemetry()
        self.max_retries = settings.MAX_JSON_RETRIES
        self.delimiter = settings.CHUNK_DELIMITER

    def process(self, record: ControlRecord, ef_log_id: Optional[str] = None) -> str:
        """
        Handle the chunk in ``iteration_json``.

        Args:
            record: Control record in ``Check Loop Batch``
            ef_log_id: Invocation id for telemetry

        Returns:
            The status written to the record
        """
        assistant_name = record.wf_assistant_name

        candidate = find_json_span(record.iteration_json)
        raw_json = sanitize_json_before_parse(candidate, assistant_name)
        if raw_json != candidate:
            logger.warning(f"Assistant sanitization applied for: {assistant_name}")

        if not validate_raw_json(raw_json):
            return self._handle_malformed(record, ef_log_id)

        parsed = json.loads(raw_json)
        keep_batching = should_continue_batching(parsed, self._batch_style(assistant_name))
        concatenated = append_chunk(record.concatenated_json, raw_json, self.delimiter)

        if keep_batching:
            logger.info("isFinalChunk = False. Need another batch")
            self.store.update(
                record,
                concatenated_json=concatenated,
                status=statuses.AWAITING_NEXT_BATCH,
            )
            return statuses.AWAITING_NEXT_BATCH

        logger.info("isFinalChunk = True. No more batches needed")
        merged = split_and_merge_chunks(concatenated, self.delimiter, assistant_name)
        self.store.update(
            record,
            concatenated_json=concatenated,
            final_json=json.dumps(merged, indent=2),
            status=statuses.PARSE_RESPONSE,
        )
        self.telemetry.log_activity(
            record.id,
            "CheckLoopBatch:Merged",
            {"chunks": concatenated.count(self.delimiter) + 1},
            assistant_name=assistant_name,
            ef_log_id=ef_log_id,
        )
        return statuses.PARSE_RESPONSE

    def _handle_malformed(self, record: ControlRecord, ef_log_id: Optional[str]) -> str:
        retry_count = record.retry_count
        if isinstance(retry_count, bool) or not isinstance(retry_count, int):
            # Missing or corrupt counter: assume the budget is spent
            retry_count = float("inf")

        if retry_count >= self.max_retries:
            self.store.set_status(record, statuses.MAX_RETRIES_REACHED)
            self.telemetry.log_activity(
                record.id,
                statuses.MAX_RETRIES_REACHED,
                {"retry_count": record.retry_count},
                assistant_name=record.wf_assistant_name,
                ef_log_id=ef_log_id,
            )
            return statuses.MAX_RETRIES_REACHED

        self.store.update(
            record,
            retry_count=retry_count + 1,
            status=statuses.RESEND_LAST_RESPONSE,
        )
        logger.warning(f"retry_count updated to {retry_count + 1} for record {record.id}")
        return statuses.RESEND_LAST_RESPONSE

    def _batch_style(self, assistant_name: str) -> Optional[str]:
        prompt = (
            self.db.query(AssistantPrompt)
            .filter(AssistantPrompt.assistant_name == assistant_name)
            .first()
        )
        if prompt is None:
            logger.error(f"Failed to fetch batch_style for assistant '{assistant_name}'")
            return None
        return prompt.batch_style
