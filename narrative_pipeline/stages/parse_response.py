"""Parse Response stage: fan the merged document out to its domain table."""

import logging

from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from narrative_pipeline.assistant import statuses
from narrative_pipeline.exceptions import ConfigurationMissingError
from narrative_pipeline.services.result_parser import ResultParser
from narrative_pipeline.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ParseResponseStage(BaseStage):
    NAME = "parse_response"
    ENTRY_STATUSES = (statuses.PARSE_RESPONSE,)

    def _run(self, record, context):
        parser = ResultParser(self.db)
        try:
            mapping = parser.load_mapping(record.wf_assistant_name)
            written = parser.parse(record.id, record.final_json, mapping, record.narrative_project_id)
        except ConfigurationMissingError as e:
            return self._halt(record, "ParserConfigMissing", e)
        except (TypeError, ValueError) as e:
            return self._halt(record, "FinalJsonInvalid", e)
        except NoSuchTableError as e:
            return self._halt(record, "DestinationTableMissing", e)
        except SQLAlchemyError as e:
            self.db.rollback()
            return self._halt(record, "ParseWriteFailed", e)

        self._activity(context, "ParseResponse:RowsWritten", {"rows": written})
        self.store.set_status(record, statuses.COMPLETE)
        logger.info(f"[{record.id}] JSON parsed successfully")
        return statuses.COMPLETE

    def _halt(self, record, reason, error):
        logger.error(f"[{record.id}] parse failed ({reason}): {error}")
        status = statuses.halt(reason)
        self.store.set_status(record, status)
        return status
