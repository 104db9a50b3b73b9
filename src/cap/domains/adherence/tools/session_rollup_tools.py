"""MCP tool that rolls assessment completion records up into a session record."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastmcp import FastMCP

from cap.domains.adherence.connectors.payloads import (
    InputParseError,
    parse_records,
    parse_session_record,
)
from cap.domains.adherence.domain_logic.session_rollup import SessionRecordRollup

logger = logging.getLogger(__name__)


def register_session_rollup_tools(mcp: FastMCP) -> None:
    """Register the session roll-up tool on the MCP server."""

    @mcp.tool
    def session_record_rollup(
        session_record: dict[str, Any],
        assessment_records: list[dict[str, Any]],
        expected_count: int,
    ) -> str:
        """Derive a session's completion record from its assessments' records.

        The session is started at its earliest assessment start, finished at
        its latest assessment finish once ``expected_count`` assessments are
        finished, and declined when every assessment was declined.

        Args:
            session_record: The session's current completion record.
            assessment_records: Completion records of the session's assessments.
            expected_count: Number of assessments the session contains.
        """
        try:
            record = parse_session_record(session_record)
            assessments = parse_records(assessment_records)
        except InputParseError as exc:
            logger.warning("session_record_rollup rejected input: %s", exc)
            return json.dumps({"status": "error", "error": "invalid_input", "message": str(exc)})

        rollup = SessionRecordRollup(expected_count)
        for assessment in assessments:
            rollup.add(assessment)
        changed = rollup.update_session_record(record)
        logger.debug(
            "Rolled up %d assessments into %s (changed=%s)",
            len(assessments),
            record.instance_guid,
            changed,
        )
        return json.dumps({
            "status": "ok",
            "changed": changed,
            "finished": rollup.is_finished,
            "session_record": record.to_dict(),
        })
