"""MCP tools that compute adherence reports from schedule and participant payloads.

The tools are stateless: every call parses its own payloads into a fresh
``AdherenceState``, runs one generator and returns the report as JSON.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from cap.domains.adherence.connectors.payloads import InputParseError, build_state_config
from cap.domains.adherence.domain_logic import event_stream, study_report
from cap.domains.adherence.domain_logic.adherence_state import AdherenceState

if TYPE_CHECKING:
    from cap.core.config.settings import Settings

logger = logging.getLogger(__name__)


def register_adherence_report_tools(mcp: FastMCP, settings: Settings) -> None:
    """Register the adherence report tools on the MCP server."""

    def _state(
        metadata: list[dict[str, Any]],
        events: list[dict[str, Any]],
        adherence_records: list[dict[str, Any]] | None,
        now: str | None,
        client_time_zone: str | None,
        study_start_event_id: str | None,
    ) -> AdherenceState:
        config = build_state_config(
            metadata=metadata,
            events=events,
            adherence_records=adherence_records,
            now=now,
            client_time_zone=client_time_zone or settings.default_client_time_zone,
            study_start_event_id=study_start_event_id or settings.default_study_start_event_id,
        )
        return AdherenceState(config)

    def _error(tool: str, exc: InputParseError) -> str:
        logger.warning("%s rejected input: %s", tool, exc)
        return json.dumps({"status": "error", "error": "invalid_input", "message": str(exc)})

    @mcp.tool
    def event_stream_adherence_report(
        metadata: list[dict[str, Any]],
        events: list[dict[str, Any]],
        adherence_records: list[dict[str, Any]] | None = None,
        now: str | None = None,
        client_time_zone: str | None = None,
        study_start_event_id: str | None = None,
    ) -> str:
        """Compute a participant's adherence organized by trigger event.

        Args:
            metadata: Scheduled session windows (session/instance/window guids,
                start event id, start and end day, optional start time,
                ISO 8601 expiration and study burst).
            events: Trigger events with ISO 8601 timestamps (null if unset).
            adherence_records: Completion records with started/finished
                timestamps and a declined flag.
            now: Evaluation instant (ISO 8601); defaults to the current time.
            client_time_zone: IANA time zone of the participant.
            study_start_event_id: Event that marks the start of the study.
        """
        start_time = time.monotonic()
        try:
            state = _state(
                metadata, events, adherence_records, now, client_time_zone, study_start_event_id
            )
        except InputParseError as exc:
            return _error("event_stream_adherence_report", exc)

        report = event_stream.INSTANCE.generate(state)
        logger.info(
            "event_stream_adherence_report: %d streams in %.1fms",
            len(report.streams),
            (time.monotonic() - start_time) * 1000,
        )
        return json.dumps({"status": "ok", "report": report.to_dict()})

    @mcp.tool
    def study_adherence_report(
        metadata: list[dict[str, Any]],
        events: list[dict[str, Any]],
        adherence_records: list[dict[str, Any]] | None = None,
        now: str | None = None,
        client_time_zone: str | None = None,
        study_start_event_id: str | None = None,
    ) -> str:
        """Compute a participant's whole-study adherence, week by week.

        Returns every scheduled week with rows and adherence, the current
        week with unresolved earlier activities carried over, and the next
        upcoming activity when nothing is scheduled this week.

        Args:
            metadata: Scheduled session windows.
            events: Trigger events with ISO 8601 timestamps (null if unset).
            adherence_records: Completion records.
            now: Evaluation instant (ISO 8601); defaults to the current time.
            client_time_zone: IANA time zone of the participant.
            study_start_event_id: Event that marks the start of the study.
        """
        start_time = time.monotonic()
        try:
            state = _state(
                metadata, events, adherence_records, now, client_time_zone, study_start_event_id
            )
        except InputParseError as exc:
            return _error("study_adherence_report", exc)

        report = study_report.INSTANCE.generate(state)
        logger.info(
            "study_adherence_report: %d weeks in %.1fms",
            len(report.weeks),
            (time.monotonic() - start_time) * 1000,
        )
        return json.dumps({"status": "ok", "report": report.to_dict()})
