"""Convert JSON-style payloads into adherence models.

Payloads arrive as plain dicts (MCP tool arguments, exported schedules).
Keys may be snake_case or camelCase. Timestamps are ISO 8601 with an offset,
times of day are ``HH:MM[:SS]`` and expirations are ISO 8601 durations
(``P1D``, ``PT12H``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, time, timedelta
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from cap.domains.adherence.domain_logic.adherence_state import AdherenceStateConfig
from cap.domains.adherence.domain_logic.models import (
    CompletionRecord,
    SessionMetadata,
    TriggerEvent,
)

logger = logging.getLogger(__name__)


class InputParseError(ValueError):
    """Raised when a payload cannot be converted into adherence models."""


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionMetadataPayload(_Payload):
    session_instance_guid: str
    session_guid: str
    time_window_guid: str
    start_event_id: str
    start_day: int
    end_day: int
    session_name: str = ""
    session_symbol: str | None = None
    study_burst_id: str | None = None
    study_burst_num: int | None = None
    start_time: time = time(0, 0)
    expiration: timedelta | None = None
    persistent: bool = False

    def to_model(self) -> SessionMetadata:
        return SessionMetadata(**self.model_dump())


class TriggerEventPayload(_Payload):
    event_id: str
    timestamp: AwareDatetime | None = None
    record_count: int | None = None

    def to_model(self) -> TriggerEvent:
        return TriggerEvent(**self.model_dump())


class CompletionRecordPayload(_Payload):
    instance_guid: str
    event_timestamp: AwareDatetime | None = None
    started_on: AwareDatetime | None = None
    finished_on: AwareDatetime | None = None
    declined: bool = False

    def to_model(self) -> CompletionRecord:
        return CompletionRecord(**self.model_dump())


_TIMESTAMP = TypeAdapter(AwareDatetime)


def _parse_all(payload_cls: type[_Payload], items: Iterable[Mapping[str, Any]] | None, kind: str) -> list:
    models = []
    for index, item in enumerate(items or []):
        try:
            models.append(payload_cls.model_validate(item).to_model())
        except ValidationError as exc:
            raise InputParseError(f"Invalid {kind} at index {index}: {exc}") from exc
    return models


def parse_metadata(items: Iterable[Mapping[str, Any]] | None) -> list[SessionMetadata]:
    return _parse_all(SessionMetadataPayload, items, "session metadata")


def parse_events(items: Iterable[Mapping[str, Any]] | None) -> list[TriggerEvent]:
    return _parse_all(TriggerEventPayload, items, "event")


def parse_records(items: Iterable[Mapping[str, Any]] | None) -> list[CompletionRecord]:
    return _parse_all(CompletionRecordPayload, items, "adherence record")


def parse_session_record(item: Mapping[str, Any]) -> CompletionRecord:
    [record] = _parse_all(CompletionRecordPayload, [item], "session record")
    return record


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp that carries a UTC offset."""
    if value is None or value == "":
        return None
    try:
        return _TIMESTAMP.validate_python(value)
    except ValidationError as exc:
        raise InputParseError(f"Invalid timestamp {value!r}: {exc}") from exc


def build_state_config(
    *,
    metadata: Iterable[Mapping[str, Any]] | None = None,
    events: Iterable[Mapping[str, Any]] | None = None,
    adherence_records: Iterable[Mapping[str, Any]] | None = None,
    now: str | None = None,
    client_time_zone: str | None = None,
    study_start_event_id: str | None = None,
) -> AdherenceStateConfig:
    """Build an ``AdherenceStateConfig`` from raw payloads."""
    config = AdherenceStateConfig(
        metadata=parse_metadata(metadata),
        events=parse_events(events),
        adherence_records=parse_records(adherence_records),
        now=parse_timestamp(now),
        client_time_zone=client_time_zone or None,
        study_start_event_id=study_start_event_id or None,
    )
    logger.debug(
        "Parsed %d metadata entries, %d events, %d records",
        len(config.metadata),
        len(config.events),
        len(config.adherence_records),
    )
    return config
