"""Per-request adherence state.

``AdherenceState`` wraps one participant's schedule metadata, trigger events
and completion records at a fixed instant, resolves the time zone used for
calendar arithmetic, and memoizes the event streams and stream days built from
them. A state belongs to exactly one request; nothing is shared across
instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cap.domains.adherence.domain_logic.calculators import calculate_adherence_percentage
from cap.domains.adherence.domain_logic.event_stream import build_event_stream
from cap.domains.adherence.domain_logic.models import (
    CompletionRecord,
    EventStream,
    EventStreamDay,
    SessionMetadata,
    TriggerEvent,
)

logger = logging.getLogger(__name__)

DayKey = tuple[str, str, int]


@dataclass(frozen=True)
class AdherenceStateConfig:
    """Immutable inputs of an ``AdherenceState``."""

    metadata: list[SessionMetadata] = field(default_factory=list)
    events: list[TriggerEvent] = field(default_factory=list)
    adherence_records: list[CompletionRecord] = field(default_factory=list)
    now: datetime | None = None
    client_time_zone: str | None = None
    study_start_event_id: str | None = None

    def merged(self, **overrides) -> AdherenceStateConfig:
        """Return a copy where every non-None override replaces the current value."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown adherence state fields: {sorted(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _resolve_zone(client_time_zone: str | None, now: datetime | None) -> tuple[tzinfo, str | None]:
    """Pick the zone for date arithmetic: client zone, else now's offset, else UTC."""
    if client_time_zone:
        try:
            return ZoneInfo(client_time_zone), client_time_zone
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Ignoring unknown client time zone %r", client_time_zone)
    if now is not None and now.tzinfo is not None:
        return now.tzinfo, None
    return timezone.utc, None


def day_key(metadata: SessionMetadata) -> DayKey:
    """Windows sharing this key belong to the same stream day."""
    return (metadata.session_instance_guid, metadata.start_event_id, metadata.start_day)


class AdherenceState:
    """Memoizing facade over one participant's adherence inputs."""

    def __init__(self, config: AdherenceStateConfig | None = None) -> None:
        self.config = config or AdherenceStateConfig()
        self.zone, self.client_time_zone = _resolve_zone(
            self.config.client_time_zone, self.config.now
        )
        now = self.config.now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self.now = now.astimezone(self.zone)

        self._event_timestamps: dict[str, datetime] = {}
        for event in self.config.events:
            if event.timestamp is not None:
                self._event_timestamps[event.event_id] = event.timestamp.astimezone(self.zone)

        self._events_by_guid: dict[str, list[str]] = {}
        for meta in self.metadata:
            event_ids = self._events_by_guid.setdefault(meta.session_instance_guid, [])
            if meta.start_event_id not in event_ids:
                event_ids.append(meta.start_event_id)

        # The same instance guid can recur under different event timestamps;
        # the first record for each key wins.
        self._records: dict[tuple[str, datetime | None], CompletionRecord] = {}
        self._records_by_guid: dict[str, CompletionRecord] = {}
        for record in self.config.adherence_records:
            if record.instance_guid not in self._events_by_guid:
                logger.warning(
                    "Completion record for %r matches no scheduled session",
                    record.instance_guid,
                )
            self._records.setdefault((record.instance_guid, record.event_timestamp), record)
            self._records_by_guid.setdefault(record.instance_guid, record)

        self._streams: dict[str, EventStream] = {}
        self._days: dict[DayKey, EventStreamDay] = {}

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def metadata(self) -> list[SessionMetadata]:
        return self.config.metadata

    @property
    def study_start_event_id(self) -> str | None:
        return self.config.study_start_event_id

    @property
    def stream_event_ids(self) -> list[str]:
        """Distinct trigger event ids, in metadata order."""
        return list(dict.fromkeys(meta.start_event_id for meta in self.metadata))

    def event_timestamp(self, event_id: str | None) -> datetime | None:
        if event_id is None:
            return None
        return self._event_timestamps.get(event_id)

    def days_since_event(self, event_id: str) -> int | None:
        timestamp = self.event_timestamp(event_id)
        if timestamp is None:
            return None
        return (self.now.date() - timestamp.date()).days

    def adherence_record(
        self,
        instance_guid: str,
        event_timestamp: datetime | None = None,
    ) -> CompletionRecord | None:
        """Return the record for a session instance.

        With ``event_timestamp``, only a record made against that timestamp or
        one carrying no event timestamp at all matches; records left over from
        an earlier occurrence of the event are not. Without it, the first
        record seen for the instance guid is returned.
        """
        if event_timestamp is None:
            return self._records_by_guid.get(instance_guid)
        record = self._records.get((instance_guid, event_timestamp))
        if record is None:
            record = self._records.get((instance_guid, None))
        return record

    def has_current_record(self, instance_guid: str) -> bool:
        """True when the instance has a record for a current trigger event occurrence."""
        for event_id in self._events_by_guid.get(instance_guid, []):
            timestamp = self.event_timestamp(event_id)
            if timestamp is not None and self.adherence_record(instance_guid, timestamp) is not None:
                return True
        return False

    # ------------------------------------------------------------------
    # Memoized structures
    # ------------------------------------------------------------------

    def event_stream(self, event_id: str) -> EventStream:
        """Return the event stream for ``event_id``, building it on first use."""
        stream = self._streams.get(event_id)
        if stream is None:
            stream = build_event_stream(self, event_id)
            self._streams[event_id] = stream
            logger.debug("Built event stream %s with %d days", event_id, len(stream.by_day_entries))
        return stream

    def event_stream_day(self, metadata: SessionMetadata) -> EventStreamDay:
        """Return the stream day ``metadata`` belongs to, creating it on first use."""
        key = day_key(metadata)
        day = self._days.get(key)
        if day is None:
            day = EventStreamDay(
                session_guid=metadata.session_guid,
                session_name=metadata.session_name,
                session_symbol=metadata.session_symbol,
                start_event_id=metadata.start_event_id,
                study_burst_id=metadata.study_burst_id,
                study_burst_num=metadata.study_burst_num,
                start_day=metadata.start_day,
            )
            self._days[key] = day
        return day

    def calculate_adherence_percentage(self) -> int:
        """Adherence across every stream of this state (100 when nothing is countable)."""
        return calculate_adherence_percentage(
            [self.event_stream(event_id) for event_id in self.stream_event_ids]
        )
