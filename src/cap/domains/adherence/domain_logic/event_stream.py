"""Event timeline builder and the per-event-stream adherence report.

A trigger event's schedule is projected onto calendar days anchored at the
event's local date. Each scheduled window is classified and grouped into an
``EventStreamDay`` keyed by its start day.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cap.domains.adherence.domain_logic.calculators import (
    calculate_adherence_percentage,
    calculate_progress,
)
from cap.domains.adherence.domain_logic.completion_state import resolve_window
from cap.domains.adherence.domain_logic.models import (
    DateRange,
    DayRange,
    EventStream,
    EventStreamAdherenceReport,
    ParticipantStudyProgress,
)

if TYPE_CHECKING:
    from cap.domains.adherence.domain_logic.adherence_state import AdherenceState

logger = logging.getLogger(__name__)


def build_event_stream(state: AdherenceState, event_id: str) -> EventStream:
    """Build the stream of every non-persistent window triggered by ``event_id``.

    An event without a timestamp still produces a stream; its windows are
    ``NOT_APPLICABLE`` and undated.
    """
    event_timestamp = state.event_timestamp(event_id)
    stream = EventStream(
        start_event_id=event_id,
        event_timestamp=event_timestamp,
        days_since_event=state.days_since_event(event_id),
    )
    for meta in state.metadata:
        if meta.start_event_id != event_id or meta.persistent:
            continue
        if meta.study_burst_id is not None:
            stream.study_burst_id = meta.study_burst_id
            stream.study_burst_num = meta.study_burst_num

        record = state.adherence_record(meta.session_instance_guid, event_timestamp)
        window = resolve_window(meta, event_timestamp, state.now, record, state.zone)

        day = state.event_stream_day(meta)
        day.start_date = window.start_date
        day.time_windows.append(window)
        stream.add_entry(meta.start_day, day)
    return stream


class EventStreamAdherenceReportGenerator:
    """Adherence of one participant, organized by trigger event."""

    def generate(self, state: AdherenceState) -> EventStreamAdherenceReport:
        streams = []
        for event_id in state.stream_event_ids:
            stream = state.event_stream(event_id)
            if stream.by_day_entries:
                streams.append(stream)

        progression = calculate_progress(state, streams)
        report = EventStreamAdherenceReport(
            timestamp=state.now,
            client_time_zone=state.client_time_zone,
            progression=progression,
            streams=streams,
        )
        if progression is not ParticipantStudyProgress.UNSTARTED:
            report.adherence_percent = calculate_adherence_percentage(streams)

        streamed = {stream.start_event_id for stream in streams}
        scheduled = [
            meta for meta in state.metadata
            if meta.start_event_id in streamed and not meta.persistent
        ]
        if scheduled:
            report.day_range_of_all_streams = DayRange(
                min=min(meta.start_day for meta in scheduled),
                max=max(meta.end_day for meta in scheduled),
            )

        windows = [w for stream in streams for w in stream.windows() if w.start_date is not None]
        if windows:
            report.date_range_of_all_streams = DateRange(
                start_date=min(w.start_date for w in windows),
                end_date=max(w.end_date for w in windows),
            )

        timed = [s for s in streams if s.event_timestamp is not None]
        if timed:
            report.earliest_event_id = min(timed, key=lambda s: s.event_timestamp).start_event_id

        logger.debug(
            "Event stream report: %d streams, progression=%s, adherence=%s",
            len(streams),
            progression.name,
            report.adherence_percent,
        )
        return report


INSTANCE = EventStreamAdherenceReportGenerator()
