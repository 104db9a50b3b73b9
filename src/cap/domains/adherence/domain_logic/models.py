"""Data models for participant adherence computation.

Inputs (schedule metadata, trigger events, completion records) are plain
dataclasses supplied by the caller. Outputs (event streams, weekly reports)
are built fresh for every request and serialize to JSON-safe dicts via
``to_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any


def _iso(value: date | time | None) -> str | None:
    return value.isoformat() if value is not None else None


def _name(value: Enum | None) -> str | None:
    return value.name if value is not None else None


# ---------------------------------------------------------------------------
# Classification enums and state sets
# ---------------------------------------------------------------------------

class SessionCompletionState(Enum):
    """Completion state of one time window of one session instance."""

    NOT_APPLICABLE = "not_applicable"        # trigger event has no timestamp
    NOT_YET_AVAILABLE = "not_yet_available"  # window has not opened yet
    UNSTARTED = "unstarted"
    STARTED = "started"
    COMPLETED = "completed"
    ABANDONED = "abandoned"                  # started, window closed before finishing
    EXPIRED = "expired"                      # window closed without being started
    DECLINED = "declined"


class ParticipantStudyProgress(Enum):
    """Where a participant is in the study as a whole."""

    UNSTARTED = "unstarted"
    IN_PROGRESS = "in_progress"
    DONE = "done"


COMPLIANT_STATES = frozenset({SessionCompletionState.COMPLETED})

NONCOMPLIANT_STATES = frozenset({
    SessionCompletionState.ABANDONED,
    SessionCompletionState.EXPIRED,
    SessionCompletionState.DECLINED,
})

# Still actionable by the participant; these carry over into the current week.
PENDING_STATES = frozenset({
    SessionCompletionState.UNSTARTED,
    SessionCompletionState.STARTED,
})

COUNTABLE_STATES = COMPLIANT_STATES | NONCOMPLIANT_STATES | PENDING_STATES

TERMINAL_STATES = COMPLIANT_STATES | NONCOMPLIANT_STATES


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionMetadata:
    """One scheduled time window of one session instance.

    ``start_day`` and ``end_day`` are day offsets from the local date of the
    trigger event named by ``start_event_id``. The window opens at
    ``start_time`` on its start date and closes ``expiration`` later; a window
    without an expiration closes at the end of its end date.
    """

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


@dataclass(frozen=True)
class TriggerEvent:
    """A participant event that anchors a schedule (enrollment, burst start, ...)."""

    event_id: str
    timestamp: datetime | None = None
    record_count: int | None = None


@dataclass
class CompletionRecord:
    """A participant's record of starting, finishing or declining a session instance."""

    instance_guid: str
    event_timestamp: datetime | None = None
    started_on: datetime | None = None
    finished_on: datetime | None = None
    declined: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_guid": self.instance_guid,
            "event_timestamp": _iso(self.event_timestamp),
            "started_on": _iso(self.started_on),
            "finished_on": _iso(self.finished_on),
            "declined": self.declined,
        }


# ---------------------------------------------------------------------------
# Event streams
# ---------------------------------------------------------------------------

@dataclass
class EventStreamWindow:
    """A dated, classified time window."""

    session_instance_guid: str
    time_window_guid: str
    state: SessionCompletionState = SessionCompletionState.NOT_APPLICABLE
    start_date: date | None = None
    start_time: time | None = None
    end_date: date | None = None
    end_time: time | None = None
    end_day: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_instance_guid": self.session_instance_guid,
            "time_window_guid": self.time_window_guid,
            "state": self.state.name,
            "start_date": _iso(self.start_date),
            "start_time": _iso(self.start_time),
            "end_date": _iso(self.end_date),
            "end_time": _iso(self.end_time),
            "end_day": self.end_day,
        }


@dataclass
class EventStreamDay:
    """All windows of one session instance that start on the same day of one stream."""

    session_guid: str | None = None
    session_name: str | None = None
    session_symbol: str | None = None
    start_event_id: str | None = None
    study_burst_id: str | None = None
    study_burst_num: int | None = None
    start_day: int | None = None
    start_date: date | None = None
    week: int | None = None
    today: bool = False
    time_windows: list[EventStreamWindow] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.time_windows

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_guid": self.session_guid,
            "session_name": self.session_name,
            "session_symbol": self.session_symbol,
            "start_event_id": self.start_event_id,
            "study_burst_id": self.study_burst_id,
            "study_burst_num": self.study_burst_num,
            "start_day": self.start_day,
            "start_date": _iso(self.start_date),
            "week": self.week,
            "today": self.today,
            "time_windows": [w.to_dict() for w in self.time_windows],
        }


@dataclass
class EventStream:
    """The schedule of one trigger event projected onto calendar days."""

    start_event_id: str
    event_timestamp: datetime | None = None
    days_since_event: int | None = None
    study_burst_id: str | None = None
    study_burst_num: int | None = None
    by_day_entries: dict[int, list[EventStreamDay]] = field(default_factory=dict)

    def add_entry(self, start_day: int, day: EventStreamDay) -> None:
        entries = self.by_day_entries.setdefault(start_day, [])
        if not any(existing is day for existing in entries):
            entries.append(day)

    def days(self) -> list[EventStreamDay]:
        return [day for start_day in sorted(self.by_day_entries) for day in self.by_day_entries[start_day]]

    def windows(self) -> list[EventStreamWindow]:
        return [window for day in self.days() for window in day.time_windows]

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_event_id": self.start_event_id,
            "event_timestamp": _iso(self.event_timestamp),
            "days_since_event": self.days_since_event,
            "study_burst_id": self.study_burst_id,
            "study_burst_num": self.study_burst_num,
            "by_day_entries": {
                str(start_day): [day.to_dict() for day in days]
                for start_day, days in sorted(self.by_day_entries.items())
            },
        }


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date

    def to_dict(self) -> dict[str, str]:
        return {"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()}


@dataclass(frozen=True)
class DayRange:
    min: int
    max: int

    def to_dict(self) -> dict[str, int]:
        return {"min": self.min, "max": self.max}


@dataclass
class EventStreamAdherenceReport:
    """Adherence of one participant across each trigger event's schedule."""

    timestamp: datetime
    client_time_zone: str | None = None
    adherence_percent: int | None = None
    progression: ParticipantStudyProgress = ParticipantStudyProgress.UNSTARTED
    day_range_of_all_streams: DayRange | None = None
    date_range_of_all_streams: DateRange | None = None
    earliest_event_id: str | None = None
    streams: list[EventStream] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "client_time_zone": self.client_time_zone,
            "adherence_percent": self.adherence_percent,
            "progression": self.progression.name,
            "day_range_of_all_streams": (
                self.day_range_of_all_streams.to_dict() if self.day_range_of_all_streams else None
            ),
            "date_range_of_all_streams": (
                self.date_range_of_all_streams.to_dict() if self.date_range_of_all_streams else None
            ),
            "earliest_event_id": self.earliest_event_id,
            "streams": [stream.to_dict() for stream in self.streams],
        }


# ---------------------------------------------------------------------------
# Study-wide weekly report
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeeklyAdherenceReportRow:
    """One (session, trigger event, burst) line of a weekly report."""

    label: str
    searchable_label: str
    session_guid: str | None
    start_event_id: str | None
    session_name: str | None
    session_symbol: str | None = None
    study_burst_id: str | None = None
    study_burst_num: int | None = None
    week_in_study: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "searchable_label": self.searchable_label,
            "session_guid": self.session_guid,
            "start_event_id": self.start_event_id,
            "session_name": self.session_name,
            "session_symbol": self.session_symbol,
            "study_burst_id": self.study_burst_id,
            "study_burst_num": self.study_burst_num,
            "week_in_study": self.week_in_study,
        }


@dataclass
class StudyReportWeek:
    """Seven day slots of the study timeline, one entry per row per day once padded."""

    week_in_study: int
    start_date: date
    by_day_entries: dict[int, list[EventStreamDay]] = field(
        default_factory=lambda: {day: [] for day in range(7)}
    )
    rows: list[WeeklyAdherenceReportRow] = field(default_factory=list)
    searchable_labels: list[str] = field(default_factory=list)
    adherence_percent: int | None = None

    @property
    def end_date(self) -> date:
        return self.start_date + timedelta(days=6)

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def days(self) -> list[EventStreamDay]:
        return [day for slot in sorted(self.by_day_entries) for day in self.by_day_entries[slot]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "week_in_study": self.week_in_study,
            "start_date": self.start_date.isoformat(),
            "adherence_percent": self.adherence_percent,
            "searchable_labels": list(self.searchable_labels),
            "rows": [row.to_dict() for row in self.rows],
            "by_day_entries": {
                str(slot): [day.to_dict() for day in days]
                for slot, days in sorted(self.by_day_entries.items())
            },
        }


@dataclass(frozen=True)
class NextActivity:
    """The first upcoming session when nothing is scheduled this week."""

    session_guid: str | None
    session_name: str | None
    session_symbol: str | None
    week_in_study: int
    start_date: date | None
    study_burst_id: str | None = None
    study_burst_num: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_guid": self.session_guid,
            "session_name": self.session_name,
            "session_symbol": self.session_symbol,
            "week_in_study": self.week_in_study,
            "start_date": _iso(self.start_date),
            "study_burst_id": self.study_burst_id,
            "study_burst_num": self.study_burst_num,
        }


@dataclass
class StudyAdherenceReport:
    """Whole-study adherence, bucketed into weeks, plus this week's detail."""

    progression: ParticipantStudyProgress = ParticipantStudyProgress.UNSTARTED
    adherence_percent: int | None = None
    date_range: DateRange | None = None
    weeks: list[StudyReportWeek] = field(default_factory=list)
    week_report: StudyReportWeek | None = None
    next_activity: NextActivity | None = None
    event_timestamps: dict[str, datetime] = field(default_factory=dict)
    unset_event_ids: list[str] = field(default_factory=list)
    unscheduled_sessions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "progression": _name(self.progression),
            "adherence_percent": self.adherence_percent,
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "weeks": [week.to_dict() for week in self.weeks],
            "week_report": self.week_report.to_dict() if self.week_report else None,
            "next_activity": self.next_activity.to_dict() if self.next_activity else None,
            "event_timestamps": {
                event_id: ts.isoformat() for event_id, ts in self.event_timestamps.items()
            },
            "unset_event_ids": list(self.unset_event_ids),
            "unscheduled_sessions": list(self.unscheduled_sessions),
        }
