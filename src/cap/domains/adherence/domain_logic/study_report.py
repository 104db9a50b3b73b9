"""Study-wide weekly adherence report.

Every event stream of a participant is merged onto one calendar that starts
at the local date of the earliest trigger event, then cut into 7-day weeks.
Each week gets display rows (one per session, trigger event and burst), its
day slots padded so every row has an entry on every day, and an adherence
percentage once the week has begun. The ``week_report`` is the week the
participant is evaluated against right now, with unresolved activities from
earlier weeks carried into its first day.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import TYPE_CHECKING

from cap.domains.adherence.domain_logic.calculators import (
    calculate_adherence_percentage,
    calculate_progress,
)
from cap.domains.adherence.domain_logic.completion_state import AdherenceInvariantError
from cap.domains.adherence.domain_logic.event_stream import INSTANCE as EVENT_STREAM_REPORTS
from cap.domains.adherence.domain_logic.models import (
    PENDING_STATES,
    DateRange,
    EventStreamAdherenceReport,
    EventStreamDay,
    NextActivity,
    ParticipantStudyProgress,
    StudyAdherenceReport,
    StudyReportWeek,
    WeeklyAdherenceReportRow,
)

if TYPE_CHECKING:
    from cap.domains.adherence.domain_logic.adherence_state import AdherenceState

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7


# ---------------------------------------------------------------------------
# Merge and bucket
# ---------------------------------------------------------------------------

def _local_date(state: AdherenceState, event_id: str | None) -> date | None:
    timestamp = state.event_timestamp(event_id)
    return timestamp.date() if timestamp is not None else None


def _append_unique(values: list[str], value: str | None) -> None:
    if value is not None and value not in values:
        values.append(value)


def merge_streams(
    state: AdherenceState,
    stream_report: EventStreamAdherenceReport,
    earliest_date: date | None,
    report: StudyAdherenceReport,
) -> dict[int, list[EventStreamDay]]:
    """Re-key every stream day by days since ``earliest_date``.

    Days of events without a timestamp are undated; their event ids and
    session names are recorded on ``report`` instead. The timeline holds
    copies, so the days memoized by ``state`` stay as built.
    """
    timeline: dict[int, list[EventStreamDay]] = {}
    for stream in stream_report.streams:
        for day in stream.days():
            if day.start_date is None or earliest_date is None:
                _append_unique(report.unset_event_ids, day.start_event_id)
                _append_unique(report.unscheduled_sessions, day.session_name)
                continue
            offset = (day.start_date - earliest_date).days
            merged = replace(day, time_windows=[replace(w) for w in day.time_windows])
            timeline.setdefault(offset, []).append(merged)
            report.event_timestamps[day.start_event_id] = state.event_timestamp(day.start_event_id)
    return timeline


def bucket_weeks(
    timeline: dict[int, list[EventStreamDay]],
    earliest_date: date,
) -> list[StudyReportWeek]:
    """Partition a merged timeline into weeks, ordered by week number."""
    weeks: dict[int, StudyReportWeek] = {}
    for offset in sorted(timeline):
        week, day_of_week = divmod(offset, DAYS_PER_WEEK)
        one_week = weeks.get(week)
        if one_week is None:
            one_week = StudyReportWeek(
                week_in_study=week + 1,
                start_date=earliest_date + timedelta(days=week * DAYS_PER_WEEK),
            )
            weeks[week] = one_week
        one_week.by_day_entries[day_of_week].extend(timeline[offset])
    return [weeks[week] for week in sorted(weeks)]


def week_offset(earliest_date: date | None, study_start_date: date | None) -> int:
    """Weeks to subtract so the week holding the study start is week 1."""
    if earliest_date is None or study_start_date is None or earliest_date >= study_start_date:
        return 0
    return (study_start_date - earliest_date).days // DAYS_PER_WEEK


def study_date_range(
    stream_report: EventStreamAdherenceReport,
    study_start_date: date | None,
) -> DateRange | None:
    """Date range of all streams, widened to include the study start date."""
    stream_dates = stream_report.date_range_of_all_streams
    if stream_dates is None:
        return None
    start_date, end_date = stream_dates.start_date, stream_dates.end_date
    if study_start_date is not None:
        start_date = min(start_date, study_start_date)
        end_date = max(end_date, study_start_date)
    return DateRange(start_date=start_date, end_date=end_date)


# ---------------------------------------------------------------------------
# Rows, labels and padding
# ---------------------------------------------------------------------------

def _row_sort_key(row: WeeklyAdherenceReportRow) -> tuple:
    # Burst rows first (nulls last), then by label; both case-insensitive.
    burst = row.study_burst_id
    return (burst is None, (burst or "").lower(), row.label.lower())


def row_for_day(day: EventStreamDay, week_in_study: int) -> WeeklyAdherenceReportRow:
    if day.study_burst_id is not None:
        burst = f"{day.study_burst_id} {day.study_burst_num}"
        searchable = f":{day.study_burst_id}:{burst}:Week {week_in_study}:{day.session_name}:"
        label = f"{burst} / Week {week_in_study} / {day.session_name}"
    else:
        searchable = f":{day.session_name}:Week {week_in_study}:"
        label = f"{day.session_name} / Week {week_in_study}"
    return WeeklyAdherenceReportRow(
        label=label,
        searchable_label=searchable,
        session_guid=day.session_guid,
        start_event_id=day.start_event_id,
        session_name=day.session_name,
        session_symbol=day.session_symbol,
        study_burst_id=day.study_burst_id,
        study_burst_num=day.study_burst_num,
        week_in_study=week_in_study,
    )


def _find_or_create_day(
    days: list[EventStreamDay],
    row: WeeklyAdherenceReportRow,
) -> EventStreamDay:
    """Return the day in a slot that belongs to ``row``, or a placeholder.

    Placeholders (no session) are never matched. A session triggered by two
    events yields two rows, so both the session and the event must match. When
    a slot holds several days for the row (a carried-over day next to the
    same session's current day) their windows are folded into the first.
    """
    matches = [
        day for day in days
        if day.session_guid is not None
        and day.session_guid == row.session_guid
        and day.start_event_id == row.start_event_id
    ]
    if not matches:
        return EventStreamDay()
    first = matches[0]
    for extra in matches[1:]:
        first.time_windows.extend(extra.time_windows)
    return first


def calculate_rows_and_labels(week: StudyReportWeek) -> None:
    """Recompute a week's rows and labels, then pad every day slot to the rows.

    Safe to run twice on the same week: placeholders from an earlier pass are
    discarded and recreated.
    """
    rows: dict[WeeklyAdherenceReportRow, None] = {}
    for slot in sorted(week.by_day_entries):
        for day in week.by_day_entries[slot]:
            if day.is_empty:
                continue
            rows.setdefault(row_for_day(day, week.week_in_study), None)
    row_list = sorted(rows, key=_row_sort_key)

    for slot in range(DAYS_PER_WEEK):
        days = week.by_day_entries.get(slot, [])
        padded = []
        for row in row_list:
            day = _find_or_create_day(days, row)
            if day.start_date is None:
                day.start_date = week.start_date + timedelta(days=slot)
            padded.append(day)
        week.by_day_entries[slot] = padded
    if len(week.by_day_entries) != DAYS_PER_WEEK:
        raise AdherenceInvariantError(
            f"Week {week.week_in_study} has {len(week.by_day_entries)} day slots"
        )

    for row in row_list:
        _append_unique(week.searchable_labels, row.searchable_label)
    week.rows = row_list


def clear_unused_fields(week: StudyReportWeek, today: date) -> None:
    """Drop stream-internal fields and mark the days that fall on ``today``."""
    for day in week.days():
        day.study_burst_id = None
        day.study_burst_num = None
        day.session_name = None
        day.week = None
        day.start_day = None
        day.today = day.start_date == today
        for window in day.time_windows:
            window.end_day = None


# ---------------------------------------------------------------------------
# Next activity and the week report
# ---------------------------------------------------------------------------

def find_next_activity(weeks: list[StudyReportWeek], today: date) -> NextActivity | None:
    """First scheduled day in the first week that starts after ``today``."""
    for week in weeks:
        if week.start_date <= today:
            continue
        for day in week.days():
            if day.is_empty:
                continue
            day.week = week.week_in_study
            return NextActivity(
                session_guid=day.session_guid,
                session_name=day.session_name,
                session_symbol=day.session_symbol,
                week_in_study=week.week_in_study,
                start_date=day.start_date,
                study_burst_id=day.study_burst_id,
                study_burst_num=day.study_burst_num,
            )
    return None


def create_week_report(
    progression: ParticipantStudyProgress,
    weeks: list[StudyReportWeek],
    current_week: StudyReportWeek | None,
    anchor_date: date | None,
    today: date,
) -> StudyReportWeek:
    """Build the week the participant is evaluated against today.

    Args:
        progression: Study-wide progress; adherence is left unset when UNSTARTED.
        weeks: All report weeks, ordered by start date.
        current_week: The week containing today, if the schedule has one.
        anchor_date: Day one of week one when there is no current week.
        today: The participant's local date.

    Returns:
        A standalone week (never one of ``weeks``) with every still-pending
        window from earlier weeks copied into its first day.
    """
    if current_week is not None:
        week_report = copy.deepcopy(current_week)
    elif anchor_date is not None:
        week = (today - anchor_date).days // DAYS_PER_WEEK
        week_report = StudyReportWeek(
            week_in_study=week + 1,
            start_date=anchor_date + timedelta(days=week * DAYS_PER_WEEK),
        )
    else:
        week_report = StudyReportWeek(week_in_study=1, start_date=today)

    carry_overs: list[EventStreamDay] = []
    for one_week in weeks:
        if one_week.start_date >= week_report.start_date:
            break
        for day in one_week.days():
            pending = [w for w in day.time_windows if w.state in PENDING_STATES]
            if pending:
                carry_over = replace(day, time_windows=[replace(w) for w in pending])
                week_report.by_day_entries[0].append(carry_over)
                carry_overs.append(carry_over)

    if carry_overs:
        logger.debug(
            "Carrying %d unresolved days into week %d",
            len(carry_overs),
            week_report.week_in_study,
        )
        calculate_rows_and_labels(week_report)

    week_report.adherence_percent = None
    if progression is not ParticipantStudyProgress.UNSTARTED:
        week_report.adherence_percent = calculate_adherence_percentage(week_report.by_day_entries)
    clear_unused_fields(week_report, today)
    # Carried-over days keep their scheduled date but display in today's column.
    for carry_over in carry_overs:
        carry_over.today = week_report.start_date == today
    return week_report


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class StudyAdherenceReportGenerator:
    """Builds the whole-study weekly adherence report for one participant."""

    def generate(self, state: AdherenceState) -> StudyAdherenceReport:
        stream_report = EVENT_STREAM_REPORTS.generate(state)
        today = state.now.date()

        earliest_date = _local_date(state, stream_report.earliest_event_id)
        # May follow earliest_date when a schedule starts sessions before the
        # study start; those weeks number zero or below.
        study_start_date = _local_date(state, state.study_start_event_id)

        report = StudyAdherenceReport()
        timeline = merge_streams(state, stream_report, earliest_date, report)
        weeks = bucket_weeks(timeline, earliest_date) if earliest_date is not None else []

        report.date_range = study_date_range(stream_report, study_start_date)
        report.progression = calculate_progress(state, timeline)
        if report.progression is not ParticipantStudyProgress.UNSTARTED:
            report.adherence_percent = calculate_adherence_percentage(timeline)

        offset = week_offset(earliest_date, study_start_date)
        current_week = None
        for week in weeks:
            week.week_in_study -= offset
            calculate_rows_and_labels(week)
            if week.contains(today):
                current_week = week
            # Future weeks have no adherence yet.
            if week.start_date <= today:
                week.adherence_percent = calculate_adherence_percentage(week.by_day_entries)

        if current_week is None:
            report.next_activity = find_next_activity(weeks, today)

        anchor_date = study_start_date or earliest_date
        report.week_report = create_week_report(
            report.progression, weeks, current_week, anchor_date, today
        )
        for week in weeks:
            clear_unused_fields(week, today)
        report.weeks = weeks

        logger.debug(
            "Study report: %d weeks, progression=%s, adherence=%s, unset events=%s",
            len(weeks),
            report.progression.name,
            report.adherence_percent,
            report.unset_event_ids,
        )
        return report


INSTANCE = StudyAdherenceReportGenerator()
