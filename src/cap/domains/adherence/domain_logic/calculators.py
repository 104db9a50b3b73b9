"""Adherence percentage and study progress calculators.

Deterministic folds over classified windows: no I/O, no clock reads.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Union

from cap.domains.adherence.domain_logic.models import (
    COMPLIANT_STATES,
    COUNTABLE_STATES,
    TERMINAL_STATES,
    EventStream,
    EventStreamDay,
    EventStreamWindow,
    ParticipantStudyProgress,
    SessionCompletionState,
)

if TYPE_CHECKING:
    from cap.domains.adherence.domain_logic.adherence_state import AdherenceState

WindowSource = Union[
    Mapping[int, list[EventStreamDay]],
    Iterable[Union[EventStream, EventStreamDay, EventStreamWindow]],
]


def collect_windows(source: WindowSource) -> list[EventStreamWindow]:
    """Flatten streams, days, windows or a day-slot map into a list of windows."""
    if isinstance(source, Mapping):
        return [w for days in source.values() for day in days for w in day.time_windows]
    windows: list[EventStreamWindow] = []
    for item in source:
        if isinstance(item, EventStream):
            windows.extend(item.windows())
        elif isinstance(item, EventStreamDay):
            windows.extend(item.time_windows)
        else:
            windows.append(item)
    return windows


def calculate_adherence_percentage(source: WindowSource) -> int:
    """Percent of countable windows that were completed, rounded down.

    Windows that are not applicable or not yet available are not counted.
    With nothing countable the participant is fully adherent (100).
    """
    countable = 0
    completed = 0
    for window in collect_windows(source):
        if window.state in COUNTABLE_STATES:
            countable += 1
            if window.state in COMPLIANT_STATES:
                completed += 1
    if countable == 0:
        return 100
    return (100 * completed) // countable


def calculate_progress(
    state: AdherenceState,
    source: WindowSource,
) -> ParticipantStudyProgress:
    """Classify how far the participant has progressed through the study.

    Args:
        state: Supplies completion records, the study-start event and ``now``.
        source: The streams, days or windows to assess.

    Returns:
        UNSTARTED when nothing applicable has been acted on or has lapsed,
        DONE when every applicable window is finished one way or another and
        the study has started, IN_PROGRESS otherwise.
    """
    windows = [
        w for w in collect_windows(source)
        if w.state is not SessionCompletionState.NOT_APPLICABLE
    ]
    if not windows:
        return ParticipantStudyProgress.UNSTARTED

    has_record = any(
        state.has_current_record(w.session_instance_guid)
        for w in windows
        if w.state in COUNTABLE_STATES
    )
    if not has_record and not any(w.state in TERMINAL_STATES for w in windows):
        return ParticipantStudyProgress.UNSTARTED

    if all(w.state in TERMINAL_STATES for w in windows):
        start_event_id = state.study_start_event_id
        if start_event_id is None:
            return ParticipantStudyProgress.DONE
        started_at = state.event_timestamp(start_event_id)
        if started_at is not None and started_at <= state.now:
            return ParticipantStudyProgress.DONE
    return ParticipantStudyProgress.IN_PROGRESS
