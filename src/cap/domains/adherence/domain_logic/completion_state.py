"""Completion-state classifier.

Pure functions: given one scheduled window, the timestamp of its trigger
event, the current instant and the participant's completion record (if any),
decide the window's ``SessionCompletionState``. Identical inputs always
produce identical outputs.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, tzinfo

from cap.domains.adherence.domain_logic.models import (
    CompletionRecord,
    EventStreamWindow,
    SessionCompletionState,
    SessionMetadata,
)


class AdherenceInvariantError(Exception):
    """Raised when adherence computation reaches a state its inputs cannot produce."""


def window_bounds(
    metadata: SessionMetadata,
    event_timestamp: datetime,
    zone: tzinfo,
) -> tuple[datetime, datetime | None]:
    """Return the instants a window opens and closes, in ``zone``.

    A window closes ``expiration`` after it opens; without an expiration it
    closes at the end of its end day. Persistent windows never close.
    """
    event_date = event_timestamp.astimezone(zone).date()
    start_date = event_date + timedelta(days=metadata.start_day)
    opens = datetime.combine(start_date, metadata.start_time, tzinfo=zone)
    if metadata.persistent:
        return opens, None
    if metadata.expiration is None:
        day_after_end = event_date + timedelta(days=metadata.end_day + 1)
        return opens, datetime.combine(day_after_end, time(0, 0), tzinfo=zone)
    return opens, opens + metadata.expiration


def classify(
    metadata: SessionMetadata,
    event_timestamp: datetime | None,
    now: datetime,
    record: CompletionRecord | None,
    zone: tzinfo,
) -> SessionCompletionState:
    """Classify one window.

    Args:
        metadata: The scheduled window.
        event_timestamp: When the window's trigger event happened, or None
            if the participant never experienced it.
        now: The evaluation instant (timezone-aware).
        record: The participant's completion record for the session
            instance, if any.
        zone: Time zone in which calendar days are counted.

    Returns:
        The window's completion state.
    """
    if now.tzinfo is None:
        raise AdherenceInvariantError("Evaluation time must be timezone-aware")
    if event_timestamp is None:
        return SessionCompletionState.NOT_APPLICABLE
    if record is not None and record.declined:
        return SessionCompletionState.DECLINED

    opens, closes = window_bounds(metadata, event_timestamp, zone)
    if now < opens:
        return SessionCompletionState.NOT_YET_AVAILABLE
    closed = closes is not None and now > closes

    if record is None:
        return SessionCompletionState.EXPIRED if closed else SessionCompletionState.UNSTARTED
    if record.finished_on is not None:
        return SessionCompletionState.COMPLETED
    if record.started_on is not None:
        return SessionCompletionState.ABANDONED if closed else SessionCompletionState.STARTED
    return SessionCompletionState.EXPIRED if closed else SessionCompletionState.UNSTARTED


def resolve_window(
    metadata: SessionMetadata,
    event_timestamp: datetime | None,
    now: datetime,
    record: CompletionRecord | None,
    zone: tzinfo,
) -> EventStreamWindow:
    """Build the dated ``EventStreamWindow`` for one scheduled window."""
    window = EventStreamWindow(
        session_instance_guid=metadata.session_instance_guid,
        time_window_guid=metadata.time_window_guid,
        state=classify(metadata, event_timestamp, now, record, zone),
        end_day=metadata.end_day,
    )
    if event_timestamp is None:
        return window

    event_date = event_timestamp.astimezone(zone).date()
    opens, closes = window_bounds(metadata, event_timestamp, zone)
    window.start_date = opens.date()
    window.start_time = metadata.start_time
    window.end_date = event_date + timedelta(days=metadata.end_day)
    if metadata.expiration is not None:
        window.end_time = closes.time()
    return window
