"""Tests for AdherenceState: time zones, record lookup and memoization."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from conftest import LA, LA_ID, make_meta, make_state

from cap.domains.adherence.domain_logic.adherence_state import (
    AdherenceState,
    AdherenceStateConfig,
    day_key,
)
from cap.domains.adherence.domain_logic.models import (
    CompletionRecord,
    SessionCompletionState,
    TriggerEvent,
)

NOW = datetime(2021, 10, 15, 8, 0, tzinfo=timezone(timedelta(hours=-5)))
EVENT_TS1 = datetime(2021, 10, 5, 8, 0, tzinfo=timezone(timedelta(hours=-5)))
EVENT_TS2 = datetime(2021, 10, 10, 8, 0, tzinfo=timezone(timedelta(hours=-5)))


@pytest.fixture
def metadata():
    return [
        make_meta("ar1", "event1", 0, session_guid="guid1", session_name="session1",
                  session_symbol="1"),
        make_meta("ar2", "event2", 0, session_guid="guid2", session_name="session2",
                  session_symbol="2", study_burst_id="burst2", study_burst_num=2),
    ]


@pytest.fixture
def records():
    return [
        CompletionRecord("ar1", EVENT_TS1),
        CompletionRecord("ar2", EVENT_TS2),
    ]


@pytest.fixture
def state(metadata, records) -> AdherenceState:
    return make_state(
        metadata,
        [TriggerEvent("event1", EVENT_TS1), TriggerEvent("event2", EVENT_TS2)],
        records,
        now=NOW,
        study_start_event_id="event1",
    )


class TestConstruction:
    def test_empty_state(self):
        empty = AdherenceState(AdherenceStateConfig(now=NOW))
        assert empty.metadata == []
        assert empty.adherence_record("event1") is None
        assert empty.days_since_event("event1") is None
        assert empty.event_timestamp("event1") is None
        assert empty.event_stream("event1").by_day_entries == {}
        assert empty.calculate_adherence_percentage() == 100

    def test_empty_state_still_creates_days(self, metadata):
        empty = AdherenceState(AdherenceStateConfig(now=NOW))
        assert empty.event_stream_day(metadata[0]) is not None

    def test_inputs_exposed(self, state, metadata):
        assert state.metadata is metadata
        assert state.now == NOW
        assert state.now.tzinfo == LA
        assert state.client_time_zone == LA_ID
        assert state.study_start_event_id == "event1"
        assert state.stream_event_ids == ["event1", "event2"]

    def test_event_timestamps_in_state_zone(self, state):
        assert state.event_timestamp("event1") == EVENT_TS1
        assert state.event_timestamp("event1").tzinfo == LA
        assert state.event_timestamp(None) is None

    def test_days_since_event(self, state):
        assert state.days_since_event("event1") == 10
        assert state.days_since_event("event2") == 5

    def test_naive_now_treated_as_utc(self):
        naive = AdherenceState(AdherenceStateConfig(now=datetime(2021, 10, 15, 8, 0)))
        assert naive.zone == timezone.utc
        assert naive.now == datetime(2021, 10, 15, 8, 0, tzinfo=timezone.utc)


class TestTimeZone:
    def test_zone_from_client_time_zone(self, state):
        assert state.zone == LA

    def test_zone_from_now_offset(self, metadata):
        no_zone = make_state(metadata, now=NOW, client_time_zone=None)
        assert no_zone.zone == NOW.tzinfo
        assert no_zone.client_time_zone is None

    def test_unknown_zone_falls_back_to_now(self, metadata, caplog):
        with caplog.at_level(logging.WARNING):
            bad = make_state(metadata, now=NOW, client_time_zone="Mars/Olympus_Mons")
        assert bad.zone == NOW.tzinfo
        assert bad.client_time_zone is None
        assert "Mars/Olympus_Mons" in caplog.text


class TestRecords:
    def test_lookup_by_guid(self, state, records):
        assert state.adherence_record("ar1") is records[0]
        assert state.adherence_record("ar2") is records[1]

    def test_duplicate_instance_guids_tolerated(self, metadata):
        first = CompletionRecord("ar1", EVENT_TS1)
        second = CompletionRecord("ar1", EVENT_TS2)
        dup = make_state(metadata, records=[first, second], now=NOW)
        assert dup.adherence_record("ar1") is first
        assert dup.adherence_record("ar1", EVENT_TS2) is second
        assert dup.adherence_record("ar1", EVENT_TS1) is first

    def test_record_from_earlier_event_occurrence_not_used(self, metadata):
        earlier = CompletionRecord("ar1", EVENT_TS1)
        dup = make_state(metadata, records=[earlier], now=NOW)
        assert dup.adherence_record("ar1", EVENT_TS2) is None

    def test_record_without_event_timestamp_matches_any_occurrence(self, metadata):
        untimed = CompletionRecord("ar1")
        loose = make_state(metadata, records=[untimed], now=NOW)
        assert loose.adherence_record("ar1", EVENT_TS2) is untimed
        assert loose.adherence_record("ar1", EVENT_TS1) is untimed

    def test_exact_record_preferred_over_untimed(self, metadata):
        untimed = CompletionRecord("ar1")
        exact = CompletionRecord("ar1", EVENT_TS1)
        both = make_state(metadata, records=[untimed, exact], now=NOW)
        assert both.adherence_record("ar1", EVENT_TS1) is exact

    def test_earlier_finished_record_does_not_complete_current_window(self, metadata):
        earlier = CompletionRecord(
            "ar1", EVENT_TS1 - timedelta(days=30),
            started_on=EVENT_TS1 - timedelta(days=30),
            finished_on=EVENT_TS1 - timedelta(days=30) + timedelta(minutes=5),
        )
        moved = make_state(
            metadata, [TriggerEvent("event1", EVENT_TS1)], [earlier], now=EVENT_TS1 + timedelta(hours=1)
        )
        [window] = moved.event_stream("event1").windows()
        assert window.state is SessionCompletionState.UNSTARTED

    def test_current_record_follows_event_timestamp(self, state, metadata):
        assert state.has_current_record("ar1") is True
        stale = make_state(
            metadata, [TriggerEvent("event1", EVENT_TS2)], [CompletionRecord("ar1", EVENT_TS1)], now=NOW
        )
        assert stale.has_current_record("ar1") is False
        assert stale.has_current_record("unknown") is False

    def test_unscheduled_record_logged(self, metadata, caplog):
        with caplog.at_level(logging.WARNING):
            make_state(metadata, records=[CompletionRecord("orphan", EVENT_TS1)], now=NOW)
        assert "orphan" in caplog.text
        assert "no scheduled session" in caplog.text

    def test_scheduled_records_not_logged(self, metadata, records, caplog):
        with caplog.at_level(logging.WARNING):
            make_state(metadata, records=records, now=NOW)
        assert "no scheduled session" not in caplog.text


class TestMemoization:
    def test_event_stream_is_cached(self, state):
        stream = state.event_stream("event1")
        assert stream.start_event_id == "event1"
        assert stream.event_timestamp == EVENT_TS1
        assert state.event_stream("event1") is stream

    def test_event_stream_day_is_cached(self, state, metadata):
        day = state.event_stream_day(metadata[0])
        assert state.event_stream_day(metadata[0]) is day
        assert day.session_guid == "guid1"
        assert day.session_name == "session1"
        assert day.session_symbol == "1"
        assert day.start_event_id == "event1"
        assert day.study_burst_id is None
        assert day.study_burst_num is None

    def test_burst_fields_copied_to_day(self, state, metadata):
        day = state.event_stream_day(metadata[1])
        assert day.study_burst_id == "burst2"
        assert day.study_burst_num == 2

    def test_same_guid_under_two_events_gives_two_days(self, state):
        a = make_meta("shared", "event1", 3)
        b = make_meta("shared", "event2", 3)
        assert day_key(a) != day_key(b)
        assert state.event_stream_day(a) is not state.event_stream_day(b)

    def test_stream_uses_cached_days(self, state, metadata):
        stream = state.event_stream("event1")
        assert stream.by_day_entries[0] == [state.event_stream_day(metadata[0])]

    def test_caches_not_shared_between_states(self, metadata):
        one = make_state(metadata, now=NOW)
        two = make_state(metadata, now=NOW)
        assert one.event_stream("event1") is not two.event_stream("event1")


class TestAdherence:
    def test_percentage_over_all_streams(self, metadata):
        events = [TriggerEvent("event1", EVENT_TS1), TriggerEvent("event2", EVENT_TS2)]
        records = [CompletionRecord(
            "ar2", EVENT_TS2, started_on=EVENT_TS2, finished_on=EVENT_TS2 + timedelta(minutes=5)
        )]
        scored = make_state(metadata, events, records, now=NOW)
        # ar1 expired, ar2 completed
        states = [w.state for e in scored.stream_event_ids for w in scored.event_stream(e).windows()]
        assert states == [SessionCompletionState.EXPIRED, SessionCompletionState.COMPLETED]
        assert scored.calculate_adherence_percentage() == 50


class TestConfigMerge:
    def test_non_null_overrides_win(self, state):
        later = state.config.now + timedelta(days=1)
        merged = state.config.merged(now=later, client_time_zone=None)
        assert merged.now == later
        assert merged.client_time_zone == LA_ID
        assert merged.metadata is state.config.metadata
        assert merged.adherence_records is state.config.adherence_records
        assert merged.study_start_event_id == "event1"

    def test_unknown_field_rejected(self, state):
        with pytest.raises(TypeError):
            state.config.merged(participant="nobody")
