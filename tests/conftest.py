"""Shared test fixtures for CAP adherence tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAP_LOG_LEVEL", "info")
    monkeypatch.setenv("DEFAULT_STUDY_START_EVENT_ID", "timeline_retrieved")
    monkeypatch.setenv("DEFAULT_CLIENT_TIME_ZONE", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from cap.domains.adherence.domain_logic.adherence_state import (  # noqa: E402
    AdherenceState,
    AdherenceStateConfig,
)
from cap.domains.adherence.domain_logic.models import (  # noqa: E402
    CompletionRecord,
    SessionMetadata,
    TriggerEvent,
)

LA = ZoneInfo("America/Los_Angeles")
LA_ID = "America/Los_Angeles"


def make_meta(
    instance: str,
    event_id: str,
    start_day: int = 0,
    end_day: int | None = None,
    *,
    session_guid: str | None = None,
    session_name: str | None = None,
    expiration: timedelta | None = timedelta(days=1),
    **kwargs,
) -> SessionMetadata:
    """Create a scheduled window with sensible defaults."""
    return SessionMetadata(
        session_instance_guid=instance,
        session_guid=session_guid or f"{instance}Guid",
        time_window_guid=f"{instance}Win",
        start_event_id=event_id,
        start_day=start_day,
        end_day=start_day if end_day is None else end_day,
        session_name=session_name or instance,
        expiration=expiration,
        **kwargs,
    )


def make_state(
    metadata: list[SessionMetadata] | None = None,
    events: list[TriggerEvent] | None = None,
    records: list[CompletionRecord] | None = None,
    now: datetime | None = None,
    client_time_zone: str | None = LA_ID,
    study_start_event_id: str | None = "timeline_retrieved",
) -> AdherenceState:
    return AdherenceState(AdherenceStateConfig(
        metadata=metadata or [],
        events=events or [],
        adherence_records=records or [],
        now=now,
        client_time_zone=client_time_zone,
        study_start_event_id=study_start_event_id,
    ))


# ---------------------------------------------------------------------------
# Reference study: a four-week schedule with three study bursts
# ---------------------------------------------------------------------------

REFERENCE_NOW = datetime(2022, 3, 15, 1, 0, tzinfo=LA)

ENROLLMENT = datetime(2022, 3, 1, 16, 23, 15, 999000, tzinfo=LA)
BURST_1 = datetime(2022, 3, 8, 16, 23, 15, 999000, tzinfo=LA)
BURST_2 = datetime(2022, 3, 15, 16, 23, 15, 999000, tzinfo=LA)
BURST_3 = datetime(2022, 3, 22, 16, 23, 15, 999000, tzinfo=LA)

BURST_EVENT_IDS = [
    "study_burst:Study Burst:01",
    "study_burst:Study Burst:02",
    "study_burst:Study Burst:03",
]


def reference_metadata() -> list[SessionMetadata]:
    metadata = [
        make_meta(
            "initialSurvey", "timeline_retrieved", 1,
            session_guid="initialSurveyGuid", session_name="Initial Survey",
        ),
        make_meta(
            "baseline", "timeline_retrieved", 2,
            session_guid="baselineGuid", session_name="Baseline Tapping Test",
        ),
    ]
    for num, event_id in enumerate(BURST_EVENT_IDS, start=1):
        metadata.append(make_meta(
            f"burstTapping{num}", event_id, 0,
            session_guid="burstTappingGuid", session_name="Burst Tapping",
            study_burst_id="Study Burst", study_burst_num=num,
        ))
    metadata.append(make_meta(
        "finalSurvey", "timeline_retrieved", 24, 26,
        session_guid="finalSurveyGuid", session_name="Final Survey",
        expiration=timedelta(days=3),
    ))
    metadata.append(make_meta(
        "supplemental", "custom:event1", 0,
        session_guid="supplementalGuid", session_name="Supplemental Survey",
    ))
    return metadata


def reference_events() -> list[TriggerEvent]:
    return [
        TriggerEvent("timeline_retrieved", ENROLLMENT),
        TriggerEvent(BURST_EVENT_IDS[0], BURST_1),
        TriggerEvent(BURST_EVENT_IDS[1], BURST_2),
        TriggerEvent(BURST_EVENT_IDS[2], BURST_3),
        TriggerEvent("custom:event1", None),
    ]


def reference_records() -> list[CompletionRecord]:
    return [
        CompletionRecord(
            "initialSurvey", ENROLLMENT,
            started_on=datetime(2022, 3, 2, 9, 0, tzinfo=LA),
            finished_on=datetime(2022, 3, 2, 9, 10, tzinfo=LA),
        ),
        CompletionRecord(
            "baseline", ENROLLMENT,
            started_on=datetime(2022, 3, 3, 9, 0, tzinfo=LA),
            finished_on=datetime(2022, 3, 3, 9, 5, tzinfo=LA),
        ),
        CompletionRecord("burstTapping1", BURST_1, declined=True),
        CompletionRecord(
            "burstTapping2", BURST_2,
            started_on=datetime(2022, 3, 15, 0, 30, tzinfo=LA),
        ),
    ]


@pytest.fixture
def reference_state() -> AdherenceState:
    """Participant mid-way through week three of the reference study."""
    return make_state(
        reference_metadata(),
        reference_events(),
        reference_records(),
        now=REFERENCE_NOW,
    )
