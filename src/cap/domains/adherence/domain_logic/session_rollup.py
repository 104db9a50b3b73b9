"""Roll assessment-level completion records up into one session-level record."""

from __future__ import annotations

from datetime import datetime

from cap.domains.adherence.domain_logic.models import CompletionRecord


class SessionRecordRollup:
    """Accumulates the records of a session's assessments.

    A session with ``expected_count`` assessments is finished once that many
    assessment records are finished, and declined when every record added
    was declined.
    """

    def __init__(self, expected_count: int) -> None:
        self.expected_count = expected_count
        self.earliest: datetime | None = None
        self.latest: datetime | None = None
        self._added = 0
        self._started = 0
        self._finished = 0
        self._declined = 0

    def add(self, record: CompletionRecord) -> None:
        self._added += 1
        if record.declined:
            self._declined += 1
        if record.started_on is not None:
            self._started += 1
            if self.earliest is None or record.started_on < self.earliest:
                self.earliest = record.started_on
        if record.finished_on is not None:
            self._finished += 1
            if self.latest is None or record.finished_on > self.latest:
                self.latest = record.finished_on

    @property
    def is_unstarted(self) -> bool:
        return self._started == 0 and self._finished == 0

    @property
    def is_finished(self) -> bool:
        return self._finished >= self.expected_count

    @property
    def is_declined(self) -> bool:
        return self._added > 0 and self._declined == self._added

    def update_session_record(self, record: CompletionRecord) -> bool:
        """Write the rolled-up timestamps onto ``record``.

        Returns:
            True if any field of ``record`` changed.
        """
        before = (record.started_on, record.finished_on, record.declined)
        if self.is_unstarted:
            record.started_on = None
            record.finished_on = None
        elif self.is_finished:
            record.started_on = self.earliest
            record.finished_on = self.latest
        else:
            record.started_on = self.earliest
            record.finished_on = None
        record.declined = self.is_declined
        return (record.started_on, record.finished_on, record.declined) != before
