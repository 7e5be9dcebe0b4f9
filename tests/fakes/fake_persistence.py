"""Store fakes that fail on demand, for error-path tests."""

from __future__ import annotations

from credibility.errors import StorageError
from credibility.models import AssessmentProgress, AssessmentReport
from credibility.store import InMemoryProgressStore, InMemoryReportStore


class FailingReportStore(InMemoryReportStore):
    """Fails the first ``failures`` inserts, then behaves like the in-memory store."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def insert(self, report: AssessmentReport) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StorageError("report store unavailable")
        return super().insert(report)


class FlakyProgressStore(InMemoryProgressStore):
    """Fails the first ``failures`` updates that write batch results."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    def update(self, progress: AssessmentProgress, expected_version: int) -> AssessmentProgress:
        if progress.batch_results and self.failures > 0:
            self.failures -= 1
            raise StorageError("progress store write failed")
        return super().update(progress, expected_version)
