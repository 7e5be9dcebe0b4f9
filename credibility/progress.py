"""Resumable progress for one (document, user) assessment.

State machine: absent -> processing -> completed, or processing -> error.

Every change goes through a versioned store update, so two workers racing on
the same key cannot both succeed; the loser gets ``ConcurrentBatchError``
instead of double counting. A batch holds a lease while it runs; a lease older
than ``lease_seconds`` is considered abandoned and may be reclaimed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from credibility.config import BATCH_LEASE_S
from credibility.errors import ConcurrentBatchError, FinalizationError
from credibility.models import (
    AssessmentProgress,
    AssessmentReport,
    ProgressStatus,
    QuestionEvaluation,
    Questionnaire,
    utcnow,
)
from credibility.scoring import aggregate, finalize
from credibility.store import ProgressStore, ReportStore

log = logging.getLogger(__name__)


def _percentage(processed: int, total: int) -> int:
    return min(100, int(processed * 100 / total + 0.5)) if total else 0


def synthesize_report(
    progress: AssessmentProgress,
    questionnaire: Questionnaire | None = None,
    *,
    company_name: str = "Document Assessment",
    document_truncated: bool = False,
) -> AssessmentReport:
    """Aggregate every recorded evaluation into the final, immutable report."""
    sections = aggregate(progress.batch_results, questionnaire)
    verdict = finalize(sections)
    # Stable per run so a retried finalization cannot create a second report.
    report_id = uuid.uuid5(
        uuid.NAMESPACE_URL,
        f"{progress.document_id}/{progress.user_id}/{progress.created_at.isoformat()}",
    ).hex
    return AssessmentReport(
        report_id=report_id,
        document_id=progress.document_id,
        user_id=progress.user_id,
        company_name=company_name,
        sections=sections,
        total_score=verdict.total_score,
        max_possible_score=verdict.max_possible_score,
        credibility_score=verdict.credibility_score,
        overall_result=verdict.overall_result,
        overall_score=verdict.overall_score,
        average_yes_percentage=verdict.average_yes_percentage,
        completeness=verdict.completeness,
        red_flag_triggered=verdict.red_flag_triggered,
        red_flag_questions=verdict.red_flag_questions,
        reasoning=verdict.reasoning,
        document_truncated=document_truncated,
        questionnaire_version=questionnaire.version if questionnaire else "1.0",
    )


class ProgressTracker:
    def __init__(
        self,
        progress_store: ProgressStore,
        report_store: ReportStore,
        *,
        lease_seconds: float = BATCH_LEASE_S,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._progress = progress_store
        self._reports = report_store
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    @property
    def reports(self) -> ReportStore:
        return self._reports

    def get(self, document_id: str, user_id: str) -> AssessmentProgress | None:
        return self._progress.get(document_id, user_id)

    def start(
        self,
        document_id: str,
        user_id: str,
        *,
        total_questions: int,
        total_batches: int,
    ) -> AssessmentProgress:
        progress = self._progress.get(document_id, user_id)
        if progress is None:
            try:
                progress = self._progress.insert(
                    AssessmentProgress(
                        document_id=document_id,
                        user_id=user_id,
                        total_questions=total_questions,
                        total_batches=total_batches,
                    )
                )
                log.info(
                    "Created progress for document %s (%d questions, %d batches)",
                    document_id,
                    total_questions,
                    total_batches,
                )
                return progress
            except ConcurrentBatchError:
                progress = self._progress.get(document_id, user_id)
                if progress is None:
                    raise

        changes: dict = {}
        if progress.total_questions == 0 and total_questions:
            changes.update(total_questions=total_questions, total_batches=total_batches)
        elif progress.total_questions != total_questions:
            log.warning(
                "Questionnaire size changed for document %s: stored %d, now %d",
                document_id,
                progress.total_questions,
                total_questions,
            )
        if progress.status is ProgressStatus.ERROR:
            log.info("Resuming document %s after error: %s", document_id, progress.error_message)
            changes.update(status=ProgressStatus.PROCESSING, error_message=None)
        if changes:
            progress = self._progress.update(
                progress.model_copy(update=changes), expected_version=progress.version
            )
        return progress

    def _lease_active(self, progress: AssessmentProgress) -> bool:
        if progress.in_flight_batch is None or progress.lease_started_at is None:
            return False
        return self._clock() - progress.lease_started_at < self._lease

    def begin_batch(self, progress: AssessmentProgress, batch_index: int) -> AssessmentProgress:
        if self._lease_active(progress):
            raise ConcurrentBatchError(
                f"Batch {progress.in_flight_batch} is already in flight for document "
                f"{progress.document_id}; refusing batch {batch_index}."
            )
        if progress.in_flight_batch is not None:
            log.warning(
                "Reclaiming stale lease on batch %d for document %s",
                progress.in_flight_batch,
                progress.document_id,
            )
        return self._progress.update(
            progress.model_copy(
                update={"in_flight_batch": batch_index, "lease_started_at": self._clock()}
            ),
            expected_version=progress.version,
        )

    def release(self, progress: AssessmentProgress) -> AssessmentProgress:
        """Drop the lease after a failed batch so the same index can be retried."""
        return self._progress.update(
            progress.model_copy(update={"in_flight_batch": None, "lease_started_at": None}),
            expected_version=progress.version,
        )

    def record_batch(
        self,
        progress: AssessmentProgress,
        batch_index: int,
        results: list[QuestionEvaluation],
    ) -> AssessmentProgress:
        if batch_index in progress.completed_batches:
            log.info("Batch %d already recorded for document %s", batch_index, progress.document_id)
            return progress
        processed = progress.processed_questions + len(results)
        updated = progress.model_copy(
            update={
                "current_batch": batch_index + 1,
                "processed_questions": processed,
                "progress_percentage": _percentage(processed, progress.total_questions),
                "batch_results": [*progress.batch_results, *results],
                "completed_batches": sorted({*progress.completed_batches, batch_index}),
                "in_flight_batch": None,
                "lease_started_at": None,
            }
        )
        stored = self._progress.update(updated, expected_version=progress.version)
        log.info(
            "Recorded batch %d for document %s: %d/%d questions (%d%%)",
            batch_index,
            progress.document_id,
            stored.processed_questions,
            stored.total_questions,
            stored.progress_percentage,
        )
        return stored

    def finalize(
        self,
        progress: AssessmentProgress,
        questionnaire: Questionnaire | None = None,
        *,
        company_name: str = "Document Assessment",
        document_truncated: bool = False,
    ) -> AssessmentProgress:
        """Write the report and close the run. Safe to call again after a failure."""
        if progress.status is ProgressStatus.COMPLETED and progress.report_id:
            return progress
        if not progress.is_complete:
            raise FinalizationError(
                f"Cannot finalize document {progress.document_id}: "
                f"{progress.processed_questions}/{progress.total_questions} questions processed."
            )
        try:
            report = synthesize_report(
                progress,
                questionnaire,
                company_name=company_name,
                document_truncated=document_truncated,
            )
            report_id = self._reports.insert(report)
            completed = self._progress.update(
                progress.model_copy(
                    update={
                        "status": ProgressStatus.COMPLETED,
                        "report_id": report_id,
                        "final_score": report.credibility_score,
                        "completed_at": self._clock(),
                    }
                ),
                expected_version=progress.version,
            )
        except FinalizationError:
            raise
        except Exception as exc:
            raise FinalizationError(
                f"Failed to finalize document {progress.document_id}: {exc}"
            ) from exc
        log.info(
            "Assessment for document %s completed: %s, credibility %d (report %s)",
            progress.document_id,
            report.overall_result.value,
            report.credibility_score,
            report_id,
        )
        return completed

    def mark_error(
        self, document_id: str, user_id: str, message: str
    ) -> AssessmentProgress | None:
        progress = self._progress.get(document_id, user_id)
        if progress is None:
            log.info("No progress for document %s to mark as failed", document_id)
            return None
        if progress.status is ProgressStatus.COMPLETED:
            return progress
        return self._progress.update(
            progress.model_copy(
                update={
                    "status": ProgressStatus.ERROR,
                    "error_message": message,
                    "in_flight_batch": None,
                    "lease_started_at": None,
                }
            ),
            expected_version=progress.version,
        )
