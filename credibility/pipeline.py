"""Batch runner: one core path shared by the service handler and the in-process loop."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, Protocol

from credibility.config import AssessmentSettings
from credibility.errors import (
    CONFIG,
    INPUT,
    AssessmentError,
    AssessmentTimeoutError,
    DocumentNotFoundError,
    FinalizationError,
    InvalidRequestError,
    QuestionnaireFormatError,
    QuestionnaireUnavailableError,
    error_response,
)
from credibility.evaluator import QuestionEvaluator
from credibility.ingest import chunk_text, prepare_document_text
from credibility.llm_client import Classifier, get_classifier
from credibility.models import (
    AssessmentProgress,
    AssessmentReport,
    BatchResponse,
    ProgressStatus,
    QuestionEvaluation,
    Questionnaire,
)
from credibility.progress import ProgressTracker
from credibility.questionnaire import normalize_questionnaire
from credibility.scheduler import BatchSlice, plan_batches, slice_batch
from credibility.store import DocumentStore, InMemoryProgressStore, InMemoryReportStore

log = logging.getLogger(__name__)


class QuestionnaireProvider(Protocol):
    def get(self) -> Questionnaire: ...


class RunClock:
    """Whole-run time budget, checked before each question."""

    def __init__(self, budget_s: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._budget = budget_s
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def check(self) -> None:
        if self.elapsed > self._budget:
            raise AssessmentTimeoutError(
                f"Assessment exceeded {self._budget:.0f}s after {self.elapsed:.0f}s."
            )


class AssessmentSession:
    """Runs the batches of one (document, user) assessment.

    Each ``run_batch`` call is self-contained: it reloads progress, evaluates
    one slice of questions and persists the results, so a stateless caller can
    re-invoke it with the next index. ``next_batch`` and iteration pull the
    lowest batch index not yet recorded.
    """

    def __init__(
        self,
        *,
        document_id: str,
        user_id: str,
        document_text: str,
        questionnaire: Questionnaire,
        classifier: Classifier,
        tracker: ProgressTracker,
        settings: AssessmentSettings | None = None,
        company_name: str = "Document Assessment",
        document_truncated: bool = False,
        run_clock: RunClock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.document_id = document_id
        self.user_id = user_id
        self._text = document_text
        self._questionnaire = questionnaire
        self._tracker = tracker
        self._settings = settings or AssessmentSettings.from_env()
        self._company_name = company_name
        self._truncated = document_truncated
        self._run_clock = run_clock
        self._sleep = sleep
        self._evaluator = QuestionEvaluator(classifier, self._settings)
        self._plan = plan_batches(questionnaire, self._settings.batch_size)
        if self._plan.total_questions == 0:
            raise QuestionnaireFormatError("Questionnaire has no questions.")
        self._chunks: list[str] | None = None

    @property
    def total_batches(self) -> int:
        return self._plan.total_batches

    @property
    def total_questions(self) -> int:
        return self._plan.total_questions

    @property
    def chunks(self) -> list[str]:
        if self._chunks is None:
            self._chunks = chunk_text(
                self._text,
                size=self._settings.chunk_size,
                overlap=self._settings.chunk_overlap,
                max_chunks=self._settings.max_chunks,
                min_chunk_chars=self._settings.min_chunk_chars,
            )
            log.info(
                "Document %s: %d chars in %d chunks",
                self.document_id,
                len(self._text),
                len(self._chunks),
            )
        return self._chunks

    def progress(self) -> AssessmentProgress:
        return self._tracker.start(
            self.document_id,
            self.user_id,
            total_questions=self._plan.total_questions,
            total_batches=self._plan.total_batches,
        )

    def run_batch(self, batch_index: int) -> BatchResponse:
        progress = self.progress()
        if progress.status is ProgressStatus.COMPLETED:
            log.info("Document %s already completed; batch %d skipped", self.document_id, batch_index)
            return self._response(progress, batch_index, [], questions_in_batch=0)

        if batch_index in progress.completed_batches:
            log.info("Batch %d already recorded for document %s", batch_index, self.document_id)
            progress, error = self._finish(progress)
            return self._response(
                progress, batch_index, [], questions_in_batch=0, finalization_error=error
            )

        batch = slice_batch(self._plan.questions, batch_index, self._plan.batch_size)
        if not batch.questions:
            log.info(
                "Batch %d is past the last batch (%d) for document %s",
                batch_index,
                self._plan.total_batches,
                self.document_id,
            )
            progress, error = self._finish(progress)
            return self._response(
                progress,
                batch_index,
                [],
                questions_in_batch=0,
                finalization_error=error,
                past_end=True,
            )

        progress = self._tracker.begin_batch(progress, batch_index)
        log.info(
            "Batch %d/%d for document %s: questions %d-%d of %d",
            batch_index + 1,
            self._plan.total_batches,
            self.document_id,
            batch.start_index + 1,
            batch.end_index,
            self._plan.total_questions,
        )
        try:
            results = self._evaluate(batch)
            recorded = self._tracker.record_batch(progress, batch_index, results)
        except Exception:
            # Nothing was recorded; the same index must be retryable right away.
            self._release(progress)
            raise

        progress, error = self._finish(recorded)
        return self._response(
            progress,
            batch_index,
            results,
            questions_in_batch=len(batch.questions),
            finalization_error=error,
        )

    def next_batch(self) -> BatchResponse | None:
        progress = self.progress()
        if progress.status is ProgressStatus.COMPLETED:
            return None
        pending = self._next_pending(progress)
        if pending is None:
            self._finish(progress)
            return None
        return self.run_batch(pending)

    def __iter__(self) -> Iterator[BatchResponse]:
        while True:
            response = self.next_batch()
            if response is None:
                return
            yield response

    def finalize(self) -> AssessmentProgress:
        """Finalize a fully processed run; raises ``FinalizationError`` on failure."""
        return self._tracker.finalize(
            self.progress(),
            self._questionnaire,
            company_name=self._company_name,
            document_truncated=self._truncated,
        )

    def report(self) -> AssessmentReport | None:
        progress = self._tracker.get(self.document_id, self.user_id)
        if progress is None or not progress.report_id:
            return None
        return self._tracker.reports.get(progress.report_id)

    def _evaluate(self, batch: BatchSlice) -> list[QuestionEvaluation]:
        results: list[QuestionEvaluation] = []
        for position, item in enumerate(batch.questions):
            if self._run_clock is not None:
                self._run_clock.check()
            if position and self._settings.question_delay_s > 0:
                self._sleep(self._settings.question_delay_s)
            results.append(self._evaluator.evaluate_flat(item, self.chunks))
        return results

    def _release(self, progress: AssessmentProgress) -> None:
        try:
            self._tracker.release(progress)
        except AssessmentError as exc:
            log.error(
                "Could not release batch lease for document %s, it will expire: %s",
                self.document_id,
                exc,
            )

    def _finish(self, progress: AssessmentProgress) -> tuple[AssessmentProgress, str | None]:
        if not progress.is_complete or progress.report_id:
            return progress, None
        try:
            return (
                self._tracker.finalize(
                    progress,
                    self._questionnaire,
                    company_name=self._company_name,
                    document_truncated=self._truncated,
                ),
                None,
            )
        except FinalizationError as exc:
            log.error("Finalization failed for document %s: %s", self.document_id, exc)
            return progress, str(exc)

    def _next_pending(self, progress: AssessmentProgress) -> int | None:
        done = set(progress.completed_batches)
        for index in range(self._plan.total_batches):
            if index not in done:
                return index
        return None

    def _response(
        self,
        progress: AssessmentProgress,
        batch_index: int,
        results: list[QuestionEvaluation],
        *,
        questions_in_batch: int,
        finalization_error: str | None = None,
        past_end: bool = False,
    ) -> BatchResponse:
        return BatchResponse(
            batch_index=batch_index,
            total_batches=self._plan.total_batches,
            questions_in_batch=questions_in_batch,
            total_questions=progress.total_questions,
            processed_questions=progress.processed_questions,
            progress_percentage=progress.progress_percentage,
            batch_results=results,
            completed=progress.is_complete or past_end,
            next_batch_index=self._next_pending(progress),
            report_id=progress.report_id,
            finalization_error=finalization_error,
        )


def run_assessment(
    document_text: str,
    questionnaire: Any,
    classifier: Classifier | None = None,
    *,
    document_id: str = "local-document",
    user_id: str = "local-user",
    company_name: str = "Document Assessment",
    settings: AssessmentSettings | None = None,
    tracker: ProgressTracker | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AssessmentReport:
    """Run every batch in-process under the whole-run time budget."""
    settings = settings or AssessmentSettings.from_env()
    text, truncated = prepare_document_text(document_text)
    if tracker is None:
        tracker = ProgressTracker(
            InMemoryProgressStore(),
            InMemoryReportStore(),
            lease_seconds=settings.batch_lease_s,
        )
    session = AssessmentSession(
        document_id=document_id,
        user_id=user_id,
        document_text=text,
        questionnaire=normalize_questionnaire(questionnaire),
        classifier=classifier or get_classifier(),
        tracker=tracker,
        settings=settings,
        company_name=company_name,
        document_truncated=truncated,
        run_clock=RunClock(settings.run_timeout_s, clock),
        sleep=sleep,
    )
    for response in session:
        log.info(
            "Progress for document %s: %d/%d questions (%d%%)",
            document_id,
            response.processed_questions,
            response.total_questions,
            response.progress_percentage,
        )

    progress = session.finalize()
    report = tracker.reports.get(progress.report_id) if progress.report_id else None
    if report is None:
        raise FinalizationError(f"Report for document {document_id} is missing after completion.")
    return report


def _validate_request(document_id: Any, user_id: Any, batch_index: Any) -> tuple[str, str, int]:
    if not document_id or not user_id:
        raise InvalidRequestError("documentId and userId are required.")
    try:
        index = int(batch_index)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(
            f"Invalid batchIndex {batch_index!r}.", user_message="Invalid batch index."
        ) from exc
    if index < 0:
        raise InvalidRequestError(
            f"batchIndex must be >= 0, got {index}.", user_message="Invalid batch index."
        )
    return str(document_id), str(user_id), index


class AssessmentService:
    """Stateless request handler: one batch per call, structured errors, never raises."""

    def __init__(
        self,
        documents: DocumentStore,
        questionnaires: QuestionnaireProvider,
        tracker: ProgressTracker,
        *,
        classifier_factory: Callable[[], Classifier] = get_classifier,
        settings: AssessmentSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._documents = documents
        self._questionnaires = questionnaires
        self._tracker = tracker
        self._classifier_factory = classifier_factory
        self._settings = settings or AssessmentSettings.from_env()
        self._sleep = sleep
        self._clock = clock

    def handle_batch_request(self, request: dict[str, Any]) -> dict[str, Any]:
        document_id = request.get("documentId")
        user_id = request.get("userId")
        batch_index = request.get("batchIndex", 0)
        try:
            document_id, user_id, batch_index = _validate_request(document_id, user_id, batch_index)
        except InvalidRequestError as exc:
            log.warning("Rejected batch request: %s", exc)
            return error_response(exc, batchIndex=batch_index)

        try:
            return self._run(document_id, user_id, batch_index).to_wire()
        except AssessmentError as exc:
            log.error(
                "Batch %s for document %s failed (%s): %s",
                batch_index,
                document_id,
                exc.code,
                exc,
            )
            if exc.category in (INPUT, CONFIG):
                self._mark_error(document_id, user_id, exc.user_message)
            return error_response(exc, batchIndex=batch_index)
        except Exception as exc:
            log.exception("Unexpected failure in batch %s for document %s", batch_index, document_id)
            return error_response(exc, batchIndex=batch_index)

    def _run(self, document_id: str, user_id: str, batch_index: int) -> BatchResponse:
        document = self._documents.get(document_id, user_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found for user {user_id}.")
        text, truncated = prepare_document_text(document.document_text)

        try:
            questionnaire = self._questionnaires.get()
        except AssessmentError:
            raise
        except Exception as exc:
            raise QuestionnaireUnavailableError(f"Questionnaire fetch failed: {exc}") from exc

        session = AssessmentSession(
            document_id=document_id,
            user_id=user_id,
            document_text=text,
            questionnaire=questionnaire,
            classifier=self._classifier_factory(),
            tracker=self._tracker,
            settings=self._settings,
            company_name=document.file_name,
            document_truncated=truncated or document.truncated,
            run_clock=RunClock(self._settings.run_timeout_s, self._clock),
            sleep=self._sleep,
        )
        return session.run_batch(batch_index)

    def _mark_error(self, document_id: str, user_id: str, message: str) -> None:
        try:
            self._tracker.mark_error(document_id, user_id, message)
        except AssessmentError as exc:
            log.error("Could not mark document %s as failed: %s", document_id, exc)
