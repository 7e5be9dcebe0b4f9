from datetime import datetime, timedelta, timezone

from credibility.errors import ConcurrentBatchError, FinalizationError
from credibility.models import Answer, ProgressStatus, QuestionEvaluation
from credibility.progress import ProgressTracker
from credibility.questionnaire import normalize_questionnaire
from credibility.store import (
    InMemoryProgressStore,
    InMemoryReportStore,
    JsonFileProgressStore,
    JsonFileReportStore,
)
from tests.fakes.fake_persistence import FailingReportStore


def _results(ids: list[str], answer: Answer = Answer.YES) -> list[QuestionEvaluation]:
    return [
        QuestionEvaluation(
            question_id=qid,
            question_text=f"Question {qid}?",
            response=answer,
            score=1.0 if answer is Answer.YES else 0.0,
            weight=1.0,
            max_score=1.0,
            section_id="accountability",
            section_title="Accountability",
        )
        for qid in ids
    ]


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_progress_lifecycle(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=3, total_batches=2)
    assert progress.status is ProgressStatus.PROCESSING
    assert (progress.processed_questions, progress.current_batch) == (0, 0)

    progress = tracker.begin_batch(progress, 0)
    assert progress.in_flight_batch == 0
    progress = tracker.record_batch(progress, 0, _results(["a", "b"]))
    assert progress.processed_questions == 2
    assert progress.progress_percentage == 67
    assert progress.current_batch == 1
    assert progress.completed_batches == [0]
    assert progress.in_flight_batch is None
    assert not progress.is_complete

    progress = tracker.record_batch(tracker.begin_batch(progress, 1), 1, _results(["c"]))
    assert progress.is_complete
    assert progress.progress_percentage == 100

    completed = tracker.finalize(progress)
    assert completed.status is ProgressStatus.COMPLETED
    assert completed.report_id
    report = tracker.reports.get(completed.report_id)
    assert report.document_id == "doc-1"
    assert completed.final_score == report.credibility_score


def test_start_is_get_or_create(tracker) -> None:
    first = tracker.start("doc-1", "user-1", total_questions=3, total_batches=1)
    tracker.record_batch(tracker.begin_batch(first, 0), 0, _results(["a"]))

    again = tracker.start("doc-1", "user-1", total_questions=3, total_batches=1)
    assert again.processed_questions == 1


def test_recording_same_batch_twice_does_not_double_count(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=4, total_batches=2)
    progress = tracker.record_batch(tracker.begin_batch(progress, 0), 0, _results(["a", "b"]))

    again = tracker.record_batch(progress, 0, _results(["a", "b"]))

    assert again.processed_questions == 2
    assert len(again.batch_results) == 2
    assert again.version == progress.version


def test_second_batch_while_first_in_flight_is_rejected(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=4, total_batches=2)
    in_flight = tracker.begin_batch(progress, 0)

    try:
        tracker.begin_batch(in_flight, 1)
        raise AssertionError("Expected ConcurrentBatchError for active lease.")
    except ConcurrentBatchError as exc:
        assert exc.code == "CONFLICT_ERROR"


def test_stale_snapshot_cannot_claim_batch(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=4, total_batches=2)
    tracker.begin_batch(progress, 0)
    try:
        tracker.begin_batch(progress, 0)
        raise AssertionError("Expected ConcurrentBatchError for stale version.")
    except ConcurrentBatchError as exc:
        assert "changed" in str(exc)


def test_expired_lease_can_be_reclaimed() -> None:
    clock = _Clock()
    tracker = ProgressTracker(
        InMemoryProgressStore(), InMemoryReportStore(), lease_seconds=60, clock=clock
    )
    progress = tracker.begin_batch(
        tracker.start("doc-1", "user-1", total_questions=2, total_batches=1), 0
    )

    clock.now += timedelta(seconds=61)
    reclaimed = tracker.begin_batch(progress, 0)

    assert reclaimed.in_flight_batch == 0
    assert reclaimed.lease_started_at == clock.now


def test_release_allows_retry_of_same_batch(tracker) -> None:
    progress = tracker.begin_batch(
        tracker.start("doc-1", "user-1", total_questions=2, total_batches=1), 0
    )
    released = tracker.release(progress)
    assert released.in_flight_batch is None
    assert tracker.begin_batch(released, 0).in_flight_batch == 0


def test_finalize_is_idempotent(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=1, total_batches=1)
    progress = tracker.record_batch(tracker.begin_batch(progress, 0), 0, _results(["a"]))

    completed = tracker.finalize(progress)
    again = tracker.finalize(completed)

    assert again.report_id == completed.report_id
    assert len(tracker.reports.all()) == 1


def test_finalize_before_all_questions_fails(tracker) -> None:
    progress = tracker.start("doc-1", "user-1", total_questions=2, total_batches=1)
    try:
        tracker.finalize(progress)
        raise AssertionError("Expected FinalizationError.")
    except FinalizationError as exc:
        assert "0/2" in str(exc)


def test_finalization_failure_keeps_progress_and_can_be_retried() -> None:
    reports = FailingReportStore(failures=1)
    tracker = ProgressTracker(InMemoryProgressStore(), reports)
    progress = tracker.start("doc-1", "user-1", total_questions=1, total_batches=1)
    progress = tracker.record_batch(tracker.begin_batch(progress, 0), 0, _results(["a"]))

    try:
        tracker.finalize(progress)
        raise AssertionError("Expected FinalizationError.")
    except FinalizationError as exc:
        assert "report store unavailable" in str(exc)

    stored = tracker.get("doc-1", "user-1")
    assert stored.status is ProgressStatus.PROCESSING
    assert stored.processed_questions == 1

    completed = tracker.finalize(stored)
    assert completed.status is ProgressStatus.COMPLETED
    assert len(reports.all()) == 1


def test_report_uses_questionnaire_section_order(tracker) -> None:
    questionnaire = normalize_questionnaire(
        {
            "version": "4.0",
            "sections": [
                {"id": "depth", "title": "Depth", "questions": []},
                {"id": "accountability", "title": "Accountability", "questions": [{"text": "a?"}]},
            ],
        }
    )
    progress = tracker.start("doc-1", "user-1", total_questions=1, total_batches=1)
    progress = tracker.record_batch(tracker.begin_batch(progress, 0), 0, _results(["a"]))

    completed = tracker.finalize(progress, questionnaire, company_name="Acme")

    report = tracker.reports.get(completed.report_id)
    assert [s.section_id for s in report.sections] == ["depth", "accountability"]
    assert report.company_name == "Acme"
    assert report.questionnaire_version == "4.0"


def test_mark_error_and_resume(tracker) -> None:
    tracker.start("doc-1", "user-1", total_questions=2, total_batches=1)
    failed = tracker.mark_error("doc-1", "user-1", "AI service configuration error.")
    assert failed.status is ProgressStatus.ERROR
    assert failed.error_message == "AI service configuration error."

    resumed = tracker.start("doc-1", "user-1", total_questions=2, total_batches=1)
    assert resumed.status is ProgressStatus.PROCESSING
    assert resumed.error_message is None


def test_mark_error_without_progress_is_noop(tracker) -> None:
    assert tracker.mark_error("doc-1", "user-1", "boom") is None
    assert tracker.get("doc-1", "user-1") is None


def test_json_file_stores_survive_a_new_tracker(tmp_path) -> None:
    def make_tracker() -> ProgressTracker:
        return ProgressTracker(
            JsonFileProgressStore(tmp_path / "progress"),
            JsonFileReportStore(tmp_path / "reports"),
        )

    first = make_tracker()
    progress = first.start("doc/1", "user 1", total_questions=2, total_batches=2)
    first.record_batch(first.begin_batch(progress, 0), 0, _results(["a"]))

    second = make_tracker()
    progress = second.start("doc/1", "user 1", total_questions=2, total_batches=2)
    assert progress.processed_questions == 1
    assert progress.batch_results[0].response is Answer.YES

    progress = second.record_batch(second.begin_batch(progress, 1), 1, _results(["b"], Answer.NO))
    completed = second.finalize(progress)

    assert (tmp_path / "reports" / f"{completed.report_id}.json").exists()
    assert second.reports.get(completed.report_id).overall_score == 50
