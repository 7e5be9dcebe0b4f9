import logging

from credibility.errors import ConcurrentBatchError, error_response
from credibility.logging_config import configure_logging
from credibility.models import Answer, BatchResponse, QuestionEvaluation


def test_error_response_for_assessment_error() -> None:
    payload = error_response(ConcurrentBatchError("batch 0 in flight"), batchIndex=1)
    assert payload == {
        "success": False,
        "error": ConcurrentBatchError.user_message,
        "errorCode": "CONFLICT_ERROR",
        "category": "batch",
        "details": "batch 0 in flight",
        "batchIndex": 1,
    }


def test_error_response_classifies_foreign_errors() -> None:
    assert error_response(RuntimeError("Rate limit exceeded (429)"))["errorCode"] == "RATE_LIMIT_ERROR"
    assert error_response(ConnectionError("connection reset"))["errorCode"] == "NETWORK_ERROR"
    assert error_response(TimeoutError("read timeout"))["errorCode"] == "TIMEOUT_ERROR"
    assert error_response(KeyError("x"))["errorCode"] == "PROCESSING_ERROR"


def test_answer_accepts_legacy_labels() -> None:
    assert Answer("Not enough information") is Answer.INSUFFICIENT
    assert Answer("n/a") is Answer.INSUFFICIENT
    evaluation = QuestionEvaluation.model_validate(
        {
            "questionId": "q1",
            "questionText": "Is there a plan?",
            "response": "Not enough information",
            "score": 0.5,
            "weight": 1,
            "maxScore": 1,
        }
    )
    assert evaluation.response is Answer.INSUFFICIENT


def test_batch_response_serialises_camel_case() -> None:
    wire = BatchResponse(
        batch_index=0,
        total_batches=2,
        questions_in_batch=5,
        total_questions=10,
        processed_questions=5,
        progress_percentage=50,
        completed=False,
        next_batch_index=1,
    ).to_wire()
    assert wire["batchIndex"] == 0
    assert wire["nextBatchIndex"] == 1
    assert wire["finalizationError"] is None
    assert wire["success"] is True


def test_configure_logging_is_idempotent(monkeypatch, tmp_path) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    configure_logging(log_dir=tmp_path / "logs")
    handlers = list(root.handlers)
    configure_logging(log_dir=tmp_path / "logs")

    assert root.handlers == handlers
    assert len(handlers) == 2
    assert (tmp_path / "logs" / "assessment.log").exists()
    for handler in handlers:
        handler.close()
