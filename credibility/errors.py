"""Exception hierarchy and structured error responses."""

from __future__ import annotations

from typing import Any

INPUT = "input"
CONFIG = "config"
BATCH = "batch"
FINALIZATION = "finalization"
TIMEOUT = "timeout"
TRANSIENT = "transient"
INTERNAL = "internal"


class AssessmentError(Exception):
    """Base exception for all assessment errors."""

    code = "PROCESSING_ERROR"
    category = INTERNAL
    user_message = "The assessment could not be completed. Please contact support."

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class QuestionnaireFormatError(AssessmentError):
    """Raised when a questionnaire payload matches none of the accepted shapes."""

    code = "QUESTIONNAIRE_FORMAT_ERROR"
    category = INPUT
    user_message = "Assessment questionnaire format error. Please contact support."


class QuestionnaireUnavailableError(AssessmentError):
    """Raised when the questionnaire provider cannot return a questionnaire."""

    code = "QUESTIONNAIRE_ERROR"
    category = BATCH
    user_message = (
        "There was an issue with the assessment questionnaire configuration. "
        "Please contact support."
    )


class InvalidRequestError(AssessmentError):
    """Raised for a malformed batch request; progress is left untouched."""

    code = "INVALID_REQUEST"
    category = INPUT
    user_message = "Document ID and User ID are required."


class DocumentNotFoundError(AssessmentError):
    code = "DOCUMENT_NOT_FOUND"
    category = INPUT
    user_message = "Document not found or not accessible."


class DocumentTextError(AssessmentError):
    """Raised when document text is missing, too short or not text at all."""

    code = "DOCUMENT_TEXT_ERROR"
    category = INPUT
    user_message = (
        "The document text could not be used. The document may be empty, "
        "image-based, or corrupted."
    )


class UnsupportedDocumentError(AssessmentError):
    """Raised when an uploaded file has a disallowed type or size."""

    code = "UNSUPPORTED_DOCUMENT"
    category = INPUT
    user_message = "Unsupported document. Upload a non-empty PDF, DOCX, TXT or MD file."


class ConfigError(AssessmentError):
    code = "CONFIG_ERROR"
    category = CONFIG
    user_message = "AI service configuration error. Please contact support."


class StorageError(AssessmentError):
    """Raised when a progress, report or document store operation fails."""

    code = "STORAGE_ERROR"
    category = BATCH
    user_message = "Progress could not be saved. Please retry this batch."


class ConcurrentBatchError(AssessmentError):
    """Raised when a second batch is started for a key that already has one in flight."""

    code = "CONFLICT_ERROR"
    category = BATCH
    user_message = "Another batch for this document is already being processed."


class FinalizationError(AssessmentError):
    code = "FINALIZATION_ERROR"
    category = FINALIZATION
    user_message = "All questions were assessed but the report could not be saved yet."


class AssessmentTimeoutError(AssessmentError):
    code = "TIMEOUT_ERROR"
    category = TIMEOUT
    user_message = (
        "Document assessment timed out. The document may be too large or complex. "
        "Please retry; completed batches are kept."
    )


class QuestionTimeoutError(AssessmentError):
    """Raised inside the evaluator when one question exceeds its time budget."""

    code = "QUESTION_TIMEOUT"
    category = TRANSIENT


def error_response(exc: BaseException, **extra: Any) -> dict[str, Any]:
    """Map an exception to the structured failure payload returned to callers."""
    if isinstance(exc, AssessmentError):
        code, category, message = exc.code, exc.category, exc.user_message
    else:
        code, category, message = _classify_foreign(exc)
    payload: dict[str, Any] = {
        "success": False,
        "error": message,
        "errorCode": code,
        "category": category,
        "details": str(exc),
    }
    payload.update(extra)
    return payload


def _classify_foreign(exc: BaseException) -> tuple[str, str, str]:
    text = str(exc).lower()
    name = exc.__class__.__name__
    reason = getattr(exc, "reason", None)
    if reason == "timeout" or "timeout" in text or isinstance(exc, TimeoutError):
        return "TIMEOUT_ERROR", TIMEOUT, AssessmentTimeoutError.user_message
    if reason == "rate_limit" or "rate limit" in text or "429" in text or "RateLimit" in name:
        return (
            "RATE_LIMIT_ERROR",
            TRANSIENT,
            "AI service is currently experiencing high demand. Please wait a moment and try again.",
        )
    if reason == "connection" or "connection" in text or "network" in text or isinstance(
        exc, ConnectionError
    ):
        return (
            "NETWORK_ERROR",
            TRANSIENT,
            "Network error while connecting to AI service. Please try again.",
        )
    return "PROCESSING_ERROR", INTERNAL, AssessmentError.user_message
