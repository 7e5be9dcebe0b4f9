"""Per-question evaluation against document chunks.

Two strategies share one code path:

``single_best``
    pick the most relevant chunk and ask the classifier once. This is the
    cheap default used by batched runs.
``multi_scan``
    ask once per chunk in document order, stop at the first "Yes", otherwise
    keep the first "No". Costs up to one call per chunk but has better recall.

Classifier failures never escape ``evaluate``: they turn into a fallback
evaluation with a reduced score and an error note.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from credibility.config import AssessmentSettings
from credibility.errors import QuestionTimeoutError
from credibility.llm_client import Classifier
from credibility.models import Answer, FlatQuestion, Question, QuestionEvaluation
from credibility.retrieval import select_best_chunk

log = logging.getLogger(__name__)

SINGLE_BEST = "single_best"
MULTI_SCAN = "multi_scan"
STRATEGIES = (SINGLE_BEST, MULTI_SCAN)

# Legacy label for Insufficient; it must not fall through to the "no" check.
_LEGACY_INSUFFICIENT = "not enough information"


def normalize_response(raw: str | None) -> Answer:
    """Map a free-text classifier reply onto the three labels.

    Case-insensitive substring match: "yes" wins, then "no", anything else is
    Insufficient. Only the exact legacy reply "Not enough information" is
    exempt from the "no" check.
    """
    if not raw:
        return Answer.INSUFFICIENT
    lowered = raw.strip().lower()
    if "yes" in lowered:
        return Answer.YES
    if lowered.rstrip(".") == _LEGACY_INSUFFICIENT:
        return Answer.INSUFFICIENT
    if "no" in lowered:
        return Answer.NO
    return Answer.INSUFFICIENT


def score_for(question: Question, answer: Answer, na_ratio: float) -> float:
    if answer is Answer.YES:
        return question.yes_score()
    if answer is Answer.NO:
        return question.no_score()
    return question.insufficient_score(na_ratio)


class QuestionEvaluator:
    def __init__(
        self,
        classifier: Classifier,
        settings: AssessmentSettings | None = None,
        *,
        strategy: str | None = None,
    ) -> None:
        self._classifier = classifier
        self._settings = settings or AssessmentSettings()
        self._strategy = strategy or self._settings.strategy
        if self._strategy not in STRATEGIES:
            raise ValueError(f"Unknown evaluation strategy {self._strategy!r}; use {STRATEGIES}.")

    @property
    def strategy(self) -> str:
        return self._strategy

    def evaluate(
        self,
        question: Question,
        chunks: list[str],
        *,
        section_id: str = "",
        section_title: str = "",
    ) -> QuestionEvaluation:
        if not question.text.strip():
            log.error("Invalid question %s: empty text, skipping classifier", question.id)
            return self._fallback(
                question,
                section_id,
                section_title,
                error="invalid question: empty text",
                score=0.0,
            )

        started = time.monotonic()
        timeout = self._settings.question_timeout_s
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"q-{question.id}")
        try:
            future = executor.submit(self._run_strategy, question, chunks, started + timeout)
            answer, calls = future.result(timeout=timeout)
        except FutureTimeout:
            log.error("Question %s timed out after %.0fs", question.id, timeout)
            return self._fallback(
                question,
                section_id,
                section_title,
                error=f"question timeout after {timeout:.0f}s",
            )
        except Exception as exc:
            log.error("Error evaluating question %s: %s", question.id, exc)
            return self._fallback(question, section_id, section_title, error=str(exc))
        finally:
            # A hung classifier call keeps its worker thread; do not block on it.
            executor.shutdown(wait=False)

        score = score_for(question, answer, self._settings.na_score_ratio)
        log.info(
            "Question %s: %s (score %.2f/%.2f, %d call(s), %.1fs)",
            question.id,
            answer.value,
            score,
            question.yes_score(),
            calls,
            time.monotonic() - started,
        )
        return QuestionEvaluation(
            question_id=question.id,
            question_text=question.text,
            response=answer,
            score=score,
            weight=question.weight,
            max_score=question.yes_score(),
            section_id=section_id,
            section_title=section_title,
            chunks_evaluated=calls,
        )

    def evaluate_flat(self, item: FlatQuestion, chunks: list[str]) -> QuestionEvaluation:
        return self.evaluate(
            item.question,
            chunks,
            section_id=item.section_id,
            section_title=item.section_title,
        )

    def _run_strategy(
        self,
        question: Question,
        chunks: list[str],
        deadline: float,
    ) -> tuple[Answer, int]:
        if self._strategy == MULTI_SCAN:
            return self._multi_scan(question, chunks, deadline)
        return self._single_best(question, chunks)

    def _single_best(self, question: Question, chunks: list[str]) -> tuple[Answer, int]:
        excerpt = select_best_chunk(
            chunks,
            question.text,
            max_chars=self._settings.max_prompt_chunk_chars,
        )
        raw = self._classifier.classify(question.text, excerpt)
        return normalize_response(raw), 1

    def _multi_scan(
        self,
        question: Question,
        chunks: list[str],
        deadline: float,
    ) -> tuple[Answer, int]:
        limit = self._settings.multi_scan_max_chunks
        first_no_seen = False
        calls = 0
        for idx, chunk in enumerate(chunks[:limit]):
            if time.monotonic() > deadline:
                raise QuestionTimeoutError(f"Question {question.id} timeout at chunk {idx + 1}")
            raw = self._classifier.classify(
                question.text,
                chunk[: self._settings.max_prompt_chunk_chars],
            )
            calls += 1
            answer = normalize_response(raw)
            log.debug("Chunk %d for question %s: %s", idx + 1, question.id, answer.value)
            if answer is Answer.YES:
                return Answer.YES, calls
            if answer is Answer.NO:
                first_no_seen = True
        return (Answer.NO if first_no_seen else Answer.INSUFFICIENT), calls

    def _fallback(
        self,
        question: Question,
        section_id: str,
        section_title: str,
        *,
        error: str,
        score: float | None = None,
    ) -> QuestionEvaluation:
        if score is None:
            score = (
                question.insufficient_score(self._settings.na_score_ratio)
                * self._settings.fallback_score_ratio
            )
        return QuestionEvaluation(
            question_id=question.id,
            question_text=question.text or "Invalid question",
            response=Answer.INSUFFICIENT,
            score=score,
            weight=question.weight,
            max_score=question.yes_score(),
            section_id=section_id,
            section_title=section_title,
            fallback=True,
            error=error,
        )
