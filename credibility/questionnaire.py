"""Questionnaire loading, shape normalisation and flattening.

Questionnaires arrive in several equivalent JSON layouts. Each accepted layout
has its own adapter; ``normalize_questionnaire`` picks the adapter once so the
rest of the pipeline only ever sees the canonical ``Questionnaire`` model.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from credibility.errors import QuestionnaireFormatError, QuestionnaireUnavailableError
from credibility.models import FlatQuestion, Question, Questionnaire, Section

log = logging.getLogger(__name__)

_TEXT_KEYS = ("text", "question_text", "questionText")


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _question_from_raw(raw: Any, fallback_id: str) -> Question:
    if not isinstance(raw, dict):
        # Keeps the slot so global indices stay stable; evaluates as a flagged fallback.
        log.warning("Question %s is not an object; keeping it as an invalid question", fallback_id)
        return Question(id=fallback_id, text="")

    text = next((str(raw[key]).strip() for key in _TEXT_KEYS if raw.get(key)), "")
    score_yes = _as_float(raw.get("score_yes"))
    weight = _as_float(raw.get("weight")) or score_yes or 1.0
    return Question(
        id=str(raw.get("id") or fallback_id),
        text=text,
        weight=weight,
        score_yes=score_yes,
        score_no=_as_float(raw.get("score_no")),
        score_na=_as_float(raw.get("score_na")),
    )


def _section_from_raw(raw: Any, fallback_id: str, counter: list[int]) -> Section:
    if not isinstance(raw, dict):
        raise QuestionnaireFormatError(f"Section {fallback_id} is not an object.")
    questions_raw = raw.get("questions", [])
    if not isinstance(questions_raw, list):
        raise QuestionnaireFormatError(f"Section {fallback_id} has no questions array.")

    section_id = str(raw.get("id") or fallback_id)
    questions: list[Question] = []
    for item in questions_raw:
        questions.append(_question_from_raw(item, f"q_{counter[0]}"))
        counter[0] += 1
    return Section(
        id=section_id,
        title=str(raw.get("title") or section_id),
        questions=questions,
    )


def _meta(payload: dict, key: str, default: str) -> str:
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    return str(payload.get(key) or metadata.get(key) or default)


def from_sections(payload: dict) -> Questionnaire:
    """``{"sections": [...]}``"""
    sections_raw = payload["sections"]
    if not isinstance(sections_raw, list):
        raise QuestionnaireFormatError("'sections' must be a list.")
    counter = [0]
    sections = [
        _section_from_raw(raw, f"section_{idx + 1}", counter)
        for idx, raw in enumerate(sections_raw)
    ]
    return Questionnaire(
        sections=sections,
        version=_meta(payload, "version", "1.0"),
        title=_meta(payload, "title", ""),
        description=_meta(payload, "description", ""),
    )


def from_section_map(payload: dict) -> Questionnaire:
    """``{"basic_assessment_sections": {key: {...}}}``, keys become fallback ids."""
    sections_raw = payload["basic_assessment_sections"]
    if not isinstance(sections_raw, dict):
        raise QuestionnaireFormatError("'basic_assessment_sections' must be an object.")
    counter = [0]
    sections = [_section_from_raw(raw, str(key), counter) for key, raw in sections_raw.items()]
    return Questionnaire(
        sections=sections,
        version=_meta(payload, "version", "1.0"),
        title=_meta(payload, "title", ""),
        description=_meta(payload, "description", ""),
    )


def from_wrapper(payload: dict) -> Questionnaire:
    """``{"questionnaire": {...}, "metadata": {...}}`` as served by the questionnaire manager."""
    inner_key = (
        "questionnaire" if "questionnaire" in payload else "transition_plan_questionnaire"
    )
    inner = payload[inner_key]
    questionnaire = normalize_questionnaire(inner)
    metadata = payload.get("metadata")
    if isinstance(metadata, dict) and metadata.get("version") and questionnaire.version == "1.0":
        questionnaire = questionnaire.model_copy(update={"version": str(metadata["version"])})
    return questionnaire


def from_array(payload: list) -> Questionnaire:
    """``[ {...} ]``"""
    if not payload:
        raise QuestionnaireFormatError("Questionnaire array is empty.")
    return normalize_questionnaire(payload[0])


_ADAPTERS: list[tuple[Callable[[Any], bool], Callable[[Any], Questionnaire]]] = [
    (lambda p: isinstance(p, list), from_array),
    (
        lambda p: isinstance(p, dict)
        and ("questionnaire" in p or "transition_plan_questionnaire" in p),
        from_wrapper,
    ),
    (lambda p: isinstance(p, dict) and "sections" in p, from_sections),
    (lambda p: isinstance(p, dict) and "basic_assessment_sections" in p, from_section_map),
]


def normalize_questionnaire(payload: Any) -> Questionnaire:
    if isinstance(payload, Questionnaire):
        return payload
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise QuestionnaireFormatError(f"Questionnaire is not valid JSON: {exc}") from exc

    for matches, adapter in _ADAPTERS:
        if matches(payload):
            questionnaire = adapter(payload)
            if not questionnaire.sections:
                raise QuestionnaireFormatError("Questionnaire has no sections.")
            return questionnaire
    raise QuestionnaireFormatError(
        "Invalid questionnaire format: expected 'questionnaire', 'sections' "
        "or 'basic_assessment_sections'."
    )


def load_questionnaire(path: str | Path) -> Questionnaire:
    source = Path(path).expanduser().resolve()
    if not source.exists():
        raise QuestionnaireUnavailableError(f"Questionnaire file not found: {source}")
    return normalize_questionnaire(source.read_text(encoding="utf-8"))


class FileQuestionnaireProvider:
    """Serves the active questionnaire from a JSON file, parsed once."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._cached: Questionnaire | None = None

    def get(self) -> Questionnaire:
        if self._cached is None:
            self._cached = load_questionnaire(self._path)
            log.info(
                "Loaded questionnaire %s (version %s, %d questions)",
                self._path.name,
                self._cached.version,
                self._cached.question_count,
            )
        return self._cached


def flatten_questions(questionnaire: Questionnaire) -> list[FlatQuestion]:
    flat: list[FlatQuestion] = []
    for section_index, section in enumerate(questionnaire.sections):
        for question_index, question in enumerate(section.questions):
            flat.append(
                FlatQuestion(
                    question=question,
                    section_id=section.id,
                    section_title=section.title,
                    section_index=section_index,
                    question_index=question_index,
                    global_index=len(flat),
                )
            )
    return flat


def section_counts(flat: list[FlatQuestion]) -> dict[str, int]:
    """Rebuild per-section question counts from a flattened list."""
    counts: dict[str, int] = {}
    for item in flat:
        counts[item.section_id] = counts.get(item.section_id, 0) + 1
    return counts
