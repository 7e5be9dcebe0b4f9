"""Flattening and fixed-size batching of questionnaire questions."""

from __future__ import annotations

import math
from dataclasses import dataclass

from credibility.models import FlatQuestion, Questionnaire
from credibility.questionnaire import flatten_questions


@dataclass(frozen=True)
class BatchPlan:
    questions: list[FlatQuestion]
    batch_size: int
    total_batches: int

    @property
    def total_questions(self) -> int:
        return len(self.questions)


@dataclass(frozen=True)
class BatchSlice:
    batch_index: int
    start_index: int
    end_index: int
    questions: list[FlatQuestion]
    is_last_batch: bool


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}.")


def plan_batches(questionnaire: Questionnaire, batch_size: int) -> BatchPlan:
    _check_batch_size(batch_size)
    questions = flatten_questions(questionnaire)
    return BatchPlan(
        questions=questions,
        batch_size=batch_size,
        total_batches=math.ceil(len(questions) / batch_size),
    )


def slice_batch(
    questions: list[FlatQuestion],
    batch_index: int,
    batch_size: int,
) -> BatchSlice:
    _check_batch_size(batch_size)
    if batch_index < 0:
        raise ValueError(f"batch_index must be >= 0, got {batch_index}.")
    total = len(questions)
    start = min(batch_index * batch_size, total)
    end = min(start + batch_size, total)
    return BatchSlice(
        batch_index=batch_index,
        start_index=start,
        end_index=end,
        questions=questions[start:end],
        is_last_batch=end >= total,
    )
