"""Shared data models for the credibility assessment engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Serialises to camelCase on the wire, accepts either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Answer(str, Enum):
    YES = "Yes"
    NO = "No"
    INSUFFICIENT = "Insufficient"

    @classmethod
    def _missing_(cls, value):
        # Older records spell the neutral label out.
        if isinstance(value, str) and value.strip().lower() in {
            "not enough information",
            "insufficient",
            "n/a",
        }:
            return cls.INSUFFICIENT
        return None


class Rating(str, Enum):
    ALIGNED = "Aligned"
    ALIGNING = "Aligning"
    PARTIALLY_ALIGNED = "Partially Aligned"
    MISALIGNED = "Misaligned"


class ProgressStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Question(WireModel):
    id: str
    text: str = ""
    weight: float = 1.0
    score_yes: float | None = None
    score_no: float | None = None
    score_na: float | None = None

    def yes_score(self) -> float:
        return self.weight if self.score_yes is None else self.score_yes

    def no_score(self) -> float:
        return 0.0 if self.score_no is None else self.score_no

    def insufficient_score(self, na_ratio: float) -> float:
        return self.weight * na_ratio if self.score_na is None else self.score_na


class Section(WireModel):
    id: str
    title: str
    questions: list[Question] = Field(default_factory=list)


class Questionnaire(WireModel):
    sections: list[Section]
    version: str = "1.0"
    title: str = ""
    description: str = ""

    @property
    def question_count(self) -> int:
        return sum(len(section.questions) for section in self.sections)


class FlatQuestion(WireModel):
    """A question tagged with its section and canonical global position."""

    question: Question
    section_id: str
    section_title: str
    section_index: int
    question_index: int
    global_index: int


class DocumentChunk(WireModel):
    index: int
    start: int
    text: str

    @property
    def end(self) -> int:
        return self.start + len(self.text)


class QuestionEvaluation(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    question_id: str
    question_text: str
    response: Answer
    score: float
    weight: float
    max_score: float
    section_id: str = ""
    section_title: str = ""
    chunks_evaluated: int = 0
    fallback: bool = False
    error: str | None = None

    @field_validator("response", mode="before")
    @classmethod
    def _coerce_response(cls, value):
        return value if isinstance(value, Answer) else Answer(value)


class SectionResult(WireModel):
    section_id: str
    section_title: str
    questions: list[QuestionEvaluation] = Field(default_factory=list)
    yes_count: int = 0
    no_count: int = 0
    na_count: int = 0
    total: int = 0
    yes_percentage: int = 0
    expected_questions: int = 0
    processed_questions: int = 0
    completeness: int = 0
    section_score: float = 0.0
    section_max_score: float = 0.0
    section_percentage: int = 0


class Verdict(WireModel):
    overall_result: Rating
    credibility_score: int
    red_flag_triggered: bool
    red_flag_questions: list[str]
    reasoning: str
    combined_score: int
    overall_score: int
    average_yes_percentage: float
    completeness: int
    total_score: float
    max_possible_score: float


class AssessmentReport(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    report_id: str | None = None
    document_id: str
    user_id: str
    company_name: str = "Document Assessment"
    sections: list[SectionResult]
    total_score: float
    max_possible_score: float
    credibility_score: int
    overall_result: Rating
    overall_score: int
    average_yes_percentage: float
    completeness: int
    red_flag_triggered: bool
    red_flag_questions: list[str]
    reasoning: str
    document_truncated: bool = False
    questionnaire_version: str = "1.0"
    report_type: str = "transition-plan-assessment"
    generated_at: datetime = Field(default_factory=utcnow)


class AssessmentProgress(WireModel):
    document_id: str
    user_id: str
    status: ProgressStatus = ProgressStatus.PROCESSING
    current_batch: int = 0
    total_batches: int = 0
    processed_questions: int = 0
    total_questions: int = 0
    progress_percentage: int = 0
    batch_results: list[QuestionEvaluation] = Field(default_factory=list)
    completed_batches: list[int] = Field(default_factory=list)
    in_flight_batch: int | None = None
    lease_started_at: datetime | None = None
    report_id: str | None = None
    final_score: int | None = None
    error_message: str | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.document_id, self.user_id)

    @property
    def is_complete(self) -> bool:
        return self.total_questions > 0 and self.processed_questions >= self.total_questions


class BatchResponse(WireModel):
    success: bool = True
    batch_index: int
    total_batches: int
    questions_in_batch: int
    total_questions: int
    processed_questions: int
    progress_percentage: int
    batch_results: list[QuestionEvaluation] = Field(default_factory=list)
    completed: bool
    next_batch_index: int | None = None
    report_id: str | None = None
    finalization_error: str | None = None


class StoredDocument(WireModel):
    document_id: str
    user_id: str
    file_name: str = "Document Assessment"
    document_text: str | None = None
    truncated: bool = False
