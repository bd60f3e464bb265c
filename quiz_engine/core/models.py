"""Domain models for the quiz engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Union

from quiz_engine.constants.quiz_constants import DEFAULT_PASSING_SCORE


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    SHORT_ANSWER = "short_answer"
    MATCHING = "matching"
    ORDERING = "ordering"
    ESSAY = "essay"
    CALCULATION = "calculation"
    DIAGRAM_LABEL = "diagram_label"
    CASE_STUDY = "case_study"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class QuizStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class AttemptStatus(str, Enum):
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    TIMED_OUT = "timed_out"


# --- Question variants -----------------------------------------------------


@dataclass(frozen=True, slots=True, kw_only=True)
class QuestionBase:
    """Fields shared by every question variant."""

    question_type: ClassVar[QuestionType]

    id: str
    prompt: str
    difficulty: Difficulty = Difficulty.MEDIUM
    points: float = 1
    time_estimate: int | None = None  # seconds
    topic: str | None = None
    tags: tuple[str, ...] = ()
    explanation: str | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class MultipleChoiceQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.MULTIPLE_CHOICE

    options: tuple[str, ...] = ()
    correct_answer: str = ""
    shuffle_options: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class MultipleSelectQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.MULTIPLE_SELECT

    options: tuple[str, ...] = ()
    correct_answers: tuple[str, ...] = ()
    shuffle_options: bool = True
    partial_credit: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class TrueFalseQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.TRUE_FALSE

    statement: str = ""
    correct_answer: bool | None = None


@dataclass(frozen=True, slots=True)
class Blank:
    id: str
    correct_answer: str
    acceptable_answers: tuple[str, ...] = ()
    hint: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class FillBlankQuestion(QuestionBase):
    """Text with ``[blank]`` markers; answers are keyed by blank id."""

    question_type: ClassVar[QuestionType] = QuestionType.FILL_BLANK

    text: str = ""
    blanks: tuple[Blank, ...] = ()
    case_sensitive: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class ShortAnswerQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.SHORT_ANSWER

    correct_answer: str = ""
    acceptable_answers: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    case_sensitive: bool = False
    min_length: int | None = None
    max_length: int | None = None


@dataclass(frozen=True, slots=True)
class MatchPair:
    id: str
    left: str
    right: str


@dataclass(frozen=True, slots=True, kw_only=True)
class MatchingQuestion(QuestionBase):
    """Answers map each pair id to the chosen right-hand text."""

    question_type: ClassVar[QuestionType] = QuestionType.MATCHING

    pairs: tuple[MatchPair, ...] = ()
    shuffle_left: bool = True
    shuffle_right: bool = True
    case_sensitive: bool = False


@dataclass(frozen=True, slots=True)
class OrderItem:
    id: str
    text: str


@dataclass(frozen=True, slots=True, kw_only=True)
class OrderingQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.ORDERING

    items: tuple[OrderItem, ...] = ()
    correct_order: tuple[str, ...] = ()  # item ids


@dataclass(frozen=True, slots=True)
class RubricCriterion:
    name: str
    description: str
    max_points: float


@dataclass(frozen=True, slots=True, kw_only=True)
class EssayQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.ESSAY

    rubric: tuple[RubricCriterion, ...] = ()
    min_words: int | None = None
    max_words: int | None = None


@dataclass(frozen=True, slots=True)
class CalculationStep:
    description: str
    formula: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class CalculationQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.CALCULATION

    problem: str = ""
    correct_answer: float | None = None
    tolerance: float | None = None
    units: str | None = None
    show_work: bool = True
    steps: tuple[CalculationStep, ...] = ()


@dataclass(frozen=True, slots=True)
class DiagramLabel:
    id: str
    correct_text: str
    x: float = 0.0  # position as percentage of the image width
    y: float = 0.0
    acceptable_answers: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True, kw_only=True)
class DiagramLabelQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.DIAGRAM_LABEL

    image_url: str = ""
    labels: tuple[DiagramLabel, ...] = ()
    case_sensitive: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class CaseStudyQuestion(QuestionBase):
    question_type: ClassVar[QuestionType] = QuestionType.CASE_STUDY

    case_text: str = ""
    sub_questions: tuple[Question, ...] = ()


Question = Union[
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    TrueFalseQuestion,
    FillBlankQuestion,
    ShortAnswerQuestion,
    MatchingQuestion,
    OrderingQuestion,
    EssayQuestion,
    CalculationQuestion,
    DiagramLabelQuestion,
    CaseStudyQuestion,
]

QUESTION_CLASSES: dict[QuestionType, type[QuestionBase]] = {
    cls.question_type: cls
    for cls in (
        MultipleChoiceQuestion,
        MultipleSelectQuestion,
        TrueFalseQuestion,
        FillBlankQuestion,
        ShortAnswerQuestion,
        MatchingQuestion,
        OrderingQuestion,
        EssayQuestion,
        CalculationQuestion,
        DiagramLabelQuestion,
        CaseStudyQuestion,
    )
}

MANUALLY_GRADED_TYPES: frozenset[QuestionType] = frozenset(
    {QuestionType.ESSAY, QuestionType.CASE_STUDY}
)


# --- Quiz aggregate --------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QuizSettings:
    time_limit_minutes: int | None = None  # None means unlimited
    passing_score: int = DEFAULT_PASSING_SCORE  # percentage 0-100
    max_attempts: int | None = None  # None means unlimited
    shuffle_questions: bool = True
    show_correct_answers: bool = True
    show_explanation: bool = True
    allow_retake: bool = True

    @property
    def has_time_limit(self) -> bool:
        return self.time_limit_minutes is not None

    @property
    def time_limit_seconds(self) -> int | None:
        if self.time_limit_minutes is None:
            return None
        return int(self.time_limit_minutes * 60)


@dataclass(frozen=True, slots=True)
class QuizStats:
    """Cached aggregate stats refreshed after each completed attempt."""

    attempt_count: int = 0
    average_score: int = 0
    average_time_spent: int | None = None


@dataclass(frozen=True, slots=True)
class Quiz:
    id: str
    title: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    subject: str = "general"
    questions: tuple[Question, ...] = ()
    settings: QuizSettings = field(default_factory=QuizSettings)
    status: QuizStatus = QuizStatus.DRAFT
    tags: tuple[str, ...] = ()
    source_type: str = "manual"
    published_at: datetime | None = None
    stats: QuizStats = field(default_factory=QuizStats)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def max_score(self) -> float:
        return sum(question.points for question in self.questions)

    def get_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


# --- Results ---------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QuestionResult:
    """Graded outcome of one question inside an attempt."""

    question_id: str
    question: Question
    submitted_answer: Any
    correct: bool
    points_earned: float
    max_points: float
    feedback: str
    time_spent: int = 0  # seconds
    pending_review: bool = False

    @property
    def topic(self) -> str | None:
        return self.question.topic


@dataclass(frozen=True, slots=True)
class Attempt:
    """Persisted record of a finished, abandoned or timed-out session."""

    id: str
    quiz_id: str
    user_id: str
    question_results: tuple[QuestionResult, ...]
    score: float
    max_score: float
    percentage: int
    passed: bool
    status: AttemptStatus
    time_spent: int  # seconds
    started_at: datetime
    completed_at: datetime | None = None

    @property
    def created_at(self) -> datetime:
        return self.started_at

    @property
    def pending_question_ids(self) -> frozenset[str]:
        return frozenset(r.question_id for r in self.question_results if r.pending_review)

    @property
    def is_pending_review(self) -> bool:
        return any(r.pending_review for r in self.question_results)

    def get_result(self, question_id: str) -> QuestionResult | None:
        return next((r for r in self.question_results if r.question_id == question_id), None)
