"""Pydantic documents describing the JSON interchange format of a quiz.

The document mirrors the domain dataclasses field for field, with ``type``
as the discriminator of the question union. Answer-key fields default to
empty so that quizzes exported without answers still load (as drafts that
fail validation until the keys are filled in).
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from quiz_engine.constants.quiz_constants import DEFAULT_PASSING_SCORE
from quiz_engine.core.models import Difficulty


class _Document(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _QuestionDocument(_Document):
    id: str | None = None
    prompt: str
    difficulty: Difficulty = Difficulty.MEDIUM
    points: float = Field(default=1, gt=0)
    time_estimate: int | None = None
    topic: str | None = None
    tags: list[str] = []
    explanation: str | None = None
    hint: str | None = None


class MultipleChoiceDocument(_QuestionDocument):
    type: Literal["multiple_choice"]
    options: list[str] = []
    correct_answer: str = ""
    shuffle_options: bool = True


class MultipleSelectDocument(_QuestionDocument):
    type: Literal["multiple_select"]
    options: list[str] = []
    correct_answers: list[str] = []
    shuffle_options: bool = True
    partial_credit: bool = True


class TrueFalseDocument(_QuestionDocument):
    type: Literal["true_false"]
    statement: str = ""
    correct_answer: bool | None = None


class BlankDocument(_Document):
    id: str
    correct_answer: str = ""
    acceptable_answers: list[str] = []
    hint: str | None = None


class FillBlankDocument(_QuestionDocument):
    type: Literal["fill_blank"]
    text: str = ""
    blanks: list[BlankDocument] = []
    case_sensitive: bool = False


class ShortAnswerDocument(_QuestionDocument):
    type: Literal["short_answer"]
    correct_answer: str = ""
    acceptable_answers: list[str] = []
    keywords: list[str] = []
    case_sensitive: bool = False
    min_length: int | None = None
    max_length: int | None = None


class MatchPairDocument(_Document):
    id: str
    left: str
    right: str


class MatchingDocument(_QuestionDocument):
    type: Literal["matching"]
    pairs: list[MatchPairDocument] = []
    shuffle_left: bool = True
    shuffle_right: bool = True
    case_sensitive: bool = False


class OrderItemDocument(_Document):
    id: str
    text: str


class OrderingDocument(_QuestionDocument):
    type: Literal["ordering"]
    items: list[OrderItemDocument] = []
    correct_order: list[str] = []


class RubricCriterionDocument(_Document):
    name: str
    description: str = ""
    max_points: float = Field(ge=0)


class EssayDocument(_QuestionDocument):
    type: Literal["essay"]
    rubric: list[RubricCriterionDocument] = []
    min_words: int | None = None
    max_words: int | None = None


class CalculationStepDocument(_Document):
    description: str
    formula: str | None = None


class CalculationDocument(_QuestionDocument):
    type: Literal["calculation"]
    problem: str = ""
    correct_answer: float | None = None
    tolerance: float | None = None
    units: str | None = None
    show_work: bool = True
    steps: list[CalculationStepDocument] = []


class DiagramLabelDocument(_Document):
    id: str
    correct_text: str = ""
    x: float = 0.0
    y: float = 0.0
    acceptable_answers: list[str] = []


class DiagramLabelQuestionDocument(_QuestionDocument):
    type: Literal["diagram_label"]
    image_url: str = ""
    labels: list[DiagramLabelDocument] = []
    case_sensitive: bool = False


class CaseStudyDocument(_QuestionDocument):
    type: Literal["case_study"]
    case_text: str = ""
    sub_questions: list[QuestionDocument] = []


QuestionDocument = Annotated[
    Union[
        MultipleChoiceDocument,
        MultipleSelectDocument,
        TrueFalseDocument,
        FillBlankDocument,
        ShortAnswerDocument,
        MatchingDocument,
        OrderingDocument,
        EssayDocument,
        CalculationDocument,
        DiagramLabelQuestionDocument,
        CaseStudyDocument,
    ],
    Field(discriminator="type"),
]

CaseStudyDocument.model_rebuild()


class SettingsDocument(_Document):
    time_limit_minutes: int | None = Field(default=None, gt=0)
    passing_score: int = Field(default=DEFAULT_PASSING_SCORE, ge=0, le=100)
    max_attempts: int | None = Field(default=None, gt=0)
    shuffle_questions: bool = True
    show_correct_answers: bool = True
    show_explanation: bool = True
    allow_retake: bool = True


class QuizDocument(_Document):
    title: str
    description: str = ""
    subject: str = "general"
    tags: list[str] = []
    source_type: str = "manual"
    settings: SettingsDocument = SettingsDocument()
    questions: list[QuestionDocument] = []
