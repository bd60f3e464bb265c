"""Creating, editing and publishing quizzes.

Every mutator takes a ``Quiz`` and returns a new one with ``updated_at``
refreshed; nothing here touches storage. Mutators only accept draft quizzes:
a published quiz must be reopened first and an archived quiz is final.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging
import math
from typing import Any, Iterable, TypeVar
from uuid import uuid4

from quiz_engine.constants.quiz_constants import DEFAULT_PASSING_SCORE
from quiz_engine.core.models import (
    CalculationQuestion,
    CaseStudyQuestion,
    DiagramLabelQuestion,
    EssayQuestion,
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    OrderingQuestion,
    Question,
    QuestionBase,
    Quiz,
    QuizSettings,
    QuizStatus,
    ShortAnswerQuestion,
    TrueFalseQuestion,
)
from quiz_engine.core.scoring import get_default_points, get_estimated_time

logger = logging.getLogger(__name__)

QuestionT = TypeVar("QuestionT", bound=QuestionBase)


class QuizStateError(RuntimeError):
    """Raised when a quiz is edited or transitioned from the wrong status."""


@dataclass(frozen=True, slots=True)
class QuizValidationError:
    """A single reason why a quiz cannot be published."""

    field: str
    message: str
    question_id: str | None = None


class QuizPublishError(ValueError):
    """Raised by :func:`publish_quiz` when structural validation fails."""

    def __init__(self, errors: list[QuizValidationError]) -> None:
        self.errors = errors
        summary = "; ".join(error.message for error in errors)
        super().__init__(f"Quiz cannot be published: {summary}")


@dataclass(frozen=True, slots=True)
class QuizTemplate:
    id: str
    name: str
    description: str
    subject: str
    question_types: tuple[str, ...]
    default_settings: QuizSettings


DEFAULT_QUIZ_SETTINGS = QuizSettings(
    passing_score=DEFAULT_PASSING_SCORE,
    shuffle_questions=True,
    show_correct_answers=True,
    show_explanation=True,
    allow_retake=True,
)

QUIZ_TEMPLATES: tuple[QuizTemplate, ...] = (
    QuizTemplate(
        id="quick-review",
        name="Quick Review",
        description="Short quiz for quick knowledge check",
        subject="economics",
        question_types=("multiple_choice", "true_false"),
        default_settings=replace(DEFAULT_QUIZ_SETTINGS, time_limit_minutes=10),
    ),
    QuizTemplate(
        id="comprehensive-test",
        name="Comprehensive Test",
        description="Full assessment with various question types",
        subject="economics",
        question_types=("multiple_choice", "multiple_select", "short_answer", "essay"),
        default_settings=replace(DEFAULT_QUIZ_SETTINGS, time_limit_minutes=60, passing_score=65),
    ),
    QuizTemplate(
        id="calculation-practice",
        name="Calculation Practice",
        description="Focus on numerical problems and calculations",
        subject="economics",
        question_types=("calculation", "fill_blank"),
        default_settings=replace(DEFAULT_QUIZ_SETTINGS, time_limit_minutes=45),
    ),
    QuizTemplate(
        id="case-study-analysis",
        name="Case Study Analysis",
        description="Analyze real-world scenarios",
        subject="geography",
        question_types=("multiple_choice", "short_answer", "essay"),
        default_settings=replace(DEFAULT_QUIZ_SETTINGS, time_limit_minutes=90, passing_score=60),
    ),
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def get_template(template_id: str) -> QuizTemplate | None:
    return next((t for t in QUIZ_TEMPLATES if t.id == template_id), None)


def create_quiz(
    title: str,
    owner_id: str,
    *,
    subject: str = "general",
    description: str = "",
    settings: QuizSettings | None = None,
    template_id: str | None = None,
    source_type: str = "manual",
    tags: Iterable[str] = (),
) -> Quiz:
    """Create an empty draft quiz. Explicit settings win over template defaults."""
    resolved_settings = DEFAULT_QUIZ_SETTINGS
    if template_id is not None:
        template = get_template(template_id)
        if template is None:
            logger.warning("Unknown quiz template %r; using default settings.", template_id)
        else:
            resolved_settings = template.default_settings
    if settings is not None:
        resolved_settings = settings

    now = _now()
    return Quiz(
        id=new_id(),
        title=title,
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
        description=description,
        subject=subject,
        settings=resolved_settings,
        status=QuizStatus.DRAFT,
        tags=tuple(tags),
        source_type=source_type,
    )


def build_question(question_cls: type[QuestionT], **fields: Any) -> QuestionT:
    """Instantiate a question, filling in id, points and time estimate defaults.

    List values are frozen into tuples so callers may pass plain lists.
    """
    question_type = question_cls.question_type
    fields.setdefault("id", new_id())
    fields.setdefault("points", get_default_points(question_type))
    fields.setdefault("time_estimate", get_estimated_time(question_type))
    frozen = {key: tuple(value) if isinstance(value, list) else value for key, value in fields.items()}
    return question_cls(**frozen)


# --- Mutators ---------------------------------------------------------------


def _ensure_draft(quiz: Quiz) -> None:
    if quiz.status is not QuizStatus.DRAFT:
        raise QuizStateError(f"Quiz {quiz.id} is {quiz.status.value}; only drafts can be edited.")


def _touch(quiz: Quiz, **changes: Any) -> Quiz:
    return replace(quiz, updated_at=_now(), **changes)


def add_question(quiz: Quiz, question: Question) -> Quiz:
    _ensure_draft(quiz)
    return _touch(quiz, questions=quiz.questions + (question,))


def remove_question(quiz: Quiz, question_id: str) -> Quiz:
    _ensure_draft(quiz)
    remaining = tuple(q for q in quiz.questions if q.id != question_id)
    if len(remaining) == len(quiz.questions):
        logger.debug("remove_question: %s not in quiz %s", question_id, quiz.id)
        return quiz
    return _touch(quiz, questions=remaining)


def update_question(quiz: Quiz, question_id: str, **changes: Any) -> Quiz:
    """Replace fields on one question. The question keeps its id."""
    _ensure_draft(quiz)
    changes.pop("id", None)
    changes = {key: tuple(value) if isinstance(value, list) else value for key, value in changes.items()}
    if quiz.get_question(question_id) is None:
        logger.debug("update_question: %s not in quiz %s", question_id, quiz.id)
        return quiz
    updated = tuple(replace(q, **changes) if q.id == question_id else q for q in quiz.questions)
    return _touch(quiz, questions=updated)


def reorder_questions(quiz: Quiz, question_ids: Iterable[str]) -> Quiz:
    """Move the named questions to the front in the given order.

    Unknown ids are ignored and questions not named keep their relative
    order after the named ones, so no question is ever dropped.
    """
    _ensure_draft(quiz)
    by_id = {q.id: q for q in quiz.questions}
    ordered: list[Question] = []
    seen: set[str] = set()
    for question_id in question_ids:
        if question_id in by_id and question_id not in seen:
            ordered.append(by_id[question_id])
            seen.add(question_id)
    ordered.extend(q for q in quiz.questions if q.id not in seen)
    return _touch(quiz, questions=tuple(ordered))


def duplicate_question(quiz: Quiz, question_id: str) -> Quiz:
    """Append a copy of a question with a fresh id."""
    _ensure_draft(quiz)
    original = quiz.get_question(question_id)
    if original is None:
        return quiz
    return add_question(quiz, replace(original, id=new_id()))


def update_settings(quiz: Quiz, **changes: Any) -> Quiz:
    _ensure_draft(quiz)
    return _touch(quiz, settings=replace(quiz.settings, **changes))


def update_details(quiz: Quiz, **changes: Any) -> Quiz:
    """Edit title, description, subject or tags."""
    _ensure_draft(quiz)
    allowed = {"title", "description", "subject", "tags"}
    unknown = set(changes) - allowed
    if unknown:
        raise TypeError(f"Cannot edit quiz fields: {', '.join(sorted(unknown))}")
    if "tags" in changes:
        changes["tags"] = tuple(changes["tags"])
    return _touch(quiz, **changes)


# --- Validation -------------------------------------------------------------


def _question_errors(question: Question, prefix: str, label: str) -> list[QuizValidationError]:
    errors: list[QuizValidationError] = []

    def add(field: str, message: str) -> None:
        errors.append(QuizValidationError(f"{prefix}.{field}", f"{label} {message}", question.id))

    if not question.prompt.strip():
        add("prompt", "text is required")
    if not isinstance(question.points, (int, float)) or not math.isfinite(question.points) or question.points <= 0:
        add("points", "must be worth a positive number of points")

    match question:
        case MultipleChoiceQuestion():
            if len(question.options) < 2:
                add("options", "must have at least 2 options")
            if not question.correct_answer:
                add("correct_answer", "must have a correct answer")
            elif question.correct_answer not in question.options:
                add("correct_answer", "correct answer must be one of the options")
        case MultipleSelectQuestion():
            if len(question.options) < 2:
                add("options", "must have at least 2 options")
            if not question.correct_answers:
                add("correct_answers", "must have at least one correct answer")
            elif not set(question.correct_answers) <= set(question.options):
                add("correct_answers", "correct answers must all be options")
        case TrueFalseQuestion():
            if question.correct_answer is None:
                add("correct_answer", "must be marked true or false")
        case FillBlankQuestion():
            if not question.blanks:
                add("blanks", "must have at least one blank")
            elif len({b.id for b in question.blanks}) != len(question.blanks):
                add("blanks", "blank ids must be unique")
            if any(not b.correct_answer.strip() for b in question.blanks):
                add("blanks", "every blank needs a correct answer")
        case ShortAnswerQuestion():
            if not question.correct_answer.strip():
                add("correct_answer", "must have a correct answer")
        case MatchingQuestion():
            if not question.pairs:
                add("pairs", "must have at least one pair")
            elif len({p.id for p in question.pairs}) != len(question.pairs):
                add("pairs", "pair ids must be unique")
        case OrderingQuestion():
            item_ids = [item.id for item in question.items]
            if not item_ids:
                add("items", "must have at least one item")
            elif sorted(item_ids) != sorted(question.correct_order) or len(set(item_ids)) != len(item_ids):
                add("correct_order", "correct order must list every item exactly once")
        case CalculationQuestion():
            if question.correct_answer is None or not math.isfinite(question.correct_answer):
                add("correct_answer", "must have a numeric correct answer")
            if question.tolerance is not None and question.tolerance < 0:
                add("tolerance", "tolerance cannot be negative")
        case DiagramLabelQuestion():
            if not question.labels:
                add("labels", "must have at least one label")
            elif len({lbl.id for lbl in question.labels}) != len(question.labels):
                add("labels", "label ids must be unique")
        case EssayQuestion():
            if (
                question.min_words is not None
                and question.max_words is not None
                and question.min_words > question.max_words
            ):
                add("min_words", "minimum word count exceeds the maximum")
        case CaseStudyQuestion():
            if not question.case_text.strip():
                add("case_text", "must include the case text")
            for index, sub_question in enumerate(question.sub_questions):
                errors.extend(
                    _question_errors(
                        sub_question,
                        f"{prefix}.sub_questions[{index}]",
                        f"{label} part {index + 1}",
                    )
                )
    return errors


def validate_quiz(quiz: Quiz) -> list[QuizValidationError]:
    """Return every structural problem that blocks publishing ``quiz``."""
    errors: list[QuizValidationError] = []

    if not quiz.title.strip():
        errors.append(QuizValidationError("title", "Quiz title is required"))
    if not quiz.questions:
        errors.append(QuizValidationError("questions", "Quiz must have at least one question"))

    settings = quiz.settings
    if not 0 <= settings.passing_score <= 100:
        errors.append(QuizValidationError("settings.passing_score", "Passing score must be between 0 and 100"))
    if settings.time_limit_minutes is not None and settings.time_limit_minutes <= 0:
        errors.append(QuizValidationError("settings.time_limit_minutes", "Time limit must be positive"))
    if settings.max_attempts is not None and settings.max_attempts <= 0:
        errors.append(QuizValidationError("settings.max_attempts", "Max attempts must be positive"))

    seen_ids: set[str] = set()
    for index, question in enumerate(quiz.questions):
        if question.id in seen_ids:
            errors.append(
                QuizValidationError(
                    f"questions[{index}].id", f"Question {index + 1} reuses an id", question.id
                )
            )
        seen_ids.add(question.id)
        errors.extend(_question_errors(question, f"questions[{index}]", f"Question {index + 1}"))
    return errors


def is_quiz_valid(quiz: Quiz) -> bool:
    return not validate_quiz(quiz)


# --- Lifecycle --------------------------------------------------------------


def publish_quiz(quiz: Quiz) -> Quiz:
    if quiz.status is not QuizStatus.DRAFT:
        raise QuizStateError(f"Quiz {quiz.id} is {quiz.status.value}; only drafts can be published.")
    errors = validate_quiz(quiz)
    if errors:
        logger.info("Refusing to publish quiz %s: %d validation error(s)", quiz.id, len(errors))
        raise QuizPublishError(errors)
    now = _now()
    return replace(quiz, status=QuizStatus.PUBLISHED, published_at=now, updated_at=now)


def archive_quiz(quiz: Quiz) -> Quiz:
    if quiz.status is QuizStatus.ARCHIVED:
        return quiz
    return _touch(quiz, status=QuizStatus.ARCHIVED)


def reopen_quiz(quiz: Quiz) -> Quiz:
    """Move a published quiz back to draft so it can be edited again."""
    if quiz.status is QuizStatus.DRAFT:
        return quiz
    if quiz.status is QuizStatus.ARCHIVED:
        raise QuizStateError(f"Quiz {quiz.id} is archived and cannot be reopened.")
    return _touch(quiz, status=QuizStatus.DRAFT)
