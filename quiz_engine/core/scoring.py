"""Answer validation and quiz scoring.

Every function in this module is pure: it reads a question (or quiz) and a
submitted answer and returns a graded value without touching any state, so it
is safe to call from any number of sessions at once.

Answer shapes expected per question type:

    multiple_choice   str (the chosen option text)
    multiple_select   iterable of option texts (list, tuple, set)
    true_false        bool
    fill_blank        mapping of blank id -> text
    short_answer      str
    matching          mapping of pair id -> chosen right-hand text
    ordering          sequence of item ids
    calculation       int or float
    diagram_label     mapping of label id -> text
    essay             str
    case_study        anything non-empty; graded by a person

A value of the wrong shape is not an error: it earns zero points with the
feedback "Invalid answer format".
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import logging
import math
from typing import Any

from quiz_engine.constants.quiz_constants import (
    DEFAULT_POINTS,
    DEFAULT_TOLERANCE,
    ESTIMATED_TIME_SECONDS,
    FALLBACK_ESTIMATED_TIME_SECONDS,
    KEYWORD_CREDIT_FACTOR,
    PARTIAL_CREDIT_PENALTY,
)
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
    QuestionResult,
    QuestionType,
    Quiz,
    ShortAnswerQuestion,
    TrueFalseQuestion,
)

logger = logging.getLogger(__name__)

INVALID_FORMAT_FEEDBACK = "Invalid answer format"
NO_ANSWER_FEEDBACK = "No answer submitted"
CORRECT_FEEDBACK = "Correct!"


@dataclass(frozen=True, slots=True)
class ScoringPolicy:
    """Tunable coefficients used by the partial-credit rules."""

    partial_credit_penalty: float = PARTIAL_CREDIT_PENALTY
    keyword_credit_factor: float = KEYWORD_CREDIT_FACTOR
    default_tolerance: float = DEFAULT_TOLERANCE


DEFAULT_SCORING_POLICY = ScoringPolicy()


@dataclass(frozen=True, slots=True)
class AnswerValidation:
    correct: bool
    points_earned: float
    feedback: str
    pending_review: bool = False


@dataclass(frozen=True, slots=True)
class QuizScore:
    score: float
    max_score: float
    percentage: int
    passed: bool
    question_results: tuple[QuestionResult, ...]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a calculator does (0.5 always goes up), not banker's rounding."""
    exponent = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def round_points(value: float) -> float:
    return round_half_up(value, 2)


def calculate_percentage(score: float, max_score: float) -> int:
    if max_score <= 0:
        return 0
    return int(round_half_up(score / max_score * 100))


def normalize_text(text: str, case_sensitive: bool = False) -> str:
    """Collapse runs of whitespace and, unless case matters, fold case."""
    collapsed = " ".join(text.split())
    return collapsed if case_sensitive else collapsed.casefold()


def get_default_points(question_type: QuestionType | str) -> float:
    return DEFAULT_POINTS.get(QuestionType(question_type).value, 1)


def get_estimated_time(question_type: QuestionType | str) -> int:
    return ESTIMATED_TIME_SECONDS.get(
        QuestionType(question_type).value, FALLBACK_ESTIMATED_TIME_SECONDS
    )


def _invalid() -> AnswerValidation:
    return AnswerValidation(correct=False, points_earned=0, feedback=INVALID_FORMAT_FEEDBACK)


def _all_or_nothing(question: Question, correct: bool, wrong_feedback: str) -> AnswerValidation:
    return AnswerValidation(
        correct=correct,
        points_earned=question.points if correct else 0,
        feedback=CORRECT_FEEDBACK if correct else wrong_feedback,
    )


def _per_unit(question: Question, correct_units: int, unit_count: int, wrong_feedback: str) -> AnswerValidation:
    if unit_count == 0:
        return _invalid()
    earned = round_points(correct_units * (question.points / unit_count))
    all_correct = correct_units == unit_count
    return AnswerValidation(
        correct=all_correct,
        points_earned=min(earned, question.points),
        feedback=CORRECT_FEEDBACK if all_correct else wrong_feedback,
    )


def _matches_any(answer: Any, expected: str, alternates: Iterable[str], case_sensitive: bool) -> bool:
    if not isinstance(answer, str):
        return False
    normalized = normalize_text(answer, case_sensitive)
    if normalized == normalize_text(expected, case_sensitive):
        return True
    return any(normalized == normalize_text(alt, case_sensitive) for alt in alternates)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# --- Per-variant validators -------------------------------------------------


def _validate_multiple_choice(question: MultipleChoiceQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, str):
        return _invalid()
    return _all_or_nothing(
        question,
        answer == question.correct_answer,
        f"The correct answer was: {question.correct_answer}",
    )


def _validate_true_false(question: TrueFalseQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, bool):
        return _invalid()
    expected = "true" if question.correct_answer else "false"
    return _all_or_nothing(
        question, answer == question.correct_answer, f"The statement is {expected}."
    )


def _validate_multiple_select(
    question: MultipleSelectQuestion, answer: Any, policy: ScoringPolicy
) -> AnswerValidation:
    if isinstance(answer, (str, bytes, Mapping)) or not isinstance(answer, Iterable):
        return _invalid()
    selected = list(answer)
    if not all(isinstance(item, str) for item in selected):
        return _invalid()

    correct_set = set(question.correct_answers)
    selected_set = set(selected)
    hits = selected_set & correct_set
    misses = selected_set - correct_set
    all_correct = selected_set == correct_set

    if not question.partial_credit:
        return _all_or_nothing(
            question,
            all_correct,
            f"The correct answers were: {', '.join(question.correct_answers)}",
        )

    if not correct_set:
        ratio = 1.0 if all_correct else 0.0
    else:
        penalty = len(misses) / len(question.options) if question.options else 0.0
        ratio = max(0.0, len(hits) / len(correct_set) - policy.partial_credit_penalty * penalty)
    earned = min(round_points(ratio * question.points), question.points)
    return AnswerValidation(
        correct=all_correct,
        points_earned=earned,
        feedback=CORRECT_FEEDBACK
        if all_correct
        else f"You selected {len(hits)} of {len(correct_set)} correct answers.",
    )


def _validate_fill_blank(question: FillBlankQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, Mapping):
        return _invalid()
    missed: list[str] = []
    correct_units = 0
    for blank in question.blanks:
        if _matches_any(
            answer.get(blank.id, ""),
            blank.correct_answer,
            blank.acceptable_answers,
            question.case_sensitive,
        ):
            correct_units += 1
        else:
            missed.append(f'Blank "{blank.id}": Expected "{blank.correct_answer}"')
    return _per_unit(question, correct_units, len(question.blanks), "; ".join(missed))


def _validate_short_answer(
    question: ShortAnswerQuestion, answer: Any, policy: ScoringPolicy
) -> AnswerValidation:
    if not isinstance(answer, str):
        return _invalid()
    if _matches_any(
        answer, question.correct_answer, question.acceptable_answers, question.case_sensitive
    ):
        return _all_or_nothing(question, True, "")

    earned = 0.0
    if question.keywords:
        normalized = normalize_text(answer, question.case_sensitive)
        found = sum(
            1
            for keyword in question.keywords
            if normalize_text(keyword, question.case_sensitive) in normalized
        )
        earned = round_points(
            found / len(question.keywords) * question.points * policy.keyword_credit_factor
        )
    return AnswerValidation(
        correct=False,
        points_earned=min(earned, question.points),
        feedback=f'Expected: "{question.correct_answer}"',
    )


def _validate_matching(question: MatchingQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, Mapping):
        return _invalid()
    correct_units = sum(
        1
        for pair in question.pairs
        if _matches_any(answer.get(pair.id), pair.right, (), question.case_sensitive)
    )
    return _per_unit(
        question,
        correct_units,
        len(question.pairs),
        f"You matched {correct_units} of {len(question.pairs)} correctly.",
    )


def _validate_ordering(question: OrderingQuestion, answer: Any) -> AnswerValidation:
    if isinstance(answer, (str, bytes)) or not isinstance(answer, Sequence):
        return _invalid()
    expected = question.correct_order
    correct_units = sum(1 for given, wanted in zip(answer, expected) if given == wanted)
    return _per_unit(
        question,
        correct_units,
        len(expected),
        f"You placed {correct_units} of {len(expected)} items in the correct position.",
    )


def _validate_calculation(
    question: CalculationQuestion, answer: Any, policy: ScoringPolicy
) -> AnswerValidation:
    if not _is_number(answer) or question.correct_answer is None:
        return _invalid()
    try:
        value = float(answer)
    except OverflowError:
        return _invalid()
    tolerance = question.tolerance if question.tolerance is not None else policy.default_tolerance
    correct = math.isfinite(value) and abs(value - question.correct_answer) <= tolerance
    units = f" {question.units}" if question.units else ""
    return _all_or_nothing(
        question, correct, f"The correct answer is {question.correct_answer}{units}."
    )


def _validate_diagram_label(question: DiagramLabelQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, Mapping):
        return _invalid()
    correct_units = sum(
        1
        for label in question.labels
        if _matches_any(
            answer.get(label.id, ""),
            label.correct_text,
            label.acceptable_answers,
            question.case_sensitive,
        )
    )
    return _per_unit(
        question,
        correct_units,
        len(question.labels),
        f"You labeled {correct_units} of {len(question.labels)} correctly.",
    )


def _validate_essay(question: EssayQuestion, answer: Any) -> AnswerValidation:
    if not isinstance(answer, str):
        return _invalid()
    word_count = len(answer.split())
    return AnswerValidation(
        correct=False,
        points_earned=0,
        feedback=f"Essay submitted ({word_count} words). Awaiting manual grading.",
        pending_review=True,
    )


def _validate_case_study(question: CaseStudyQuestion, answer: Any) -> AnswerValidation:
    return AnswerValidation(
        correct=False,
        points_earned=0,
        feedback="Case study submitted. Awaiting manual grading.",
        pending_review=True,
    )


def validate_answer(
    question: Question, answer: Any, policy: ScoringPolicy = DEFAULT_SCORING_POLICY
) -> AnswerValidation:
    """Grade a single submitted answer against its question."""
    if answer is None:
        return AnswerValidation(correct=False, points_earned=0, feedback=NO_ANSWER_FEEDBACK)

    match question:
        case MultipleChoiceQuestion():
            return _validate_multiple_choice(question, answer)
        case MultipleSelectQuestion():
            return _validate_multiple_select(question, answer, policy)
        case TrueFalseQuestion():
            return _validate_true_false(question, answer)
        case FillBlankQuestion():
            return _validate_fill_blank(question, answer)
        case ShortAnswerQuestion():
            return _validate_short_answer(question, answer, policy)
        case MatchingQuestion():
            return _validate_matching(question, answer)
        case OrderingQuestion():
            return _validate_ordering(question, answer)
        case CalculationQuestion():
            return _validate_calculation(question, answer, policy)
        case DiagramLabelQuestion():
            return _validate_diagram_label(question, answer)
        case EssayQuestion():
            return _validate_essay(question, answer)
        case CaseStudyQuestion():
            return _validate_case_study(question, answer)
        case _:
            logger.error("Unknown question variant %r; scoring as invalid.", type(question).__name__)
            return _invalid()


def grade_question(
    question: Question,
    answer: Any,
    policy: ScoringPolicy = DEFAULT_SCORING_POLICY,
    time_spent: int = 0,
) -> QuestionResult:
    validation = validate_answer(question, answer, policy)
    return QuestionResult(
        question_id=question.id,
        question=question,
        submitted_answer=answer,
        correct=validation.correct,
        points_earned=validation.points_earned,
        max_points=question.points,
        feedback=validation.feedback,
        time_spent=time_spent,
        pending_review=validation.pending_review,
    )


def summarize_results(
    results: Sequence[QuestionResult], max_score: float, passing_score: int
) -> tuple[float, int, bool]:
    """Return ``(score, percentage, passed)`` for a set of graded results."""
    score = round_points(sum(r.points_earned for r in results))
    score = min(score, max_score)
    percentage = calculate_percentage(score, max_score)
    return score, percentage, percentage >= passing_score


def calculate_quiz_score(
    quiz: Quiz,
    answers: Mapping[str, Any],
    policy: ScoringPolicy = DEFAULT_SCORING_POLICY,
    time_spent: Mapping[str, int] | None = None,
) -> QuizScore:
    """Grade every question of ``quiz`` in quiz order."""
    time_spent = time_spent or {}
    results = tuple(
        grade_question(question, answers.get(question.id), policy, time_spent.get(question.id, 0))
        for question in quiz.questions
    )
    max_score = quiz.max_score
    score, percentage, passed = summarize_results(results, max_score, quiz.settings.passing_score)
    return QuizScore(
        score=score,
        max_score=max_score,
        percentage=percentage,
        passed=passed,
        question_results=results,
    )
