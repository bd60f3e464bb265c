"""Applying human-assigned scores to essay and case-study results.

Attempts are immutable; grading produces a new ``Attempt`` with the same id
that the caller saves over the old one. Only results still pending review can
be graded, so an attempt can be amended at most once per pending question.
"""

from __future__ import annotations

from dataclasses import replace

from quiz_engine.core.models import Attempt, AttemptStatus, Quiz
from quiz_engine.core.scoring import round_points, summarize_results


class ManualGradingError(ValueError):
    """Raised when a manual grade cannot be applied."""


def apply_manual_grade(
    attempt: Attempt,
    quiz: Quiz,
    question_id: str,
    points: float,
    feedback: str | None = None,
) -> Attempt:
    if attempt.quiz_id != quiz.id:
        raise ManualGradingError(f"Attempt {attempt.id} does not belong to quiz {quiz.id}.")
    if attempt.status is AttemptStatus.ABANDONED:
        raise ManualGradingError(f"Attempt {attempt.id} was abandoned and has no results to grade.")

    result = attempt.get_result(question_id)
    if result is None:
        raise ManualGradingError(f"Question {question_id} is not part of attempt {attempt.id}.")
    if not result.pending_review:
        raise ManualGradingError(f"Question {question_id} is not awaiting manual grading.")
    if not 0 <= points <= result.max_points:
        raise ManualGradingError(
            f"Points for {question_id} must be between 0 and {result.max_points}, got {points}."
        )

    awarded = round_points(points)
    graded = replace(
        result,
        points_earned=awarded,
        correct=awarded == result.max_points,
        feedback=feedback or f"Graded manually: {awarded} of {result.max_points} points.",
        pending_review=False,
    )
    results = tuple(graded if r.question_id == question_id else r for r in attempt.question_results)
    score, percentage, passed = summarize_results(results, attempt.max_score, quiz.settings.passing_score)
    return replace(
        attempt,
        question_results=results,
        score=score,
        percentage=percentage,
        passed=passed,
    )
