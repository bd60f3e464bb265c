from __future__ import annotations

import pytest

from quiz_engine.core.manual_grading import ManualGradingError, apply_manual_grade
from quiz_engine.core.models import AttemptStatus
from quiz_engine.core.quiz_authoring import add_question

ANSWERS = {
    "q-capital": "Paris",
    "q-primes": ["2", "3"],
    "q-earth": True,
    "q-essay": "Prices rise when demand exceeds supply.",
}


@pytest.fixture
def essay_quiz(draft_quiz, essay_question):
    return add_question(draft_quiz, essay_question)


@pytest.fixture
def pending_attempt(essay_quiz, attempt_factory):
    return attempt_factory(essay_quiz, ANSWERS)


def test_essay_leaves_attempt_pending(pending_attempt):
    assert pending_attempt.is_pending_review
    assert pending_attempt.pending_question_ids == frozenset({"q-essay"})
    assert pending_attempt.score == 6
    assert pending_attempt.percentage == 55
    assert not pending_attempt.passed


def test_full_marks_complete_the_attempt(essay_quiz, pending_attempt):
    graded = apply_manual_grade(pending_attempt, essay_quiz, "q-essay", 5, "Well argued.")
    assert graded.id == pending_attempt.id
    assert not graded.is_pending_review
    result = graded.get_result("q-essay")
    assert result.correct
    assert result.points_earned == 5
    assert result.feedback == "Well argued."
    assert graded.score == 11
    assert graded.percentage == 100
    assert graded.passed
    assert pending_attempt.is_pending_review


def test_partial_marks(essay_quiz, pending_attempt):
    graded = apply_manual_grade(pending_attempt, essay_quiz, "q-essay", 2.5)
    result = graded.get_result("q-essay")
    assert not result.correct
    assert result.feedback == "Graded manually: 2.5 of 5 points."
    assert graded.score == 8.5
    assert graded.percentage == 77


@pytest.mark.parametrize(
    "question_id, points",
    [("q-essay", 6), ("q-essay", -1), ("q-capital", 1), ("missing", 1)],
)
def test_rejected_grades(essay_quiz, pending_attempt, question_id, points):
    with pytest.raises(ManualGradingError):
        apply_manual_grade(pending_attempt, essay_quiz, question_id, points)


def test_question_graded_only_once(essay_quiz, pending_attempt):
    graded = apply_manual_grade(pending_attempt, essay_quiz, "q-essay", 3)
    with pytest.raises(ManualGradingError):
        apply_manual_grade(graded, essay_quiz, "q-essay", 5)


def test_abandoned_attempts_cannot_be_graded(essay_quiz, attempt_factory):
    abandoned = attempt_factory(essay_quiz, {}, status=AttemptStatus.ABANDONED)
    with pytest.raises(ManualGradingError):
        apply_manual_grade(abandoned, essay_quiz, "q-essay", 1)
