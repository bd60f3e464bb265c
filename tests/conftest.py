from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random

import pytest

from quiz_engine.core.models import (
    Attempt,
    AttemptStatus,
    EssayQuestion,
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    Quiz,
    QuizSettings,
    TrueFalseQuestion,
)
from quiz_engine.core.quiz_authoring import add_question, build_question, create_quiz
from quiz_engine.core.scoring import calculate_quiz_score

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock handed to sessions instead of wall time."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def capital_question() -> MultipleChoiceQuestion:
    return build_question(
        MultipleChoiceQuestion,
        id="q-capital",
        prompt="What is the capital of France?",
        options=["Berlin", "Paris", "Rome", "Madrid"],
        correct_answer="Paris",
        topic="geography",
        points=1,
    )


@pytest.fixture
def primes_question() -> MultipleSelectQuestion:
    return build_question(
        MultipleSelectQuestion,
        id="q-primes",
        prompt="Select the prime numbers.",
        options=["2", "3", "4", "6"],
        correct_answers=["2", "3"],
        topic="math",
        points=4,
    )


@pytest.fixture
def earth_question() -> TrueFalseQuestion:
    return build_question(
        TrueFalseQuestion,
        id="q-earth",
        prompt="True or false?",
        statement="The Earth orbits the Sun.",
        correct_answer=True,
        topic="science",
        points=1,
    )


@pytest.fixture
def essay_question() -> EssayQuestion:
    return build_question(
        EssayQuestion,
        id="q-essay",
        prompt="Explain supply and demand.",
        points=5,
        topic="economics",
    )


@pytest.fixture
def draft_quiz(capital_question, primes_question, earth_question) -> Quiz:
    quiz = create_quiz(
        "Mixed review",
        "teacher-1",
        subject="general",
        settings=QuizSettings(passing_score=70),
    )
    for question in (capital_question, primes_question, earth_question):
        quiz = add_question(quiz, question)
    return quiz


def make_attempt(
    quiz: Quiz,
    answers: dict,
    *,
    user_id: str = "student-1",
    attempt_id: str | None = None,
    started_at: datetime = START,
    time_spent: int = 60,
    status: AttemptStatus = AttemptStatus.COMPLETED,
) -> Attempt:
    """Grade ``answers`` against ``quiz`` and wrap the result as an attempt."""
    score = calculate_quiz_score(quiz, answers)
    return Attempt(
        id=attempt_id or f"{user_id}-{started_at.isoformat()}",
        quiz_id=quiz.id,
        user_id=user_id,
        question_results=score.question_results,
        score=score.score,
        max_score=score.max_score,
        percentage=score.percentage,
        passed=score.passed,
        status=status,
        time_spent=time_spent,
        started_at=started_at,
        completed_at=started_at + timedelta(seconds=time_spent),
    )


@pytest.fixture
def attempt_factory():
    return make_attempt
