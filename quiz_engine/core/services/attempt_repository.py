"""Persistence collaborator for quizzes and attempts."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock
from typing import Iterable, Protocol

from quiz_engine.core.models import Attempt, AttemptStatus, Quiz, QuizStats
from quiz_engine.core.scoring import round_half_up


class QuizNotFoundError(KeyError):
    """Raised when a quiz id is not present in the store."""


class AttemptNotFoundError(KeyError):
    """Raised when an attempt id is not present in the store."""


class QuizStore(Protocol):
    """What the engine needs from durable storage.

    Attempt listings are ordered newest first by ``started_at``.
    """

    def get_quiz(self, quiz_id: str) -> Quiz: ...

    def save_quiz(self, quiz: Quiz) -> None: ...

    def list_quizzes(self, owner_id: str | None = None) -> list[Quiz]: ...

    def save_attempt(self, attempt: Attempt) -> None: ...

    def get_attempt(self, attempt_id: str) -> Attempt: ...

    def list_attempts(self, quiz_id: str, user_id: str | None = None) -> list[Attempt]: ...

    def list_user_attempts(self, user_id: str) -> list[Attempt]: ...

    def update_quiz_stats(self, quiz_id: str, stats: QuizStats) -> Quiz: ...


def compute_quiz_stats(attempts: Iterable[Attempt]) -> QuizStats:
    """Aggregate cached quiz stats over completed attempts only."""
    completed = [a for a in attempts if a.status is AttemptStatus.COMPLETED]
    if not completed:
        return QuizStats()
    count = len(completed)
    return QuizStats(
        attempt_count=count,
        average_score=int(round_half_up(sum(a.percentage for a in completed) / count)),
        average_time_spent=int(round_half_up(sum(a.time_spent for a in completed) / count)),
    )


def _newest_first(attempts: Iterable[Attempt]) -> list[Attempt]:
    return sorted(attempts, key=lambda a: a.started_at, reverse=True)


class InMemoryQuizStore:
    """Thread-safe in-process store, useful for tests and single-process apps."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._quizzes: dict[str, Quiz] = {}
        self._attempts: dict[str, Attempt] = {}

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            try:
                return self._quizzes[quiz_id]
            except KeyError:
                raise QuizNotFoundError(quiz_id) from None

    def save_quiz(self, quiz: Quiz) -> None:
        with self._lock:
            self._quizzes[quiz.id] = quiz

    def delete_quiz(self, quiz_id: str) -> None:
        with self._lock:
            if self._quizzes.pop(quiz_id, None) is None:
                raise QuizNotFoundError(quiz_id)

    def list_quizzes(self, owner_id: str | None = None) -> list[Quiz]:
        with self._lock:
            quizzes = [q for q in self._quizzes.values() if owner_id is None or q.owner_id == owner_id]
        return sorted(quizzes, key=lambda q: q.created_at, reverse=True)

    def save_attempt(self, attempt: Attempt) -> None:
        with self._lock:
            self._attempts[attempt.id] = attempt

    def get_attempt(self, attempt_id: str) -> Attempt:
        with self._lock:
            try:
                return self._attempts[attempt_id]
            except KeyError:
                raise AttemptNotFoundError(attempt_id) from None

    def list_attempts(self, quiz_id: str, user_id: str | None = None) -> list[Attempt]:
        with self._lock:
            matching = [
                a
                for a in self._attempts.values()
                if a.quiz_id == quiz_id and (user_id is None or a.user_id == user_id)
            ]
        return _newest_first(matching)

    def list_user_attempts(self, user_id: str) -> list[Attempt]:
        with self._lock:
            matching = [a for a in self._attempts.values() if a.user_id == user_id]
        return _newest_first(matching)

    def update_quiz_stats(self, quiz_id: str, stats: QuizStats) -> Quiz:
        with self._lock:
            try:
                quiz = self._quizzes[quiz_id]
            except KeyError:
                raise QuizNotFoundError(quiz_id) from None
            updated = replace(quiz, stats=stats)
            self._quizzes[quiz_id] = updated
            return updated
