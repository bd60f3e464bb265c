"""Quiz authoring, delivery, scoring and analytics engine."""

from .core.models import (
    Attempt,
    AttemptStatus,
    Difficulty,
    QuestionResult,
    QuestionType,
    Quiz,
    QuizSettings,
    QuizStatus,
)
from .core.quiz_manager import AttemptLimitError, QuizService, SessionNotFoundError
from .core.scoring import ScoringPolicy, calculate_quiz_score, validate_answer
from .core.services.attempt_repository import InMemoryQuizStore, QuizStore
from .core.services.quiz_session import QuizSession, SessionState, SessionStateError

__all__ = [
    "Attempt",
    "AttemptLimitError",
    "AttemptStatus",
    "Difficulty",
    "InMemoryQuizStore",
    "QuestionResult",
    "QuestionType",
    "Quiz",
    "QuizService",
    "QuizSession",
    "QuizSettings",
    "QuizStatus",
    "QuizStore",
    "ScoringPolicy",
    "SessionNotFoundError",
    "SessionState",
    "SessionStateError",
    "calculate_quiz_score",
    "validate_answer",
]
