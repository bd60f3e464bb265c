"""Service facade tying authoring, sessions, persistence and analytics together."""

from __future__ import annotations

from datetime import date
import logging
import random
from threading import Lock
from typing import Any, Callable

from quiz_engine.core import quiz_authoring
from quiz_engine.core.manual_grading import apply_manual_grade
from quiz_engine.core.models import Attempt, AttemptStatus, Quiz, QuizStatus
from quiz_engine.core.quiz_authoring import QuizStateError
from quiz_engine.core.reports import QuizReport, generate_quiz_report
from quiz_engine.core.scoring import DEFAULT_SCORING_POLICY, ScoringPolicy
from quiz_engine.core.services import analytics
from quiz_engine.core.services.attempt_repository import (
    InMemoryQuizStore,
    QuizStore,
    compute_quiz_stats,
)
from quiz_engine.core.services.quiz_session import Clock, QuizSession
from quiz_engine.core.services.session_timer import SessionTimer

logger = logging.getLogger(__name__)


class AttemptLimitError(RuntimeError):
    """Raised when a user may not start another attempt on a quiz."""


class SessionNotFoundError(KeyError):
    """Raised when no active session has the given attempt id."""


class QuizService:
    """Owns active sessions and delegates storage to an injected ``QuizStore``.

    Quizzes and attempts handed out are immutable values; every change goes
    back through the store. The service lock guards the session table and the
    attempt limit check, never a session call, so finish listeners may run on
    the timer thread.
    """

    def __init__(
        self,
        store: QuizStore | None = None,
        *,
        policy: ScoringPolicy = DEFAULT_SCORING_POLICY,
        clock: Clock | None = None,
        rng_factory: Callable[[], random.Random] = random.Random,
        use_timer: bool = True,
    ) -> None:
        self._lock = Lock()
        self._store: QuizStore = store if store is not None else InMemoryQuizStore()
        self._policy = policy
        self._clock = clock
        self._rng_factory = rng_factory
        self._use_timer = use_timer
        self._sessions: dict[str, QuizSession] = {}
        self._timers: dict[str, SessionTimer] = {}

    @property
    def store(self) -> QuizStore:
        return self._store

    # --- Authoring ---

    def create_quiz(self, title: str, owner_id: str, **options: Any) -> Quiz:
        quiz = quiz_authoring.create_quiz(title, owner_id, **options)
        self._store.save_quiz(quiz)
        return quiz

    def save_quiz(self, quiz: Quiz) -> Quiz:
        self._store.save_quiz(quiz)
        return quiz

    def get_quiz(self, quiz_id: str) -> Quiz:
        return self._store.get_quiz(quiz_id)

    def list_quizzes(self, owner_id: str | None = None) -> list[Quiz]:
        return self._store.list_quizzes(owner_id)

    def publish_quiz(self, quiz_id: str) -> Quiz:
        return self.save_quiz(quiz_authoring.publish_quiz(self._store.get_quiz(quiz_id)))

    def archive_quiz(self, quiz_id: str) -> Quiz:
        return self.save_quiz(quiz_authoring.archive_quiz(self._store.get_quiz(quiz_id)))

    def reopen_quiz(self, quiz_id: str) -> Quiz:
        return self.save_quiz(quiz_authoring.reopen_quiz(self._store.get_quiz(quiz_id)))

    # --- Sessions ---

    def start_session(self, quiz_id: str, user_id: str) -> QuizSession:
        quiz = self._store.get_quiz(quiz_id)
        if quiz.status is not QuizStatus.PUBLISHED:
            raise QuizStateError(f"Quiz {quiz_id} is {quiz.status.value}; only published quizzes can be taken.")

        session = QuizSession(
            quiz,
            user_id,
            clock=self._clock,
            rng=self._rng_factory(),
            policy=self._policy,
        )
        timer: SessionTimer | None = None
        if self._use_timer and quiz.settings.has_time_limit:
            timer = SessionTimer(session)
            session.add_finish_listener(lambda _attempt: timer.stop())
        session.add_finish_listener(self._handle_finished)

        # Check and register together so concurrent starts cannot both pass.
        with self._lock:
            self._check_attempt_limits(quiz, user_id)
            self._sessions[session.attempt_id] = session
            if timer is not None:
                self._timers[session.attempt_id] = timer
        try:
            session.start()
        except Exception:
            with self._lock:
                self._sessions.pop(session.attempt_id, None)
                self._timers.pop(session.attempt_id, None)
            raise
        if timer is not None:
            timer.start()
        return session

    def get_session(self, attempt_id: str) -> QuizSession:
        with self._lock:
            try:
                return self._sessions[attempt_id]
            except KeyError:
                raise SessionNotFoundError(attempt_id) from None

    def active_sessions(self) -> list[QuizSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.is_in_progress]

    def submit_session(self, attempt_id: str) -> Attempt:
        """Submit an active session; a finished one returns its stored attempt."""
        with self._lock:
            session = self._sessions.get(attempt_id)
        if session is None:
            return self._store.get_attempt(attempt_id)
        return session.submit()

    def abandon_session(self, attempt_id: str) -> Attempt | None:
        return self.get_session(attempt_id).abandon()

    def flush_attempt(self, attempt_id: str) -> Attempt:
        """Persist a finished session whose earlier save raised."""
        session = self.get_session(attempt_id)
        attempt = session.attempt
        if attempt is None:
            raise QuizStateError(f"Session {attempt_id} has not finished yet.")
        self._handle_finished(attempt)
        return attempt

    def _check_attempt_limits(self, quiz: Quiz, user_id: str) -> None:
        """Count stored attempts and this user's open sessions. Caller holds the lock."""
        previous = self._store.list_attempts(quiz.id, user_id)
        stored_ids = {a.id for a in previous}
        open_sessions = [
            s
            for s in self._sessions.values()
            if s.quiz.id == quiz.id and s.user_id == user_id and s.attempt_id not in stored_ids
        ]
        settings = quiz.settings
        taken = sum(1 for a in previous if a.status is not AttemptStatus.ABANDONED)
        taken += sum(
            1 for s in open_sessions if s.attempt is None or s.attempt.status is not AttemptStatus.ABANDONED
        )
        if taken and not settings.allow_retake:
            logger.debug("Refusing retake of quiz %s by user %s", quiz.id, user_id)
            raise AttemptLimitError(f"Quiz {quiz.id} does not allow retakes.")
        used = len(previous) + len(open_sessions)
        if settings.max_attempts is not None and used >= settings.max_attempts:
            raise AttemptLimitError(
                f"User {user_id} has used all {settings.max_attempts} attempt(s) on quiz {quiz.id}."
            )

    def _handle_finished(self, attempt: Attempt) -> None:
        self._store.save_attempt(attempt)
        logger.info("Stored %s attempt %s for quiz %s", attempt.status.value, attempt.id, attempt.quiz_id)
        if attempt.status is AttemptStatus.COMPLETED:
            self._refresh_stats(attempt.quiz_id)
        with self._lock:
            self._sessions.pop(attempt.id, None)
            self._timers.pop(attempt.id, None)

    def _refresh_stats(self, quiz_id: str) -> Quiz:
        stats = compute_quiz_stats(self._store.list_attempts(quiz_id))
        return self._store.update_quiz_stats(quiz_id, stats)

    # --- Grading ---

    def grade_manually(
        self, attempt_id: str, question_id: str, points: float, feedback: str | None = None
    ) -> Attempt:
        attempt = self._store.get_attempt(attempt_id)
        quiz = self._store.get_quiz(attempt.quiz_id)
        graded = apply_manual_grade(attempt, quiz, question_id, points, feedback)
        self._store.save_attempt(graded)
        if graded.status is AttemptStatus.COMPLETED:
            self._refresh_stats(quiz.id)
        return graded

    # --- Analytics ---

    def quiz_analytics(self, quiz_id: str) -> analytics.QuizAnalytics:
        return analytics.generate_quiz_analytics(
            self._store.get_quiz(quiz_id), self._store.list_attempts(quiz_id)
        )

    def quiz_report(self, quiz_id: str) -> QuizReport:
        return generate_quiz_report(self._store.get_quiz(quiz_id), self._store.list_attempts(quiz_id))

    def user_stats(self, user_id: str, today: date | None = None) -> analytics.UserQuizStats:
        return analytics.generate_user_quiz_stats(
            user_id,
            self._store.list_user_attempts(user_id),
            self._store.list_quizzes(),
            today,
        )

    def performance(self, user_id: str, quiz_id: str) -> analytics.PerformanceAnalysis:
        return analytics.analyze_performance(
            user_id, self._store.get_quiz(quiz_id), self._store.list_attempts(quiz_id)
        )

    def compare_to_group(self, user_id: str, quiz_id: str) -> list[analytics.ComparisonResult]:
        return analytics.compare_to_group(
            user_id, self._store.get_quiz(quiz_id), self._store.list_attempts(quiz_id)
        )

    def track_progress(self, user_id: str) -> list[analytics.ProgressPoint]:
        return analytics.track_progress(
            user_id, self._store.list_user_attempts(user_id), self._store.list_quizzes()
        )
