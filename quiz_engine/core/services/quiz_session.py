"""State machine for a single in-progress quiz attempt.

    NOT_STARTED --start--> IN_PROGRESS --submit--> COMPLETED
                                       --tick(0)-> TIMED_OUT
                                       --abandon-> ABANDONED

The three right-hand states are terminal. A session belongs to one attempt
and is not meant to be shared between callers; its lock only guards against
the timer thread racing a user submit.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
import random
from threading import RLock
from typing import Any, Callable, Sequence, TypeVar
from uuid import uuid4

from quiz_engine.core.models import (
    Attempt,
    AttemptStatus,
    MatchingQuestion,
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    OrderingQuestion,
    Question,
    Quiz,
)
from quiz_engine.core.scoring import (
    DEFAULT_SCORING_POLICY,
    ScoringPolicy,
    calculate_quiz_score,
    round_half_up,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]
FinishListener = Callable[[Attempt], None]


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.TIMED_OUT, SessionState.ABANDONED})

_ATTEMPT_STATUS = {
    SessionState.COMPLETED: AttemptStatus.COMPLETED,
    SessionState.TIMED_OUT: AttemptStatus.TIMED_OUT,
    SessionState.ABANDONED: AttemptStatus.ABANDONED,
}


class SessionStateError(RuntimeError):
    """Raised when a session transition is requested from the wrong state."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def shuffled(items: Sequence[T], rng: random.Random) -> list[T]:
    """Return a uniformly random permutation of ``items`` (Fisher-Yates)."""
    result = list(items)
    rng.shuffle(result)
    return result


class QuizSession:
    """Owns the answers, flags, navigation and countdown of one attempt."""

    def __init__(
        self,
        quiz: Quiz,
        user_id: str,
        *,
        attempt_id: str | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        policy: ScoringPolicy = DEFAULT_SCORING_POLICY,
        on_finished: FinishListener | None = None,
    ) -> None:
        self._lock = RLock()
        self._quiz = quiz
        self._user_id = user_id
        self._attempt_id = attempt_id or uuid4().hex
        self._clock = clock or utc_now
        self._rng = rng or random.Random()
        self._policy = policy
        self._listeners: list[FinishListener] = [on_finished] if on_finished else []

        self._state = SessionState.NOT_STARTED
        self._questions: tuple[Question, ...] = ()
        self._question_ids: frozenset[str] = frozenset()
        self._current_index: int = 0
        self._answers: dict[str, Any] = {}
        self._flagged: set[str] = set()
        self._time_remaining: int | None = None
        self._started_at: datetime | None = None
        self._entered_at: datetime | None = None
        self._time_by_question: dict[str, float] = {}
        self._attempt: Attempt | None = None

        # Display orderings materialized at start
        self._option_orders: dict[str, tuple[str, ...]] = {}
        self._match_orders: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {}
        self._item_orders: dict[str, tuple[str, ...]] = {}

    # --- Read accessors ---

    @property
    def attempt_id(self) -> str:
        return self._attempt_id

    @property
    def quiz(self) -> Quiz:
        return self._quiz

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_in_progress(self) -> bool:
        return self._state is SessionState.IN_PROGRESS

    @property
    def is_finished(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def questions(self) -> tuple[Question, ...]:
        """Questions in the order this session presents them."""
        return self._questions

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Question | None:
        if not self._questions:
            return None
        return self._questions[self._current_index]

    @property
    def answers(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._answers)

    @property
    def flagged(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._flagged)

    @property
    def time_remaining(self) -> int | None:
        return self._time_remaining

    @property
    def attempt(self) -> Attempt | None:
        return self._attempt

    @property
    def progress(self) -> float:
        if not self._questions:
            return 0.0
        return (self._current_index + 1) / len(self._questions) * 100

    @property
    def unanswered_question_ids(self) -> list[str]:
        with self._lock:
            return [q.id for q in self._questions if q.id not in self._answers]

    def is_flagged(self, question_id: str) -> bool:
        return question_id in self._flagged

    def display_options(self, question_id: str) -> tuple[str, ...]:
        return self._option_orders.get(question_id, ())

    def display_matches(self, question_id: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return the (left, right) column texts as presented."""
        return self._match_orders.get(question_id, ((), ()))

    def display_items(self, question_id: str) -> tuple[str, ...]:
        """Return ordering item ids in the scrambled order they are presented."""
        return self._item_orders.get(question_id, ())

    def add_finish_listener(self, listener: FinishListener) -> None:
        self._listeners.append(listener)

    # --- Transitions ---

    def start(self) -> tuple[Question, ...]:
        with self._lock:
            if self._state is not SessionState.NOT_STARTED:
                raise SessionStateError(f"Session {self._attempt_id} already {self._state.value}.")
            if not self._quiz.questions:
                raise SessionStateError(f"Quiz {self._quiz.id} has no questions.")

            questions = list(self._quiz.questions)
            if self._quiz.settings.shuffle_questions:
                questions = shuffled(questions, self._rng)
            self._questions = tuple(questions)
            self._question_ids = frozenset(q.id for q in questions)
            for question in self._questions:
                self._shuffle_presentation(question)

            self._time_remaining = self._quiz.settings.time_limit_seconds
            self._started_at = self._clock()
            self._entered_at = self._started_at
            self._current_index = 0
            self._state = SessionState.IN_PROGRESS
            logger.info(
                "Started session %s for user %s on quiz %s", self._attempt_id, self._user_id, self._quiz.id
            )
            return self._questions

    def answer(self, question_id: str, value: Any) -> bool:
        """Record (or overwrite) an answer. Returns False when ignored."""
        with self._lock:
            if not self.is_in_progress or question_id not in self._question_ids:
                logger.debug("Ignoring answer for %s in state %s", question_id, self._state.value)
                return False
            self._answers[question_id] = value
            return True

    def clear_answer(self, question_id: str) -> bool:
        with self._lock:
            if not self.is_in_progress:
                return False
            return self._answers.pop(question_id, None) is not None

    def toggle_flag(self, question_id: str) -> bool:
        """Flip the review flag. Returns False when ignored."""
        with self._lock:
            if not self.is_in_progress or question_id not in self._question_ids:
                return False
            if question_id in self._flagged:
                self._flagged.remove(question_id)
            else:
                self._flagged.add(question_id)
            return True

    def next_question(self) -> Question | None:
        return self.go_to(self._current_index + 1)

    def previous_question(self) -> Question | None:
        return self.go_to(self._current_index - 1)

    def go_to(self, index: int) -> Question | None:
        """Move to ``index``, clamped to the question range."""
        with self._lock:
            if self.is_in_progress:
                clamped = max(0, min(index, len(self._questions) - 1))
                if clamped != self._current_index:
                    self._accrue_question_time()
                    self._current_index = clamped
            return self.current_question

    def tick(self) -> int | None:
        """Advance the countdown by one second; submit as timed out at zero."""
        with self._lock:
            if not self.is_in_progress or self._time_remaining is None:
                return self._time_remaining
            self._time_remaining = max(0, self._time_remaining - 1)
            if self._time_remaining > 0:
                return self._time_remaining
            attempt = self._finalize(SessionState.TIMED_OUT)
        logger.info("Session %s timed out", self._attempt_id)
        self._notify(attempt)
        return 0

    def submit(self) -> Attempt:
        """Grade and finish the session. Repeated calls return the same attempt."""
        with self._lock:
            if self._attempt is not None:
                return self._attempt
            if self._state is not SessionState.IN_PROGRESS:
                raise SessionStateError(f"Session {self._attempt_id} has not started.")
            attempt = self._finalize(SessionState.COMPLETED)
        logger.info(
            "Submitted session %s: %s/%s (%s%%)",
            self._attempt_id,
            attempt.score,
            attempt.max_score,
            attempt.percentage,
        )
        self._notify(attempt)
        return attempt

    def abandon(self) -> Attempt | None:
        """Leave without scoring. Returns None unless the session was in progress."""
        with self._lock:
            if not self.is_in_progress:
                return None
            attempt = self._finalize(SessionState.ABANDONED)
        logger.info("Session %s abandoned", self._attempt_id)
        self._notify(attempt)
        return attempt

    # --- Internals ---

    def _shuffle_presentation(self, question: Question) -> None:
        match question:
            case MultipleChoiceQuestion() | MultipleSelectQuestion():
                options = question.options
                if question.shuffle_options:
                    options = tuple(shuffled(options, self._rng))
                self._option_orders[question.id] = tuple(options)
            case MatchingQuestion():
                left = [pair.left for pair in question.pairs]
                right = [pair.right for pair in question.pairs]
                if question.shuffle_left:
                    left = shuffled(left, self._rng)
                if question.shuffle_right:
                    right = shuffled(right, self._rng)
                self._match_orders[question.id] = (tuple(left), tuple(right))
            case OrderingQuestion():
                self._item_orders[question.id] = tuple(
                    shuffled([item.id for item in question.items], self._rng)
                )

    def _accrue_question_time(self) -> None:
        now = self._clock()
        current = self.current_question
        if current is not None and self._entered_at is not None:
            elapsed = max(0.0, (now - self._entered_at).total_seconds())
            self._time_by_question[current.id] = self._time_by_question.get(current.id, 0.0) + elapsed
        self._entered_at = now

    def _elapsed_seconds(
        self, started_at: datetime, final_state: SessionState, completed_at: datetime
    ) -> int:
        wall_clock = max(0.0, (completed_at - started_at).total_seconds())
        limit = self._quiz.settings.time_limit_seconds
        if limit is None:
            return int(round_half_up(wall_clock))
        if final_state is SessionState.TIMED_OUT:
            return limit
        return int(round_half_up(min(limit, wall_clock)))

    def _finalize(self, final_state: SessionState) -> Attempt:
        """Build the attempt and enter ``final_state``. Caller holds the lock."""
        started_at = self._started_at
        if started_at is None:
            raise SessionStateError(f"Session {self._attempt_id} has not started.")
        self._accrue_question_time()
        completed_at = self._clock()
        time_spent = self._elapsed_seconds(started_at, final_state, completed_at)

        if final_state is SessionState.ABANDONED:
            attempt = Attempt(
                id=self._attempt_id,
                quiz_id=self._quiz.id,
                user_id=self._user_id,
                question_results=(),
                score=0,
                max_score=self._quiz.max_score,
                percentage=0,
                passed=False,
                status=AttemptStatus.ABANDONED,
                time_spent=time_spent,
                started_at=started_at,
                completed_at=completed_at,
            )
        else:
            per_question = {
                question_id: int(round_half_up(seconds))
                for question_id, seconds in self._time_by_question.items()
            }
            result = calculate_quiz_score(self._quiz, self._answers, self._policy, per_question)
            attempt = Attempt(
                id=self._attempt_id,
                quiz_id=self._quiz.id,
                user_id=self._user_id,
                question_results=result.question_results,
                score=result.score,
                max_score=result.max_score,
                percentage=result.percentage,
                passed=result.passed,
                status=_ATTEMPT_STATUS[final_state],
                time_spent=time_spent,
                started_at=started_at,
                completed_at=completed_at,
            )

        self._attempt = attempt
        self._state = final_state
        if final_state is SessionState.TIMED_OUT:
            self._time_remaining = 0
        return attempt

    def _notify(self, attempt: Attempt) -> None:
        """Run finish listeners once; the first failure is re-raised after all ran."""
        failure: Exception | None = None
        for listener in list(self._listeners):
            try:
                listener(attempt)
            except Exception as exc:
                logger.exception("Finish listener failed for session %s", self._attempt_id)
                if failure is None:
                    failure = exc
        if failure is not None:
            raise failure
