from __future__ import annotations

from datetime import date
import random
import threading

import pytest

from quiz_engine.core.models import AttemptStatus, QuizStatus
from quiz_engine.core.quiz_authoring import QuizStateError, add_question, update_settings
from quiz_engine.core.quiz_manager import AttemptLimitError, QuizService, SessionNotFoundError
from quiz_engine.core.services.attempt_repository import (
    AttemptNotFoundError,
    InMemoryQuizStore,
    QuizNotFoundError,
)
from quiz_engine.core.services.session_timer import SessionTimer

ALL_RIGHT = {"q-capital": "Paris", "q-primes": ["2", "3"], "q-earth": True}


class CountingStore(InMemoryQuizStore):
    def __init__(self) -> None:
        super().__init__()
        self.attempt_writes = 0
        self.fail_next_write = False

    def save_attempt(self, attempt) -> None:
        if self.fail_next_write:
            self.fail_next_write = False
            raise ConnectionError("store unavailable")
        self.attempt_writes += 1
        super().save_attempt(attempt)


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def service(store, clock) -> QuizService:
    return QuizService(store, clock=clock, rng_factory=lambda: random.Random(0), use_timer=False)


@pytest.fixture
def published(service, draft_quiz):
    service.save_quiz(draft_quiz)
    return service.publish_quiz(draft_quiz.id)


def _take(service, quiz_id, user_id="student-1", answers=ALL_RIGHT):
    session = service.start_session(quiz_id, user_id)
    for question_id, value in answers.items():
        session.answer(question_id, value)
    return service.submit_session(session.attempt_id)


def test_create_and_publish(service):
    quiz = service.create_quiz("New quiz", "teacher-1", subject="history")
    assert service.get_quiz(quiz.id).subject == "history"
    assert service.list_quizzes("teacher-1") == [quiz]
    with pytest.raises(QuizNotFoundError):
        service.get_quiz("missing")


def test_only_published_quizzes_can_be_taken(service, draft_quiz):
    service.save_quiz(draft_quiz)
    with pytest.raises(QuizStateError):
        service.start_session(draft_quiz.id, "student-1")
    service.publish_quiz(draft_quiz.id)
    service.archive_quiz(draft_quiz.id)
    with pytest.raises(QuizStateError):
        service.start_session(draft_quiz.id, "student-1")


def test_submit_persists_once_and_refreshes_stats(service, store, published, clock):
    session = service.start_session(published.id, "student-1")
    for question_id, value in ALL_RIGHT.items():
        session.answer(question_id, value)
    clock.advance(40)

    attempt = service.submit_session(session.attempt_id)
    assert service.submit_session(session.attempt_id) == attempt
    assert session.submit() is attempt
    assert store.attempt_writes == 1
    assert store.get_attempt(attempt.id) == attempt

    stats = service.get_quiz(published.id).stats
    assert (stats.attempt_count, stats.average_score, stats.average_time_spent) == (1, 100, 40)
    with pytest.raises(SessionNotFoundError):
        service.get_session(session.attempt_id)


def test_abandon_is_stored_but_not_counted_in_stats(service, store, published):
    session = service.start_session(published.id, "student-1")
    assert service.active_sessions() == [session]
    attempt = service.abandon_session(session.attempt_id)
    assert attempt.status is AttemptStatus.ABANDONED
    assert store.get_attempt(attempt.id) == attempt
    assert service.get_quiz(published.id).stats.attempt_count == 0
    assert service.active_sessions() == []


def test_unknown_attempt(service):
    with pytest.raises(AttemptNotFoundError):
        service.submit_session("nope")
    with pytest.raises(SessionNotFoundError):
        service.abandon_session("nope")


def test_retake_not_allowed(service, draft_quiz):
    quiz = update_settings(draft_quiz, allow_retake=False)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)

    abandoned = service.start_session(quiz.id, "student-1")
    service.abandon_session(abandoned.attempt_id)
    _take(service, quiz.id)
    with pytest.raises(AttemptLimitError):
        service.start_session(quiz.id, "student-1")
    service.start_session(quiz.id, "student-2")


def test_max_attempts(service, draft_quiz):
    quiz = update_settings(draft_quiz, max_attempts=2)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)
    _take(service, quiz.id)
    _take(service, quiz.id, answers={})
    with pytest.raises(AttemptLimitError):
        service.start_session(quiz.id, "student-1")


def test_open_sessions_count_toward_max_attempts(service, store, draft_quiz):
    quiz = update_settings(draft_quiz, max_attempts=1)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)

    first = service.start_session(quiz.id, "student-1")
    with pytest.raises(AttemptLimitError):
        service.start_session(quiz.id, "student-1")
    service.submit_session(first.attempt_id)
    with pytest.raises(AttemptLimitError):
        service.start_session(quiz.id, "student-1")
    assert len(store.list_attempts(quiz.id, "student-1")) == 1


def test_open_session_blocks_retake(service, draft_quiz):
    quiz = update_settings(draft_quiz, allow_retake=False)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)

    first = service.start_session(quiz.id, "student-1")
    with pytest.raises(AttemptLimitError):
        service.start_session(quiz.id, "student-1")
    service.abandon_session(first.attempt_id)
    service.start_session(quiz.id, "student-1")


def test_concurrent_starts_respect_max_attempts(service, store, draft_quiz):
    quiz = update_settings(draft_quiz, max_attempts=1)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)

    barrier = threading.Barrier(8)
    outcomes: list[str] = []

    def start() -> None:
        barrier.wait()
        try:
            service.start_session(quiz.id, "student-1")
            outcomes.append("started")
        except AttemptLimitError:
            outcomes.append("refused")

    threads = [threading.Thread(target=start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("started") == 1
    for session in service.active_sessions():
        service.submit_session(session.attempt_id)
    assert len(store.list_attempts(quiz.id, "student-1")) == 1


def test_abandoned_retry_does_not_lower_standing(service, published):
    _take(service, published.id, "student-1")
    retry = service.start_session(published.id, "student-1")
    service.abandon_session(retry.attempt_id)

    standing = service.performance("student-1", published.id).overall
    assert (standing.rank, standing.total_participants) == (1, 1)
    analytics = service.quiz_analytics(published.id)
    assert (analytics.average_score, analytics.pass_rate) == (100, 100)


def test_failed_write_keeps_session_for_flush(service, store, published):
    session = service.start_session(published.id, "student-1")
    store.fail_next_write = True
    with pytest.raises(ConnectionError):
        service.submit_session(session.attempt_id)

    assert session.attempt is not None
    assert service.get_session(session.attempt_id) is session
    with pytest.raises(AttemptNotFoundError):
        store.get_attempt(session.attempt_id)

    attempt = service.flush_attempt(session.attempt_id)
    assert store.get_attempt(attempt.id) == attempt
    with pytest.raises(SessionNotFoundError):
        service.get_session(session.attempt_id)


def test_flush_requires_finished_session(service, published):
    session = service.start_session(published.id, "student-1")
    with pytest.raises(QuizStateError):
        service.flush_attempt(session.attempt_id)


def test_grade_manually(service, store, draft_quiz, essay_question):
    quiz = add_question(draft_quiz, essay_question)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)
    attempt = _take(service, quiz.id, answers={**ALL_RIGHT, "q-essay": "Demand meets supply."})
    assert attempt.is_pending_review

    graded = service.grade_manually(attempt.id, "q-essay", 5)
    assert graded.percentage == 100
    assert store.get_attempt(attempt.id) == graded
    assert service.get_quiz(quiz.id).stats.average_score == 100


def test_analytics_pass_through(service, published):
    _take(service, published.id, "alice")
    _take(service, published.id, "bob", answers={"q-capital": "Paris"})

    assert service.quiz_analytics(published.id).total_attempts == 2
    assert service.quiz_report(published.id).summary.average_score == 59
    assert service.user_stats("alice", today=date(2024, 1, 1)).streak_days == 1
    assert service.performance("bob", published.id).overall.rank == 2
    assert service.compare_to_group("bob", published.id)[0].user_value == 17
    assert [p.score for p in service.track_progress("alice")] == [100]


def test_timed_session_stops_its_timer(store, draft_quiz):
    service = QuizService(store, use_timer=True)
    quiz = update_settings(draft_quiz, time_limit_minutes=5)
    service.save_quiz(quiz)
    service.publish_quiz(quiz.id)

    session = service.start_session(quiz.id, "student-1")
    assert session.time_remaining == 300
    assert any(t.name == "quiz-session-timer" for t in threading.enumerate())
    service.submit_session(session.attempt_id)
    assert not any(t.name == "quiz-session-timer" and t.is_alive() for t in threading.enumerate())


class _Countdown:
    def __init__(self, ticks: int) -> None:
        self.remaining = ticks
        self.done = threading.Event()

    @property
    def is_in_progress(self) -> bool:
        return self.remaining > 0

    def tick(self) -> int:
        self.remaining -= 1
        if self.remaining == 0:
            self.done.set()
        return self.remaining


def test_session_timer_ticks_until_finished():
    countdown = _Countdown(3)
    timer = SessionTimer(countdown, interval=0.01)
    timer.start()
    assert countdown.done.wait(timeout=5)
    timer.stop()
    assert countdown.remaining == 0
    assert not timer.is_running()


def test_published_status_round_trip(service, published):
    assert published.status is QuizStatus.PUBLISHED
    assert service.reopen_quiz(published.id).status is QuizStatus.DRAFT
