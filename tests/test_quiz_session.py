from __future__ import annotations

import random

import pytest

from quiz_engine.core.models import AttemptStatus, QuizSettings
from quiz_engine.core.quiz_authoring import create_quiz, update_settings
from quiz_engine.core.services.quiz_session import (
    QuizSession,
    SessionState,
    SessionStateError,
    shuffled,
)


@pytest.fixture
def session(draft_quiz, clock, rng) -> QuizSession:
    return QuizSession(draft_quiz, "student-1", attempt_id="attempt-1", clock=clock, rng=rng)


@pytest.fixture
def timed_quiz(draft_quiz):
    return update_settings(draft_quiz, time_limit_minutes=1)


def test_shuffled_is_a_permutation():
    items = list(range(50))
    result = shuffled(items, random.Random(7))
    assert sorted(result) == items
    assert len(result) == len(items)
    assert items == list(range(50))


def test_start_materializes_orders(session, draft_quiz):
    questions = session.start()
    assert session.state is SessionState.IN_PROGRESS
    assert sorted(q.id for q in questions) == sorted(q.id for q in draft_quiz.questions)
    capital = draft_quiz.get_question("q-capital")
    assert sorted(session.display_options("q-capital")) == sorted(capital.options)
    assert session.time_remaining is None
    assert session.current_index == 0


def test_start_without_shuffle_keeps_quiz_order(draft_quiz, clock):
    quiz = update_settings(draft_quiz, shuffle_questions=False)
    session = QuizSession(quiz, "student-1", clock=clock)
    assert [q.id for q in session.start()] == ["q-capital", "q-primes", "q-earth"]


def test_start_only_once(session):
    session.start()
    with pytest.raises(SessionStateError):
        session.start()


def test_start_requires_questions(clock):
    quiz = create_quiz("Empty", "teacher-1")
    with pytest.raises(SessionStateError):
        QuizSession(quiz, "student-1", clock=clock).start()


def test_answers_and_flags_only_while_in_progress(session):
    assert session.answer("q-capital", "Paris") is False
    session.start()
    assert session.answer("q-capital", "Rome") is True
    assert session.answer("q-capital", "Paris") is True
    assert session.answer("unknown", "x") is False
    assert session.answers == {"q-capital": "Paris"}

    assert session.toggle_flag("q-earth") is True
    assert session.is_flagged("q-earth")
    session.toggle_flag("q-earth")
    assert session.flagged == frozenset()

    assert session.clear_answer("q-capital") is True
    assert "q-capital" in session.unanswered_question_ids


def test_navigation_clamps(session):
    session.start()
    assert session.previous_question() is session.questions[0]
    session.go_to(99)
    assert session.current_index == 2
    assert session.progress == 100
    session.go_to(1)
    assert session.current_question is session.questions[1]


def test_submit_is_idempotent(session, clock):
    writes = []
    session.add_finish_listener(writes.append)
    session.start()
    session.answer("q-capital", "Paris")
    clock.advance(30)

    first = session.submit()
    second = session.submit()
    assert first is second
    assert writes == [first]
    assert first.id == "attempt-1"
    assert first.status is AttemptStatus.COMPLETED
    assert first.time_spent == 30
    assert session.state is SessionState.COMPLETED
    assert session.answer("q-earth", True) is False


def test_submit_before_start_raises(session):
    with pytest.raises(SessionStateError):
        session.submit()


@pytest.mark.parametrize("final_state", [SessionState.COMPLETED, SessionState.ABANDONED])
def test_finalize_unstarted_session_raises(session, final_state):
    with pytest.raises(SessionStateError):
        session._finalize(final_state)
    assert session.attempt is None
    assert session.state is SessionState.NOT_STARTED


def test_submit_scores_answers(session):
    session.start()
    session.answer("q-capital", "Paris")
    session.answer("q-primes", ["2", "3", "4"])
    session.answer("q-earth", True)
    attempt = session.submit()
    assert attempt.score == 5.5
    assert attempt.max_score == 6
    assert attempt.percentage == 92
    assert attempt.passed


def test_time_per_question_accrues(draft_quiz, clock):
    quiz = update_settings(draft_quiz, shuffle_questions=False)
    session = QuizSession(quiz, "student-1", clock=clock)
    session.start()
    clock.advance(10)
    session.next_question()
    clock.advance(5)
    attempt = session.submit()
    assert attempt.get_result("q-capital").time_spent == 10
    assert attempt.get_result("q-primes").time_spent == 5
    assert attempt.get_result("q-earth").time_spent == 0


def test_countdown_times_out(timed_quiz, clock):
    finished = []
    session = QuizSession(timed_quiz, "student-1", clock=clock, on_finished=finished.append)
    session.start()
    assert session.time_remaining == 60
    for _ in range(59):
        clock.advance(1)
        assert session.tick() > 0
    clock.advance(1)
    assert session.tick() == 0

    assert session.state is SessionState.TIMED_OUT
    attempt = session.attempt
    assert attempt.status is AttemptStatus.TIMED_OUT
    assert attempt.time_spent == 60
    assert finished == [attempt]
    assert session.submit() is attempt
    assert session.tick() == 0
    assert finished == [attempt]


def test_elapsed_time_is_capped_by_limit(timed_quiz, clock):
    session = QuizSession(timed_quiz, "student-1", clock=clock)
    session.start()
    clock.advance(120)
    assert session.submit().time_spent == 60


def test_tick_without_limit_is_noop(session):
    session.start()
    assert session.tick() is None
    assert session.is_in_progress


def test_abandon(session):
    assert session.abandon() is None
    session.start()
    session.answer("q-capital", "Paris")
    attempt = session.abandon()
    assert attempt.status is AttemptStatus.ABANDONED
    assert attempt.question_results == ()
    assert attempt.score == 0
    assert session.abandon() is None
    assert session.submit() is attempt


def test_listener_failure_keeps_attempt(session):
    def failing_store(attempt):
        raise ConnectionError("store down")

    session.add_finish_listener(failing_store)
    session.start()
    with pytest.raises(ConnectionError):
        session.submit()
    assert session.state is SessionState.COMPLETED
    assert session.attempt is not None
    assert session.submit() is session.attempt


def test_fresh_permutation_per_session(draft_quiz, clock):
    orders = {
        tuple(q.id for q in QuizSession(draft_quiz, "s", clock=clock, rng=random.Random(seed)).start())
        for seed in range(20)
    }
    assert len(orders) > 1
    assert all(sorted(order) == ["q-capital", "q-earth", "q-primes"] for order in orders)


def test_settings_time_limit_seconds():
    assert QuizSettings(time_limit_minutes=2).time_limit_seconds == 120
    assert QuizSettings().time_limit_seconds is None
