"""Quiz, question and user level statistics computed from historical attempts.

All functions are pure and work on whatever attempts the caller passes in;
they never reach into storage. Percent values are integers rounded half up
unless noted otherwise.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
import json
import math
from typing import Any, Iterable, Sequence

from quiz_engine.constants.quiz_constants import (
    DISCRIMINATION_GROUP_FRACTION,
    DISCRIMINATION_MIN_ATTEMPTS,
    HIGH_SCORE_THRESHOLD,
    LOW_SCORE_THRESHOLD,
    RECENT_ATTEMPTS_LIMIT,
    SCORE_BUCKETS,
    SLOW_QUESTION_SECONDS,
    SLOW_TOPIC_SECONDS,
    STRONG_TOPIC_THRESHOLD,
    WEAK_TOPIC_THRESHOLD,
)
from quiz_engine.core.models import Attempt, AttemptStatus, Question, Quiz
from quiz_engine.core.scoring import round_half_up

SCORED_STATUSES = frozenset({AttemptStatus.COMPLETED, AttemptStatus.TIMED_OUT})


@dataclass(frozen=True, slots=True)
class DayCount:
    date: str  # ISO calendar day
    count: int


@dataclass(frozen=True, slots=True)
class ScoreBucket:
    range: str
    count: int


@dataclass(frozen=True, slots=True)
class QuestionAnalytics:
    question_id: str
    correct_rate: int
    average_time_spent: int
    discrimination_index: float
    most_common_wrong_answer: str | None = None


@dataclass(frozen=True, slots=True)
class QuizAnalytics:
    quiz_id: str
    total_attempts: int
    unique_users: int
    average_score: int
    median_score: float
    pass_rate: int
    average_time_spent: int
    question_analytics: tuple[QuestionAnalytics, ...]
    attempts_by_day: tuple[DayCount, ...]
    score_distribution: tuple[ScoreBucket, ...]


@dataclass(frozen=True, slots=True)
class SubjectStats:
    attempts: int
    average_score: int


@dataclass(frozen=True, slots=True)
class UserQuizStats:
    user_id: str
    total_attempts: int = 0
    completed_quizzes: int = 0
    average_score: int = 0
    best_score: int = 0
    total_time_spent: int = 0
    streak_days: int = 0
    last_attempt_at: datetime | None = None
    by_subject: dict[str, SubjectStats] = field(default_factory=dict)
    recent_attempts: tuple[Attempt, ...] = ()


@dataclass(frozen=True, slots=True)
class TopicPerformance:
    topic: str
    correct_rate: int
    average_time: int


@dataclass(frozen=True, slots=True)
class OverallStanding:
    rank: int
    total_participants: int
    percentile: int


@dataclass(frozen=True, slots=True)
class PerformanceAnalysis:
    overall: OverallStanding
    by_topic: tuple[TopicPerformance, ...] = ()
    weak_areas: tuple[str, ...] = ()
    strong_areas: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ComparisonResult:
    metric: str
    user_value: int
    average_value: int
    difference: int
    percentile: int


@dataclass(frozen=True, slots=True)
class ProgressPoint:
    date: str
    score: int
    quiz_title: str
    improvement: int


# --- Small statistics helpers -----------------------------------------------


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _rounded_mean(values: Sequence[float]) -> int:
    return int(round_half_up(_mean(values)))


def _percent(part: int, whole: int) -> int:
    return int(round_half_up(part / whole * 100)) if whole else 0


def _day(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def scored_attempts(attempts: Iterable[Attempt]) -> list[Attempt]:
    """Attempts that carry a score; abandoned ones were never scored."""
    return [a for a in attempts if a.status in SCORED_STATUSES]


def calculate_median(values: Iterable[float]) -> float:
    """Middle value, or the mean of the two middle values for even counts."""
    ordered = sorted(values)
    if not ordered:
        return 0.0
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])


def calculate_percentile(value: float, all_values: Sequence[float]) -> int:
    """Percentage of ``all_values`` strictly below ``value``."""
    if not all_values:
        return 0
    below = sum(1 for v in all_values if v < value)
    return _percent(below, len(all_values))


def calculate_score_distribution(attempts: Iterable[Attempt]) -> tuple[ScoreBucket, ...]:
    percentages = [a.percentage for a in attempts]
    return tuple(
        ScoreBucket(
            range=f"{low}-{high}%",
            count=sum(1 for p in percentages if low <= p <= high),
        )
        for low, high in SCORE_BUCKETS
    )


def calculate_attempts_by_day(attempts: Iterable[Attempt]) -> tuple[DayCount, ...]:
    counts = Counter(_day(a.created_at).isoformat() for a in attempts)
    return tuple(DayCount(date=day, count=counts[day]) for day in sorted(counts))


# --- Quiz level ---------------------------------------------------------------


def generate_quiz_analytics(quiz: Quiz, attempts: Iterable[Attempt]) -> QuizAnalytics:
    attempts = scored_attempts(attempts)
    percentages = [a.percentage for a in attempts]
    return QuizAnalytics(
        quiz_id=quiz.id,
        total_attempts=len(attempts),
        unique_users=len({a.user_id for a in attempts}),
        average_score=_rounded_mean(percentages),
        median_score=calculate_median(percentages),
        pass_rate=_percent(sum(1 for a in attempts if a.passed), len(attempts)),
        average_time_spent=_rounded_mean([a.time_spent for a in attempts]),
        question_analytics=tuple(generate_question_analytics(quiz.questions, attempts)),
        attempts_by_day=calculate_attempts_by_day(attempts),
        score_distribution=calculate_score_distribution(attempts),
    )


# --- Question level -----------------------------------------------------------


def _answer_key(answer: Any) -> str:
    """Stable text form of a submitted answer, used to count repeats."""
    if isinstance(answer, str):
        return answer
    if isinstance(answer, (set, frozenset)):
        answer = sorted(answer, key=str)
    return json.dumps(answer, sort_keys=True, default=str)


def _is_correct(attempt: Attempt, question_id: str) -> bool:
    result = attempt.get_result(question_id)
    return result is not None and result.correct


def calculate_discrimination_index(question_id: str, attempts: Sequence[Attempt]) -> float:
    """Top-group minus bottom-group correct rate, split at 27% of attempts.

    Returns 0 below the minimum attempt count where the split is too noisy.
    """
    if len(attempts) < DISCRIMINATION_MIN_ATTEMPTS:
        return 0.0
    ranked = sorted(attempts, key=lambda a: a.percentage, reverse=True)
    group_size = math.ceil(len(ranked) * DISCRIMINATION_GROUP_FRACTION)
    top = ranked[:group_size]
    bottom = ranked[-group_size:]
    top_rate = sum(1 for a in top if _is_correct(a, question_id)) / len(top)
    bottom_rate = sum(1 for a in bottom if _is_correct(a, question_id)) / len(bottom)
    return round_half_up(top_rate - bottom_rate, 2)


def _most_common_wrong_answer(question_id: str, attempts: Iterable[Attempt]) -> str | None:
    wrong = Counter()
    for attempt in attempts:
        result = attempt.get_result(question_id)
        if result is None or result.correct or result.submitted_answer is None:
            continue
        wrong[_answer_key(result.submitted_answer)] += 1
    if not wrong:
        return None
    return wrong.most_common(1)[0][0]


def generate_question_analytics(
    questions: Sequence[Question], attempts: Sequence[Attempt]
) -> list[QuestionAnalytics]:
    analytics: list[QuestionAnalytics] = []
    for question in questions:
        results = [r for a in attempts if (r := a.get_result(question.id)) is not None]
        if not results:
            analytics.append(
                QuestionAnalytics(
                    question_id=question.id,
                    correct_rate=0,
                    average_time_spent=0,
                    discrimination_index=0.0,
                )
            )
            continue
        analytics.append(
            QuestionAnalytics(
                question_id=question.id,
                correct_rate=_percent(sum(1 for r in results if r.correct), len(results)),
                average_time_spent=_rounded_mean([r.time_spent for r in results]),
                discrimination_index=calculate_discrimination_index(question.id, attempts),
                most_common_wrong_answer=_most_common_wrong_answer(question.id, attempts),
            )
        )
    return analytics


# --- User level ---------------------------------------------------------------


def calculate_study_streak(attempts: Iterable[Attempt], today: date | None = None) -> int:
    """Consecutive days with at least one attempt, ending today or yesterday."""
    days = sorted({_day(a.created_at) for a in attempts}, reverse=True)
    if not days:
        return 0
    today = today or datetime.now(timezone.utc).date()
    if days[0] not in (today, today - timedelta(days=1)):
        return 0
    streak = 1
    for previous, current in zip(days, days[1:]):
        if previous - current != timedelta(days=1):
            break
        streak += 1
    return streak


def _stats_by_subject(attempts: Iterable[Attempt], quizzes: Iterable[Quiz]) -> dict[str, SubjectStats]:
    subject_of = {quiz.id: quiz.subject for quiz in quizzes}
    scores: dict[str, list[int]] = defaultdict(list)
    for attempt in attempts:
        subject = subject_of.get(attempt.quiz_id)
        if subject is not None:
            scores[subject].append(attempt.percentage)
    return {
        subject: SubjectStats(attempts=len(values), average_score=_rounded_mean(values))
        for subject, values in sorted(scores.items())
    }


def generate_user_quiz_stats(
    user_id: str,
    attempts: Iterable[Attempt],
    quizzes: Iterable[Quiz],
    today: date | None = None,
) -> UserQuizStats:
    user_attempts = [a for a in attempts if a.user_id == user_id]
    if not user_attempts:
        return UserQuizStats(user_id=user_id)

    completed = [a for a in user_attempts if a.status is AttemptStatus.COMPLETED]
    scores = [a.percentage for a in completed]
    newest_first = sorted(user_attempts, key=lambda a: a.created_at, reverse=True)
    return UserQuizStats(
        user_id=user_id,
        total_attempts=len(user_attempts),
        completed_quizzes=len(completed),
        average_score=_rounded_mean(scores),
        best_score=max(scores, default=0),
        total_time_spent=sum(a.time_spent for a in user_attempts),
        streak_days=calculate_study_streak(user_attempts, today),
        last_attempt_at=newest_first[0].created_at,
        by_subject=_stats_by_subject(scored_attempts(user_attempts), quizzes),
        recent_attempts=tuple(newest_first[:RECENT_ATTEMPTS_LIMIT]),
    )


# --- Performance ----------------------------------------------------------------


def _analyze_by_topic(attempt: Attempt) -> list[TopicPerformance]:
    totals: dict[str, list[int]] = {}  # topic -> [correct, total, seconds]
    for result in attempt.question_results:
        if not result.topic:
            continue
        bucket = totals.setdefault(result.topic, [0, 0, 0])
        bucket[0] += int(result.correct)
        bucket[1] += 1
        bucket[2] += result.time_spent
    return [
        TopicPerformance(
            topic=topic,
            correct_rate=_percent(correct, total),
            average_time=int(round_half_up(seconds / total)),
        )
        for topic, (correct, total, seconds) in totals.items()
    ]


def _recommendations(
    topics: Sequence[TopicPerformance], weak_areas: Sequence[str], attempt: Attempt
) -> list[str]:
    recommendations: list[str] = []
    if weak_areas:
        recommendations.append(
            f"Focus on studying: {', '.join(weak_areas)}. These topics need improvement."
        )
    slow = [t.topic for t in topics if t.average_time > SLOW_TOPIC_SECONDS]
    if slow:
        recommendations.append(f"Practice time management for: {', '.join(slow)}.")
    if attempt.percentage < LOW_SCORE_THRESHOLD:
        recommendations.append("Consider reviewing the material before attempting this quiz again.")
    elif attempt.percentage >= HIGH_SCORE_THRESHOLD:
        recommendations.append("Excellent work! Try more challenging quizzes to continue growing.")
    per_question = attempt.time_spent / (len(attempt.question_results) or 1)
    if per_question > SLOW_QUESTION_SECONDS:
        recommendations.append("Try to work more quickly to improve your time management.")
    return recommendations


def analyze_performance(user_id: str, quiz: Quiz, attempts: Iterable[Attempt]) -> PerformanceAnalysis:
    """Rank the user's most recent attempt on ``quiz`` against every attempt on it."""
    quiz_attempts = [a for a in scored_attempts(attempts) if a.quiz_id == quiz.id]
    user_attempts = [a for a in quiz_attempts if a.user_id == user_id]
    if not user_attempts:
        return PerformanceAnalysis(overall=OverallStanding(rank=0, total_participants=0, percentile=0))

    attempt = max(user_attempts, key=lambda a: a.created_at)
    percentages = [a.percentage for a in quiz_attempts]
    rank = 1 + sum(1 for p in percentages if p > attempt.percentage)
    topics = _analyze_by_topic(attempt)
    weak = [t.topic for t in topics if t.correct_rate < WEAK_TOPIC_THRESHOLD]
    strong = [t.topic for t in topics if t.correct_rate >= STRONG_TOPIC_THRESHOLD]
    return PerformanceAnalysis(
        overall=OverallStanding(
            rank=rank,
            total_participants=len(quiz_attempts),
            percentile=calculate_percentile(attempt.percentage, percentages),
        ),
        by_topic=tuple(topics),
        weak_areas=tuple(weak),
        strong_areas=tuple(strong),
        recommendations=tuple(_recommendations(topics, weak, attempt)),
    )


def compare_to_group(user_id: str, quiz: Quiz, attempts: Iterable[Attempt]) -> list[ComparisonResult]:
    """Compare a user's averages on ``quiz`` with everyone else's."""
    quiz_attempts = [a for a in scored_attempts(attempts) if a.quiz_id == quiz.id]
    mine = [a for a in quiz_attempts if a.user_id == user_id]
    others = [a for a in quiz_attempts if a.user_id != user_id]
    if not mine or not others:
        return []

    def row(metric: str, user_value: float, group_value: float, percentile: int) -> ComparisonResult:
        return ComparisonResult(
            metric=metric,
            user_value=int(round_half_up(user_value)),
            average_value=int(round_half_up(group_value)),
            difference=int(round_half_up(user_value - group_value)),
            percentile=percentile,
        )

    my_score = _mean([a.percentage for a in mine])
    score_percentile = calculate_percentile(my_score, [a.percentage for a in others])
    my_time = _mean([a.time_spent for a in mine])
    return [
        row("Average Score", my_score, _mean([a.percentage for a in others]), score_percentile),
        row(
            "Average Time",
            my_time,
            _mean([a.time_spent for a in others]),
            calculate_percentile(my_time, [a.time_spent for a in others]),
        ),
        row(
            "Pass Rate",
            sum(a.passed for a in mine) / len(mine) * 100,
            sum(a.passed for a in others) / len(others) * 100,
            score_percentile,
        ),
    ]


def track_progress(user_id: str, attempts: Iterable[Attempt], quizzes: Iterable[Quiz]) -> list[ProgressPoint]:
    """Completed attempts oldest first, each with the change from the previous one."""
    titles = {quiz.id: quiz.title for quiz in quizzes}
    completed = sorted(
        (a for a in attempts if a.user_id == user_id and a.status is AttemptStatus.COMPLETED),
        key=lambda a: a.created_at,
    )
    points: list[ProgressPoint] = []
    previous: int | None = None
    for attempt in completed:
        points.append(
            ProgressPoint(
                date=_day(attempt.created_at).isoformat(),
                score=attempt.percentage,
                quiz_title=titles.get(attempt.quiz_id, "Unknown Quiz"),
                improvement=0 if previous is None else attempt.percentage - previous,
            )
        )
        previous = attempt.percentage
    return points
