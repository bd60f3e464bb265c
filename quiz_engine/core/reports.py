"""Quiz reports built from analytics, exportable as JSON or CSV."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime, timezone
import io
from typing import Sequence

from pydantic import TypeAdapter

from quiz_engine.core.models import Attempt, Quiz
from quiz_engine.core.services.analytics import QuizAnalytics, generate_quiz_analytics


@dataclass(frozen=True, slots=True)
class ReportSummary:
    total_attempts: int
    average_score: int
    pass_rate: int


@dataclass(frozen=True, slots=True)
class QuizReport:
    title: str
    generated_at: datetime
    summary: ReportSummary
    details: QuizAnalytics


_REPORT_ADAPTER = TypeAdapter(QuizReport)


def generate_quiz_report(
    quiz: Quiz, attempts: Sequence[Attempt], generated_at: datetime | None = None
) -> QuizReport:
    analytics = generate_quiz_analytics(quiz, attempts)
    return QuizReport(
        title=f"Quiz Report: {quiz.title}",
        generated_at=generated_at or datetime.now(timezone.utc),
        summary=ReportSummary(
            total_attempts=analytics.total_attempts,
            average_score=analytics.average_score,
            pass_rate=analytics.pass_rate,
        ),
        details=analytics,
    )


def export_report_to_json(report: QuizReport) -> str:
    return _REPORT_ADAPTER.dump_json(report, indent=2).decode("utf-8")


def export_report_to_csv(report: QuizReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(
        [
            ["Metric", "Value"],
            ["Quiz Title", report.title],
            ["Generated At", report.generated_at.isoformat()],
            ["Total Attempts", report.summary.total_attempts],
            ["Average Score", f"{report.summary.average_score}%"],
            ["Median Score", f"{report.details.median_score:g}%"],
            ["Pass Rate", f"{report.summary.pass_rate}%"],
            [],
            ["Score Range", "Count"],
        ]
    )
    writer.writerows([bucket.range, bucket.count] for bucket in report.details.score_distribution)
    writer.writerow([])
    writer.writerow(
        ["Question ID", "Correct Rate", "Average Time", "Discrimination", "Most Common Wrong Answer"]
    )
    writer.writerows(
        [
            q.question_id,
            f"{q.correct_rate}%",
            q.average_time_spent,
            q.discrimination_index,
            q.most_common_wrong_answer or "",
        ]
        for q in report.details.question_analytics
    )
    return buffer.getvalue()
