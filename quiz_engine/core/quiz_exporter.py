"""Utilities for exporting quizzes to JSON and questions to CSV."""

from __future__ import annotations

import csv
from dataclasses import asdict
import io
import json
from pathlib import Path
from typing import Any, Iterable

from quiz_engine.core.models import (
    CalculationQuestion,
    CaseStudyQuestion,
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    Question,
    Quiz,
    ShortAnswerQuestion,
    TrueFalseQuestion,
)
from quiz_engine.core.quiz_schema import QuizDocument

CSV_HEADERS = (
    "ID",
    "Type",
    "Question",
    "Options",
    "Correct Answer",
    "Explanation",
    "Difficulty",
    "Points",
    "Topic",
)
CSV_LIST_SEPARATOR = "|"

# Keys that reveal the answer, removed from exports made for test-takers.
_ANSWER_KEYS = frozenset(
    {"correct_answer", "correct_answers", "correct_order", "acceptable_answers", "keywords", "correct_text"}
)
_NESTED_WITH_ANSWERS = ("blanks", "labels")


def question_to_dict(question: Question) -> dict[str, Any]:
    data = asdict(question)
    data["type"] = question.question_type.value
    if isinstance(question, CaseStudyQuestion):
        data["sub_questions"] = [question_to_dict(sub) for sub in question.sub_questions]
    return data


def quiz_to_document(quiz: Quiz) -> QuizDocument:
    return QuizDocument.model_validate(
        {
            "title": quiz.title,
            "description": quiz.description,
            "subject": quiz.subject,
            "tags": list(quiz.tags),
            "source_type": quiz.source_type,
            "settings": asdict(quiz.settings),
            "questions": [question_to_dict(q) for q in quiz.questions],
        }
    )


def _strip_answers(question: dict[str, Any]) -> dict[str, Any]:
    stripped = {key: value for key, value in question.items() if key not in _ANSWER_KEYS}
    for key in _NESTED_WITH_ANSWERS:
        if key in stripped:
            stripped[key] = [
                {k: v for k, v in unit.items() if k not in _ANSWER_KEYS} for unit in stripped[key]
            ]
    if "sub_questions" in stripped:
        stripped["sub_questions"] = [_strip_answers(sub) for sub in stripped["sub_questions"]]
    return stripped


def export_quiz_to_json(quiz: Quiz, include_answers: bool = True) -> str:
    """Serialize a quiz without its identity, owner, status or timestamps."""
    document = quiz_to_document(quiz).model_dump(mode="json")
    if not include_answers:
        document["questions"] = [_strip_answers(q) for q in document["questions"]]
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def save_quiz_to_file(file_path: Path, quiz: Quiz, include_answers: bool = True) -> None:
    """Persist the quiz to disk in the JSON import format."""

    if not quiz.questions:
        raise ValueError("Cannot export an empty quiz.")

    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(export_quiz_to_json(quiz, include_answers), encoding="utf-8")


def _join_cell(question: Question, values: Iterable[str]) -> str:
    values = list(values)
    for value in values:
        if CSV_LIST_SEPARATOR in value:
            raise ValueError(
                f"Question {question.id}: '{value}' contains the list separator '{CSV_LIST_SEPARATOR}'."
            )
    return CSV_LIST_SEPARATOR.join(values)


def _csv_answer_columns(question: Question) -> tuple[str, str]:
    match question:
        case MultipleChoiceQuestion():
            return _join_cell(question, question.options), question.correct_answer
        case MultipleSelectQuestion():
            return (
                _join_cell(question, question.options),
                _join_cell(question, question.correct_answers),
            )
        case TrueFalseQuestion():
            if question.correct_answer is None:
                return "", ""
            return "", "true" if question.correct_answer else "false"
        case ShortAnswerQuestion():
            return _join_cell(question, question.acceptable_answers), question.correct_answer
        case CalculationQuestion():
            if question.correct_answer is None:
                return "", ""
            return "", repr(question.correct_answer)
    return "", ""


def export_questions_to_csv(questions: Iterable[Question]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for question in questions:
        options, correct = _csv_answer_columns(question)
        writer.writerow(
            [
                question.id,
                question.question_type.value,
                question.prompt,
                options,
                correct,
                question.explanation or "",
                question.difficulty.value,
                question.points,
                question.topic or "",
            ]
        )
    return buffer.getvalue()
