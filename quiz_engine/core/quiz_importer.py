"""Utilities for importing quizzes from JSON documents and questions from CSV.

JSON format: the document produced by ``quiz_exporter.export_quiz_to_json``,
validated by :class:`quiz_engine.core.quiz_schema.QuizDocument`. Imported
quizzes are always new drafts owned by the importing user, with a fresh quiz
id and timestamps; question ids are kept when present.

CSV format: the columns written by ``export_questions_to_csv``. Only the
question types whose answer key fits in two text columns can be read back
(multiple choice, multiple select, true/false, short answer, calculation).
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, replace
import io
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from quiz_engine.core.models import (
    QUESTION_CLASSES,
    Blank,
    CalculationStep,
    DiagramLabel,
    Difficulty,
    MatchPair,
    OrderItem,
    Question,
    QuestionType,
    Quiz,
    QuizSettings,
    RubricCriterion,
)
from quiz_engine.core.quiz_authoring import build_question, create_quiz, new_id
from quiz_engine.core.quiz_exporter import CSV_HEADERS, CSV_LIST_SEPARATOR
from quiz_engine.core.quiz_schema import CaseStudyDocument, QuizDocument

logger = logging.getLogger(__name__)


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


@dataclass(slots=True)
class ImportedQuiz:
    """Container for an imported quiz and where it came from."""

    source_path: Path
    quiz: Quiz


_NESTED_TYPES: dict[str, type] = {
    "blanks": Blank,
    "pairs": MatchPair,
    "items": OrderItem,
    "labels": DiagramLabel,
    "steps": CalculationStep,
    "rubric": RubricCriterion,
}


def _freeze(value: Any) -> Any:
    return tuple(value) if isinstance(value, list) else value


def question_from_document(document: BaseModel) -> Question:
    data = document.model_dump(exclude={"type", "sub_questions"})
    fields: dict[str, Any] = {}
    for key, value in data.items():
        if key in _NESTED_TYPES:
            nested_cls = _NESTED_TYPES[key]
            value = tuple(nested_cls(**{k: _freeze(v) for k, v in unit.items()}) for unit in value)
        fields[key] = _freeze(value)
    if isinstance(document, CaseStudyDocument):
        fields["sub_questions"] = tuple(question_from_document(sub) for sub in document.sub_questions)
    if not fields.get("id"):
        fields["id"] = new_id()
    question_cls = QUESTION_CLASSES[QuestionType(document.type)]
    return question_cls(**fields)


def import_quiz_from_json(text: str, owner_id: str) -> Quiz:
    try:
        document = QuizDocument.model_validate_json(text)
    except ValidationError as exc:
        raise QuizImportError(f"Quiz document is invalid: {exc}") from exc

    quiz = create_quiz(
        document.title,
        owner_id,
        subject=document.subject,
        description=document.description,
        settings=QuizSettings(**document.settings.model_dump()),
        source_type=document.source_type,
        tags=document.tags,
    )
    questions = tuple(question_from_document(q) for q in document.questions)
    if len({q.id for q in questions}) != len(questions):
        raise QuizImportError("Quiz document contains duplicate question ids.")
    logger.info("Imported quiz %r with %d question(s)", quiz.title, len(questions))
    return replace(quiz, questions=questions)


def load_quiz_from_file(file_path: Path, owner_id: str) -> ImportedQuiz:
    text = file_path.read_text(encoding="utf-8")
    quiz = import_quiz_from_json(text, owner_id)
    if not quiz.questions:
        raise QuizImportError("Quiz file did not contain any questions.")
    return ImportedQuiz(source_path=file_path, quiz=quiz)


# --- CSV ----------------------------------------------------------------------


def _split(cell: str) -> list[str]:
    return [part for part in cell.split(CSV_LIST_SEPARATOR) if part] if cell else []


def _parse_row(row: dict[str, str], line_number: int) -> Question | None:
    raw_type = (row.get("Type") or "").strip()
    try:
        question_type = QuestionType(raw_type)
    except ValueError:
        raise QuizImportError(f"Line {line_number}: unknown question type '{raw_type}'.") from None

    prompt = (row.get("Question") or "").strip()
    if not prompt:
        raise QuizImportError(f"Line {line_number}: question text cannot be empty.")

    common: dict[str, Any] = {"prompt": prompt}
    if row.get("ID"):
        common["id"] = row["ID"].strip()
    if row.get("Explanation"):
        common["explanation"] = row["Explanation"]
    if row.get("Topic"):
        common["topic"] = row["Topic"]
    try:
        if row.get("Difficulty"):
            common["difficulty"] = Difficulty(row["Difficulty"].strip())
        if row.get("Points"):
            common["points"] = float(row["Points"])
    except ValueError as exc:
        raise QuizImportError(f"Line {line_number}: {exc}") from exc

    options = row.get("Options") or ""
    correct = row.get("Correct Answer") or ""
    question_cls = QUESTION_CLASSES[question_type]

    match question_type:
        case QuestionType.MULTIPLE_CHOICE:
            return build_question(question_cls, options=_split(options), correct_answer=correct, **common)
        case QuestionType.MULTIPLE_SELECT:
            return build_question(
                question_cls, options=_split(options), correct_answers=_split(correct), **common
            )
        case QuestionType.TRUE_FALSE:
            value = correct.strip().lower()
            if value not in ("true", "false", ""):
                raise QuizImportError(f"Line {line_number}: true/false answer must be 'true' or 'false'.")
            return build_question(
                question_cls, correct_answer=None if not value else value == "true", **common
            )
        case QuestionType.SHORT_ANSWER:
            return build_question(
                question_cls, correct_answer=correct, acceptable_answers=_split(options), **common
            )
        case QuestionType.CALCULATION:
            try:
                answer = float(correct) if correct.strip() else None
            except ValueError:
                raise QuizImportError(f"Line {line_number}: calculation answer must be a number.") from None
            return build_question(question_cls, correct_answer=answer, **common)
    logger.warning("Line %d: %s questions cannot be imported from CSV; skipped.", line_number, raw_type)
    return None


def import_questions_from_csv(text: str) -> list[Question]:
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames is None or not {"Type", "Question"} <= set(reader.fieldnames):
        raise QuizImportError(f"CSV must have a header row with columns: {', '.join(CSV_HEADERS)}")
    questions: list[Question] = []
    for line_number, row in enumerate(reader, start=2):
        question = _parse_row(row, line_number)
        if question is not None:
            questions.append(question)
    return questions
