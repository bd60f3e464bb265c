"""Command line entry point for the quiz engine."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from quiz_engine.constants.about import APP_NAME, APP_VERSION
from quiz_engine.core.quiz_authoring import validate_quiz
from quiz_engine.core.quiz_exporter import export_questions_to_csv
from quiz_engine.core.quiz_importer import QuizImportError, load_quiz_from_file
from quiz_engine.core.scoring import calculate_quiz_score
from quiz_engine.utils.logging_config import configure_logging

CLI_OWNER_ID = "cli"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quiz-engine", description=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", help="Check a quiz file for structural problems.")
    validate.add_argument("quiz", type=Path)

    grade = commands.add_parser("grade", help="Score a set of answers against a quiz file.")
    grade.add_argument("quiz", type=Path)
    grade.add_argument("answers", type=Path, help="JSON object mapping question id to answer.")

    export = commands.add_parser("export-csv", help="Write a quiz's questions as CSV.")
    export.add_argument("quiz", type=Path)
    export.add_argument("-o", "--output", type=Path, help="Destination file (defaults to stdout).")
    return parser


def _validate(args: argparse.Namespace) -> int:
    quiz = load_quiz_from_file(args.quiz, CLI_OWNER_ID).quiz
    errors = validate_quiz(quiz)
    for error in errors:
        location = f"[{error.question_id}] " if error.question_id else ""
        print(f"{location}{error.field}: {error.message}")
    if errors:
        return 1
    print(f"{quiz.title}: {quiz.question_count} question(s), {quiz.max_score:g} point(s). OK")
    return 0


def _grade(args: argparse.Namespace) -> int:
    quiz = load_quiz_from_file(args.quiz, CLI_OWNER_ID).quiz
    answers = json.loads(args.answers.read_text(encoding="utf-8"))
    if not isinstance(answers, dict):
        raise QuizImportError("Answers file must contain a JSON object keyed by question id.")
    result = calculate_quiz_score(quiz, answers)
    for question_result in result.question_results:
        print(
            f"{question_result.question_id}: {question_result.points_earned:g}/"
            f"{question_result.max_points:g} {question_result.feedback}"
        )
    verdict = "PASSED" if result.passed else "FAILED"
    print(f"Score: {result.score:g}/{result.max_score:g} ({result.percentage}%) {verdict}")
    return 0 if result.passed else 1


def _export_csv(args: argparse.Namespace) -> int:
    quiz = load_quiz_from_file(args.quiz, CLI_OWNER_ID).quiz
    text = export_questions_to_csv(quiz.questions)
    if args.output is None:
        sys.stdout.write(text)
    else:
        args.output.write_text(text, encoding="utf-8")
    return 0


_COMMANDS = {
    "validate": _validate,
    "grade": _grade,
    "export-csv": _export_csv,
}


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run the chosen command."""
    args = _build_parser().parse_args(argv)
    logger = configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return _COMMANDS[args.command](args)
    except (OSError, ValueError, QuizImportError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
