from __future__ import annotations

from dataclasses import replace
import json

import pytest

from quiz_engine.core.models import (
    Blank,
    CaseStudyQuestion,
    EssayQuestion,
    FillBlankQuestion,
    QuizStatus,
    RubricCriterion,
    TrueFalseQuestion,
)
from quiz_engine.core.quiz_authoring import add_question, create_quiz, publish_quiz
from quiz_engine.core.quiz_exporter import (
    CSV_HEADERS,
    export_questions_to_csv,
    export_quiz_to_json,
    save_quiz_to_file,
)
from quiz_engine.core.quiz_importer import (
    QuizImportError,
    import_questions_from_csv,
    import_quiz_from_json,
    load_quiz_from_file,
)


@pytest.fixture
def rich_quiz(draft_quiz, capital_question):
    fill = FillBlankQuestion(
        id="q-fill",
        prompt="Complete",
        text="[blank] is a prime.",
        blanks=(Blank("b1", "Two", acceptable_answers=("2",)),),
    )
    essay = EssayQuestion(
        id="q-essay",
        prompt="Discuss",
        rubric=(RubricCriterion("Clarity", "Clear argument", 5),),
        points=5,
    )
    case = CaseStudyQuestion(
        id="q-case", prompt="Case", case_text="Story", sub_questions=(capital_question,), points=3
    )
    quiz = draft_quiz
    for question in (fill, essay, case):
        quiz = add_question(quiz, question)
    return publish_quiz(quiz)


def test_json_export_omits_identity(rich_quiz):
    document = json.loads(export_quiz_to_json(rich_quiz))
    assert document["title"] == "Mixed review"
    assert "id" not in document
    assert "owner_id" not in document
    assert [q["type"] for q in document["questions"]][:3] == [
        "multiple_choice",
        "multiple_select",
        "true_false",
    ]
    case = document["questions"][-1]
    assert case["sub_questions"][0]["type"] == "multiple_choice"


def test_json_import_creates_new_draft(rich_quiz):
    imported = import_quiz_from_json(export_quiz_to_json(rich_quiz), "teacher-2")
    assert imported.id != rich_quiz.id
    assert imported.owner_id == "teacher-2"
    assert imported.status is QuizStatus.DRAFT
    assert imported.settings == rich_quiz.settings
    assert imported.questions == rich_quiz.questions


def test_export_without_answers(rich_quiz):
    document = json.loads(export_quiz_to_json(rich_quiz, include_answers=False))
    capital = document["questions"][0]
    assert "correct_answer" not in capital
    assert "correct_text" not in json.dumps(document)
    fill = next(q for q in document["questions"] if q["type"] == "fill_blank")
    assert "correct_answer" not in fill["blanks"][0]
    case = document["questions"][-1]
    assert "correct_answer" not in case["sub_questions"][0]

    imported = import_quiz_from_json(json.dumps(document), "student")
    earth = imported.get_question("q-earth")
    assert isinstance(earth, TrueFalseQuestion)
    assert earth.correct_answer is None


def test_import_rejects_bad_documents():
    with pytest.raises(QuizImportError):
        import_quiz_from_json("{not json", "teacher")
    with pytest.raises(QuizImportError):
        import_quiz_from_json(json.dumps({"title": "T", "questions": [{"type": "riddle", "prompt": "?"}]}), "t")
    with pytest.raises(QuizImportError):
        import_quiz_from_json(
            json.dumps({"title": "T", "settings": {"passing_score": 120}}), "teacher"
        )
    duplicate = {"type": "true_false", "id": "same", "prompt": "?", "correct_answer": True}
    with pytest.raises(QuizImportError):
        import_quiz_from_json(json.dumps({"title": "T", "questions": [duplicate, duplicate]}), "t")


def test_import_assigns_missing_ids():
    text = json.dumps(
        {"title": "T", "questions": [{"type": "true_false", "prompt": "?", "correct_answer": False}]}
    )
    quiz = import_quiz_from_json(text, "teacher")
    assert quiz.questions[0].id


def test_file_round_trip(tmp_path, rich_quiz):
    path = tmp_path / "exports" / "quiz.json"
    save_quiz_to_file(path, rich_quiz)
    loaded = load_quiz_from_file(path, "teacher-1")
    assert loaded.source_path == path
    assert loaded.quiz.question_count == rich_quiz.question_count


def test_save_empty_quiz_refused(tmp_path):
    with pytest.raises(ValueError):
        save_quiz_to_file(tmp_path / "empty.json", create_quiz("Empty", "t"))


def test_csv_export_and_import(rich_quiz):
    text = export_questions_to_csv(rich_quiz.questions)
    lines = text.splitlines()
    assert lines[0] == ",".join(CSV_HEADERS)
    assert len(lines) == 1 + rich_quiz.question_count

    questions = import_questions_from_csv(text)
    by_id = {q.id: q for q in questions}
    assert set(by_id) == {"q-capital", "q-primes", "q-earth"}
    assert by_id["q-primes"].correct_answers == ("2", "3")
    assert by_id["q-earth"].correct_answer is True
    assert by_id["q-capital"].topic == "geography"


def test_csv_import_errors():
    header = ",".join(CSV_HEADERS)
    with pytest.raises(QuizImportError):
        import_questions_from_csv("a,b\n1,2\n")
    with pytest.raises(QuizImportError):
        import_questions_from_csv(f"{header}\n1,riddle,What?,,,,,,\n")
    with pytest.raises(QuizImportError):
        import_questions_from_csv(f"{header}\n1,true_false,Sky is green,,maybe,,,,\n")
    with pytest.raises(QuizImportError):
        import_questions_from_csv(f"{header}\n1,calculation,2+2,,four,,,,\n")


def test_csv_export_refuses_separator_in_list_cells(capital_question):
    piped = replace(capital_question, options=("Paris", "Rome|Milan"))
    with pytest.raises(ValueError, match="list separator"):
        export_questions_to_csv([piped])
    (restored,) = import_questions_from_csv(export_questions_to_csv([capital_question]))
    assert restored.options == capital_question.options
