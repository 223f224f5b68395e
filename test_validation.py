import pytest

from conftest import free_response_question, mc_question
from sat_mirror.models import QuestionKind, QuestionStatus, Section
from sat_mirror.module_state import ModuleState
from sat_mirror.validation import classify, grade, is_correct, parse_numeric


def test_classify():
    assert classify([], Section.READING) == QuestionKind.FREE_RESPONSE
    assert classify([{"value": "5"}], Section.MATH) == QuestionKind.FREE_RESPONSE
    assert classify([{"value": "5"}], Section.READING) == QuestionKind.MULTIPLE_CHOICE
    assert classify([{"value": "a"}, {"value": "b"}], Section.MATH) == QuestionKind.MULTIPLE_CHOICE


@pytest.mark.parametrize(
    "text,expected",
    [("0.5", 0.5), ("-3", -3.0), (".25", 0.25), ("1/2", 0.5), (" 3 / 4 ", 0.75), ("7.", 7.0)],
)
def test_parse_numeric(text, expected):
    assert parse_numeric(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "   ", "1/0", "abc", "1/2/3", "1e5", "--1", None])
def test_parse_numeric_rejects(text):
    assert parse_numeric(text) is None


def test_free_response_fraction_matches_decimal():
    assert is_correct("1/2", "0.5", QuestionKind.FREE_RESPONSE)
    assert is_correct("0.5", "1/2", QuestionKind.FREE_RESPONSE)
    assert is_correct("0.33333", "1/3", QuestionKind.FREE_RESPONSE)
    assert not is_correct("0.333", "1/3", QuestionKind.FREE_RESPONSE)


def test_division_by_zero_is_not_numeric():
    assert not is_correct("1/0", "5", QuestionKind.FREE_RESPONSE)


def test_non_numeric_free_response_falls_back_to_trimmed_equality():
    assert is_correct(" x+1 ", "x+1", QuestionKind.FREE_RESPONSE)
    assert not is_correct("x+2", "x+1", QuestionKind.FREE_RESPONSE)


def test_multiple_choice_is_exact_and_case_sensitive():
    assert is_correct("banana", "banana", QuestionKind.MULTIPLE_CHOICE)
    assert not is_correct("Banana", "banana", QuestionKind.MULTIPLE_CHOICE)
    assert not is_correct(" banana", "banana", QuestionKind.MULTIPLE_CHOICE)


@pytest.mark.parametrize("answer", [None, "", "   "])
def test_blank_answers_are_unanswered(answer):
    assert grade(answer, mc_question(1, 1, 1)) == QuestionStatus.UNANSWERED
    assert grade(answer, free_response_question(1, 3, 5)) == QuestionStatus.UNANSWERED


def test_grade():
    assert grade("banana", mc_question(1, 1, 1)) == QuestionStatus.CORRECT
    assert grade("apple", mc_question(1, 1, 1)) == QuestionStatus.INCORRECT
    assert grade("2/4", free_response_question(1, 3, 5)) == QuestionStatus.CORRECT


def test_review_preview_agrees_with_grading():
    questions = [mc_question(1, 3, 1), free_response_question(1, 3, 2, correct="1/4"), mc_question(1, 3, 3)]
    state = ModuleState(1, 3, questions)
    state.answer(1, "banana")
    state.answer(2, "0.25")
    for q in questions:
        assert state.advisory_status(q.question_number) == grade(
            state.question(q.question_number).user_answer, q
        )
    assert state.advisory_status(1) == QuestionStatus.CORRECT
    assert state.advisory_status(2) == QuestionStatus.CORRECT
    assert state.advisory_status(3) == QuestionStatus.UNANSWERED
