"""
Answer validation shared by the review preview and the authoritative store.

Multiple choice: exact, case-sensitive match against the canonical answer.
Free response: numeric comparison of decimals or simple ``a/b`` fractions with
an absolute tolerance of 1e-4, falling back to trimmed string equality when
either side is not a number.
"""
import math
import re
from typing import Any, Optional, Sequence

from sat_mirror.models import Question, QuestionKind, QuestionStatus, Section

NUMERIC_TOLERANCE = 1e-4

_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_WHITESPACE_RE = re.compile(r"\s+")


def classify(answer_options: Sequence[Any], section: Section) -> QuestionKind:
    """
    Decide whether a question is multiple choice or free response.

    A question without options is free response. A math question with a
    single answer entry is also free response: the entry is the correct
    value, not an option to pick.
    """
    if not answer_options:
        return QuestionKind.FREE_RESPONSE
    if section == Section.MATH and len(answer_options) == 1:
        return QuestionKind.FREE_RESPONSE
    return QuestionKind.MULTIPLE_CHOICE


def classify_question(question: Question) -> QuestionKind:
    return classify(question.answer_options, question.section)


def _parse_decimal(text: str) -> Optional[float]:
    if not _DECIMAL_RE.match(text):
        return None
    return float(text)


def parse_numeric(expression: Optional[str]) -> Optional[float]:
    """Parse ``"0.5"``, ``"-3"`` or ``"1/2"``; None when not a number."""
    if expression is None:
        return None
    expr = _WHITESPACE_RE.sub("", expression)
    if not expr:
        return None

    if "/" in expr:
        parts = expr.split("/")
        if len(parts) != 2:
            return None
        numerator = _parse_decimal(parts[0])
        denominator = _parse_decimal(parts[1])
        if numerator is None or denominator is None or denominator == 0:
            return None
        value = numerator / denominator
    else:
        value = _parse_decimal(expr)

    if value is None or not math.isfinite(value):
        return None
    return value


def is_answered(user_answer: Optional[str]) -> bool:
    return user_answer is not None and user_answer.strip() != ""


def is_correct(user_answer: Optional[str], correct_answer: str, kind: QuestionKind) -> bool:
    if not is_answered(user_answer):
        return False

    if kind == QuestionKind.MULTIPLE_CHOICE:
        return user_answer == correct_answer

    user_value = parse_numeric(user_answer)
    correct_value = parse_numeric(correct_answer)
    if user_value is None or correct_value is None:
        return user_answer.strip() == (correct_answer or "").strip()
    return abs(user_value - correct_value) < NUMERIC_TOLERANCE


def grade(user_answer: Optional[str], question: Question) -> QuestionStatus:
    """Status of one answer against its canonical question."""
    if not is_answered(user_answer):
        return QuestionStatus.UNANSWERED
    kind = classify_question(question)
    if is_correct(user_answer, question.correct_answer, kind):
        return QuestionStatus.CORRECT
    return QuestionStatus.INCORRECT
