"""Domain models for exam attempts.

Rows follow the Supabase layout: ``questions`` holds one row per question and
``test_attempts`` holds one row per (user_id, test_id) with a JSONB ``modules``
column keyed ``module_1`` .. ``module_4``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Section(str, Enum):
    MATH = "MATH"
    READING = "READING"


class QuestionStatus(str, Enum):
    UNANSWERED = "UNANSWERED"
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"


class QuestionKind(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    FREE_RESPONSE = "FREE_RESPONSE"


def module_key(module_number: int) -> str:
    return f"module_{module_number}"


@dataclass(frozen=True)
class Question:
    """Read-only question as served by the question bank."""

    test_id: int
    module_number: int
    question_number: int
    correct_answer: str
    section: Section
    answer_options: List[Any] = field(default_factory=list)
    content: List[Dict[str, Any]] = field(default_factory=list)
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Question":
        return cls(
            id=row.get("id"),
            test_id=row["test_id"],
            module_number=row["module_number"],
            question_number=row["question_number"],
            correct_answer=str(row.get("correct_answer") or ""),
            section=Section(row.get("section") or Section.READING.value),
            answer_options=list(row.get("answers") or []),
            content=list(row.get("content") or []),
        )

    def to_row(self) -> Dict[str, Any]:
        row = {
            "test_id": self.test_id,
            "module_number": self.module_number,
            "question_number": self.question_number,
            "content": self.content,
            "answers": self.answer_options,
            "correct_answer": self.correct_answer,
            "section": self.section.value,
        }
        if self.id is not None:
            row["id"] = self.id
        return row


@dataclass
class ModuleQuestion:
    """Per-question answer state inside a module.

    ``status`` is only ever assigned by server-side validation.
    """

    question_number: int
    user_answer: Optional[str] = None
    flagged: bool = False
    time_spent_seconds: int = 0
    status: QuestionStatus = QuestionStatus.UNANSWERED
    correct_answer: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ModuleQuestion":
        return cls(
            question_number=int(row["question_number"]),
            user_answer=row.get("user_answer"),
            flagged=bool(row.get("flagged", False)),
            time_spent_seconds=int(row.get("time_spent") or 0),
            status=QuestionStatus(row.get("status") or QuestionStatus.UNANSWERED.value),
            correct_answer=row.get("correct_answer"),
        )

    def to_row(self) -> Dict[str, Any]:
        row = {
            "question_number": self.question_number,
            "user_answer": self.user_answer,
            "flagged": self.flagged,
            "time_spent": self.time_spent_seconds,
            "status": self.status.value,
        }
        if self.correct_answer is not None:
            row["correct_answer"] = self.correct_answer
        return row


@dataclass(frozen=True)
class SubmittedAnswer:
    """Raw answer tuple sent for validation. Carries no correctness."""

    question_number: int
    user_answer: Optional[str]
    time_spent_seconds: int = 0
    flagged: bool = False


@dataclass(frozen=True)
class ModuleSubmission:
    module_number: int
    answers: List[SubmittedAnswer]
    total_time_seconds: int


@dataclass
class ModuleRecord:
    module_number: int
    questions: List[ModuleQuestion] = field(default_factory=list)
    completed: bool = False
    total_time_seconds: int = 0

    def correct_count(self) -> int:
        return sum(1 for q in self.questions if q.status == QuestionStatus.CORRECT)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ModuleRecord":
        return cls(
            module_number=int(row["module_number"]),
            questions=[ModuleQuestion.from_row(q) for q in row.get("questions") or []],
            completed=bool(row.get("completed", False)),
            total_time_seconds=int(row.get("total_time") or 0),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "module_number": self.module_number,
            "questions": [q.to_row() for q in self.questions],
            "completed": self.completed,
            "total_time": self.total_time_seconds,
        }


@dataclass
class TestAttempt:
    """One user's record of one test, across all four modules."""

    __test__ = False  # not a pytest test class

    id: str
    user_id: str
    test_id: int
    modules: Dict[int, ModuleRecord] = field(default_factory=dict)
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    total_time_seconds: int = 0
    reading_scaled_score: Optional[int] = None
    math_scaled_score: Optional[int] = None
    total_score: Optional[int] = None
    created_at: Optional[str] = None
    last_modified: Optional[str] = None
    completed_at: Optional[str] = None

    def completed_modules(self) -> set[int]:
        return {n for n, record in self.modules.items() if record.completed}

    def is_module_complete(self, module_number: int) -> bool:
        record = self.modules.get(module_number)
        return bool(record and record.completed)

    def modules_to_row(self) -> Dict[str, Any]:
        return {module_key(n): record.to_row() for n, record in sorted(self.modules.items())}

    @staticmethod
    def modules_from_row(raw: Optional[Dict[str, Any]]) -> Dict[int, ModuleRecord]:
        modules = {}
        for value in (raw or {}).values():
            if not value:
                continue
            record = ModuleRecord.from_row(value)
            modules[record.module_number] = record
        return modules

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TestAttempt":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            test_id=int(row["test_id"]),
            modules=cls.modules_from_row(row.get("modules")),
            status=AttemptStatus(row.get("test_status") or AttemptStatus.IN_PROGRESS.value),
            total_time_seconds=int(row.get("total_time") or 0),
            reading_scaled_score=row.get("reading_score"),
            math_scaled_score=row.get("math_score"),
            total_score=row.get("total_score"),
            created_at=row.get("created_at"),
            last_modified=row.get("last_modified"),
            completed_at=row.get("completed_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "test_id": self.test_id,
            "modules": self.modules_to_row(),
            "test_status": self.status.value,
            "total_time": self.total_time_seconds,
            "reading_score": self.reading_scaled_score,
            "math_score": self.math_scaled_score,
            "total_score": self.total_score,
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "completed_at": self.completed_at,
        }
