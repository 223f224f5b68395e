"""
In-progress state of one module: answers, flags and per-question dwell time.

The snapshot written to ephemeral storage carries the question rows as well,
so a reloaded page can resume without refetching. Correctness shown here is a
preview only; statuses are assigned by the attempt store on submit.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sat_mirror.models import (
    ModuleQuestion,
    ModuleSubmission,
    Question,
    QuestionStatus,
    SubmittedAnswer,
)
from sat_mirror.storage import KeyValueStorage
from sat_mirror.validation import grade, is_answered

logger = logging.getLogger(__name__)


class ModuleState:
    def __init__(
        self,
        test_id: int,
        module_number: int,
        questions: Sequence[Question],
        answers: Optional[Sequence[ModuleQuestion]] = None,
        current_question: int = 1,
        entered_at_ms: Optional[int] = None,
    ):
        if not questions:
            raise ValueError("A module needs at least one question")
        self.test_id = test_id
        self.module_number = module_number
        self.questions: List[Question] = sorted(questions, key=lambda q: q.question_number)
        self._by_number: Dict[int, Question] = {q.question_number: q for q in self.questions}

        by_number = {a.question_number: a for a in answers or []}
        self.answers: Dict[int, ModuleQuestion] = {
            n: by_number.get(n) or ModuleQuestion(question_number=n) for n in self._by_number
        }
        self.current_question = current_question if current_question in self._by_number else self.first_question
        self.entered_at_ms = entered_at_ms

    @classmethod
    def from_questions(cls, test_id: int, module_number: int, questions: Sequence[Question], now: int) -> "ModuleState":
        """Fresh state: everything unanswered, unflagged, zero time, positioned on question 1."""
        return cls(test_id, module_number, questions, entered_at_ms=now)

    @property
    def first_question(self) -> int:
        return self.questions[0].question_number

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def has_question(self, question_number: int) -> bool:
        return question_number in self._by_number

    def source(self, question_number: int) -> Question:
        return self._by_number[question_number]

    def question(self, question_number: int) -> ModuleQuestion:
        try:
            return self.answers[question_number]
        except KeyError:
            raise ValueError(f"Question {question_number} is not part of module {self.module_number}") from None

    # Mutations

    def answer(self, question_number: int, value: Optional[str]) -> None:
        self.question(question_number).user_answer = value if value else None

    def toggle_flag(self, question_number: int) -> bool:
        q = self.question(question_number)
        q.flagged = not q.flagged
        return q.flagged

    def flush_time(self, now: int) -> int:
        """Add the whole seconds spent on the current question since it was entered."""
        if self.entered_at_ms is None:
            self.entered_at_ms = now
            return 0
        elapsed = max(0, (now - self.entered_at_ms) // 1000)
        if elapsed:
            self.answers[self.current_question].time_spent_seconds += elapsed
            self.entered_at_ms += elapsed * 1000
        return elapsed

    def enter(self, question_number: int, now: int) -> None:
        self.question(question_number)
        self.flush_time(now)
        self.current_question = question_number
        self.entered_at_ms = now

    # Counts

    def answered_count(self) -> int:
        return sum(1 for q in self.answers.values() if is_answered(q.user_answer))

    def flagged_count(self) -> int:
        return sum(1 for q in self.answers.values() if q.flagged)

    def unanswered_count(self) -> int:
        return self.total_questions - self.answered_count()

    def percent_complete(self) -> int:
        return round(self.answered_count() / self.total_questions * 100)

    def advisory_status(self, question_number: int) -> QuestionStatus:
        """Preview of correctness for review highlighting. Never submitted or scored."""
        return grade(self.question(question_number).user_answer, self.source(question_number))

    # Submission

    def to_submission(self, total_time_seconds: int) -> ModuleSubmission:
        return ModuleSubmission(
            module_number=self.module_number,
            answers=[
                SubmittedAnswer(
                    question_number=n,
                    user_answer=q.user_answer,
                    time_spent_seconds=q.time_spent_seconds,
                    flagged=q.flagged,
                )
                for n, q in sorted(self.answers.items())
            ],
            total_time_seconds=total_time_seconds,
        )

    # Snapshot

    def snapshot(self) -> Dict[str, Any]:
        rows = []
        for source in self.questions:
            q = self.answers[source.question_number]
            row = source.to_row()
            row.update(user_answer=q.user_answer, flagged=q.flagged, time_spent=q.time_spent_seconds)
            rows.append(row)
        return {
            "test_id": self.test_id,
            "module_number": self.module_number,
            "current_question": self.current_question,
            "entered_at_ms": self.entered_at_ms,
            "questions": rows,
        }

    @classmethod
    def restore(cls, data: Dict[str, Any], now: int) -> "ModuleState":
        rows = data["questions"]
        questions = [Question.from_row(row) for row in rows]
        answers = [
            ModuleQuestion(
                question_number=row["question_number"],
                user_answer=row.get("user_answer"),
                flagged=bool(row.get("flagged", False)),
                time_spent_seconds=int(row.get("time_spent") or 0),
            )
            for row in rows
        ]
        entered_at = data.get("entered_at_ms")
        state = cls(
            int(data["test_id"]),
            int(data["module_number"]),
            questions,
            answers=answers,
            current_question=int(data.get("current_question") or 1),
            entered_at_ms=int(entered_at) if entered_at is not None else now,
        )
        # Time since the stored entry belongs to the question that was open
        state.flush_time(now)
        return state

    def save(self, storage: KeyValueStorage, key: str, **extra: Any) -> None:
        data = self.snapshot()
        data.update(extra)
        storage.set(key, data)

    @classmethod
    def load(cls, storage: KeyValueStorage, key: str, now: int) -> Optional["ModuleState"]:
        data = storage.get(key)
        if data is None:
            return None
        try:
            return cls.restore(data, now)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed module snapshot %s: %s", key, e)
            return None
