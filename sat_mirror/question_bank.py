"""Question bank interface and an in-memory implementation (tests, offline mode)."""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Tuple

from sat_mirror.errors import NotFound
from sat_mirror.models import Question


class QuestionBank(ABC):
    @abstractmethod
    def get_questions_by_module(self, test_id: int, module_number: int) -> List[Question]:
        """Questions ordered by question_number. Raises NotFound when the module has none."""

    @abstractmethod
    def get_available_test_ids(self) -> List[int]:
        """Distinct test ids, ascending."""


class InMemoryQuestionBank(QuestionBank):
    def __init__(self, questions: Iterable[Question] = ()):
        self._modules: Dict[Tuple[int, int], List[Question]] = {}
        for q in questions:
            self.add(q)

    def add(self, question: Question) -> None:
        self._modules.setdefault((question.test_id, question.module_number), []).append(question)

    def get_questions_by_module(self, test_id: int, module_number: int) -> List[Question]:
        questions = self._modules.get((test_id, module_number))
        if not questions:
            raise NotFound(f"No questions for test {test_id}, module {module_number}")
        return sorted(questions, key=lambda q: q.question_number)

    def get_available_test_ids(self) -> List[int]:
        return sorted({test_id for test_id, _ in self._modules})
