"""
Test attempt persistence.

The store is the only place where question statuses are computed: it loads the
canonical answers from the question bank and grades the raw submission. A
completed module record is never written again, and finalizing an attempt that
is already COMPLETE returns the stored scores unchanged.
"""
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sat_mirror.errors import NotFound, QuestionsUnavailable, ValidationFailed
from sat_mirror.exam_format import MODULE_NUMBERS, check_question_numbers
from sat_mirror.models import (
    AttemptStatus,
    ModuleQuestion,
    ModuleRecord,
    ModuleSubmission,
    Question,
    TestAttempt,
)
from sat_mirror.question_bank import QuestionBank
from sat_mirror.validation import grade

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_module(questions: Sequence[Question], submission: ModuleSubmission) -> ModuleRecord:
    """
    Grade a raw submission against canonical questions.

    The record covers every canonical question exactly once; answers for
    question numbers the module does not have are dropped.

    Args:
        questions: Canonical questions of the module
        submission: Raw answers, time spent and module time from the client

    Returns:
        Completed ModuleRecord with server-computed statuses
    """
    submitted = {a.question_number: a for a in submission.answers}
    unknown = sorted(set(submitted) - {q.question_number for q in questions})
    if unknown:
        logger.warning(f"Module {submission.module_number}: ignoring answers for unknown questions {unknown}")

    validated = []
    for question in sorted(questions, key=lambda q: q.question_number):
        answer = submitted.get(question.question_number)
        user_answer = answer.user_answer if answer else None
        validated.append(
            ModuleQuestion(
                question_number=question.question_number,
                user_answer=user_answer,
                flagged=answer.flagged if answer else False,
                time_spent_seconds=max(0, answer.time_spent_seconds) if answer else 0,
                status=grade(user_answer, question),
                correct_answer=question.correct_answer,
            )
        )
    return ModuleRecord(
        module_number=submission.module_number,
        questions=validated,
        completed=True,
        total_time_seconds=max(0, submission.total_time_seconds),
    )


class TestAttemptStore(ABC):
    """Authoritative record of attempts keyed by (user_id, test_id)."""

    __test__ = False

    def __init__(self, question_bank: QuestionBank):
        self.question_bank = question_bank

    @abstractmethod
    def get_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        """Raises NotFound when the user has no attempt for the test."""

    @abstractmethod
    def create_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        """Create an IN_PROGRESS attempt. Raises AttemptCreateFailed."""

    @abstractmethod
    def list_user_attempts(self, user_id: str) -> List[TestAttempt]:
        """All attempts of a user, most recently modified first."""

    @abstractmethod
    def _load(self, attempt_id: str) -> TestAttempt:
        """Load by id. Raises NotFound or ValidationFailed."""

    @abstractmethod
    def _write_modules(self, attempt: TestAttempt, modules: Dict[int, ModuleRecord]) -> TestAttempt:
        """Persist the modules map. Raises ValidationFailed."""

    @abstractmethod
    def _write_completion(
        self,
        attempt: TestAttempt,
        total_time: int,
        reading_scaled: int,
        math_scaled: int,
        total: int,
    ) -> Optional[TestAttempt]:
        """Mark COMPLETE with scores if still IN_PROGRESS; None when another writer got there first."""

    def get_or_create_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        try:
            return self.get_attempt(user_id, test_id)
        except NotFound:
            return self.create_attempt(user_id, test_id)

    def validate_and_persist_module(
        self,
        attempt_id: str,
        test_id: int,
        module_number: int,
        submission: ModuleSubmission,
    ) -> TestAttempt:
        if submission.module_number != module_number:
            raise ValidationFailed(
                f"Submission is for module {submission.module_number}, expected {module_number}"
            )
        try:
            questions = self.question_bank.get_questions_by_module(test_id, module_number)
        except (NotFound, QuestionsUnavailable) as e:
            raise ValidationFailed(f"Cannot validate module {module_number}: {e}") from e
        problems = check_question_numbers(module_number, (q.question_number for q in questions))
        if problems:
            raise ValidationFailed(
                f"Cannot validate test {test_id} module {module_number}: {'; '.join(problems)}"
            )

        try:
            attempt = self._load(attempt_id)
        except NotFound as e:
            raise ValidationFailed(f"Attempt {attempt_id} not found") from e
        if attempt.test_id != test_id:
            raise ValidationFailed(f"Attempt {attempt_id} belongs to test {attempt.test_id}, not {test_id}")

        if attempt.is_module_complete(module_number):
            logger.warning(f"Attempt {attempt_id}: module {module_number} already submitted, keeping stored record")
            return attempt

        record = validate_module(questions, submission)
        modules = dict(attempt.modules)
        modules[module_number] = record
        updated = self._write_modules(attempt, modules)
        logger.info(
            f"Attempt {attempt_id}: module {module_number} validated "
            f"({record.correct_count()}/{len(record.questions)} correct)"
        )
        return updated

    def finalize(
        self,
        attempt_id: str,
        total_time: int,
        reading_scaled: int,
        math_scaled: int,
        total: int,
        modules: Iterable[ModuleRecord],
    ) -> TestAttempt:
        """
        Mark the attempt COMPLETE with its scores.

        Idempotent: an attempt that is already COMPLETE is returned as stored,
        with its original scores. Module records are not rewritten; the
        passed ``modules`` must match the completed records in the store.
        """
        try:
            attempt = self._load(attempt_id)
        except NotFound as e:
            raise ValidationFailed(f"Attempt {attempt_id} not found") from e

        if attempt.status == AttemptStatus.COMPLETE:
            logger.info(f"Attempt {attempt_id} already finalized (total {attempt.total_score})")
            return attempt

        required = set(MODULE_NUMBERS)
        passed = {record.module_number for record in modules}
        incomplete = (required - attempt.completed_modules()) | (required - passed)
        if incomplete:
            raise ValidationFailed(f"Attempt {attempt_id} cannot be finalized, incomplete modules {sorted(incomplete)}")

        updated = self._write_completion(attempt, total_time, reading_scaled, math_scaled, total)
        if updated is None:
            logger.info(f"Attempt {attempt_id} was finalized concurrently, returning stored scores")
            return self._load(attempt_id)
        logger.info(
            f"Attempt {attempt_id} finalized: reading={reading_scaled} math={math_scaled} total={total}"
        )
        return updated


class InMemoryAttemptStore(TestAttemptStore):
    """Process-local store for tests and offline mode."""

    def __init__(self, question_bank: QuestionBank):
        super().__init__(question_bank)
        self._attempts: Dict[str, TestAttempt] = {}
        self._index: Dict[Tuple[str, int], str] = {}

    def get_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        attempt_id = self._index.get((user_id, test_id))
        if attempt_id is None:
            raise NotFound(f"No attempt for user {user_id}, test {test_id}")
        return copy.deepcopy(self._attempts[attempt_id])

    def create_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        existing = self._index.get((user_id, test_id))
        if existing is not None:
            return copy.deepcopy(self._attempts[existing])
        now = utc_now_iso()
        attempt = TestAttempt(
            id=str(uuid4()),
            user_id=user_id,
            test_id=test_id,
            created_at=now,
            last_modified=now,
        )
        self._attempts[attempt.id] = attempt
        self._index[(user_id, test_id)] = attempt.id
        logger.info(f"Created attempt {attempt.id} for user {user_id}, test {test_id}")
        return copy.deepcopy(attempt)

    def list_user_attempts(self, user_id: str) -> List[TestAttempt]:
        attempts = [copy.deepcopy(a) for a in self._attempts.values() if a.user_id == user_id]
        return sorted(attempts, key=lambda a: a.last_modified or "", reverse=True)

    def _load(self, attempt_id: str) -> TestAttempt:
        try:
            return copy.deepcopy(self._attempts[attempt_id])
        except KeyError:
            raise NotFound(f"Attempt {attempt_id} not found") from None

    def _write_modules(self, attempt: TestAttempt, modules: Dict[int, ModuleRecord]) -> TestAttempt:
        stored = self._attempts[attempt.id]
        stored.modules = copy.deepcopy(modules)
        stored.last_modified = utc_now_iso()
        return copy.deepcopy(stored)

    def _write_completion(self, attempt, total_time, reading_scaled, math_scaled, total):
        stored = self._attempts[attempt.id]
        if stored.status == AttemptStatus.COMPLETE:
            return None
        now = utc_now_iso()
        stored.status = AttemptStatus.COMPLETE
        stored.total_time_seconds = total_time
        stored.reading_scaled_score = reading_scaled
        stored.math_scaled_score = math_scaled
        stored.total_score = total
        stored.last_modified = now
        stored.completed_at = now
        return copy.deepcopy(stored)
