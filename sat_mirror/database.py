"""
Supabase-backed question bank and attempt store.

Client errors are logged here and re-raised as exam errors, so callers only
ever handle the exam taxonomy.
"""
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from sat_mirror.attempts import TestAttemptStore, utc_now_iso
from sat_mirror.errors import AttemptCreateFailed, NotFound, QuestionsUnavailable, ValidationFailed
from sat_mirror.models import AttemptStatus, ModuleRecord, Question, TestAttempt, module_key
from sat_mirror.question_bank import QuestionBank

logger = logging.getLogger(__name__)

QUESTIONS_TABLE = "questions"
ATTEMPTS_TABLE = "test_attempts"


class SupabaseQuestionBank(QuestionBank):
    """Reads the ``questions`` table."""

    def __init__(self, client: Client):
        self.client = client

    def get_questions_by_module(self, test_id: int, module_number: int) -> List[Question]:
        try:
            response = (
                self.client.table(QUESTIONS_TABLE)
                .select("*")
                .eq("test_id", test_id)
                .eq("module_number", module_number)
                .order("question_number")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching questions for test {test_id} module {module_number}: {e}")
            raise QuestionsUnavailable(test_id, module_number, str(e)) from e

        rows = response.data or []
        if not rows:
            raise NotFound(f"No questions for test {test_id}, module {module_number}")
        return [Question.from_row(row) for row in rows]

    def get_available_test_ids(self) -> List[int]:
        """
        Distinct test ids from the question bank.

        Uses the ``get_distinct_test_ids`` database function and falls back to
        a plain select when the function is not installed.
        """
        try:
            response = self.client.rpc("get_distinct_test_ids", {}).execute()
            return sorted({int(row["test_id"]) for row in response.data or []})
        except Exception as e:
            logger.warning(f"get_distinct_test_ids unavailable, falling back to select: {e}")

        try:
            response = (
                self.client.table(QUESTIONS_TABLE)
                .select("test_id")
                .order("test_id")
                .range(0, 9999)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching test ids: {e}")
            raise NotFound("Could not list available tests") from e
        return sorted({int(row["test_id"]) for row in response.data or [] if row.get("test_id") is not None})


class SupabaseAttemptStore(TestAttemptStore):
    """Reads and writes the ``test_attempts`` table."""

    def __init__(self, client: Client, question_bank: QuestionBank):
        super().__init__(question_bank)
        self.client = client

    def _first(self, response) -> Optional[Dict[str, Any]]:
        data = response.data or []
        return data[0] if data else None

    def get_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        try:
            response = (
                self.client.table(ATTEMPTS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("test_id", test_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching attempt for user {user_id}, test {test_id}: {e}")
            raise ValidationFailed(f"Could not load attempt: {e}") from e

        row = self._first(response)
        if row is None:
            raise NotFound(f"No attempt for user {user_id}, test {test_id}")
        return TestAttempt.from_row(row)

    def create_attempt(self, user_id: str, test_id: int) -> TestAttempt:
        now = utc_now_iso()
        row = {
            "user_id": user_id,
            "test_id": test_id,
            "modules": {},
            "test_status": AttemptStatus.IN_PROGRESS.value,
            "total_time": 0,
            "created_at": now,
            "last_modified": now,
        }
        try:
            response = self.client.table(ATTEMPTS_TABLE).insert(row).execute()
        except Exception as e:
            # A concurrent first submission may have created it already
            logger.warning(f"Insert of attempt for user {user_id}, test {test_id} failed: {e}")
            try:
                return self.get_attempt(user_id, test_id)
            except (NotFound, ValidationFailed):
                raise AttemptCreateFailed(f"Could not create attempt for test {test_id}: {e}") from e

        created = self._first(response)
        if created is None:
            raise AttemptCreateFailed(f"Attempt insert for test {test_id} returned no row")
        logger.info(f"Created attempt {created['id']} for user {user_id}, test {test_id}")
        return TestAttempt.from_row(created)

    def list_user_attempts(self, user_id: str) -> List[TestAttempt]:
        try:
            response = (
                self.client.table(ATTEMPTS_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("last_modified", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching attempts for user {user_id}: {e}")
            raise NotFound(f"Could not list attempts: {e}") from e
        return [TestAttempt.from_row(row) for row in response.data or []]

    def _load(self, attempt_id: str) -> TestAttempt:
        try:
            response = self.client.table(ATTEMPTS_TABLE).select("*").eq("id", attempt_id).limit(1).execute()
        except Exception as e:
            logger.error(f"Error loading attempt {attempt_id}: {e}")
            raise ValidationFailed(f"Could not load attempt {attempt_id}: {e}") from e
        row = self._first(response)
        if row is None:
            raise NotFound(f"Attempt {attempt_id} not found")
        return TestAttempt.from_row(row)

    def _write_modules(self, attempt: TestAttempt, modules: Dict[int, ModuleRecord]) -> TestAttempt:
        payload = {
            "modules": {module_key(n): record.to_row() for n, record in sorted(modules.items())},
            "last_modified": utc_now_iso(),
        }
        try:
            response = self.client.table(ATTEMPTS_TABLE).update(payload).eq("id", attempt.id).execute()
        except Exception as e:
            logger.error(f"Error writing modules of attempt {attempt.id}: {e}")
            raise ValidationFailed(f"Could not save module: {e}") from e
        row = self._first(response)
        if row is None:
            raise ValidationFailed(f"Attempt {attempt.id} was not updated")
        return TestAttempt.from_row(row)

    def _write_completion(self, attempt, total_time, reading_scaled, math_scaled, total):
        now = utc_now_iso()
        payload = {
            "test_status": AttemptStatus.COMPLETE.value,
            "total_time": total_time,
            "reading_score": reading_scaled,
            "math_score": math_scaled,
            "total_score": total,
            "last_modified": now,
            "completed_at": now,
        }
        try:
            response = (
                self.client.table(ATTEMPTS_TABLE)
                .update(payload)
                .eq("id", attempt.id)
                .eq("test_status", AttemptStatus.IN_PROGRESS.value)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error finalizing attempt {attempt.id}: {e}")
            raise ValidationFailed(f"Could not finalize attempt: {e}") from e
        row = self._first(response)
        return TestAttempt.from_row(row) if row else None
