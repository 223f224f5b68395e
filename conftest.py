import copy
import sys
from pathlib import Path
from uuid import uuid4

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sat_mirror.attempts import InMemoryAttemptStore  # noqa: E402
from sat_mirror.exam_format import MODULE_FORMATS  # noqa: E402
from sat_mirror.models import Question, Section  # noqa: E402
from sat_mirror.question_bank import InMemoryQuestionBank  # noqa: E402
from sat_mirror.storage import MemoryStorage  # noqa: E402

TEST_ID = 7
USER_ID = "student-1"
START_MS = 1_700_000_000_000

OPTIONS = ["apple", "banana", "cherry", "date"]


def mc_question(test_id, module_number, question_number, correct="banana"):
    section = MODULE_FORMATS[module_number].section
    return Question(
        test_id=test_id,
        module_number=module_number,
        question_number=question_number,
        correct_answer=correct,
        section=section,
        answer_options=[{"type": "text", "value": v} for v in OPTIONS],
        content=[{"type": "text", "value": f"Question {question_number}"}],
    )


def free_response_question(test_id, module_number, question_number, correct="0.5"):
    return Question(
        test_id=test_id,
        module_number=module_number,
        question_number=question_number,
        correct_answer=correct,
        section=Section.MATH,
        answer_options=[{"type": "text", "value": correct}],
        content=[{"type": "text", "value": f"Solve {question_number}"}],
    )


def build_test(test_id=TEST_ID):
    """A full test: 27/27 reading questions, 22/22 math with every fifth one free response."""
    questions = []
    for module_number, fmt in MODULE_FORMATS.items():
        for n in range(1, fmt.question_count + 1):
            if fmt.section == Section.MATH and n % 5 == 0:
                questions.append(free_response_question(test_id, module_number, n))
            else:
                questions.append(mc_question(test_id, module_number, n))
    return questions


class Clock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def questions():
    return build_test()


@pytest.fixture
def question_bank(questions):
    return InMemoryQuestionBank(questions)


@pytest.fixture
def attempt_store(question_bank):
    return InMemoryAttemptStore(question_bank)


@pytest.fixture
def storage():
    return MemoryStorage()


# --- Fake Supabase client (query-builder chain over in-memory tables) ---


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.filters = []
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.order_by = []
        self.limit_n = None
        self.range_bounds = None
        self.count = None

    def select(self, *columns, count=None):
        self.action = "select"
        self.count = count
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.action, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.action, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by.append((column, desc))
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        self.client.queries.append(self)
        if self.table in self.client.fail_tables.get(self.action, set()):
            raise RuntimeError(f"{self.action} on {self.table} failed")
        rows = self.client.tables.setdefault(self.table, [])

        if self.action == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for row in payload:
                row = copy.deepcopy(row)
                row.setdefault("id", str(uuid4()))
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        if self.action == "upsert":
            keys = self.on_conflict.split(",") if self.on_conflict else ["id"]
            for row in self.payload:
                existing = next((r for r in rows if all(r.get(k) == row.get(k) for k in keys)), None)
                if existing is None:
                    row = copy.deepcopy(row)
                    row.setdefault("id", str(uuid4()))
                    rows.append(row)
                else:
                    existing.update(copy.deepcopy(row))
            return FakeResponse(copy.deepcopy(self.payload))

        matched = [r for r in rows if self._matches(r)]
        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))
        if self.action == "delete":
            self.client.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResponse(copy.deepcopy(matched))

        for column, desc in reversed(self.order_by):
            matched = sorted(matched, key=lambda r: r.get(column) or 0, reverse=desc)
        if self.range_bounds:
            matched = matched[self.range_bounds[0] : self.range_bounds[1] + 1]
        if self.limit_n is not None:
            matched = matched[: self.limit_n]
        return FakeResponse(copy.deepcopy(matched), count=len(matched) if self.count else None)


class FakeRpc:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def execute(self):
        if not self.client.rpc_enabled:
            raise RuntimeError(f"function {self.name} does not exist")
        test_ids = sorted({r["test_id"] for r in self.client.tables.get("questions", [])})
        return FakeResponse([{"test_id": t} for t in test_ids])


class FakeSupabaseClient:
    def __init__(self, tables=None, rpc_enabled=True):
        self.tables = tables or {}
        self.rpc_enabled = rpc_enabled
        self.fail_tables = {}
        self.queries = []

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name)

    def fail(self, action, table):
        self.fail_tables.setdefault(action, set()).add(table)


@pytest.fixture
def fake_client(questions):
    return FakeSupabaseClient({"questions": [q.to_row() for q in questions], "test_attempts": []})
