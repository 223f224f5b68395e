"""Practice-test listing and results views built from stored attempts."""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sat_mirror.exam_format import MODULE_NUMBERS
from sat_mirror.models import AttemptStatus, Section, TestAttempt
from sat_mirror.scoring import SectionScore, raw_score, section_score


@dataclass(frozen=True)
class PracticeTest:
    test_id: int
    modules: Dict[int, bool] = field(default_factory=dict)
    total_time_seconds: int = 0

    @property
    def has_progress(self) -> bool:
        return any(self.modules.values())

    def next_module(self) -> Optional[int]:
        """First module not yet completed."""
        for n in MODULE_NUMBERS:
            if not self.modules.get(n):
                return n
        return None


def list_practice_tests(available_test_ids: Iterable[int], attempts: Iterable[TestAttempt]) -> List[PracticeTest]:
    """
    Tests the user can still take, in-progress ones first.

    Completed tests are left out. Time is the sum of the per-module times.
    """
    by_test = {a.test_id: a for a in attempts}
    tests = []
    for test_id in sorted(set(available_test_ids)):
        attempt = by_test.get(test_id)
        if attempt is not None and attempt.status == AttemptStatus.COMPLETE:
            continue
        modules = {n: bool(attempt and attempt.is_module_complete(n)) for n in MODULE_NUMBERS}
        total_time = sum(r.total_time_seconds for r in attempt.modules.values()) if attempt else 0
        tests.append(PracticeTest(test_id=test_id, modules=modules, total_time_seconds=total_time))
    return sorted(tests, key=lambda t: (not t.has_progress, t.test_id))


@dataclass(frozen=True)
class TestResults:
    __test__ = False

    test_id: int
    complete: bool
    reading: Optional[SectionScore] = None
    math: Optional[SectionScore] = None
    total: Optional[int] = None
    total_time_seconds: int = 0


def build_results(attempt: TestAttempt) -> TestResults:
    """
    Results for any stage of an attempt.

    A finished attempt reports its stored scores. Otherwise each section is
    scored on its own once both of its modules are complete, which backs the
    reading-only and math-only views.
    """
    if attempt.status == AttemptStatus.COMPLETE:
        records = list(attempt.modules.values())
        return TestResults(
            test_id=attempt.test_id,
            complete=True,
            reading=SectionScore(raw_score(records, Section.READING), attempt.reading_scaled_score),
            math=SectionScore(raw_score(records, Section.MATH), attempt.math_scaled_score),
            total=attempt.total_score,
            total_time_seconds=attempt.total_time_seconds,
        )
    return TestResults(
        test_id=attempt.test_id,
        complete=False,
        reading=section_score(attempt.modules, Section.READING),
        math=section_score(attempt.modules, Section.MATH),
        total_time_seconds=sum(r.total_time_seconds for r in attempt.modules.values()),
    )
