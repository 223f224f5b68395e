from conftest import TEST_ID, USER_ID
from sat_mirror.models import AttemptStatus, ModuleQuestion, ModuleRecord, QuestionStatus, TestAttempt
from sat_mirror.progress import build_results, list_practice_tests


def record(module_number, correct=0, total=22, seconds=600):
    questions = [
        ModuleQuestion(question_number=n, status=QuestionStatus.CORRECT if n <= correct else QuestionStatus.UNANSWERED)
        for n in range(1, total + 1)
    ]
    return ModuleRecord(module_number, questions, completed=True, total_time_seconds=seconds)


def attempt(test_id, modules=(), **kwargs):
    return TestAttempt(
        id=f"a-{test_id}",
        user_id=USER_ID,
        test_id=test_id,
        modules={r.module_number: r for r in modules},
        **kwargs,
    )


def test_list_practice_tests_orders_in_progress_first_and_hides_completed():
    attempts = [
        attempt(3, [record(1, total=27)]),
        attempt(2, status=AttemptStatus.COMPLETE),
    ]
    tests = list_practice_tests([1, 2, 3, 4, 3], attempts)
    assert [t.test_id for t in tests] == [3, 1, 4]
    assert tests[0].has_progress
    assert tests[0].modules == {1: True, 2: False, 3: False, 4: False}
    assert tests[0].next_module() == 2
    assert tests[0].total_time_seconds == 600
    assert tests[1].next_module() == 1


def test_build_results_for_partial_attempt():
    results = build_results(attempt(TEST_ID, [record(3, 22), record(4, 0)]))
    assert not results.complete
    assert results.reading is None
    assert results.math.raw_score == 22
    assert results.math.scaled_score == 500
    assert results.total is None
    assert results.total_time_seconds == 1200


def test_build_results_for_complete_attempt_uses_stored_scores():
    modules = [record(1, 27, 27), record(2, 27, 27), record(3, 22), record(4, 22)]
    results = build_results(
        attempt(
            TEST_ID,
            modules,
            status=AttemptStatus.COMPLETE,
            reading_scaled_score=800,
            math_scaled_score=800,
            total_score=1600,
            total_time_seconds=2400,
        )
    )
    assert results.complete
    assert results.reading.raw_score == 54
    assert results.math.scaled_score == 800
    assert results.total == 1600
    assert results.total_time_seconds == 2400
