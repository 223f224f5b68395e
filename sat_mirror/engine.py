"""
Module Engine: the timed module state machine.

INTRO -> ACTIVE -> REVIEW -> SUBMITTING -> NEXT_MODULE_INTRO | FINAL_RESULTS

The engine owns the ephemeral side of a module (answers, timer, last viewed
question) and hands raw answers to the attempt store on submit. It never
decides correctness itself.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from sat_mirror.attempts import TestAttemptStore
from sat_mirror.errors import NotFound, QuestionsUnavailable, SatMirrorError, ValidationFailed
from sat_mirror.exam_format import MODULE_NUMBERS, check_question_numbers, module_format
from sat_mirror.models import QuestionStatus, TestAttempt
from sat_mirror.module_state import ModuleState
from sat_mirror.question_bank import QuestionBank
from sat_mirror.routing import FULL_RESULTS, Route, route_after_submit
from sat_mirror.scoring import calculate_test_score
from sat_mirror.storage import KeyValueStorage, ModuleStorageKeys
from sat_mirror.timer import ModuleTimer, now_ms

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    INTRO = "INTRO"
    ACTIVE = "ACTIVE"
    REVIEW = "REVIEW"
    SUBMITTING = "SUBMITTING"
    NEXT_MODULE_INTRO = "NEXT_MODULE_INTRO"
    FINAL_RESULTS = "FINAL_RESULTS"


@dataclass(frozen=True)
class ReviewItem:
    question_number: int
    answered: bool
    flagged: bool
    preview: Optional[QuestionStatus] = None


@dataclass(frozen=True)
class ReviewSummary:
    total: int
    answered: int
    flagged: int
    unanswered: int
    items: List[ReviewItem] = field(default_factory=list)


@dataclass(frozen=True)
class SubmitResult:
    submitted: bool
    route: Optional[Route] = None
    forced: bool = False
    needs_confirmation: bool = False
    unanswered_count: int = 0
    attempt: Optional[TestAttempt] = None


class ModuleOrchestrator:
    """Drives one module of one user's attempt."""

    # Timing
    TICK_INTERVAL_SECONDS = 1

    def __init__(
        self,
        user_id: str,
        test_id: int,
        module_number: int,
        question_bank: QuestionBank,
        attempt_store: TestAttemptStore,
        storage: KeyValueStorage,
        clock: Callable[[], int] = now_ms,
    ):
        self.format = module_format(module_number)
        self.user_id = user_id
        self.test_id = test_id
        self.module_number = module_number
        self.question_bank = question_bank
        self.attempt_store = attempt_store
        self.storage = storage
        self.clock = clock
        self.keys = ModuleStorageKeys(user_id, test_id, module_number)

        self.phase = Phase.INTRO
        self.state: Optional[ModuleState] = None
        self.timer: Optional[ModuleTimer] = None
        self.route: Optional[Route] = None
        self.last_error: Optional[SatMirrorError] = None
        self.last_result: Optional[SubmitResult] = None
        self.reading_results_available = False
        self._submitting = False

    # ------------------------------------------------------------------ intro

    def begin_module(self) -> None:
        """
        Start the module: load questions, fix the deadline, reset answer state.

        A deadline already stored for this module is reused, so going back to
        the intro and beginning again never restarts the clock.

        Raises:
            QuestionsUnavailable: no questions could be loaded for the module,
                or they do not match the exam format
        """
        if self.phase != Phase.INTRO:
            logger.warning(f"begin_module ignored in phase {self.phase.value}")
            return
        if self.resume():
            return

        try:
            questions = self.question_bank.get_questions_by_module(self.test_id, self.module_number)
        except QuestionsUnavailable as e:
            self.last_error = e
            raise
        except NotFound as e:
            self.last_error = QuestionsUnavailable(self.test_id, self.module_number, str(e))
            raise self.last_error from e
        if not questions:
            self.last_error = QuestionsUnavailable(self.test_id, self.module_number)
            raise self.last_error
        problems = check_question_numbers(self.module_number, (q.question_number for q in questions))
        if problems:
            self.last_error = QuestionsUnavailable(
                self.test_id,
                self.module_number,
                f"Test {self.test_id} module {self.module_number} is malformed: {'; '.join(problems)}",
            )
            raise self.last_error

        now = self.clock()
        self.timer = ModuleTimer.load(self.storage, self.keys.timer)
        if self.timer is None:
            self.timer = ModuleTimer.start(self.format.duration_seconds, now)
            self.timer.save(self.storage, self.keys.timer)
        self.state = ModuleState.from_questions(self.test_id, self.module_number, questions, now)
        self.phase = Phase.ACTIVE
        self.last_error = None
        self._persist()
        self.check_reading_results()
        logger.info(
            f"User {self.user_id} began test {self.test_id} module {self.module_number} "
            f"({self.state.total_questions} questions, {self.format.duration_seconds}s)"
        )

    def resume(self) -> bool:
        """Rebuild an in-progress module from ephemeral storage after a reload."""
        if self.phase not in (Phase.INTRO, Phase.ACTIVE, Phase.REVIEW):
            return False
        timer = ModuleTimer.load(self.storage, self.keys.timer)
        if timer is None:
            return False
        now = self.clock()
        state = ModuleState.load(self.storage, self.keys.snapshot, now)
        if state is None:
            return False

        self.timer = timer
        self.state = state
        stored_phase = (self.storage.get(self.keys.snapshot) or {}).get("phase")
        self.phase = Phase.REVIEW if stored_phase in (Phase.REVIEW.value, Phase.SUBMITTING.value) else Phase.ACTIVE
        if self.phase == Phase.REVIEW:
            self.state.entered_at_ms = None
        self.check_reading_results()
        logger.info(
            f"Resumed test {self.test_id} module {self.module_number} in {self.phase.value}, "
            f"{timer.remaining_seconds(now)}s left"
        )
        return True

    def check_reading_results(self) -> None:
        # Informational only: never gates progression
        if self.module_number != 3:
            return
        try:
            attempt = self.attempt_store.get_attempt(self.user_id, self.test_id)
        except NotFound:
            self.reading_results_available = False
            return
        except SatMirrorError as e:
            logger.warning(f"Could not check reading modules for test {self.test_id}: {e}")
            self.reading_results_available = False
            return
        self.reading_results_available = attempt.is_module_complete(1) and attempt.is_module_complete(2)

    def offers_reading_results(self) -> bool:
        return self.reading_results_available

    # ----------------------------------------------------------------- active

    @property
    def current_question(self) -> Optional[int]:
        return self.state.current_question if self.state else None

    @property
    def total_questions(self) -> int:
        return self.state.total_questions if self.state else self.format.question_count

    def _require(self, *phases: Phase) -> bool:
        if self.phase in phases:
            return True
        logger.warning(f"Action ignored in phase {self.phase.value}")
        return False

    def answer_question(self, question_number: int, value: Optional[str]) -> None:
        if not self._require(Phase.ACTIVE):
            return
        self.state.answer(question_number, value)
        self._persist()

    def toggle_flag(self, question_number: int) -> bool:
        if not self._require(Phase.ACTIVE):
            return False
        flagged = self.state.toggle_flag(question_number)
        self._persist()
        return flagged

    def go_to(self, question_number: int) -> None:
        """Move to a question; numbers outside 1..total are ignored."""
        if not self._require(Phase.ACTIVE):
            return
        if not self.state.has_question(question_number) or question_number == self.state.current_question:
            return
        self.state.enter(question_number, self.clock())
        self._persist()

    def next_question(self) -> None:
        if self.state:
            self.go_to(self.state.current_question + 1)

    def previous_question(self) -> None:
        if self.state:
            self.go_to(self.state.current_question - 1)

    def leave(self) -> None:
        """
        Flush dwell time when the student navigates away from the module.

        No question accrues time until the module is opened again. The timer
        keeps running. A reload without ``leave`` keeps the stored entry time,
        so the time the page was gone still counts for the current question.
        """
        if self.phase != Phase.ACTIVE:
            return
        self.state.flush_time(self.clock())
        self.state.entered_at_ms = None
        self._persist()

    # ----------------------------------------------------------------- review

    def go_to_review(self) -> None:
        if not self._require(Phase.ACTIVE):
            return
        self.state.flush_time(self.clock())
        self.state.entered_at_ms = None
        self.storage.set(self.keys.last_question, self.state.current_question)
        self.phase = Phase.REVIEW
        self._persist()

    def return_to_question(self, question_number: int) -> None:
        if not self._require(Phase.REVIEW):
            return
        if not self.state.has_question(question_number):
            question_number = self.state.current_question
        self.state.enter(question_number, self.clock())
        self.phase = Phase.ACTIVE
        self._persist()

    def return_to_last_question(self) -> None:
        last = self.storage.get(self.keys.last_question)
        self.return_to_question(int(last) if last else self.state.first_question)

    def review_summary(self, preview: bool = False) -> ReviewSummary:
        """
        Counts and per-question markers for the review screen.

        With ``preview`` each item also carries the client-side grade. It is
        only shown to the student and never submitted.
        """
        items = [
            ReviewItem(
                question_number=n,
                answered=bool(q.user_answer and q.user_answer.strip()),
                flagged=q.flagged,
                preview=self.state.advisory_status(n) if preview else None,
            )
            for n, q in sorted(self.state.answers.items())
        ]
        return ReviewSummary(
            total=self.state.total_questions,
            answered=self.state.answered_count(),
            flagged=self.state.flagged_count(),
            unanswered=self.state.unanswered_count(),
            items=items,
        )

    # ------------------------------------------------------------------ timer

    def remaining_seconds(self) -> int:
        if self.timer is None:
            return self.format.duration_seconds
        return self.timer.remaining_seconds(self.clock())

    def tick(self) -> int:
        """
        Called about once per second. On expiry, submits once without confirmation.

        Returns:
            Remaining seconds
        """
        if self.timer is None or self.phase not in (Phase.ACTIVE, Phase.REVIEW):
            return self.remaining_seconds()
        now = self.clock()
        remaining = self.timer.remaining_seconds(now)
        if self.timer.check_expired(now):
            logger.info(f"Time is up for test {self.test_id} module {self.module_number}, auto-submitting")
            self.submit(forced=True)
        return remaining

    # ----------------------------------------------------------------- submit

    def submit(self, confirmed: bool = False, forced: bool = False) -> SubmitResult:
        """
        Validate and persist the module, then route onwards.

        Manual submits come from REVIEW and need ``confirmed=True``; without it
        the result only reports how many questions are unanswered. Time expiry
        skips confirmation. A submit while another is in flight, or after the
        module is done, is a silent no-op.

        Raises:
            ValidationFailed: the module could not be validated or stored;
                the engine is back in REVIEW with answers intact
            AttemptCreateFailed: the attempt record could not be created
        """
        if self._submitting or self.phase not in (Phase.ACTIVE, Phase.REVIEW):
            logger.warning(f"Submit ignored for module {self.module_number} (phase {self.phase.value})")
            return SubmitResult(submitted=False)

        now = self.clock()
        forced = forced or self.timer.is_expired(now)
        if not forced:
            if self.phase != Phase.REVIEW:
                logger.warning("Manual submit is only available from review")
                return SubmitResult(submitted=False)
            if not confirmed:
                return SubmitResult(
                    submitted=False,
                    needs_confirmation=True,
                    unanswered_count=self.state.unanswered_count(),
                )

        self._submitting = True
        if self.phase == Phase.ACTIVE:
            self.state.flush_time(now)
        self.phase = Phase.SUBMITTING
        self._persist()

        # Wall-clock module time, capped at the allotted duration
        total_time = min(self.timer.elapsed_seconds(now), self.timer.duration_seconds)
        submission = self.state.to_submission(total_time)

        try:
            attempt = self.attempt_store.get_or_create_attempt(self.user_id, self.test_id)
            attempt = self.attempt_store.validate_and_persist_module(
                attempt.id, self.test_id, self.module_number, submission
            )
            completed = attempt.completed_modules()
            if completed >= set(MODULE_NUMBERS):
                attempt = self._finalize(attempt)
                route = FULL_RESULTS
            else:
                route = route_after_submit(self.module_number, completed)
        except SatMirrorError as e:
            self._rollback(e)
            raise
        except Exception as e:
            error = ValidationFailed(f"Module {self.module_number} could not be submitted: {e}")
            self._rollback(error)
            raise error from e

        ModuleTimer.clear(self.storage, self.keys.timer)
        self.storage.remove(self.keys.snapshot)
        self.storage.remove(self.keys.last_question)
        self.route = route
        self.phase = Phase.FINAL_RESULTS if route.is_results else Phase.NEXT_MODULE_INTRO
        self.last_error = None
        self.last_result = SubmitResult(submitted=True, route=route, forced=forced, attempt=attempt)
        logger.info(
            f"User {self.user_id} submitted test {self.test_id} module {self.module_number}"
            f"{' (time expired)' if forced else ''} -> {route}"
        )
        return self.last_result

    def _finalize(self, attempt: TestAttempt) -> TestAttempt:
        modules = [attempt.modules[n] for n in MODULE_NUMBERS]
        score = calculate_test_score(modules)
        total_time = sum(record.total_time_seconds for record in modules)
        return self.attempt_store.finalize(
            attempt.id,
            total_time,
            score.reading.scaled_score,
            score.math.scaled_score,
            score.total,
            modules,
        )

    def _rollback(self, error: SatMirrorError) -> None:
        logger.error(f"Submit failed for test {self.test_id} module {self.module_number}: {error}")
        self.phase = Phase.REVIEW
        self.last_error = error
        self._submitting = False
        self._persist()

    def _persist(self) -> None:
        if self.state is None:
            return
        self.state.save(self.storage, self.keys.snapshot, phase=self.phase.value)
