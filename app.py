"""SAT Mirror: digital SAT practice with timed modules, review and scaled results."""
import logging
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st

from db import DEFAULT_USER_ID, get_collaborators, get_device_storage
from sat_mirror.engine import ModuleOrchestrator, Phase
from sat_mirror.errors import NotFound, QuestionsUnavailable, SatMirrorError, ValidationFailed
from sat_mirror.exam_format import MODULE_FORMATS, max_raw
from sat_mirror.models import QuestionKind, QuestionStatus, Section
from sat_mirror.page_state import SubmitFeedback, finish_module, leave_open_modules, orchestrator_key
from sat_mirror.progress import build_results, list_practice_tests
from sat_mirror.routing import Destination
from sat_mirror.timer import format_clock
from sat_mirror.validation import classify_question

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

st.set_page_config(page_title="SAT Mirror", layout="wide")
st.sidebar.title("SAT Mirror")

user_id = st.query_params.get("user", DEFAULT_USER_ID)
default_page = st.query_params.get("page", "Dashboard")
if default_page not in ("Dashboard", "Test"):
    default_page = "Dashboard"
page = st.sidebar.radio("Navigate", ["Dashboard", "Test"], index=["Dashboard", "Test"].index(default_page), label_visibility="collapsed")

try:
    question_bank, attempt_store = get_collaborators()
except ValueError as e:
    st.error(f"Could not connect. Check .env (SUPABASE_URL, SUPABASE_KEY or SAT_MIRROR_QUESTIONS_FILE). {e}")
    st.stop()

try:
    device_storage = get_device_storage(user_id)
except ValueError as e:
    st.error(f"{e}. Use letters, digits, '-', '_' or '.' in the user parameter.")
    st.stop()

feedback = SubmitFeedback(st.session_state)


def open_screen(test_id: int, module_number: int | None, screen: str, view: str | None = None):
    st.query_params.update({"page": "Test", "user": user_id, "test": str(test_id), "screen": screen})
    if module_number is not None:
        st.query_params["module"] = str(module_number)
    if view:
        st.query_params["view"] = view
    elif "view" in st.query_params:
        del st.query_params["view"]
    feedback.cancel_confirmation()
    st.rerun()


def get_orchestrator(test_id: int, module_number: int) -> ModuleOrchestrator:
    """One orchestrator per module in the session; rebuilt from device storage after a reload."""
    key = orchestrator_key(user_id, test_id, module_number)
    if key not in st.session_state:
        orchestrator = ModuleOrchestrator(
            user_id, test_id, module_number, question_bank, attempt_store, device_storage
        )
        orchestrator.resume()
        st.session_state[key] = orchestrator
    return st.session_state[key]


def follow_route(orchestrator: ModuleOrchestrator):
    route = finish_module(st.session_state, orchestrator)
    if route.destination == Destination.MODULE_INTRO:
        open_screen(orchestrator.test_id, route.module_number, "intro")
    else:
        open_screen(orchestrator.test_id, None, "results", view=route.destination.value)


# ----- Dashboard -----
def render_dashboard():
    st.header("Dashboard")
    try:
        attempts = attempt_store.list_user_attempts(user_id)
        tests = list_practice_tests(question_bank.get_available_test_ids(), attempts)
    except SatMirrorError as e:
        st.error(f"Could not load practice tests: {e}")
        return
    if not tests:
        st.success("You have completed every available practice test.")
    for test in tests:
        col1, col2, col3 = st.columns([2, 3, 1])
        with col1:
            st.subheader(f"Practice Test {test.test_id}")
        with col2:
            st.caption(" · ".join(f"Module {n}: {'done' if done else 'open'}" for n, done in test.modules.items()))
            if test.has_progress:
                st.caption(f"Time so far: {format_clock(test.total_time_seconds)}")
        with col3:
            label = "Resume" if test.has_progress else "Start"
            if st.button(label, key=f"start-{test.test_id}", type="primary"):
                open_screen(test.test_id, test.next_module(), "intro")

    completed = [a for a in attempts if a.total_score is not None]
    if completed:
        st.divider()
        st.subheader("Completed tests")
        for attempt in completed:
            st.write(f"Test {attempt.test_id}: **{attempt.total_score}** "
                     f"(Reading & Writing {attempt.reading_scaled_score}, Math {attempt.math_scaled_score})")


# ----- Module screens -----
def render_intro(orchestrator: ModuleOrchestrator):
    fmt = orchestrator.format
    st.header(f"Module {fmt.module_number}: {fmt.title}")
    col1, col2, col3 = st.columns(3)
    col1.metric("Time Allowed", f"{fmt.duration_seconds // 60} minutes")
    col2.metric("Questions", fmt.question_count)
    col3.metric("Question Format", "Multiple Choice" if fmt.section == Section.READING else "Multiple Choice & Fill-In")
    st.markdown(
        f"- You will have {fmt.duration_seconds // 60} minutes to complete {fmt.question_count} questions.\n"
        "- The timer starts as soon as you click **Begin Module** and keeps running if you leave.\n"
        "- You can flag questions and review all of them before submitting."
    )
    if fmt.module_number == 3:
        orchestrator.check_reading_results()
        if orchestrator.offers_reading_results() and st.button("View Reading & Writing results"):
            open_screen(orchestrator.test_id, None, "results", view=Destination.READING_RESULTS.value)
    if st.button("Begin Module", type="primary"):
        try:
            orchestrator.begin_module()
        except QuestionsUnavailable as e:
            st.error(f"{e}. Please try again.")
            return
        open_screen(orchestrator.test_id, orchestrator.module_number, "module")


@st.fragment(run_every=ModuleOrchestrator.TICK_INTERVAL_SECONDS)
def render_clock(orchestrator: ModuleOrchestrator):
    try:
        remaining = orchestrator.tick()
    except ValidationFailed as e:
        feedback.failed(e)
        st.rerun(scope="app")
    if orchestrator.phase in (Phase.NEXT_MODULE_INTRO, Phase.FINAL_RESULTS):
        st.toast("Time's up! Your module has been submitted.")
        st.rerun(scope="app")
    label = format_clock(remaining)
    st.metric("Time left", label if remaining >= 300 else f"⚠ {label}")


def render_question(orchestrator: ModuleOrchestrator):
    state = orchestrator.state
    n = state.current_question
    source = state.source(n)
    answer = state.question(n)

    st.progress(state.percent_complete() / 100, text=f"Question {n} of {state.total_questions} · {state.percent_complete()}% complete")
    for block in source.content:
        if block.get("type") == "text":
            st.markdown(block.get("value", ""))
        else:
            st.write(block.get("value", ""))

    if classify_question(source) == QuestionKind.MULTIPLE_CHOICE:
        # The submitted answer is the option's value
        values = [str(opt.get("value", "")) if isinstance(opt, dict) else str(opt) for opt in source.answer_options]
        choice = st.radio(
            "Choose one:",
            values,
            format_func=lambda v: f"{chr(ord('A') + values.index(v))}. {v}",
            index=values.index(answer.user_answer) if answer.user_answer in values else None,
            key=f"answer-{orchestrator.module_number}-{n}",
        )
        if choice != answer.user_answer:
            orchestrator.answer_question(n, choice)
    else:
        value = st.text_input("Your answer", value=answer.user_answer or "", max_chars=6, key=f"answer-{orchestrator.module_number}-{n}")
        if (value or None) != answer.user_answer:
            orchestrator.answer_question(n, value)

    col1, col2, col3, col4 = st.columns(4)
    if col1.button("Previous", disabled=n == state.first_question):
        orchestrator.previous_question()
        st.rerun()
    if col2.button("Unflag" if answer.flagged else "Flag"):
        orchestrator.toggle_flag(n)
        st.rerun()
    if col3.button("Next", disabled=n == state.questions[-1].question_number):
        orchestrator.next_question()
        st.rerun()
    if col4.button("Review", type="primary"):
        orchestrator.go_to_review()
        open_screen(orchestrator.test_id, orchestrator.module_number, "review")


PREVIEW_MARKERS = {QuestionStatus.CORRECT: "✅", QuestionStatus.INCORRECT: "❌", QuestionStatus.UNANSWERED: "○"}


def render_review(orchestrator: ModuleOrchestrator):
    st.header(f"Module {orchestrator.module_number}: {orchestrator.format.title} - Review")
    preview = st.toggle("Check my answers", help="Preview only. Your module is graded again when you submit.")
    summary = orchestrator.review_summary(preview=preview)
    col1, col2, col3 = st.columns(3)
    col1.metric("Answered", f"{summary.answered}/{summary.total}")
    col2.metric("Flagged", f"{summary.flagged}/{summary.total}")
    col3.metric("Unanswered", f"{summary.unanswered}/{summary.total}")

    columns = st.columns(9)
    for i, item in enumerate(summary.items):
        if item.preview is not None:
            marker = PREVIEW_MARKERS[item.preview]
        else:
            marker = "✓" if item.answered else "○"
        if item.flagged:
            marker = f"🚩{marker}"
        if columns[i % 9].button(f"{item.question_number} {marker}", key=f"review-{item.question_number}"):
            orchestrator.return_to_question(item.question_number)
            open_screen(orchestrator.test_id, orchestrator.module_number, "module")

    if feedback.error:
        st.error(f"Submission failed: {feedback.error}. Your answers are saved; please retry.")

    col1, col2 = st.columns(2)
    if col1.button("Return to Questions"):
        orchestrator.return_to_last_question()
        open_screen(orchestrator.test_id, orchestrator.module_number, "module")
    label = "Continue to Next Module" if orchestrator.module_number < 4 else "Complete Test"
    if col2.button(label, type="primary"):
        try:
            result = orchestrator.submit()
        except ValidationFailed as e:
            feedback.failed(e)
            st.rerun()
        if result.needs_confirmation:
            feedback.ask_confirmation(result.unanswered_count)
        elif result.submitted:
            # Time ran out, so no confirmation was needed
            follow_route(orchestrator)
    unanswered = feedback.unanswered_to_confirm
    if unanswered is not None:
        if unanswered:
            st.warning(f"You have {unanswered} unanswered question(s). Submit anyway?")
        if st.button("Confirm submit"):
            try:
                result = orchestrator.submit(confirmed=True)
            except ValidationFailed as e:
                feedback.failed(e)
                st.rerun()
            if result.submitted:
                follow_route(orchestrator)


def render_results(test_id: int, view: str | None):
    try:
        attempt = attempt_store.get_attempt(user_id, test_id)
    except NotFound:
        st.error("No test data found.")
        return
    results = build_results(attempt)
    st.header("Your SAT Practice Test Results")
    if results.total is not None and view != Destination.READING_RESULTS.value:
        st.metric("Total Score (out of 1600)", results.total)
    for section, score in ((Section.READING, results.reading), (Section.MATH, results.math)):
        if view == Destination.READING_RESULTS.value and section == Section.MATH:
            continue
        if view == Destination.MATH_RESULTS.value and section == Section.READING:
            continue
        title = "Reading & Writing" if section == Section.READING else "Math"
        if score is None:
            st.info(f"{title}: finish both modules to see this section's score.")
            continue
        st.metric(title, score.scaled_score, help=f"Raw score {score.raw_score} / {max_raw(section)}")
        st.progress((score.scaled_score - 200) / 600)
    if st.button("Back to Dashboard"):
        st.query_params.clear()
        st.query_params["user"] = user_id
        st.rerun()


def render_test():
    try:
        test_id = int(st.query_params["test"])
    except (KeyError, ValueError):
        st.info("Pick a practice test on the dashboard.")
        return
    screen = st.query_params.get("screen", "intro")
    if screen == "results":
        render_results(test_id, st.query_params.get("view"))
        return

    module_number = int(st.query_params.get("module", 1))
    if module_number not in MODULE_FORMATS:
        st.error(f"Unknown module {module_number}")
        return
    orchestrator = get_orchestrator(test_id, module_number)

    if orchestrator.phase == Phase.INTRO:
        render_intro(orchestrator)
        return
    if orchestrator.phase in (Phase.NEXT_MODULE_INTRO, Phase.FINAL_RESULTS):
        follow_route(orchestrator)
    with st.sidebar:
        render_clock(orchestrator)
    if orchestrator.phase == Phase.REVIEW:
        render_review(orchestrator)
    else:
        render_question(orchestrator)


if page == "Dashboard":
    leave_open_modules(st.session_state)
    render_dashboard()
else:
    render_test()
