"""Per-session page bookkeeping kept in Streamlit session state."""
import logging
from typing import Any, MutableMapping, Optional

from sat_mirror.engine import ModuleOrchestrator
from sat_mirror.routing import Route
from sat_mirror.storage import SessionStateStorage

logger = logging.getLogger(__name__)

ORCHESTRATOR_PREFIX = "orchestrator-"


def orchestrator_key(user_id: str, test_id: int, module_number: int) -> str:
    return f"{ORCHESTRATOR_PREFIX}{user_id}-{test_id}-{module_number}"


def leave_open_modules(state: MutableMapping[str, Any]) -> int:
    """
    Flush and drop every cached module orchestrator.

    Called when the student navigates away from the test. The next visit
    rebuilds the module from device storage.

    Returns:
        Number of modules left
    """
    keys = [key for key in state.keys() if str(key).startswith(ORCHESTRATOR_PREFIX)]
    for key in keys:
        orchestrator = state.pop(key)
        if isinstance(orchestrator, ModuleOrchestrator):
            orchestrator.leave()
            logger.info(f"Left test {orchestrator.test_id} module {orchestrator.module_number}")
    return len(keys)


class SubmitFeedback:
    """Submit error and pending confirmation shown on the review screen."""

    def __init__(self, state: MutableMapping[str, Any]):
        self._storage = SessionStateStorage(state, namespace="submit_feedback")

    @property
    def error(self) -> Optional[str]:
        return self._storage.get("error")

    @property
    def unanswered_to_confirm(self) -> Optional[int]:
        return self._storage.get("confirm")

    def failed(self, error: Exception) -> None:
        self._storage.set("error", str(error))
        self._storage.remove("confirm")

    def ask_confirmation(self, unanswered: int) -> None:
        self._storage.set("confirm", unanswered)

    def cancel_confirmation(self) -> None:
        self._storage.remove("confirm")

    def clear(self) -> None:
        self._storage.remove("error")
        self._storage.remove("confirm")


def finish_module(state: MutableMapping[str, Any], orchestrator: ModuleOrchestrator) -> Route:
    """Drop a submitted module from the session and clear its submit feedback."""
    state.pop(orchestrator_key(orchestrator.user_id, orchestrator.test_id, orchestrator.module_number), None)
    SubmitFeedback(state).clear()
    return orchestrator.route
