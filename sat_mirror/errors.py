"""Exam error taxonomy. Every failure here is recoverable by retrying the action."""


class SatMirrorError(Exception):
    """Base class for exam errors."""


class NotFound(SatMirrorError):
    """A requested question set or attempt does not exist."""


class QuestionsUnavailable(SatMirrorError):
    """No questions could be loaded for a module. The user goes back to the intro."""

    def __init__(self, test_id, module_number, message=None):
        self.test_id = test_id
        self.module_number = module_number
        super().__init__(message or f"No questions available for test {test_id}, module {module_number}")


class ValidationFailed(SatMirrorError):
    """A module submission could not be validated or persisted. Local answers are kept."""


class AttemptCreateFailed(ValidationFailed):
    """The attempt record could not be created on first submission."""
