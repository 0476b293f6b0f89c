"""Exception hierarchy for the task-execution core."""

from __future__ import annotations

from onboarding_core.engine.models import ErrorClass


class EngineError(RuntimeError):
    """Base class for task-execution core errors."""


class EventLogError(EngineError):
    """Durable append or read against the event log failed."""


class TaskNotFoundError(EngineError):
    """Coarse task record does not exist."""


class DecisionFormatError(EngineError, ValueError):
    """Decision-maker payload does not match any known decision shape."""


class RecoveryError(EngineError):
    """Task context could not be reconstructed for resumption."""


class ToolError(EngineError):
    """Tool invocation failed; optionally carries an explicit error class."""

    def __init__(self, message: str, *, error_class: ErrorClass | None = None) -> None:
        super().__init__(message)
        self.error_class = error_class


class DecisionBackendError(EngineError):
    """External decision backend could not produce a decision; carries a retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient
