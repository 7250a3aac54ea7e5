"""
Error taxonomy for the recommendation worker and the orchestration layer.

Worker-side errors never leave the worker process: they are turned into an
error document. Orchestration-side errors propagate to the caller.
"""

from typing import Optional


class WorkerError(Exception):
    """Base class for failures inside the worker run."""


class InputError(WorkerError):
    """The input document is missing, unparseable or incomplete."""


class CredentialError(WorkerError):
    """The model API credential was not injected into the environment."""


class ModelError(WorkerError):
    """The model call failed or returned something we cannot use."""


class OrchestrationError(Exception):
    """Base class for failures while driving a task through the marketplace."""


class ConfigurationError(OrchestrationError):
    """The orchestrator is not configured to submit tasks."""


class MarketplaceError(OrchestrationError):
    """A marketplace call failed at the transport level."""


class SubmissionError(OrchestrationError):
    """The order could not be matched or resolved to a task."""


class TaskFailedError(OrchestrationError):
    """The marketplace reported a definitive failure for the task."""

    def __init__(self, task_id: str, message: str):
        super().__init__(message)
        self.task_id = task_id


class TaskTimeoutError(OrchestrationError, TimeoutError):
    """No terminal state was observed before the local deadline."""

    def __init__(self, task_id: str, waited: float):
        super().__init__(
            f"Task timeout: {task_id} exceeded maximum wait time ({waited:.0f}s)"
        )
        self.task_id = task_id
        self.waited = waited


class ResultFormatError(OrchestrationError):
    """The result payload could not be decoded or failed validation."""


class RecommendationError(OrchestrationError):
    """Single error surfaced to callers of the recommendation service."""

    RETRYABLE = (TaskFailedError, TaskTimeoutError, ResultFormatError)

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Whether the UI should offer a manual retry."""
        return isinstance(self.cause, self.RETRYABLE)
