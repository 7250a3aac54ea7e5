"""
Task lifecycle tracking.

The poller owns a task's state between submission and result retrieval. It
queries the marketplace at a fixed interval until the task completes, fails,
or the local deadline passes, and it can be cancelled between queries.
"""

import logging
import threading
import time
from typing import Optional

from donation_core.errors import MarketplaceError, TaskFailedError, TaskTimeoutError
from donation_core.runtime import BaseMarketplace, TaskHandle, TaskState, TaskStatus


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0  # seconds
DEFAULT_DEADLINE = 300.0  # seconds


class SystemClock:
    """Wall-clock time and interruptible waits."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        """Sleep for ``seconds``; return True if woken early by ``cancel``."""
        if cancel is not None:
            return cancel.wait(seconds)
        time.sleep(seconds)
        return False


class TaskPoller:
    """Polls a task until it reaches a terminal state."""

    def __init__(
        self,
        marketplace: BaseMarketplace,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        deadline: float = DEFAULT_DEADLINE,
        clock=None,
    ):
        self.marketplace = marketplace
        self.poll_interval = poll_interval
        self.deadline = deadline
        self.clock = clock or SystemClock()

    def await_completion(
        self,
        handle: TaskHandle,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[TaskStatus]:
        """
        Wait for the task behind ``handle`` to complete.

        Args:
            handle: Task to watch
            deadline: Seconds to wait before giving up (defaults to the poller's)
            cancel: Event that aborts the wait when set

        Returns:
            The COMPLETED status, or None if cancelled.

        Raises:
            TaskFailedError: the marketplace reported FAILED or TIMED_OUT
            TaskTimeoutError: no terminal state before the deadline
        """
        deadline = self.deadline if deadline is None else deadline
        task_id = handle.task_id
        started = self.clock.monotonic()

        while True:
            if cancel is not None and cancel.is_set():
                logger.info("Stopped polling task %s: cancelled", task_id)
                return None

            elapsed = self.clock.monotonic() - started
            if elapsed >= deadline:
                raise TaskTimeoutError(task_id, elapsed)

            try:
                status = self.marketplace.show_task(task_id)
            except MarketplaceError as e:
                logger.warning("Error polling task %s, will retry: %s", task_id, e)
            else:
                logger.debug("Task %s status: %s", task_id, status.state.value)
                if status.state == TaskState.COMPLETED:
                    return status
                if status.is_terminal:
                    kind = "timeout" if status.state == TaskState.TIMED_OUT else "failed"
                    raise TaskFailedError(
                        task_id,
                        f"Task {kind}: {status.status_message or 'Unknown error'}",
                    )

            remaining = deadline - (self.clock.monotonic() - started)
            if remaining > 0 and self.clock.wait(min(self.poll_interval, remaining), cancel):
                logger.info("Stopped polling task %s: cancelled", task_id)
                return None
