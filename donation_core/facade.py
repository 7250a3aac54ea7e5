"""
One call from the UI layer to a validated set of recommendations.

    service = RecommendationService(marketplace, get_settings())
    result = service.get_recommendations(session, request)
"""

import logging
import threading
from typing import Optional

from donation_core.config import OrchestratorSettings
from donation_core.errors import (
    OrchestrationError, RecommendationError, SubmissionError, TaskFailedError,
)
from donation_core.fetcher import ResultFetcher
from donation_core.poller import TaskPoller
from donation_core.runtime import (
    BaseMarketplace, RecommendationResult, TaskHandle, TaskRequest, WalletSession,
)
from donation_core.submitter import TaskSubmitter


logger = logging.getLogger(__name__)

NRLC_PER_RLC = 1e9


class RecommendationService:
    """Composes submit, await and fetch into a single request/response call."""

    def __init__(
        self,
        marketplace: BaseMarketplace,
        settings: OrchestratorSettings,
        clock=None,
    ):
        self.marketplace = marketplace
        self.settings = settings
        self.submitter = TaskSubmitter(marketplace, settings)
        self.poller = TaskPoller(
            marketplace,
            poll_interval=settings.poll_interval_s,
            deadline=settings.max_wait_s,
            clock=clock,
        )
        self.fetcher = ResultFetcher(marketplace)

    def _run(
        self,
        session: Optional[WalletSession],
        request: TaskRequest,
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> Optional[RecommendationResult]:
        if session is None:
            raise SubmissionError("Please connect your wallet first")

        handle: TaskHandle = self.submitter.submit(session, request)
        logger.info("Task submitted: %s", handle.task_id)

        status = self.poller.await_completion(handle, deadline=deadline, cancel=cancel)
        if status is None:
            return None

        result = self.fetcher.fetch(handle.task_id, known_ids=set(request.item_ids()))
        if result.error:
            raise TaskFailedError(handle.task_id, result.message or "Failed to generate recommendations")
        logger.info("Task %s completed with %d recommendations", handle.task_id, len(result.recommendations))
        return result

    def get_recommendations(
        self,
        session: Optional[WalletSession],
        request: TaskRequest,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[RecommendationResult]:
        """
        Submit one task for ``request`` and wait for its recommendations.

        Returns None when ``cancel`` is set before the task completes.

        Raises:
            RecommendationError: any failure along the way; ``cause`` holds
                the component error and ``retryable`` tells whether the UI
                should offer a manual retry.
        """
        try:
            return self._run(session, request, deadline, cancel)
        except OrchestrationError as e:
            logger.error("Failed to get AI recommendations: %s", e)
            raise RecommendationError(str(e), cause=e) from e

    def estimate_task_cost(self) -> str:
        """Price of the cheapest app order in RLC, or "Unknown"."""
        try:
            orders = self.marketplace.fetch_app_orderbook(self.settings.app_address)
        except OrchestrationError as e:
            logger.warning("Failed to estimate cost: %s", e)
            return "Unknown"

        if not orders:
            return "Unknown"
        return f"{orders[0].appprice / NRLC_PER_RLC:.4f}"
