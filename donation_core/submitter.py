import logging

from donation_core.config import OrchestratorSettings
from donation_core.errors import ConfigurationError, MarketplaceError, SubmissionError
from donation_core.runtime import (
    BaseMarketplace, ComputeOrderSpec, ResultStorage, TaskHandle, TaskRequest,
    WalletSession,
)


logger = logging.getLogger(__name__)


class TaskSubmitter:
    """Turns a TaskRequest into a matched deal and its task id."""

    def __init__(self, marketplace: BaseMarketplace, settings: OrchestratorSettings):
        self.marketplace = marketplace
        self.settings = settings

    def build_order(self, request: TaskRequest) -> ComputeOrderSpec:
        if not self.settings.app_configured():
            raise ConfigurationError("Worker app not configured. Please deploy the worker app first.")

        return ComputeOrderSpec(
            app=self.settings.app_address,
            category=self.settings.category,
            tag=list(self.settings.tag),
            workerpool=self.settings.workerpool,
            args=request.to_args(),
            result_storage=ResultStorage(
                provider=self.settings.result_storage_provider,
                proxy=self.settings.result_storage_proxy,
            ),
        )

    def submit(self, session: WalletSession, request: TaskRequest) -> TaskHandle:
        """
        Match one order for ``request`` and return the handle of its task.

        Raises:
            ConfigurationError: no worker app address is configured
            SubmissionError: matching failed or the deal has no task
        """
        order = self.build_order(request)
        logger.info(
            "Submitting task for %s (%d catalog items, %d history entries)",
            request.requester_address, len(request.catalog), len(request.donation_history),
        )

        try:
            deal_id = self.marketplace.match_orders(session, order)
            logger.info("Task submitted with deal id %s", deal_id)
            deal = self.marketplace.show_deal(deal_id)
        except MarketplaceError as e:
            raise SubmissionError(f"Failed to submit task: {e}") from e

        task_id = deal.first_task()
        if not task_id:
            raise SubmissionError(f"Failed to submit task: deal {deal_id} has no task")
        return TaskHandle(deal_id=deal_id, task_id=task_id)
