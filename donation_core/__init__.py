"""
Donation Core - confidential-compute orchestration for donation recommendations.

This package provides:
- Data model and marketplace contract (TaskRequest, TaskHandle, BaseMarketplace)
- Worker app registration (worker_app, AppImage)
- Task submission, lifecycle polling and result retrieval
- Marketplace backends (Local, HTTP)
"""

from donation_core.runtime import (
    BaseMarketplace,
    CatalogItem,
    ComputeOrderSpec,
    DonationEntry,
    Recommendation,
    RecommendationResult,
    RunContext,
    TaskHandle,
    TaskRequest,
    TaskState,
    TaskStatus,
    WalletSession,
)

from donation_core.decorators import (
    worker_app,
    AppImage,
    WorkerApp,
    get_app,
    list_apps,
)

from donation_core.errors import (
    ConfigurationError,
    CredentialError,
    InputError,
    MarketplaceError,
    ModelError,
    RecommendationError,
    ResultFormatError,
    SubmissionError,
    TaskFailedError,
    TaskTimeoutError,
)

from donation_core.facade import RecommendationService

__all__ = [
    # Runtime
    "BaseMarketplace",
    "CatalogItem",
    "ComputeOrderSpec",
    "DonationEntry",
    "Recommendation",
    "RecommendationResult",
    "RunContext",
    "TaskHandle",
    "TaskRequest",
    "TaskState",
    "TaskStatus",
    "WalletSession",
    # Decorators
    "worker_app",
    "AppImage",
    "WorkerApp",
    "get_app",
    "list_apps",
    # Errors
    "ConfigurationError",
    "CredentialError",
    "InputError",
    "MarketplaceError",
    "ModelError",
    "RecommendationError",
    "ResultFormatError",
    "SubmissionError",
    "TaskFailedError",
    "TaskTimeoutError",
    # Orchestration
    "RecommendationService",
]
