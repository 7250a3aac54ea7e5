import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


NULL_ADDRESS = "0x0000000000000000000000000000000000000000"

# Marketplace tag requiring a TEE-isolated worker
TEE_TAG = ["tee", "scone"]

DEFAULT_WORKERPOOL = "prod-v8-bellecour.main.pools.iexec.eth"


def _as_text(value: Any) -> Any:
    """Accept numeric ids and amounts, the frontend sends both forms."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


class DonationEntry(BaseModel):
    """One past donation of the requester."""
    item_id: str = Field(alias="nftId")
    item_name: str = Field(alias="nftName")
    amount: str  # ETH, as text
    category: Optional[str] = None

    model_config = {"populate_by_name": True, "frozen": True}

    coerce_text = field_validator("item_id", "amount", mode="before")(_as_text)


class CatalogItem(BaseModel):
    """An NFT that can receive donations."""
    item_id: str = Field(alias="tokenId")
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    total_received: str = Field(alias="totalDonations")  # ETH, as text

    model_config = {"populate_by_name": True, "frozen": True}

    coerce_text = field_validator("item_id", "total_received", mode="before")(_as_text)


class TaskRequest(BaseModel):
    """What the caller asks the worker to reason about."""
    requester_address: str = Field(alias="userAddress", min_length=1)
    donation_history: List[DonationEntry] = Field(default_factory=list, alias="donationHistory")
    catalog: List[CatalogItem] = Field(alias="allNFTs", min_length=1)

    model_config = {"populate_by_name": True, "frozen": True}

    def to_args(self) -> str:
        """Serialize exactly as the worker's input document expects it."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.catalog]


class ResultStorage(BaseModel):
    provider: str = "ipfs"
    proxy: str = "https://result-proxy.iex.ec"

    model_config = {"frozen": True}


class ComputeOrderSpec(BaseModel):
    """A requester order, built once per submission."""
    app: str
    category: int = 0
    tag: List[str] = Field(default_factory=lambda: list(TEE_TAG))
    dataset: str = NULL_ADDRESS
    workerpool: str = DEFAULT_WORKERPOOL
    args: str
    result_storage: ResultStorage = Field(default_factory=ResultStorage)

    model_config = {"frozen": True}

    def to_match_payload(self) -> Dict[str, Any]:
        """Render the order-matching request body."""
        return {
            "app": self.app,
            "category": self.category,
            "tag": list(self.tag),
            "dataset": self.dataset,
            "workerpool": self.workerpool,
            "params": {
                "iexec_args": self.args,
                "iexec_result_storage_provider": self.result_storage.provider,
                "iexec_result_storage_proxy": self.result_storage.proxy,
            },
        }


class TaskHandle(BaseModel):
    deal_id: str
    task_id: str

    model_config = {"frozen": True}


class TaskState(str, Enum):
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @classmethod
    def from_marketplace(cls, raw: str) -> "TaskState":
        """Map a marketplace status name onto our lifecycle."""
        if isinstance(raw, TaskState):
            return raw
        name = str(raw).strip().upper()
        if name in _MARKETPLACE_STATES:
            return _MARKETPLACE_STATES[name]
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown task status: {raw!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.TIMED_OUT)


_MARKETPLACE_STATES = {
    "UNSET": TaskState.SUBMITTED,
    "ACTIVE": TaskState.RUNNING,
    "REVEALING": TaskState.RUNNING,
    "TIMEOUT": TaskState.TIMED_OUT,
}


class TaskStatus(BaseModel):
    """Answer to one task-status query."""
    task_id: str
    state: TaskState
    status_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class DealView(BaseModel):
    """A matched deal and the tasks it batches."""
    deal_id: str
    tasks: Dict[str, str] = Field(default_factory=dict)

    def first_task(self) -> Optional[str]:
        return self.tasks.get("0")


class AppOrder(BaseModel):
    """One entry of an app's order book."""
    app: str
    appprice: int = 0  # nRLC


class Recommendation(BaseModel):
    item_id: str = Field(alias="nftId")
    reason: str
    confidence: int = Field(ge=0, le=100)

    model_config = {"populate_by_name": True}


class RecommendationResult(BaseModel):
    """Output of the worker, and of the whole orchestration call."""
    recommendations: List[Recommendation] = Field(default_factory=list, max_length=3)
    error: bool = False
    message: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "RecommendationResult":
        return cls(error=True, message=message)

    def to_document(self) -> Dict[str, Any]:
        """The worker output document."""
        recommendations = [r.model_dump(by_alias=True) for r in self.recommendations]
        if self.error:
            return {"error": True, "message": self.message or "", "recommendations": []}
        return {"recommendations": recommendations}

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_document(), indent=indent)


class WalletSession(BaseModel):
    """A connected, signed wallet supplied by the caller."""
    address: str = Field(min_length=1)
    token: Optional[str] = None


class RunContext(BaseModel):
    """Context the execution environment hands to a worker app."""
    task_id: str
    input_dir: Path
    output_dir: Path
    secrets: Dict[str, str] = Field(default_factory=dict)
    stdin: Optional[Any] = None  # text stream, local testing only

    model_config = {"arbitrary_types_allowed": True}


class BaseMarketplace(ABC):
    """The confidential-compute marketplace, as consumed by the orchestrator."""

    @abstractmethod
    def match_orders(self, session: WalletSession, order: ComputeOrderSpec) -> str:
        """Pair a requester order with a worker-pool order and return the deal id."""
        pass

    @abstractmethod
    def show_deal(self, deal_id: str) -> DealView:
        """Look up a deal and its tasks."""
        pass

    @abstractmethod
    def show_task(self, task_id: str) -> TaskStatus:
        """Query the current status of a task."""
        pass

    @abstractmethod
    def fetch_results(self, task_id: str) -> bytes:
        """Download the raw result payload of a completed task."""
        pass

    def fetch_app_orderbook(self, app: str) -> List[AppOrder]:
        """
        Return the open orders for an app, cheapest first.

        Backends without an order book return an empty list.
        """
        return []

    def close(self, wait: bool = True):
        """Release the client's resources; ``wait`` lets local work finish first."""
        pass
