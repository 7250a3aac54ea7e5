import json
from typing import List

import pytest

import workloads  # noqa: F401  registers the bundled worker apps before any test snapshots the registry

from donation_core.config import OrchestratorSettings
from donation_core.runtime import (
    BaseMarketplace, DealView, TaskRequest, TaskState, TaskStatus, WalletSession,
)


class FakeModel:
    """Stands in for the chat client: returns a canned answer, records prompts."""

    def __init__(self, answer):
        self.answer = answer if isinstance(answer, str) else json.dumps(answer)
        self.prompts: List[str] = []

    def complete_json(self, system: str, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


class FakeClock:
    """Clock that only moves when someone waits on it."""

    def __init__(self):
        self.now = 0.0
        self.waits: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def wait(self, seconds, cancel=None) -> bool:
        self.waits.append(seconds)
        self.now += seconds
        return cancel is not None and cancel.is_set()


class ScriptedMarketplace(BaseMarketplace):
    """
    Marketplace answering status queries from a script.

    Script items are TaskStates, TaskStatuses or exceptions to raise; the
    last item repeats forever.
    """

    def __init__(self, states=(TaskState.COMPLETED,), result=b'{"recommendations": []}', on_query=None):
        self.states = list(states)
        self.result = result
        self.on_query = on_query
        self.orders = []
        self.queries = 0
        self.fetches = 0

    def match_orders(self, session, order):
        self.orders.append((session, order))
        return "0xdeal"

    def show_deal(self, deal_id):
        return DealView(deal_id=deal_id, tasks={"0": "0xtask"})

    def show_task(self, task_id):
        self.queries += 1
        if self.on_query is not None:
            self.on_query(self.queries)
        item = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, TaskStatus):
            return item
        return TaskStatus(task_id=task_id, state=item)

    def fetch_results(self, task_id):
        self.fetches += 1
        return self.result


@pytest.fixture
def request_document():
    return {
        "userAddress": "0xabc0000000000000000000000000000000000001",
        "donationHistory": [
            {"nftId": "2", "nftName": "River Cleanup", "amount": "0.05", "category": "Environment"},
        ],
        "allNFTs": [
            {
                "tokenId": "1",
                "name": "School Meals",
                "category": "Education",
                "description": "Lunches for 100 kids",
                "totalDonations": "1.2",
            },
            {"tokenId": "2", "name": "River Cleanup", "category": "Environment", "totalDonations": "0.4"},
            {"tokenId": "3", "name": "Animal Shelter", "totalDonations": "0"},
            {"tokenId": "4", "name": "Clinic", "category": "Health", "totalDonations": "2.5"},
        ],
    }


@pytest.fixture
def task_request(request_document):
    return TaskRequest.model_validate(request_document)


@pytest.fixture
def session():
    return WalletSession(address="0xabc0000000000000000000000000000000000001", token="signed")


@pytest.fixture
def settings(tmp_path):
    return OrchestratorSettings(
        app_address="donation-recommender",
        poll_interval_s=10.0,
        max_wait_s=300.0,
        base_dir=tmp_path / ".donation",
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_model():
    return FakeModel


@pytest.fixture
def scripted_marketplace():
    return ScriptedMarketplace
