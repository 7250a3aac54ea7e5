import logging
from typing import Any, Dict, List, Optional

import httpx

from donation_core.errors import MarketplaceError
from donation_core.runtime import (
    AppOrder, BaseMarketplace, ComputeOrderSpec, DealView, TaskState,
    TaskStatus, WalletSession,
)


logger = logging.getLogger(__name__)


class HttpMarketplace(BaseMarketplace):
    """
    Marketplace reached through an HTTP gateway.

    The gateway owns chain access and signing relays; we send it the order
    together with the caller's wallet session and read deals, tasks and
    results back from it.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_s,
            transport=transport,
            follow_redirects=True,
        )

    def close(self, wait: bool = True):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:400]
            raise MarketplaceError(
                f"{method} {path} failed with status {exc.response.status_code}: {detail}"
            ) from exc
        except httpx.RequestError as exc:
            raise MarketplaceError(f"{method} {path} failed: {exc}") from exc
        return response

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise MarketplaceError(f"Marketplace returned non-JSON body for {response.url}") from exc
        if not isinstance(data, dict):
            raise MarketplaceError(f"Marketplace returned unexpected body for {response.url}")
        return data

    @staticmethod
    def _session_headers(session: WalletSession) -> Dict[str, str]:
        headers = {"X-Requester-Address": session.address}
        if session.token:
            headers["Authorization"] = f"Bearer {session.token}"
        return headers

    def match_orders(self, session: WalletSession, order: ComputeOrderSpec) -> str:
        response = self._request(
            "POST",
            "/orders/match",
            json=order.to_match_payload(),
            headers=self._session_headers(session),
        )
        data = self._json(response)
        deal_id = data.get("dealid") or data.get("dealId")
        if not deal_id:
            raise MarketplaceError("Order matching response carries no deal id")
        return str(deal_id)

    def show_deal(self, deal_id: str) -> DealView:
        data = self._json(self._request("GET", f"/deals/{deal_id}"))
        try:
            tasks = data.get("tasks") or {}
            if isinstance(tasks, list):
                tasks = {str(index): task_id for index, task_id in enumerate(tasks)}
            return DealView(
                deal_id=str(data.get("dealid") or deal_id),
                tasks={str(k): str(v) for k, v in tasks.items()},
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise MarketplaceError(f"Malformed deal {deal_id}: {exc}") from exc

    def show_task(self, task_id: str) -> TaskStatus:
        data = self._json(self._request("GET", f"/tasks/{task_id}"))
        try:
            return TaskStatus(
                task_id=str(data.get("taskid") or task_id),
                state=TaskState.from_marketplace(data.get("status", "")),
                status_message=data.get("statusMessage"),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise MarketplaceError(f"Malformed status for task {task_id}: {exc}") from exc

    def fetch_results(self, task_id: str) -> bytes:
        return self._request("GET", f"/tasks/{task_id}/results").content

    def fetch_app_orderbook(self, app: str) -> List[AppOrder]:
        data = self._json(self._request("GET", "/apporders", params={"app": app}))
        orders = []
        try:
            for entry in data.get("orders") or []:
                order = entry.get("order", entry)
                orders.append(AppOrder(app=str(order.get("app", app)), appprice=int(order.get("appprice", 0))))
        except (AttributeError, TypeError, ValueError) as exc:
            raise MarketplaceError(f"Malformed order book for app {app}: {exc}") from exc
        return orders
