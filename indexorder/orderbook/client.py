"""
Order-book API client

Async client for the limit-order order book (v4 REST API). Every call is
bounded by the httpx client timeout and authenticated with a bearer key.

    POST {api_url}/{chain_id}                           submit a signed order
    GET  {api_url}/{chain_id}/order/{order_hash}        order by hash
    GET  {api_url}/{chain_id}/address/{maker}           orders by maker
"""

import json
import time
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ..constants import CONNECTION_TIMEOUT
from ..exceptions import NetworkError, RejectionReason, SubmissionRejected
from ..logger import get_logger
from ..orders.order import Order

logger = get_logger(__name__)


def classify_rejection(status_code: Optional[int], message: str) -> RejectionReason:
    """
    Map an order-book error to a rejection sub-code.

    ``allowance`` in the message wins over the status code, since the
    order book reports missing approvals as plain 400s.
    """
    text = (message or "").lower()
    if "allowance" in text or "not enough balance" in text:
        return RejectionReason.ALLOWANCE
    if status_code == 429:
        return RejectionReason.RATE_LIMITED
    if status_code in (400, 422):
        return RejectionReason.REVERTED
    return RejectionReason.UNKNOWN


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except json.JSONDecodeError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("description", "message", "error"):
            if body.get(key):
                value = body[key]
                return value if isinstance(value, str) else json.dumps(value)
    return json.dumps(body)


class OrderBookClient:

    def __init__(
        self,
        api_url: str,
        chain_id: int,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = CONNECTION_TIMEOUT,
    ):
        self.base_url = f"{api_url.rstrip('/')}/{chain_id}"
        self.chain_id = chain_id
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        start_time = time.time()
        try:
            response = await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.RequestError as exc:
            elapsed = time.time() - start_time
            logger.warning(f"OrderBook {method} {path} NETWORK_ERROR ({elapsed:.3f}s): {exc!r}")
            raise NetworkError(f"Order book request failed: {exc!r}") from exc
        elapsed = time.time() - start_time
        logger.debug(f"OrderBook {method} {path} [{response.status_code}] ({elapsed:.3f}s)")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise NetworkError(f"Malformed order book response: {exc}") from exc

    async def submit_order(self, order: Order, order_hash: str, signature: str) -> Dict[str, Any]:
        """
        Post a signed order.

        Raises:
            SubmissionRejected: the order book refused the order or was unreachable
        """
        payload = {
            "orderHash": order_hash,
            "signature": signature,
            "data": order.to_orderbook_data(),
        }
        try:
            response = await self._request("POST", "", json=payload)
        except NetworkError as exc:
            raise SubmissionRejected(RejectionReason.UNKNOWN, exc.message) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            reason = classify_rejection(response.status_code, message)
            raise SubmissionRejected(reason, message, status_code=response.status_code)

        if not response.content:
            return {"success": True}
        try:
            return response.json()
        except json.JSONDecodeError:
            return {"success": True, "raw": response.text}

    async def get_order_by_hash(self, order_hash: str) -> Optional[Dict[str, Any]]:
        """``None`` when the order book does not know the hash."""
        response = await self._request("GET", f"/order/{order_hash}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise NetworkError(
                f"Order book lookup failed [{response.status_code}]: {_error_message(response)}",
                details={"orderHash": order_hash, "status": response.status_code},
            )
        body = self._json(response)
        return body or None

    async def get_orders_by_maker(
        self,
        address: str,
        page: int = 1,
        limit: int = 100,
        statuses: Optional[Iterable[int]] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if statuses:
            params["statuses"] = ",".join(str(s) for s in statuses)
        response = await self._request("GET", f"/address/{address}", params=params)
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise NetworkError(
                f"Order book query failed [{response.status_code}]: {_error_message(response)}",
                details={"maker": address, "status": response.status_code},
            )
        body = self._json(response)
        if isinstance(body, dict):
            body = body.get("items") or body.get("orders") or []
        return list(body or [])
