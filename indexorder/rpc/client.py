"""
Ethereum JSON-RPC client

Thin async wrapper over an EVM node's JSON-RPC endpoint, used for oracle
reads and maker cancellation transactions. Every request is bounded by the
httpx client timeout.
"""

import itertools
import json
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional

import httpx

from ..constants import CONNECTION_TIMEOUT
from ..crypto.hashing import to_hex
from ..exceptions import NetworkError, TransactionReverted
from ..logger import get_logger

logger = get_logger(__name__)


class RPCErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 error codes plus the common node extensions."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    SERVER_ERROR = -32000
    RESOURCE_NOT_FOUND = -32001
    RESOURCE_UNAVAILABLE = -32002
    TRANSACTION_REJECTED = -32003
    LIMIT_EXCEEDED = -32005

    EXECUTION_ERROR = 3


@dataclass
class RPCError(Exception):
    """JSON-RPC error returned by the node."""

    code: int
    message: str
    data: Optional[Any] = None

    def __str__(self) -> str:
        return f"RPC error {self.code}: {self.message}"

    @property
    def is_revert(self) -> bool:
        return self.code == RPCErrorCode.EXECUTION_ERROR or "revert" in self.message.lower()

    def to_dict(self) -> dict:
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result


class EthRPCClient:
    """
    Minimal eth_* client.

    Owns its httpx.AsyncClient unless one is injected (tests pass a client
    built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = CONNECTION_TIMEOUT,
    ):
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Send a JSON-RPC 2.0 request and return its ``result``.

        Raises:
            NetworkError: transport failure, timeout or malformed response
            RPCError: the node answered with an error object
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }
        start_time = time.time()
        try:
            response = await self.client.post(self.url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.RequestError as exc:
            elapsed = time.time() - start_time
            logger.warning(f"RPC {method} → {self.url} NETWORK_ERROR ({elapsed:.3f}s): {exc!r}")
            raise NetworkError(f"RPC {method} failed: {exc!r}") from exc
        except (json.JSONDecodeError, httpx.HTTPStatusError) as exc:
            elapsed = time.time() - start_time
            logger.warning(f"RPC {method} → {self.url} ERROR ({elapsed:.3f}s): {exc}")
            raise NetworkError(f"RPC {method} failed: {exc}") from exc

        logger.debug(f"RPC {method} → {self.url} ({time.time() - start_time:.3f}s)")

        if "error" in body and body["error"]:
            error = body["error"]
            raise RPCError(
                code=error.get("code", RPCErrorCode.INTERNAL_ERROR),
                message=error.get("message", "unknown error"),
                data=error.get("data"),
            )
        return body.get("result")

    # -- eth_* ---------------------------------------------------------------

    async def call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        result = await self.request("eth_call", [{"to": to, "data": to_hex(data)}, block])
        return bytes.fromhex((result or "0x")[2:])

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        try:
            result = await self.request("eth_estimateGas", [tx])
        except RPCError as exc:
            if exc.is_revert:
                raise TransactionReverted(exc.message, details=exc.to_dict()) from exc
            raise
        return int(result, 16)

    async def gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.request("eth_getTransactionCount", [address, block]), 16)

    async def chain_id(self) -> int:
        return int(await self.request("eth_chainId"), 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        if not raw_tx.startswith("0x"):
            raw_tx = "0x" + raw_tx
        try:
            return await self.request("eth_sendRawTransaction", [raw_tx])
        except RPCError as exc:
            if exc.is_revert:
                raise TransactionReverted(exc.message, details=exc.to_dict()) from exc
            raise
