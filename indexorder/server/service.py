"""
Order service

Wires the oracle, builder, pending store, order book, submission client,
canceller and monitor together from a ``ServiceConfig`` and implements the
operations behind each HTTP endpoint. Methods return JSON-ready dicts and
raise ``IndexOrderException`` subclasses on failure.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

from ..config import ServiceConfig
from ..constants import (
    SERVICE_NAME,
    SERVICE_VERSION,
    VALID_ORDER_HASH_PATTERN,
    VALID_SIGNATURE_PATTERN,
    ZERO_ADDRESS,
)
from ..crypto.abi import normalize_address
from ..crypto.hashing import to_hex
from ..exceptions import (
    IndexOrderException,
    InvalidSignature,
    OracleUnavailable,
    OrderNotFound,
    ValidationError,
)
from ..logger import get_logger
from ..monitor import ConditionMonitor
from ..oracle import ContractOracleReader, FeedOracle, OracleRegistry
from ..orderbook import STATUS_CODES, OrderBookClient, OrderCanceller, format_order
from ..orderbook.records import pagination, retrieved_at, status_breakdown
from ..orders import (
    InMemoryPendingOrderStore,
    OrderBuilder,
    OrderRequest,
    RetryPolicy,
    SQLitePendingOrderStore,
    SubmissionClient,
    TokenRegistry,
    validate_order_request,
)
from ..orders.predicate import OPERATOR_COMPARATORS, OPERATOR_INFO, Operator
from ..rpc import EthRPCClient

logger = get_logger(__name__)


EXAMPLE_ORDERS = [
    {
        "name": "Tesla Bullish Breakout",
        "description": "Buy WETH when Tesla > $250",
        "order": {
            "fromToken": "USDC", "toToken": "WETH", "amount": "1.0", "expectedAmount": "0.0003",
            "condition": {"indexId": 5, "operator": "gt", "threshold": 25000},
            "expirationHours": 24,
        },
    },
    {
        "name": "Low Volatility Entry",
        "description": "Buy WETH when VIX < 15",
        "order": {
            "fromToken": "USDC", "toToken": "WETH", "amount": "1.0", "expectedAmount": "0.0003",
            "condition": {"indexId": 3, "operator": "lt", "threshold": 1500},
            "expirationHours": 12,
        },
    },
    {
        "name": "BTC Momentum",
        "description": "Buy WETH when BTC > $100,000",
        "order": {
            "fromToken": "USDC", "toToken": "WETH", "amount": "5.0", "expectedAmount": "0.0015",
            "condition": {"indexId": 2, "operator": "gt", "threshold": 10000000},
            "expirationHours": 48,
        },
    },
    {
        "name": "Inflation Hedge",
        "description": "Buy WETH when inflation > 5%",
        "order": {
            "fromToken": "USDC", "toToken": "WETH", "amount": "2.0", "expectedAmount": "0.0006",
            "condition": {"indexId": 0, "operator": "gt", "threshold": 500},
            "expirationHours": 168,
        },
    },
]


def _iso(timestamp: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp))


def _order_hash(value: Any) -> str:
    if not isinstance(value, str) or not VALID_ORDER_HASH_PATTERN.match(value):
        raise ValidationError(f"Invalid orderHash: {value!r}", details={"field": "orderHash"})
    return value.lower()


class OrderService:

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        oracle=None,
        orderbook=None,
        rpc=None,
        store=None,
        tokens: Optional[TokenRegistry] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or ServiceConfig()
        cfg = self.config

        self.rpc = rpc or EthRPCClient(cfg.chain.rpc_url, timeout=cfg.chain.rpc_timeout)
        if oracle is not None:
            self.oracle = oracle
        elif cfg.oracle.mode == "local":
            self.oracle = OracleRegistry(
                cfg.contracts.index_oracle,
                cfg.oracle.owner or ZERO_ADDRESS,
                default_feed_address=cfg.oracle.default_feed_address or None,
            )
            if cfg.oracle.default_feed_address:
                self.oracle.register_feed(
                    FeedOracle(cfg.oracle.default_feed_address, staleness=cfg.oracle.feed_staleness)
                )
        else:
            self.oracle = ContractOracleReader(self.rpc, cfg.contracts.index_oracle, timeout=cfg.chain.rpc_timeout)

        self.tokens = tokens or TokenRegistry()
        self.orderbook = orderbook or OrderBookClient(
            cfg.orderbook.api_url, cfg.chain.chain_id, cfg.orderbook.api_key, timeout=cfg.orderbook.timeout,
        )
        self.builder = OrderBuilder(
            self.oracle, cfg.chain.chain_id, cfg.contracts.limit_order_protocol, self.tokens,
        )
        self.store = store
        if self.store is None and cfg.pending.backend == "memory":
            self.store = InMemoryPendingOrderStore(ttl=cfg.pending.ttl)
        self.submission = SubmissionClient(
            self.orderbook, RetryPolicy.from_config(cfg.submission), sleep=sleep,
        )
        self.canceller = OrderCanceller(
            self.orderbook, self.rpc, cfg.chain.chain_id, cfg.contracts.limit_order_protocol,
        )
        self.monitor = ConditionMonitor(
            self.oracle, self.orderbook, interval=cfg.monitor.interval, call_timeout=cfg.monitor.call_timeout,
        )
        self._sweep_task: Optional[asyncio.Task] = None

    # -- lifecycle -----------------------------------------------------------

    async def startup(self) -> None:
        cfg = self.config
        if self.store is None:
            self.store = await SQLitePendingOrderStore.create(cfg.pending.sqlite_path, ttl=cfg.pending.ttl)
        self._sweep_task = asyncio.create_task(self._periodic_sweep())
        if cfg.monitor.enabled:
            self.monitor.start()
        logger.info(
            f"{SERVICE_NAME} ready: chain {cfg.chain.chain_id}, oracle {self.oracle.address} "
            f"({cfg.oracle.mode}), protocol {self.builder.protocol_address}, pending store {cfg.pending.backend}"
        )
        if not cfg.orderbook.api_key:
            logger.warning("ONEINCH_API_KEY is not set; order-book calls will be rejected")

    async def shutdown(self) -> None:
        await self.monitor.stop()
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        if self.store is not None:
            await self.store.close()
        await self.orderbook.close()
        await self.rpc.close()

    async def _periodic_sweep(self) -> None:
        while True:
            await asyncio.sleep(self.config.pending.sweep_interval)
            try:
                await self.store.sweep()
            except Exception as e:
                logger.error(f"Pending order sweep failed: {e}")

    # -- reference data ------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": _iso(time.time()),
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
        }

    async def _index_entry(self, record) -> Dict[str, Any]:
        entry = record.to_dict()
        try:
            current = await self.oracle.get_value(record.id)
        except OracleUnavailable as exc:
            entry.update(currentValue=None, status="unknown", error=exc.message)
        except IndexOrderException:
            entry.update(currentValue=None, status="inactive")
        else:
            entry.update(currentValue=current.value, currentTimestamp=current.timestamp, status="ok")
        return entry

    async def indices(self) -> Dict[str, Any]:
        records = await self.oracle.list_indices()
        entries = [await self._index_entry(record) for record in records]
        return {"success": True, "indices": entries, "total": len(entries)}

    async def index(self, index_id: int) -> Dict[str, Any]:
        record = await self.oracle.get_index(index_id)
        return {"success": True, "index": await self._index_entry(record)}

    def operators(self) -> Dict[str, Any]:
        operators = [
            {
                "operator": op.value,
                "symbol": op.symbol,
                "name": OPERATOR_INFO[op]["name"],
                "example": OPERATOR_INFO[op]["example"],
                "onChain": OPERATOR_COMPARATORS[op].name.lower(),
            }
            for op in Operator
        ]
        return {"success": True, "operators": operators, "total": len(operators)}

    def token_list(self) -> Dict[str, Any]:
        tokens = [token.to_dict() for token in self.tokens.all()]
        return {"success": True, "tokens": tokens, "total": len(tokens)}

    def examples(self) -> Dict[str, Any]:
        return {"success": True, "examples": EXAMPLE_ORDERS, "total": len(EXAMPLE_ORDERS)}

    # -- order flow ----------------------------------------------------------

    async def prepare(self, body: Dict[str, Any]) -> Dict[str, Any]:
        request = OrderRequest.from_dict(body, self.config.server.default_expiration_hours)
        prepared = await self.builder.prepare(request)
        order_id = await self.store.put(prepared.order, prepared.order_hash, prepared.condition)
        condition = prepared.condition.to_dict()

        return {
            "success": True,
            "orderHash": prepared.order_hash,
            "orderId": order_id,
            "order": prepared.summary(),
            "condition": condition,
            "signingData": {
                "typedData": prepared.typed_data(),
                "orderHash": prepared.order_hash,
                "orderId": order_id,
            },
            "technical": {
                "orderHash": prepared.order_hash,
                "salt": str(prepared.order.salt),
                "makerTraits": str(prepared.order.maker_traits),
                "predicate": to_hex(prepared.predicate)[:40] + "...",
                "extension": to_hex(prepared.order.extension),
            },
        }

    def _verify_signature(self, pending, signature: str) -> None:
        typed_data = pending.order.typed_data(
            self.builder.chain_id, self.builder.protocol_address, json_safe=False,
        )
        if not isinstance(signature, str) or not VALID_SIGNATURE_PATTERN.match(signature):
            raise InvalidSignature("Signature must be a 65-byte hex string")
        try:
            signer = Account.recover_message(encode_typed_data(full_message=typed_data), signature=signature)
        except Exception as exc:
            # eth_keys raises its own types for unrecoverable (r, s, v)
            raise InvalidSignature(f"Malformed signature: {exc}") from exc
        if signer.lower() != pending.order.maker.lower():
            raise InvalidSignature(
                "Signature does not match the order maker",
                details={"maker": pending.order.maker, "signer": signer},
            )

    async def submit(self, body: Dict[str, Any]) -> Dict[str, Any]:
        order_data = body.get("orderData") if isinstance(body, dict) else None
        signature = body.get("signature") if isinstance(body, dict) else None
        if not isinstance(order_data, dict) or not signature:
            raise ValidationError("Missing required fields", details={"required": ["orderData", "signature"]})
        order_id = order_data.get("orderId")
        if not order_id:
            raise ValidationError("orderData.orderId is required", details={"field": "orderData.orderId"})

        pending = await self.store.take(str(order_id))
        claimed_hash = order_data.get("orderHash")
        if claimed_hash and str(claimed_hash).lower() != pending.order_hash.lower():
            raise ValidationError(
                "orderHash does not match the prepared order",
                details={"orderId": order_id, "orderHash": claimed_hash},
            )
        self._verify_signature(pending, signature)

        result = await self.submission.submit(pending.order, pending.order_hash, signature)
        if result.submitted:
            self.monitor.track(
                pending.order_hash, pending.condition, maker=pending.order.maker,
                expiration=pending.order.expiration,
            )

        response = {
            "success": result.submitted,
            "orderHash": pending.order_hash,
            "submission": {
                "submitted": result.submitted,
                "result": result.result,
                "error": result.error,
                "code": result.code,
                "attempts": result.attempts,
            },
            "timestamp": _iso(time.time()),
        }
        if not result.submitted:
            # Signed artifact for out-of-band resubmission
            response["signedOrder"] = {
                "orderHash": pending.order_hash,
                "signature": signature,
                "data": pending.order.to_orderbook_data(),
            }
        return response

    def validate(self, body: Any) -> Dict[str, Any]:
        errors = validate_order_request(body, self.tokens)
        return {"success": True, "validation": {"isValid": not errors, "errors": errors}}

    # -- order book queries --------------------------------------------------

    def _format(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        now = time.time()
        return [format_order(record, self.tokens, self.builder.chain_id, now) for record in records]

    async def active_orders(self, maker: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        maker = normalize_address(maker, "makerAddress")
        records = await self.orderbook.get_orders_by_maker(maker, page, limit, STATUS_CODES["active"])
        orders = self._format(records)
        return {
            "success": True,
            "maker": maker,
            "activeOrders": orders,
            "pagination": pagination(page, limit, len(records)),
            "summary": {
                "totalActiveOrders": len(orders),
                "ordersOnThisPage": len(orders),
                "retrievedAt": retrieved_at(),
            },
        }

    async def history(self, maker: str, page: int = 1, limit: int = 50, status: str = "all") -> Dict[str, Any]:
        maker = normalize_address(maker, "makerAddress")
        status = (status or "all").lower()
        if status not in STATUS_CODES and status != "expired":
            raise ValidationError(
                f"Unknown status filter: {status}",
                details={"field": "status", "allowed": list(STATUS_CODES) + ["expired"]},
            )
        codes = STATUS_CODES.get(status, STATUS_CODES["active"])
        records = await self.orderbook.get_orders_by_maker(maker, page, limit, codes)
        orders = self._format(records)
        if status != "all":
            orders = [order for order in orders if order["status"] == status]
        return {
            "success": True,
            "maker": maker,
            "historicalOrders": orders,
            "pagination": pagination(page, limit, len(records)),
            "filters": {"status": status},
            "summary": {
                "totalHistoricalOrders": len(orders),
                "ordersOnThisPage": len(orders),
                "statusBreakdown": status_breakdown(orders),
                "retrievedAt": retrieved_at(),
            },
        }

    async def details(self, order_hash: str) -> Dict[str, Any]:
        order_hash = _order_hash(order_hash)
        record = await self.orderbook.get_order_by_hash(order_hash)
        if record is None:
            raise OrderNotFound(f"Order not found: {order_hash}", details={"orderHash": order_hash})
        order = format_order(record, self.tokens, self.builder.chain_id)
        tracked = self.monitor.get(order_hash)
        return {
            "success": True,
            "order": order,
            "maker": order["maker"],
            "makerTraits": (record.get("data") or record).get("makerTraits"),
            "monitored": tracked is not None,
        }

    # -- cancellation --------------------------------------------------------

    async def can_cancel(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(body, dict) or not body.get("orderHash") or not body.get("walletAddress"):
            raise ValidationError("orderHash and walletAddress are required")
        result = await self.canceller.can_cancel(_order_hash(body["orderHash"]), body["walletAddress"])
        return {"success": True, **result}

    async def cancel(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(body, dict) or not body.get("orderHash"):
            raise ValidationError("orderHash is required", details={"field": "orderHash"})
        if not (body.get("privateKey") or body.get("walletAddress")):
            raise ValidationError(
                "walletAddress (wallet signing) or privateKey is required",
                details={"field": "walletAddress"},
            )
        result = await self.canceller.cancel(
            _order_hash(body["orderHash"]),
            wallet=body.get("walletAddress"),
            signed_transaction=body.get("signedTransaction"),
            private_key=body.get("privateKey"),
        )
        return result
