"""
Order Cancellation and Record Formatting Test Suite

Covers:
- cancelOrder call data
- Maker-only cancellation checks
- Unsigned, pre-signed and key-signed cancellation paths
- Order-book record formatting and condition recovery

Run with:
    pytest tests/test_cancellation.py -v
"""

import pytest
from eth_abi import decode
from eth_account import Account

from indexorder.crypto.abi import compute_function_selector
from indexorder.crypto.hashing import to_bytes
from indexorder.exceptions import NetworkError, OrderNotFound, Unauthorized, ValidationError
from indexorder.orderbook.cancellation import OrderCanceller, cancel_calldata
from indexorder.orderbook.records import (
    format_order,
    order_condition,
    order_expiration,
    pagination,
    status_breakdown,
)
from indexorder.orders.order import MakerTraits, Order, build_extension, compute_salt
from indexorder.orders.predicate import Condition, Operator, encode_predicate
from indexorder.orders.tokens import TokenRegistry
from indexorder.rpc.client import RPCError

CHAIN_ID = 8453
PROTOCOL = "0x111111125421cA6dc452d289314280a0f8842A65"
ORACLE = "0x55aafa1d3de3d05536c96ee9f1b965d6ce04a4c1"
MAKER_KEY = "0x" + "11" * 32
MAKER = Account.from_key(MAKER_KEY).address
STRANGER = "0x2222222222222222222222222222222222222222"
ORDER_HASH = "0x" + "ab" * 32
EXPIRATION = 1_800_000_000
NOW = 1_700_000_000


def order_record(condition=Condition(5, Operator.GTE, 25_000), **extra):
    extension = build_extension(encode_predicate(condition, PROTOCOL, ORACLE)) if condition else b""
    order = Order(
        salt=compute_salt(extension, 3),
        maker=MAKER,
        maker_asset="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        taker_asset="0x4200000000000000000000000000000000000006",
        making_amount=1_000_000,
        taking_amount=300_000_000_000_000,
        maker_traits=MakerTraits(expiration=EXPIRATION, nonce=9, has_extension=bool(extension)).encode(),
        extension=extension,
    )
    record = {
        "orderHash": ORDER_HASH,
        "signature": "0x" + "cd" * 65,
        "createDateTime": "2023-11-14T22:13:20Z",
        "status": 1,
        "remainingMakerAmount": "1000000",
        "data": order.to_orderbook_data(),
    }
    record.update(extra)
    return record


class MockOrderBook:
    def __init__(self, records):
        self.records = records

    async def get_order_by_hash(self, order_hash):
        return self.records.get(order_hash)


class MockRPC:
    def __init__(self):
        self.estimates = []
        self.raw = []

    async def estimate_gas(self, tx):
        self.estimates.append(tx)
        return 50_000

    async def get_transaction_count(self, address):
        return 4

    async def gas_price(self):
        return 1_000_000_000

    async def send_raw_transaction(self, raw):
        self.raw.append(raw)
        return "0x" + "ef" * 32


class FailingRPC(MockRPC):
    """Node that answers one method with a JSON-RPC error object."""

    def __init__(self, failing):
        super().__init__()
        self.failing = failing

    async def estimate_gas(self, tx):
        if self.failing == "estimate_gas":
            raise RPCError(-32000, "insufficient funds for gas")
        return await super().estimate_gas(tx)

    async def gas_price(self):
        if self.failing == "gas_price":
            raise RPCError(-32005, "rate limit exceeded")
        return await super().gas_price()

    async def send_raw_transaction(self, raw):
        if self.failing == "send_raw_transaction":
            raise RPCError(-32000, "nonce too low")
        return await super().send_raw_transaction(raw)


def make_canceller(records=None, rpc=None):
    rpc = MockRPC() if rpc is None else rpc
    orderbook = MockOrderBook({ORDER_HASH: order_record()} if records is None else records)
    return OrderCanceller(orderbook, rpc, CHAIN_ID, PROTOCOL), rpc


# ============================================================================
# Call data
# ============================================================================


class TestCancelCalldata:

    def test_layout(self):
        traits = MakerTraits(expiration=EXPIRATION, nonce=9).encode()
        data = cancel_calldata(traits, ORDER_HASH)

        assert data[:4] == compute_function_selector("cancelOrder(uint256,bytes32)")
        decoded_traits, decoded_hash = decode(["uint256", "bytes32"], data[4:])
        assert decoded_traits == traits
        assert decoded_hash == to_bytes(ORDER_HASH)


# ============================================================================
# Cancellation
# ============================================================================


@pytest.mark.asyncio
class TestOrderCanceller:
    """Maker-only cancellation through the protocol contract."""

    async def test_can_cancel_maker(self):
        canceller, _ = make_canceller()
        result = await canceller.can_cancel(ORDER_HASH, MAKER.lower())
        assert result["canCancel"] is True
        assert result["order"]["maker"] == MAKER

    async def test_can_cancel_stranger(self):
        canceller, _ = make_canceller()
        result = await canceller.can_cancel(ORDER_HASH, STRANGER)
        assert result == {
            "canCancel": False,
            "reason": "Only order maker can cancel",
            "maker": MAKER,
            "wallet": STRANGER,
        }

    async def test_can_cancel_unknown(self):
        canceller, _ = make_canceller(records={})
        result = await canceller.can_cancel(ORDER_HASH, MAKER)
        assert result == {"canCancel": False, "reason": "Order not found", "details": None}

    async def test_unsigned_transaction(self):
        canceller, rpc = make_canceller()
        result = await canceller.cancel(ORDER_HASH, wallet=MAKER)

        assert result["status"] == "unsigned"
        tx = result["transaction"]
        assert tx["from"] == MAKER
        assert tx["to"] == PROTOCOL
        assert tx["gas"] == hex(60_000)
        assert tx["chainId"] == CHAIN_ID
        assert rpc.raw == []

        traits, order_hash = decode(["uint256", "bytes32"], to_bytes(tx["data"])[4:])
        assert MakerTraits.decode(traits).nonce == 9
        assert order_hash == to_bytes(ORDER_HASH)

    async def test_presigned_transaction(self):
        canceller, rpc = make_canceller()
        result = await canceller.cancel(ORDER_HASH, wallet=MAKER, signed_transaction="0xf86b01")

        assert result["status"] == "submitted"
        assert result["transactionHash"] == "0x" + "ef" * 32
        assert rpc.raw == ["0xf86b01"]
        assert rpc.estimates == []

    async def test_private_key_signs(self):
        canceller, rpc = make_canceller()
        result = await canceller.cancel(ORDER_HASH, private_key=MAKER_KEY)

        assert result["status"] == "submitted"
        assert result["gasLimit"] == 60_000
        assert len(rpc.raw) == 1
        assert rpc.raw[0].startswith("0x")

    async def test_stranger_unauthorized(self):
        canceller, rpc = make_canceller()
        with pytest.raises(Unauthorized):
            await canceller.cancel(ORDER_HASH, wallet=STRANGER)
        assert rpc.estimates == []

    async def test_unknown_order(self):
        canceller, _ = make_canceller(records={})
        with pytest.raises(OrderNotFound):
            await canceller.cancel(ORDER_HASH, wallet=MAKER)

    async def test_wallet_required(self):
        canceller, _ = make_canceller()
        with pytest.raises(ValidationError):
            await canceller.cancel(ORDER_HASH)

    async def test_bad_private_key(self):
        canceller, _ = make_canceller()
        with pytest.raises(ValidationError):
            await canceller.cancel(ORDER_HASH, private_key="0x1234")

    @pytest.mark.parametrize("failing,kwargs", [
        ("estimate_gas", {"wallet": MAKER}),
        ("gas_price", {"private_key": MAKER_KEY}),
        ("send_raw_transaction", {"private_key": MAKER_KEY}),
        ("send_raw_transaction", {"wallet": MAKER, "signed_transaction": "0xf86b01"}),
    ])
    async def test_node_error_is_network_error(self, failing, kwargs):
        canceller, rpc = make_canceller(rpc=FailingRPC(failing))
        with pytest.raises(NetworkError) as exc_info:
            await canceller.cancel(ORDER_HASH, **kwargs)
        assert exc_info.value.code == "NETWORK_ERROR"
        assert exc_info.value.details["code"] in (-32000, -32005)
        assert rpc.raw == []


# ============================================================================
# Records
# ============================================================================


class TestRecords:
    """Order-book records rendered for the HTTP surface."""

    def test_format_active(self):
        formatted = format_order(order_record(), TokenRegistry(), CHAIN_ID, now=NOW)

        assert formatted["hash"] == ORDER_HASH
        assert formatted["status"] == "active"
        assert formatted["expiration"] == EXPIRATION
        assert formatted["trading"] == "1 USDC → 0.0003 WETH"
        assert formatted["condition"] == "Tesla Stock > $250.00"
        assert formatted["filled"] == "0"
        assert formatted["tokenInfo"]["makerToken"]["symbol"] == "USDC"
        assert formatted["technical"]["chainId"] == CHAIN_ID
        assert formatted["technical"]["statusCode"] == 1

    def test_format_partially_filled(self):
        formatted = format_order(order_record(remainingMakerAmount="400000"), TokenRegistry(), CHAIN_ID, now=NOW)
        assert formatted["filled"] == "600000"
        assert formatted["remaining"] == "400000"

    def test_format_expired(self):
        formatted = format_order(order_record(), TokenRegistry(), CHAIN_ID, now=EXPIRATION + 1)
        assert formatted["status"] == "expired"

    def test_format_without_condition(self):
        formatted = format_order(order_record(condition=None), TokenRegistry(), CHAIN_ID, now=NOW)
        assert formatted["condition"] == "No index condition"

    def test_format_external(self):
        formatted = format_order({"orderHash": ORDER_HASH, "status": 2}, TokenRegistry(), CHAIN_ID, now=NOW)
        assert formatted["condition"] == "External order"
        assert formatted["status"] == "cancelled"
        assert formatted["makerAsset"] == "Unknown"

    def test_condition_recovered_from_extension(self):
        condition = order_condition(order_record(condition=Condition(3, Operator.LTE, 1200)))
        # LTE is encoded as LT, so that is what comes back
        assert condition == Condition(3, Operator.LT, 1200)

    def test_expiration_from_traits(self):
        assert order_expiration(order_record()) == EXPIRATION
        assert order_expiration(order_record(expiry=123)) == 123

    def test_pagination(self):
        assert pagination(1, 20, 20)["hasMore"] is True
        assert pagination(2, 20, 5) == {"page": 2, "limit": 20, "total": 5, "hasMore": False, "totalPages": 1}

    def test_status_breakdown(self):
        breakdown = status_breakdown([{"status": "active"}, {"status": "filled"}, {"status": "active"}])
        assert breakdown == {"active": 2, "filled": 1, "cancelled": 0, "expired": 0}
