"""
Pending Order Store Test Suite

Covers:
- Exactly-once take, sequential and concurrent
- TTL expiry and order-expiration capping
- Sweeping expired entries
- SQLite persistence across reopen

Run with:
    pytest tests/test_store.py -v
"""

import asyncio

import pytest

from indexorder.exceptions import OrderNotFound
from indexorder.orders.order import MakerTraits, Order, build_extension, compute_salt
from indexorder.orders.predicate import Condition, Operator, encode_predicate
from indexorder.orders.store import InMemoryPendingOrderStore, SQLitePendingOrderStore

PROTOCOL = "0x111111125421cA6dc452d289314280a0f8842A65"
ORACLE = "0x55aafa1d3de3d05536c96ee9f1b965d6ce04a4c1"
NOW = 1_700_000_000


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def make_order(expiration=NOW + 86_400):
    condition = Condition(5, Operator.GT, 25_000)
    extension = build_extension(encode_predicate(condition, PROTOCOL, ORACLE))
    order = Order(
        salt=compute_salt(extension, 1),
        maker="0x1111111111111111111111111111111111111111",
        maker_asset="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        taker_asset="0x4200000000000000000000000000000000000006",
        making_amount=1_000_000,
        taking_amount=300_000_000_000_000,
        maker_traits=MakerTraits(expiration=expiration, has_extension=True).encode(),
        extension=extension,
    )
    return order, order.hash(8453, PROTOCOL), condition


# ============================================================================
# In-memory store
# ============================================================================


@pytest.mark.asyncio
class TestInMemoryStore:
    """Single-use semantics of the in-memory store."""

    async def test_take_once(self):
        store = InMemoryPendingOrderStore(clock=FakeClock())
        order, order_hash, condition = make_order()
        order_id = await store.put(order, order_hash, condition)

        entry = await store.take(order_id)
        assert entry.order == order
        assert entry.order_hash == order_hash
        assert entry.condition == condition

        with pytest.raises(OrderNotFound) as exc_info:
            await store.take(order_id)
        assert order_id in exc_info.value.message

    async def test_ids_are_opaque_and_unique(self):
        store = InMemoryPendingOrderStore(clock=FakeClock())
        order, order_hash, condition = make_order()
        ids = {await store.put(order, order_hash, condition) for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 32 for i in ids)

    async def test_concurrent_take(self):
        store = InMemoryPendingOrderStore(clock=FakeClock())
        order_id = await store.put(*make_order())

        results = await asyncio.gather(
            *(store.take(order_id) for _ in range(10)),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, OrderNotFound)]
        assert len(successes) == 1
        assert len(failures) == 9

    async def test_unknown_id(self):
        store = InMemoryPendingOrderStore(clock=FakeClock())
        with pytest.raises(OrderNotFound):
            await store.take("0" * 32)

    async def test_ttl_expiry(self):
        clock = FakeClock()
        store = InMemoryPendingOrderStore(ttl=60, clock=clock)
        order_id = await store.put(*make_order())

        clock.now += 60
        with pytest.raises(OrderNotFound):
            await store.take(order_id)

    async def test_per_entry_ttl(self):
        clock = FakeClock()
        store = InMemoryPendingOrderStore(ttl=60, clock=clock)
        order_id = await store.put(*make_order(), ttl=600)

        clock.now += 120
        assert (await store.take(order_id)).expires_at == NOW + 600

    async def test_order_expiration_caps_ttl(self):
        clock = FakeClock()
        store = InMemoryPendingOrderStore(ttl=3600, clock=clock)
        order_id = await store.put(*make_order(expiration=NOW + 30))

        clock.now += 31
        with pytest.raises(OrderNotFound):
            await store.take(order_id)

    async def test_sweep(self):
        clock = FakeClock()
        store = InMemoryPendingOrderStore(ttl=60, clock=clock)
        await store.put(*make_order())
        await store.put(*make_order())
        clock.now += 30
        keep = await store.put(*make_order())

        clock.now += 45
        assert await store.sweep() == 2
        assert await store.size() == 1
        assert (await store.take(keep)).order_hash


# ============================================================================
# SQLite store
# ============================================================================


@pytest.mark.asyncio
class TestSQLiteStore:
    """Same contract, backed by aiosqlite."""

    async def test_take_once(self, tmp_path):
        store = await SQLitePendingOrderStore.create(str(tmp_path / "pending.db"), clock=FakeClock())
        try:
            order, order_hash, condition = make_order()
            order_id = await store.put(order, order_hash, condition)

            entry = await store.take(order_id)
            assert entry.order == order
            assert entry.order.hash(8453, PROTOCOL) == order_hash
            assert entry.condition == condition

            with pytest.raises(OrderNotFound):
                await store.take(order_id)
        finally:
            await store.close()

    async def test_concurrent_take(self, tmp_path):
        store = await SQLitePendingOrderStore.create(str(tmp_path / "pending.db"), clock=FakeClock())
        try:
            order_id = await store.put(*make_order())
            results = await asyncio.gather(
                *(store.take(order_id) for _ in range(5)),
                return_exceptions=True,
            )
            assert sum(1 for r in results if not isinstance(r, Exception)) == 1
            assert sum(1 for r in results if isinstance(r, OrderNotFound)) == 4
        finally:
            await store.close()

    async def test_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / "nested" / "pending.db")
        store = await SQLitePendingOrderStore.create(db_path, clock=FakeClock())
        order, order_hash, condition = make_order()
        order_id = await store.put(order, order_hash, condition)
        await store.close()

        reopened = await SQLitePendingOrderStore.create(db_path, clock=FakeClock())
        try:
            assert await reopened.size() == 1
            assert (await reopened.take(order_id)).order == order
        finally:
            await reopened.close()

    async def test_expiry_and_sweep(self, tmp_path):
        clock = FakeClock()
        store = await SQLitePendingOrderStore.create(str(tmp_path / "pending.db"), ttl=60, clock=clock)
        try:
            expired = await store.put(*make_order())
            await store.put(*make_order())
            clock.now += 61

            with pytest.raises(OrderNotFound):
                await store.take(expired)
            assert await store.sweep() == 1
            assert await store.size() == 0
        finally:
            await store.close()
