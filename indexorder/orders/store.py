"""
Pending order store

Bridges the prepare and submit round-trips of one logical order. ``take``
is destructive and atomic: for a given id exactly one ``take`` succeeds,
and every later ``take`` raises ``OrderNotFound``.

Entries expire at ``min(created_at + ttl, order expiration)``. Expired
entries are invisible to ``take`` and removed by ``sweep``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import aiosqlite

from ..constants import PENDING_ORDER_TTL
from ..exceptions import OrderNotFound
from .order import Order
from .predicate import Condition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingOrder:
    id: str
    order: Order
    order_hash: str
    condition: Condition
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def new_order_id() -> str:
    return secrets.token_hex(16)


class PendingOrderStore(ABC):
    """Keyed single-use storage for unsigned orders."""

    def __init__(self, ttl: float = PENDING_ORDER_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock

    def _new_entry(self, order: Order, order_hash: str, condition: Condition,
                   ttl: Optional[float] = None) -> PendingOrder:
        now = self._clock()
        expires_at = now + (self.ttl if ttl is None else ttl)
        if order.expiration:
            expires_at = min(expires_at, float(order.expiration))
        return PendingOrder(
            id=new_order_id(),
            order=order,
            order_hash=order_hash,
            condition=condition,
            created_at=now,
            expires_at=expires_at,
        )

    @abstractmethod
    async def put(self, order: Order, order_hash: str, condition: Condition,
                  ttl: Optional[float] = None) -> str:
        """Store *order* and return its opaque id."""

    @abstractmethod
    async def take(self, order_id: str) -> PendingOrder:
        """
        Remove and return the pending order.

        Raises:
            OrderNotFound: unknown, already taken, or expired
        """

    @abstractmethod
    async def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

    @abstractmethod
    async def size(self) -> int:
        ...

    async def close(self) -> None:
        pass


def _not_found(order_id: str) -> OrderNotFound:
    return OrderNotFound(
        f"Order not found in storage: {order_id}",
        details={"orderId": order_id},
    )


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryPendingOrderStore(PendingOrderStore):
    """Dict guarded by an asyncio lock."""

    def __init__(self, ttl: float = PENDING_ORDER_TTL, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self._orders: Dict[str, PendingOrder] = {}
        self._lock = asyncio.Lock()

    async def put(self, order: Order, order_hash: str, condition: Condition,
                  ttl: Optional[float] = None) -> str:
        entry = self._new_entry(order, order_hash, condition, ttl)
        async with self._lock:
            self._orders[entry.id] = entry
        logger.debug(f"Stored pending order {entry.id} ({order_hash})")
        return entry.id

    async def take(self, order_id: str) -> PendingOrder:
        async with self._lock:
            entry = self._orders.pop(order_id, None)
        if entry is None or entry.is_expired(self._clock()):
            raise _not_found(order_id)
        return entry

    async def sweep(self) -> int:
        now = self._clock()
        async with self._lock:
            expired = [k for k, entry in self._orders.items() if entry.is_expired(now)]
            for k in expired:
                del self._orders[k]
        if expired:
            logger.info(f"Evicted {len(expired)} expired pending orders")
        return len(expired)

    async def size(self) -> int:
        async with self._lock:
            return len(self._orders)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

class SQLitePendingOrderStore(PendingOrderStore):
    """Durable store; pending orders survive a restart."""

    def __init__(self, db_path: str, ttl: float = PENDING_ORDER_TTL, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @classmethod
    async def create(cls, db_path: str, ttl: float = PENDING_ORDER_TTL,
                     clock: Callable[[], float] = time.time) -> "SQLitePendingOrderStore":
        self = cls(db_path, ttl, clock)

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        self.connection.row_factory = aiosqlite.Row
        await self.connection.executescript("""
        CREATE TABLE IF NOT EXISTS pending_orders (
            order_id TEXT PRIMARY KEY,
            order_hash TEXT NOT NULL,
            order_data TEXT NOT NULL,
            condition_data TEXT NOT NULL,
            created_at REAL NOT NULL,
            expires_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_pending_orders_expires ON pending_orders(expires_at);
        """)
        await self.connection.commit()
        logger.info(f"Pending order store initialized: {db_path}")
        return self

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def put(self, order: Order, order_hash: str, condition: Condition,
                  ttl: Optional[float] = None) -> str:
        entry = self._new_entry(order, order_hash, condition, ttl)
        condition_data = {
            "indexId": condition.index_id,
            "operator": condition.operator.value,
            "threshold": str(condition.threshold),
        }
        async with self._lock:
            await self.connection.execute(
                "INSERT INTO pending_orders (order_id, order_hash, order_data, condition_data, created_at, expires_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (entry.id, order_hash, json.dumps(order.to_orderbook_data()),
                 json.dumps(condition_data), entry.created_at, entry.expires_at),
            )
            await self.connection.commit()
        return entry.id

    async def take(self, order_id: str) -> PendingOrder:
        async with self._lock:
            cursor = await self.connection.execute(
                "SELECT * FROM pending_orders WHERE order_id = ?", (order_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise _not_found(order_id)
            await self.connection.execute("DELETE FROM pending_orders WHERE order_id = ?", (order_id,))
            await self.connection.commit()

        if self._clock() >= row["expires_at"]:
            raise _not_found(order_id)
        return PendingOrder(
            id=row["order_id"],
            order=Order.from_orderbook_data(json.loads(row["order_data"])),
            order_hash=row["order_hash"],
            condition=Condition.from_dict(json.loads(row["condition_data"])),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )

    async def sweep(self) -> int:
        async with self._lock:
            cursor = await self.connection.execute(
                "DELETE FROM pending_orders WHERE expires_at <= ?", (self._clock(),)
            )
            await self.connection.commit()
        removed = cursor.rowcount or 0
        if removed:
            logger.info(f"Evicted {removed} expired pending orders")
        return removed

    async def size(self) -> int:
        async with self._lock:
            cursor = await self.connection.execute("SELECT COUNT(*) FROM pending_orders")
            row = await cursor.fetchone()
        return row[0]
