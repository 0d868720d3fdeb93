"""
Tracked order lifecycle

    PREPARED → SUBMITTED → {ACTIVE, REJECTED}
    ACTIVE   → {FILLED, CANCELLED, EXPIRED}

FILLED, CANCELLED, EXPIRED and REJECTED are terminal.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..exceptions import InvalidTransition

logger = logging.getLogger(__name__)


class OrderState(str, Enum):
    PREPARED = "prepared"
    SUBMITTED = "submitted"
    ACTIVE = "active"
    REJECTED = "rejected"
    FILLED = "filled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


TRANSITIONS: Dict[OrderState, FrozenSet[OrderState]] = {
    OrderState.PREPARED: frozenset({OrderState.SUBMITTED}),
    OrderState.SUBMITTED: frozenset({OrderState.ACTIVE, OrderState.REJECTED}),
    OrderState.ACTIVE: frozenset({OrderState.FILLED, OrderState.CANCELLED, OrderState.EXPIRED}),
    OrderState.REJECTED: frozenset(),
    OrderState.FILLED: frozenset(),
    OrderState.CANCELLED: frozenset(),
    OrderState.EXPIRED: frozenset(),
}


@dataclass
class OrderLifecycle:
    """Current state plus the history of (state, timestamp) transitions."""
    order_hash: str
    state: OrderState = OrderState.PREPARED
    history: List[Tuple[OrderState, float]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, time.time()))

    def can_transition(self, target: OrderState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: OrderState) -> None:
        """
        Raises:
            InvalidTransition: *target* is not reachable from the current state
        """
        if target == self.state:
            return
        if not self.can_transition(target):
            raise InvalidTransition(
                f"Order {self.order_hash}: {self.state.value} → {target.value} is not allowed",
                details={"from": self.state.value, "to": target.value},
            )
        logger.info(f"Order {self.order_hash}: {self.state.value} → {target.value}")
        self.state = target
        self.history.append((target, time.time()))


# ---------------------------------------------------------------------------
# Order-book status parsing
# ---------------------------------------------------------------------------

_STATUS_NAMES: Dict[str, OrderState] = {
    "1": OrderState.ACTIVE,
    "valid": OrderState.ACTIVE,
    "active": OrderState.ACTIVE,
    "open": OrderState.ACTIVE,
    "2": OrderState.CANCELLED,
    "cancelled": OrderState.CANCELLED,
    "canceled": OrderState.CANCELLED,
    "invalid": OrderState.CANCELLED,
    "3": OrderState.FILLED,
    "filled": OrderState.FILLED,
    "executed": OrderState.FILLED,
    "completed": OrderState.FILLED,
    "expired": OrderState.EXPIRED,
}


def parse_status(value: Any) -> Optional[OrderState]:
    """Map an order-book status code or name to a state; ``None`` if unknown."""
    if value is None:
        return None
    return _STATUS_NAMES.get(str(value).strip().lower())


def orderbook_state(record: Dict[str, Any], expiration: Optional[int] = None,
                    now: Optional[float] = None) -> OrderState:
    """
    State of an order as reported by the order book.

    Explicit status wins; otherwise a zero remaining maker amount means
    filled and a past expiration means expired. Anything else is active.
    """
    state = parse_status(record.get("status"))
    if state is not None and state is not OrderState.ACTIVE:
        return state

    remaining = record.get("remainingMakerAmount")
    if remaining is not None and str(remaining) == "0":
        return OrderState.FILLED

    now = time.time() if now is None else now
    if expiration and now >= expiration:
        return OrderState.EXPIRED

    if state is None and record.get("status") is not None:
        logger.warning(f"Unknown order-book status {record.get('status')!r}, treating as active")
    return OrderState.ACTIVE
