"""
Condition monitor

Polls every tracked order on a fixed interval: re-reads the index value,
evaluates the order's condition and asks the order book for the order's
current status. It only reports; filling a ready order is up to a taker
on the settlement protocol.

A failed oracle or order-book call is recorded on that order's report and
the loop moves on. Every outbound call is bounded by ``call_timeout``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..constants import MONITOR_CALL_TIMEOUT, MONITOR_INTERVAL
from ..exceptions import IndexOrderException, OrderNotFound
from ..orders.predicate import Condition
from .lifecycle import OrderLifecycle, OrderState, orderbook_state

logger = logging.getLogger(__name__)


@dataclass
class TrackedOrder:
    order_hash: str
    condition: Condition
    maker: Optional[str] = None
    expiration: Optional[int] = None
    lifecycle: Optional[OrderLifecycle] = None

    def __post_init__(self):
        if self.lifecycle is None:
            self.lifecycle = OrderLifecycle(self.order_hash)
            self.lifecycle.transition(OrderState.SUBMITTED)
            self.lifecycle.transition(OrderState.ACTIVE)


@dataclass
class MonitorReport:
    order_hash: str
    index_id: int
    operator: str
    threshold: int
    current_value: Optional[int] = None
    value_timestamp: Optional[int] = None
    condition_met: Optional[bool] = None
    state: str = OrderState.ACTIVE.value
    checked_at: float = field(default_factory=time.time)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderHash": self.order_hash,
            "indexId": self.index_id,
            "operator": self.operator,
            "threshold": self.threshold,
            "currentValue": self.current_value,
            "valueTimestamp": self.value_timestamp,
            "conditionMet": self.condition_met,
            "state": self.state,
            "checkedAt": self.checked_at,
            "errors": self.errors,
        }


class ConditionMonitor:

    def __init__(
        self,
        oracle,
        orderbook,
        interval: float = MONITOR_INTERVAL,
        call_timeout: float = MONITOR_CALL_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.oracle = oracle
        self.orderbook = orderbook
        self.interval = interval
        self.call_timeout = call_timeout
        self._clock = clock
        self._orders: Dict[str, TrackedOrder] = {}
        self._reports: Dict[str, MonitorReport] = {}
        self._task: Optional[asyncio.Task] = None

    # -- tracking ------------------------------------------------------------

    def track(self, order_hash: str, condition: Condition, maker: Optional[str] = None,
              expiration: Optional[int] = None, lifecycle: Optional[OrderLifecycle] = None) -> TrackedOrder:
        tracked = TrackedOrder(order_hash, condition, maker, expiration, lifecycle)
        self._orders[order_hash] = tracked
        logger.info(f"Monitoring order {order_hash}: {condition.describe()}")
        return tracked

    def untrack(self, order_hash: str) -> bool:
        self._reports.pop(order_hash, None)
        return self._orders.pop(order_hash, None) is not None

    def tracked(self) -> List[TrackedOrder]:
        return list(self._orders.values())

    def get(self, order_hash: str) -> Optional[TrackedOrder]:
        return self._orders.get(order_hash)

    def reports(self) -> List[MonitorReport]:
        return list(self._reports.values())

    # -- checks --------------------------------------------------------------

    async def check_order(self, order_hash: str) -> MonitorReport:
        """
        Raises:
            OrderNotFound: *order_hash* is not tracked
        """
        tracked = self._orders.get(order_hash)
        if tracked is None:
            raise OrderNotFound(f"Order is not monitored: {order_hash}", details={"orderHash": order_hash})

        if tracked.lifecycle.state.is_terminal and order_hash in self._reports:
            return self._reports[order_hash]

        condition = tracked.condition
        report = MonitorReport(
            order_hash=order_hash,
            index_id=condition.index_id,
            operator=condition.operator.value,
            threshold=condition.threshold,
            state=tracked.lifecycle.state.value,
            checked_at=self._clock(),
        )

        try:
            current = await asyncio.wait_for(self.oracle.get_value(condition.index_id), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            report.errors.append(f"oracle read timed out after {self.call_timeout}s")
        except IndexOrderException as exc:
            report.errors.append(f"{exc.code}: {exc.message}")
        else:
            report.current_value = current.value
            report.value_timestamp = current.timestamp
            report.condition_met = condition.is_met(current.value)

        try:
            record = await asyncio.wait_for(self.orderbook.get_order_by_hash(order_hash), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            report.errors.append(f"order book lookup timed out after {self.call_timeout}s")
        except IndexOrderException as exc:
            report.errors.append(f"{exc.code}: {exc.message}")
        else:
            if record is not None:
                observed = orderbook_state(record, tracked.expiration, self._clock())
            elif tracked.expiration and self._clock() >= tracked.expiration:
                observed = OrderState.EXPIRED
            else:
                observed = None
            if observed is not None and tracked.lifecycle.can_transition(observed):
                tracked.lifecycle.transition(observed)
            report.state = tracked.lifecycle.state.value

        if report.errors:
            logger.warning(f"Check of {order_hash} incomplete: {'; '.join(report.errors)}")
        elif report.condition_met:
            logger.info(
                f"Condition met for {order_hash}: {condition.describe()} "
                f"(current {report.current_value}, state {report.state})"
            )
        else:
            logger.debug(f"Condition not met for {order_hash} (current {report.current_value})")

        self._reports[order_hash] = report
        return report

    async def run_once(self) -> List[MonitorReport]:
        """One pass over every tracked order."""
        reports = []
        for order_hash in list(self._orders):
            try:
                reports.append(await self.check_order(order_hash))
            except OrderNotFound:
                # untracked while the pass was running
                continue
            except Exception as exc:
                logger.exception(f"Monitor check of {order_hash} failed: {exc}")
        return reports

    # -- loop ----------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        logger.info(f"Condition monitor started (interval {self.interval}s)")
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Condition monitor stopped")
