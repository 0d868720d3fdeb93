"""
Order lifecycle tracking and the condition monitor loop.
"""

from .lifecycle import TRANSITIONS, OrderLifecycle, OrderState, orderbook_state, parse_status
from .monitor import ConditionMonitor, MonitorReport, TrackedOrder

__all__ = [
    "TRANSITIONS",
    "OrderLifecycle",
    "OrderState",
    "orderbook_state",
    "parse_status",
    "ConditionMonitor",
    "MonitorReport",
    "TrackedOrder",
]
