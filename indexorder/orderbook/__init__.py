"""
Order-book API client, record formatting and maker cancellation.
"""

from .client import OrderBookClient, classify_rejection
from .records import STATUS_CODES, format_order, order_condition, order_data, order_expiration
from .cancellation import OrderCanceller, cancel_calldata

__all__ = [
    "OrderBookClient",
    "classify_rejection",
    "STATUS_CODES",
    "format_order",
    "order_condition",
    "order_data",
    "order_expiration",
    "OrderCanceller",
    "cancel_calldata",
]
