"""
Conditional orders: predicate encoding, order model, building, pending
storage and submission.
"""

from .predicate import Comparator, Condition, Operator, decode_predicate, encode_predicate, evaluate
from .tokens import BASE_TOKENS, TokenInfo, TokenRegistry, format_units, parse_units
from .order import MakerTraits, Order, build_extension, compute_salt, extension_predicate
from .builder import OrderBuilder, OrderRequest, PreparedOrder, validate_order_request
from .store import InMemoryPendingOrderStore, PendingOrder, PendingOrderStore, SQLitePendingOrderStore
from .submission import RetryPolicy, SubmissionClient, SubmissionResult

__all__ = [
    "Comparator",
    "Condition",
    "Operator",
    "decode_predicate",
    "encode_predicate",
    "evaluate",
    "BASE_TOKENS",
    "TokenInfo",
    "TokenRegistry",
    "format_units",
    "parse_units",
    "MakerTraits",
    "Order",
    "build_extension",
    "compute_salt",
    "extension_predicate",
    "OrderBuilder",
    "OrderRequest",
    "PreparedOrder",
    "validate_order_request",
    "InMemoryPendingOrderStore",
    "PendingOrder",
    "PendingOrderStore",
    "SQLitePendingOrderStore",
    "RetryPolicy",
    "SubmissionClient",
    "SubmissionResult",
]
