"""
Index Order Exceptions

Custom exception classes for the conditional order pipeline. Every terminal
failure carries a stable string ``code`` so API callers can branch on it.
"""

from enum import Enum
from typing import Any, Dict, Optional


class IndexOrderException(Exception):
    """Base exception for the index order service."""
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(IndexOrderException):
    """Missing or malformed request fields."""
    code = "VALIDATION_ERROR"


class UnknownIndex(IndexOrderException):
    """Index is unassigned or inactive."""
    code = "UNKNOWN_INDEX"

    def __init__(self, index_id: Any, message: str = ""):
        super().__init__(message or f"Unknown or inactive index: {index_id}",
                         details={"indexId": index_id})
        self.index_id = index_id


class UnknownAsset(IndexOrderException):
    """Token symbol or address is not supported."""
    code = "UNKNOWN_ASSET"

    def __init__(self, asset: Any):
        super().__init__(f"Unknown token: {asset}", details={"token": asset})
        self.asset = asset


class InvalidAmount(IndexOrderException):
    """Amount is not a positive decimal representable in the token's units."""
    code = "INVALID_AMOUNT"


class OracleUnavailable(IndexOrderException):
    """Transient failure reading an index value."""
    code = "ORACLE_UNAVAILABLE"


class PredicateEncodingError(IndexOrderException):
    """Predicate could not be encoded from the given condition."""
    code = "PREDICATE_ENCODING_ERROR"


class RejectionReason(str, Enum):
    """Sub-codes for order-book submission rejections."""
    ALLOWANCE = "ALLOWANCE"
    REVERTED = "REVERTED"
    RATE_LIMITED = "RATE_LIMITED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_transient(self) -> bool:
        return self is not RejectionReason.REVERTED


class SubmissionRejected(IndexOrderException):
    """The order book refused the signed order."""

    def __init__(self, reason: RejectionReason, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or f"Order submission rejected ({reason.value})")
        self.reason = reason
        self.status_code = status_code

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"SUBMISSION_{self.reason.value}"


class OrderNotFound(IndexOrderException):
    """Pending order id or order hash does not exist."""
    code = "ORDER_NOT_FOUND"


class Unauthorized(IndexOrderException):
    """Caller is not allowed to perform this operation."""
    code = "UNAUTHORIZED"


class InvalidSignature(IndexOrderException):
    """Signature does not recover to the order maker."""
    code = "INVALID_SIGNATURE"


class InvalidTransition(IndexOrderException):
    """Order state change is not allowed from the current state."""
    code = "INVALID_TRANSITION"


class NetworkError(IndexOrderException):
    """Network communication error."""
    code = "NETWORK_ERROR"


class TransactionReverted(IndexOrderException):
    """On-chain transaction would revert."""
    code = "TRANSACTION_REVERTED"


class ConfigurationError(IndexOrderException):
    """Configuration error."""
    code = "CONFIGURATION_ERROR"
