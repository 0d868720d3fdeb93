"""
Index predicate encoding

Turns ``index <op> threshold`` into the bytes the limit order protocol
evaluates at fill time:

    protocol (20 bytes)
      ‖ selector(comparator)
      ‖ abi.encode(uint256 threshold,
                   abi.encode(address oracle,
                              abi.encode(bytes4 selector(getIndexValue(uint256)), uint256 indexId)))

The settlement contract reads the oracle itself, so the predicate carries
the oracle *address*, never a snapshotted value. Encoding is pure and
deterministic.

The protocol only offers strict ``gt``/``lt`` and exact ``eq``
comparisons: GTE collapses to GT, LTE to LT and NEQ to GT. Off-chain
evaluation (``evaluate``) keeps the exact arithmetic of all six operators.
"""

from __future__ import annotations

import operator as _op
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import is_address, to_canonical_address, to_checksum_address

from ..constants import GET_INDEX_VALUE_SIGNATURE, UINT_256_MAX
from ..crypto.abi import compute_function_selector
from ..exceptions import PredicateEncodingError, ValidationError
from ..oracle.registry import format_index_value, index_metadata


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

class Operator(str, Enum):
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    @classmethod
    def parse(cls, value: Any) -> "Operator":
        """Accept wire values, enum names or comparison symbols."""
        if isinstance(value, Operator):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _ALIASES:
                return _ALIASES[key]
        raise ValidationError(
            f"Unknown operator: {value!r}",
            details={"field": "condition.operator", "allowed": [o.value for o in cls]},
        )


_SYMBOLS: Dict[Operator, str] = {
    Operator.GT: ">",
    Operator.LT: "<",
    Operator.GTE: ">=",
    Operator.LTE: "<=",
    Operator.EQ: "=",
    Operator.NEQ: "!=",
}

_ALIASES: Dict[str, Operator] = {op.value: op for op in Operator}
_ALIASES.update({symbol: op for op, symbol in _SYMBOLS.items()})
_ALIASES["=="] = Operator.EQ

OPERATOR_INFO: Dict[Operator, Dict[str, str]] = {
    Operator.GT: {"name": "Greater Than", "example": "TSLA > $250"},
    Operator.LT: {"name": "Less Than", "example": "VIX < 15"},
    Operator.GTE: {"name": "Greater Than or Equal", "example": "BTC >= $50,000"},
    Operator.LTE: {"name": "Less Than or Equal", "example": "VIX <= 12"},
    Operator.EQ: {"name": "Equal", "example": "TSLA = $250"},
    Operator.NEQ: {"name": "Not Equal", "example": "INFL != 3.20%"},
}


class Comparator(Enum):
    """Comparison functions exposed by the limit order protocol."""
    GT = "gt(uint256,bytes)"
    LT = "lt(uint256,bytes)"
    EQ = "eq(uint256,bytes)"

    @property
    def selector(self) -> bytes:
        return compute_function_selector(self.value)


OPERATOR_COMPARATORS: Dict[Operator, Comparator] = {
    Operator.GT: Comparator.GT,
    Operator.GTE: Comparator.GT,
    Operator.LT: Comparator.LT,
    Operator.LTE: Comparator.LT,
    Operator.EQ: Comparator.EQ,
    Operator.NEQ: Comparator.GT,
}

_EVALUATORS: Dict[Operator, Callable[[int, int], bool]] = {
    Operator.GT: _op.gt,
    Operator.LT: _op.lt,
    Operator.GTE: _op.ge,
    Operator.LTE: _op.le,
    Operator.EQ: _op.eq,
    Operator.NEQ: _op.ne,
}

# Every operator must have an encoding and an evaluator
for _table in (_SYMBOLS, OPERATOR_COMPARATORS, _EVALUATORS, OPERATOR_INFO):
    _missing = set(Operator) - set(_table)
    if _missing:
        raise RuntimeError(f"Operator table incomplete, missing: {sorted(o.value for o in _missing)}")


def evaluate(operator: Operator, value: int, threshold: int) -> bool:
    """Exact arithmetic truth of ``value <operator> threshold``."""
    return _EVALUATORS[Operator.parse(operator)](value, threshold)


# ---------------------------------------------------------------------------
# Condition
# ---------------------------------------------------------------------------

def _parse_uint(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", details={"field": field_name})
    if isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
        value = int(value.strip())
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer", details={"field": field_name})
    if not 0 <= value <= UINT_256_MAX:
        raise ValidationError(f"{field_name} must be a uint256", details={"field": field_name})
    return value


@dataclass(frozen=True)
class Condition:
    """``index <operator> threshold``; threshold uses the index's own scale."""
    index_id: int
    operator: Operator
    threshold: int

    @classmethod
    def from_dict(cls, data: Any) -> "Condition":
        if not isinstance(data, dict):
            raise ValidationError("condition must be an object", details={"field": "condition"})
        missing = [k for k in ("indexId", "operator", "threshold") if data.get(k) is None]
        if missing:
            raise ValidationError(
                f"condition is missing {', '.join(missing)}",
                details={"field": "condition", "missing": missing},
            )
        return cls(
            index_id=_parse_uint(data["indexId"], "condition.indexId"),
            operator=Operator.parse(data["operator"]),
            threshold=_parse_uint(data["threshold"], "condition.threshold"),
        )

    def describe(self) -> str:
        name = index_metadata(self.index_id).name
        return f"{name} {self.operator.symbol} {format_index_value(self.index_id, self.threshold)}"

    def is_met(self, value: int) -> bool:
        return evaluate(self.operator, value, self.threshold)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indexId": self.index_id,
            "operator": self.operator.value,
            "threshold": self.threshold,
            "description": self.describe(),
        }


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

INDEX_VALUE_SELECTOR = compute_function_selector(GET_INDEX_VALUE_SIGNATURE)


def encode_predicate(condition: Condition, protocol_address: str, oracle_address: str) -> bytes:
    """
    Encode *condition* as a limit-order predicate.

    Raises:
        PredicateEncodingError: malformed address or out-of-range number
    """
    for label, address in (("protocol", protocol_address), ("oracle", oracle_address)):
        if not isinstance(address, str) or not is_address(address):
            raise PredicateEncodingError(f"Invalid {label} address: {address!r}")

    comparator = OPERATOR_COMPARATORS[condition.operator]
    try:
        oracle_call = encode(["bytes4", "uint256"], [INDEX_VALUE_SELECTOR, condition.index_id])
        static_call = encode(["address", "bytes"], [to_checksum_address(oracle_address), oracle_call])
        comparison = encode(["uint256", "bytes"], [condition.threshold, static_call])
    except (EncodingError, TypeError, OverflowError) as exc:
        raise PredicateEncodingError(f"Cannot encode condition {condition}: {exc}") from exc

    return to_canonical_address(protocol_address) + comparator.selector + comparison


class DecodedPredicate(NamedTuple):
    protocol_address: str
    comparator: Comparator
    threshold: int
    oracle_address: str
    index_id: int


_COMPARATORS_BY_SELECTOR = {c.selector: c for c in Comparator}


def decode_predicate(predicate: bytes) -> Optional[DecodedPredicate]:
    """Inverse of ``encode_predicate``; ``None`` for foreign predicates."""
    if len(predicate) < 24:
        return None
    comparator = _COMPARATORS_BY_SELECTOR.get(predicate[20:24])
    if comparator is None:
        return None
    try:
        threshold, static_call = decode(["uint256", "bytes"], predicate[24:])
        oracle, oracle_call = decode(["address", "bytes"], static_call)
        selector, index_id = decode(["bytes4", "uint256"], oracle_call)
    except DecodingError:
        return None
    if selector != INDEX_VALUE_SELECTOR:
        return None
    return DecodedPredicate(
        protocol_address=to_checksum_address(predicate[:20]),
        comparator=comparator,
        threshold=threshold,
        oracle_address=to_checksum_address(oracle),
        index_id=index_id,
    )
