"""
Formatting of order-book records for the HTTP surface.

The order book returns either a flat order or ``{orderHash, signature,
data: {...}, ...}``; both shapes are accepted.
"""

import math
import time
from typing import Any, Dict, List, Optional

from ..crypto.hashing import to_bytes
from ..exceptions import UnknownAsset
from ..monitor.lifecycle import OrderState, orderbook_state
from ..orders.order import MakerTraits, extension_predicate
from ..orders.predicate import OPERATOR_COMPARATORS, Condition, decode_predicate
from ..orders.tokens import TokenInfo, TokenRegistry, format_units

# Order-book status filter codes
STATUS_CODES = {
    "active": [1],
    "cancelled": [2],
    "filled": [3],
    "all": [1, 2, 3],
}

# Operator reported for a decoded on-chain comparator
_OPERATOR_BY_COMPARATOR = {}
for _operator, _comparator in OPERATOR_COMPARATORS.items():
    _OPERATOR_BY_COMPARATOR.setdefault(_comparator, _operator)


def order_data(record: Dict[str, Any]) -> Dict[str, Any]:
    data = record.get("data")
    return data if isinstance(data, dict) else record


def order_hash_of(record: Dict[str, Any]) -> Optional[str]:
    return record.get("orderHash") or record.get("hash")


def order_expiration(record: Dict[str, Any]) -> Optional[int]:
    data = order_data(record)
    for key in ("expiry", "expiration"):
        if record.get(key):
            return int(record[key])
    traits = data.get("makerTraits")
    if traits is None:
        return None
    try:
        expiration = MakerTraits.decode(int(str(traits), 0)).expiration
    except ValueError:
        return None
    return expiration or None


def order_condition(record: Dict[str, Any]) -> Optional[Condition]:
    """Index condition carried in the order's extension, if it is ours."""
    extension = order_data(record).get("extension")
    if not extension or extension == "0x":
        return None
    try:
        decoded = decode_predicate(extension_predicate(to_bytes(extension)))
    except ValueError:
        return None
    if decoded is None:
        return None
    return Condition(
        index_id=decoded.index_id,
        operator=_OPERATOR_BY_COMPARATOR[decoded.comparator],
        threshold=decoded.threshold,
    )


def _token(tokens: TokenRegistry, address: Optional[str]) -> Optional[TokenInfo]:
    if not address:
        return None
    try:
        return tokens.resolve(address)
    except UnknownAsset:
        return None


def _trading(data: Dict[str, Any], maker_token: Optional[TokenInfo], taker_token: Optional[TokenInfo]) -> str:
    def side(amount, token, address):
        if token is None:
            return f"{amount or '0'} {address or 'Unknown'}"
        return f"{format_units(int(amount or 0), token.decimals)} {token.symbol}"

    return (
        f"{side(data.get('makingAmount'), maker_token, data.get('makerAsset'))} → "
        f"{side(data.get('takingAmount'), taker_token, data.get('takerAsset'))}"
    )


def format_order(record: Dict[str, Any], tokens: TokenRegistry, chain_id: int,
                 now: Optional[float] = None) -> Dict[str, Any]:
    data = order_data(record)
    expiration = order_expiration(record)
    state = orderbook_state(record, expiration, now)
    maker_token = _token(tokens, data.get("makerAsset"))
    taker_token = _token(tokens, data.get("takerAsset"))

    condition = order_condition(record)
    if condition is not None:
        description = condition.describe()
    elif not data.get("makerAsset") and not data.get("takerAsset"):
        description = "External order"
    else:
        description = "No index condition"

    making = data.get("makingAmount") or "0"
    remaining = record.get("remainingMakerAmount")
    filled = record.get("filledAmount")
    if filled is None and remaining is not None:
        filled = str(max(int(making) - int(remaining), 0))

    return {
        "hash": order_hash_of(record),
        "maker": data.get("maker"),
        "makerAsset": data.get("makerAsset") or "Unknown",
        "takerAsset": data.get("takerAsset") or "Unknown",
        "makingAmount": making,
        "takingAmount": data.get("takingAmount") or "0",
        "salt": data.get("salt"),
        "extension": data.get("extension"),
        "status": state.value,
        "createdAt": record.get("createDateTime") or record.get("createdAt"),
        "expiration": expiration,
        "filled": filled or "0",
        "remaining": remaining,
        "trading": _trading(data, maker_token, taker_token),
        "condition": description,
        "tokenInfo": {
            "makerToken": maker_token.to_dict() if maker_token else None,
            "takerToken": taker_token.to_dict() if taker_token else None,
        },
        "technical": {
            "signature": record.get("signature"),
            "chainId": record.get("chainId") or chain_id,
            "statusCode": record.get("status"),
        },
    }


def pagination(page: int, limit: int, count: int) -> Dict[str, Any]:
    # The order book does not report a total, so it is what this page holds
    return {
        "page": page,
        "limit": limit,
        "total": count,
        "hasMore": count == limit,
        "totalPages": math.ceil(count / limit) if limit else 0,
    }


def status_breakdown(orders: List[Dict[str, Any]]) -> Dict[str, int]:
    breakdown = {state.value: 0 for state in (OrderState.ACTIVE, OrderState.FILLED,
                                              OrderState.CANCELLED, OrderState.EXPIRED)}
    for order in orders:
        breakdown[order["status"]] = breakdown.get(order["status"], 0) + 1
    return breakdown


def retrieved_at() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
