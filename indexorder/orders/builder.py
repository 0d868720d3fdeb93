"""
Conditional order builder

Validates a prepare request, encodes the index predicate into the order
extension and derives the EIP-712 hash and signing payload. The builder
never signs: the maker signs the typed data in their own wallet.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..constants import DEFAULT_EXPIRATION_HOURS, MAX_EXPIRATION_HOURS, ZERO_ADDRESS
from ..crypto.abi import normalize_address
from ..crypto.hashing import to_hex
from ..exceptions import IndexOrderException, UnknownIndex, ValidationError
from ..oracle.registry import OracleSource
from .order import MakerTraits, Order, build_extension, compute_salt
from .predicate import Condition, encode_predicate
from .tokens import TokenInfo, TokenRegistry, format_units, parse_units

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("fromToken", "toToken", "amount", "expectedAmount", "condition", "makerAddress")


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

def _parse_expiration_hours(value: Any, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValidationError("expirationHours must be a number", details={"field": "expirationHours"})
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError("expirationHours must be a number", details={"field": "expirationHours"}) from None
    if not 0 < hours <= MAX_EXPIRATION_HOURS:
        raise ValidationError(
            f"expirationHours must be between 0 and {MAX_EXPIRATION_HOURS}",
            details={"field": "expirationHours"},
        )
    return hours


@dataclass(frozen=True)
class OrderRequest:
    from_token: str
    to_token: str
    amount: str
    expected_amount: str
    condition: Condition
    maker: str
    expiration_hours: float = DEFAULT_EXPIRATION_HOURS
    receiver: str = ZERO_ADDRESS

    @classmethod
    def from_dict(cls, body: Any, default_expiration_hours: float = DEFAULT_EXPIRATION_HOURS) -> "OrderRequest":
        """
        Raises:
            ValidationError: missing or malformed fields
        """
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        missing = [name for name in REQUIRED_FIELDS if body.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                "Missing required fields",
                details={"missing": missing, "required": list(REQUIRED_FIELDS)},
            )
        return cls(
            from_token=str(body["fromToken"]),
            to_token=str(body["toToken"]),
            amount=str(body["amount"]),
            expected_amount=str(body["expectedAmount"]),
            condition=Condition.from_dict(body["condition"]),
            maker=normalize_address(body["makerAddress"], "makerAddress"),
            expiration_hours=_parse_expiration_hours(body.get("expirationHours"), default_expiration_hours),
            receiver=normalize_address(body["receiver"], "receiver") if body.get("receiver") else ZERO_ADDRESS,
        )


def validate_order_request(body: Any, tokens: Optional[TokenRegistry] = None) -> List[str]:
    """Shape check of a prepare request. Collects every problem; no I/O."""
    if not isinstance(body, dict):
        return ["request body must be a JSON object"]

    tokens = tokens or TokenRegistry()
    errors = [f"{name} is required" for name in REQUIRED_FIELDS if body.get(name) in (None, "")]

    checks: List[Callable[[], Any]] = []
    if body.get("condition") not in (None, ""):
        checks.append(lambda: Condition.from_dict(body["condition"]))
    if body.get("makerAddress"):
        checks.append(lambda: normalize_address(body["makerAddress"], "makerAddress"))
    if body.get("expirationHours") is not None:
        checks.append(lambda: _parse_expiration_hours(body["expirationHours"], DEFAULT_EXPIRATION_HOURS))
    for token_field, amount_field in (("fromToken", "amount"), ("toToken", "expectedAmount")):
        if body.get(token_field):
            def check(token_field=token_field, amount_field=amount_field):
                token = tokens.resolve(body[token_field])
                if body.get(amount_field) not in (None, ""):
                    parse_units(body[amount_field], token.decimals, amount_field)
            checks.append(check)

    for check in checks:
        try:
            check()
        except IndexOrderException as exc:
            errors.append(exc.message)
    return errors


# ---------------------------------------------------------------------------
# Prepared order
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PreparedOrder:
    order: Order
    order_hash: str
    condition: Condition
    predicate: bytes
    maker_token: TokenInfo
    taker_token: TokenInfo
    chain_id: int
    protocol_address: str

    @property
    def expiration(self) -> int:
        return self.order.expiration

    def typed_data(self) -> Dict[str, Any]:
        return self.order.typed_data(self.chain_id, self.protocol_address)

    def summary(self) -> Dict[str, Any]:
        return {
            "fromToken": self.maker_token.symbol,
            "toToken": self.taker_token.symbol,
            "amount": format_units(self.order.making_amount, self.maker_token.decimals),
            "expectedAmount": format_units(self.order.taking_amount, self.taker_token.decimals),
            "maker": self.order.maker,
            "condition": self.condition.describe(),
            "expiration": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.expiration)),
        }


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class OrderBuilder:
    """Builds conditional orders against one oracle and one protocol deployment."""

    def __init__(
        self,
        oracle: OracleSource,
        chain_id: int,
        protocol_address: str,
        tokens: Optional[TokenRegistry] = None,
        *,
        allow_partial_fills: bool = True,
        allow_multiple_fills: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.oracle = oracle
        self.chain_id = chain_id
        self.protocol_address = normalize_address(protocol_address, "protocol_address")
        self.tokens = tokens or TokenRegistry()
        self.allow_partial_fills = allow_partial_fills
        self.allow_multiple_fills = allow_multiple_fills
        self._clock = clock

    def build(
        self,
        request: OrderRequest,
        *,
        nonce: int,
        salt_random: int,
        now: Optional[int] = None,
    ) -> PreparedOrder:
        """
        Deterministic order construction from a validated request.

        Raises:
            UnknownAsset, InvalidAmount, PredicateEncodingError
        """
        maker_token = self.tokens.resolve(request.from_token)
        taker_token = self.tokens.resolve(request.to_token)
        if maker_token.address == taker_token.address:
            raise ValidationError("fromToken and toToken must differ", details={"field": "toToken"})

        making_amount = parse_units(request.amount, maker_token.decimals, "amount")
        taking_amount = parse_units(request.expected_amount, taker_token.decimals, "expectedAmount")

        predicate = encode_predicate(request.condition, self.protocol_address, self.oracle.address)
        extension = build_extension(predicate)

        issued_at = int(self._clock()) if now is None else now
        traits = MakerTraits(
            expiration=issued_at + int(request.expiration_hours * 3600),
            nonce=nonce,
            allow_partial_fills=self.allow_partial_fills,
            allow_multiple_fills=self.allow_multiple_fills,
            has_extension=True,
        )
        order = Order(
            salt=compute_salt(extension, salt_random),
            maker=request.maker,
            receiver=request.receiver,
            maker_asset=maker_token.address,
            taker_asset=taker_token.address,
            making_amount=making_amount,
            taking_amount=taking_amount,
            maker_traits=traits.encode(),
            extension=extension,
        )
        return PreparedOrder(
            order=order,
            order_hash=order.hash(self.chain_id, self.protocol_address),
            condition=request.condition,
            predicate=predicate,
            maker_token=maker_token,
            taker_token=taker_token,
            chain_id=self.chain_id,
            protocol_address=self.protocol_address,
        )

    async def prepare(self, request: OrderRequest) -> PreparedOrder:
        """
        Build an unsigned order with a fresh nonce and salt.

        Raises:
            UnknownIndex: the condition references an unassigned or inactive index
            OracleUnavailable: the oracle could not be reached
        """
        index_id = request.condition.index_id
        if not await self.oracle.is_valid_index(index_id):
            raise UnknownIndex(index_id)

        prepared = self.build(
            request,
            nonce=MakerTraits.random_nonce(),
            salt_random=secrets.randbits(96),
        )
        logger.info(
            f"Prepared order {prepared.order_hash} for {request.maker}: "
            f"{prepared.condition.describe()} (predicate {to_hex(prepared.predicate)[:42]}...)"
        )
        return prepared
