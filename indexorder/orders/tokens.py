"""
Supported tokens and amount parsing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, DecimalException
from typing import Dict, List, Optional

from eth_utils import is_address, to_checksum_address

from ..constants import UINT_256_MAX
from ..exceptions import InvalidAmount, UnknownAsset


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int
    name: str = ""

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "address": self.address,
            "decimals": self.decimals,
        }


# Base mainnet (chain 8453)
BASE_TOKENS: List[TokenInfo] = [
    TokenInfo("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, "USD Coin"),
    TokenInfo("WETH", "0x4200000000000000000000000000000000000006", 18, "Wrapped Ether"),
    TokenInfo("1INCH", "0xc5fecC3a29Fb57B5024eEc8a2239d4621e111CBE", 18, "1inch"),
    TokenInfo("DAI", "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb", 18, "Dai Stablecoin"),
    TokenInfo("cbETH", "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22", 18, "Coinbase Wrapped Staked ETH"),
]


class TokenRegistry:
    """Lookup by symbol (case-insensitive) or by address."""

    def __init__(self, tokens: Optional[List[TokenInfo]] = None):
        self._by_symbol: Dict[str, TokenInfo] = {}
        self._by_address: Dict[str, TokenInfo] = {}
        for token in tokens if tokens is not None else BASE_TOKENS:
            self.add(token)

    def add(self, token: TokenInfo) -> None:
        token = TokenInfo(token.symbol, to_checksum_address(token.address), token.decimals, token.name)
        self._by_symbol[token.symbol.upper()] = token
        self._by_address[token.address.lower()] = token

    def resolve(self, value: str) -> TokenInfo:
        """
        Raises:
            UnknownAsset: not a registered symbol or address
        """
        if not isinstance(value, str) or not value.strip():
            raise UnknownAsset(value)
        key = value.strip()
        if key.startswith("0x"):
            if is_address(key) and key.lower() in self._by_address:
                return self._by_address[key.lower()]
            raise UnknownAsset(value)
        token = self._by_symbol.get(key.upper())
        if token is None:
            raise UnknownAsset(value)
        return token

    def all(self) -> List[TokenInfo]:
        return list(self._by_symbol.values())

    def __contains__(self, value: str) -> bool:
        try:
            self.resolve(value)
        except UnknownAsset:
            return False
        return True


def parse_units(amount, decimals: int, field_name: str = "amount") -> int:
    """
    ``"0.1"`` with 6 decimals → ``100000``.

    Raises:
        InvalidAmount: non-numeric, not positive, or finer than *decimals*
    """
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmount(f"{field_name} is required", details={"field": field_name})
    try:
        value = Decimal(str(amount).strip())
    except DecimalException:
        raise InvalidAmount(f"{field_name} is not a number: {amount!r}", details={"field": field_name}) from None
    if not value.is_finite():
        raise InvalidAmount(f"{field_name} is not a finite number: {amount!r}", details={"field": field_name})
    if value <= 0:
        raise InvalidAmount(f"{field_name} must be positive: {amount!r}", details={"field": field_name})

    try:
        scaled = value.scaleb(decimals)
        fractional = scaled != scaled.to_integral_value()
    except DecimalException:
        raise InvalidAmount(f"{field_name} is out of range: {amount!r}", details={"field": field_name}) from None
    if fractional:
        raise InvalidAmount(
            f"{field_name} has more than {decimals} decimal places: {amount!r}",
            details={"field": field_name},
        )
    if scaled > UINT_256_MAX:
        raise InvalidAmount(f"{field_name} does not fit in uint256: {amount!r}", details={"field": field_name})
    return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Inverse of ``parse_units``, without trailing zeros."""
    text = format(Decimal(value).scaleb(-decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
