"""
Limit order model (limit order protocol v4)

Order fields, the MakerTraits bitfield, the extension layout and the
EIP-712 order hash. Everything here is pure computation.

MakerTraits layout (uint256):

    bit 255        NO_PARTIAL_FILLS
    bit 254        ALLOW_MULTIPLE_FILLS
    bit 249        HAS_EXTENSION
    bits 160..199  series
    bits 120..159  nonce or epoch   (uint40)
    bits  80..119  expiration       (uint40, unix seconds, 0 = never)
    bits   0..79   low 80 bits of the allowed sender (0 = anyone)

Extension layout: a 32-byte offsets word holding the cumulative end offset
of each of the eight dynamic fields (32 bits per field, field i at bit
32*i), followed by the concatenated fields. The predicate is field 4.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from eth_abi import encode
from eth_utils import to_checksum_address

from ..constants import (
    ALLOW_MULTIPLE_FILLS_FLAG,
    ALLOWED_SENDER_MASK,
    EIP712_DOMAIN_NAME,
    EIP712_DOMAIN_VERSION,
    EXPIRATION_OFFSET,
    EXTENSION_FIELD_COUNT,
    EXTENSION_PREDICATE_INDEX,
    HAS_EXTENSION_FLAG,
    NO_PARTIAL_FILLS_FLAG,
    NONCE_OR_EPOCH_OFFSET,
    UINT_40_MAX,
    UINT_160_MAX,
    UINT_256_MAX,
    ZERO_ADDRESS,
)
from ..crypto.hashing import keccak256, keccak256_text, to_bytes, to_hex
from ..exceptions import ValidationError


# ---------------------------------------------------------------------------
# EIP-712 types
# ---------------------------------------------------------------------------

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

ORDER_FIELDS = [
    {"name": "salt", "type": "uint256"},
    {"name": "maker", "type": "address"},
    {"name": "receiver", "type": "address"},
    {"name": "makerAsset", "type": "address"},
    {"name": "takerAsset", "type": "address"},
    {"name": "makingAmount", "type": "uint256"},
    {"name": "takingAmount", "type": "uint256"},
    {"name": "makerTraits", "type": "uint256"},
]


def _type_string(name: str, fields: List[Dict[str, str]]) -> str:
    return f"{name}(" + ",".join(f"{f['type']} {f['name']}" for f in fields) + ")"


EIP712_DOMAIN_TYPEHASH = keccak256_text(_type_string("EIP712Domain", EIP712_DOMAIN_FIELDS))
ORDER_TYPEHASH = keccak256_text(_type_string("Order", ORDER_FIELDS))


def domain_separator(chain_id: int, verifying_contract: str) -> bytes:
    return keccak256(encode(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            EIP712_DOMAIN_TYPEHASH,
            keccak256_text(EIP712_DOMAIN_NAME),
            keccak256_text(EIP712_DOMAIN_VERSION),
            chain_id,
            to_checksum_address(verifying_contract),
        ],
    ))


# ---------------------------------------------------------------------------
# MakerTraits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MakerTraits:
    expiration: int = 0
    nonce: int = 0
    allow_partial_fills: bool = True
    allow_multiple_fills: bool = True
    has_extension: bool = False
    allowed_sender: int = 0

    def __post_init__(self):
        if not 0 <= self.expiration <= UINT_40_MAX:
            raise ValidationError(f"expiration does not fit in 40 bits: {self.expiration}")
        if not 0 <= self.nonce <= UINT_40_MAX:
            raise ValidationError(f"nonce does not fit in 40 bits: {self.nonce}")

    @staticmethod
    def random_nonce() -> int:
        return secrets.randbelow(UINT_40_MAX + 1)

    def encode(self) -> int:
        value = (self.allowed_sender & ALLOWED_SENDER_MASK)
        value |= self.expiration << EXPIRATION_OFFSET
        value |= self.nonce << NONCE_OR_EPOCH_OFFSET
        if not self.allow_partial_fills:
            value |= 1 << NO_PARTIAL_FILLS_FLAG
        if self.allow_multiple_fills:
            value |= 1 << ALLOW_MULTIPLE_FILLS_FLAG
        if self.has_extension:
            value |= 1 << HAS_EXTENSION_FLAG
        return value

    @classmethod
    def decode(cls, value: int) -> "MakerTraits":
        return cls(
            expiration=(value >> EXPIRATION_OFFSET) & UINT_40_MAX,
            nonce=(value >> NONCE_OR_EPOCH_OFFSET) & UINT_40_MAX,
            allow_partial_fills=not (value >> NO_PARTIAL_FILLS_FLAG) & 1,
            allow_multiple_fills=bool((value >> ALLOW_MULTIPLE_FILLS_FLAG) & 1),
            has_extension=bool((value >> HAS_EXTENSION_FLAG) & 1),
            allowed_sender=value & ALLOWED_SENDER_MASK,
        )


# ---------------------------------------------------------------------------
# Extension and salt
# ---------------------------------------------------------------------------

def build_extension(predicate: bytes) -> bytes:
    """Extension carrying *predicate* as its only field."""
    if not predicate:
        return b""
    fields = [b""] * EXTENSION_FIELD_COUNT
    fields[EXTENSION_PREDICATE_INDEX] = predicate

    offsets = 0
    end = 0
    for i, data in enumerate(fields):
        end += len(data)
        offsets |= end << (32 * i)
    return offsets.to_bytes(32, "big") + b"".join(fields)


def extension_predicate(extension: bytes) -> bytes:
    """Extract the predicate field from an encoded extension."""
    if len(extension) < 32:
        return b""
    offsets = int.from_bytes(extension[:32], "big")
    start = (offsets >> (32 * (EXTENSION_PREDICATE_INDEX - 1))) & 0xFFFFFFFF
    end = (offsets >> (32 * EXTENSION_PREDICATE_INDEX)) & 0xFFFFFFFF
    return extension[32 + start:32 + end]


def compute_salt(extension: bytes, random_bits: Optional[int] = None) -> int:
    """
    Upper 96 bits random, lower 160 bits bound to the extension hash so the
    protocol can check the extension belongs to the order.
    """
    upper = secrets.randbits(96) if random_bits is None else random_bits & ((1 << 96) - 1)
    if not extension:
        return upper
    lower = int.from_bytes(keccak256(extension), "big") & UINT_160_MAX
    return (upper << 160) | lower


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------

def _uint(value: Any, name: str) -> int:
    if isinstance(value, str):
        value = int(value, 16) if value.startswith("0x") else int(value)
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= UINT_256_MAX:
        raise ValidationError(f"{name} must be a uint256, got {value!r}")
    return value


@dataclass(frozen=True)
class Order:
    """Immutable limit order; the hash covers every field except ``extension``,
    which is bound to the order through the salt."""
    salt: int
    maker: str
    maker_asset: str
    taker_asset: str
    making_amount: int
    taking_amount: int
    maker_traits: int
    receiver: str = ZERO_ADDRESS
    extension: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        for name in ("maker", "maker_asset", "taker_asset", "receiver"):
            object.__setattr__(self, name, to_checksum_address(getattr(self, name)))
        for name in ("salt", "making_amount", "taking_amount", "maker_traits"):
            _uint(getattr(self, name), name)

    @property
    def traits(self) -> MakerTraits:
        return MakerTraits.decode(self.maker_traits)

    @property
    def expiration(self) -> int:
        return self.traits.expiration

    @property
    def predicate(self) -> bytes:
        return extension_predicate(self.extension)

    def struct_hash(self) -> bytes:
        return keccak256(encode(
            ["bytes32", "uint256", "address", "address", "address", "address", "uint256", "uint256", "uint256"],
            [
                ORDER_TYPEHASH,
                self.salt,
                self.maker,
                self.receiver,
                self.maker_asset,
                self.taker_asset,
                self.making_amount,
                self.taking_amount,
                self.maker_traits,
            ],
        ))

    def hash(self, chain_id: int, verifying_contract: str) -> str:
        """EIP-712 order hash as recomputed by the settlement protocol."""
        digest = keccak256(b"\x19\x01" + domain_separator(chain_id, verifying_contract) + self.struct_hash())
        return to_hex(digest)

    def message(self, json_safe: bool = True) -> Dict[str, Any]:
        number = str if json_safe else int
        return {
            "salt": number(self.salt),
            "maker": self.maker,
            "receiver": self.receiver,
            "makerAsset": self.maker_asset,
            "takerAsset": self.taker_asset,
            "makingAmount": number(self.making_amount),
            "takingAmount": number(self.taking_amount),
            "makerTraits": number(self.maker_traits),
        }

    def typed_data(self, chain_id: int, verifying_contract: str, json_safe: bool = True) -> Dict[str, Any]:
        """EIP-712 payload for wallet signing (``eth_signTypedData_v4``)."""
        return {
            "domain": {
                "name": EIP712_DOMAIN_NAME,
                "version": EIP712_DOMAIN_VERSION,
                "chainId": chain_id,
                "verifyingContract": to_checksum_address(verifying_contract),
            },
            "types": {
                "EIP712Domain": list(EIP712_DOMAIN_FIELDS),
                "Order": list(ORDER_FIELDS),
            },
            "primaryType": "Order",
            "message": self.message(json_safe=json_safe),
        }

    def to_orderbook_data(self) -> Dict[str, str]:
        """Order body expected by the order-book API."""
        return {
            "makerAsset": self.maker_asset,
            "takerAsset": self.taker_asset,
            "maker": self.maker,
            "receiver": self.receiver,
            "makingAmount": str(self.making_amount),
            "takingAmount": str(self.taking_amount),
            "salt": str(self.salt),
            "extension": to_hex(self.extension),
            "makerTraits": str(self.maker_traits),
        }

    @classmethod
    def from_orderbook_data(cls, data: Dict[str, Any]) -> "Order":
        try:
            return cls(
                salt=_uint(data["salt"], "salt"),
                maker=data["maker"],
                maker_asset=data["makerAsset"],
                taker_asset=data["takerAsset"],
                making_amount=_uint(data["makingAmount"], "makingAmount"),
                taking_amount=_uint(data["takingAmount"], "takingAmount"),
                maker_traits=_uint(data["makerTraits"], "makerTraits"),
                receiver=data.get("receiver") or ZERO_ADDRESS,
                extension=to_bytes(data.get("extension") or "0x"),
            )
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Malformed order data: {exc}") from exc
