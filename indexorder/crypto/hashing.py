"""
Hashing helpers

- keccak256: Web3 standard hash used for selectors, salts and EIP-712 digests
"""

from typing import Union

from eth_utils import keccak


def to_bytes(data: Union[bytes, str]) -> bytes:
    """Accept raw bytes or a hex string (with or without 0x)."""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if data.startswith('0x') or data.startswith('0X'):
        data = data[2:]
    return bytes.fromhex(data)


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    return keccak(to_bytes(data))


def keccak256_text(text: str) -> bytes:
    """Keccak-256 of a UTF-8 string (type strings, function signatures)."""
    return keccak(text=text)


def to_hex(data: bytes) -> str:
    return '0x' + data.hex()
