"""
Hashing and ABI encoding primitives.
"""

from .hashing import keccak256, keccak256_text, to_bytes, to_hex
from .abi import (
    compute_function_selector,
    encode_function_call,
    decode_result,
    normalize_address,
)

__all__ = [
    "keccak256",
    "keccak256_text",
    "to_bytes",
    "to_hex",
    "compute_function_selector",
    "encode_function_call",
    "decode_result",
    "normalize_address",
]
