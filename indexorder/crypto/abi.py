"""
ABI helpers

Function selectors, call-data encoding and return-data decoding for the
oracle and limit-order-protocol contracts.
"""

from typing import Any, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import is_address, to_checksum_address

from .hashing import keccak256_text
from ..exceptions import ValidationError


def compute_function_selector(function_signature: str) -> bytes:
    """
    Compute Ethereum function selector (first 4 bytes of keccak256(sig)).

    Args:
        function_signature: Function signature like "getIndexValue(uint256)"

    Returns:
        4-byte function selector
    """
    return keccak256_text(function_signature)[:4]


def parse_argument_types(function_signature: str) -> list:
    """``"cancelOrder(uint256,bytes32)"`` -> ``['uint256', 'bytes32']``"""
    args_start = function_signature.index('(') + 1
    args_end = function_signature.rindex(')')
    arg_types_str = function_signature[args_start:args_end]
    if not arg_types_str:
        return []
    return [t.strip() for t in arg_types_str.split(',')]


def encode_function_call(function_signature: str, *args) -> bytes:
    """
    Encode function call data (selector + ABI-encoded arguments).

    Args:
        function_signature: Function signature
        *args: Function arguments

    Returns:
        Encoded call data
    """
    selector = compute_function_selector(function_signature)
    arg_types = parse_argument_types(function_signature)
    encoded_args = encode(arg_types, list(args)) if arg_types else b''
    return selector + encoded_args


def decode_result(types: Sequence[str], data: bytes) -> Tuple[Any, ...]:
    """Decode ABI return data."""
    return decode(list(types), data)


def normalize_address(address: str, field_name: str = "address") -> str:
    """Return the checksummed form of *address* or raise ValidationError."""
    if not isinstance(address, str) or not is_address(address):
        raise ValidationError(f"Invalid {field_name}: {address!r}", details={"field": field_name})
    return to_checksum_address(address)
