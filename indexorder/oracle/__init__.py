"""
Index oracle: hybrid static/feed registry and the on-chain reader.
"""

from .feed import FeedOracle, FeedRound
from .registry import (
    IndexMetadata,
    IndexRecord,
    IndexValue,
    OracleRegistry,
    OracleSource,
    OracleType,
    PREDEFINED_INDICES,
    format_index_value,
    index_metadata,
)
from .contract import ContractOracleReader

__all__ = [
    "FeedOracle",
    "FeedRound",
    "IndexMetadata",
    "IndexRecord",
    "IndexValue",
    "OracleRegistry",
    "OracleSource",
    "OracleType",
    "PREDEFINED_INDICES",
    "format_index_value",
    "index_metadata",
    "ContractOracleReader",
]
