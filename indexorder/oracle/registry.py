"""
Hybrid Index Oracle Registry

Resolves an index id to its current value from one of two interchangeable
backends, chosen per index:

  - STATIC: the administered value stored on the index record
  - FEED:   the latest round of a push-based feed, located by the index's
            own feed address, else the registry-wide default feed address

A FEED index whose resolved address is the zero address has no feed
configured and reads its static value. A feed failure only degrades the
index being read.

Administrative operations are restricted to the owning principal and are
applied immediately; every read reflects the latest administered state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from eth_utils import is_address, to_checksum_address

from ..constants import FIRST_CUSTOM_INDEX_ID, UINT_256_MAX, ZERO_ADDRESS
from ..exceptions import OracleUnavailable, Unauthorized, UnknownIndex, ValidationError
from .feed import FeedOracle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class OracleType(IntEnum):
    """Backend an index reads from (uint8 on the oracle contract)."""
    STATIC = 0
    FEED = 1

    @classmethod
    def parse(cls, value) -> "OracleType":
        if isinstance(value, OracleType):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            # Older deployments call these MOCK and CHAINLINK
            name = {"MOCK": "STATIC", "CHAINLINK": "FEED"}.get(name, name)
            try:
                return cls[name]
            except KeyError:
                raise ValidationError(f"Unknown oracle type: {value!r}") from None
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f"Unknown oracle type: {value!r}") from None


@dataclass(frozen=True)
class IndexMetadata:
    name: str
    symbol: str
    unit: str
    description: str = ""


@dataclass
class IndexRecord:
    """One oracle-backed reference value."""
    id: int
    value: int
    timestamp: int
    source_url: str
    is_active: bool = True
    oracle_type: OracleType = OracleType.STATIC
    feed_address: Optional[str] = None
    name: str = ""
    symbol: str = ""
    unit: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "unit": self.unit,
            "value": self.value,
            "formatted": format_index_value(self.id, self.value),
            "timestamp": self.timestamp,
            "sourceUrl": self.source_url,
            "isActive": self.is_active,
            "oracleType": self.oracle_type.name,
            "feedAddress": self.feed_address,
        }


@dataclass(frozen=True)
class IndexValue:
    """Result of a value read."""
    value: int
    timestamp: int


# Predefined indices: id → (metadata, seed value, source url)
PREDEFINED_INDICES: Dict[int, Tuple[IndexMetadata, int, str]] = {
    0: (IndexMetadata("Inflation Rate", "INFL", "Basis Points (100 = 1%)", "US CPI year over year"),
        320, "https://www.bls.gov/cpi/"),
    1: (IndexMetadata("Elon Followers", "ELON", "Follower Count", "Follower count of @elonmusk"),
        150_000_000, "https://x.com/elonmusk"),
    2: (IndexMetadata("BTC Price", "BTC", "USD (scaled by 100)", "Bitcoin spot price"),
        4_500_000, "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd"),
    3: (IndexMetadata("VIX Index", "VIX", "Basis Points (100 = 1.00)", "CBOE Volatility Index"),
        2_000, "https://www.cboe.com/tradable_products/vix/"),
    4: (IndexMetadata("Unemployment Rate", "UNEMP", "Basis Points (100 = 1%)", "US unemployment rate"),
        370, "https://www.bls.gov/cps/"),
    5: (IndexMetadata("Tesla Stock", "TSLA", "USD (scaled by 100)", "Tesla Inc. share price"),
        25_000, "https://finance.yahoo.com/quote/TSLA"),
}


def index_metadata(index_id: int) -> IndexMetadata:
    entry = PREDEFINED_INDICES.get(index_id)
    if entry is None:
        return IndexMetadata(f"Custom Index {index_id}", f"IDX{index_id}", "Raw Value")
    return entry[0]


def format_index_value(index_id: int, value: int) -> str:
    """Human-readable rendering of a raw index value."""
    if index_id in (0, 4):
        return f"{value / 100:.2f}%"
    if index_id == 1:
        return f"{value / 1_000_000:.1f}M followers"
    if index_id in (2, 5):
        return f"${value / 100:.2f}"
    if index_id == 3:
        return f"{value / 100:.2f}"
    return str(value)


# ---------------------------------------------------------------------------
# Read interface shared by the local registry and the contract reader
# ---------------------------------------------------------------------------

@runtime_checkable
class OracleSource(Protocol):
    """Async read side of an index oracle."""

    @property
    def address(self) -> str:
        """Oracle contract address predicates must call at fill time."""
        ...

    async def get_value(self, index_id: int) -> IndexValue: ...

    async def get_index(self, index_id: int) -> IndexRecord: ...

    async def is_valid_index(self, index_id: int) -> bool: ...

    async def get_oracle_type(self, index_id: int) -> OracleType: ...

    async def get_oracle_address(self, index_id: int) -> str: ...

    async def list_indices(self) -> List[IndexRecord]: ...


# ---------------------------------------------------------------------------
# Local registry
# ---------------------------------------------------------------------------

def _normalize_feed_address(address: Optional[str]) -> Optional[str]:
    if address is None or address == "" or address.lower() == ZERO_ADDRESS:
        return None
    if not is_address(address):
        raise ValidationError(f"Invalid feed address: {address!r}")
    return to_checksum_address(address)


def _validate_value(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UINT_256_MAX:
        raise ValidationError(f"Index value must be a uint256, got {value!r}")
    return value


class OracleRegistry:
    """
    In-process hybrid oracle.

    Mirrors the on-chain oracle contract: predefined indices occupy ids
    0..5, custom indices are allocated incrementing ids from 6 and ids are
    never reused.
    """

    def __init__(
        self,
        address: str,
        owner: str,
        *,
        default_feed_address: Optional[str] = None,
        seed_predefined: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._address = to_checksum_address(address)
        self.owner = to_checksum_address(owner)
        self._clock = clock
        self._indices: Dict[int, IndexRecord] = {}
        self._feeds: Dict[str, FeedOracle] = {}
        self._default_feed_address = _normalize_feed_address(default_feed_address)
        self._next_custom_id = FIRST_CUSTOM_INDEX_ID

        if seed_predefined:
            now = int(self._clock())
            for index_id, (meta, seed, url) in PREDEFINED_INDICES.items():
                self._indices[index_id] = IndexRecord(
                    id=index_id, value=seed, timestamp=now, source_url=url,
                    name=meta.name, symbol=meta.symbol, unit=meta.unit,
                )

    @property
    def address(self) -> str:
        return self._address

    @property
    def default_feed_address(self) -> Optional[str]:
        return self._default_feed_address

    # -- Helpers ------------------------------------------------------------

    def _require_owner(self, caller: str) -> None:
        # A zero-address owner leaves the registry without an administrator
        if self.owner == ZERO_ADDRESS or not isinstance(caller, str) or caller.lower() != self.owner.lower():
            raise Unauthorized(f"{caller} is not the oracle owner")

    def _assigned(self, index_id: int) -> IndexRecord:
        record = self._indices.get(index_id)
        if record is None:
            raise UnknownIndex(index_id)
        return record

    def _active(self, index_id: int) -> IndexRecord:
        record = self._assigned(index_id)
        if not record.is_active:
            raise UnknownIndex(index_id, f"Index {index_id} is inactive")
        return record

    def _next_timestamp(self, record: IndexRecord) -> int:
        # Each update must be observable as newer than the last one
        return max(int(self._clock()), record.timestamp + 1)

    def _resolve_feed_address(self, record: IndexRecord) -> str:
        return record.feed_address or self._default_feed_address or ZERO_ADDRESS

    # -- Feed wiring --------------------------------------------------------

    def register_feed(self, feed: FeedOracle) -> None:
        """Make a feed reachable by its address."""
        self._feeds[feed.address] = feed

    # -- Reads --------------------------------------------------------------

    async def get_value(self, index_id: int) -> IndexValue:
        """
        Current (value, timestamp) of an active index.

        Raises:
            UnknownIndex: unassigned or inactive
            OracleUnavailable: FEED index whose feed is missing, empty or stale
        """
        record = self._active(index_id)
        if record.oracle_type is OracleType.FEED:
            feed_address = self._resolve_feed_address(record)
            if feed_address != ZERO_ADDRESS:
                feed = self._feeds.get(feed_address)
                if feed is None:
                    raise OracleUnavailable(
                        f"No feed reachable at {feed_address} for index {index_id}",
                        details={"indexId": index_id, "feed": feed_address},
                    )
                latest = feed.latest(index_id)
                return IndexValue(latest.value, latest.timestamp)
        return IndexValue(record.value, record.timestamp)

    async def get_index(self, index_id: int) -> IndexRecord:
        """Snapshot of an assigned index (active or not)."""
        return replace(self._assigned(index_id))

    async def is_valid_index(self, index_id: int) -> bool:
        record = self._indices.get(index_id)
        return record is not None and record.is_active

    async def get_oracle_type(self, index_id: int) -> OracleType:
        return self._assigned(index_id).oracle_type

    async def get_oracle_address(self, index_id: int) -> str:
        """Index feed address, else registry default, else the zero address."""
        return self._resolve_feed_address(self._assigned(index_id))

    async def list_indices(self, include_inactive: bool = True) -> List[IndexRecord]:
        return [
            replace(record) for _, record in sorted(self._indices.items())
            if include_inactive or record.is_active
        ]

    @property
    def next_custom_index_id(self) -> int:
        return self._next_custom_id

    # -- Administration -----------------------------------------------------

    def create_index(
        self,
        caller: str,
        initial_value: int,
        source_url: str,
        *,
        name: str = "",
        symbol: str = "",
        unit: str = "",
        oracle_type: OracleType = OracleType.STATIC,
        feed_address: Optional[str] = None,
    ) -> int:
        """Allocate a custom index and return its id."""
        self._require_owner(caller)
        _validate_value(initial_value)
        if not source_url:
            raise ValidationError("source_url is required")

        index_id = self._next_custom_id
        meta = index_metadata(index_id)
        self._indices[index_id] = IndexRecord(
            id=index_id,
            value=initial_value,
            timestamp=int(self._clock()),
            source_url=source_url,
            oracle_type=OracleType.parse(oracle_type),
            feed_address=_normalize_feed_address(feed_address),
            name=name or meta.name,
            symbol=symbol or meta.symbol,
            unit=unit or meta.unit,
        )
        self._next_custom_id += 1
        logger.info(f"Created custom index #{index_id} ({source_url}) = {initial_value}")
        return index_id

    def update_index(self, caller: str, index_id: int, value: int) -> IndexRecord:
        self._require_owner(caller)
        _validate_value(value)
        record = self._assigned(index_id)
        record.value = value
        record.timestamp = self._next_timestamp(record)
        logger.debug(f"Index #{index_id} updated to {value} at {record.timestamp}")
        return replace(record)

    def update_indices(self, caller: str, updates: Iterable[Tuple[int, int]]) -> List[IndexRecord]:
        """Batch update; nothing is applied unless every entry is valid."""
        self._require_owner(caller)
        updates = list(updates)
        for index_id, value in updates:
            _validate_value(value)
            self._assigned(index_id)
        return [self.update_index(caller, index_id, value) for index_id, value in updates]

    def set_index_active(self, caller: str, index_id: int, is_active: bool) -> None:
        self._require_owner(caller)
        self._assigned(index_id).is_active = bool(is_active)
        logger.info(f"Index #{index_id} {'activated' if is_active else 'deactivated'}")

    def set_oracle_type(self, caller: str, index_id: int, oracle_type) -> None:
        self._require_owner(caller)
        record = self._assigned(index_id)
        record.oracle_type = OracleType.parse(oracle_type)
        logger.info(f"Index #{index_id} oracle type set to {record.oracle_type.name}")

    def set_oracle_types(self, caller: str, index_ids: Sequence[int], oracle_types: Sequence) -> None:
        self._require_owner(caller)
        if len(index_ids) != len(oracle_types):
            raise ValidationError("index_ids and oracle_types must have the same length")
        parsed = [OracleType.parse(t) for t in oracle_types]
        for index_id in index_ids:
            self._assigned(index_id)
        for index_id, oracle_type in zip(index_ids, parsed):
            self._indices[index_id].oracle_type = oracle_type

    def set_oracle_address(self, caller: str, index_id: int, feed_address: Optional[str]) -> None:
        """Point an index at a feed; ``None`` or the zero address clears it."""
        self._require_owner(caller)
        self._assigned(index_id).feed_address = _normalize_feed_address(feed_address)

    def set_default_feed_address(self, caller: str, feed_address: Optional[str]) -> None:
        self._require_owner(caller)
        self._default_feed_address = _normalize_feed_address(feed_address)

    def simulate_price_movement(self, caller: str, index_id: int, change_bps: int, increase: bool) -> IndexRecord:
        """
        Move a predefined index by ``change_bps`` basis points of its value.

        A decrease larger than the value floors at zero.
        """
        self._require_owner(caller)
        if index_id not in PREDEFINED_INDICES:
            raise ValidationError(f"Price simulation is only available for predefined indices, got {index_id}")
        if change_bps < 0:
            raise ValidationError("change_bps must not be negative")
        record = self._assigned(index_id)
        delta = record.value * change_bps // 10_000
        new_value = record.value + delta if increase else max(record.value - delta, 0)
        return self.update_index(caller, index_id, new_value)
