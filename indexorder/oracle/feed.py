"""
Push-based index feed

A decentralized feed pushes rounds (value, timestamp) for the indices it
serves. Reads return the latest round, subject to:

  - Outlier rejection (> max_change_bps from the previous round)
  - Monotonic round timestamps
  - Same-timestamp rounds overwrite the previous one (dedup)
  - Staleness check: no round within ``staleness`` seconds → unavailable
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from eth_utils import to_checksum_address

from ..constants import FEED_STALENESS_THRESHOLD
from ..exceptions import OracleUnavailable

logger = logging.getLogger(__name__)

MAX_ROUNDS = 1024              # per index
MAX_CHANGE_BPS = 5000          # 50% max single-round change


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class FeedRound:
    """A single answer pushed by the feed."""
    round_id: int
    value: int
    timestamp: int


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

class FeedOracle:
    """
    Latest-answer feed for one or more indices, addressed like a contract.
    """

    def __init__(
        self,
        address: str,
        staleness: float = FEED_STALENESS_THRESHOLD,
        max_change_bps: Optional[int] = MAX_CHANGE_BPS,
        max_rounds: int = MAX_ROUNDS,
        clock: Callable[[], float] = time.time,
    ):
        self.address = to_checksum_address(address)
        self.staleness = staleness
        self.max_change_bps = max_change_bps
        self.max_rounds = max_rounds
        self._clock = clock
        self._rounds: Dict[int, List[FeedRound]] = {}

    # -- Recording ----------------------------------------------------------

    def push(self, index_id: int, value: int, timestamp: Optional[int] = None) -> FeedRound:
        """
        Record a new answer for *index_id*.

        Raises:
            ValueError: negative value, timestamp going backwards, or outlier
        """
        if value < 0:
            raise ValueError("Feed value must not be negative")

        now = int(timestamp if timestamp is not None else self._clock())
        rounds = self._rounds.setdefault(index_id, [])

        if rounds:
            prev = rounds[-1]

            if self.max_change_bps is not None and prev.value > 0:
                change_bps = abs(value - prev.value) * 10_000 // prev.value
                if change_bps > self.max_change_bps:
                    raise ValueError(
                        f"Outlier answer rejected for index {index_id}: "
                        f"{change_bps} bps change exceeds max {self.max_change_bps} bps"
                    )

            if now < prev.timestamp:
                raise ValueError("Round timestamp must be monotonically increasing")

            if now == prev.timestamp:
                prev.value = value
                return prev

            round_id = prev.round_id + 1
        else:
            round_id = 1

        feed_round = FeedRound(round_id=round_id, value=value, timestamp=now)
        rounds.append(feed_round)

        if len(rounds) > self.max_rounds:
            del rounds[:-self.max_rounds]

        logger.debug(f"Feed {self.address} index {index_id} round {round_id}: {value}")
        return feed_round

    # -- Reads --------------------------------------------------------------

    def serves(self, index_id: int) -> bool:
        return bool(self._rounds.get(index_id))

    def latest(self, index_id: int) -> FeedRound:
        """
        Latest fresh round for *index_id*.

        Raises:
            OracleUnavailable: no round yet, or the latest round is stale
        """
        rounds = self._rounds.get(index_id)
        if not rounds:
            raise OracleUnavailable(
                f"Feed {self.address} has no answer for index {index_id}",
                details={"indexId": index_id, "feed": self.address},
            )
        last = rounds[-1]
        if self.is_stale(index_id):
            raise OracleUnavailable(
                f"Feed {self.address} answer for index {index_id} is stale "
                f"({self.age(index_id):.0f}s old)",
                details={"indexId": index_id, "feed": self.address, "timestamp": last.timestamp},
            )
        return last

    def get_rounds(self, index_id: int, count: int = 50) -> List[FeedRound]:
        """Return the most recent rounds."""
        return list(self._rounds.get(index_id, [])[-count:])

    def is_stale(self, index_id: int) -> bool:
        return self.age(index_id) > self.staleness

    def age(self, index_id: int) -> float:
        """Seconds since the last round for *index_id*."""
        rounds = self._rounds.get(index_id)
        if not rounds:
            return float("inf")
        return self._clock() - rounds[-1].timestamp
