"""
Hybrid Index Oracle Test Suite

Covers:
- Predefined index seeding and reads
- Owner-only administration
- STATIC / FEED switching per index
- Feed freshness, outlier and ordering rules
- Custom index allocation

Run with:
    pytest tests/test_oracle.py -v
"""

import pytest

from indexorder.constants import ZERO_ADDRESS
from indexorder.exceptions import OracleUnavailable, Unauthorized, UnknownIndex, ValidationError
from indexorder.oracle.feed import FeedOracle
from indexorder.oracle.registry import OracleRegistry, OracleType, format_index_value

ORACLE_ADDRESS = "0x55aafa1d3de3d05536c96ee9f1b965d6ce04a4c1"
OWNER = "0x19e7e376e7c213b7e7e7e46cc70a5dd086daff2a"
STRANGER = "0x1111111111111111111111111111111111111111"
FEED_ADDRESS = "0x2222222222222222222222222222222222222222"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_registry(clock=None, **kwargs):
    return OracleRegistry(ORACLE_ADDRESS, OWNER, clock=clock or FakeClock(), **kwargs)


# ============================================================================
# Reads
# ============================================================================


@pytest.mark.asyncio
class TestReads:
    """Predefined indices are served from their seeds."""

    async def test_predefined_seeds(self):
        registry = make_registry()
        expected = {0: 320, 1: 150_000_000, 2: 4_500_000, 3: 2_000, 4: 370, 5: 25_000}
        for index_id, seed in expected.items():
            assert (await registry.get_value(index_id)).value == seed
            assert await registry.is_valid_index(index_id)
            assert await registry.get_oracle_type(index_id) is OracleType.STATIC

    async def test_update_is_visible_with_newer_timestamp(self):
        clock = FakeClock()
        registry = make_registry(clock)
        before = await registry.get_value(0)
        assert before.value == 320

        registry.update_index(OWNER, 0, 350)

        after = await registry.get_value(0)
        assert after.value == 350
        assert after.timestamp > before.timestamp

    async def test_timestamps_strictly_increase_within_one_second(self):
        registry = make_registry()
        first = registry.update_index(OWNER, 3, 1800)
        second = registry.update_index(OWNER, 3, 1700)
        assert second.timestamp == first.timestamp + 1

    async def test_unassigned_index(self):
        registry = make_registry()
        assert not await registry.is_valid_index(99)
        with pytest.raises(UnknownIndex):
            await registry.get_value(99)
        with pytest.raises(UnknownIndex):
            await registry.get_index(99)

    async def test_inactive_index(self):
        registry = make_registry()
        registry.set_index_active(OWNER, 1, False)

        assert not await registry.is_valid_index(1)
        with pytest.raises(UnknownIndex):
            await registry.get_value(1)
        record = await registry.get_index(1)
        assert record.is_active is False

        registry.set_index_active(OWNER, 1, True)
        assert (await registry.get_value(1)).value == 150_000_000

    async def test_get_index_returns_snapshot(self):
        registry = make_registry()
        record = await registry.get_index(2)
        record.value = 1
        assert (await registry.get_value(2)).value == 4_500_000

    async def test_list_indices(self):
        registry = make_registry()
        registry.set_index_active(OWNER, 4, False)
        assert [r.id for r in await registry.list_indices()] == [0, 1, 2, 3, 4, 5]
        assert 4 not in [r.id for r in await registry.list_indices(include_inactive=False)]


# ============================================================================
# Administration
# ============================================================================


@pytest.mark.asyncio
class TestAdministration:
    """Only the owner may mutate the registry."""

    async def test_non_owner_rejected(self):
        registry = make_registry()
        with pytest.raises(Unauthorized):
            registry.update_index(STRANGER, 0, 1)
        with pytest.raises(Unauthorized):
            registry.create_index(STRANGER, 1, "https://example.org")
        with pytest.raises(Unauthorized):
            registry.set_oracle_type(STRANGER, 0, OracleType.FEED)
        with pytest.raises(Unauthorized):
            registry.set_default_feed_address(STRANGER, FEED_ADDRESS)
        assert (await registry.get_value(0)).value == 320

    async def test_owner_match_is_case_insensitive(self):
        registry = make_registry()
        registry.update_index(OWNER.upper().replace("0X", "0x"), 0, 330)
        assert (await registry.get_value(0)).value == 330

    async def test_zero_owner_has_no_administrator(self):
        registry = OracleRegistry(ORACLE_ADDRESS, ZERO_ADDRESS, clock=FakeClock())
        with pytest.raises(Unauthorized):
            registry.update_index(ZERO_ADDRESS, 0, 1)

    async def test_custom_indices_start_after_predefined(self):
        registry = make_registry()
        first = registry.create_index(OWNER, 42, "https://example.org/a")
        second = registry.create_index(OWNER, 7, "https://example.org/b", name="Rainfall")

        assert (first, second) == (6, 7)
        assert registry.next_custom_index_id == 8
        assert (await registry.get_value(6)).value == 42
        assert (await registry.get_index(7)).name == "Rainfall"

    async def test_create_index_validation(self):
        registry = make_registry()
        with pytest.raises(ValidationError):
            registry.create_index(OWNER, -1, "https://example.org")
        with pytest.raises(ValidationError):
            registry.create_index(OWNER, 1, "")
        assert registry.next_custom_index_id == 6

    async def test_batch_update_is_all_or_nothing(self):
        registry = make_registry()
        with pytest.raises(UnknownIndex):
            registry.update_indices(OWNER, [(0, 400), (99, 1)])
        assert (await registry.get_value(0)).value == 320

        registry.update_indices(OWNER, [(0, 400), (3, 1200)])
        assert (await registry.get_value(0)).value == 400
        assert (await registry.get_value(3)).value == 1200

    async def test_simulate_price_movement(self):
        registry = make_registry()
        registry.simulate_price_movement(OWNER, 5, 1000, True)
        assert (await registry.get_value(5)).value == 27_500

        registry.simulate_price_movement(OWNER, 5, 20_000, False)
        assert (await registry.get_value(5)).value == 0

    async def test_simulate_price_movement_custom_index(self):
        registry = make_registry()
        index_id = registry.create_index(OWNER, 100, "https://example.org")
        with pytest.raises(ValidationError):
            registry.simulate_price_movement(OWNER, index_id, 100, True)


# ============================================================================
# Hybrid switching
# ============================================================================


@pytest.mark.asyncio
class TestHybridSwitching:
    """Per-index backend selection between STATIC and FEED."""

    def setup_method(self):
        self.clock = FakeClock()
        self.registry = make_registry(self.clock)
        self.feed = FeedOracle(FEED_ADDRESS, staleness=3600, clock=self.clock)
        self.registry.register_feed(self.feed)

    async def test_static_feed_static_round_trip(self):
        before = await self.registry.get_index(3)
        self.feed.push(3, 2_400)

        self.registry.set_oracle_address(OWNER, 3, FEED_ADDRESS)
        self.registry.set_oracle_type(OWNER, 3, OracleType.FEED)
        assert (await self.registry.get_value(3)).value == 2_400

        self.registry.set_oracle_type(OWNER, 3, OracleType.STATIC)
        assert (await self.registry.get_value(3)).value == 2_000

        after = await self.registry.get_index(3)
        assert after.id == before.id
        assert after.source_url == before.source_url

    async def test_feed_without_address_reads_static(self):
        self.registry.set_oracle_type(OWNER, 0, OracleType.FEED)
        assert await self.registry.get_oracle_address(0) == ZERO_ADDRESS
        assert (await self.registry.get_value(0)).value == 320

    async def test_default_feed_address(self):
        self.feed.push(0, 300)
        self.registry.set_default_feed_address(OWNER, FEED_ADDRESS)
        self.registry.set_oracle_type(OWNER, 0, OracleType.FEED)

        assert await self.registry.get_oracle_address(0) == FEED_ADDRESS
        assert (await self.registry.get_value(0)).value == 300

    async def test_index_address_overrides_default(self):
        other = FeedOracle("0x3333333333333333333333333333333333333333", clock=self.clock)
        self.registry.register_feed(other)
        self.feed.push(0, 300)
        other.push(0, 310)

        self.registry.set_default_feed_address(OWNER, FEED_ADDRESS)
        self.registry.set_oracle_address(OWNER, 0, other.address)
        self.registry.set_oracle_type(OWNER, 0, OracleType.FEED)
        assert (await self.registry.get_value(0)).value == 310

    async def test_stale_feed_degrades_only_that_index(self):
        self.feed.push(3, 2_400)
        self.registry.set_oracle_address(OWNER, 3, FEED_ADDRESS)
        self.registry.set_oracle_type(OWNER, 3, OracleType.FEED)

        self.clock.advance(3601)

        with pytest.raises(OracleUnavailable):
            await self.registry.get_value(3)
        assert (await self.registry.get_value(2)).value == 4_500_000

    async def test_unregistered_feed_unavailable(self):
        self.registry.set_oracle_address(OWNER, 2, "0x4444444444444444444444444444444444444444")
        self.registry.set_oracle_type(OWNER, 2, OracleType.FEED)
        with pytest.raises(OracleUnavailable):
            await self.registry.get_value(2)

    async def test_batch_type_switch(self):
        self.registry.set_oracle_types(OWNER, [0, 1], [OracleType.FEED, "FEED"])
        assert await self.registry.get_oracle_type(0) is OracleType.FEED
        assert await self.registry.get_oracle_type(1) is OracleType.FEED
        with pytest.raises(ValidationError):
            self.registry.set_oracle_types(OWNER, [0], [])


# ============================================================================
# Feed
# ============================================================================


class TestFeedOracle:
    """Round recording rules of the push-based feed."""

    def setup_method(self):
        self.clock = FakeClock()
        self.feed = FeedOracle(FEED_ADDRESS, staleness=60, clock=self.clock)

    def test_empty_feed_unavailable(self):
        assert not self.feed.serves(0)
        with pytest.raises(OracleUnavailable):
            self.feed.latest(0)

    def test_latest_and_staleness(self):
        self.feed.push(0, 100)
        assert self.feed.latest(0).value == 100

        self.clock.advance(61)
        assert self.feed.is_stale(0)
        with pytest.raises(OracleUnavailable):
            self.feed.latest(0)

    def test_outlier_rejected(self):
        self.feed.push(0, 100)
        self.clock.advance(1)
        with pytest.raises(ValueError):
            self.feed.push(0, 151)
        assert self.feed.push(0, 150).value == 150

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            self.feed.push(0, -1)

    def test_timestamp_must_not_go_backwards(self):
        self.feed.push(0, 100, timestamp=1_000)
        with pytest.raises(ValueError):
            self.feed.push(0, 100, timestamp=999)

    def test_same_timestamp_overwrites(self):
        first = self.feed.push(0, 100, timestamp=1_000)
        second = self.feed.push(0, 110, timestamp=1_000)
        assert second.round_id == first.round_id
        assert len(self.feed.get_rounds(0)) == 1
        assert self.feed.get_rounds(0)[0].value == 110

    def test_round_history_is_bounded(self):
        feed = FeedOracle(FEED_ADDRESS, max_rounds=3, clock=self.clock)
        for i in range(5):
            feed.push(0, 100 + i, timestamp=1_000 + i)
        rounds = feed.get_rounds(0)
        assert [r.round_id for r in rounds] == [3, 4, 5]


class TestFormatting:

    def test_oracle_type_parse(self):
        assert OracleType.parse("mock") is OracleType.STATIC
        assert OracleType.parse("CHAINLINK") is OracleType.FEED
        assert OracleType.parse(1) is OracleType.FEED
        with pytest.raises(ValidationError):
            OracleType.parse("pyth")

    @pytest.mark.parametrize("index_id,value,expected", [
        (0, 320, "3.20%"),
        (1, 150_000_000, "150.0M followers"),
        (2, 4_500_000, "$45000.00"),
        (3, 1500, "15.00"),
        (6, 42, "42"),
    ])
    def test_format_index_value(self, index_id, value, expected):
        assert format_index_value(index_id, value) == expected
