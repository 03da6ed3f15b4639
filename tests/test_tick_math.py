"""
Test suite for TriCurve tick math

Covers:
  - tick ↔ sqrt price mapping and its exact inverse
  - tick array offsets, bitmap search, flip semantics
  - TickArraySet cross-array search and liquidity_net bookkeeping
"""

import random

import pytest

from tricurve.constants import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    Q96,
    TICK_ARRAY_SIZE,
)
from tricurve.engine.tick_math import (
    TickArray,
    TickArrayBitmap,
    TickArraySet,
    check_tick_range,
    sqrt_price_to_tick,
    tick_array_start,
    tick_to_sqrt_price,
)
from tricurve.exceptions import InvalidRange, TickOutOfBounds


# ============================================================================
#  PRICE MAPPING
# ============================================================================

class TestTickToSqrtPrice:
    """tick_to_sqrt_price over the full tick range."""

    def test_tick_zero_is_one(self):
        assert tick_to_sqrt_price(0) == Q96

    def test_bounds(self):
        assert tick_to_sqrt_price(MIN_TICK) == MIN_SQRT_RATIO
        assert tick_to_sqrt_price(MAX_TICK) == MAX_SQRT_RATIO

    def test_monotonic(self):
        ticks = [MIN_TICK, -500000, -1000, -1, 0, 1, 1000, 500000, MAX_TICK]
        prices = [tick_to_sqrt_price(t) for t in ticks]
        assert prices == sorted(prices)
        assert len(set(prices)) == len(prices)

    def test_one_tick_is_one_basis_point(self):
        # price ratio between adjacent ticks is 1.0001
        p0 = tick_to_sqrt_price(0)
        p1 = tick_to_sqrt_price(1)
        ratio_bps = ((p1 * p1) * 10_000_000 // (p0 * p0))
        assert ratio_bps == 10_001_000 - 1 or ratio_bps == 10_001_000

    def test_out_of_bounds(self):
        with pytest.raises(TickOutOfBounds):
            tick_to_sqrt_price(MAX_TICK + 1)
        with pytest.raises(TickOutOfBounds):
            tick_to_sqrt_price(MIN_TICK - 1)


class TestSqrtPriceToTick:
    """Inverse mapping: greatest tick whose price <= input."""

    def test_round_trip_is_exact(self):
        rng = random.Random(7)
        ticks = [MIN_TICK, MAX_TICK, 0, -1, 1] + [rng.randint(MIN_TICK, MAX_TICK) for _ in range(50)]
        for t in ticks:
            assert sqrt_price_to_tick(tick_to_sqrt_price(t)) == t

    def test_between_ticks_rounds_down(self):
        p = tick_to_sqrt_price(100)
        assert sqrt_price_to_tick(p + 1) == 100
        assert sqrt_price_to_tick(p - 1) == 99

    def test_out_of_range(self):
        with pytest.raises(TickOutOfBounds):
            sqrt_price_to_tick(MIN_SQRT_RATIO - 1)
        with pytest.raises(TickOutOfBounds):
            sqrt_price_to_tick(MAX_SQRT_RATIO + 1)


class TestRanges:
    def test_tick_array_start(self):
        assert tick_array_start(0, 1) == 0
        assert tick_array_start(31, 1) == 0
        assert tick_array_start(32, 1) == 32
        assert tick_array_start(-1, 1) == -32
        assert tick_array_start(-1, 10) == -320

    def test_bad_spacing(self):
        with pytest.raises(ValueError, match="positive"):
            tick_array_start(0, 0)

    def test_range_must_be_ordered(self):
        with pytest.raises(InvalidRange, match="must be <"):
            check_tick_range(10, 10, 1)

    def test_range_alignment(self):
        with pytest.raises(InvalidRange, match="multiples"):
            check_tick_range(-15, 20, 10)


# ============================================================================
#  TICK ARRAYS
# ============================================================================

class TestTickArray:
    """Single-array bookkeeping."""

    def _make_array(self, start=0, spacing=1):
        return TickArray(start_tick_index=start, tick_spacing=spacing)

    def test_flip_on_first_and_last_liquidity(self):
        array = self._make_array()
        assert array.update_tick(5, 0, 100, upper=False) is True
        assert array.is_initialized(5)
        assert array.update_tick(5, 0, 50, upper=False) is False
        assert array.get(5).liquidity_net == 150
        assert array.update_tick(5, 0, -150, upper=False) is True
        assert not array.is_initialized(5)
        assert array.get(5).liquidity_gross == 0

    def test_upper_tick_subtracts_net(self):
        array = self._make_array()
        array.update_tick(10, 0, 100, upper=True)
        assert array.get(10).liquidity_net == -100

    def test_negative_gross_rejected(self):
        array = self._make_array()
        with pytest.raises(InvalidRange, match="negative"):
            array.update_tick(3, 0, -1, upper=False)

    def test_offset_misaligned(self):
        array = self._make_array(spacing=10)
        with pytest.raises(InvalidRange, match="aligned"):
            array.offset(15)

    def test_offset_outside(self):
        array = self._make_array()
        with pytest.raises(InvalidRange):
            array.offset(TICK_ARRAY_SIZE)

    def test_fee_growth_outside_initialized_below_current(self):
        array = self._make_array()
        array.update_tick(4, 10, 1, upper=False, fee_growth_global_0=7, fee_growth_global_1=9)
        tick = array.get(4)
        assert (tick.fee_growth_outside_0, tick.fee_growth_outside_1) == (7, 9)

    def test_cross_flips_fee_growth(self):
        array = self._make_array()
        array.update_tick(4, 10, 1, upper=False, fee_growth_global_0=7)
        net = array.cross_tick(4, 20, 0)
        assert net == 1
        assert array.get(4).fee_growth_outside_0 == 13

    def test_next_initialized(self):
        array = self._make_array()
        for t in (3, 10, 20):
            array.update_tick(t, 0, 1, upper=False)
        assert array.next_initialized(15, lte=True) == 10
        assert array.next_initialized(10, lte=True) == 10
        assert array.next_initialized(10, lte=False) == 20
        assert array.next_initialized(2, lte=True) is None
        assert array.next_initialized(20, lte=False) is None


class TestTickArrayBitmap:
    def test_set_and_search(self):
        bitmap = TickArrayBitmap(1)
        bitmap.set(-64)
        bitmap.set(96)
        assert bitmap.is_set(-64)
        assert bitmap.next_array(0, lte=True) == -64
        assert bitmap.next_array(0, lte=False) == 96
        assert bitmap.next_array(-96, lte=True) is None
        assert list(bitmap) == [-64, 96]

    def test_clear(self):
        bitmap = TickArrayBitmap(1)
        bitmap.set(32)
        bitmap.clear(32)
        assert not bitmap.is_set(32)
        assert list(bitmap) == []

    def test_rejects_non_array_start(self):
        bitmap = TickArrayBitmap(1)
        with pytest.raises(InvalidRange):
            bitmap.set(5)


class TestTickArraySet:
    """Cross-array search over a market's tick arrays."""

    def _make_set(self, *ranges, liquidity=1000):
        ticks = TickArraySet(1)
        for lower, upper in ranges:
            ticks.update_tick(lower, 0, liquidity, upper=False)
            ticks.update_tick(upper, 0, liquidity, upper=True)
        return ticks

    def test_next_initialized_across_arrays(self):
        ticks = self._make_set((-600, 600))
        assert ticks.next_initialized_tick(0, zero_for_one=True) == (-600, True)
        assert ticks.next_initialized_tick(0, zero_for_one=False) == (600, True)

    def test_next_initialized_none_in_direction(self):
        ticks = self._make_set((-600, 600))
        assert ticks.next_initialized_tick(-601, zero_for_one=True) == (MIN_TICK, False)
        assert ticks.next_initialized_tick(600, zero_for_one=False) == (MAX_TICK, False)

    def test_zero_for_one_includes_current_tick(self):
        ticks = self._make_set((-600, 600))
        assert ticks.next_initialized_tick(600, zero_for_one=True) == (600, True)

    def test_liquidity_net_sums_to_zero(self):
        ticks = self._make_set((-600, 600), (-60, 60), (100, 5000))
        assert ticks.total_liquidity_net() == 0
        assert ticks.initialized_ticks() == [-600, -60, 60, 100, 600, 5000]

    def test_empty_arrays_are_dropped(self):
        ticks = self._make_set((-600, 600))
        ticks.update_tick(-600, 0, -1000, upper=False)
        ticks.update_tick(600, 0, -1000, upper=True)
        assert ticks.arrays == {}
        assert list(ticks.bitmap) == []

    def test_removing_unknown_tick(self):
        ticks = TickArraySet(1)
        with pytest.raises(InvalidRange, match="no liquidity"):
            ticks.update_tick(5, 0, -1, upper=False)

    def test_cross_uninitialized(self):
        ticks = TickArraySet(1)
        with pytest.raises(InvalidRange, match="uninitialized"):
            ticks.cross_tick(5, 0, 0)
