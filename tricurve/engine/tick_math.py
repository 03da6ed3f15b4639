"""
TriCurve Tick Math

Bidirectional mapping between discrete ticks and Q64.96 square-root prices,
plus the tick-array bookkeeping a swap walks through:

  - tick_to_sqrt_price: 1.0001^(tick/2) via bit-decomposition over
    precomputed Q128 ratio constants (one multiply per set bit)
  - sqrt_price_to_tick: exact inverse (greatest tick whose price <= input)
  - Tick / TickArray: per-tick liquidity deltas, 32 ticks per array with an
    initialized bitmap
  - TickArrayBitmap: which arrays exist
  - TickArraySet: next initialized tick across arrays in a swap direction

Invariant: the liquidity_net of all ticks sums to zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from tricurve.constants import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    TICK_ARRAY_SIZE,
)
from tricurve.exceptions import InvalidRange, TickOutOfBounds

logger = logging.getLogger(__name__)

Q128 = 1 << 128

# sqrt(1.0001)^-(2^i) in Q128, for i = 0..19
_TICK_RATIOS = (
    0xfffcb933bd6fad37aa2d162d1a594001,
    0xfff97272373d413259a46990580e213a,
    0xfff2e50f5f656932ef12357cf3c7fdcc,
    0xffe5caca7e10e4e61c3624eaa0941cd0,
    0xffcb9843d60f6159c9db58835c926644,
    0xff973b41fa98c081472e6896dfb254c0,
    0xff2ea16466c96a3843ec78b326b52861,
    0xfe5dee046a99a2a811c461f1969c3053,
    0xfcbe86c7900a88aedcffc83b479aa3a4,
    0xf987a7253ac413176f2b074cf7815e54,
    0xf3392b0822b70005940c7a398e4b70f3,
    0xe7159475a2c29b7443b29c7fa6e889d9,
    0xd097f3bdfd2022b8845ad8f792aa5825,
    0xa9f746462d870fdf8a65dc1f90e061e5,
    0x70d869a156d2a1b890bb3df62baf32f7,
    0x31be135f97d08fd981231505542fcfa6,
    0x9aa508b5b7a84e1c677de54f3e99bc9,
    0x5d6af8dedb81196699c329225ee604,
    0x2216e584f5fa1ea926041bedfe98,
    0x48a170391f7dc42444e8fa2,
)


# ---------------------------------------------------------------------------
# Tick <-> sqrt price
# ---------------------------------------------------------------------------

def check_tick(tick: int) -> None:
    if tick < MIN_TICK or tick > MAX_TICK:
        raise TickOutOfBounds(f"tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")


def tick_to_sqrt_price(tick: int) -> int:
    """
    Square-root price at ``tick`` in Q64.96, rounded up.

    Raises:
        TickOutOfBounds: if tick is outside [MIN_TICK, MAX_TICK]
    """
    check_tick(tick)
    abs_tick = -tick if tick < 0 else tick

    ratio = Q128
    for i, constant in enumerate(_TICK_RATIOS):
        if abs_tick & (1 << i):
            ratio = (ratio * constant) >> 128

    if tick > 0:
        ratio = ((1 << 256) - 1) // ratio

    # Q128.128 → Q64.96, rounding up so the inverse is exact
    return (ratio >> 32) + (1 if ratio & 0xFFFFFFFF else 0)


def sqrt_price_to_tick(sqrt_price: int) -> int:
    """
    Greatest tick whose square-root price is <= ``sqrt_price``.

    Raises:
        TickOutOfBounds: if sqrt_price is outside [MIN_SQRT_RATIO, MAX_SQRT_RATIO]
    """
    if sqrt_price < MIN_SQRT_RATIO or sqrt_price > MAX_SQRT_RATIO:
        raise TickOutOfBounds(f"sqrt price {sqrt_price} outside tick range")

    lo, hi = MIN_TICK, MAX_TICK
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if tick_to_sqrt_price(mid) <= sqrt_price:
            lo = mid
        else:
            hi = mid - 1
    return lo


def tick_array_start(tick: int, tick_spacing: int) -> int:
    """Round ``tick`` down to the start index of its tick array."""
    check_tick(tick)
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive")
    ticks_in_array = TICK_ARRAY_SIZE * tick_spacing
    return (tick // ticks_in_array) * ticks_in_array


def check_tick_range(tick_lower: int, tick_upper: int, tick_spacing: int) -> None:
    """Validate a position range: ordered, in bounds, aligned to spacing."""
    if tick_lower >= tick_upper:
        raise InvalidRange(f"tick_lower {tick_lower} must be < tick_upper {tick_upper}")
    check_tick(tick_lower)
    check_tick(tick_upper)
    if tick_lower % tick_spacing or tick_upper % tick_spacing:
        raise InvalidRange(f"ticks must be multiples of tick_spacing ({tick_spacing})")


# ---------------------------------------------------------------------------
# Per-tick state
# ---------------------------------------------------------------------------

@dataclass
class Tick:
    """Liquidity info at a single tick boundary."""
    liquidity_net: int = 0
    liquidity_gross: int = 0
    fee_growth_outside_0: int = 0
    fee_growth_outside_1: int = 0
    initialized: bool = False


@dataclass
class TickArray:
    """
    TICK_ARRAY_SIZE consecutive spaced ticks starting at ``start_tick_index``.

    Bit ``i`` of ``bitmap`` is set while tick ``start + i * spacing`` is
    initialized.
    """
    start_tick_index: int
    tick_spacing: int
    ticks: List[Tick] = field(default_factory=lambda: [Tick() for _ in range(TICK_ARRAY_SIZE)])
    bitmap: int = 0

    @property
    def end_tick_index(self) -> int:
        """Last tick covered by this array."""
        return self.start_tick_index + (TICK_ARRAY_SIZE - 1) * self.tick_spacing

    @property
    def initialized_count(self) -> int:
        return bin(self.bitmap).count("1")

    def contains(self, tick: int) -> bool:
        return self.start_tick_index <= tick <= self.end_tick_index

    def offset(self, tick: int) -> int:
        if not self.contains(tick):
            raise InvalidRange(f"tick {tick} not in array starting at {self.start_tick_index}")
        rel = tick - self.start_tick_index
        if rel % self.tick_spacing:
            raise InvalidRange(f"tick {tick} not aligned to spacing {self.tick_spacing}")
        return rel // self.tick_spacing

    def get(self, tick: int) -> Tick:
        return self.ticks[self.offset(tick)]

    def is_initialized(self, tick: int) -> bool:
        return bool(self.bitmap >> self.offset(tick) & 1)

    def _set_bit(self, offset: int, on: bool) -> None:
        if on:
            self.bitmap |= 1 << offset
        else:
            self.bitmap &= ~(1 << offset)
        self.ticks[offset].initialized = on

    def update_tick(
        self,
        tick: int,
        tick_current: int,
        liquidity_delta: int,
        upper: bool,
        fee_growth_global_0: int = 0,
        fee_growth_global_1: int = 0,
    ) -> bool:
        """
        Apply a position's liquidity change to one of its boundary ticks.

        Returns:
            True if the tick flipped between initialized and uninitialized
        """
        i = self.offset(tick)
        info = self.ticks[i]
        gross_before = info.liquidity_gross
        gross_after = gross_before + liquidity_delta
        if gross_after < 0:
            raise InvalidRange(f"liquidity_gross at tick {tick} would go negative")

        flipped = (gross_after == 0) != (gross_before == 0)

        if gross_before == 0 and tick <= tick_current:
            # By convention all growth before initialization happened below the tick
            info.fee_growth_outside_0 = fee_growth_global_0
            info.fee_growth_outside_1 = fee_growth_global_1

        info.liquidity_gross = gross_after
        if upper:
            info.liquidity_net -= liquidity_delta
        else:
            info.liquidity_net += liquidity_delta

        if flipped:
            self._set_bit(i, gross_after > 0)
            if gross_after == 0:
                self.ticks[i] = Tick()
        return flipped

    def cross_tick(self, tick: int, fee_growth_global_0: int, fee_growth_global_1: int) -> int:
        """
        Cross ``tick``: flip its fee-growth-outside and return its liquidity_net.

        A tick left with no gross liquidity is cleared from the bitmap.
        """
        i = self.offset(tick)
        info = self.ticks[i]
        info.fee_growth_outside_0 = fee_growth_global_0 - info.fee_growth_outside_0
        info.fee_growth_outside_1 = fee_growth_global_1 - info.fee_growth_outside_1
        if info.liquidity_gross == 0 and info.initialized:
            self._set_bit(i, False)
        return info.liquidity_net

    def next_initialized(self, tick: int, lte: bool) -> Optional[int]:
        """
        Nearest initialized tick in this array.

        lte=True searches ticks <= ``tick``; lte=False searches ticks > ``tick``.
        """
        rel = (tick - self.start_tick_index) // self.tick_spacing
        if lte:
            hi = min(rel, TICK_ARRAY_SIZE - 1)
            if hi < 0:
                return None
            masked = self.bitmap & ((1 << (hi + 1)) - 1)
            if not masked:
                return None
            return self.start_tick_index + (masked.bit_length() - 1) * self.tick_spacing

        lo = max(rel + 1, 0)
        if lo >= TICK_ARRAY_SIZE:
            return None
        masked = (self.bitmap >> lo) << lo
        if not masked:
            return None
        return self.start_tick_index + ((masked & -masked).bit_length() - 1) * self.tick_spacing


# ---------------------------------------------------------------------------
# Array-level bitmap
# ---------------------------------------------------------------------------

class TickArrayBitmap:
    """
    Bitmap of existing tick arrays for one market.

    Array ``start`` maps to bit ``start // span + offset`` so negative array
    indices stay representable.
    """

    def __init__(self, tick_spacing: int):
        if tick_spacing <= 0:
            raise ValueError("tick_spacing must be positive")
        self.tick_spacing = tick_spacing
        self.span = TICK_ARRAY_SIZE * tick_spacing
        self._offset = -(MIN_TICK // self.span)
        self._max_pos = MAX_TICK // self.span + self._offset
        self.bits = 0

    def _pos(self, start: int) -> int:
        if start % self.span:
            raise InvalidRange(f"{start} is not a tick array start for spacing {self.tick_spacing}")
        return start // self.span + self._offset

    def _start(self, pos: int) -> int:
        return (pos - self._offset) * self.span

    def set(self, start: int) -> None:
        self.bits |= 1 << self._pos(start)

    def clear(self, start: int) -> None:
        self.bits &= ~(1 << self._pos(start))

    def is_set(self, start: int) -> bool:
        return bool(self.bits >> self._pos(start) & 1)

    def next_array(self, start: int, lte: bool) -> Optional[int]:
        """Nearest existing array start <= ``start`` (lte) or >= ``start``."""
        pos = self._pos(start)
        if lte:
            if pos < 0:
                return None
            masked = self.bits & ((1 << (min(pos, self._max_pos) + 1)) - 1)
            if not masked:
                return None
            return self._start(masked.bit_length() - 1)
        if pos > self._max_pos:
            return None
        pos = max(pos, 0)
        masked = (self.bits >> pos) << pos
        if not masked:
            return None
        return self._start((masked & -masked).bit_length() - 1)

    def __iter__(self) -> Iterator[int]:
        bits = self.bits
        while bits:
            low = bits & -bits
            yield self._start(low.bit_length() - 1)
            bits ^= low


# ---------------------------------------------------------------------------
# All tick arrays of one market
# ---------------------------------------------------------------------------

class TickArraySet:
    """Tick arrays of one market, indexed by start tick."""

    def __init__(self, tick_spacing: int = 1):
        self.tick_spacing = tick_spacing
        self.arrays: Dict[int, TickArray] = {}
        self.bitmap = TickArrayBitmap(tick_spacing)

    def array_for(self, tick: int, create: bool = False) -> Optional[TickArray]:
        start = tick_array_start(tick, self.tick_spacing)
        array = self.arrays.get(start)
        if array is None and create:
            array = TickArray(start_tick_index=start, tick_spacing=self.tick_spacing)
            self.arrays[start] = array
            self.bitmap.set(start)
            logger.debug("Tick array created: start=%s spacing=%s", start, self.tick_spacing)
        return array

    def get(self, tick: int) -> Optional[Tick]:
        array = self.array_for(tick)
        return array.get(tick) if array is not None else None

    def is_initialized(self, tick: int) -> bool:
        array = self.array_for(tick)
        return array is not None and array.is_initialized(tick)

    def update_tick(
        self,
        tick: int,
        tick_current: int,
        liquidity_delta: int,
        upper: bool,
        fee_growth_global_0: int = 0,
        fee_growth_global_1: int = 0,
    ) -> bool:
        array = self.array_for(tick, create=liquidity_delta > 0)
        if array is None:
            raise InvalidRange(f"no liquidity recorded at tick {tick}")
        flipped = array.update_tick(
            tick, tick_current, liquidity_delta, upper, fee_growth_global_0, fee_growth_global_1
        )
        if array.bitmap == 0:
            self._drop(array.start_tick_index)
        return flipped

    def cross_tick(self, tick: int, fee_growth_global_0: int, fee_growth_global_1: int) -> int:
        array = self.array_for(tick)
        if array is None:
            raise InvalidRange(f"cannot cross uninitialized tick {tick}")
        liquidity_net = array.cross_tick(tick, fee_growth_global_0, fee_growth_global_1)
        if array.bitmap == 0:
            self._drop(array.start_tick_index)
        return liquidity_net

    def _drop(self, start: int) -> None:
        del self.arrays[start]
        self.bitmap.clear(start)

    def next_initialized_tick(self, tick: int, zero_for_one: bool) -> Tuple[int, bool]:
        """
        Next initialized tick in the swap direction.

        zero_for_one searches ticks <= ``tick``, otherwise ticks > ``tick``.

        Returns:
            (tick, initialized); when nothing is initialized in that direction
            the tick bound (MIN_TICK / MAX_TICK) is returned with False
        """
        span = self.bitmap.span
        clamped = min(max(tick, MIN_TICK), MAX_TICK)
        start = tick_array_start(clamped, self.tick_spacing)
        if zero_for_one:
            candidate = self.bitmap.next_array(start, lte=True)
            while candidate is not None:
                found = self.arrays[candidate].next_initialized(tick, lte=True)
                if found is not None:
                    return found, True
                candidate = self.bitmap.next_array(candidate - span, lte=True)
            return MIN_TICK, False

        candidate = self.bitmap.next_array(start, lte=False)
        while candidate is not None:
            found = self.arrays[candidate].next_initialized(tick, lte=False)
            if found is not None:
                return found, True
            candidate = self.bitmap.next_array(candidate + span, lte=False)
        return MAX_TICK, False

    def initialized_ticks(self) -> List[int]:
        result = []
        for start in sorted(self.arrays):
            array = self.arrays[start]
            result.extend(
                start + i * self.tick_spacing
                for i in range(TICK_ARRAY_SIZE)
                if array.bitmap >> i & 1
            )
        return result

    def total_liquidity_net(self) -> int:
        return sum(
            tick.liquidity_net
            for array in self.arrays.values()
            for tick in array.ticks
        )
