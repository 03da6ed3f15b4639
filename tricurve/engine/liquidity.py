"""
TriCurve Concentrated-Liquidity Engine

Liquidity <-> token amount conversion across a price range and the swap loop
that walks a market's tick arrays. Square-root prices are Q64.96 integers,
liquidity and amounts are plain integers.

Rounding always favors the pool: amounts owed to the pool round up, amounts
paid out round down, and the next price rounds in the direction that leaves
the pool solvent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from tricurve.constants import MAX_SQRT_RATIO, MIN_SQRT_RATIO, Q96
from tricurve.engine.fixed_point import div_round_up, mul_div
from tricurve.engine.market import MarketField
from tricurve.engine.tick_math import (
    TickArraySet,
    check_tick_range,
    sqrt_price_to_tick,
    tick_to_sqrt_price,
)
from tricurve.exceptions import DomainError, InvalidRange

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Amount deltas
# ---------------------------------------------------------------------------

def amount0_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """
    Token0 amount between two prices: L · (√b - √a) / (√a · √b).
    """
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_a <= 0:
        raise DomainError("sqrt price must be positive")
    numerator1 = liquidity << 96
    numerator2 = sqrt_b - sqrt_a
    if round_up:
        return div_round_up(mul_div(numerator1, numerator2, sqrt_b, round_up=True), sqrt_a)
    return mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def amount1_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """Token1 amount between two prices: L · (√b - √a)."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96, round_up=round_up)


def amounts_from_liquidity(
    sqrt_price: int,
    sqrt_price_lower: int,
    sqrt_price_upper: int,
    liquidity: int,
    round_up: bool = False,
) -> Tuple[int, int]:
    """
    Token amounts represented by ``liquidity`` over [lower, upper].

    Below the range the position is all token0, above it all token1,
    inside it a mix split at the current price.

    Raises:
        InvalidRange: if lower >= upper
    """
    if sqrt_price_lower >= sqrt_price_upper:
        raise InvalidRange("sqrt_price_lower must be < sqrt_price_upper")
    if liquidity < 0:
        raise ValueError("Liquidity must be non-negative")
    if liquidity == 0:
        return 0, 0

    if sqrt_price <= sqrt_price_lower:
        return amount0_delta(sqrt_price_lower, sqrt_price_upper, liquidity, round_up), 0
    if sqrt_price < sqrt_price_upper:
        return (
            amount0_delta(sqrt_price, sqrt_price_upper, liquidity, round_up),
            amount1_delta(sqrt_price_lower, sqrt_price, liquidity, round_up),
        )
    return 0, amount1_delta(sqrt_price_lower, sqrt_price_upper, liquidity, round_up)


def liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    intermediate = mul_div(sqrt_a, sqrt_b, Q96)
    return mul_div(amount0, intermediate, sqrt_b - sqrt_a)


def liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    return mul_div(amount1, Q96, sqrt_b - sqrt_a)


def liquidity_from_amounts(
    sqrt_price: int,
    sqrt_price_lower: int,
    sqrt_price_upper: int,
    amount0: int,
    amount1: int,
) -> int:
    """Maximum liquidity the given amounts can back over [lower, upper]."""
    if sqrt_price_lower >= sqrt_price_upper:
        raise InvalidRange("sqrt_price_lower must be < sqrt_price_upper")
    if sqrt_price <= sqrt_price_lower:
        return liquidity_for_amount0(sqrt_price_lower, sqrt_price_upper, amount0)
    if sqrt_price < sqrt_price_upper:
        return min(
            liquidity_for_amount0(sqrt_price, sqrt_price_upper, amount0),
            liquidity_for_amount1(sqrt_price_lower, sqrt_price, amount1),
        )
    return liquidity_for_amount1(sqrt_price_lower, sqrt_price_upper, amount1)


# ---------------------------------------------------------------------------
# Next price
# ---------------------------------------------------------------------------

def next_sqrt_price_from_amount0_rounding_up(sqrt_price: int, liquidity: int, amount: int, add: bool) -> int:
    if amount == 0:
        return sqrt_price
    numerator1 = liquidity << 96
    product = amount * sqrt_price
    if add:
        return mul_div(numerator1, sqrt_price, numerator1 + product, round_up=True)
    if numerator1 <= product:
        raise ValueError("Insufficient liquidity for requested token0 output")
    return mul_div(numerator1, sqrt_price, numerator1 - product, round_up=True)


def next_sqrt_price_from_amount1_rounding_down(sqrt_price: int, liquidity: int, amount: int, add: bool) -> int:
    if add:
        return sqrt_price + (amount << 96) // liquidity
    quotient = div_round_up(amount << 96, liquidity)
    if sqrt_price <= quotient:
        raise ValueError("Insufficient liquidity for requested token1 output")
    return sqrt_price - quotient


def next_sqrt_price_from_input(sqrt_price: int, liquidity: int, amount_in: int, zero_for_one: bool) -> int:
    if sqrt_price <= 0 or liquidity <= 0:
        raise ValueError("Price and liquidity must be positive")
    if zero_for_one:
        return next_sqrt_price_from_amount0_rounding_up(sqrt_price, liquidity, amount_in, add=True)
    return next_sqrt_price_from_amount1_rounding_down(sqrt_price, liquidity, amount_in, add=True)


def next_sqrt_price_from_output(sqrt_price: int, liquidity: int, amount_out: int, zero_for_one: bool) -> int:
    if sqrt_price <= 0 or liquidity <= 0:
        raise ValueError("Price and liquidity must be positive")
    if zero_for_one:
        return next_sqrt_price_from_amount1_rounding_down(sqrt_price, liquidity, amount_out, add=False)
    return next_sqrt_price_from_amount0_rounding_up(sqrt_price, liquidity, amount_out, add=False)


def next_sqrt_price_from_amount(
    sqrt_price: int,
    liquidity: int,
    amount: int,
    zero_for_one: bool,
    exact_input: bool = True,
) -> int:
    """Advance the price by an input (exact_input) or output amount."""
    if exact_input:
        return next_sqrt_price_from_input(sqrt_price, liquidity, amount, zero_for_one)
    return next_sqrt_price_from_output(sqrt_price, liquidity, amount, zero_for_one)


# ---------------------------------------------------------------------------
# Swap step
# ---------------------------------------------------------------------------

@dataclass
class SwapStep:
    """One constant-liquidity leg of a swap."""
    sqrt_price_start: int
    sqrt_price_next: int
    amount_in: int
    amount_out: int
    liquidity: int
    tick_next: Optional[int] = None
    crossed: bool = False


def compute_swap_step(
    sqrt_price_current: int,
    sqrt_price_target: int,
    liquidity: int,
    amount_remaining: int,
    exact_input: bool = True,
) -> SwapStep:
    """
    Move from the current price toward the target within one liquidity range.

    Stops at the target if the remaining amount suffices, otherwise where the
    remaining amount runs out.
    """
    zero_for_one = sqrt_price_current >= sqrt_price_target

    if exact_input:
        if zero_for_one:
            amount_in = amount0_delta(sqrt_price_target, sqrt_price_current, liquidity, True)
        else:
            amount_in = amount1_delta(sqrt_price_current, sqrt_price_target, liquidity, True)
        if amount_remaining >= amount_in:
            sqrt_price_next = sqrt_price_target
        else:
            sqrt_price_next = next_sqrt_price_from_input(
                sqrt_price_current, liquidity, amount_remaining, zero_for_one
            )
    else:
        if zero_for_one:
            amount_out = amount1_delta(sqrt_price_target, sqrt_price_current, liquidity, False)
        else:
            amount_out = amount0_delta(sqrt_price_current, sqrt_price_target, liquidity, False)
        if amount_remaining >= amount_out:
            sqrt_price_next = sqrt_price_target
        else:
            sqrt_price_next = next_sqrt_price_from_output(
                sqrt_price_current, liquidity, amount_remaining, zero_for_one
            )

    max_reached = sqrt_price_next == sqrt_price_target

    if zero_for_one:
        if not (max_reached and exact_input):
            amount_in = amount0_delta(sqrt_price_next, sqrt_price_current, liquidity, True)
        if not (max_reached and not exact_input):
            amount_out = amount1_delta(sqrt_price_next, sqrt_price_current, liquidity, False)
    else:
        if not (max_reached and exact_input):
            amount_in = amount1_delta(sqrt_price_current, sqrt_price_next, liquidity, True)
        if not (max_reached and not exact_input):
            amount_out = amount0_delta(sqrt_price_current, sqrt_price_next, liquidity, False)

    if not exact_input and amount_out > amount_remaining:
        amount_out = amount_remaining
    if exact_input and not max_reached:
        # Input dust left by rounding stays with the pool
        amount_in = amount_remaining

    return SwapStep(
        sqrt_price_start=sqrt_price_current,
        sqrt_price_next=sqrt_price_next,
        amount_in=amount_in,
        amount_out=amount_out,
        liquidity=liquidity,
    )


@dataclass
class SwapResult:
    """Outcome of a multi-tick swap."""
    amount_in: int
    amount_out: int
    sqrt_price_before: int
    sqrt_price: int
    tick: int
    liquidity: int
    steps: List[SwapStep] = field(default_factory=list)
    ticks_crossed: int = 0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ConcentratedLiquidityEngine:
    """
    Swap and liquidity mutations on a MarketField and its TickArraySet.

    Callers hand in objects they own; the market engine passes private
    copies so a failed operation never leaves a half-applied state.
    """

    def swap(
        self,
        market: MarketField,
        ticks: TickArraySet,
        amount: int,
        zero_for_one: bool,
        exact_input: bool = True,
        sqrt_price_limit: Optional[int] = None,
    ) -> SwapResult:
        """
        Swap through the market, crossing initialized ticks as needed.

        Args:
            amount: exact input (exact_input) or exact output amount
            zero_for_one: True if swapping token0 → token1 (price decreases)
            sqrt_price_limit: price beyond which the swap stops

        Raises:
            ValueError: on a non-positive amount or an invalid price limit
            InvalidRange: if crossing a tick would drive liquidity negative
        """
        if amount <= 0:
            raise ValueError("Swap amount must be positive")

        if sqrt_price_limit is None:
            sqrt_price_limit = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1
        if zero_for_one:
            if not MIN_SQRT_RATIO < sqrt_price_limit < market.sqrt_price:
                raise ValueError("sqrt_price_limit must be below the current price")
        elif not market.sqrt_price < sqrt_price_limit < MAX_SQRT_RATIO:
            raise ValueError("sqrt_price_limit must be above the current price")

        remaining = amount
        total_in = 0
        total_out = 0
        sqrt_price = market.sqrt_price
        tick = market.tick
        liquidity = market.liquidity
        steps: List[SwapStep] = []
        crossed = 0

        while remaining > 0 and sqrt_price != sqrt_price_limit:
            tick_next, initialized = ticks.next_initialized_tick(tick, zero_for_one)
            sqrt_price_next_tick = tick_to_sqrt_price(tick_next)
            if zero_for_one:
                target = max(sqrt_price_next_tick, sqrt_price_limit)
            else:
                target = min(sqrt_price_next_tick, sqrt_price_limit)

            step = compute_swap_step(sqrt_price, target, liquidity, remaining, exact_input)
            step.tick_next = tick_next

            if exact_input:
                remaining -= step.amount_in
            else:
                remaining -= step.amount_out
            total_in += step.amount_in
            total_out += step.amount_out

            if step.sqrt_price_next == sqrt_price_next_tick:
                if initialized:
                    liquidity_net = ticks.cross_tick(
                        tick_next, market.fee_growth_global_0, market.fee_growth_global_1
                    )
                    if zero_for_one:
                        liquidity_net = -liquidity_net
                    liquidity += liquidity_net
                    if liquidity < 0:
                        raise InvalidRange(f"liquidity would go negative crossing tick {tick_next}")
                    step.crossed = True
                    crossed += 1
                    logger.debug("Crossed tick=%s liquidity=%s", tick_next, liquidity)
                tick = tick_next - 1 if zero_for_one else tick_next
            elif step.sqrt_price_next != sqrt_price:
                tick = sqrt_price_to_tick(step.sqrt_price_next)

            sqrt_price = step.sqrt_price_next
            steps.append(step)

        result = SwapResult(
            amount_in=total_in,
            amount_out=total_out,
            sqrt_price_before=market.sqrt_price,
            sqrt_price=sqrt_price,
            tick=tick,
            liquidity=liquidity,
            steps=steps,
            ticks_crossed=crossed,
        )
        market.sqrt_price = sqrt_price
        market.tick = tick
        market.liquidity = liquidity
        return result

    # -- Liquidity ----------------------------------------------------------

    def add_liquidity(
        self,
        market: MarketField,
        ticks: TickArraySet,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """
        Add ``liquidity`` over [tick_lower, tick_upper).

        Returns:
            (amount0, amount1) owed by the provider, rounded up
        """
        check_tick_range(tick_lower, tick_upper, market.tick_spacing)
        if liquidity <= 0:
            raise ValueError("Liquidity amount must be positive")

        self._update_position(market, ticks, tick_lower, tick_upper, liquidity)
        return amounts_from_liquidity(
            market.sqrt_price,
            tick_to_sqrt_price(tick_lower),
            tick_to_sqrt_price(tick_upper),
            liquidity,
            round_up=True,
        )

    def remove_liquidity(
        self,
        market: MarketField,
        ticks: TickArraySet,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """
        Remove ``liquidity`` from [tick_lower, tick_upper).

        Returns:
            (amount0, amount1) paid out, rounded down
        """
        check_tick_range(tick_lower, tick_upper, market.tick_spacing)
        if liquidity <= 0:
            raise ValueError("Liquidity amount must be positive")

        self._update_position(market, ticks, tick_lower, tick_upper, -liquidity)
        return amounts_from_liquidity(
            market.sqrt_price,
            tick_to_sqrt_price(tick_lower),
            tick_to_sqrt_price(tick_upper),
            liquidity,
            round_up=False,
        )

    def _update_position(
        self,
        market: MarketField,
        ticks: TickArraySet,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
    ) -> None:
        for tick, upper in ((tick_lower, False), (tick_upper, True)):
            ticks.update_tick(
                tick,
                market.tick,
                liquidity_delta,
                upper,
                market.fee_growth_global_0,
                market.fee_growth_global_1,
            )
        if tick_lower <= market.tick < tick_upper:
            market.liquidity += liquidity_delta
            if market.liquidity < 0:
                raise InvalidRange("active liquidity would go negative")
