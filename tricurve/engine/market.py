"""
TriCurve Market Data Model

State shared by the engine components:
  - Position3D      (S, T, L) coordinates in Q64, strictly positive
  - DomainWeights   basis-point weights w_s + w_t + w_l + w_tau == 10000
  - GrowthFactors   post/pre ratios of one state transition, in Q64
  - MarketField     price / tick / liquidity / accumulators of one market
  - Buffer          fee reservoir (τ), the fourth conservation dimension
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from tricurve.constants import BPS_DENOMINATOR, DEFAULT_TICK_SPACING, Q64
from tricurve.exceptions import DomainError, InvalidWeights

DIMENSIONS = ("spot", "time", "leverage")


# ---------------------------------------------------------------------------
# Position and weights
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Position3D:
    """Spot / time / leverage coordinates, each a positive Q64 value."""
    S: int
    T: int
    L: int

    def __post_init__(self):
        if self.S <= 0 or self.T <= 0 or self.L <= 0:
            raise ValueError(f"Position coordinates must be positive: {self.as_tuple()}")

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.S, self.T, self.L)

    def delta(self, other: "Position3D") -> Tuple[int, int, int]:
        """Component-wise ``other - self``."""
        return (other.S - self.S, other.T - self.T, other.L - self.L)

    def replace(self, S: Optional[int] = None, T: Optional[int] = None, L: Optional[int] = None) -> "Position3D":
        return Position3D(
            S=self.S if S is None else S,
            T=self.T if T is None else T,
            L=self.L if L is None else L,
        )

    @classmethod
    def unit(cls) -> "Position3D":
        return cls(S=Q64, T=Q64, L=Q64)


@dataclass(frozen=True)
class DomainWeights:
    """Basis-point weights of the spot, time, leverage and buffer domains."""
    w_s: int
    w_t: int
    w_l: int
    w_tau: int = 0

    def __post_init__(self):
        if min(self.w_s, self.w_t, self.w_l, self.w_tau) < 0:
            raise InvalidWeights(f"Weights must be non-negative: {self.as_tuple()}")
        total = self.w_s + self.w_t + self.w_l + self.w_tau
        if total != BPS_DENOMINATOR:
            raise InvalidWeights(f"Weights sum to {total}, expected {BPS_DENOMINATOR}")

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.w_s, self.w_t, self.w_l, self.w_tau)

    @property
    def trade_total(self) -> int:
        return self.w_s + self.w_t + self.w_l

    def hat(self) -> Tuple[int, int, int]:
        """
        Trade weights renormalized to the basis-point total, excluding τ.

        ŵ_i = w_i · 10000 / (w_s + w_t + w_l)
        """
        total = self.trade_total
        if total == 0:
            raise InvalidWeights("Trade weights w_s + w_t + w_l must be positive")
        return tuple(w * BPS_DENOMINATOR // total for w in (self.w_s, self.w_t, self.w_l))


@dataclass(frozen=True)
class GrowthFactors:
    """Post/pre ratios (Q64) of one transition for each domain."""
    g_s: int = Q64
    g_t: int = Q64
    g_l: int = Q64
    g_tau: int = Q64

    def __post_init__(self):
        if min(self.g_s, self.g_t, self.g_l, self.g_tau) <= 0:
            raise DomainError(f"Growth factors must be strictly positive: {self.as_tuple()}")

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.g_s, self.g_t, self.g_l, self.g_tau)


# ---------------------------------------------------------------------------
# Mutable per-market state
# ---------------------------------------------------------------------------

@dataclass
class MarketField:
    """
    Current state of one market.

    Mutated only through the engine, on a private copy that is swapped in
    as a whole once every check has passed.
    """
    market_id: str
    position: Position3D
    weights: DomainWeights
    sqrt_price: int
    tick: int
    liquidity: int = 0
    tick_spacing: int = DEFAULT_TICK_SPACING
    fee_growth_global_0: int = 0
    fee_growth_global_1: int = 0
    sequence: int = 0
    last_update_ts: int = 0


@dataclass
class Buffer:
    """
    Fee reservoir τ.

    ``balance`` is the token amount available for rebates. ``tau`` is the
    buffer's Q64 coordinate in the conservation law: Q64 when the buffer is
    seeded, then scaled by (balance + fee) / balance for every fee and by
    (balance - rebate) / balance for every rebate, so tau / Q64 tracks
    balance growth since the seed. Rebases scale it by their g_tau.
    """
    tau: int = Q64
    balance: int = 0
    fees_collected: int = 0
    rebates_paid: int = 0
    epoch: int = 0
    epoch_start_balance: int = 0
    epoch_rebates_paid: int = 0
    dimension_fees: Dict[str, int] = field(default_factory=lambda: {d: 0 for d in DIMENSIONS})

    def __post_init__(self):
        if self.tau <= 0:
            raise ValueError("Buffer tau must be positive")
        if self.balance < 0:
            raise ValueError("Buffer balance must be non-negative")

    def roll_epoch(self, epoch: int) -> None:
        """Start a new rebate epoch, snapshotting the balance the epoch cap applies to."""
        if epoch != self.epoch:
            self.epoch = epoch
            self.epoch_start_balance = self.balance
            self.epoch_rebates_paid = 0

    def credit_fee(self, amount: int, shares: Dict[str, int]) -> None:
        self.balance += amount
        self.fees_collected += amount
        for dimension, share in shares.items():
            self.dimension_fees[dimension] = self.dimension_fees.get(dimension, 0) + share

    def debit_rebate(self, amount: int) -> None:
        if amount > self.balance:
            raise ValueError(f"Rebate {amount} exceeds buffer balance {self.balance}")
        self.balance -= amount
        self.rebates_paid += amount
        self.epoch_rebates_paid += amount
