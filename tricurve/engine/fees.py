"""
TriCurve Fee / Work Model

Converts the net work of a trade into a fee or a rebate:

  - uphill   (W > 0): fee = ⌈W / Π_in⌉, clamped into [min_fee_bps, max_fee_bps]
                      of the trade amount
  - downhill (W < 0): rebate = |W|·η / Π_out, then capped in order by
                      κ·price improvement, the per-transaction cap, the
                      epoch budget and the buffer balance

W and Π are Q64; fee and rebate are token amounts. Fees flow into the
buffer (τ), rebates are paid out of it and never exceed its balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from tricurve.config import FeeConfig
from tricurve.constants import BPS_DENOMINATOR
from tricurve.engine.fixed_point import div_round_up
from tricurve.engine.market import DIMENSIONS, Buffer, DomainWeights

logger = logging.getLogger(__name__)


class RebateClamp(Enum):
    """Which bound determined the paid rebate."""
    UNCLAMPED = "unclamped"
    PRICE_IMPROVEMENT = "price_improvement"
    TX_CAP = "tx_cap"
    EPOCH_CAP = "epoch_cap"
    INSUFFICIENT_BUFFER = "insufficient_buffer"


@dataclass(frozen=True)
class PriceImprovement:
    """Execution price measured against a reference (TWAP) price, both Q64."""
    reference_price: int
    execution_price: int
    is_buy: bool

    @property
    def bps(self) -> int:
        """Improvement in bps; zero when execution is at or worse than the reference."""
        if self.reference_price <= 0:
            return 0
        if self.is_buy:
            gain = self.reference_price - self.execution_price
        else:
            gain = self.execution_price - self.reference_price
        if gain <= 0:
            return 0
        return gain * BPS_DENOMINATOR // self.reference_price

    def amount(self, trade_amount: int) -> int:
        """Improvement expressed in token units of ``trade_amount``."""
        return trade_amount * self.bps // BPS_DENOMINATOR


@dataclass(frozen=True)
class FeeOutcome:
    work: int
    fee: int = 0
    rebate: int = 0
    uncapped_rebate: int = 0
    clamp: RebateClamp = RebateClamp.UNCLAMPED
    dimension_shares: Dict[str, int] = field(default_factory=dict)

    @property
    def is_fee(self) -> bool:
        return self.fee > 0

    @property
    def is_rebate(self) -> bool:
        return self.rebate > 0


class FeeWorkModel:
    """Fee and rebate computation for one fee configuration."""

    def __init__(self, config: Optional[FeeConfig] = None):
        self.config = config or FeeConfig()

    # -- Fees ---------------------------------------------------------------

    def fee_bounds(self, amount: int) -> Tuple[int, int]:
        """(minimum, maximum) fee for a trade of ``amount``."""
        lo = div_round_up(amount * self.config.min_fee_bps, BPS_DENOMINATOR)
        hi = amount * self.config.max_fee_bps // BPS_DENOMINATOR
        return lo, max(lo, hi)

    def fee_from_work(self, work: int, price_in: int, amount_in: int) -> int:
        """Fee in input-token units; zero unless the trade is uphill."""
        if work <= 0:
            return 0
        if price_in <= 0:
            raise ValueError("Input price normalizer must be positive")
        if amount_in <= 0:
            raise ValueError("Trade amount must be positive")
        fee = div_round_up(work, price_in)
        lo, hi = self.fee_bounds(amount_in)
        return min(max(fee, lo), hi)

    def split_fee(self, fee: int, weights: DomainWeights) -> Dict[str, int]:
        """
        Attribute a fee to dimensions by renormalized trade weight.
        Rounding dust goes to spot.
        """
        hat = weights.hat()
        shares = {name: fee * w // BPS_DENOMINATOR for name, w in zip(DIMENSIONS, hat)}
        shares["spot"] = fee - shares["time"] - shares["leverage"]
        return shares

    # -- Rebates ------------------------------------------------------------

    def rebate_caps(
        self,
        improvement_amount: int,
        trade_amount: int,
        buffer: Buffer,
    ) -> Tuple[Tuple[int, RebateClamp], ...]:
        """Caps in the order they are applied."""
        epoch_budget = buffer.epoch_start_balance * self.config.max_rebate_per_epoch_bps // BPS_DENOMINATOR
        return (
            (improvement_amount * self.config.kappa_bps // BPS_DENOMINATOR, RebateClamp.PRICE_IMPROVEMENT),
            (trade_amount * self.config.max_rebate_per_tx_bps // BPS_DENOMINATOR, RebateClamp.TX_CAP),
            (max(0, epoch_budget - buffer.epoch_rebates_paid), RebateClamp.EPOCH_CAP),
            (buffer.balance, RebateClamp.INSUFFICIENT_BUFFER),
        )

    def rebate_from_work(
        self,
        work: int,
        price_out: int,
        improvement_amount: int,
        trade_amount: int,
        buffer: Buffer,
    ) -> Tuple[int, int, RebateClamp]:
        """
        Rebate in output-token units for a downhill trade.

        Returns:
            (rebate, uncapped_rebate, clamp)
        """
        if work >= 0:
            return 0, 0, RebateClamp.UNCLAMPED
        if price_out <= 0:
            raise ValueError("Output price normalizer must be positive")

        uncapped = -work * self.config.rebate_participation_bps // BPS_DENOMINATOR // price_out
        rebate = uncapped
        clamp = RebateClamp.UNCLAMPED
        for cap, reason in self.rebate_caps(improvement_amount, trade_amount, buffer):
            if cap < rebate:
                rebate = cap
                clamp = reason
        return rebate, uncapped, clamp

    # -- Combined -----------------------------------------------------------

    def evaluate(
        self,
        work: int,
        price_in: int,
        price_out: int,
        amount_in: int,
        amount_out: int,
        buffer: Buffer,
        weights: DomainWeights,
        improvement: Optional[PriceImprovement] = None,
    ) -> FeeOutcome:
        """Fee for uphill work, clamped rebate for downhill work, nothing for flat."""
        if work > 0:
            fee = self.fee_from_work(work, price_in, amount_in)
            logger.debug("Uphill work=%s → fee=%s", work, fee)
            return FeeOutcome(work=work, fee=fee, dimension_shares=self.split_fee(fee, weights))

        if work < 0:
            improvement_amount = improvement.amount(amount_out) if improvement else 0
            rebate, uncapped, clamp = self.rebate_from_work(
                work, price_out, improvement_amount, amount_out, buffer
            )
            logger.debug("Downhill work=%s → rebate=%s (uncapped=%s, %s)", work, rebate, uncapped, clamp.value)
            return FeeOutcome(work=work, rebate=rebate, uncapped_rebate=uncapped, clamp=clamp)

        return FeeOutcome(work=0)
