"""
Test suite for the TriCurve fee / work model

Covers:
  - uphill fee from work and its bps clamp
  - fee attribution across dimensions
  - downhill rebate and each cap in order (κ·improvement, per-tx, epoch, buffer)
  - price improvement measurement
  - reference scenario fee
"""

from decimal import Decimal

import pytest

from tricurve.config import FeeConfig
from tricurve.constants import Q64
from tricurve.engine.fees import FeeWorkModel, PriceImprovement, RebateClamp
from tricurve.engine.fixed_point import LN2_Q64
from tricurve.engine.market import Buffer, DomainWeights, Position3D
from tricurve.engine.path import PathIntegrator
from tricurve.engine.potential import PotentialFieldModel

SCENARIO_WEIGHTS = DomainWeights(5000, 3000, 2000, 0)


def _make_buffer(balance=10 ** 7, epoch_start=10 ** 7, epoch_paid=0):
    return Buffer(balance=balance, epoch_start_balance=epoch_start, epoch_rebates_paid=epoch_paid)


# ============================================================================
#  FEES
# ============================================================================

class TestFeeFromWork:
    """Uphill work → fee in input-token units."""

    def setup_method(self):
        self.model = FeeWorkModel()

    def test_fee_bounds(self):
        assert self.model.fee_bounds(10 ** 6) == (100, 25000)
        assert self.model.fee_bounds(1) == (1, 1)

    def test_fee_within_bounds(self):
        assert self.model.fee_from_work(1000 * Q64, Q64, 10 ** 6) == 1000

    def test_fee_rounds_up(self):
        assert self.model.fee_from_work(1000 * Q64 + 1, Q64, 10 ** 6) == 1001

    def test_minimum_fee(self):
        assert self.model.fee_from_work(5 * Q64, Q64, 10 ** 6) == 100

    def test_maximum_fee(self):
        assert self.model.fee_from_work(10 ** 5 * Q64, Q64, 10 ** 6) == 25000

    def test_no_fee_without_uphill_work(self):
        assert self.model.fee_from_work(0, Q64, 10 ** 6) == 0
        assert self.model.fee_from_work(-Q64, Q64, 10 ** 6) == 0

    def test_price_normalizer_scales_fee(self):
        assert self.model.fee_from_work(1000 * Q64, 2 * Q64, 10 ** 6) == 500

    def test_invalid_inputs(self):
        with pytest.raises(ValueError, match="normalizer"):
            self.model.fee_from_work(Q64, 0, 100)
        with pytest.raises(ValueError, match="Trade amount"):
            self.model.fee_from_work(Q64, Q64, 0)

    def test_custom_bounds(self):
        model = FeeWorkModel(FeeConfig(min_fee_bps=10, max_fee_bps=20))
        assert model.fee_from_work(Q64, Q64, 10 ** 6) == 1000
        assert model.fee_from_work(10 ** 4 * Q64, Q64, 10 ** 6) == 2000


class TestSplitFee:
    def test_shares_sum_to_fee(self):
        shares = FeeWorkModel().split_fee(1001, SCENARIO_WEIGHTS)
        assert shares == {"spot": 501, "time": 300, "leverage": 200}

    def test_buffer_weight_excluded(self):
        shares = FeeWorkModel().split_fee(900, DomainWeights(3000, 3000, 3000, 1000))
        assert shares == {"spot": 302, "time": 299, "leverage": 299}


# ============================================================================
#  REBATES
# ============================================================================

class TestRebateFromWork:
    """Downhill work → rebate, capped in order."""

    WORK = -1000 * Q64

    def setup_method(self):
        self.model = FeeWorkModel()

    def test_unclamped(self):
        rebate, uncapped, clamp = self.model.rebate_from_work(
            self.WORK, Q64, 10 ** 6, 10 ** 6, _make_buffer()
        )
        assert (rebate, uncapped, clamp) == (1000, 1000, RebateClamp.UNCLAMPED)

    def test_price_improvement_cap(self):
        rebate, uncapped, clamp = self.model.rebate_from_work(
            self.WORK, Q64, 100, 10 ** 6, _make_buffer()
        )
        assert (rebate, uncapped, clamp) == (50, 1000, RebateClamp.PRICE_IMPROVEMENT)

    def test_no_improvement_no_rebate(self):
        rebate, _, clamp = self.model.rebate_from_work(self.WORK, Q64, 0, 10 ** 6, _make_buffer())
        assert rebate == 0
        assert clamp == RebateClamp.PRICE_IMPROVEMENT

    def test_transaction_cap(self):
        rebate, _, clamp = self.model.rebate_from_work(self.WORK, Q64, 10 ** 6, 10 ** 4, _make_buffer())
        assert (rebate, clamp) == (100, RebateClamp.TX_CAP)

    def test_epoch_cap(self):
        buffer = _make_buffer(epoch_start=10 ** 4, epoch_paid=400)
        rebate, _, clamp = self.model.rebate_from_work(self.WORK, Q64, 10 ** 6, 10 ** 6, buffer)
        assert (rebate, clamp) == (100, RebateClamp.EPOCH_CAP)

    def test_insufficient_buffer(self):
        buffer = _make_buffer(balance=10)
        rebate, _, clamp = self.model.rebate_from_work(self.WORK, Q64, 10 ** 6, 10 ** 6, buffer)
        assert (rebate, clamp) == (10, RebateClamp.INSUFFICIENT_BUFFER)

    def test_rebate_never_exceeds_caps(self):
        buffer = _make_buffer(balance=777)
        for improvement in (0, 1, 10, 999, 10 ** 6):
            for work in (-Q64, -10 * Q64, -10 ** 6 * Q64):
                rebate, _, _ = self.model.rebate_from_work(work, Q64, improvement, 10 ** 6, buffer)
                assert rebate <= improvement * 5000 // 10000
                assert rebate <= buffer.balance

    def test_uphill_work_has_no_rebate(self):
        assert self.model.rebate_from_work(Q64, Q64, 10 ** 6, 10 ** 6, _make_buffer()) == (
            0, 0, RebateClamp.UNCLAMPED,
        )

    def test_participation(self):
        model = FeeWorkModel(FeeConfig(rebate_participation_bps=5000))
        _, uncapped, _ = model.rebate_from_work(self.WORK, Q64, 10 ** 6, 10 ** 6, _make_buffer())
        assert uncapped == 500

    def test_invalid_price(self):
        with pytest.raises(ValueError, match="normalizer"):
            self.model.rebate_from_work(self.WORK, 0, 1, 1, _make_buffer())


class TestPriceImprovement:
    def test_buy_below_reference(self):
        improvement = PriceImprovement(Q64, Q64 * 99 // 100, is_buy=True)
        assert improvement.bps == 100
        assert improvement.amount(10 ** 6) == 10 ** 4

    def test_sell_above_reference(self):
        improvement = PriceImprovement(Q64, Q64 * 102 // 100, is_buy=False)
        assert improvement.bps == 199 or improvement.bps == 200

    def test_worse_execution_is_zero(self):
        assert PriceImprovement(Q64, 2 * Q64, is_buy=True).bps == 0
        assert PriceImprovement(Q64, Q64 // 2, is_buy=False).bps == 0

    def test_missing_reference(self):
        assert PriceImprovement(0, Q64, is_buy=True).bps == 0


class TestEvaluate:
    def test_fee_outcome(self):
        outcome = FeeWorkModel().evaluate(
            1000 * Q64, Q64, Q64, 10 ** 6, 10 ** 6, _make_buffer(), SCENARIO_WEIGHTS
        )
        assert outcome.is_fee and not outcome.is_rebate
        assert outcome.fee == 1000
        assert sum(outcome.dimension_shares.values()) == 1000

    def test_rebate_outcome(self):
        improvement = PriceImprovement(Q64, Q64 * 99 // 100, is_buy=True)
        outcome = FeeWorkModel().evaluate(
            -1000 * Q64, Q64, Q64, 10 ** 6, 10 ** 6, _make_buffer(), SCENARIO_WEIGHTS, improvement
        )
        assert outcome.is_rebate
        assert outcome.rebate == 1000
        assert outcome.clamp == RebateClamp.UNCLAMPED

    def test_rebate_without_reference(self):
        outcome = FeeWorkModel().evaluate(
            -1000 * Q64, Q64, Q64, 10 ** 6, 10 ** 6, _make_buffer(), SCENARIO_WEIGHTS
        )
        assert outcome.rebate == 0
        assert outcome.uncapped_rebate == 1000

    def test_flat_work(self):
        outcome = FeeWorkModel().evaluate(0, Q64, Q64, 10 ** 6, 10 ** 6, _make_buffer(), SCENARIO_WEIGHTS)
        assert not outcome.is_fee and not outcome.is_rebate


# ============================================================================
#  REFERENCE SCENARIO
# ============================================================================

class TestScenarioFee:
    """Spot halving under weights {5000, 3000, 2000, 0} pays ln(2)·5000/10000 / Π."""

    def test_fee_matches_half_ln2(self):
        integrator = PathIntegrator(PotentialFieldModel(SCENARIO_WEIGHTS))
        work = integrator.work_between(Position3D(2 * Q64, Q64, Q64), Position3D.unit()).net_work
        assert work > 0

        price_in = Q64 >> 32
        amount = 10 ** 12
        fee = FeeWorkModel().fee_from_work(work, price_in, amount)
        lo, hi = FeeWorkModel().fee_bounds(amount)
        assert lo < fee < hi

        expected = Decimal(LN2_Q64) / 2 / Decimal(price_in)
        assert abs(Decimal(fee) - expected) / expected < Decimal("1e-4")
