"""
TriCurve Market Engine

Single entry point for state transitions of one market:
  - execute_trade      swap → path work → fee / rebate → conservation → buffer
  - execute_rebase     yield / funding / leverage settlement / weight change
  - apply_commitment   verified field commitment replaces position and weights

Every operation runs against a private deep copy of the MarketState and
returns a StateDelta carrying the new state. The input state is never
touched, so a failed check leaves nothing half-applied. Serializing access
to a market is the caller's job; the engine does no locking.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from tricurve.config import EngineConfig
from tricurve.constants import EPOCH_DURATION, Q64
from tricurve.engine.commitment import CommitmentHistory, FieldCommitment, FieldCommitmentVerifier
from tricurve.engine.conservation import (
    FACTOR_NAMES,
    ConservationReport,
    ConservationVerifier,
    RebaseOperation,
)
from tricurve.engine.fees import FeeOutcome, FeeWorkModel, PriceImprovement
from tricurve.engine.liquidity import ConcentratedLiquidityEngine, SwapResult
from tricurve.engine.market import Buffer, DomainWeights, GrowthFactors, MarketField, Position3D
from tricurve.engine.oracle import TWAPOracle
from tricurve.engine.path import PathIntegrator, PathSegment, TradeDimension, WorkResult, validate_path
from tricurve.engine.potential import PotentialFieldModel
from tricurve.engine.tick_math import TickArraySet
from tricurve.exceptions import ConservationViolation, TriCurveError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State and requests
# ---------------------------------------------------------------------------

@dataclass
class MarketState:
    """Everything one market transition reads and writes."""
    market: MarketField
    ticks: TickArraySet
    buffer: Buffer = field(default_factory=Buffer)
    oracle: TWAPOracle = field(default_factory=TWAPOracle)
    commitments: CommitmentHistory = field(default_factory=CommitmentHistory)

    def snapshot(self) -> "MarketState":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class TradeRequest:
    """
    A swap against one market.

    ``price_in`` / ``price_out`` are the Q64 normalizers Π that convert work
    into token units; they default to the mean of the market coordinates.
    """
    amount: int
    zero_for_one: bool
    exact_input: bool = True
    sqrt_price_limit: Optional[int] = None
    price_in: Optional[int] = None
    price_out: Optional[int] = None
    route_hint: Optional[str] = None


@dataclass(frozen=True)
class RebaseRequest:
    """
    A rebase proposes growth factors for the domains.

    ``balance_with`` names the factor solved so the conservation law closes
    exactly (the buffer by default); None means the factors must already
    balance. ``new_weights`` is required for WEIGHT_CHANGE.
    """
    operation: RebaseOperation
    factors: GrowthFactors = field(default_factory=GrowthFactors)
    balance_with: Optional[str] = "g_tau"
    new_weights: Optional[DomainWeights] = None


@dataclass
class StateDelta:
    """Accepted transition: the new state plus what it cost or paid."""
    state: MarketState
    fee: int = 0
    rebate: int = 0
    events: List[Dict[str, Any]] = field(default_factory=list)
    work: Optional[WorkResult] = None
    swap: Optional[SwapResult] = None
    fee_outcome: Optional[FeeOutcome] = None
    conservation: Optional[ConservationReport] = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class MarketEngine:
    """Applies trades, rebases and field commitments atomically."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.liquidity = ConcentratedLiquidityEngine()
        self.conservation = ConservationVerifier(self.config.conservation)
        self.fees = FeeWorkModel(self.config.fees)
        self.commitments = FieldCommitmentVerifier(self.config.commitment)

    # -- Trades -------------------------------------------------------------

    def execute_trade(self, state: MarketState, request: TradeRequest, now: int) -> StateDelta:
        """
        Raises:
            ValueError: malformed request or an oracle outlier
            TriCurveError: any failed arithmetic, tick or conservation check
        """
        market_id = state.market.market_id
        try:
            delta = self._execute_trade(state.snapshot(), request, now)
        except (TriCurveError, ValueError) as e:
            logger.warning("Trade rejected on market %s: %s", market_id, e)
            raise
        logger.info(
            "Trade on %s: in=%s out=%s work=%s fee=%s rebate=%s",
            market_id, delta.swap.amount_in, delta.swap.amount_out,
            delta.work.net_work, delta.fee, delta.rebate,
        )
        return delta

    def _execute_trade(self, state: MarketState, request: TradeRequest, now: int) -> StateDelta:
        market = state.market
        buffer = state.buffer

        swap = self.liquidity.swap(
            market,
            state.ticks,
            request.amount,
            request.zero_for_one,
            exact_input=request.exact_input,
            sqrt_price_limit=request.sqrt_price_limit,
        )

        segments = trade_segments(market.position, swap)
        if segments:
            validate_path(segments)
            model = PotentialFieldModel(market.weights)
            work = PathIntegrator(model, self.config.integration).integrate(segments)
            end_position = segments[-1].end
        else:
            work = WorkResult()
            end_position = market.position

        price_in = request.price_in or default_normalizer(market.position)
        price_out = request.price_out or default_normalizer(market.position)

        buffer.roll_epoch(now // EPOCH_DURATION)
        improvement = self._price_improvement(state.oracle, swap, request.zero_for_one, now)
        outcome = self.fees.evaluate(
            work.net_work,
            price_in,
            price_out,
            swap.amount_in,
            swap.amount_out,
            buffer,
            market.weights,
            improvement,
        )

        position, tau, report = self._settle(
            end_position, buffer, outcome.fee - outcome.rebate, market.weights
        )

        market.position = position
        buffer.tau = tau
        if outcome.fee:
            buffer.credit_fee(outcome.fee, outcome.dimension_shares)
            if market.liquidity > 0:
                growth = (outcome.fee << 128) // market.liquidity
                if request.zero_for_one:
                    market.fee_growth_global_0 += growth
                else:
                    market.fee_growth_global_1 += growth
        elif outcome.rebate:
            buffer.debit_rebate(outcome.rebate)

        spot = (market.sqrt_price * market.sqrt_price) >> 128
        if spot > 0:
            state.oracle.record(spot, now)

        market.sequence += 1
        market.last_update_ts = now

        events: List[Dict[str, Any]] = [{
            "event": "swap",
            "market_id": market.market_id,
            "zero_for_one": request.zero_for_one,
            "amount_in": swap.amount_in,
            "amount_out": swap.amount_out,
            "sqrt_price": swap.sqrt_price,
            "tick": swap.tick,
            "ticks_crossed": swap.ticks_crossed,
            "route_hint": request.route_hint,
        }]
        if outcome.fee:
            events.append({"event": "fee", "amount": outcome.fee, "shares": dict(outcome.dimension_shares)})
        if outcome.rebate:
            events.append({"event": "rebate", "amount": outcome.rebate, "clamp": outcome.clamp.value})

        return StateDelta(
            state=state,
            fee=outcome.fee,
            rebate=outcome.rebate,
            events=events,
            work=work,
            swap=swap,
            fee_outcome=outcome,
            conservation=report,
        )

    def _price_improvement(
        self,
        oracle: TWAPOracle,
        swap: SwapResult,
        zero_for_one: bool,
        now: int,
    ) -> Optional[PriceImprovement]:
        reference = oracle.reference_price(now)
        if reference is None or swap.amount_in == 0 or swap.amount_out == 0:
            return None
        # Prices are token1 per token0
        if zero_for_one:
            return PriceImprovement(reference, swap.amount_out * Q64 // swap.amount_in, is_buy=False)
        return PriceImprovement(reference, swap.amount_in * Q64 // swap.amount_out, is_buy=True)

    def _settle(
        self,
        position: Position3D,
        buffer: Buffer,
        change: int,
        weights: DomainWeights,
    ) -> Tuple[Position3D, int, Optional[ConservationReport]]:
        """
        Grow τ by the buffer's balance ratio (balance + change) / balance and
        rebalance a trade dimension so the conservation law still holds.

        ``change`` is the fee credited (positive) or the rebate paid
        (negative), in tokens. A fee into an empty buffer seeds it: τ and
        the position are left as they are.
        """
        if change == 0:
            return position, buffer.tau, None
        if buffer.balance == 0 and change > 0:
            logger.debug("Buffer seeded with %s", change)
            return position, buffer.tau, None

        new_balance = buffer.balance + change
        if new_balance <= 0:
            raise ConservationViolation(f"buffer balance would become non-positive ({new_balance})")
        factors = GrowthFactors(g_tau=new_balance * Q64 // buffer.balance)

        balance_with = next(
            (name for name, w in zip(FACTOR_NAMES[:3], weights.as_tuple()[:3]) if w), None
        )
        if balance_with is None:
            raise ConservationViolation("no weighted trade dimension can absorb the buffer change")
        factors = self.conservation.balance(factors, weights, balance_with)
        report = self.conservation.verify(factors, weights)
        tau = buffer.tau * factors.g_tau // Q64
        if tau <= 0:
            raise ConservationViolation("buffer tau collapsed to zero")
        return scale_position(position, factors), tau, report

    # -- Rebases ------------------------------------------------------------

    def execute_rebase(self, state: MarketState, request: RebaseRequest, now: int) -> StateDelta:
        """
        Raises:
            ConservationViolation: the factors do not conserve value
            ValueError: WEIGHT_CHANGE without new weights
        """
        market_id = state.market.market_id
        try:
            delta = self._execute_rebase(state.snapshot(), request, now)
        except (TriCurveError, ValueError) as e:
            logger.warning("Rebase %s rejected on market %s: %s", request.operation.value, market_id, e)
            raise
        logger.info(
            "Rebase %s on %s: factors=%s",
            request.operation.value, market_id, delta.conservation.factors.as_tuple(),
        )
        return delta

    def _execute_rebase(self, state: MarketState, request: RebaseRequest, now: int) -> StateDelta:
        market = state.market
        weights = market.weights
        if request.operation == RebaseOperation.WEIGHT_CHANGE:
            if request.new_weights is None:
                raise ValueError("WEIGHT_CHANGE rebase requires new_weights")
            weights = request.new_weights
        elif request.new_weights is not None:
            raise ValueError(f"{request.operation.value} rebase cannot change weights")

        factors = request.factors
        if request.balance_with is not None:
            factors = self.conservation.balance(factors, weights, request.balance_with)
        report = self.conservation.verify(factors, weights, request.operation)

        market.position = scale_position(market.position, factors)
        market.weights = weights
        state.buffer.tau = state.buffer.tau * factors.g_tau // Q64
        if state.buffer.tau <= 0:
            raise ConservationViolation("buffer tau collapsed to zero")
        market.sequence += 1
        market.last_update_ts = now

        events = [{
            "event": "rebase",
            "market_id": market.market_id,
            "operation": request.operation.value,
            "factors": factors.as_tuple(),
            "weighted_sum": report.weighted_sum,
        }]
        return StateDelta(state=state, events=events, conservation=report)

    # -- Field commitments --------------------------------------------------

    def apply_commitment(self, state: MarketState, commitment: FieldCommitment, now: int) -> StateDelta:
        """
        Raises:
            CommitmentRejected: the subclass naming the failed check
        """
        market_id = state.market.market_id
        try:
            delta = self._apply_commitment(state.snapshot(), commitment, now)
        except TriCurveError as e:
            logger.warning(
                "Commitment seq=%s rejected on market %s (%s): %s",
                commitment.sequence, market_id, type(e).__name__, e,
            )
            raise
        logger.info("Commitment seq=%s from %s applied to %s", commitment.sequence, commitment.source_key, market_id)
        return delta

    def _apply_commitment(self, state: MarketState, commitment: FieldCommitment, now: int) -> StateDelta:
        self.commitments.verify(commitment, state.commitments, now)
        state.commitments.record(commitment, now)

        market = state.market
        market.position = commitment.position
        market.weights = commitment.weights
        market.sequence += 1
        market.last_update_ts = now

        events = [{
            "event": "commitment",
            "market_id": market.market_id,
            "sequence": commitment.sequence,
            "source": commitment.source_key,
        }]
        return StateDelta(state=state, events=events)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def default_normalizer(position: Position3D) -> int:
    """Mean of the three coordinates, used when no Π is supplied."""
    return (position.S + position.T + position.L) // 3


def scale_position(position: Position3D, factors: GrowthFactors) -> Position3D:
    """Apply g_s, g_t, g_l to the coordinates."""
    return Position3D(
        S=position.S * factors.g_s // Q64,
        T=position.T * factors.g_t // Q64,
        L=position.L * factors.g_l // Q64,
    )


def trade_segments(start: Position3D, swap: SwapResult) -> List[PathSegment]:
    """
    Spot-axis path traced by a swap: S scales by (√P_next / √P_start)² per step.
    Steps that do not move the price contribute no segment.
    """
    segments: List[PathSegment] = []
    current = start
    for step in swap.steps:
        if step.sqrt_price_next == step.sqrt_price_start:
            continue
        s = current.S * step.sqrt_price_next * step.sqrt_price_next // (
            step.sqrt_price_start * step.sqrt_price_start
        )
        if s == current.S:
            continue
        end = current.replace(S=s)
        segments.append(PathSegment(current, end, liquidity=step.liquidity, dimension=TradeDimension.SPOT))
        current = end
    return segments
