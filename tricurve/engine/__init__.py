"""
TriCurve Pricing, Conservation and Routing Engine

Components:
  - Fixed-point math (Q64.64, ln / exp / pow / sqrt)
  - Tick math and tick arrays (Q64.96 square-root prices)
  - Concentrated liquidity (amount deltas, swap loop)
  - Potential field V(S, T, L) and path work integration
  - Conservation law verifier and solver
  - Fee / rebate model with κ-clamp and buffer caps
  - TWAP oracle (price-improvement reference)
  - Field commitment verifier
  - Hub-and-spoke router
  - Market engine (atomic trade / rebase / commitment application)
"""

from .market import (
    DIMENSIONS,
    Buffer,
    DomainWeights,
    GrowthFactors,
    MarketField,
    Position3D,
)
from .tick_math import (
    Tick,
    TickArray,
    TickArrayBitmap,
    TickArraySet,
    sqrt_price_to_tick,
    tick_array_start,
    tick_to_sqrt_price,
)
from .liquidity import (
    ConcentratedLiquidityEngine,
    SwapResult,
    SwapStep,
    amounts_from_liquidity,
    compute_swap_step,
    liquidity_from_amounts,
    next_sqrt_price_from_amount,
)
from .potential import PotentialFieldModel
from .path import (
    PathIntegrator,
    PathSegment,
    TradeDimension,
    WorkResult,
    plan_path,
    validate_path,
)
from .conservation import (
    ConservationReport,
    ConservationVerifier,
    RebaseOperation,
)
from .fees import (
    FeeOutcome,
    FeeWorkModel,
    PriceImprovement,
    RebateClamp,
)
from .oracle import (
    Observation,
    TWAPOracle,
)
from .commitment import (
    CommitmentDecision,
    CommitmentHistory,
    CommitmentStatus,
    FieldCommitment,
    FieldCommitmentVerifier,
    OptimalityClaim,
    SourcePolicy,
    SourceType,
    source_policy,
)
from .router import (
    HubRouter,
    PoolInfo,
    Route,
    RouteKind,
    SegmentPlan,
)
from .processor import (
    MarketEngine,
    MarketState,
    RebaseRequest,
    StateDelta,
    TradeRequest,
)

__all__ = [
    # Market data
    "DIMENSIONS", "Buffer", "DomainWeights", "GrowthFactors", "MarketField", "Position3D",
    # Tick math
    "Tick", "TickArray", "TickArrayBitmap", "TickArraySet",
    "sqrt_price_to_tick", "tick_array_start", "tick_to_sqrt_price",
    # Liquidity
    "ConcentratedLiquidityEngine", "SwapResult", "SwapStep",
    "amounts_from_liquidity", "compute_swap_step", "liquidity_from_amounts",
    "next_sqrt_price_from_amount",
    # Potential / work
    "PotentialFieldModel", "PathIntegrator", "PathSegment", "TradeDimension",
    "WorkResult", "plan_path", "validate_path",
    # Conservation
    "ConservationReport", "ConservationVerifier", "RebaseOperation",
    # Fees
    "FeeOutcome", "FeeWorkModel", "PriceImprovement", "RebateClamp",
    # Oracle
    "Observation", "TWAPOracle",
    # Commitments
    "CommitmentDecision", "CommitmentHistory", "CommitmentStatus", "FieldCommitment",
    "FieldCommitmentVerifier", "OptimalityClaim", "SourcePolicy", "SourceType",
    "source_policy",
    # Routing
    "HubRouter", "PoolInfo", "Route", "RouteKind", "SegmentPlan",
    # Engine
    "MarketEngine", "MarketState", "RebaseRequest", "StateDelta", "TradeRequest",
]
