"""
TriCurve Hub Router

Hub-and-spoke routing: every pool pairs an asset with the hub, so any route
is either
  - Direct{from, to}        one side is the hub
  - TwoHop{from, hub, to}   token_in → hub → token_out

Segment planning simulates each hop on a private copy of the pool's market
and counts the constant-liquidity swap steps it takes. More than
MAX_SEGMENTS_PER_HOP per hop or MAX_SEGMENTS_PER_TRADE in total fails with
RouteTooComplex; routes are never silently truncated.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tricurve.constants import (
    BPS_DENOMINATOR,
    DEFAULT_BASE_FEE_BPS,
    MAX_ROUTE_HOPS,
    MAX_SEGMENTS_PER_HOP,
    MAX_SEGMENTS_PER_TRADE,
)
from tricurve.engine.liquidity import ConcentratedLiquidityEngine
from tricurve.engine.market import MarketField
from tricurve.engine.tick_math import TickArraySet
from tricurve.exceptions import NoRouteFound, RouteTooComplex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class RouteKind(str, Enum):
    DIRECT = "direct"
    TWO_HOP = "two_hop"


@dataclass
class PoolInfo:
    """A pool pairing ``token_0`` with ``token_1``; one of them is the hub."""
    pool_id: str
    token_0: str
    token_1: str
    fee_bps: int = DEFAULT_BASE_FEE_BPS
    market: Optional[MarketField] = None
    ticks: Optional[TickArraySet] = None

    def has_token(self, token: str) -> bool:
        return token in (self.token_0, self.token_1)

    def connects(self, a: str, b: str) -> bool:
        return {a, b} == {self.token_0, self.token_1}

    def zero_for_one(self, token_in: str) -> bool:
        return token_in == self.token_0


@dataclass(frozen=True)
class Hop:
    pool: PoolInfo
    token_in: str
    token_out: str


@dataclass(frozen=True)
class Route:
    kind: RouteKind
    hops: Tuple[Hop, ...]

    @property
    def token_in(self) -> str:
        return self.hops[0].token_in

    @property
    def token_out(self) -> str:
        return self.hops[-1].token_out

    @property
    def hub(self) -> Optional[str]:
        return self.hops[0].token_out if self.kind == RouteKind.TWO_HOP else None

    @property
    def hop_count(self) -> int:
        return len(self.hops)

    @property
    def tokens(self) -> Tuple[str, ...]:
        return (self.token_in,) + tuple(hop.token_out for hop in self.hops)


@dataclass
class HopPlan:
    hop: Hop
    amount_in: int
    amount_out: int
    segments: int
    ticks_crossed: int = 0


@dataclass
class SegmentPlan:
    route: Route
    hops: List[HopPlan] = field(default_factory=list)

    @property
    def total_segments(self) -> int:
        return sum(h.segments for h in self.hops)

    @property
    def amount_in(self) -> int:
        return self.hops[0].amount_in if self.hops else 0

    @property
    def amount_out(self) -> int:
        return self.hops[-1].amount_out if self.hops else 0


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class HubRouter:
    """Route discovery and segment planning through a single hub token."""

    def __init__(self, hub_token: str, engine: Optional[ConcentratedLiquidityEngine] = None):
        self.hub_token = hub_token
        self.engine = engine or ConcentratedLiquidityEngine()
        self._pools: Dict[str, PoolInfo] = {}

    # -- Pool registry ------------------------------------------------------

    def add_pool(self, pool: PoolInfo) -> None:
        if pool.token_0 == pool.token_1:
            raise ValueError("Pool tokens must differ")
        if not pool.has_token(self.hub_token):
            raise ValueError(
                f"Pool {pool.pool_id} ({pool.token_0}/{pool.token_1}) does not include hub {self.hub_token}"
            )
        self._pools[pool.pool_id] = pool

    def remove_pool(self, pool_id: str) -> None:
        self._pools.pop(pool_id, None)

    def get_pool(self, pool_id: str) -> Optional[PoolInfo]:
        return self._pools.get(pool_id)

    @property
    def pools(self) -> List[PoolInfo]:
        return list(self._pools.values())

    # -- Route discovery ----------------------------------------------------

    @staticmethod
    def _best_pool(pools: Iterable[PoolInfo], a: str, b: str) -> Optional[PoolInfo]:
        candidates = [p for p in pools if p.connects(a, b)]
        if not candidates:
            return None
        return min(candidates, key=lambda p: (p.fee_bps, p.pool_id))

    def find_route(
        self,
        token_in: str,
        token_out: str,
        pools: Optional[Iterable[PoolInfo]] = None,
    ) -> Route:
        """
        Direct route when either token is the hub, otherwise token_in → hub → token_out.

        Raises:
            NoRouteFound: same token on both sides, or a missing pool
        """
        if token_in == token_out:
            raise NoRouteFound(f"Cannot route {token_in} to itself")
        available = list(pools) if pools is not None else self.pools

        if self.hub_token in (token_in, token_out):
            pool = self._best_pool(available, token_in, token_out)
            if pool is None:
                raise NoRouteFound(f"No pool for {token_in}/{token_out}")
            return Route(RouteKind.DIRECT, (Hop(pool, token_in, token_out),))

        first = self._best_pool(available, token_in, self.hub_token)
        second = self._best_pool(available, self.hub_token, token_out)
        if first is None or second is None:
            missing = f"{token_in}/{self.hub_token}" if first is None else f"{self.hub_token}/{token_out}"
            raise NoRouteFound(f"No route {token_in} → {token_out}: missing {missing} pool")
        return Route(
            RouteKind.TWO_HOP,
            (Hop(first, token_in, self.hub_token), Hop(second, self.hub_token, token_out)),
        )

    def validate_route(self, route: Route) -> None:
        """
        Raises:
            RouteTooComplex: too many hops
            ValueError: discontinuous hops or a hop not served by its pool
        """
        if not 1 <= route.hop_count <= MAX_ROUTE_HOPS:
            raise RouteTooComplex(f"Route has {route.hop_count} hops, max {MAX_ROUTE_HOPS}")
        for i, hop in enumerate(route.hops):
            if not hop.pool.connects(hop.token_in, hop.token_out):
                raise ValueError(f"Hop {i} pool {hop.pool.pool_id} does not serve {hop.token_in}/{hop.token_out}")
            if i and route.hops[i - 1].token_out != hop.token_in:
                raise ValueError(f"Route is discontinuous at hop {i}")
        if route.kind == RouteKind.TWO_HOP and route.hub != self.hub_token:
            raise ValueError("Two-hop route must pass through the hub")

    # -- Segment planning ---------------------------------------------------

    def plan_segments(self, route: Route, amount: int) -> SegmentPlan:
        """
        Simulate the route for an exact input ``amount``, counting segments.

        Each hop's output feeds the next hop. Pool state is never mutated.

        Raises:
            RouteTooComplex: a hop or the whole trade needs too many segments
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")
        self.validate_route(route)

        plan = SegmentPlan(route)
        amount_in = amount
        for i, hop in enumerate(route.hops):
            hop_plan = self._simulate_hop(hop, amount_in)
            if hop_plan.segments > MAX_SEGMENTS_PER_HOP:
                raise RouteTooComplex(
                    f"Hop {i} via {hop.pool.pool_id} needs {hop_plan.segments} segments, "
                    f"max {MAX_SEGMENTS_PER_HOP}"
                )
            plan.hops.append(hop_plan)
            if plan.total_segments > MAX_SEGMENTS_PER_TRADE:
                raise RouteTooComplex(
                    f"Route needs {plan.total_segments} segments, max {MAX_SEGMENTS_PER_TRADE}"
                )
            amount_in = hop_plan.amount_out

        logger.debug(
            "Planned %s: %s segments, %s → %s",
            " → ".join(route.tokens), plan.total_segments, plan.amount_in, plan.amount_out,
        )
        return plan

    def _simulate_hop(self, hop: Hop, amount_in: int) -> HopPlan:
        pool = hop.pool
        after_fee = amount_in * (BPS_DENOMINATOR - pool.fee_bps) // BPS_DENOMINATOR
        if pool.market is None or pool.ticks is None:
            return HopPlan(hop, amount_in, after_fee, segments=1)
        if after_fee == 0:
            return HopPlan(hop, amount_in, 0, segments=1)

        market = copy.deepcopy(pool.market)
        ticks = copy.deepcopy(pool.ticks)
        result = self.engine.swap(market, ticks, after_fee, zero_for_one=pool.zero_for_one(hop.token_in))
        return HopPlan(
            hop,
            amount_in,
            result.amount_out,
            segments=max(1, len(result.steps)),
            ticks_crossed=result.ticks_crossed,
        )

    def route_summary(self, route: Route) -> Dict[str, Any]:
        return {
            "kind": route.kind.value,
            "path": " → ".join(route.tokens),
            "hops": route.hop_count,
            "pools": [hop.pool.pool_id for hop in route.hops],
            "total_fee_bps": sum(hop.pool.fee_bps for hop in route.hops),
        }
