"""
TriCurve Path Integration

Work along a trading path through (S, T, L) space:

    W = ∫ ∇V · dx  ≈  V(end) - V(start)

Each segment is cut into sub-steps of at most ``max_step_bps`` relative
move. A sub-step whose move stays within ``curvature_threshold_bps`` uses
the midpoint gradient; larger ones use the Hessian-corrected form
∇V·Δ + ½·ΔᵀHΔ evaluated at the sub-step start.

Once ``max_substeps`` binds, sub-steps are spaced geometrically, so a move
of any size is split into equal log-space steps. With the default cap a step
stays far below the 200% relative move at which the quadratic rule changes
sign, for any coordinates inside u128.

With the default 1% sub-steps the relative error of the quadratic rule is
about max_step² / 3 (≈ 3.3e-5).

W > 0 is uphill (fee), W < 0 downhill (rebate-eligible).
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from tricurve.config import IntegrationConfig
from tricurve.constants import BPS_DENOMINATOR, Q64
from tricurve.engine.fixed_point import FRACTIONAL_BITS, check_i128, div_trunc, exp_q64, ln_q64
from tricurve.engine.market import DIMENSIONS, Position3D
from tricurve.engine.potential import PotentialFieldModel

logger = logging.getLogger(__name__)


class TradeDimension(IntEnum):
    SPOT = 0
    TIME = 1
    LEVERAGE = 2
    MIXED = 3


@dataclass(frozen=True)
class PathSegment:
    """One leg of a trade's movement through position space."""
    start: Position3D
    end: Position3D
    liquidity: int = 0
    distance: Optional[int] = None
    dimension: Optional[TradeDimension] = None

    def __post_init__(self):
        if self.liquidity < 0:
            raise ValueError("Segment liquidity must be non-negative")
        delta = self.delta
        if self.distance is None:
            object.__setattr__(self, "distance", sum(abs(d) for d in delta))
        if self.dimension is None:
            moved = [i for i, d in enumerate(delta) if d]
            dimension = TradeDimension(moved[0]) if len(moved) == 1 else TradeDimension.MIXED
            object.__setattr__(self, "dimension", dimension)

    @property
    def delta(self) -> Tuple[int, int, int]:
        return self.start.delta(self.end)

    def max_relative_move_bps(self) -> int:
        return max_relative_move_bps(self.start, self.end)


def max_relative_move_bps(a: Position3D, b: Position3D) -> int:
    """Largest |Δx_i| / min(a_i, b_i) across axes, in bps (rounded up)."""
    return max(
        -(-abs(y - x) * BPS_DENOMINATOR // min(x, y))
        for x, y in zip(a.as_tuple(), b.as_tuple())
    )


@dataclass
class WorkResult:
    """Work along a path. Amounts are Q64 potential units."""
    total_work: int = 0       # Σ|segment work|, always >= 0
    net_work: int = 0         # signed Σ segment work
    weighted_work: int = 0    # mean |segment work|
    segment_count: int = 0
    uphill_work: int = 0
    downhill_work: int = 0
    by_dimension: Dict[str, int] = field(default_factory=lambda: {d: 0 for d in DIMENSIONS})
    substeps: int = 0

    @property
    def is_uphill(self) -> bool:
        return self.net_work > 0

    @property
    def is_downhill(self) -> bool:
        return self.net_work < 0


# ---------------------------------------------------------------------------
# Path construction
# ---------------------------------------------------------------------------

def plan_path(
    start: Position3D,
    end: Position3D,
    cells: int = 1,
    liquidity: int = 0,
) -> List[PathSegment]:
    """
    Split a move into axis-aligned cell traversals.

    Axes are traversed in spot, time, leverage order; each axis that moves is
    cut into ``cells`` equal segments. Identical endpoints give an empty path.
    """
    if cells < 1:
        raise ValueError("cells must be >= 1")

    segments: List[PathSegment] = []
    current = start
    for axis, name in enumerate(("S", "T", "L")):
        origin = getattr(current, name)
        target = getattr(end, name)
        if origin == target:
            continue
        span = target - origin
        for k in range(1, cells + 1):
            value = target if k == cells else origin + div_trunc(span * k, cells)
            point = current.replace(**{name: value})
            segments.append(
                PathSegment(current, point, liquidity=liquidity, dimension=TradeDimension(axis))
            )
            current = point
    return segments


def validate_path(segments: Sequence[PathSegment]) -> None:
    """
    Raises:
        ValueError: on an empty or discontinuous path
    """
    if not segments:
        raise ValueError("Path must contain at least one segment")
    for i in range(1, len(segments)):
        if segments[i].start != segments[i - 1].end:
            raise ValueError(f"Path is discontinuous at segment {i}")


# ---------------------------------------------------------------------------
# Integrator
# ---------------------------------------------------------------------------

class PathIntegrator:
    """Integrates work along a given sequence of segments. Path-agnostic and side-effect free."""

    def __init__(self, model: PotentialFieldModel, config: Optional[IntegrationConfig] = None):
        self.model = model
        self.config = config or IntegrationConfig()

    def integrate(self, segments: Sequence[PathSegment]) -> WorkResult:
        result = WorkResult(segment_count=len(segments))
        for segment in segments:
            per_dim, substeps = self.segment_work(segment)
            work = sum(per_dim)
            result.net_work += work
            result.total_work += abs(work)
            if work > 0:
                result.uphill_work += work
            else:
                result.downhill_work -= work
            for name, value in zip(DIMENSIONS, per_dim):
                result.by_dimension[name] += value
            result.substeps += substeps

        check_i128(result.net_work, "net_work")
        if segments:
            result.weighted_work = result.total_work // len(segments)
        logger.debug(
            "Integrated %s segments (%s sub-steps): net_work=%s",
            result.segment_count, result.substeps, result.net_work,
        )
        return result

    def work_between(self, start: Position3D, end: Position3D) -> WorkResult:
        """Work along the straight segment start → end."""
        if start == end:
            return WorkResult()
        return self.integrate([PathSegment(start, end)])

    def segment_work(self, segment: PathSegment) -> Tuple[Tuple[int, int, int], int]:
        """
        Per-dimension work of one segment and the number of sub-steps used.

        When ``max_substeps`` binds, sub-step points are spaced evenly in
        log space instead of linearly, so every sub-step covers the same
        relative move.
        """
        start, end = segment.start, segment.end
        if start == end:
            return (0, 0, 0), 0

        move = max_relative_move_bps(start, end)
        n = self._substep_count(move)
        if n * self.config.max_step_bps < move:
            points = _geometric_points(start, end, n)
        else:
            points = (_interpolate(start, end, k, n) for k in range(1, n))

        totals = [0, 0, 0]
        prev = start
        for point in itertools.chain(points, (end,)):
            for i, w in enumerate(self._step_work(prev, point)):
                totals[i] += w
            prev = point
        return tuple(totals), n

    def _substep_count(self, move_bps: int) -> int:
        n = max(1, -(-move_bps // self.config.max_step_bps))
        if n > self.config.max_substeps:
            logger.debug("Sub-step count %s capped at %s", n, self.config.max_substeps)
            n = self.config.max_substeps
        return n

    def _step_work(self, a: Position3D, b: Position3D) -> Tuple[int, int, int]:
        delta = a.delta(b)
        if max_relative_move_bps(a, b) <= self.config.curvature_threshold_bps:
            mid = Position3D(*((x + y) // 2 for x, y in zip(a.as_tuple(), b.as_tuple())))
            grad = self.model.gradient(mid)
            return tuple(div_trunc(g * d, 1 << FRACTIONAL_BITS) for g, d in zip(grad, delta))

        grad = self.model.gradient(a)
        hess = self.model.hessian(a)
        return tuple(
            div_trunc(g * d, 1 << FRACTIONAL_BITS) + ((h * d * d) >> (2 * FRACTIONAL_BITS + 1))
            for g, h, d in zip(grad, hess, delta)
        )


def _interpolate(start: Position3D, end: Position3D, k: int, n: int) -> Position3D:
    return Position3D(*(
        x + div_trunc((y - x) * k, n) for x, y in zip(start.as_tuple(), end.as_tuple())
    ))


def _geometric_points(start: Position3D, end: Position3D, n: int) -> Iterator[Position3D]:
    """Interior points x_k = start · (end / start)^(k/n), k = 1 .. n-1."""
    ratios = tuple(
        exp_q64(div_trunc(ln_q64(y) - ln_q64(x), n))
        for x, y in zip(start.as_tuple(), end.as_tuple())
    )
    coords = start.as_tuple()
    for _ in range(1, n):
        coords = tuple(
            max(1, (x * r) >> FRACTIONAL_BITS) if r != Q64 else x
            for x, r in zip(coords, ratios)
        )
        yield Position3D(*coords)
