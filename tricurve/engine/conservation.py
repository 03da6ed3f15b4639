"""
TriCurve Conservation Law

Every accepted state transition must satisfy

    | w_s·ln g_s + w_t·ln g_t + w_l·ln g_l + w_τ·ln g_τ | / 10000  <=  ε

where g_i are the post/pre growth factors of the spot, time, leverage and
buffer domains. No rebase, fee or rebate may create or destroy aggregate
value beyond fixed-point rounding.

``solve_factor`` computes the unique value of one factor that closes the
equation given the other three; ``solve_g_tau`` is the usual buffer case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from tricurve.config import ConservationConfig
from tricurve.constants import BPS_DENOMINATOR, Q64
from tricurve.engine.fixed_point import div_trunc, exp_q64, ln_q64
from tricurve.engine.market import DomainWeights, GrowthFactors
from tricurve.exceptions import ConservationViolation

logger = logging.getLogger(__name__)

# GrowthFactors field names, in DomainWeights order
FACTOR_NAMES = ("g_s", "g_t", "g_l", "g_tau")


class RebaseOperation(Enum):
    YIELD = "yield"
    FUNDING = "funding"
    LEVERAGE_SETTLEMENT = "leverage_settlement"
    WEIGHT_CHANGE = "weight_change"


@dataclass(frozen=True)
class ConservationReport:
    """Result of one conservation check."""
    weighted_sum: int          # signed Q64, normalized by the bps total
    epsilon: int
    factors: GrowthFactors
    operation: Optional[RebaseOperation] = None

    @property
    def holds(self) -> bool:
        return abs(self.weighted_sum) <= self.epsilon


class ConservationVerifier:
    """Checks and solves the domain-weighted log-growth invariant."""

    def __init__(self, config: Optional[ConservationConfig] = None):
        self.config = config or ConservationConfig()

    @property
    def epsilon(self) -> int:
        return self.config.epsilon

    @staticmethod
    def weighted_log_sum(factors: GrowthFactors, weights: DomainWeights) -> int:
        """Σ w_i·ln g_i / 10000 in Q64. Zero-weight factors do not contribute."""
        total = 0
        for w, g in zip(weights.as_tuple(), factors.as_tuple()):
            if w:
                total += w * ln_q64(g)
        return div_trunc(total, BPS_DENOMINATOR)

    def check(
        self,
        factors: GrowthFactors,
        weights: DomainWeights,
        operation: Optional[RebaseOperation] = None,
    ) -> ConservationReport:
        """Evaluate the invariant without raising."""
        return ConservationReport(
            weighted_sum=self.weighted_log_sum(factors, weights),
            epsilon=self.epsilon,
            factors=factors,
            operation=operation,
        )

    def verify(
        self,
        factors: GrowthFactors,
        weights: DomainWeights,
        operation: Optional[RebaseOperation] = None,
    ) -> ConservationReport:
        """
        Raises:
            ConservationViolation: if the weighted sum exceeds ε
        """
        report = self.check(factors, weights, operation)
        if not report.holds:
            label = operation.value if operation else "transition"
            logger.warning(
                "Conservation violated for %s: weighted_sum=%s epsilon=%s factors=%s",
                label, report.weighted_sum, report.epsilon, factors.as_tuple(),
            )
            raise ConservationViolation(
                f"{label}: weighted log-growth sum {report.weighted_sum} exceeds epsilon {report.epsilon}"
            )
        return report

    def solve_factor(self, factors: GrowthFactors, weights: DomainWeights, name: str) -> int:
        """
        Value of factor ``name`` that makes the weighted sum zero.

        g_i = exp(-Σ_{j≠i} w_j·ln g_j / w_i)

        When w_i is zero the factor cannot move the sum: the other three must
        already balance, and the neutral factor 1 is returned.

        Raises:
            ValueError: on an unknown factor name
            ConservationViolation: if w_i is zero and the rest does not balance
        """
        if name not in FACTOR_NAMES:
            raise ValueError(f"Unknown growth factor: {name}")
        index = FACTOR_NAMES.index(name)
        w_i = weights.as_tuple()[index]

        rest = 0
        for j, (w, g) in enumerate(zip(weights.as_tuple(), factors.as_tuple())):
            if j != index and w:
                rest += w * ln_q64(g)

        if w_i == 0:
            residual = div_trunc(rest, BPS_DENOMINATOR)
            if abs(residual) <= self.epsilon:
                return Q64
            raise ConservationViolation(
                f"{name} has zero weight and cannot absorb residual {residual}"
            )
        return exp_q64(-div_trunc(rest, w_i))

    def solve_g_tau(self, g_s: int, g_t: int, g_l: int, weights: DomainWeights) -> int:
        """Buffer growth factor that balances the given trade-domain factors."""
        return self.solve_factor(GrowthFactors(g_s=g_s, g_t=g_t, g_l=g_l), weights, "g_tau")

    def balance(self, factors: GrowthFactors, weights: DomainWeights, name: str) -> GrowthFactors:
        """Return ``factors`` with ``name`` replaced by its solved value."""
        return replace(factors, **{name: self.solve_factor(factors, weights, name)})
