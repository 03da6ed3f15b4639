"""
TriCurve Potential Field

V(S, T, L) = -(ŵ_s·ln S + ŵ_t·ln T + ŵ_l·ln L)

where ŵ are the trade weights renormalized over spot + time + leverage.
All values are Q64; the potential and gradient are signed.

V is separable and strictly convex, so the Hessian is diagonal and every
tangent plane is a global lower bound. The commitment verifier relies on
the latter to bound externally computed potentials.
"""

from __future__ import annotations

import logging
from typing import Tuple

from tricurve.constants import BPS_DENOMINATOR, Q64
from tricurve.engine.fixed_point import FRACTIONAL_BITS, check_i128, check_u128, div, ln_q64
from tricurve.engine.market import DomainWeights, Position3D

logger = logging.getLogger(__name__)

Vector3 = Tuple[int, int, int]


class PotentialFieldModel:
    """Evaluates V, ∇V and the diagonal Hessian for one set of domain weights."""

    def __init__(self, weights: DomainWeights):
        self.weights = weights
        self.hat_weights: Vector3 = weights.hat()
        # ŵ as Q64 fractions of one
        self.weight_fractions: Vector3 = tuple(
            w * Q64 // BPS_DENOMINATOR for w in self.hat_weights
        )

    def potential(self, pos: Position3D) -> int:
        """V(pos), signed Q64."""
        total = 0
        for w, x in zip(self.weight_fractions, pos.as_tuple()):
            total += w * ln_q64(x)
        return check_i128(-(total >> FRACTIONAL_BITS), "potential")

    def gradient(self, pos: Position3D) -> Vector3:
        """∂V/∂x_i = -ŵ_i / x_i."""
        return tuple(-div(w, x) for w, x in zip(self.weight_fractions, pos.as_tuple()))

    def hessian(self, pos: Position3D) -> Vector3:
        """Diagonal of the Hessian, ∂²V/∂x_i² = ŵ_i / x_i². No cross terms."""
        return tuple(
            check_u128((w << (2 * FRACTIONAL_BITS)) // (x * x), "hessian")
            for w, x in zip(self.weight_fractions, pos.as_tuple())
        )

    def directional_derivative(self, pos: Position3D, delta: Vector3) -> int:
        """∇V(pos) · delta."""
        total = sum(g * d for g, d in zip(self.gradient(pos), delta))
        return check_i128(total >> FRACTIONAL_BITS, "directional_derivative")

    def quadratic_form(self, pos: Position3D, delta: Vector3) -> int:
        """deltaᵀ · H(pos) · delta, always >= 0."""
        total = sum(h * d * d for h, d in zip(self.hessian(pos), delta))
        return total >> (2 * FRACTIONAL_BITS)

    def potential_difference(self, start: Position3D, end: Position3D) -> int:
        """
        Exact ΔV = V(end) - V(start) = -Σ ŵ_i · ln(end_i / start_i).

        Path independent; zero for identical endpoints.
        """
        total = 0
        for w, a, b in zip(self.weight_fractions, start.as_tuple(), end.as_tuple()):
            if a != b:
                total += w * ln_q64(div(b, a))
        return check_i128(-(total >> FRACTIONAL_BITS), "potential_difference")

    def tangent_lower_bound(self, anchor: Position3D, pos: Position3D) -> int:
        """V(anchor) + ∇V(anchor)·(pos - anchor); never above V(pos)."""
        return self.potential(anchor) + self.directional_derivative(anchor, anchor.delta(pos))
