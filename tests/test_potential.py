"""
Test suite for the TriCurve potential field

Covers:
  - hat-weight renormalization
  - V, ∇V, diagonal Hessian at known points
  - convexity (tangent planes are lower bounds)
  - exact potential differences
"""

import random

import pytest

from tricurve.constants import Q64
from tricurve.engine.fixed_point import LN2_Q64
from tricurve.engine.market import DomainWeights, Position3D
from tricurve.engine.potential import PotentialFieldModel
from tricurve.exceptions import InvalidWeights


def _make_model(w_s=5000, w_t=3000, w_l=2000, w_tau=0):
    return PotentialFieldModel(DomainWeights(w_s, w_t, w_l, w_tau))


def _random_position(rng):
    return Position3D(*(rng.randrange(Q64 // 2, 2 * Q64) for _ in range(3)))


# ============================================================================
#  WEIGHTS
# ============================================================================

class TestHatWeights:
    def test_no_buffer_weight_is_identity(self):
        assert _make_model().hat_weights == (5000, 3000, 2000)

    def test_buffer_weight_renormalized(self):
        model = _make_model(4000, 3000, 2000, 1000)
        assert model.hat_weights == (4444, 3333, 2222)

    def test_fractions(self):
        model = _make_model()
        assert model.weight_fractions[0] == Q64 // 2

    def test_buffer_only_weights_rejected(self):
        with pytest.raises(InvalidWeights, match="positive"):
            _make_model(0, 0, 0, 10000)


# ============================================================================
#  FIELD VALUES
# ============================================================================

class TestPotential:
    """V, gradient and Hessian."""

    def test_zero_at_unit_position(self):
        assert _make_model().potential(Position3D.unit()) == 0

    def test_doubling_spot(self):
        model = _make_model()
        v = model.potential(Position3D(2 * Q64, Q64, Q64))
        assert abs(v + LN2_Q64 // 2) <= 1024

    def test_potential_decreases_with_any_coordinate(self):
        model = _make_model()
        base = Position3D.unit()
        assert model.potential(base.replace(T=2 * Q64)) < model.potential(base)
        assert model.potential(base.replace(L=2 * Q64)) < model.potential(base)

    def test_gradient_at_unit(self):
        model = _make_model()
        assert model.gradient(Position3D.unit()) == tuple(-w for w in model.weight_fractions)

    def test_gradient_scales_inversely(self):
        model = _make_model()
        g = model.gradient(Position3D(2 * Q64, Q64, Q64))
        assert g[0] == -(Q64 // 4)

    def test_hessian_diagonal(self):
        model = _make_model()
        h = model.hessian(Position3D(2 * Q64, Q64, Q64))
        assert h[0] == Q64 // 8
        assert h[1:] == model.weight_fractions[1:]

    def test_quadratic_form_non_negative(self):
        model = _make_model()
        rng = random.Random(3)
        for _ in range(50):
            pos = _random_position(rng)
            delta = tuple(rng.randrange(-Q64 // 4, Q64 // 4) for _ in range(3))
            assert model.quadratic_form(pos, delta) >= 0

    def test_directional_derivative(self):
        model = _make_model()
        d = model.directional_derivative(Position3D.unit(), (Q64, 0, 0))
        assert d == -(Q64 // 2)


class TestConvexity:
    def test_tangent_plane_is_lower_bound(self):
        model = _make_model(3500, 2500, 3000, 1000)
        rng = random.Random(11)
        for _ in range(100):
            anchor = _random_position(rng)
            pos = _random_position(rng)
            assert model.tangent_lower_bound(anchor, pos) <= model.potential(pos)

    def test_tangent_touches_at_anchor(self):
        model = _make_model()
        anchor = Position3D(3 * Q64 // 2, Q64, Q64 // 2)
        assert model.tangent_lower_bound(anchor, anchor) == model.potential(anchor)


class TestPotentialDifference:
    def test_identical_endpoints(self):
        pos = Position3D(3 * Q64, Q64, Q64)
        assert _make_model().potential_difference(pos, pos) == 0

    def test_matches_potential_values(self):
        model = _make_model()
        rng = random.Random(5)
        for _ in range(50):
            a = _random_position(rng)
            b = _random_position(rng)
            expected = model.potential(b) - model.potential(a)
            assert abs(model.potential_difference(a, b) - expected) <= 4096

    def test_antisymmetric(self):
        model = _make_model()
        a = Position3D(Q64, Q64, Q64)
        b = Position3D(2 * Q64, Q64 // 2, 3 * Q64)
        assert abs(model.potential_difference(a, b) + model.potential_difference(b, a)) <= 4096
