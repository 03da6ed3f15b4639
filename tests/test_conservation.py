"""
Test suite for the TriCurve conservation law

Covers:
  - weighted log-growth sum and ε tolerance
  - solving g_τ (and any other factor) to close the equation
  - zero-weight factor handling
  - violation reporting
"""

import random

import pytest

from tricurve.config import ConservationConfig
from tricurve.constants import Q64
from tricurve.engine.conservation import ConservationVerifier, RebaseOperation
from tricurve.engine.market import DomainWeights, GrowthFactors
from tricurve.exceptions import ConservationViolation, DomainError


WEIGHTS = DomainWeights(4000, 3000, 2000, 1000)


def _random_weights(rng):
    w_tau = rng.randint(1000, 4000)
    rest = 10000 - w_tau
    w_s = rng.randint(0, rest)
    w_t = rng.randint(0, rest - w_s)
    return DomainWeights(w_s, w_t, rest - w_s - w_t, w_tau)


# ============================================================================
#  CHECK / VERIFY
# ============================================================================

class TestConservationCheck:
    def test_identity_transition_holds(self):
        report = ConservationVerifier().check(GrowthFactors(), WEIGHTS)
        assert report.weighted_sum == 0
        assert report.holds

    def test_pure_growth_violates(self):
        verifier = ConservationVerifier()
        factors = GrowthFactors(g_s=Q64 + Q64 // 100)
        with pytest.raises(ConservationViolation, match="exceeds epsilon"):
            verifier.verify(factors, WEIGHTS, RebaseOperation.YIELD)

    def test_violation_message_names_operation(self):
        verifier = ConservationVerifier()
        with pytest.raises(ConservationViolation, match="funding"):
            verifier.verify(GrowthFactors(g_t=2 * Q64), WEIGHTS, RebaseOperation.FUNDING)

    def test_zero_weight_factor_ignored(self):
        weights = DomainWeights(5000, 5000, 0, 0)
        report = ConservationVerifier().check(GrowthFactors(g_l=3 * Q64, g_tau=Q64 // 7), weights)
        assert report.holds

    def test_custom_epsilon(self):
        verifier = ConservationVerifier(ConservationConfig(epsilon=Q64))
        # 0.4·ln 1.5 ≈ 0.16 < 1
        assert verifier.check(GrowthFactors(g_s=3 * Q64 // 2), WEIGHTS).holds

    def test_non_positive_factor_rejected(self):
        with pytest.raises(DomainError):
            GrowthFactors(g_s=0)


# ============================================================================
#  SOLVER
# ============================================================================

class TestSolveFactor:
    """Solving one factor closes the weighted sum to within ε."""

    def test_solved_g_tau_balances_random_transitions(self):
        rng = random.Random(2024)
        verifier = ConservationVerifier()
        for _ in range(100):
            weights = _random_weights(rng)
            g_s, g_t, g_l = (rng.randrange(Q64 // 2, 2 * Q64) for _ in range(3))
            g_tau = verifier.solve_g_tau(g_s, g_t, g_l, weights)
            factors = GrowthFactors(g_s, g_t, g_l, g_tau)
            assert verifier.verify(factors, weights).holds

    def test_perturbed_solution_rejected(self):
        rng = random.Random(77)
        verifier = ConservationVerifier()
        for _ in range(50):
            weights = _random_weights(rng)
            g_s, g_t, g_l = (rng.randrange(Q64 // 2, 2 * Q64) for _ in range(3))
            g_tau = verifier.solve_g_tau(g_s, g_t, g_l, weights)
            perturbed = g_tau + g_tau // 10 ** 6
            with pytest.raises(ConservationViolation):
                verifier.verify(GrowthFactors(g_s, g_t, g_l, perturbed), weights)

    def test_spot_growth_shrinks_buffer(self):
        verifier = ConservationVerifier()
        g_tau = verifier.solve_g_tau(Q64 + Q64 // 10, Q64, Q64, WEIGHTS)
        assert g_tau < Q64

    def test_balance_other_factor(self):
        verifier = ConservationVerifier()
        factors = verifier.balance(GrowthFactors(g_tau=Q64 + Q64 // 20), WEIGHTS, "g_s")
        assert factors.g_s < Q64
        assert verifier.verify(factors, WEIGHTS).holds

    def test_identity_solution(self):
        assert ConservationVerifier().solve_g_tau(Q64, Q64, Q64, WEIGHTS) == Q64

    def test_zero_weight_balanced(self):
        weights = DomainWeights(5000, 5000, 0, 0)
        assert ConservationVerifier().solve_g_tau(Q64, Q64, Q64, weights) == Q64

    def test_zero_weight_unbalanced(self):
        weights = DomainWeights(5000, 5000, 0, 0)
        with pytest.raises(ConservationViolation, match="zero weight"):
            ConservationVerifier().solve_g_tau(2 * Q64, Q64, Q64, weights)

    def test_unknown_factor(self):
        with pytest.raises(ValueError, match="Unknown growth factor"):
            ConservationVerifier().solve_factor(GrowthFactors(), WEIGHTS, "g_x")
