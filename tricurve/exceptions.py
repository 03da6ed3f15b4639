"""
TriCurve Exceptions

Typed failures raised by the pricing, conservation and routing engine.

Every failure is terminal for the operation that raised it. The ``retryable``
flag tells the caller whether resubmitting later can succeed ("try again
later", e.g. a stale commitment) or whether the input is never valid as
submitted (e.g. a conservation violation or an over-long route).
"""


class TriCurveError(Exception):
    """Base exception for TriCurve."""
    retryable = False


# -- Arithmetic ------------------------------------------------------------

class ArithmeticFault(TriCurveError):
    """Fixed-point arithmetic failure."""
    pass


class Overflow(ArithmeticFault):
    """Result does not fit the fixed-point representation."""
    pass


class DomainError(ArithmeticFault):
    """Input outside the mathematical domain (division by zero, ln of x <= 0)."""
    pass


# -- Tick / liquidity math -------------------------------------------------

class TickMathError(TriCurveError):
    """Tick or liquidity-range failure."""
    pass


class TickOutOfBounds(TickMathError):
    """Tick or square-root price outside [MIN_TICK, MAX_TICK]."""
    pass


class InvalidRange(TickMathError):
    """Degenerate or misaligned price range."""
    pass


# -- Conservation ----------------------------------------------------------

class InvalidWeights(TriCurveError):
    """Domain weights do not sum to the basis-point denominator."""
    pass


class ConservationViolation(TriCurveError):
    """Weighted log-growth sum is outside the conservation tolerance."""
    pass


# -- Field commitments -----------------------------------------------------

class CommitmentRejected(TriCurveError):
    """A field commitment failed verification."""
    pass


class StaleCommitment(CommitmentRejected):
    """Commitment snapshot is older than its staleness window."""
    retryable = True


class UpdateTooFrequent(CommitmentRejected):
    """Source submitted again before the minimum update interval elapsed."""
    retryable = True


class RateOfChangeExceeded(CommitmentRejected):
    """A scalar moved faster than the Lipschitz bound allows."""
    pass


class ConvexBoundViolation(CommitmentRejected):
    """Claimed potential lies outside the convex envelope of the model."""
    pass


class OptimalityGapExceeded(CommitmentRejected):
    """Claimed optimal solution is too far from the verifiable bound."""
    pass


class InvalidCommitment(CommitmentRejected):
    """Commitment is structurally malformed."""
    pass


# -- Routing ---------------------------------------------------------------

class RoutingError(TriCurveError):
    """Route discovery or planning failure."""
    pass


class NoRouteFound(RoutingError):
    """No direct or hub route connects the two tokens."""
    pass


class RouteTooComplex(RoutingError):
    """Route exceeds the hop or segment bounds."""
    pass
