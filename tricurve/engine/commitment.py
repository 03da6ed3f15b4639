"""
TriCurve Field Commitment Verification

Externally computed market snapshots ("field commitments") are accepted only
after every check passes, in this order:

  1. structure      weights, coordinates, volatilities, fee, required claims
  2. sequence       strictly increasing
  3. staleness      now - snapshot_ts <= min(max_staleness, source cap)
  4. frequency      minimum interval since the last accepted update from the
                    same source
  5. rate of change per-scalar Lipschitz bound against the last accepted
                    commitment
  6. convex bound   claimed potential inside the tangent-plane envelope of V
  7. optimality     claimed work within MAX_OPTIMALITY_GAP_BPS of ΔV

Any failure rejects the whole commitment. Nothing is partially applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterator, Optional, Tuple

from tricurve.config import CommitmentConfig
from tricurve.constants import (
    BPS_DENOMINATOR,
    MAX_COMMITMENT_STALENESS,
    MAX_FEE_BPS,
    MAX_UPDATE_STALENESS,
    MAX_VOLATILITY_BPS,
    MIN_FEE_BPS,
)
from tricurve.engine.market import DomainWeights, Position3D
from tricurve.engine.potential import PotentialFieldModel
from tricurve.exceptions import (
    CommitmentRejected,
    ConvexBoundViolation,
    InvalidCommitment,
    OptimalityGapExceeded,
    RateOfChangeExceeded,
    StaleCommitment,
    UpdateTooFrequent,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class SourceType(IntEnum):
    KEEPER = 0
    ORACLE = 1
    HYBRID = 2


@dataclass(frozen=True)
class SourcePolicy:
    min_update_interval: int
    max_staleness: int
    requires_optimality: bool = False
    forbids_optimality: bool = False
    requires_potential: bool = False


def source_policy(source_type: SourceType, config: CommitmentConfig) -> SourcePolicy:
    """Verification policy for a source type."""
    if source_type == SourceType.KEEPER:
        return SourcePolicy(
            min_update_interval=config.min_update_interval,
            max_staleness=MAX_COMMITMENT_STALENESS,
            requires_potential=True,
        )
    elif source_type == SourceType.ORACLE:
        return SourcePolicy(
            min_update_interval=config.min_update_interval,
            max_staleness=MAX_UPDATE_STALENESS,
            forbids_optimality=True,
        )
    elif source_type == SourceType.HYBRID:
        return SourcePolicy(
            min_update_interval=config.min_update_interval,
            max_staleness=config.default_max_staleness,
            requires_optimality=True,
            requires_potential=True,
        )
    raise InvalidCommitment(f"Unknown source type: {source_type!r}")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class CommitmentStatus(Enum):
    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OptimalityClaim:
    """Claim that ``claimed_work`` (Q64) is the optimal work from start to end."""
    start: Position3D
    end: Position3D
    claimed_work: int


@dataclass(frozen=True)
class FieldCommitment:
    """
    Externally computed market snapshot.

    Volatilities are in bps, TWAPs and the claimed potential in Q64.
    """
    position: Position3D
    weights: DomainWeights
    sigma_price: int
    sigma_rate: int
    sigma_leverage: int
    twap_0: int
    twap_1: int
    sequence: int
    snapshot_ts: int
    max_staleness: int
    source_type: SourceType
    source_id: str = ""
    fee_bps: int = MIN_FEE_BPS
    claimed_potential: Optional[int] = None
    optimality: Optional[OptimalityClaim] = None

    @property
    def source_key(self) -> str:
        return f"{self.source_type.name.lower()}:{self.source_id}"

    def scalars(self) -> Iterator[Tuple[str, int]]:
        """Named scalars subject to the rate-of-change bound."""
        yield "S", self.position.S
        yield "T", self.position.T
        yield "L", self.position.L
        yield "sigma_price", self.sigma_price
        yield "sigma_rate", self.sigma_rate
        yield "sigma_leverage", self.sigma_leverage
        yield "twap_0", self.twap_0
        yield "twap_1", self.twap_1


@dataclass
class CommitmentHistory:
    """What the verifier remembers between commitments for one market."""
    last_accepted: Optional[FieldCommitment] = None
    last_sequence: Optional[int] = None
    last_accepted_at: Dict[str, int] = field(default_factory=dict)

    def record(self, commitment: FieldCommitment, now: int) -> None:
        self.last_accepted = commitment
        self.last_sequence = commitment.sequence
        self.last_accepted_at[commitment.source_key] = now


@dataclass
class CommitmentDecision:
    commitment: FieldCommitment
    status: CommitmentStatus = CommitmentStatus.RECEIVED
    error: Optional[CommitmentRejected] = None

    @property
    def accepted(self) -> bool:
        return self.status == CommitmentStatus.ACCEPTED

    @property
    def reason(self) -> Optional[str]:
        return type(self.error).__name__ if self.error else None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------

def _change_bps(old: int, new: int) -> int:
    return abs(new - old) * BPS_DENOMINATOR // max(abs(old), 1)


class FieldCommitmentVerifier:
    """Accepts or rejects field commitments. Holds no state of its own."""

    def __init__(self, config: Optional[CommitmentConfig] = None):
        self.config = config or CommitmentConfig()

    def evaluate(
        self,
        commitment: FieldCommitment,
        history: CommitmentHistory,
        now: int,
    ) -> CommitmentDecision:
        """
        Run every check and report the outcome instead of raising.

        ``history`` is not modified; callers record accepted commitments.
        """
        decision = CommitmentDecision(commitment)
        try:
            self.verify(commitment, history, now)
        except CommitmentRejected as e:
            decision.status = CommitmentStatus.REJECTED
            decision.error = e
            logger.warning(
                "Commitment seq=%s from %s rejected (%s): %s",
                commitment.sequence, commitment.source_key, decision.reason, e,
            )
            return decision
        decision.status = CommitmentStatus.ACCEPTED
        return decision

    def verify(self, commitment: FieldCommitment, history: CommitmentHistory, now: int) -> None:
        """
        Raises:
            CommitmentRejected: the subclass naming the first failed check
        """
        policy = source_policy(commitment.source_type, self.config)
        self._check_structure(commitment, policy)
        self._check_sequence(commitment, history)
        self._check_staleness(commitment, policy, now)
        self._check_frequency(commitment, history, policy, now)
        self._check_rate_of_change(commitment, history.last_accepted)
        model = PotentialFieldModel(commitment.weights)
        self._check_convex_bound(commitment, history.last_accepted, model)
        self._check_optimality(commitment, model)

    # -- Individual checks --------------------------------------------------

    def _check_structure(self, c: FieldCommitment, policy: SourcePolicy) -> None:
        if c.weights.trade_total == 0:
            raise InvalidCommitment("trade weights w_s + w_t + w_l must be positive")
        for name, sigma in (
            ("sigma_price", c.sigma_price),
            ("sigma_rate", c.sigma_rate),
            ("sigma_leverage", c.sigma_leverage),
        ):
            if not 0 <= sigma <= MAX_VOLATILITY_BPS:
                raise InvalidCommitment(f"{name}={sigma} outside [0, {MAX_VOLATILITY_BPS}]")
        if c.twap_0 <= 0 or c.twap_1 <= 0:
            raise InvalidCommitment("TWAPs must be positive")
        if not MIN_FEE_BPS <= c.fee_bps <= MAX_FEE_BPS:
            raise InvalidCommitment(f"fee_bps={c.fee_bps} outside [{MIN_FEE_BPS}, {MAX_FEE_BPS}]")
        if c.max_staleness <= 0:
            raise InvalidCommitment("max_staleness must be positive")
        if c.sequence < 0 or c.snapshot_ts < 0:
            raise InvalidCommitment("sequence and snapshot_ts must be non-negative")
        if policy.requires_potential and c.claimed_potential is None:
            raise InvalidCommitment(f"{c.source_type.name} commitments must claim a potential")
        if policy.requires_optimality and c.optimality is None:
            raise InvalidCommitment(f"{c.source_type.name} commitments must carry an optimality claim")
        if policy.forbids_optimality and c.optimality is not None:
            raise InvalidCommitment(f"{c.source_type.name} commitments cannot claim optimality")

    def _check_sequence(self, c: FieldCommitment, history: CommitmentHistory) -> None:
        if history.last_sequence is not None and c.sequence <= history.last_sequence:
            raise InvalidCommitment(
                f"sequence {c.sequence} does not advance past {history.last_sequence}"
            )

    def _check_staleness(self, c: FieldCommitment, policy: SourcePolicy, now: int) -> None:
        if c.snapshot_ts > now:
            raise InvalidCommitment(f"snapshot_ts {c.snapshot_ts} is in the future (now={now})")
        window = min(c.max_staleness, policy.max_staleness)
        age = now - c.snapshot_ts
        if age > window:
            raise StaleCommitment(f"snapshot is {age}s old, window is {window}s")

    def _check_frequency(
        self,
        c: FieldCommitment,
        history: CommitmentHistory,
        policy: SourcePolicy,
        now: int,
    ) -> None:
        last = history.last_accepted_at.get(c.source_key)
        if last is not None and now - last < policy.min_update_interval:
            raise UpdateTooFrequent(
                f"{c.source_key} updated {now - last}s ago, minimum interval is "
                f"{policy.min_update_interval}s"
            )

    def _check_rate_of_change(self, c: FieldCommitment, prev: Optional[FieldCommitment]) -> None:
        if prev is None:
            return
        for (name, new), (_, old) in zip(c.scalars(), prev.scalars()):
            change = _change_bps(old, new)
            if change > self.config.max_rate_of_change_bps:
                raise RateOfChangeExceeded(
                    f"{name} moved {change} bps, limit {self.config.max_rate_of_change_bps} bps"
                )
        for name, new, old in zip(
            ("w_s", "w_t", "w_l", "w_tau"), c.weights.as_tuple(), prev.weights.as_tuple()
        ):
            if abs(new - old) > self.config.max_weight_change_bps:
                raise RateOfChangeExceeded(
                    f"{name} moved {abs(new - old)} bps, limit {self.config.max_weight_change_bps} bps"
                )

    def convex_envelope(
        self,
        c: FieldCommitment,
        prev: Optional[FieldCommitment],
        model: PotentialFieldModel,
    ) -> Tuple[int, int]:
        """
        [lower, upper] bound on the potential at ``c.position``.

        Always the model value V(position) widened by the tolerance. When the
        previous claim used the same weights the range is further narrowed to
        the convexity bounds anchored on that claim:
        V(p0) + ∇V(p0)·Δ <= V(p1) <= V(p0) + ∇V(p1)·Δ.
        """
        tol = self.config.potential_tolerance
        value = model.potential(c.position)
        lower, upper = value - tol, value + tol
        if (
            prev is not None
            and prev.claimed_potential is not None
            and prev.weights == c.weights
        ):
            delta = prev.position.delta(c.position)
            anchored_lower = prev.claimed_potential + model.directional_derivative(prev.position, delta)
            anchored_upper = prev.claimed_potential + model.directional_derivative(c.position, delta)
            lower = max(lower, anchored_lower - tol)
            upper = min(upper, anchored_upper + tol)
        return lower, upper

    def _check_convex_bound(
        self,
        c: FieldCommitment,
        prev: Optional[FieldCommitment],
        model: PotentialFieldModel,
    ) -> None:
        if c.claimed_potential is None:
            return
        lower, upper = self.convex_envelope(c, prev, model)
        if not lower <= c.claimed_potential <= upper:
            raise ConvexBoundViolation(
                f"claimed potential {c.claimed_potential} outside [{lower}, {upper}]"
            )

    def optimality_gap_bps(self, claim: OptimalityClaim, model: PotentialFieldModel) -> int:
        """Gap between claimed work and the path-independent ΔV, in bps of |ΔV|."""
        bound = model.potential_difference(claim.start, claim.end)
        return abs(claim.claimed_work - bound) * BPS_DENOMINATOR // max(abs(bound), 1)

    def _check_optimality(self, c: FieldCommitment, model: PotentialFieldModel) -> None:
        if c.optimality is None:
            return
        gap = self.optimality_gap_bps(c.optimality, model)
        if gap > self.config.max_optimality_gap_bps:
            raise OptimalityGapExceeded(
                f"optimality gap {gap} bps exceeds {self.config.max_optimality_gap_bps} bps"
            )
