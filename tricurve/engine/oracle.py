"""
TriCurve TWAP Oracle

The reference price that trades are measured against when a downhill
trade asks for a rebate. The oracle keeps a log-price accumulator, so the
TWAP over any window is a geometric mean:

    twap = exp( (A(t_end) - A(t_start)) / (t_end - t_start) ),
    A(t) = Σ ln(P_i) · Δt_i

Prices are Q64, accumulators signed Q64·seconds, and timestamps integer
seconds supplied by the caller. A recorded price holds until the next
observation.

An observation is refused when it moves more than MAX_PRICE_CHANGE_BPS
from the last one, or when time runs backwards. A second observation at the
same timestamp replaces the first. The TWAP is withheld until the history
covers ``min_observation_period`` and once the last observation is older
than ``max_twap_age``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import List, Optional

from tricurve.config import OracleConfig
from tricurve.constants import BPS_DENOMINATOR, MAX_OBSERVATIONS, MAX_PRICE_CHANGE_BPS
from tricurve.engine.fixed_point import div_trunc, exp_q64, isqrt, ln_q64
from tricurve.engine.tick_math import sqrt_price_to_tick

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    timestamp: int
    price: int
    # Σ ln(price) · dt up to ``timestamp``, Q64
    log_price_cumulative: int = 0


class TWAPOracle:
    """Per-market geometric TWAP with a bounded observation history."""

    def __init__(
        self,
        market_id: str = "",
        config: Optional[OracleConfig] = None,
        max_observations: int = MAX_OBSERVATIONS,
    ):
        self.market_id = market_id
        self.config = config or OracleConfig()
        self.max_observations = max_observations
        self._history: List[Observation] = []
        # Parallel to _history, for bisect lookups
        self._times: List[int] = []

    @property
    def observation_count(self) -> int:
        return len(self._history)

    @property
    def latest(self) -> Optional[Observation]:
        return self._history[-1] if self._history else None

    @property
    def latest_price(self) -> Optional[int]:
        last = self.latest
        return last.price if last else None

    # -- Recording ----------------------------------------------------------

    def record(self, price: int, timestamp: int) -> Observation:
        """
        Append the post-trade price.

        Raises:
            ValueError: non-positive price, outlier move, or a timestamp
                before the last observation
        """
        if price <= 0:
            raise ValueError("Price must be positive")

        last = self.latest
        if last is None:
            return self._append(Observation(timestamp, price))

        move_bps = abs(price - last.price) * BPS_DENOMINATOR // last.price
        if move_bps > MAX_PRICE_CHANGE_BPS:
            logger.warning(
                "Oracle %s: outlier %s bps move rejected at t=%s", self.market_id, move_bps, timestamp
            )
            raise ValueError(
                f"Outlier price rejected: {move_bps} bps change exceeds max {MAX_PRICE_CHANGE_BPS} bps"
            )

        elapsed = timestamp - last.timestamp
        if elapsed < 0:
            raise ValueError("Timestamp must be monotonically increasing")
        if elapsed == 0:
            last.price = price
            return last

        cumulative = last.log_price_cumulative + ln_q64(last.price) * elapsed
        return self._append(Observation(timestamp, price, cumulative))

    def _append(self, obs: Observation) -> Observation:
        self._history.append(obs)
        self._times.append(obs.timestamp)
        overflow = len(self._history) - self.max_observations
        if overflow > 0:
            del self._history[:overflow]
            del self._times[:overflow]
        return obs

    # -- Reads --------------------------------------------------------------

    def _at_or_before(self, t: int) -> Optional[Observation]:
        """Latest observation with timestamp <= t, else the oldest one."""
        if not self._history:
            return None
        i = bisect.bisect_right(self._times, t) - 1
        return self._history[max(i, 0)]

    def twap(self, window_seconds: Optional[int] = None) -> Optional[int]:
        """
        Geometric-mean price over the trailing window (default ``twap_window``).

        Returns None with fewer than two observations or before the
        history spans ``min_observation_period``.
        """
        if len(self._history) < 2:
            return None
        first, last = self._history[0], self._history[-1]
        if last.timestamp - first.timestamp < self.config.min_observation_period:
            return None

        window = self.config.twap_window if window_seconds is None else window_seconds
        start = self._at_or_before(last.timestamp - window)
        span = last.timestamp - start.timestamp
        if span <= 0:
            return last.price
        return exp_q64(div_trunc(last.log_price_cumulative - start.log_price_cumulative, span))

    def twap_tick(self, window_seconds: Optional[int] = None) -> Optional[int]:
        price = self.twap(window_seconds)
        if price is None:
            return None
        # sqrt of a Q64 price, rescaled to Q64.96
        return sqrt_price_to_tick(isqrt(price << 128))

    def price_at(self, timestamp: int) -> Optional[int]:
        obs = self._at_or_before(timestamp)
        return obs.price if obs else None

    def get_observations(self, count: int = 50) -> List[Observation]:
        return self._history[-count:]

    # -- Freshness ----------------------------------------------------------

    def age(self, now: int) -> Optional[int]:
        last = self.latest
        return None if last is None else now - last.timestamp

    def is_stale(self, now: int, threshold: Optional[int] = None) -> bool:
        """No observation within ``threshold`` seconds (default ``max_twap_age``)."""
        age = self.age(now)
        if age is None:
            return True
        return age > (self.config.max_twap_age if threshold is None else threshold)

    def reference_price(self, now: int) -> Optional[int]:
        """TWAP for price-improvement checks, or None when missing or stale."""
        if self.is_stale(now):
            return None
        return self.twap()
