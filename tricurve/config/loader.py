"""
TriCurve Engine Configuration Loader

Loads the tunable engine settings from ``tricurve.toml`` with environment
variable overrides, and produces an immutable ``EngineConfig`` that callers
pass explicitly into every engine component. There is no module-level
configuration singleton.

Environment variable mapping:
    [fees] kappa_bps                 → TRICURVE_FEES_KAPPA_BPS
    [commitment] min_update_interval → TRICURVE_COMMITMENT_MIN_UPDATE_INTERVAL
    ...

Fixed protocol parameters (tick bounds, hop / segment limits, the absolute fee
bounds) are not configurable and live in tricurve.constants.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    try:
        import tomli  # type: ignore[no-redef]
    except ImportError:
        tomli = None  # type: ignore[assignment]

from tricurve.constants import (
    BPS_DENOMINATOR,
    DEFAULT_COMMITMENT_STALENESS,
    MAX_COMMITMENT_STALENESS,
    MAX_FEE_BPS,
    MAX_OPTIMALITY_GAP_BPS,
    MAX_RATE_OF_CHANGE_BPS,
    MAX_REBATE_PER_EPOCH_BPS,
    MAX_REBATE_PER_TX_BPS,
    MAX_TWAP_AGE,
    MIN_FEE_BPS,
    MIN_OBSERVATION_PERIOD,
    MIN_UPDATE_INTERVAL,
    TWAP_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "TRICURVE"
DEFAULT_CONFIG_FILE = "tricurve.toml"


def _env_overrides(section: str, names) -> Dict[str, int]:
    """Collect TRICURVE_<SECTION>_<KEY> integer overrides for one section."""
    overrides: Dict[str, int] = {}
    for name in names:
        if v := os.environ.get(f"{ENV_PREFIX}_{section.upper()}_{name.upper()}"):
            overrides[name] = int(v, 0)
    return overrides


# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of tricurve.toml
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntegrationConfig:
    """[integration] section."""
    curvature_threshold_bps: int = 10
    max_step_bps: int = 100
    max_substeps: int = 1024

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntegrationConfig":
        return cls(
            curvature_threshold_bps=data.get("curvature_threshold_bps", 10),
            max_step_bps=data.get("max_step_bps", 100),
            max_substeps=data.get("max_substeps", 1024),
        )

    def validate(self) -> None:
        if self.curvature_threshold_bps < 0:
            raise ValueError("curvature_threshold_bps must be >= 0")
        if not 0 < self.max_step_bps <= BPS_DENOMINATOR:
            raise ValueError("max_step_bps must be in (0, 10000]")
        if self.max_substeps < 1:
            raise ValueError("max_substeps must be >= 1")


@dataclass(frozen=True)
class ConservationConfig:
    """[conservation] section."""
    # Q64 tolerance on the normalized weighted log sum (2**24 ≈ 9.1e-13)
    epsilon: int = 1 << 24

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConservationConfig":
        return cls(epsilon=data.get("epsilon", 1 << 24))

    def validate(self) -> None:
        if self.epsilon < 0:
            raise ValueError("conservation epsilon must be >= 0")


@dataclass(frozen=True)
class FeeConfig:
    """[fees] section."""
    kappa_bps: int = 5000
    rebate_participation_bps: int = 10000
    max_rebate_per_tx_bps: int = MAX_REBATE_PER_TX_BPS
    max_rebate_per_epoch_bps: int = MAX_REBATE_PER_EPOCH_BPS
    min_fee_bps: int = MIN_FEE_BPS
    max_fee_bps: int = MAX_FEE_BPS

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeConfig":
        return cls(
            kappa_bps=data.get("kappa_bps", 5000),
            rebate_participation_bps=data.get("rebate_participation_bps", 10000),
            max_rebate_per_tx_bps=data.get("max_rebate_per_tx_bps", MAX_REBATE_PER_TX_BPS),
            max_rebate_per_epoch_bps=data.get("max_rebate_per_epoch_bps", MAX_REBATE_PER_EPOCH_BPS),
            min_fee_bps=data.get("min_fee_bps", MIN_FEE_BPS),
            max_fee_bps=data.get("max_fee_bps", MAX_FEE_BPS),
        )

    def validate(self) -> None:
        if not 0 <= self.kappa_bps <= BPS_DENOMINATOR:
            raise ValueError("kappa_bps must be in [0, 10000]")
        if not 0 <= self.rebate_participation_bps <= BPS_DENOMINATOR:
            raise ValueError("rebate_participation_bps must be in [0, 10000]")
        if not MIN_FEE_BPS <= self.min_fee_bps <= self.max_fee_bps <= MAX_FEE_BPS:
            raise ValueError(
                f"fee bounds must satisfy {MIN_FEE_BPS} <= min_fee_bps <= max_fee_bps <= {MAX_FEE_BPS}"
            )
        if self.max_rebate_per_tx_bps < 0 or self.max_rebate_per_epoch_bps < 0:
            raise ValueError("rebate caps must be >= 0")


@dataclass(frozen=True)
class CommitmentConfig:
    """[commitment] section."""
    default_max_staleness: int = DEFAULT_COMMITMENT_STALENESS
    min_update_interval: int = MIN_UPDATE_INTERVAL
    max_rate_of_change_bps: int = MAX_RATE_OF_CHANGE_BPS
    max_weight_change_bps: int = MAX_RATE_OF_CHANGE_BPS
    # Q64 slack on claimed potentials (2**44 ≈ 9.5e-7)
    potential_tolerance: int = 1 << 44
    max_optimality_gap_bps: int = MAX_OPTIMALITY_GAP_BPS

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitmentConfig":
        return cls(
            default_max_staleness=data.get("default_max_staleness", DEFAULT_COMMITMENT_STALENESS),
            min_update_interval=data.get("min_update_interval", MIN_UPDATE_INTERVAL),
            max_rate_of_change_bps=data.get("max_rate_of_change_bps", MAX_RATE_OF_CHANGE_BPS),
            max_weight_change_bps=data.get("max_weight_change_bps", MAX_RATE_OF_CHANGE_BPS),
            potential_tolerance=data.get("potential_tolerance", 1 << 44),
            max_optimality_gap_bps=data.get("max_optimality_gap_bps", MAX_OPTIMALITY_GAP_BPS),
        )

    def validate(self) -> None:
        if not 0 < self.default_max_staleness <= MAX_COMMITMENT_STALENESS:
            raise ValueError(f"default_max_staleness must be in (0, {MAX_COMMITMENT_STALENESS}]")
        if self.min_update_interval < 0:
            raise ValueError("min_update_interval must be >= 0")
        if self.max_rate_of_change_bps <= 0 or self.max_weight_change_bps < 0:
            raise ValueError("rate-of-change bounds must be positive")
        if self.potential_tolerance < 0:
            raise ValueError("potential_tolerance must be >= 0")
        if not 0 <= self.max_optimality_gap_bps <= MAX_OPTIMALITY_GAP_BPS:
            raise ValueError(f"max_optimality_gap_bps must be in [0, {MAX_OPTIMALITY_GAP_BPS}]")


@dataclass(frozen=True)
class OracleConfig:
    """[oracle] section."""
    twap_window: int = TWAP_WINDOW_SECONDS
    min_observation_period: int = MIN_OBSERVATION_PERIOD
    max_twap_age: int = MAX_TWAP_AGE

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            twap_window=data.get("twap_window", TWAP_WINDOW_SECONDS),
            min_observation_period=data.get("min_observation_period", MIN_OBSERVATION_PERIOD),
            max_twap_age=data.get("max_twap_age", MAX_TWAP_AGE),
        )

    def validate(self) -> None:
        if self.twap_window <= 0:
            raise ValueError("twap_window must be positive")
        if self.min_observation_period < 0:
            raise ValueError("min_observation_period must be >= 0")
        if self.max_twap_age < self.twap_window:
            raise ValueError("max_twap_age must be >= twap_window")


# -----------------------------------------------------------------------
# Top-level engine config
# -----------------------------------------------------------------------

_SECTIONS = {
    "integration": IntegrationConfig,
    "conservation": ConservationConfig,
    "fees": FeeConfig,
    "commitment": CommitmentConfig,
    "oracle": OracleConfig,
}


@dataclass(frozen=True)
class EngineConfig:
    """
    Immutable engine configuration.

    Built once by the embedding application and handed to every engine
    component; components never read configuration from anywhere else.
    """
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    conservation: ConservationConfig = field(default_factory=ConservationConfig)
    fees: FeeConfig = field(default_factory=FeeConfig)
    commitment: CommitmentConfig = field(default_factory=CommitmentConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any], apply_env: bool = False) -> "EngineConfig":
        """Create an EngineConfig from a parsed TOML dict."""
        sections = {}
        for name, section_cls in _SECTIONS.items():
            raw = dict(data.get(name, {}))
            if apply_env:
                raw.update(_env_overrides(name, (f.name for f in fields(section_cls))))
            sections[name] = section_cls.from_dict(raw)
        cfg = cls(**sections)
        cfg.validate()
        return cfg

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """
        Load configuration from a TOML file, then apply env overrides.

        A missing file is not an error: defaults plus env overrides are used.
        """
        if tomli is None:
            raise ImportError(
                "tomli is required for TOML config loading. "
                "Install it: pip install tomli"
            )

        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            return cls.from_dict({}, apply_env=True)

        with open(path, "rb") as f:
            raw = tomli.load(f)
        return cls.from_dict(raw, apply_env=True)

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ValueError: on invalid config
        """
        self.integration.validate()
        self.conservation.validate()
        self.fees.validate()
        self.commitment.validate()
        self.oracle.validate()
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics and round-tripping into from_dict)."""
        return {name: asdict(getattr(self, name)) for name in _SECTIONS}


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load the engine configuration.

    Resolution order: explicit ``path``, then ``TRICURVE_CONFIG``, then
    ``tricurve.toml`` in the working directory.
    """
    config_path = path or os.environ.get(f"{ENV_PREFIX}_CONFIG", DEFAULT_CONFIG_FILE)
    cfg = EngineConfig.from_file(config_path)
    logger.debug("Engine config loaded from %s: %s", config_path, cfg.to_dict())
    return cfg
