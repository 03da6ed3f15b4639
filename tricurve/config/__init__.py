"""
TriCurve Engine Configuration

Loads tricurve.toml into an immutable EngineConfig.
Environment variables override TOML values.
"""

from .loader import (
    CommitmentConfig,
    ConservationConfig,
    EngineConfig,
    FeeConfig,
    IntegrationConfig,
    OracleConfig,
    load_config,
)

__all__ = [
    "CommitmentConfig",
    "ConservationConfig",
    "EngineConfig",
    "FeeConfig",
    "IntegrationConfig",
    "OracleConfig",
    "load_config",
]
