"""
TriCurve Protocol Constants

This module consolidates the fixed protocol parameters of the pricing,
conservation and routing engine together with the environment-driven
logger defaults. Constants are organized by category for easy reference.

Protocol parameters are NOT runtime configuration: tunable engine settings
live in tricurve.config and are passed explicitly into every engine call.
"""
from dotenv import dotenv_values

# =============================================================================
# LOGGER SETTINGS (.env)
# =============================================================================
# Read once at import; a missing .env leaves every default in place
_dotenv = dotenv_values(".env")


class EnvString(str):
    """String read from .env under ``key``; remembers its built-in default."""

    def __new__(cls, key: str, default: str):
        raw = _dotenv.get(key)
        obj = super().__new__(cls, default if raw is None else raw)
        obj.key = key
        obj._default = default
        return obj

    def default(self) -> str:
        return self._default


class EnvFlag(int):
    """Boolean read from .env ("true"/"1"/"yes"/"on", any case); remembers its default."""

    def __new__(cls, key: str, default: bool):
        raw = _dotenv.get(key)
        value = default if raw is None else raw.strip().casefold() in {"true", "1", "yes", "on"}
        obj = super().__new__(cls, value)
        obj.key = key
        obj._default = default
        return obj

    def default(self) -> bool:
        return self._default

    def __repr__(self) -> str:
        return repr(bool(self))

    __str__ = __repr__


LOG_LEVEL = EnvString("LOG_LEVEL", "INFO")
LOG_FORMAT = EnvString("LOG_FORMAT", "%(asctime)s - %(levelname)s - %(name)s - %(message)s")
LOG_DATE_FORMAT = EnvString("LOG_DATE_FORMAT", "%Y-%m-%dT%H:%M:%S")
LOG_CONSOLE_HIGHLIGHTING = EnvFlag("LOG_CONSOLE_HIGHLIGHTING", True)

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW ARE PART OF THE SETTLEMENT CONTRACT. THE SETTLEMENT SIDE
# AND THE PLANNING SIDE MUST AGREE ON EVERY ONE OF THEM, OTHERWISE CONSERVATION
# CHECKS AND FIELD COMMITMENTS COMPUTED BY ONE SIDE WILL BE REJECTED BY THE OTHER.

# ==================================================================================
# FIXED-POINT REPRESENTATION
# ==================================================================================
Q64 = 1 << 64            # 1.0 in Q64.64
Q96 = 1 << 96            # 1.0 in Q64.96 (square-root prices)
U128_MAX = (1 << 128) - 1
U256_MAX = (1 << 256) - 1
I128_MIN = -(1 << 127)
I128_MAX = (1 << 127) - 1
BPS_DENOMINATOR = 10_000


# ==================================================================================
# TICK PARAMETERS
# ==================================================================================
MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739                                          # sqrt(1.0001^MIN_TICK) * 2^96
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342   # sqrt(1.0001^MAX_TICK) * 2^96
TICK_ARRAY_SIZE = 32
DEFAULT_TICK_SPACING = 1


# ==================================================================================
# FEE AND REBATE PARAMETERS
# ==================================================================================
MIN_FEE_BPS = 1
MAX_FEE_BPS = 250
DEFAULT_BASE_FEE_BPS = 30
MAX_REBATE_PER_TX_BPS = 100      # 1% of trade amount
MAX_REBATE_PER_EPOCH_BPS = 500   # 5% of the buffer balance at epoch start
EPOCH_DURATION = 86_400          # seconds


# ==================================================================================
# ROUTING PARAMETERS
# ==================================================================================
MAX_ROUTE_HOPS = 2
MAX_SEGMENTS_PER_HOP = 10
MAX_SEGMENTS_PER_TRADE = 20


# ==================================================================================
# FIELD COMMITMENT PARAMETERS
# ==================================================================================
DEFAULT_COMMITMENT_STALENESS = 1800   # 30 minutes
MAX_COMMITMENT_STALENESS = 7200       # 2 hours hard cap for keeper snapshots
MAX_UPDATE_STALENESS = 300            # oracle-sourced snapshots expire after 5 minutes
MIN_UPDATE_INTERVAL = 60              # seconds between accepted updates per source
MAX_RATE_OF_CHANGE_BPS = 500          # per scalar, between consecutive commitments
MAX_OPTIMALITY_GAP_BPS = 100
MAX_VOLATILITY_BPS = 100_000


# ==================================================================================
# ORACLE PARAMETERS
# ==================================================================================
TWAP_WINDOW_SECONDS = 300
MAX_TWAP_AGE = 1800
MIN_OBSERVATION_PERIOD = 60
MAX_PRICE_CHANGE_BPS = 5000           # 50% max single-observation price change
MAX_OBSERVATIONS = 8640


