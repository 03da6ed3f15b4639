"""
TriCurve

Three-dimensional concentrated-liquidity pricing, conservation and routing
engine. Core imports are lazily loaded; for direct access import from the
submodules:

    from tricurve.engine import MarketEngine, MarketState
    from tricurve.config import load_config
    from tricurve.exceptions import ConservationViolation
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'MarketEngine':
        from .engine.processor import MarketEngine
        return MarketEngine
    elif name == 'EngineConfig':
        from .config import EngineConfig
        return EngineConfig
    elif name == 'load_config':
        from .config import load_config
        return load_config
    elif name == 'get_logger':
        from .logger import get_logger
        return get_logger
    raise AttributeError(f"module 'tricurve' has no attribute {name!r}")


__all__ = ['MarketEngine', 'EngineConfig', 'load_config', 'get_logger']
