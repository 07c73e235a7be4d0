"""
Strategy configuration: immutable defaults, named presets, YAML loading
and validation.
"""

from .defaults import StrategyConfig, get_default_config
from .loader import ConfigLoader, load_strategy_config
from .presets import get_preset

__all__ = [
    "StrategyConfig",
    "get_default_config",
    "ConfigLoader",
    "load_strategy_config",
    "get_preset",
]
