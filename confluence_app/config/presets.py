"""
Named strategy presets.

Every preset is the same pipeline with different constants. Presets are
stored as section overrides on top of the defaults so that the loader can
layer them under YAML and runtime overrides.

Extreme gamma risk stays blocked in every preset: the gamma risk ceiling is
an emergency condition, not a tuning knob.
"""

from typing import Any

from .defaults import StrategyConfig, get_default_config

RELAXED_OVERRIDES: dict[str, Any] = {
    "market": {
        "allowed_gamma_regimes": ("SUPPRESSING", "TRANSITIONAL", "AMPLIFYING"),
        "min_hvn_count": 2,
        "max_lvn_ratio": 0.6,
    },
    "trend": {"min_confluence": 0.5, "trend_alignment_required": False},
    "entry": {"min_setup_confluence": 0.4, "min_setup_score": 0.5},
    "risk": {"excluded_volatility_regimes": (), "max_stop_multiplier": 4.0},
}

AGGRESSIVE_OVERRIDES: dict[str, Any] = {
    "market": {
        "allowed_gamma_regimes": ("SUPPRESSING", "TRANSITIONAL", "AMPLIFYING"),
        "min_hvn_count": 1,
        "max_lvn_ratio": 0.8,
    },
    "trend": {"min_confluence": 0.3, "trend_alignment_required": False},
    "entry": {"min_setup_confluence": 0.3, "min_setup_score": 0.4},
    "risk": {"excluded_volatility_regimes": (), "max_stop_multiplier": 5.0},
    "weights": {"gamma": 0.30, "liquidity": 0.20, "trend": 0.15, "pattern": 0.20, "volatility": 0.15},
}

EXTREME_GAMMA_OVERRIDES: dict[str, Any] = {
    "market": {
        "allowed_gamma_regimes": ("AMPLIFYING",),
        "min_hvn_count": 1,
        "max_lvn_ratio": 0.9,
    },
    "trend": {"min_confluence": 0.4, "trend_alignment_required": False},
    "entry": {"min_setup_confluence": 0.4, "min_setup_score": 0.4},
    "risk": {"excluded_volatility_regimes": (), "max_stop_multiplier": 6.0},
    "weights": {"gamma": 0.40, "liquidity": 0.15, "trend": 0.10, "pattern": 0.25, "volatility": 0.10},
}

CONSERVATIVE_OVERRIDES: dict[str, Any] = {
    "market": {"allowed_gamma_regimes": ("SUPPRESSING",), "min_hvn_count": 4, "max_lvn_ratio": 0.3},
    "trend": {"min_confluence": 0.8},
    "portfolio": {
        "max_concurrent_positions": 2,
        "max_daily_risk_fraction": 0.01,
        "min_signal_confidence": 0.7,
        "accepted_qualities": ("EXCELLENT",),
    },
    "exits": {"max_hold_minutes_early": 60, "max_hold_minutes_late": 45},
}

PRESET_OVERRIDES: dict[str, dict[str, Any]] = {
    "DEFAULT": {},
    "RELAXED": RELAXED_OVERRIDES,
    "AGGRESSIVE": AGGRESSIVE_OVERRIDES,
    "EXTREME_GAMMA": EXTREME_GAMMA_OVERRIDES,
    "CONSERVATIVE": CONSERVATIVE_OVERRIDES,
}

DEFAULT = get_default_config()
RELAXED = DEFAULT.with_overrides(RELAXED_OVERRIDES)
AGGRESSIVE = DEFAULT.with_overrides(AGGRESSIVE_OVERRIDES)
EXTREME_GAMMA = DEFAULT.with_overrides(EXTREME_GAMMA_OVERRIDES)
CONSERVATIVE = DEFAULT.with_overrides(CONSERVATIVE_OVERRIDES)


def get_preset(name: str) -> StrategyConfig:
    """Look up a preset configuration by case-insensitive name."""
    key = name.upper()
    if key not in PRESET_OVERRIDES:
        raise KeyError(f"Unknown preset: {name} (available: {', '.join(PRESET_OVERRIDES)})")
    return DEFAULT.with_overrides(PRESET_OVERRIDES[key])
