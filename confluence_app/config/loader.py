"""Configuration loader with layered parameter precedence."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from ..errors import ConfigurationError
from .defaults import StrategyConfig, get_default_config
from .presets import PRESET_OVERRIDES
from .validation import ConfigValidator

logger = structlog.get_logger(__name__)

STRATEGY_FILE = "strategy.yaml"


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with layered precedence."""

    config_dir: Path
    defaults: StrategyConfig
    preset: str = "DEFAULT"

    @classmethod
    def create(cls, config_dir: Optional[Path] = None, preset: Optional[str] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=Path(config_dir),
            defaults=get_default_config(),
            preset=(preset or "DEFAULT").upper(),
        )

    def load_file_config(self) -> dict[str, Any]:
        """Load strategy overrides from ``strategy.yaml`` if present."""
        strategy_file = self.config_dir / STRATEGY_FILE

        if not strategy_file.exists():
            return {}

        with open(strategy_file) as f:
            file_config = yaml.safe_load(f) or {}

        if not isinstance(file_config, dict):
            raise ConfigurationError(
                f"{strategy_file} must contain a mapping of config sections",
                context={"path": str(strategy_file)}
            )

        return file_config.get("strategy", file_config)  # type: ignore[no-any-return]

    def merge_config(self, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Merge configuration with layered precedence.

        Priority order:
        1. Runtime overrides (highest priority)
        2. strategy.yaml in the config directory
        3. Named preset
        4. Global defaults (lowest priority)
        """
        if self.preset not in PRESET_OVERRIDES:
            raise ConfigurationError(
                f"Unknown preset: {self.preset}",
                context={"available": list(PRESET_OVERRIDES)}
            )

        config = self._dataclass_to_dict(self.defaults)
        config = self._deep_merge(config, PRESET_OVERRIDES[self.preset])
        config = self._deep_merge(config, self.load_file_config())

        if overrides:
            config = self._deep_merge(config, overrides)

        return config

    def build_config(self, overrides: Optional[dict[str, Any]] = None) -> StrategyConfig:
        """Merge, validate and freeze the effective strategy configuration."""
        merged = self.merge_config(overrides)

        errors = ConfigValidator.validate_config(merged)
        if errors:
            error_msgs = [f"{err.field}: {err.message} (got: {err.value})" for err in errors]
            logger.error("Strategy configuration validation failed", errors=error_msgs)
            raise ConfigurationError("Invalid strategy configuration", errors=errors)

        try:
            config = get_default_config().with_overrides(merged)
        except KeyError as e:
            raise ConfigurationError(str(e), context={"preset": self.preset}) from e

        logger.info(
            "Strategy configuration loaded",
            preset=self.preset,
            config_dir=str(self.config_dir),
        )
        return config

    def _dataclass_to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert nested dataclasses to dictionary."""
        if hasattr(obj, '__dataclass_fields__'):
            result = {}
            for field_name in obj.__dataclass_fields__:
                value = getattr(obj, field_name)
                if hasattr(value, '__dataclass_fields__'):
                    result[field_name] = self._dataclass_to_dict(value)
                else:
                    result[field_name] = value
            return result
        return obj  # type: ignore[no-any-return]

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_strategy_config(
    config_dir: Optional[Path] = None,
    preset: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> StrategyConfig:
    """Convenience wrapper: build a validated config in one call."""
    return ConfigLoader.create(config_dir, preset).build_config(overrides)
