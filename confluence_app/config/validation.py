"""Configuration validation utilities."""

from dataclasses import dataclass
from typing import Any

GAMMA_REGIMES = ("SUPPRESSING", "AMPLIFYING", "TRANSITIONAL")
GAMMA_RISK_TIERS = ("LOW", "MEDIUM", "HIGH", "EXTREME")
VOLATILITY_REGIMES = ("LOW", "NORMAL", "HIGH", "EXTREME")
SIGNAL_QUALITIES = ("EXCELLENT", "GOOD", "FAIR", "POOR")

WEIGHT_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_fraction(errors: list[ValidationError], params: dict[str, Any], key: str,
                    allow_zero: bool = True) -> None:
    if key not in params:
        return
    value = params[key]
    if not _is_number(value) or not (value >= 0 if allow_zero else value > 0) or value > 1:
        errors.append(ValidationError(
            field=key,
            message="Must be a number between 0 and 1",
            value=value
        ))


def _check_positive(errors: list[ValidationError], params: dict[str, Any], key: str,
                    integer: bool = False, allow_zero: bool = False) -> None:
    if key not in params:
        return
    value = params[key]
    kind_ok = isinstance(value, int) and not isinstance(value, bool) if integer else _is_number(value)
    range_ok = kind_ok and (value >= 0 if allow_zero else value > 0)
    if not range_ok:
        errors.append(ValidationError(
            field=key,
            message=f"Must be a {'non-negative' if allow_zero else 'positive'} "
                    f"{'integer' if integer else 'number'}",
            value=value
        ))


def _check_tags(errors: list[ValidationError], params: dict[str, Any], key: str,
                allowed: tuple[str, ...]) -> None:
    if key not in params:
        return
    value = params[key]
    if not isinstance(value, (list, tuple)) or any(tag not in allowed for tag in value):
        errors.append(ValidationError(
            field=key,
            message=f"Must be a list drawn from {', '.join(allowed)}",
            value=value
        ))


def _check_hour(errors: list[ValidationError], params: dict[str, Any], key: str) -> None:
    if key not in params:
        return
    value = params[key]
    if not _is_number(value) or value < 0 or value >= 24:
        errors.append(ValidationError(
            field=key,
            message="Must be a decimal hour in [0, 24)",
            value=value
        ))


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_market_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate market condition gate parameters."""
        errors: list[ValidationError] = []

        _check_tags(errors, params, "allowed_gamma_regimes", GAMMA_REGIMES)

        if "gamma_risk_ceiling" in params and params["gamma_risk_ceiling"] not in GAMMA_RISK_TIERS:
            errors.append(ValidationError(
                field="gamma_risk_ceiling",
                message=f"Must be one of {', '.join(GAMMA_RISK_TIERS)}",
                value=params["gamma_risk_ceiling"]
            ))

        _check_positive(errors, params, "min_hvn_count", integer=True, allow_zero=True)
        _check_fraction(errors, params, "max_lvn_ratio")
        _check_positive(errors, params, "min_history_bars", integer=True, allow_zero=True)

        return errors

    @staticmethod
    def validate_trend_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate trend gate parameters."""
        errors: list[ValidationError] = []

        _check_fraction(errors, params, "min_confluence")

        if "trend_alignment_required" in params:
            value = params["trend_alignment_required"]
            if not isinstance(value, bool):
                errors.append(ValidationError(
                    field="trend_alignment_required",
                    message="Must be a boolean",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_entry_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate entry trigger gate parameters."""
        errors: list[ValidationError] = []
        _check_fraction(errors, params, "min_setup_confluence")
        _check_fraction(errors, params, "min_setup_score")
        _check_positive(errors, params, "trend_proximity_scale", allow_zero=True)
        _check_positive(errors, params, "price_proximity_scale", allow_zero=True)
        return errors

    @staticmethod
    def validate_risk_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate risk assessment gate parameters."""
        errors: list[ValidationError] = []
        _check_tags(errors, params, "excluded_volatility_regimes", VOLATILITY_REGIMES)
        _check_positive(errors, params, "max_stop_multiplier")

        if "critical_warning_patterns" in params:
            value = params["critical_warning_patterns"]
            if not isinstance(value, (list, tuple)) or not all(isinstance(p, str) and p for p in value):
                errors.append(ValidationError(
                    field="critical_warning_patterns",
                    message="Must be a list of non-empty strings",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_weights(params: dict[str, Any]) -> list[ValidationError]:
        """Validate composite weights: non-negative and summing to 1.0."""
        errors: list[ValidationError] = []

        for key, value in params.items():
            if not _is_number(value) or value < 0:
                errors.append(ValidationError(
                    field=key,
                    message="Weight must be a non-negative number",
                    value=value
                ))

        if not errors:
            total = sum(params.values())
            if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
                errors.append(ValidationError(
                    field="weights",
                    message="Weights must sum to 1.0",
                    value=round(total, 6)
                ))

        return errors

    @staticmethod
    def validate_confluence_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate confluence zone parameters."""
        errors: list[ValidationError] = []
        _check_fraction(errors, params, "tolerance", allow_zero=False)
        _check_positive(errors, params, "max_zones", integer=True)
        return errors

    @staticmethod
    def validate_exit_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate position exit parameters."""
        errors: list[ValidationError] = []

        _check_fraction(errors, params, "stop_loss_fraction", allow_zero=False)
        _check_positive(errors, params, "profit_target_fraction")
        _check_fraction(errors, params, "trail_activation_fraction")
        _check_fraction(errors, params, "trail_stop_fraction", allow_zero=False)
        _check_hour(errors, params, "force_exit_hour")
        _check_hour(errors, params, "expiry_hour")
        _check_positive(errors, params, "max_hold_minutes_early", integer=True)
        _check_positive(errors, params, "max_hold_minutes_late", integer=True)
        _check_positive(errors, params, "decay_window_minutes", integer=True, allow_zero=True)
        _check_fraction(errors, params, "decay_value_fraction")
        _check_positive(errors, params, "expiry_residual_value", allow_zero=True)

        return errors

    @staticmethod
    def validate_portfolio_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate portfolio risk governor parameters."""
        errors: list[ValidationError] = []

        _check_positive(errors, params, "account_balance")
        _check_positive(errors, params, "max_concurrent_positions", integer=True)
        _check_fraction(errors, params, "max_daily_risk_fraction", allow_zero=False)
        _check_positive(errors, params, "max_trades_per_day", integer=True, allow_zero=True)
        _check_fraction(errors, params, "min_signal_confidence")
        _check_tags(errors, params, "accepted_qualities", SIGNAL_QUALITIES)

        if "emergency_drawdown_fraction" in params:
            value = params["emergency_drawdown_fraction"]
            if not _is_number(value) or value >= 0 or value <= -1:
                errors.append(ValidationError(
                    field="emergency_drawdown_fraction",
                    message="Must be a negative number greater than -1",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_session_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate session calendar parameters."""
        errors: list[ValidationError] = []

        _check_hour(errors, params, "session_open_hour")
        _check_hour(errors, params, "session_close_hour")
        _check_positive(errors, params, "min_signal_spacing_minutes", integer=True, allow_zero=True)
        _check_positive(errors, params, "history_window_size", integer=True)

        open_hour = params.get("session_open_hour")
        close_hour = params.get("session_close_hour")
        if _is_number(open_hour) and _is_number(close_hour) and open_hour >= close_hour:
            errors.append(ValidationError(
                field="session_close_hour",
                message="Session close must be after session open",
                value=close_hour
            ))

        return errors

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ValidationError]:
        """Validate complete configuration."""
        errors: list[ValidationError] = []

        validators = {
            "market": ConfigValidator.validate_market_params,
            "trend": ConfigValidator.validate_trend_params,
            "entry": ConfigValidator.validate_entry_params,
            "risk": ConfigValidator.validate_risk_params,
            "weights": ConfigValidator.validate_weights,
            "confluence": ConfigValidator.validate_confluence_params,
            "exits": ConfigValidator.validate_exit_params,
            "portfolio": ConfigValidator.validate_portfolio_params,
            "session": ConfigValidator.validate_session_params,
        }

        for section, validator in validators.items():
            if section in config:
                errors.extend(validator(config[section]))

        return errors
