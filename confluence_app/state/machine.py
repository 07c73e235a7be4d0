"""
Exit policy for open positions.

``evaluate_exit`` is a pure function: given a position, its mark for this
tick and the exit configuration it returns the trailing-stop update and
at most one exit decision. Conditions are checked in fixed precedence and
the first one that fires wins. Long and short positions are mirrored.
"""

from typing import Optional

from ..config.defaults import ExitParams, SessionParams
from ..models.snapshots import VolatilityRegime
from ..utils.time import hour_of_day, minutes_between, session_midpoint
from .models import (
    ExitDecision,
    ExitEvaluation,
    ExitReason,
    MarkContext,
    Position,
    TrailingUpdate,
)


def update_trailing(position: Position, value: float, exits: ExitParams) -> TrailingUpdate:
    """
    Raise the high-water mark and, once armed, tighten the trailing stop.

    The trailing stop only ever moves toward profit: up for longs, down for
    shorts.
    """
    gain = position.gain_fraction(value)
    max_profit = max(position.max_profit_seen, gain)
    active = position.trailing_active or gain >= exits.trail_activation_fraction
    trailing = position.trailing_stop if position.trailing_stop is not None else position.stop_loss

    if active:
        if position.is_long:
            candidate = value * (1.0 - exits.trail_stop_fraction)
            if candidate > trailing:
                trailing = candidate
        else:
            candidate = value * (1.0 + exits.trail_stop_fraction)
            if candidate < trailing:
                trailing = candidate

    return TrailingUpdate(max_profit_seen=max_profit, trailing_stop=trailing, trailing_active=active)


def _crossed(position: Position, value: float, level: float) -> bool:
    """True when value is at or beyond a protective level against the position."""
    return value <= level if position.is_long else value >= level


def check_expiry(position: Position, mark: MarkContext, exits: ExitParams) -> Optional[ExitDecision]:
    if position.expires_at is None or mark.timestamp < position.expires_at:
        return None
    return ExitDecision(
        reason=ExitReason.TIME_EXIT,
        exit_price=exits.expiry_residual_value,
        detail=f"Expired while open; closed at residual value {exits.expiry_residual_value:.2f}",
    )


def check_price_exits(
    position: Position,
    mark: MarkContext,
    trailing: TrailingUpdate,
    exits: ExitParams
) -> Optional[ExitDecision]:
    """Profit target, then trailing stop, then original stop."""
    value = mark.value
    gain = position.gain_fraction(value)

    if gain >= exits.profit_target_fraction:
        return ExitDecision(
            reason=ExitReason.PROFIT_TARGET,
            exit_price=value,
            detail=f"Profit target reached: {gain * 100:+.1f}% >= {exits.profit_target_fraction * 100:.1f}%",
        )

    if trailing.trailing_active and _crossed(position, value, trailing.trailing_stop):
        return ExitDecision(
            reason=ExitReason.TRAILING_STOP,
            exit_price=value,
            detail=f"Trailing stop hit: {value:.4f} vs trailing stop {trailing.trailing_stop:.4f}",
        )

    if _crossed(position, value, position.stop_loss):
        return ExitDecision(
            reason=ExitReason.STOP_LOSS,
            exit_price=value,
            detail=f"Stop loss hit: {value:.4f} vs stop {position.stop_loss:.4f}",
        )

    return None


def check_time_exits(
    position: Position,
    mark: MarkContext,
    exits: ExitParams,
    session: SessionParams
) -> Optional[ExitDecision]:
    """Forced exit time of day, then session-half hold cap, then decay protection."""
    now = mark.timestamp
    local_hour = hour_of_day(now, session.timezone)

    if local_hour >= exits.force_exit_hour:
        return ExitDecision(
            reason=ExitReason.TIME_EXIT,
            exit_price=mark.value,
            detail=f"Forced exit time reached: {local_hour:.2f} >= {exits.force_exit_hour:.2f}",
        )

    held = minutes_between(position.opened_at, now)
    midpoint = session_midpoint(session.session_open_hour, session.session_close_hour)
    cap = exits.max_hold_minutes_early if local_hour < midpoint else exits.max_hold_minutes_late
    if held > cap:
        return ExitDecision(
            reason=ExitReason.TIME_EXIT,
            exit_price=mark.value,
            detail=f"Max hold time exceeded: {held:.0f} min > {cap} min",
        )

    if position.expires_at is not None:
        to_expiry = minutes_between(now, position.expires_at)
        loss_floor = exits.decay_value_fraction - 1.0
        if to_expiry < exits.decay_window_minutes and position.gain_fraction(mark.value) < loss_floor:
            return ExitDecision(
                reason=ExitReason.TIME_EXIT,
                exit_price=mark.value,
                detail=(
                    f"Decay protection: {to_expiry:.0f} min to expiry, value below "
                    f"{exits.decay_value_fraction * 100:.0f}% of entry"
                ),
            )

    return None


def check_regime_change(position: Position, mark: MarkContext) -> Optional[ExitDecision]:
    if (mark.volatility_regime == VolatilityRegime.EXTREME
            and position.entry_volatility_regime != VolatilityRegime.EXTREME):
        return ExitDecision(
            reason=ExitReason.VOLATILITY_REGIME_CHANGE,
            exit_price=mark.value,
            detail="Volatility regime turned EXTREME after entry",
        )
    return None


def evaluate_exit(
    position: Position,
    mark: MarkContext,
    exits: ExitParams,
    session: SessionParams
) -> ExitEvaluation:
    """
    Evaluate one OPEN position against the exit policy.

    Precedence: expiry, trailing update, profit target, trailing stop,
    stop loss, forced exit time, hold cap, decay protection, volatility
    regime change.
    """
    trailing = update_trailing(position, mark.value, exits)

    decision = check_expiry(position, mark, exits)
    if decision is None:
        decision = check_price_exits(position, mark, trailing, exits)
    if decision is None:
        decision = check_time_exits(position, mark, exits, session)
    if decision is None:
        decision = check_regime_change(position, mark)

    return ExitEvaluation(trailing=trailing, decision=decision)


def emergency_exit(mark: MarkContext, drawdown: float) -> ExitDecision:
    """Exit forced by the portfolio drawdown breach, bypassing precedence."""
    return ExitDecision(
        reason=ExitReason.EMERGENCY_STOP,
        exit_price=mark.value,
        detail=f"Emergency stop: session drawdown {drawdown * 100:.2f}%",
    )
