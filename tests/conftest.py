"""Pytest configuration and shared fixtures."""

from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from confluence_app.config.defaults import StrategyConfig, get_default_config
from confluence_app.models.snapshots import (
    Bar,
    GammaRegime,
    GammaRisk,
    GammaSnapshot,
    IndicatorBundle,
    LiquidityProfile,
    LiquiditySnapshot,
    PatternSetup,
    PatternSnapshot,
    PricePosition,
    TrendDirection,
    TrendQuality,
    TrendSnapshot,
    VolatilityRegime,
    VolatilitySnapshot,
)
from confluence_app.signals.models import Action, SignalQuality, StrategySignal
from confluence_app.state.models import Position, PositionSide

ET = ZoneInfo("America/New_York")


def et(hour: int, minute: int = 0, day: int = 15) -> datetime:
    """Exchange-local timestamp on a March 2024 trading day."""
    return datetime(2024, 3, day, hour, minute, tzinfo=ET)


class SnapshotFactory:
    """
    Builds indicator snapshots for a bullish confluence setup.

    Defaults: GEX support 480 / resistance 495, POC 484, VAH 490, VAL 480.2,
    VWAP 485 (price ABOVE, BULLISH, HIGH quality, confluence 0.8), one
    fractal setup at 485 with confluence 0.9, NORMAL volatility with ATR 2.0.
    """

    def gamma(self, ts: datetime, **changes) -> GammaSnapshot:
        snapshot = GammaSnapshot(
            timestamp=ts,
            volatility_regime=GammaRegime.SUPPRESSING,
            gamma_risk=GammaRisk.LOW,
            support_levels=(480.0,),
            resistance_levels=(495.0,),
            gamma_flip_point=482.0,
            net_gamma=1.5e9,
        )
        return replace(snapshot, **changes)

    def liquidity(self, ts: datetime, **changes) -> LiquiditySnapshot:
        snapshot = LiquiditySnapshot(
            timestamp=ts,
            hvn_count=5,
            lvn_count=2,
            node_count=20,
            poc=484.0,
            value_area_high=490.0,
            value_area_low=480.2,
            liquidity_profile=LiquidityProfile.LIQUID,
        )
        return replace(snapshot, **changes)

    def trend(self, ts: datetime, **changes) -> TrendSnapshot:
        snapshot = TrendSnapshot(
            timestamp=ts,
            vwap=485.0,
            trend_direction=TrendDirection.BULLISH,
            price_position=PricePosition.ABOVE,
            signal_quality=TrendQuality.HIGH,
            confluence_level=0.8,
        )
        return replace(snapshot, **changes)

    def pattern(self, ts: datetime, **changes) -> PatternSnapshot:
        snapshot = PatternSnapshot(
            timestamp=ts,
            setups=(PatternSetup(level=485.0, confluence=0.9, fractal_type="bullish"),),
        )
        return replace(snapshot, **changes)

    def volatility(self, ts: datetime, **changes) -> VolatilitySnapshot:
        snapshot = VolatilitySnapshot(
            timestamp=ts,
            atr=2.0,
            volatility_regime=VolatilityRegime.NORMAL,
            dynamic_stop_multiplier=1.5,
            recommended_position_size=2.0,
            max_risk_per_trade=500.0,
        )
        return replace(snapshot, **changes)

    def bundle(self, ts: datetime, omit: tuple = (), failures: tuple = (), **section_changes) -> IndicatorBundle:
        """
        Build a full bundle; ``gamma={"gamma_risk": GammaRisk.EXTREME}`` style
        keyword arguments change one snapshot, ``omit`` drops snapshots.
        """
        snapshots = {}
        for name in ("gamma", "liquidity", "trend", "pattern", "volatility"):
            if name in omit:
                snapshots[name] = None
                continue
            builder = getattr(self, name)
            snapshots[name] = builder(ts, **section_changes.get(name, {}))
        return IndicatorBundle(failures=failures, **snapshots)

    def bearish_bundle(self, ts: datetime) -> IndicatorBundle:
        """Mirror setup: price 483 below POC 484 and VWAP 483, BEARISH tag."""
        return self.bundle(
            ts,
            trend={
                "vwap": 483.0,
                "trend_direction": TrendDirection.BEARISH,
                "price_position": PricePosition.BELOW,
            },
            pattern={"setups": (PatternSetup(level=483.0, confluence=0.9, fractal_type="bearish"),)},
        )


@pytest.fixture
def snapshots() -> SnapshotFactory:
    return SnapshotFactory()


@pytest.fixture
def config() -> StrategyConfig:
    return get_default_config()


@pytest.fixture
def engine_config() -> StrategyConfig:
    """Default config that decides from the first bar."""
    return get_default_config().with_overrides({"market": {"min_history_bars": 1}})


@pytest.fixture
def make_ts():
    return et


@pytest.fixture
def make_bar():
    def _make_bar(ts: datetime, close: float = 485.0) -> Bar:
        return Bar(timestamp=ts, open=close, high=close + 0.5, low=close - 0.5, close=close, volume=1000.0)
    return _make_bar


@pytest.fixture
def make_signal():
    def _make_signal(ts: datetime = None, action: Action = Action.BUY, **changes) -> StrategySignal:
        ts = ts or et(10, 0)
        sign = 1.0 if action == Action.BUY else -1.0
        signal = StrategySignal(
            action=action,
            confidence=0.96,
            quality=SignalQuality.EXCELLENT,
            entry_price=485.0,
            stop_loss=485.0 - sign * 3.0,
            target1=485.0 + sign * 4.0,
            target2=485.0 + sign * 7.0,
            position_size=2.0,
            max_risk=500.0,
            current_price=485.0,
            timestamp=ts,
            reason=f"{action.value} signal with EXCELLENT quality",
        )
        return replace(signal, **changes)
    return _make_signal


@pytest.fixture
def make_position():
    def _make_position(
        position_id: str = "pos-1",
        side: PositionSide = PositionSide.LONG,
        entry_price: float = 2.0,
        quantity: float = 1.0,
        stop_loss: float = None,
        opened_at: datetime = None,
        **changes
    ) -> Position:
        opened_at = opened_at or et(10, 0)
        if stop_loss is None:
            stop_loss = entry_price * (0.65 if side == PositionSide.LONG else 1.35)
        return Position(
            position_id=position_id,
            side=side,
            entry_price=entry_price,
            quantity=quantity,
            stop_loss=stop_loss,
            opened_at=opened_at,
            symbol="SPY",
            expires_at=opened_at.replace(hour=16, minute=0),
            **changes
        )
    return _make_position


@pytest.fixture
def minutes():
    def _minutes(start: datetime, count: int) -> list[datetime]:
        return [start + timedelta(minutes=i) for i in range(count)]
    return _minutes
