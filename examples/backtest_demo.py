#!/usr/bin/env python3
"""
Backtest Demo - Confluence Engine

This script replays one synthetic SPY session through the confluence
pipeline and position lifecycle, showing how to:
- Plug indicator adapters into an IndicatorSuite
- Attach event delivery sinks and the trade store to the event bus
- Run a backtest and read the performance summary

The adapters below are toy stand-ins for real gamma, volume profile,
VWAP, fractal and ATR computations.

Run: python examples/backtest_demo.py
"""

import random
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

from confluence_app.backtest import BacktestRunner
from confluence_app.config import get_preset
from confluence_app.config.delivery import EventDeliveryConfig, create_stdout_destination
from confluence_app.delivery import attach_sinks
from confluence_app.engine import MarketTick
from confluence_app.events import EventBus
from confluence_app.indicators.base import IndicatorSuite
from confluence_app.logging import configure_logging
from confluence_app.models.snapshots import (
    Bar,
    GammaRegime,
    GammaRisk,
    GammaSnapshot,
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
from confluence_app.persistence import TradeStore

ET = ZoneInfo("America/New_York")
LOOKBACK = 30


def gamma_adapter(bars, config):
    window = bars[-LOOKBACK:]
    return GammaSnapshot(
        timestamp=bars[-1].timestamp,
        volatility_regime=GammaRegime.SUPPRESSING,
        gamma_risk=GammaRisk.LOW,
        support_levels=(min(b.low for b in window),),
        resistance_levels=(max(b.high for b in window),),
    )


def liquidity_adapter(bars, config):
    window = bars[-LOOKBACK:]
    poc = sum(b.close for b in window) / len(window)
    spread = max(b.high for b in window) - min(b.low for b in window)
    return LiquiditySnapshot(
        timestamp=bars[-1].timestamp,
        hvn_count=5,
        lvn_count=3,
        node_count=20,
        poc=poc,
        value_area_high=poc + spread * 0.35,
        value_area_low=poc - spread * 0.35,
        liquidity_profile=LiquidityProfile.LIQUID,
    )


def trend_adapter(bars, config):
    volume = sum(b.volume for b in bars)
    vwap = sum(b.close * b.volume for b in bars) / volume
    close = bars[-1].close
    above = close > vwap
    return TrendSnapshot(
        timestamp=bars[-1].timestamp,
        vwap=vwap,
        trend_direction=TrendDirection.BULLISH if above else TrendDirection.BEARISH,
        price_position=PricePosition.ABOVE if above else PricePosition.BELOW,
        signal_quality=TrendQuality.HIGH,
        confluence_level=0.8,
    )


def pattern_adapter(bars, config):
    return PatternSnapshot(
        timestamp=bars[-1].timestamp,
        setups=(PatternSetup(level=bars[-1].close, confluence=0.85),),
    )


def volatility_adapter(bars, config):
    window = bars[-14:]
    atr = sum(b.high - b.low for b in window) / len(window)
    return VolatilitySnapshot(
        timestamp=bars[-1].timestamp,
        atr=atr,
        volatility_regime=VolatilityRegime.NORMAL,
        dynamic_stop_multiplier=1.5,
        recommended_position_size=2.0,
        max_risk_per_trade=250.0,
    )


def synthetic_session(seed: int = 7) -> list[MarketTick]:
    """One-minute bars from the open to the close with a 0DTE premium mark."""
    rng = random.Random(seed)
    start = datetime(2024, 3, 15, 9, 30, tzinfo=ET)
    price = 485.0
    ticks = []

    for minute in range(390):
        move = rng.gauss(0.02, 0.35)
        open_price, price = price, price + move
        bar = Bar(
            timestamp=start + timedelta(minutes=minute),
            open=open_price,
            high=max(open_price, price) + abs(rng.gauss(0, 0.1)),
            low=min(open_price, price) - abs(rng.gauss(0, 0.1)),
            close=price,
            volume=rng.uniform(5_000, 15_000),
        )
        premium = max(0.05, 2.0 + (price - 485.0) * 0.5)
        ticks.append(MarketTick(bar=bar, instrument_price=round(premium, 2)))

    return ticks


def main():
    """Main demonstration function."""
    configure_logging(level="WARNING")

    print("📈 CONFLUENCE BACKTEST DEMO")
    print("=" * 60)

    config = get_preset("RELAXED")
    suite = IndicatorSuite(
        gamma=gamma_adapter,
        liquidity=liquidity_adapter,
        trend=trend_adapter,
        pattern=pattern_adapter,
        volatility=volatility_adapter,
    )

    bus = EventBus()
    attach_sinks(bus, EventDeliveryConfig(
        destinations=(create_stdout_destination(
            format="pretty",
            event_types=("position_opened", "position_closed", "emergency_stop"),
        ),),
    ))

    with tempfile.TemporaryDirectory() as tmp_dir:
        store = TradeStore(str(Path(tmp_dir) / "demo_trades.db"))
        store.attach(bus)

        report = BacktestRunner(config, indicators=suite, event_bus=bus).run(synthetic_session())

        print("\n📊 PERFORMANCE SUMMARY")
        print("=" * 60)
        for key, value in report.summary.to_dict().items():
            print(f"  {key}: {value}")

        print(f"\n  ticks processed: {report.ticks_processed}")
        print(f"  signals: {len(report.signals)}")
        print(f"  entries rejected: {len(report.rejected_entries)}")
        print(f"  trades in store: {store.get_stats()['total_trades']}")

    print("\n✅ Backtest demo completed!")


if __name__ == "__main__":
    main()
