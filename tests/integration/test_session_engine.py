"""End-to-end tests of the per-tick session engine in simulation mode."""

from unittest.mock import Mock

import pytest

from confluence_app.engine import MarketTick, SessionEngine
from confluence_app.errors import TemporalDataError
from confluence_app.events import EmergencyStopTriggered, EntryRejected, EventBus, SessionReset
from confluence_app.models.snapshots import GammaRisk
from confluence_app.signals.models import Action, SignalQuality
from confluence_app.state.models import ExitReason, TradeOutcome


@pytest.fixture
def make_tick(snapshots, make_bar):
    """Tick with the default bullish bundle stamped at the bar's timestamp."""
    def _make_tick(ts, price=2.0, bundle=None, close=485.0, **kwargs):
        return MarketTick(
            bar=make_bar(ts, close),
            snapshots=bundle if bundle is not None else snapshots.bundle(ts),
            instrument_price=price,
            **kwargs
        )
    return _make_tick


@pytest.fixture
def engine(engine_config):
    return SessionEngine(engine_config)


class TestEntryFlow:
    """A bullish confluence tick opens a position."""

    def test_bullish_confluence_opens_position(self, engine, make_tick, make_ts):
        result = engine.process_tick(make_tick(make_ts(10, 0)))

        assert result.session_reset
        assert result.signal.action == Action.BUY
        assert result.signal.quality == SignalQuality.EXCELLENT
        assert len(result.opened) == 1

        position = result.opened[0]
        assert position.entry_price == 2.0
        assert position.stop_loss == pytest.approx(1.3)
        assert position.quantity == 2.0
        assert engine.state.position_count == 1
        assert engine.state.outstanding_risk == pytest.approx(1.4)

    def test_rejected_pipeline_opens_nothing(self, engine, snapshots, make_tick, make_ts):
        ts = make_ts(10, 0)
        bundle = snapshots.bundle(ts, gamma={"gamma_risk": GammaRisk.EXTREME})
        result = engine.process_tick(make_tick(ts, bundle=bundle))

        assert result.signal.action == Action.NO_TRADE
        assert result.signal.reason == "Extreme gamma risk detected"
        assert result.opened == []

    def test_no_indicator_source(self, engine, make_bar, make_ts):
        """Without snapshots or an indicator suite every gate input is a failure."""
        result = engine.process_tick(MarketTick(bar=make_bar(make_ts(10, 0))))

        assert result.signal.action == Action.NO_TRADE
        assert result.signal.reason == "Indicator failure (gamma): no indicator source configured"

    def test_history_requirement(self, config, make_tick, make_ts):
        engine = SessionEngine(config)
        result = engine.process_tick(make_tick(make_ts(10, 0)))

        assert result.signal.reason == "Insufficient history: 1 bars (need 50)"

    def test_signal_spacing_blocks_next_bar(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0)))
        result = engine.process_tick(make_tick(make_ts(10, 1), price=2.1))

        assert result.signal is None
        assert result.rejections == ["Signal spacing: 1.0 min since last signal (min 5 min)"]

    def test_daily_risk_budget_at_underlying_price(self, engine, make_bar, snapshots, make_ts):
        """Filling at the underlying price puts 339.50 at risk, so only one entry fits."""
        first_ts, second_ts = make_ts(10, 0), make_ts(10, 10)
        first = engine.process_tick(MarketTick(bar=make_bar(first_ts), snapshots=snapshots.bundle(first_ts)))
        second = engine.process_tick(MarketTick(bar=make_bar(second_ts), snapshots=snapshots.bundle(second_ts)))

        assert first.opened[0].entry_price == 485.0
        assert second.opened == []
        assert second.rejections == ["Daily risk budget exceeded: 339.50 + 339.50 > 500.00"]

    def test_concurrency_cap_rejects_before_pipeline(self, engine_config, make_tick, make_ts):
        config = engine_config.with_overrides({"portfolio": {"max_concurrent_positions": 2}})
        engine = SessionEngine(config)

        engine.process_tick(make_tick(make_ts(10, 0)))
        engine.process_tick(make_tick(make_ts(10, 5)))
        result = engine.process_tick(make_tick(make_ts(10, 10)))

        assert engine.state.position_count == 2
        assert result.signal is None
        assert result.opened == []
        assert result.rejections == ["Max concurrent positions reached: 2 >= 2"]

    def test_vetoed_signal_does_not_start_spacing(self, engine_config, make_tick, make_ts):
        config = engine_config.with_overrides({"portfolio": {"min_signal_confidence": 0.99}})
        engine = SessionEngine(config)

        first = engine.process_tick(make_tick(make_ts(10, 0)))
        second = engine.process_tick(make_tick(make_ts(10, 1)))

        assert first.signal.action == Action.BUY
        assert first.rejections == ["Signal confidence 0.96 below minimum 0.99"]
        assert engine.state.last_signal_at is None
        assert second.signal is not None
        assert second.rejections == ["Signal confidence 0.96 below minimum 0.99"]

    def test_approved_signal_starts_spacing(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0)))

        assert engine.state.last_signal_at == make_ts(10, 0)

    def test_snapshots_from_another_bar_rejected(self, engine, snapshots, make_tick, make_ts):
        stale = make_tick(make_ts(10, 0), bundle=snapshots.bundle(make_ts(9, 45)))

        with pytest.raises(TemporalDataError):
            engine.process_tick(stale)

        assert engine.state.position_count == 0
        # The rejected tick leaves no trace, so the same bar can be replayed
        result = engine.process_tick(make_tick(make_ts(10, 0)))
        assert len(result.opened) == 1

    def test_snapshots_from_a_later_bar_rejected(self, engine, snapshots, make_tick, make_ts):
        ahead = make_tick(make_ts(10, 0), bundle=snapshots.bundle(make_ts(10, 5)))

        with pytest.raises(TemporalDataError):
            engine.process_tick(ahead)

    def test_entry_rejected_event(self, engine_config, make_tick, make_ts):
        bus = EventBus()
        handler = Mock()
        bus.subscribe(handler, EntryRejected.event_type)
        engine = SessionEngine(engine_config, event_bus=bus)

        engine.process_tick(make_tick(make_ts(10, 0)))
        engine.process_tick(make_tick(make_ts(10, 2)))

        event = handler.call_args.args[0]
        assert event.stage == "pre_entry"
        assert event.reason.startswith("Signal spacing")


class TestExitFlow:
    """Exits resolve before entries on every tick."""

    def test_trailing_then_profit_target(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        armed = engine.process_tick(make_tick(make_ts(10, 1), price=2.6))
        position = engine.runtime.open_positions()[0]

        assert armed.closed == []
        assert position.trailing_active
        assert position.trailing_stop == pytest.approx(2.34)

        result = engine.process_tick(make_tick(make_ts(10, 2), price=3.2))

        assert len(result.closed) == 1
        trade = result.closed[0]
        assert trade.exit_reason == ExitReason.PROFIT_TARGET
        assert trade.realized_pnl == pytest.approx(2.4)
        assert trade.outcome == TradeOutcome.PROFIT
        assert engine.state.position_count == 0
        assert result.equity == pytest.approx(25002.4)

    def test_profit_target_at_sixty_percent(self, engine_config, make_tick, make_ts):
        """Fill 2.00 with a 0.6 target: the 3.30 tick closes it and 1.90 changes nothing."""
        config = engine_config.with_overrides({"exits": {"profit_target_fraction": 0.6}})
        engine = SessionEngine(config)

        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        crossed = engine.process_tick(make_tick(make_ts(10, 1), price=3.3))
        after = engine.process_tick(make_tick(make_ts(10, 2), price=1.9))

        assert [t.exit_reason for t in crossed.closed] == [ExitReason.PROFIT_TARGET]
        assert crossed.closed[0].exit_price == 3.3
        assert crossed.closed[0].realized_pnl == pytest.approx(2.6)
        assert after.closed == []
        assert len(engine.closed_trades) == 1

    def test_per_position_marks_override_default(self, engine, make_tick, make_ts):
        opened = engine.process_tick(make_tick(make_ts(10, 0))).opened[0]
        result = engine.process_tick(
            make_tick(make_ts(10, 1), price=2.0, marks={opened.position_id: 1.2})
        )

        assert result.closed[0].exit_reason == ExitReason.STOP_LOSS
        assert result.closed[0].exit_price == 1.2

    def test_freed_slot_usable_in_same_tick(self, engine_config, make_tick, make_ts):
        config = engine_config.with_overrides({"portfolio": {"max_concurrent_positions": 1}})
        engine = SessionEngine(config)

        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        blocked = engine.process_tick(make_tick(make_ts(10, 6), price=2.1))
        assert blocked.rejections == ["Max concurrent positions reached: 1 >= 1"]

        result = engine.process_tick(make_tick(make_ts(10, 10), price=3.2))

        assert result.closed[0].exit_reason == ExitReason.PROFIT_TARGET
        assert len(result.opened) == 1
        assert result.opened[0].entry_price == 3.2
        assert engine.state.position_count == 1


class TestEmergencyStop:
    """Session drawdown breach force-closes and halts."""

    def test_drawdown_breach(self, engine_config, make_tick, make_ts):
        bus = EventBus()
        handler = Mock()
        bus.subscribe(handler, EmergencyStopTriggered.event_type)
        engine = SessionEngine(engine_config, event_bus=bus)

        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        result = engine.process_tick(make_tick(make_ts(10, 1), price=1.9, equity=23500.0))

        assert result.emergency
        assert len(result.closed) == 1
        assert result.closed[0].exit_reason == ExitReason.EMERGENCY_STOP
        assert result.closed[0].exit_price == 1.9
        assert engine.state.halted
        assert engine.state.halt_reason == "Emergency drawdown -6.00%"
        assert result.rejections == ["Trading halted for session: Emergency drawdown -6.00%"]

        handler.assert_called_once()
        event = handler.call_args.args[0]
        assert event.drawdown == pytest.approx(-0.06)
        assert event.positions_closed == 1

    def test_breach_at_exact_threshold(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0)))
        result = engine.process_tick(make_tick(make_ts(10, 1), equity=23750.0))

        assert result.emergency

    def test_halt_persists_without_repeat_emergency(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0)))
        engine.process_tick(make_tick(make_ts(10, 1), equity=23500.0))
        later = engine.process_tick(make_tick(make_ts(11, 0), equity=23500.0))

        assert not later.emergency
        assert later.opened == []
        assert later.rejections[0].startswith("Trading halted for session")


class TestSessionRollover:
    def test_expired_position_closed_on_next_session(self, engine_config, make_tick, make_ts):
        bus = EventBus()
        resets = Mock()
        bus.subscribe(resets, SessionReset.event_type)
        engine = SessionEngine(engine_config, event_bus=bus)

        engine.process_tick(make_tick(make_ts(10, 0)))
        engine.process_tick(make_tick(make_ts(10, 1), equity=23500.0))
        assert engine.state.halted

        engine.process_tick(make_tick(make_ts(10, 6), price=2.0))
        result = engine.process_tick(make_tick(make_ts(9, 31, day=18), price=2.0))

        assert result.session_reset
        assert not engine.state.halted
        assert resets.call_count == 2
        assert len(result.opened) == 1

    def test_overnight_position_expires(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        result = engine.process_tick(make_tick(make_ts(9, 31, day=18), price=2.0))

        expired = [t for t in result.closed if t.exit_reason == ExitReason.TIME_EXIT]
        assert len(expired) == 1
        assert expired[0].exit_price == pytest.approx(0.01)
        assert expired[0].realized_pnl == pytest.approx((0.01 - 2.0) * 2)


class TestTickOrdering:
    def test_out_of_order_bar_rejected(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 5)))

        with pytest.raises(TemporalDataError):
            engine.process_tick(make_tick(make_ts(10, 4)))

    def test_duplicate_timestamp_rejected(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 5)))

        with pytest.raises(TemporalDataError):
            engine.process_tick(make_tick(make_ts(10, 5)))

    def test_run_skips_bad_ticks(self, engine, make_tick, make_ts):
        results = engine.run([
            make_tick(make_ts(10, 0)),
            make_tick(make_ts(9, 59)),
            make_tick(make_ts(10, 1), price=2.1),
        ])

        assert [r.timestamp for r in results] == [make_ts(10, 0), make_ts(10, 1)]


class TestFlatten:
    def test_flatten_closes_at_last_value(self, engine, make_tick, make_ts):
        engine.process_tick(make_tick(make_ts(10, 0), price=2.0))
        engine.process_tick(make_tick(make_ts(10, 1), price=2.5))

        closed = engine.flatten(make_ts(10, 1))

        assert len(closed) == 1
        assert closed[0].exit_reason == ExitReason.TIME_EXIT
        assert closed[0].detail == "Flattened at end of data"
        assert closed[0].realized_pnl == pytest.approx(1.0)
        assert engine.state.position_count == 0
