"""Tests for the position runtime manager."""

from unittest.mock import Mock

import pytest

from confluence_app.broker.base import Order, OrderSide, OrderStatus
from confluence_app.broker.executor import PendingEntry, PendingExit, PollResult
from confluence_app.events import EventBus, PositionClosed, PositionOpened
from confluence_app.models.snapshots import VolatilityRegime
from confluence_app.risk.governor import PortfolioRiskGovernor
from confluence_app.signals.models import Action
from confluence_app.state import runtime as runtime_module
from confluence_app.state.models import (
    ExitDecision,
    ExitReason,
    MarkContext,
    PositionSide,
    PositionStatus,
    TradeOutcome,
)
from confluence_app.state.runtime import PositionRuntimeManager


@pytest.fixture
def governor(config, make_ts):
    governor = PortfolioRiskGovernor(config)
    governor.roll_session(make_ts(9, 30), 25000.0)
    return governor


@pytest.fixture
def runtime(config, governor):
    return PositionRuntimeManager(config, governor)


def _filled_order(client_id: str, price: float, filled_at, side=OrderSide.SELL, qty=2.0) -> Order:
    return Order(
        order_id=f"order-{client_id}",
        client_id=client_id,
        symbol="SPY",
        qty=qty,
        side=side,
        order_type="market",
        time_in_force="day",
        status=OrderStatus.FILLED,
        filled_avg_price=price,
        filled_at=filled_at,
    )


class TestStopPlanning:
    """Initial stop and risk at the fill price."""

    def test_premium_stop_for_long(self, runtime, make_signal):
        assert runtime.plan_stop(make_signal(), 2.0) == pytest.approx(1.3)

    def test_premium_stop_for_short(self, runtime, make_signal):
        assert runtime.plan_stop(make_signal(action=Action.SELL), 2.0) == pytest.approx(2.7)

    def test_signal_stop_distance(self, config, governor, make_signal):
        runtime = PositionRuntimeManager(config.with_overrides({"exits": {"use_signal_stop": True}}), governor)

        assert runtime.plan_stop(make_signal(), 485.0) == pytest.approx(482.0)
        assert runtime.plan_stop(make_signal(action=Action.SELL), 485.0) == pytest.approx(488.0)

    def test_plan_risk(self, runtime, make_signal):
        assert runtime.plan_risk(make_signal(), 2.0) == pytest.approx(1.4)
        assert runtime.plan_risk(make_signal(), 485.0) == pytest.approx(339.5)
        assert runtime.plan_risk(make_signal(), 2.0, quantity=1.0) == pytest.approx(0.7)


class TestOpenPosition:
    def test_open_registers_with_governor(self, runtime, governor, make_signal, make_ts):
        position = runtime.open_position(
            make_signal(), 2.0, make_ts(10, 0), volatility_regime=VolatilityRegime.NORMAL
        )

        assert position.position_id == "pos-20240315-100000-0001"
        assert position.side == PositionSide.LONG
        assert position.quantity == 2.0
        assert position.stop_loss == pytest.approx(1.3)
        assert position.trailing_stop == pytest.approx(1.3)
        assert position.symbol == "SPY"
        assert position.expires_at == make_ts(16, 0)
        assert position.entry_volatility_regime == VolatilityRegime.NORMAL
        assert governor.state.open_positions == {position.position_id: position}
        assert governor.state.outstanding_risk == pytest.approx(1.4)

    def test_ids_are_sequential(self, runtime, make_signal, make_ts):
        first = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        second = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))

        assert first.position_id.endswith("-0001")
        assert second.position_id.endswith("-0002")

    def test_open_emits_event(self, config, governor, make_signal, make_ts):
        bus = EventBus()
        handler = Mock()
        bus.subscribe(handler, PositionOpened.event_type)
        runtime = PositionRuntimeManager(config, governor, event_bus=bus)

        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))

        event = handler.call_args.args[0]
        assert event.position_id == position.position_id
        assert event.risk == pytest.approx(1.4)

    def test_submit_entry_requires_executor(self, runtime, make_signal, make_ts):
        with pytest.raises(RuntimeError):
            runtime.submit_entry(make_signal(), make_ts(10, 0))


class TestUpdatePositions:
    """Tick-by-tick exit evaluation in simulation mode."""

    def test_trailing_then_profit_target(self, runtime, governor, make_signal, make_ts):
        """Entry 2.00, trailing arms at 2.60, profit target fires at 3.20."""
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        pid = position.position_id

        closed = runtime.update_positions({pid: MarkContext(make_ts(10, 1), 2.6)})
        assert closed == []
        assert position.trailing_active
        assert position.trailing_stop == pytest.approx(2.34)
        assert position.max_profit_seen == pytest.approx(0.3)
        assert position.last_value == 2.6

        closed = runtime.update_positions({pid: MarkContext(make_ts(10, 2), 3.2)})
        assert len(closed) == 1
        trade = closed[0]
        assert trade.exit_reason == ExitReason.PROFIT_TARGET
        assert trade.realized_pnl == pytest.approx(2.4)
        assert trade.outcome == TradeOutcome.PROFIT
        assert position.status == PositionStatus.CLOSED
        assert governor.state.open_positions == {}
        assert governor.state.outstanding_risk == 0.0
        assert governor.state.realized_pnl_today == pytest.approx(2.4)
        assert runtime.state.closed_trades == [trade]

    def test_profit_target_fires_on_first_crossing_tick(self, config, make_signal, make_ts):
        """Target 0.6 on a 2.00 fill is 3.20; the path 3.30 then 1.90 exits once, at 3.30."""
        config = config.with_overrides({"exits": {"profit_target_fraction": 0.6}})
        governor = PortfolioRiskGovernor(config)
        governor.roll_session(make_ts(9, 30), 25000.0)
        runtime = PositionRuntimeManager(config, governor)
        pid = runtime.open_position(make_signal(), 2.0, make_ts(10, 0)).position_id

        first = runtime.update_positions({pid: MarkContext(make_ts(10, 1), 3.3)})
        later = runtime.update_positions({pid: MarkContext(make_ts(10, 2), 1.9)})

        assert [t.exit_reason for t in first] == [ExitReason.PROFIT_TARGET]
        assert first[0].exit_price == 3.3
        assert first[0].closed_at == make_ts(10, 1)
        assert later == []
        assert runtime.state.closed_trades == first

    def test_trailing_stop_exit_is_profit(self, runtime, make_signal, make_ts):
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        pid = position.position_id
        runtime.update_positions({pid: MarkContext(make_ts(10, 1), 2.6)})

        closed = runtime.update_positions({pid: MarkContext(make_ts(10, 2), 2.3)})

        assert closed[0].exit_reason == ExitReason.TRAILING_STOP
        assert closed[0].outcome == TradeOutcome.PROFIT

    def test_position_without_mark_is_skipped(self, runtime, make_signal, make_ts):
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))

        assert runtime.update_positions({}) == []
        assert position.is_open

    def test_failure_isolated_to_one_position(self, runtime, make_signal, make_ts, monkeypatch):
        """An evaluation error on one position does not stop the others."""
        broken = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        healthy = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        real_evaluate = runtime_module.evaluate_exit

        def flaky_evaluate(position, mark, exits, session):
            if position.position_id == broken.position_id:
                raise ValueError("bad mark")
            return real_evaluate(position, mark, exits, session)

        monkeypatch.setattr(runtime_module, "evaluate_exit", flaky_evaluate)

        closed = runtime.update_positions({
            broken.position_id: MarkContext(make_ts(10, 5), 1.0),
            healthy.position_id: MarkContext(make_ts(10, 5), 1.0),
        })

        assert [t.position_id for t in closed] == [healthy.position_id]
        assert broken.is_open

    def test_emergency_close_all(self, runtime, make_signal, make_ts):
        first = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        second = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        second.last_value = 1.5

        closed = runtime.emergency_close_all(
            {first.position_id: MarkContext(make_ts(11, 0), 1.8)}, -0.06, make_ts(11, 0)
        )

        assert {t.exit_reason for t in closed} == {ExitReason.EMERGENCY_STOP}
        prices = {t.position_id: t.exit_price for t in closed}
        assert prices == {first.position_id: 1.8, second.position_id: 1.5}
        assert runtime.open_positions() == []

    def test_close_emits_event(self, config, governor, make_signal, make_ts):
        bus = EventBus()
        handler = Mock()
        bus.subscribe(handler, PositionClosed.event_type)
        runtime = PositionRuntimeManager(config, governor, event_bus=bus)
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))

        runtime.update_positions({position.position_id: MarkContext(make_ts(10, 1), 1.0)})

        trade = handler.call_args.args[0].trade
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.realized_pnl == pytest.approx(-2.0)


class TestBrokerRouting:
    """Closes routed through an order executor."""

    def test_failed_exit_submission_retries_next_tick(self, config, governor, make_signal, make_ts):
        executor = Mock()
        runtime = PositionRuntimeManager(config, governor, executor=executor)
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        pid = position.position_id

        executor.submit_exit.return_value = None
        runtime.update_positions({pid: MarkContext(make_ts(10, 1), 1.0)})
        assert position.is_open
        assert not position.exit_pending

        executor.submit_exit.return_value = Mock()
        runtime.update_positions({pid: MarkContext(make_ts(10, 2), 1.0)})
        assert position.is_open
        assert position.exit_pending
        assert executor.submit_exit.call_count == 2

        # Pending exits are not re-evaluated
        runtime.update_positions({pid: MarkContext(make_ts(10, 3), 1.0)})
        assert executor.submit_exit.call_count == 2

    def test_exit_fill_closes_at_fill_price(self, config, governor, make_signal, make_ts):
        runtime = PositionRuntimeManager(config, governor, executor=Mock())
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        position.exit_pending = True
        decision = ExitDecision(ExitReason.STOP_LOSS, 1.0, "Stop loss hit")
        pending = PendingExit("cf-exit-1", "order-1", position.position_id, decision, make_ts(10, 1))

        result = PollResult(filled_exits=[(pending, _filled_order("cf-exit-1", 0.95, make_ts(10, 2)))])
        opened, closed = runtime.apply_fills(result, make_ts(10, 2))

        assert opened == []
        assert closed[0].exit_price == 0.95
        assert closed[0].exit_reason == ExitReason.STOP_LOSS
        assert closed[0].closed_at == make_ts(10, 2)
        assert position.status == PositionStatus.CLOSED

    def test_entry_fill_opens_position(self, config, governor, make_signal, make_ts):
        runtime = PositionRuntimeManager(config, governor, executor=Mock())
        entry = PendingEntry(
            "cf-entry-1", "order-1", "SPY", PositionSide.LONG, 2.0, make_signal(), make_ts(10, 0)
        )
        governor.state.pending_entries.add("cf-entry-1")

        result = PollResult(filled_entries=[(entry, _filled_order("cf-entry-1", 2.1, make_ts(10, 1), OrderSide.BUY))])
        opened, _ = runtime.apply_fills(result, make_ts(10, 1))

        assert opened[0].entry_price == 2.1
        assert opened[0].opened_at == make_ts(10, 1)
        assert governor.state.pending_entries == set()
        assert governor.state.position_count == 1

    def test_dropped_exit_clears_pending_flag(self, config, governor, make_signal, make_ts):
        runtime = PositionRuntimeManager(config, governor, executor=Mock())
        position = runtime.open_position(make_signal(), 2.0, make_ts(10, 0))
        position.exit_pending = True
        decision = ExitDecision(ExitReason.STOP_LOSS, 1.0, "Stop loss hit")
        pending = PendingExit("cf-exit-1", "order-1", position.position_id, decision, make_ts(10, 1))

        runtime.apply_fills(PollResult(dropped_exits=[pending]), make_ts(10, 2))

        assert position.is_open
        assert not position.exit_pending
