"""Tests for the structured logging helpers used by gates, transitions and the governor."""

from unittest.mock import Mock

import pytest
import structlog

from confluence_app.logging.config import (
    configure_logging,
    get_gating_logger,
    log_gate_decision,
    log_state_transition,
)


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestLogGateDecision:
    def test_passed_gate_logs_info(self):
        logger = Mock()

        log_gate_decision(logger, "trend", True, "Bullish trend confirmed")

        logger.bind.assert_called_once_with(
            gate_name="trend",
            gate_result="PASS",
            reason="Bullish trend confirmed",
            decision="gate_decision",
        )
        logger.bind.return_value.info.assert_called_once_with("Gate passed")

    def test_failed_gate_logs_warning_with_context(self):
        logger = Mock()
        bound = logger.bind.return_value

        log_gate_decision(logger, "market_condition", False, "Extreme gamma risk detected",
                          context={"gamma_risk": "EXTREME"})

        assert logger.bind.call_args.kwargs["gate_result"] == "FAIL"
        bound.bind.assert_called_once_with(context={"gamma_risk": "EXTREME"})
        bound.bind.return_value.warning.assert_called_once_with("Gate failed")
        bound.info.assert_not_called()


class TestLogStateTransition:
    def test_transition_fields(self):
        logger = Mock()

        log_state_transition(logger, "pos-1", "OPEN", "CLOSED", "STOP_LOSS")

        logger.bind.assert_called_once_with(
            position_id="pos-1",
            from_state="OPEN",
            to_state="CLOSED",
            trigger="STOP_LOSS",
            decision="state_transition",
        )
        logger.bind.return_value.info.assert_called_once_with("State transition")

    def test_context_is_bound(self):
        logger = Mock()

        log_state_transition(logger, "pos-1", "OPEN", "CLOSED", "PROFIT_TARGET",
                             context={"realized_pnl": 2.4})

        bound = logger.bind.return_value
        bound.bind.assert_called_once_with(context={"realized_pnl": 2.4})
        bound.bind.return_value.info.assert_called_once_with("State transition")


class TestConfigureLogging:
    def test_json_renderer_last(self, reset_structlog):
        configure_logging(level="DEBUG", format_json=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer_by_default(self, reset_structlog):
        configure_logging(include_timestamp=False)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert not any(isinstance(p, structlog.processors.TimeStamper) for p in processors)

    def test_gating_logger_binds_subsystem(self, reset_structlog):
        structlog.configure(processors=[structlog.testing.LogCapture()])
        capture = structlog.get_config()["processors"][0]

        get_gating_logger("tests").info("Gate passed")

        assert capture.entries == [
            {"subsystem": "gating", "audit_trail": True, "event": "Gate passed", "log_level": "info"}
        ]
