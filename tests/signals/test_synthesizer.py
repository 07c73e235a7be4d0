"""Tests for composite confidence and signal synthesis."""

from dataclasses import replace

import pytest

from confluence_app.models.snapshots import (
    GammaRisk,
    LiquidityProfile,
    TrendDirection,
    VolatilityRegime,
)
from confluence_app.signals.confluence import collect_levels, detect_zones
from confluence_app.signals.gates import (
    evaluate_entry_trigger,
    evaluate_market_condition,
    evaluate_risk,
    evaluate_trend,
)
from confluence_app.signals.models import Action, SignalQuality, StrategySignal
from confluence_app.signals.synthesizer import (
    HIGH_GAMMA_WARNING,
    NO_ZONES_WARNING,
    classify_quality,
    component_scores,
    composite_confidence,
    synthesize_signal,
)


@pytest.fixture
def accepted_gates(config, make_ts):
    """Run the four gates over a bundle and return their results plus zones."""
    def _run(bundle, price=485.0):
        market = evaluate_market_condition(bundle, 60, config)
        trend = evaluate_trend(bundle, market, price, config)
        entry = evaluate_entry_trigger(bundle, trend, price, config)
        risk = evaluate_risk(bundle, config)
        assert market.accepted and trend.accepted and entry.accepted and risk.accepted
        zones = detect_zones(collect_levels(market, trend, entry, config), price, config)
        return market, trend, entry, risk, zones
    return _run


class TestComponentScores:
    def test_ideal_components(self, snapshots, accepted_gates, make_ts):
        market, trend, entry, risk, _ = accepted_gates(snapshots.bundle(make_ts(10)))
        scores = component_scores(market, trend, entry, risk)

        assert scores == {
            "gamma": 1.0,
            "trend": pytest.approx(0.8),
            "liquidity": 1.0,
            "pattern": 1.0,
            "volatility": 1.0,
        }

    def test_degraded_components(self, snapshots, accepted_gates, make_ts):
        bundle = snapshots.bundle(
            make_ts(10),
            gamma={"gamma_risk": GammaRisk.MEDIUM},
            liquidity={"liquidity_profile": LiquidityProfile.ILLIQUID},
            volatility={"volatility_regime": VolatilityRegime.HIGH},
        )
        market, trend, entry, risk, _ = accepted_gates(bundle)
        scores = component_scores(market, trend, entry, risk)

        assert scores["gamma"] == pytest.approx(0.7)
        assert scores["liquidity"] == pytest.approx(0.4)
        assert scores["volatility"] == pytest.approx(0.6)

    def test_low_volatility_score(self, snapshots, accepted_gates, make_ts):
        bundle = snapshots.bundle(make_ts(10), volatility={"volatility_regime": VolatilityRegime.LOW})
        market, trend, entry, risk, _ = accepted_gates(bundle)

        assert component_scores(market, trend, entry, risk)["volatility"] == pytest.approx(0.9)


class TestCompositeConfidence:
    def test_weighted_sum(self, config):
        scores = {"gamma": 1.0, "trend": 0.8, "liquidity": 1.0, "pattern": 1.0, "volatility": 1.0}
        assert composite_confidence(scores, config) == pytest.approx(0.96)

    def test_clamped(self, config):
        scores = {"gamma": 2.0, "trend": 2.0, "liquidity": 2.0, "pattern": 2.0, "volatility": 2.0}
        assert composite_confidence(scores, config) == 1.0


class TestClassifyQuality:
    @pytest.mark.parametrize("confidence,zones,expected", [
        (0.96, 2, SignalQuality.EXCELLENT),
        (0.96, 1, SignalQuality.GOOD),
        (0.85, 3, SignalQuality.GOOD),
        (0.75, 0, SignalQuality.GOOD),
        (0.70, 0, SignalQuality.FAIR),
        (0.65, 0, SignalQuality.FAIR),
        (0.60, 0, SignalQuality.POOR),
    ])
    def test_quality_tiers(self, config, confidence, zones, expected):
        """Thresholds are strict: exactly 0.85 is not EXCELLENT."""
        assert classify_quality(confidence, zones, config) == expected


class TestSynthesizeSignal:
    """Final signal assembly."""

    def test_bullish_signal(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, zones = accepted_gates(snapshots.bundle(ts))
        signal = synthesize_signal(market, trend, entry, risk, zones, 485.0, ts, config)

        assert signal.action == Action.BUY
        assert signal.confidence == pytest.approx(0.96)
        assert signal.quality == SignalQuality.EXCELLENT
        assert signal.entry_price == 485.0
        assert signal.stop_loss == pytest.approx(482.0)
        assert signal.target1 == pytest.approx(489.0)
        assert signal.target2 == pytest.approx(492.0)
        assert signal.position_size == 2.0
        assert signal.max_risk == 500.0
        assert signal.direction == TrendDirection.BULLISH
        assert signal.reason == "BUY signal with EXCELLENT quality"
        assert signal.warnings == ()
        assert len(signal.confluence_zones) == 2

    def test_bearish_signal_mirrors_levels(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, zones = accepted_gates(snapshots.bearish_bundle(ts), price=483.0)
        signal = synthesize_signal(market, trend, entry, risk, zones, 483.0, ts, config)

        assert signal.action == Action.SELL
        assert signal.stop_loss == pytest.approx(486.0)
        assert signal.target1 == pytest.approx(479.0)
        assert signal.target2 == pytest.approx(476.0)
        assert signal.stop_loss > signal.entry_price > signal.target1 > signal.target2

    def test_high_gamma_lowers_confidence_and_warns(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        bundle = snapshots.bundle(ts, gamma={"gamma_risk": GammaRisk.HIGH})
        market, trend, entry, risk, zones = accepted_gates(bundle)
        signal = synthesize_signal(market, trend, entry, risk, zones, 485.0, ts, config)

        assert signal.confidence == pytest.approx(0.81)
        assert signal.quality == SignalQuality.GOOD
        assert HIGH_GAMMA_WARNING in signal.warnings

    def test_no_zones_warning(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, _ = accepted_gates(snapshots.bundle(ts))
        signal = synthesize_signal(market, trend, entry, risk, (), 485.0, ts, config)

        assert NO_ZONES_WARNING in signal.warnings
        # Without two zones the tier caps at GOOD
        assert signal.quality == SignalQuality.GOOD

    def test_neutral_direction_is_no_trade(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, zones = accepted_gates(snapshots.bundle(ts))
        neutral = replace(trend, direction=TrendDirection.NEUTRAL)
        signal = synthesize_signal(market, neutral, entry, risk, zones, 485.0, ts, config)

        assert signal.action == Action.NO_TRADE
        assert signal.confidence == 0.0
        assert signal.reason == "No directional bias (trend NEUTRAL)"
        assert signal.entry_price == signal.stop_loss == signal.target1 == signal.target2 == 485.0

    def test_missing_volatility_is_no_trade(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, zones = accepted_gates(snapshots.bundle(ts))
        signal = synthesize_signal(market, trend, entry, replace(risk, volatility=None), zones, 485.0, ts, config)

        assert signal.action == Action.NO_TRADE
        assert signal.reason == "No volatility snapshot to size stops and targets"
        assert dict(signal.reasoning)["final_decision"] == signal.reason

    def test_reasoning_records_each_gate(self, snapshots, accepted_gates, config, make_ts):
        ts = make_ts(10)
        market, trend, entry, risk, zones = accepted_gates(snapshots.bundle(ts))
        signal = synthesize_signal(market, trend, entry, risk, zones, 485.0, ts, config)

        keys = [key for key, _ in signal.reasoning]
        assert keys == ["market_condition", "trend", "entry_trigger", "risk_assessment", "final_decision"]
        assert dict(signal.reasoning)["final_decision"] == signal.reason


class TestStrategySignalInvariants:
    def test_no_trade_must_be_degenerate(self, make_ts):
        with pytest.raises(ValueError):
            StrategySignal(
                action=Action.NO_TRADE,
                confidence=0.0,
                quality=SignalQuality.POOR,
                entry_price=485.0,
                stop_loss=480.0,
                target1=485.0,
                target2=485.0,
                position_size=0.0,
                max_risk=0.0,
                current_price=485.0,
                timestamp=make_ts(10),
            )

    def test_confidence_range_enforced(self, make_signal):
        with pytest.raises(ValueError):
            make_signal(confidence=1.2)

    def test_risk_amount(self, make_signal):
        assert make_signal().risk_amount == pytest.approx(6.0)

    def test_to_dict(self, make_signal):
        data = make_signal().to_dict()

        assert data["action"] == "BUY"
        assert data["quality"] == "EXCELLENT"
        assert data["rejected_gate"] is None
        assert data["timestamp"] == "2024-03-15T10:00:00-04:00"
