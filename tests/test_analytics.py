"""
Tests for decision analytics: pass rates, gate frequency, neutral rate,
composite deciles, data availability and summaries.

Run: pytest tests/test_analytics.py -v
"""

import pytest

from edgeguard.alerts import AlertKind, AlertSink
from edgeguard.audit.analytics import DecisionAnalytics, gate_reason_key, is_neutral_bias
from edgeguard.audit.decision_log import DecisionLogEntry, DecisionLogger
from edgeguard.governance.config import GovernanceConfig
from edgeguard.governance.schemas import (
    Direction,
    DirectionalBias,
    FinalDecision,
    GateEntry,
    GovernanceDecision,
    LongGateId,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def alerts(clock):
    return AlertSink(clock=clock)


@pytest.fixture
def decision_logger(clock):
    decision_logger = DecisionLogger(clock=clock)
    yield decision_logger
    decision_logger.shutdown()


@pytest.fixture
def analytics(decision_logger, alerts, clock):
    return DecisionAnalytics(decision_logger, alerts=alerts, clock=clock)


@pytest.fixture
def log_entry(decision_logger, clock):
    """Append an entry at now + offset_ms"""
    def _log(decision=GovernanceDecision.APPROVED, offset_ms=0, session="ny-overlap",
             gates=(), bias=DirectionalBias.LONG, composite=1.0, snapshot=None, symbol="EUR/USD"):
        final = FinalDecision.BUY if decision != GovernanceDecision.REJECTED else FinalDecision.SKIP
        market_snapshot = {'session': session, 'price_data_available': True, 'analysis_available': True}
        market_snapshot.update(snapshot or {})
        entry = DecisionLogEntry(
            timestamp_ms=clock.now_ms() + offset_ms,
            symbol=symbol,
            timeframe="1h",
            direction=Direction.LONG,
            shadow=False,
            governance_decision=decision,
            regime="momentum-continuation",
            multipliers={},
            composite=composite,
            gates=tuple(gates),
            final_decision=final,
            final_reason=decision.value,
            directional_bias=bias,
            market_snapshot=market_snapshot,
        )
        decision_logger.log(entry)
        return entry
    return _log


FRICTION_GATE = GateEntry(LongGateId.G1_FRICTION, "Friction: ratio 2.10 < 3.0")
PRICE_GATE = GateEntry(LongGateId.G9_PRICE_DATA_UNAVAILABLE, "Price data unavailable (no quote)")


# ============================================================================
# PASS RATE & GATES
# ============================================================================

class TestPassStats:

    def test_by_session(self, analytics, log_entry):
        log_entry(GovernanceDecision.APPROVED, session="ny-overlap")
        log_entry(GovernanceDecision.REJECTED, session="ny-overlap")
        log_entry(GovernanceDecision.THROTTLED, session="asian")
        log_entry(GovernanceDecision.APPROVED, session="london-open")

        stats = analytics.compute_pass_stats()
        assert stats.total_evaluations == 4
        assert stats.approved_count == 2
        assert stats.approval_rate == pytest.approx(0.5)
        assert stats.by_session['ny-overlap'].approval_rate == pytest.approx(0.5)
        assert stats.by_session['asian'].throttled == 1
        assert stats.by_session['late-ny'].total == 0
        assert set(stats.to_dict()['by_session']) == {"asian", "london-open", "ny-overlap", "late-ny"}

    def test_empty_log(self, analytics):
        stats = analytics.compute_pass_stats()
        assert stats.total_evaluations == 0
        assert stats.approval_rate == 0.0

    def test_time_range(self, analytics, log_entry):
        log_entry(offset_ms=-2 * 3_600_000)
        log_entry(GovernanceDecision.REJECTED)
        assert analytics.compute_pass_stats(time_range_ms=3_600_000).total_evaluations == 1


class TestGateFrequency:

    def test_counts_and_categories(self, analytics, log_entry):
        log_entry(GovernanceDecision.REJECTED, gates=[FRICTION_GATE, PRICE_GATE])
        log_entry(GovernanceDecision.REJECTED, gates=[FRICTION_GATE])
        log_entry(GovernanceDecision.APPROVED)
        log_entry(GovernanceDecision.APPROVED)

        freq = analytics.compute_gate_frequency()
        assert [f.gate_id for f in freq] == ["G1_FRICTION", "G9_PRICE_DATA_UNAVAILABLE"]
        assert freq[0].trigger_rate == pytest.approx(0.5)
        assert freq[0].category == "strategy"
        assert freq[1].category == "infrastructure"

    def test_empty(self, analytics):
        assert analytics.compute_gate_frequency() == []

    @pytest.mark.parametrize("message,key", [
        ("Friction: ratio 2.10 < 3.0", "Friction"),
        ("Price data unavailable (no quote)", "Price data unavailable"),
        ("Overtrading", "Overtrading"),
    ])
    def test_gate_reason_key(self, message, key):
        assert gate_reason_key(message) == key


# ============================================================================
# NEUTRAL RATE & AVAILABILITY
# ============================================================================

class TestNeutralRate:

    def test_spike_alerts(self, analytics, log_entry, alerts):
        log_entry(bias=None)
        log_entry(bias=DirectionalBias.NEUTRAL)
        log_entry(bias=DirectionalBias.LONG)
        log_entry(GovernanceDecision.REJECTED, bias=None)

        stats = analytics.compute_neutral_rate()
        assert stats.total_approved == 3
        assert stats.neutral_count == 2
        assert stats.alert_triggered
        assert alerts.get_alerts(AlertKind.NEUTRAL_RATE_SPIKE)[0].details['total_approved'] == 3

    def test_below_threshold(self, analytics, log_entry, alerts):
        log_entry(bias=DirectionalBias.LONG)
        log_entry(bias=None)
        stats = analytics.compute_neutral_rate()
        assert stats.neutral_rate == pytest.approx(0.5)
        assert not stats.alert_triggered
        assert len(alerts) == 0

    def test_no_approvals(self, analytics, log_entry):
        log_entry(GovernanceDecision.REJECTED)
        assert analytics.compute_neutral_rate().neutral_rate == 0.0


class TestDataAvailability:

    def test_degradation_alerts(self, analytics, log_entry, alerts):
        for _ in range(9):
            log_entry()
        log_entry(snapshot={'price_data_available': False})

        stats = analytics.compute_data_availability()
        assert stats.price_unavailable_count == 1
        assert stats.price_availability_rate == pytest.approx(0.9)
        assert stats.analysis_availability_rate == 1.0
        assert stats.alert_triggered
        assert alerts.get_alerts(AlertKind.DATA_AVAILABILITY_DEGRADATION)

    def test_empty_is_fully_available(self, analytics, alerts):
        stats = analytics.compute_data_availability()
        assert stats.price_availability_rate == 1.0
        assert not stats.alert_triggered
        assert len(alerts) == 0


# ============================================================================
# DECILES
# ============================================================================

class TestCompositeDeciles:

    def _populate(self, log_entry, make_trade, count):
        trades = []
        for i in range(count):
            composite = 0.5 + i * 0.1
            entry = log_entry(composite=composite, offset_ms=-i * 600_000)
            trades.append(make_trade(entry.timestamp_ms + 1_000, round(composite - 1.0, 2), mae=0.1, mfe=0.3))
        return trades

    def test_monotonic_deciles(self, analytics, log_entry, make_trade):
        trades = self._populate(log_entry, make_trade, 20)
        report = analytics.compute_composite_deciles(trades)

        assert report.sufficient
        assert report.sample_count == 20
        assert len(report.deciles) == 10
        assert all(d.count == 2 for d in report.deciles)
        assert report.deciles[0].win_rate == 0.0
        assert report.deciles[-1].win_rate == 1.0
        assert report.deciles[0].composite_min == pytest.approx(0.5)
        assert report.spearman == pytest.approx(1.0)

    def test_insufficient_sample(self, analytics, log_entry, make_trade):
        trades = self._populate(log_entry, make_trade, 5)
        report = analytics.compute_composite_deciles(trades)
        assert not report.sufficient
        assert report.sample_count == 5
        assert report.to_dict()['deciles'] == []

    def test_match_window_and_symbol(self, analytics, log_entry, make_trade):
        entry = log_entry()
        far = make_trade(entry.timestamp_ms + 120_000, 1.0)
        other_symbol = make_trade(entry.timestamp_ms, 1.0, symbol="GBP/USD")
        near = make_trade(entry.timestamp_ms - 5_000, -1.0, symbol="EURUSD")

        matched = analytics.match_trades([entry], [far, other_symbol, near])
        assert matched == [(entry, near)]

    def test_min_samples_configurable(self, decision_logger, alerts, clock, log_entry, make_trade):
        trades = self._populate(log_entry, make_trade, 12)
        strict = DecisionAnalytics(
            decision_logger, alerts, GovernanceConfig(min_decile_samples=15), clock,
        )
        assert not strict.compute_composite_deciles(trades).sufficient


# ============================================================================
# SUMMARY
# ============================================================================

class TestSummary:

    def test_summary(self, analytics, log_entry):
        log_entry(GovernanceDecision.REJECTED, gates=[FRICTION_GATE, PRICE_GATE], composite=0.5)
        log_entry(GovernanceDecision.REJECTED, gates=[FRICTION_GATE], composite=0.7,
                  bias=DirectionalBias.NEUTRAL)
        log_entry(GovernanceDecision.APPROVED, composite=1.2)

        summary = analytics.compute_summary()
        assert summary['total_evaluations'] == 3
        assert summary['decisions'] == {'approved': 1, 'throttled': 0, 'rejected': 2}
        assert summary['final_decisions'] == {'BUY': 1, 'SELL': 0, 'SKIP': 2}
        assert summary['avg_composite'] == pytest.approx(0.8)
        assert summary['top_gate_ids'][0] == {'id': "G1_FRICTION", 'count': 2}
        assert summary['top_gate_reasons'][0] == {'reason': "Friction", 'count': 2}
        assert summary['neutral_bias_rate'] == pytest.approx(1 / 3)

    def test_summary_neutral_rate_counts_missing_bias(self, analytics, log_entry):
        log_entry(GovernanceDecision.APPROVED, bias=None)
        log_entry(GovernanceDecision.APPROVED, bias=DirectionalBias.NEUTRAL)
        log_entry(GovernanceDecision.APPROVED, bias=DirectionalBias.LONG)
        log_entry(GovernanceDecision.APPROVED, bias=DirectionalBias.LONG)

        summary = analytics.compute_summary()
        stats = analytics.compute_neutral_rate()
        assert summary['neutral_bias_rate'] == pytest.approx(0.5)
        assert summary['neutral_bias_rate'] == pytest.approx(stats.neutral_rate)

    def test_is_neutral_bias(self):
        assert is_neutral_bias(None)
        assert is_neutral_bias(DirectionalBias.NEUTRAL)
        assert not is_neutral_bias(DirectionalBias.SHORT)

    def test_empty_summary(self, analytics):
        summary = analytics.compute_summary()
        assert summary['total_evaluations'] == 0
        assert summary['top_gate_ids'] == []
