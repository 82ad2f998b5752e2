"""
Integration tests for GovernanceEngine: routing, evaluation, logging,
shadow handling, failure containment, config reloads and monitoring.

Run: pytest tests/test_engine.py -v
"""

import json
import os
import time
from unittest.mock import patch

import pytest

from edgeguard.alerts import AlertKind
from edgeguard.audit.stores import InMemoryShadowTradeStore
from edgeguard.events import EventType
from edgeguard.governance.config import ConfigManager, EngineConfig, GovernanceConfig
from edgeguard.governance.engine import GovernanceEngine, GovernanceVerdict, bias_conflicts
from edgeguard.governance.schemas import (
    Direction,
    DirectionalBias,
    EngineTarget,
    FinalDecision,
    GovernanceDecision,
    LiquiditySession,
    RouterDecision,
    TradeProposal,
)
from edgeguard.monitoring.shadow_validation import ShadowMetrics, ShadowStatus


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def build(market_data, price_feed, clock):
    """Engine factory; every engine built here is shut down after the test"""
    engines = []

    def _build(engine_config=None, **kwargs):
        config = GovernanceConfig(engine=engine_config) if engine_config else None
        instance = GovernanceEngine(market_data, price_feed, config=config, clock=clock, **kwargs)
        engines.append(instance)
        return instance

    yield _build
    for instance in engines:
        instance.shutdown()


@pytest.fixture
def engine(build):
    return build()


@pytest.fixture
def events(engine):
    received = []
    for event_type in EventType:
        engine.event_bus.subscribe(event_type, received.append)
    return received


LONG_PROPOSAL = TradeProposal(symbol="EURUSD", direction=Direction.LONG, agent_id="forex-macro")
SHORT_PROPOSAL = TradeProposal(symbol="EUR_USD", direction=Direction.SHORT, agent_id="forex-macro")


# ============================================================================
# LONG PATH
# ============================================================================

class TestLongEvaluation:

    def test_approved_long(self, engine, events):
        verdict = engine.evaluate(LONG_PROPOSAL)

        assert verdict.route.engine == EngineTarget.LONG_ENGINE
        assert verdict.governance_decision == GovernanceDecision.APPROVED
        assert verdict.final_decision == FinalDecision.BUY
        assert verdict.size_multiplier == 1.0
        assert not verdict.shadow
        assert verdict.context.symbol == "EUR/USD"
        assert verdict.final_reason.startswith("Approved")

        entries = engine.decision_logger.get_all()
        assert len(entries) == 1
        assert entries[0].symbol == "EUR/USD"
        assert entries[0].agent_id == "forex-macro"
        assert [e.event_type for e in events] == [EventType.DECISION_MADE]

    def test_conflicting_bias_skips(self, engine):
        proposal = TradeProposal("EUR/USD", Direction.LONG, "forex-macro", directional_bias=DirectionalBias.SHORT)
        verdict = engine.evaluate(proposal)

        assert verdict.governance_decision == GovernanceDecision.APPROVED
        assert verdict.final_decision == FinalDecision.SKIP
        assert "conflicts" in verdict.final_reason
        assert engine.decision_logger.get_all()[0].final_decision == FinalDecision.SKIP

    def test_unknown_symbol_rejected_and_alerted(self, engine):
        verdict = engine.evaluate(TradeProposal("XAU/USD", Direction.LONG, "forex-macro"))

        assert verdict.final_decision == FinalDecision.SKIP
        assert verdict.governance_decision == GovernanceDecision.REJECTED
        assert not verdict.context.price_data_available
        assert engine.alerts.get_alerts(AlertKind.SYMBOL_MAPPING_FAILURE)

    def test_evaluation_failure_is_logged_rejection(self, engine):
        with patch.object(engine.context_provider, 'get_context', side_effect=RuntimeError("feed down")):
            verdict = engine.evaluate(LONG_PROPOSAL)

        assert verdict.final_decision == FinalDecision.SKIP
        assert "governance evaluation failed (feed down)" in verdict.final_reason
        assert verdict.result is None
        entry = engine.decision_logger.get_all()[0]
        assert entry.regime == "unavailable"
        assert entry.governance_decision == GovernanceDecision.REJECTED

    def test_recorded_trades_feed_context(self, engine, make_trade, clock):
        for i in range(3):
            engine.record_trade(make_trade(clock.now_ms() - (i + 1) * 60_000, -1.0))
        verdict = engine.evaluate(LONG_PROPOSAL)
        assert verdict.context.sequencing_cluster.value != "neutral"


# ============================================================================
# SHORT PATH
# ============================================================================

class TestShortEvaluation:

    def test_blocked_by_default(self, engine, events):
        verdict = engine.evaluate(SHORT_PROPOSAL)

        assert verdict.final_decision == FinalDecision.SKIP
        assert verdict.final_reason == "Blocked: Short engine disabled"
        assert verdict.size_multiplier == 0.0
        assert len(engine.decision_logger) == 0
        assert [e.event_type for e in events] == [EventType.ROUTE_BLOCKED]

    def test_live_short_sells(self, build, risk_off_ctx):
        engine = build(EngineConfig(enabled=True, shadow_only=False))
        with patch.object(engine.context_provider, 'get_context', return_value=risk_off_ctx):
            verdict = engine.evaluate(SHORT_PROPOSAL)

        assert verdict.route.engine == EngineTarget.SHORT_ENGINE
        assert verdict.final_decision == FinalDecision.SELL
        assert not verdict.shadow
        assert verdict.result.entry_signal is not None
        assert 'stop_recommendation' in verdict.log_entry.annex
        assert engine.authorize_execution(verdict)

    def test_shadow_short_persisted_and_guarded(self, build, risk_off_ctx):
        store = InMemoryShadowTradeStore()
        engine = build(EngineConfig(enabled=True), shadow_store=store)
        with patch.object(engine.context_provider, 'get_context', return_value=risk_off_ctx):
            verdict = engine.evaluate(SHORT_PROPOSAL)
        engine.decision_logger.flush()

        assert verdict.shadow
        assert verdict.final_decision == FinalDecision.SELL
        assert verdict.final_reason.endswith("[shadow only]")
        assert store.get(verdict.log_entry.signal_id) is not None

        assert not engine.authorize_execution(verdict)
        assert engine.shadow_guard.violation_count == 1
        assert engine.alerts.get_alerts(AlertKind.SHADOW_MODE_EXECUTION_VIOLATION)

    def test_shadow_short_in_uptrend_rejected(self, build):
        store = InMemoryShadowTradeStore()
        engine = build(EngineConfig(enabled=True), shadow_store=store)
        verdict = engine.evaluate(SHORT_PROPOSAL)
        engine.decision_logger.flush()

        assert verdict.final_decision == FinalDecision.SKIP
        assert verdict.shadow
        assert verdict.result.regime.regime.value == "orderly-uptrend"
        assert len(store) == 1

    def test_skip_never_authorized(self, engine):
        verdict = engine.evaluate(SHORT_PROPOSAL)
        assert not engine.authorize_execution(verdict)
        assert engine.shadow_guard.violation_count == 0

    def test_hand_built_shadow_verdict_blocked(self, engine):
        verdict = GovernanceVerdict(
            proposal=SHORT_PROPOSAL,
            route=RouterDecision(EngineTarget.SHORT_ENGINE, "shadow", Direction.SHORT, shadow_only=True),
            final_decision=FinalDecision.SELL,
            final_reason="Approved",
            shadow=True,
            size_multiplier=1.0,
            timestamp_ms=0,
        )
        assert not engine.authorize_execution(verdict)
        alert = engine.alerts.get_alerts(AlertKind.SHADOW_MODE_EXECUTION_VIOLATION)[0]
        assert alert.details['symbol'] == "EUR/USD"


class TestBiasConflicts:

    @pytest.mark.parametrize("direction,bias,expected", [
        (Direction.LONG, None, False),
        (Direction.LONG, DirectionalBias.NEUTRAL, False),
        (Direction.LONG, DirectionalBias.LONG, False),
        (Direction.LONG, DirectionalBias.SHORT, True),
        (Direction.SHORT, DirectionalBias.LONG, True),
        (Direction.SHORT, DirectionalBias.SHORT, False),
    ])
    def test_table(self, direction, bias, expected):
        assert bias_conflicts(direction, bias) is expected


# ============================================================================
# CONFIG & MONITORING
# ============================================================================

class TestConfigAndMonitoring:

    def test_config_update_propagates(self, build):
        engine = build(EngineConfig(enabled=True, shadow_only=False))
        received = []
        engine.event_bus.subscribe(EventType.CONFIG_RELOADED, received.append)

        engine.config_manager.update(GovernanceConfig(engine=EngineConfig(enabled=True, long_only_override=True)))

        assert received[0].data['config_hash'] == engine.config.get_config_hash()
        decision = engine.route(Direction.SHORT, "EUR/USD", "forex-macro", session=LiquiditySession.NY_OVERLAP)
        assert decision.reason == "Long-only override active"
        assert engine.short_engine.config.long_only_override

    def test_config_file_edit_reaches_next_verdict(self, build, risk_off_ctx, tmp_path):
        path = tmp_path / "governance.json"
        manager = ConfigManager(str(path), poll_interval_seconds=0.05)
        manager.save()
        engine = build(config_manager=manager)
        received = []
        engine.event_bus.subscribe(EventType.CONFIG_RELOADED, received.append)

        with patch.object(engine.context_provider, 'get_context', return_value=risk_off_ctx):
            assert engine.evaluate(SHORT_PROPOSAL).final_reason == "Blocked: Short engine disabled"

            engine.start()
            data = json.loads(path.read_text())
            data['engine']['enabled'] = True
            data['engine']['shadow_only'] = False
            path.write_text(json.dumps(data))
            stat = path.stat()
            os.utime(path, (stat.st_atime, stat.st_mtime + 10))

            deadline = time.monotonic() + 3.0
            while not engine.router.config.enabled and time.monotonic() < deadline:
                time.sleep(0.02)
            verdict = engine.evaluate(SHORT_PROPOSAL)

        assert verdict.route.engine == EngineTarget.SHORT_ENGINE
        assert verdict.final_decision == FinalDecision.SELL
        assert engine.short_engine.config.enabled
        assert received

    def test_evaluate_after_shutdown(self, build, risk_off_ctx):
        store = InMemoryShadowTradeStore()
        engine = build(EngineConfig(enabled=True), shadow_store=store)
        engine.shutdown()

        with patch.object(engine.context_provider, 'get_context', return_value=risk_off_ctx):
            verdict = engine.evaluate(SHORT_PROPOSAL)

        assert verdict.shadow
        assert len(engine.decision_logger) == 1
        assert len(store) == 0

    def test_rolling_health_over_recorded_trades(self, engine, make_trade, clock):
        received = []
        engine.event_bus.subscribe(EventType.HEALTH_EVALUATED, received.append)
        for i in range(60):
            engine.record_trade(make_trade(clock.now_ms() - i * 60_000, -0.5, duration_minutes=60))

        state = engine.compute_rolling_health()
        assert not state.is_healthy
        assert received[0].data['protection_level'] == "heavy"
        assert engine.alerts.get_alerts(AlertKind.DEGRADATION_DETECTED)

    def test_evaluate_shadow_uses_configured_floor(self, engine):
        metrics = ShadowMetrics(12, 0.8, 20.0, 10.0, 0.55, 0.25, 0.0019, 85.0)
        assert engine.evaluate_shadow(metrics).status == ShadowStatus.COLLECTING
        assert engine.evaluate_shadow(metrics, min_trades=10).status == ShadowStatus.PROMOTED

    def test_health_status_and_reset(self, engine, make_trade):
        engine.evaluate(LONG_PROPOSAL)
        engine.record_trade(make_trade(0, 0.3))

        status = engine.get_health_status()
        assert status['decision_count'] == 1
        assert status['recorded_trades'] == 1
        assert status['short_engine_enabled'] is False
        assert status['shadow_persistence']['healthy']

        engine.reset()
        assert len(engine.decision_logger) == 0
        assert engine.get_trade_history() == []

    def test_verdict_serializes(self, engine):
        data = engine.evaluate(LONG_PROPOSAL).to_dict()
        assert data['symbol'] == "EUR/USD"
        assert data['final_decision'] == "BUY"
        assert data['route']['engine'] == "LONG_ENGINE"
        assert data['market_snapshot']['session'] == "ny-overlap"
