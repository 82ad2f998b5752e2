"""
Tests for the engine router, router integrity and the infrastructure
validation helpers (unit consistency, symbol mapping, shadow-mode guard).

Run: pytest tests/test_router.py -v
"""

import pytest

from edgeguard.alerts import AlertKind, AlertSink
from edgeguard.errors import RouterIntegrityError
from edgeguard.governance.config import EngineConfig
from edgeguard.governance.router import EngineRouter, route
from edgeguard.governance.schemas import (
    Direction,
    EngineTarget,
    LiquiditySession,
    RouterDecision,
)
from edgeguard.governance.validation import (
    ShadowModeGuard,
    validate_unit_consistency,
    verify_symbol_mapping,
)
from edgeguard.symbols import is_major_pair, pip_scale, to_canonical_symbol, to_display_symbol, to_raw_symbol


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def live_config():
    return EngineConfig(enabled=True, shadow_only=False)


@pytest.fixture
def alerts(clock):
    return AlertSink(clock=clock)


# ============================================================================
# ROUTING
# ============================================================================

class TestRoute:
    """Pure routing decisions"""

    @pytest.mark.parametrize("config", [
        EngineConfig(),
        EngineConfig(enabled=True, long_only_override=True),
        EngineConfig(enabled_pairs=[], allowed_agents=[]),
    ])
    def test_long_always_long_engine(self, config):
        decision = route(Direction.LONG, "XAU/USD", "anyone", config, LiquiditySession.LATE_NY)
        assert decision.engine == EngineTarget.LONG_ENGINE
        assert not decision.shadow_only

    def test_short_disabled_by_default(self):
        decision = route(Direction.SHORT, "EUR_USD", "forex-macro", EngineConfig(), LiquiditySession.NY_OVERLAP)
        assert decision.engine == EngineTarget.BLOCKED
        assert decision.reason == "Short engine disabled"

    def test_long_only_override_wins(self):
        config = EngineConfig(enabled=True, long_only_override=True)
        decision = route(Direction.SHORT, "EUR_USD", "forex-macro", config, LiquiditySession.NY_OVERLAP)
        assert decision.engine == EngineTarget.BLOCKED
        assert decision.reason == "Long-only override active"

    def test_short_routed_live(self, live_config):
        decision = route(Direction.SHORT, "EURUSD", "forex-macro", live_config, LiquiditySession.NY_OVERLAP)
        assert decision.engine == EngineTarget.SHORT_ENGINE
        assert not decision.shadow_only
        assert "live" in decision.reason

    def test_short_routed_shadow(self):
        config = EngineConfig(enabled=True)
        decision = route(Direction.SHORT, "EUR/USD", "forex-macro", config, LiquiditySession.LONDON_OPEN)
        assert decision.engine == EngineTarget.SHORT_ENGINE
        assert decision.shadow_only

    @pytest.mark.parametrize("symbol,agent,session,fragment", [
        ("AUD_USD", "forex-macro", LiquiditySession.NY_OVERLAP, "not in short-enabled pairs"),
        ("EUR_USD", "rogue-agent", LiquiditySession.NY_OVERLAP, "not authorized"),
        ("EUR_USD", "forex-macro", LiquiditySession.ASIAN, "Session asian not allowed"),
    ])
    def test_short_blocks(self, live_config, symbol, agent, session, fragment):
        decision = route(Direction.SHORT, symbol, agent, live_config, session)
        assert decision.engine == EngineTarget.BLOCKED
        assert fragment in decision.reason

    def test_empty_session_list_is_unrestricted(self):
        config = EngineConfig(enabled=True, enabled_pairs=['AUD_USD'], allowed_sessions={'AUD_USD': []})
        decision = route(Direction.SHORT, "AUD/USD", "forex-macro", config, LiquiditySession.ASIAN)
        assert decision.engine == EngineTarget.SHORT_ENGINE


class TestEngineRouter:
    """Clock-driven sessions and integrity auditing"""

    def test_session_from_clock(self, live_config, clock):
        router = EngineRouter(live_config, clock)
        assert router.route(Direction.SHORT, "EUR_USD", "forex-macro").engine == EngineTarget.SHORT_ENGINE

        clock.advance(minutes=12 * 60)  # 01:00 UTC, asian
        assert router.route(Direction.SHORT, "EUR_USD", "forex-macro").engine == EngineTarget.BLOCKED

    def test_explicit_config_override(self, clock):
        router = EngineRouter(EngineConfig(), clock)
        decision = router.route(Direction.SHORT, "EUR_USD", "forex-macro", config=EngineConfig(enabled=True))
        assert decision.engine == EngineTarget.SHORT_ENGINE

    def test_valid_decision_passes_integrity(self, clock, alerts):
        router = EngineRouter(clock=clock, alerts=alerts)
        decision = RouterDecision(EngineTarget.LONG_ENGINE, "ok", Direction.LONG)
        assert router.validate_router_integrity(decision)
        assert router.violation_count == 0
        assert len(alerts) == 0

    def test_violation_alerts(self, clock, alerts):
        router = EngineRouter(clock=clock, alerts=alerts)
        bad = RouterDecision(EngineTarget.SHORT_ENGINE, "bug", Direction.LONG)

        assert not router.validate_router_integrity(bad)
        assert router.violation_count == 1
        alert = alerts.get_alerts(AlertKind.ROUTER_INTEGRITY_VIOLATION)[0]
        assert alert.details['direction'] == "long"

    def test_strict_mode_raises(self, clock, alerts):
        router = EngineRouter(clock=clock, alerts=alerts, strict=True)
        bad = RouterDecision(EngineTarget.LONG_ENGINE, "bug", Direction.SHORT)
        with pytest.raises(RouterIntegrityError) as exc_info:
            router.validate_router_integrity(bad)
        assert exc_info.value.engine == "LONG_ENGINE"

    def test_assert_integrity_raises_without_strict(self, clock):
        router = EngineRouter(clock=clock)
        with pytest.raises(RouterIntegrityError):
            router.assert_integrity(RouterDecision(EngineTarget.SHORT_ENGINE, "bug", Direction.LONG))

    def test_blocked_is_never_a_violation(self, clock):
        router = EngineRouter(clock=clock, strict=True)
        for direction in Direction:
            assert router.validate_router_integrity(RouterDecision(EngineTarget.BLOCKED, "off", direction))


# ============================================================================
# VALIDATION
# ============================================================================

class TestUnitConsistency:

    def test_clean_context(self, base_ctx):
        result = validate_unit_consistency(base_ctx)
        assert result.valid
        assert result.first_failure is None

    def test_friction_ratio_out_of_range(self, base_ctx):
        result = validate_unit_consistency(base_ctx.with_overrides(friction_ratio=120.0))
        assert not result.valid
        assert "outside" in result.first_failure

    def test_total_friction_mismatch(self, base_ctx):
        result = validate_unit_consistency(base_ctx.with_overrides(total_friction=0.0005))
        assert not result.valid
        assert "spread + slippage" in result.first_failure

    def test_collects_every_failure(self, base_ctx):
        result = validate_unit_consistency(base_ctx.with_overrides(atr_value=0.0, spread=-0.0001))
        assert len(result.failures) >= 2


class TestSymbolMapping:

    def test_price_feed_match(self):
        result = verify_symbol_mapping("EURUSD", ["EUR/USD"], [])
        assert result.valid
        assert result.display_symbol == "EUR/USD"
        assert result.in_price_feed

    def test_registry_match(self):
        result = verify_symbol_mapping("GBP_USD", [], ["GBP/USD"])
        assert result.valid
        assert result.in_registry

    def test_unknown(self):
        assert not verify_symbol_mapping("XAU/USD", ["EUR/USD"], ["GBP/USD"]).valid


class TestShadowModeGuard:

    def test_live_mode_passes(self, alerts):
        guard = ShadowModeGuard(alerts)
        assert guard.assert_not_shadow_mode(False)
        assert guard.verify()

    def test_shadow_mode_blocks_and_counts(self, alerts):
        guard = ShadowModeGuard(alerts)
        assert not guard.assert_not_shadow_mode(True, {'symbol': "EUR/USD"})
        assert not guard.assert_not_shadow_mode(True)

        assert guard.violation_count == 2
        assert not guard.verify()
        violations = alerts.get_alerts(AlertKind.SHADOW_MODE_EXECUTION_VIOLATION)
        assert violations[-1].details['violation_count'] == 2

        guard.reset()
        assert guard.verify()


class TestSymbolForms:

    @pytest.mark.parametrize("raw", ["EUR/USD", "EUR_USD", "EURUSD", "eur-usd", " eurusd "])
    def test_normalization(self, raw):
        assert to_display_symbol(raw) == "EUR/USD"
        assert to_canonical_symbol(raw) == "EUR_USD"
        assert to_raw_symbol(raw) == "EURUSD"

    def test_pip_scale_and_majors(self):
        assert pip_scale(1.1) == 0.0001
        assert pip_scale(150.0) == 0.01
        assert is_major_pair("usdjpy")
        assert not is_major_pair("XAU/USD")
