"""
Tests for the governance context provider.

Covers session/phase/friction derivations, trade sequencing, the slow/fast
cache lifetimes and the handling of unavailable collaborators.

Run: pytest tests/test_context.py -v
"""

import time

import pytest

from edgeguard.errors import UpstreamUnavailableError
from edgeguard.governance.config import GovernanceConfig
from edgeguard.governance.context import (
    AnalysisSnapshot,
    ContextProvider,
    InMemoryPriceFeed,
    MarketDataProvider,
    candles_since_alignment,
    classify_volatility_phase,
    compute_friction,
    compute_pair_expectancy,
    compute_sequencing,
    detect_session,
    is_overtrading,
    liquidity_shock_probability,
    sort_trade_history,
    spread_stability_rank,
)
from edgeguard.governance.schemas import (
    LiquiditySession,
    SequencingCluster,
    TradeOutcome,
    VolatilityPhase,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def provider(market_data, price_feed, clock):
    p = ContextProvider(market_data, price_feed, GovernanceConfig(), clock)
    yield p
    p.shutdown()


class FailingMarketData(MarketDataProvider):

    def __init__(self, error):
        self.error = error

    def get_analysis(self, symbol, timeframe):
        raise self.error


class PerTimeframeMarketData(MarketDataProvider):
    """Different ATR read per timeframe"""

    def __init__(self, atr_by_timeframe):
        self.atr_by_timeframe = atr_by_timeframe

    def get_analysis(self, symbol, timeframe):
        atr = self.atr_by_timeframe[timeframe]
        return AnalysisSnapshot(symbol=symbol, bias_1d="bullish", bias_4h="bullish", bias_1h="bullish",
                                atr_1h=atr, atr_4h=0.0008)


class SlowMarketData(MarketDataProvider):

    def get_analysis(self, symbol, timeframe):
        time.sleep(0.5)
        return AnalysisSnapshot(symbol=symbol)


# ============================================================================
# PURE DERIVATIONS
# ============================================================================

class TestSessionAndPhase:
    """Session windows and volatility phase bands"""

    def test_session_boundaries(self):
        assert detect_session(0) == LiquiditySession.LATE_NY
        assert detect_session(1) == LiquiditySession.ASIAN
        assert detect_session(6) == LiquiditySession.ASIAN
        assert detect_session(7) == LiquiditySession.LONDON_OPEN
        assert detect_session(12) == LiquiditySession.NY_OVERLAP
        assert detect_session(17) == LiquiditySession.LATE_NY

    def test_deep_compression(self):
        phase, confidence = classify_volatility_phase(0.5, 1.0)
        assert phase == VolatilityPhase.COMPRESSION
        assert confidence == pytest.approx(82.0)

    def test_expansion(self):
        phase, confidence = classify_volatility_phase(0.0012, 0.0008)
        assert phase == VolatilityPhase.EXPANSION
        assert confidence == pytest.approx(80.0)

    def test_exhaustion_confidence_capped(self):
        phase, confidence = classify_volatility_phase(10.0, 1.0)
        assert phase == VolatilityPhase.EXHAUSTION
        assert confidence <= 95.0

    def test_zero_average_is_neutral_ratio(self):
        phase, confidence = classify_volatility_phase(0.001, 0.0)
        assert phase == VolatilityPhase.IGNITION
        assert confidence == pytest.approx(64.0)


class TestMicrostructure:
    """Spread stability, friction and shock probability"""

    def test_spread_rank_defaults_with_one_sample(self):
        assert spread_stability_rank([0.0001]) == 60.0

    def test_constant_spread_is_fully_stable(self):
        assert spread_stability_rank([0.0001, 0.0001, 0.0001]) == pytest.approx(100.0)

    def test_erratic_spread_ranks_low(self):
        assert spread_stability_rank([0.0001, 0.0010, 0.0001, 0.0010]) < 30

    def test_zero_friction_ratio(self):
        total, ratio = compute_friction(0.001, 0.0, 0.0)
        assert total == 0.0
        assert ratio == 10.0

    def test_shock_probability_clamped(self):
        assert liquidity_shock_probability(10.0, VolatilityPhase.EXHAUSTION, LiquiditySession.LATE_NY) == 100.0
        assert liquidity_shock_probability(60.0, VolatilityPhase.EXPANSION, LiquiditySession.NY_OVERLAP) == 40.0


class TestSequencing:
    """Outcome clustering and edge decay"""

    def test_too_few_trades_is_neutral(self, make_trade):
        state = compute_sequencing([make_trade(2, -1.0), make_trade(1, -1.0)])
        assert state.cluster == SequencingCluster.NEUTRAL
        assert state.confidence_adj == 0.0

    def test_loss_cluster_adjustments(self, make_trade):
        trades = sort_trade_history([make_trade(i, -0.5) for i in range(5)])
        state = compute_sequencing(trades)
        assert state.cluster == SequencingCluster.LOSS_CLUSTER
        assert state.confidence_adj == -15.0
        assert state.density_adj == -25.0

    def test_profit_momentum(self, make_trade):
        pnls = [1.0, 1.0, -1.0, 1.0, 1.0]
        trades = sort_trade_history([make_trade(i, p) for i, p in enumerate(pnls)])
        assert compute_sequencing(trades).cluster == SequencingCluster.PROFIT_MOMENTUM

    def test_edge_decay(self, make_trade):
        # Most recent ten: 2 wins; previous ten: 8 wins
        recent = [make_trade(100 + i, 1.0 if i < 2 else -1.0) for i in range(10)]
        older = [make_trade(i, 1.0 if i < 8 else -1.0) for i in range(10)]
        state = compute_sequencing(sort_trade_history(recent + older))
        assert state.edge_decaying
        assert state.edge_decay_rate == pytest.approx(75.0)

    def test_pair_expectancy(self, make_trade):
        assert compute_pair_expectancy("EUR/USD", [make_trade(1, 1.0)]) == (55.0, False)
        trades = [make_trade(i, 1.0, symbol="EUR_USD") for i in range(4)]
        expectancy, favored = compute_pair_expectancy("EUR/USD", trades)
        assert expectancy == pytest.approx(82.0)
        assert favored

    def test_overtrading_cap(self, make_trade):
        now = 10 * 60_000
        trades = [make_trade(now - i * 1000, 0.1) for i in range(10)]
        caps = GovernanceConfig().overtrading_caps
        assert is_overtrading(trades, now, LiquiditySession.NY_OVERLAP, caps)
        assert not is_overtrading(trades[:9], now, LiquiditySession.NY_OVERLAP, caps)

    def test_candles_since_alignment(self):
        series = ["bearish", "bullish", "bearish", "bullish", "bullish"]
        assert candles_since_alignment(series, "bullish") == 2
        assert candles_since_alignment(series, "bearish") == 0


# ============================================================================
# PROVIDER
# ============================================================================

class TestContextProvider:
    """Composition, caching and availability"""

    def test_full_context(self, provider):
        ctx = provider.get_context("EURUSD")

        assert ctx.symbol == "EUR/USD"
        assert ctx.session == LiquiditySession.NY_OVERLAP
        assert ctx.session_aggressiveness == 78.0
        assert ctx.htf_supports and ctx.mtf_confirms and ctx.ltf_clean
        assert ctx.alignment_score == 100.0
        assert ctx.volatility_phase == VolatilityPhase.EXPANSION
        assert ctx.spread == pytest.approx(0.00015)
        assert ctx.total_friction == pytest.approx(0.00017)
        assert ctx.friction_ratio == pytest.approx(0.0012 / 0.00017)
        assert ctx.spread_stability_rank == 60.0
        assert ctx.liquidity_shock_prob == 40.0
        assert ctx.is_major_pair
        assert ctx.symbol_mapped
        assert ctx.data_complete

    def test_fast_cache_ttl(self, provider, price_feed, clock):
        first = provider.get_context("EUR/USD")
        price_feed.update_quote("EUR/USD", 1.10000, 1.10030)

        cached = provider.get_context("EUR/USD")
        assert cached.spread == pytest.approx(first.spread)

        clock.advance(ms=600)
        refreshed = provider.get_context("EUR/USD")
        assert refreshed.spread == pytest.approx(0.0003)
        # Slow part still served from cache
        assert refreshed.slow_computed_at_ms == first.slow_computed_at_ms

    def test_fast_cache_follows_timeframe_atr(self, price_feed, clock):
        market_data = PerTimeframeMarketData({"1h": 0.0012, "4h": 0.0003})
        p = ContextProvider(market_data, price_feed, GovernanceConfig(), clock)
        try:
            hourly = p.get_context("EUR/USD", "1h")
            four_hour = p.get_context("EUR/USD", "4h")
        finally:
            p.shutdown()

        # Same quote read within the fast TTL
        assert p.monitor.get_stats()['fast_hits'] == 1
        assert four_hour.spread == hourly.spread
        assert four_hour.spread_stability_rank == hourly.spread_stability_rank
        # Friction and shock follow each timeframe's ATR and phase
        assert hourly.friction_ratio == pytest.approx(0.0012 / 0.00017)
        assert four_hour.friction_ratio == pytest.approx(0.0003 / 0.00017)
        assert hourly.volatility_phase == VolatilityPhase.EXPANSION
        assert four_hour.volatility_phase == VolatilityPhase.COMPRESSION
        assert four_hour.liquidity_shock_prob == pytest.approx(hourly.liquidity_shock_prob + 5.0)

    def test_slow_cache_ttl(self, provider, market_data, clock):
        provider.get_context("EUR/USD")
        market_data.set_analysis(AnalysisSnapshot(
            symbol="EUR/USD", bias_1d="bearish", bias_4h="bullish", bias_1h="bullish",
            atr_1h=0.0012, atr_4h=0.0008,
        ))

        clock.advance(seconds=4)
        assert provider.get_context("EUR/USD").htf_supports

        clock.advance(seconds=2)
        assert not provider.get_context("EUR/USD").htf_supports

    def test_cache_statistics(self, provider):
        provider.get_context("EUR/USD")
        provider.get_context("EUR/USD")

        stats = provider.monitor.get_stats()
        assert stats['slow_misses'] == 1
        assert stats['slow_hits'] == 1
        assert stats['fast_hits'] == 1
        assert stats['slow_hit_rate'] == 0.5
        assert stats['retrievals'] == 2

        provider.reset()
        assert provider.monitor.get_stats()['retrievals'] == 0

    def test_uncached_context_bypasses_caches(self, provider):
        provider.get_context_uncached("EUR/USD")
        stats = provider.monitor.get_stats()
        assert stats['slow_misses'] == 0
        assert stats['slow_hits'] == 0

    def test_missing_price(self, market_data, clock):
        p = ContextProvider(market_data, InMemoryPriceFeed(), clock=clock, symbol_registry=["EUR/USD"])
        try:
            ctx = p.get_context("EUR/USD")
        finally:
            p.shutdown()

        assert not ctx.price_data_available
        assert ctx.spread == 0.0
        assert ctx.bid == 0.0
        assert ctx.spread_stability_rank == 0.0
        assert ctx.symbol_mapped

    @pytest.mark.parametrize("error", [
        UpstreamUnavailableError("analysis", "EUR/USD", "maintenance"),
        RuntimeError("connection reset"),
    ])
    def test_failing_analysis(self, price_feed, clock, error):
        p = ContextProvider(FailingMarketData(error), price_feed, clock=clock)
        try:
            ctx = p.get_context("EUR/USD")
        finally:
            p.shutdown()

        assert not ctx.analysis_available
        assert ctx.alignment_score == 0.0
        assert ctx.price_data_available

    def test_slow_analysis_times_out(self, price_feed, clock):
        config = GovernanceConfig(upstream_timeout_seconds=0.05)
        p = ContextProvider(SlowMarketData(), price_feed, config, clock)
        try:
            ctx = p.get_context("EUR/USD")
        finally:
            p.shutdown()
        assert not ctx.analysis_available

    def test_unknown_symbol_is_unmapped(self, provider):
        ctx = provider.get_context("XAU/USD")
        assert not ctx.symbol_mapped
        assert not ctx.price_data_available
        assert not ctx.analysis_available

    def test_loss_cluster_from_history(self, provider, make_trade, clock):
        now = clock.now_ms()
        history = [make_trade(now - (i + 1) * 3_600_000, -0.4) for i in range(5)]
        ctx = provider.get_context("EUR/USD", trade_history=history)
        assert ctx.sequencing_cluster == SequencingCluster.LOSS_CLUSTER
        assert ctx.sequencing_confidence_adj == -15.0

    def test_avoided_trades_ignored(self, provider, make_trade, clock):
        now = clock.now_ms()
        history = [
            make_trade(now - (i + 1) * 3_600_000, -0.4, outcome=TradeOutcome.AVOIDED)
            for i in range(5)
        ]
        ctx = provider.get_context("EUR/USD", trade_history=history)
        assert ctx.sequencing_cluster == SequencingCluster.NEUTRAL
