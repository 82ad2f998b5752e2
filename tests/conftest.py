"""
Shared fixtures for the edgeguard test suite.

Contexts are built by hand (no collaborators involved) so regime, scoring
and gate tests stay independent of the context provider.
"""

from datetime import datetime, timezone

import pytest

from edgeguard.clock import ManualClock
from edgeguard.governance.context import AnalysisSnapshot, InMemoryMarketData, InMemoryPriceFeed
from edgeguard.governance.schemas import (
    LiquiditySession,
    MarketContext,
    TradeOutcome,
    TradeRecord,
    VolatilityPhase,
)

# Monday 13:00 UTC, inside the ny-overlap session
NY_OVERLAP_MOMENT = datetime(2025, 1, 6, 13, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock.at(NY_OVERLAP_MOMENT)


@pytest.fixture
def base_ctx():
    """Clean, fully available EUR/USD context in an expansion phase"""
    return MarketContext(
        symbol="EUR/USD",
        alignment_score=50.0,
        htf_supports=True,
        mtf_confirms=True,
        ltf_clean=True,
        volatility_phase=VolatilityPhase.EXPANSION,
        phase_confidence=70.0,
        atr_value=0.0008,
        atr_avg=0.0007,
        session=LiquiditySession.NY_OVERLAP,
        session_aggressiveness=78.0,
        is_major_pair=True,
        spread=0.00015,
        bid=1.10000,
        ask=1.10015,
        slippage_estimate=0.00002,
        total_friction=0.00017,
        friction_ratio=5.0,
        spread_stability_rank=40.0,
        liquidity_shock_prob=60.0,
        price_data_available=True,
        analysis_available=True,
        symbol_mapped=True,
    )


@pytest.fixture
def risk_off_ctx(base_ctx):
    """Bearish context that the short ladder classifies as risk-off-impulse"""
    return base_ctx.with_overrides(
        htf_supports=False,
        mtf_confirms=True,
        alignment_score=20.0,
        phase_confidence=80.0,
        spread_stability_rank=80.0,
        liquidity_shock_prob=45.0,
        friction_ratio=6.0,
    )


@pytest.fixture
def bullish_analysis():
    return AnalysisSnapshot(
        symbol="EUR/USD",
        bias_1d="bullish",
        bias_4h="bullish",
        bias_1h="bullish",
        efficiency_15m=0.5,
        atr_1h=0.0012,
        atr_4h=0.0008,
    )


@pytest.fixture
def market_data(bullish_analysis):
    source = InMemoryMarketData()
    source.set_analysis(bullish_analysis)
    return source


@pytest.fixture
def price_feed():
    feed = InMemoryPriceFeed()
    feed.update_quote("EUR/USD", 1.10000, 1.10015)
    return feed


@pytest.fixture
def make_trade():
    """Factory for closed trades; outcome follows the sign of pnl unless given"""
    def _make(timestamp_ms, pnl, symbol="EUR/USD", **kwargs):
        outcome = kwargs.pop('outcome', TradeOutcome.WIN if pnl > 0 else TradeOutcome.LOSS)
        return TradeRecord(symbol=symbol, timestamp_ms=timestamp_ms, pnl_percent=pnl, outcome=outcome, **kwargs)
    return _make
