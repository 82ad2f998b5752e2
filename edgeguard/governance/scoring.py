"""
Multiplier & Composite Scorers

Five independent multipliers per engine, multiplied into one composite.
The long and short scorers hold their own coefficient tables; the short side
is stricter on friction (K=4 vs 3) and on session coefficients.
"""

from typing import Dict
import logging

import numpy as np

from .schemas import (
    LiquiditySession,
    LongRegime,
    MarketContext,
    MultiplierBreakdown,
    RegimeClassification,
    ShortRegime,
    VolatilityPhase,
)

LOG = logging.getLogger(__name__)

FRICTION_PENALTY_FLOOR = 0.3


def friction_penalty(friction_ratio: float, k: float) -> float:
    """Ratio-to-threshold clamp with a 0.3 floor"""
    if friction_ratio < k:
        return max(FRICTION_PENALTY_FLOOR, friction_ratio / k)
    return 1.0


# ========================================
# LONG SCORER
# ========================================

class LongScorer:
    """Long-side multipliers (scalping-tuned)"""

    REGIME_BASE: Dict[LongRegime, float] = {
        LongRegime.IGNITION_BREAKOUT: 1.35,
        LongRegime.TREND_CONTINUATION: 1.25,
        LongRegime.MOMENTUM_PULLBACK: 1.05,
    }

    SESSION_FIT: Dict[LiquiditySession, float] = {
        LiquiditySession.LONDON_OPEN: 1.18,
        LiquiditySession.NY_OVERLAP: 1.12,
        LiquiditySession.ASIAN: 0.78,
        LiquiditySession.LATE_NY: 0.68,
    }

    EXIT_EFFICIENCY: Dict[VolatilityPhase, float] = {
        VolatilityPhase.COMPRESSION: 0.72,
        VolatilityPhase.IGNITION: 1.20,
        VolatilityPhase.EXPANSION: 1.15,
        VolatilityPhase.EXHAUSTION: 0.78,
    }

    def __init__(self, friction_k: float = 3.0):
        self.friction_k = friction_k

    def regime_strength(self, regime: RegimeClassification) -> float:
        if not regime.is_tradeable:
            return 0.0
        base = self.REGIME_BASE.get(regime.regime, 0.5)
        return base * (0.75 + (regime.confidence / 100) * 0.25)

    def microstructure_safety(self, ctx: MarketContext) -> float:
        spread_factor = ctx.spread_stability_rank / 100
        friction_factor = min(ctx.friction_ratio / 6, 1.0)
        base = spread_factor * 0.55 + friction_factor * 0.45
        if ctx.liquidity_shock_prob > 55:
            shock = 0.78
        elif ctx.liquidity_shock_prob > 35:
            shock = 0.90
        else:
            shock = 1.0
        return (0.60 + base * 0.55) * shock

    def session_fit(self, ctx: MarketContext) -> float:
        return self.SESSION_FIT[ctx.session]

    def directional_momentum(self, ctx: MarketContext) -> float:
        """Alignment-tiered: full > HTF+MTF > HTF only > misaligned"""
        a = ctx.alignment_score / 100
        if ctx.htf_supports and ctx.mtf_confirms and ctx.ltf_clean:
            return 1.18 + a * 0.17
        if ctx.htf_supports and ctx.mtf_confirms:
            return 0.98 + a * 0.12
        if ctx.htf_supports:
            return 0.82 + a * 0.08
        return 0.55 + a * 0.10

    def friction_penalty(self, ctx: MarketContext) -> float:
        return friction_penalty(ctx.friction_ratio, self.friction_k)

    def exit_efficiency(self, ctx: MarketContext) -> float:
        return self.EXIT_EFFICIENCY[ctx.volatility_phase] * (0.88 + (ctx.spread_stability_rank / 100) * 0.22)

    def score(self, ctx: MarketContext, regime: RegimeClassification) -> MultiplierBreakdown:
        return MultiplierBreakdown(
            regime_strength=self.regime_strength(regime),
            microstructure_safety=self.microstructure_safety(ctx),
            session_fit=self.session_fit(ctx),
            directional_momentum=self.directional_momentum(ctx),
            friction_penalty=self.friction_penalty(ctx),
        )


# ========================================
# SHORT SCORER
# ========================================

class ShortScorer:
    """Short-side multipliers: stricter friction and session tables"""

    REGIME_BOOST: Dict[ShortRegime, float] = {
        ShortRegime.SHOCK_BREAKDOWN: 1.25,
        ShortRegime.RISK_OFF_IMPULSE: 1.15,
        ShortRegime.LIQUIDITY_VACUUM: 0.85,  # risky but tradeable
        ShortRegime.BREAKDOWN_CONTINUATION: 1.10,
    }

    SESSION_FIT: Dict[LiquiditySession, float] = {
        LiquiditySession.LONDON_OPEN: 1.10,
        LiquiditySession.NY_OVERLAP: 1.15,
        LiquiditySession.ASIAN: 0.60,
        LiquiditySession.LATE_NY: 0.50,
    }

    def __init__(self, friction_k: float = 4.0):
        self.friction_k = friction_k

    def regime_strength(self, regime: RegimeClassification) -> float:
        if not regime.is_tradeable:
            return 0.0
        base = self.REGIME_BOOST.get(regime.regime, 0.5)
        return base * (0.6 + (regime.confidence / 100) * 0.4)

    def microstructure_safety(self, ctx: MarketContext) -> float:
        spread_factor = ctx.spread_stability_rank / 100
        friction_factor = min(ctx.friction_ratio / 8, 1.0)
        if ctx.liquidity_shock_prob > 70:
            shock = 0.7
        elif ctx.liquidity_shock_prob > 50:
            shock = 0.85
        else:
            shock = 1.0
        return (spread_factor * 0.4 + friction_factor * 0.6) * shock

    def session_fit(self, ctx: MarketContext) -> float:
        return self.SESSION_FIT[ctx.session]

    def directional_momentum(self, ctx: MarketContext) -> float:
        """Inverse alignment; HTF support halves it"""
        bearish = (100 - ctx.alignment_score) / 100
        return bearish * (0.5 if ctx.htf_supports else 1.2)

    def friction_penalty(self, ctx: MarketContext) -> float:
        return friction_penalty(ctx.friction_ratio, self.friction_k)

    def score(self, ctx: MarketContext, regime: RegimeClassification) -> MultiplierBreakdown:
        return MultiplierBreakdown(
            regime_strength=self.regime_strength(regime),
            microstructure_safety=self.microstructure_safety(ctx),
            session_fit=self.session_fit(ctx),
            directional_momentum=self.directional_momentum(ctx),
            friction_penalty=self.friction_penalty(ctx),
        )


def clamp_score(value: float) -> float:
    return float(np.clip(value, 0, 100))
