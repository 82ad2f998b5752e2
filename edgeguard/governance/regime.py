"""
Regime Classifiers

Each engine owns an ordered table of (predicate, regime, confidence) rules.
Rules are evaluated top to bottom and the first match wins. Suppression rules
come first, tradeable rules follow, and a fallback keeps classification total.

The long and short tables use disjoint regime enums and are never shared.
"""

from typing import Callable, NamedTuple, Optional, Sequence, Union
import logging

import numpy as np

from .schemas import (
    LongRegime,
    MarketContext,
    Regime,
    RegimeClassification,
    ShortRegime,
    VolatilityPhase,
)

LOG = logging.getLogger(__name__)

Predicate = Callable[[MarketContext], bool]
ConfidenceFn = Callable[[MarketContext], float]
ReasonFn = Union[str, Callable[[MarketContext], str], None]

ACTIVE_PHASES = (VolatilityPhase.IGNITION, VolatilityPhase.EXPANSION)


class RegimeRule(NamedTuple):
    name: str
    predicate: Predicate
    regime: Regime
    confidence: ConfidenceFn
    tradeable: bool
    reason: ReasonFn = None


class RegimeClassifier:
    """First-match-wins evaluation of an ordered rule table"""

    def __init__(self, rules: Sequence[RegimeRule], fallback: RegimeRule):
        if fallback.tradeable:
            raise ValueError("Fallback regime must be suppressed")
        self.rules = tuple(rules)
        self.fallback = fallback

    def classify(self, ctx: MarketContext) -> RegimeClassification:
        for rule in self.rules:
            if rule.predicate(ctx):
                return self._build(rule, ctx)
        return self._build(self.fallback, ctx)

    def match(self, ctx: MarketContext) -> Optional[RegimeRule]:
        """The first matching rule, or None when only the fallback applies"""
        for rule in self.rules:
            if rule.predicate(ctx):
                return rule
        return None

    @staticmethod
    def _build(rule: RegimeRule, ctx: MarketContext) -> RegimeClassification:
        confidence = float(np.clip(rule.confidence(ctx), 0, 100))
        if rule.tradeable:
            reason = None
        elif callable(rule.reason):
            reason = rule.reason(ctx)
        else:
            reason = rule.reason or f"Regime {rule.regime.value} suppressed"
        return RegimeClassification(
            regime=rule.regime,
            confidence=confidence,
            is_tradeable=rule.tradeable,
            suppression_reason=reason,
            rule=rule.name,
        )


# ========================================
# LONG LADDER
# ========================================

LONG_RULES = (
    # Suppression
    RegimeRule(
        name="data-gap",
        predicate=lambda c: not c.data_complete,
        regime=LongRegime.DATA_GAP,
        confidence=lambda c: 100.0,
        tradeable=False,
        reason=lambda c: "Price data unavailable" if not c.price_data_available else "Analysis data unavailable",
    ),
    RegimeRule(
        name="breakdown-pressure",
        predicate=lambda c: not c.htf_supports and c.alignment_score < 35 and c.liquidity_shock_prob >= 55,
        regime=LongRegime.BREAKDOWN_PRESSURE,
        confidence=lambda c: 55 + (35 - c.alignment_score) * 0.5 + (c.liquidity_shock_prob - 55) * 0.5,
        tradeable=False,
        reason=lambda c: (
            f"Breakdown pressure: alignment {c.alignment_score:.0f}% with shock "
            f"{c.liquidity_shock_prob:.0f}% favors shorts"
        ),
    ),
    RegimeRule(
        name="exhaustion-fade",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.EXHAUSTION,
        regime=LongRegime.EXHAUSTION_FADE,
        confidence=lambda c: c.phase_confidence,
        tradeable=False,
        reason="Exhaustion phase: chop risk too high for long entries",
    ),
    RegimeRule(
        name="compression-coil",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.COMPRESSION and not (c.htf_supports and c.mtf_confirms),
        regime=LongRegime.COMPRESSION_COIL,
        confidence=lambda c: c.phase_confidence,
        tradeable=False,
        reason="Compression without HTF+MTF support",
    ),
    # Tradeable
    RegimeRule(
        name="ignition-breakout",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.IGNITION and (c.htf_supports or c.alignment_score >= 50),
        regime=LongRegime.IGNITION_BREAKOUT,
        confidence=lambda c: c.phase_confidence * 0.6 + c.alignment_score * 0.4,
        tradeable=True,
    ),
    RegimeRule(
        name="trend-continuation",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.EXPANSION and c.htf_supports and c.mtf_confirms,
        regime=LongRegime.TREND_CONTINUATION,
        confidence=lambda c: c.phase_confidence * 0.5 + c.alignment_score * 0.5,
        tradeable=True,
    ),
    RegimeRule(
        name="momentum-pullback",
        predicate=lambda c: c.htf_supports and c.alignment_score >= 40,
        regime=LongRegime.MOMENTUM_PULLBACK,
        confidence=lambda c: c.phase_confidence * 0.4 + c.alignment_score * 0.6,
        tradeable=True,
    ),
)

LONG_FALLBACK = RegimeRule(
    name="no-long-edge",
    predicate=lambda c: True,
    regime=LongRegime.NO_LONG_EDGE,
    confidence=lambda c: 40.0,
    tradeable=False,
    reason="No long-side edge detected",
)


# ========================================
# SHORT LADDER
# ========================================

SHORT_RULES = (
    # Suppression
    RegimeRule(
        name="data-blackout",
        predicate=lambda c: not c.data_complete,
        regime=ShortRegime.DATA_BLACKOUT,
        confidence=lambda c: 100.0,
        tradeable=False,
        reason=lambda c: "Price data unavailable" if not c.price_data_available else "Analysis data unavailable",
    ),
    RegimeRule(
        name="orderly-uptrend",
        predicate=lambda c: (
            c.htf_supports
            and c.alignment_score >= 65
            and c.volatility_phase in ACTIVE_PHASES
            and c.spread_stability_rank >= 50
        ),
        regime=ShortRegime.ORDERLY_UPTREND,
        confidence=lambda c: c.alignment_score * 0.5 + c.spread_stability_rank * 0.5,
        tradeable=False,
        reason=lambda c: f"Orderly uptrend (alignment {c.alignment_score:.0f}%), shorts fight the trend",
    ),
    RegimeRule(
        name="balanced-chop",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.COMPRESSION and c.liquidity_shock_prob < 40,
        regime=ShortRegime.BALANCED_CHOP,
        confidence=lambda c: c.phase_confidence,
        tradeable=False,
        reason="Balanced chop: compression with no liquidity stress",
    ),
    RegimeRule(
        name="mean-reversion-rich",
        predicate=lambda c: c.volatility_phase == VolatilityPhase.EXHAUSTION and c.liquidity_shock_prob < 50,
        regime=ShortRegime.MEAN_REVERSION_RICH,
        confidence=lambda c: c.phase_confidence,
        tradeable=False,
        reason="Exhaustion with low shock: snapback risk dominates",
    ),
    # Tradeable
    RegimeRule(
        name="liquidity-vacuum",
        predicate=lambda c: c.spread_stability_rank < 30 and c.liquidity_shock_prob >= 65,
        regime=ShortRegime.LIQUIDITY_VACUUM,
        confidence=lambda c: c.liquidity_shock_prob,
        tradeable=True,
    ),
    RegimeRule(
        name="shock-breakdown",
        predicate=lambda c: (
            c.liquidity_shock_prob >= 65
            and c.volatility_phase in ACTIVE_PHASES
            and not c.htf_supports
        ),
        regime=ShortRegime.SHOCK_BREAKDOWN,
        confidence=lambda c: c.liquidity_shock_prob * 0.5 + c.phase_confidence * 0.5,
        tradeable=True,
    ),
    RegimeRule(
        name="risk-off-impulse",
        predicate=lambda c: (
            not c.htf_supports
            and c.alignment_score <= 35
            and c.volatility_phase in ACTIVE_PHASES
            and c.liquidity_shock_prob >= 40
        ),
        regime=ShortRegime.RISK_OFF_IMPULSE,
        confidence=lambda c: (100 - c.alignment_score) * 0.5 + c.phase_confidence * 0.5,
        tradeable=True,
    ),
    RegimeRule(
        name="breakdown-continuation",
        predicate=lambda c: (
            not c.htf_supports
            and not c.mtf_confirms
            and c.alignment_score <= 50
            and c.volatility_phase in (VolatilityPhase.EXPANSION, VolatilityPhase.EXHAUSTION)
        ),
        regime=ShortRegime.BREAKDOWN_CONTINUATION,
        confidence=lambda c: (100 - c.alignment_score) * 0.6 + c.phase_confidence * 0.4,
        tradeable=True,
    ),
)

SHORT_FALLBACK = RegimeRule(
    name="no-short-edge",
    predicate=lambda c: True,
    regime=ShortRegime.BALANCED_CHOP,
    confidence=lambda c: 40.0,
    tradeable=False,
    reason="No short-side edge detected",
)

LONG_CLASSIFIER = RegimeClassifier(LONG_RULES, LONG_FALLBACK)
SHORT_CLASSIFIER = RegimeClassifier(SHORT_RULES, SHORT_FALLBACK)


def classify_long_regime(ctx: MarketContext) -> RegimeClassification:
    return LONG_CLASSIFIER.classify(ctx)


def classify_short_regime(ctx: MarketContext) -> RegimeClassification:
    return SHORT_CLASSIFIER.classify(ctx)
