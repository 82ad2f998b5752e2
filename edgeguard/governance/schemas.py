"""
Governance Schemas

Closed enumerations and immutable records shared by the context provider,
regime classifiers, scorers, gate batteries, router and decision log.

Long-side and short-side vocabularies (regimes and gate ids) live in
separate enums so one engine can never emit the other's identifiers.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum

from ..clock import to_epoch_ms


# ========================================
# MARKET VOCABULARY
# ========================================

class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class LiquiditySession(str, Enum):
    """UTC liquidity sessions (non-overlapping, cover the whole day)"""
    ASIAN = "asian"
    LONDON_OPEN = "london-open"
    NY_OVERLAP = "ny-overlap"
    LATE_NY = "late-ny"


class VolatilityPhase(str, Enum):
    """Ordered: compression < ignition < expansion < exhaustion"""
    COMPRESSION = "compression"
    IGNITION = "ignition"
    EXPANSION = "expansion"
    EXHAUSTION = "exhaustion"

    @property
    def rank(self) -> int:
        return list(VolatilityPhase).index(self)


class SequencingCluster(str, Enum):
    PROFIT_MOMENTUM = "profit-momentum"
    LOSS_CLUSTER = "loss-cluster"
    MIXED = "mixed"
    NEUTRAL = "neutral"


class DirectionalBias(str, Enum):
    """Upstream directional call attached to a proposal"""
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"


class TradeOutcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"
    AVOIDED = "avoided"  # signal seen, never executed


# ========================================
# DECISIONS
# ========================================

class GovernanceDecision(str, Enum):
    APPROVED = "approved"
    THROTTLED = "throttled"
    REJECTED = "rejected"


class FinalDecision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    SKIP = "SKIP"


class EngineTarget(str, Enum):
    LONG_ENGINE = "LONG_ENGINE"
    SHORT_ENGINE = "SHORT_ENGINE"
    BLOCKED = "BLOCKED"


# ========================================
# REGIME VOCABULARIES (disjoint)
# ========================================

class LongRegime(str, Enum):
    # Tradeable
    IGNITION_BREAKOUT = "ignition-breakout"
    TREND_CONTINUATION = "trend-continuation"
    MOMENTUM_PULLBACK = "momentum-pullback"
    # Suppressed
    DATA_GAP = "data-gap"
    BREAKDOWN_PRESSURE = "breakdown-pressure"
    EXHAUSTION_FADE = "exhaustion-fade"
    COMPRESSION_COIL = "compression-coil"
    NO_LONG_EDGE = "no-long-edge"


class ShortRegime(str, Enum):
    # Tradeable
    SHOCK_BREAKDOWN = "shock-breakdown"
    RISK_OFF_IMPULSE = "risk-off-impulse"
    LIQUIDITY_VACUUM = "liquidity-vacuum"
    BREAKDOWN_CONTINUATION = "breakdown-continuation"
    # Suppressed
    DATA_BLACKOUT = "data-blackout"
    ORDERLY_UPTREND = "orderly-uptrend"
    BALANCED_CHOP = "balanced-chop"
    MEAN_REVERSION_RICH = "mean-reversion-rich"


Regime = Union[LongRegime, ShortRegime]


# ========================================
# GATE VOCABULARIES (disjoint)
# ========================================

class GateCategory(str, Enum):
    STRATEGY = "strategy"
    INFRASTRUCTURE = "infrastructure"


class LongGateId(str, Enum):
    G1_FRICTION = "G1_FRICTION"
    G2_NO_HTF_WEAK_MTF = "G2_NO_HTF_WEAK_MTF"
    G3_EDGE_DECAY = "G3_EDGE_DECAY"
    G4_SPREAD_INSTABILITY = "G4_SPREAD_INSTABILITY"
    G5_COMPRESSION_LOW_SESSION = "G5_COMPRESSION_LOW_SESSION"
    G6_OVERTRADING = "G6_OVERTRADING"
    G7_LOSS_CLUSTER_WEAK_MTF = "G7_LOSS_CLUSTER_WEAK_MTF"
    G8_HIGH_SHOCK = "G8_HIGH_SHOCK"
    G9_PRICE_DATA_UNAVAILABLE = "G9_PRICE_DATA_UNAVAILABLE"
    G10_ANALYSIS_UNAVAILABLE = "G10_ANALYSIS_UNAVAILABLE"
    G11_INFRA_UNIT_MISMATCH = "G11_INFRA_UNIT_MISMATCH"
    G12_SYMBOL_MAPPING_FAILURE = "G12_SYMBOL_MAPPING_FAILURE"


class ShortGateId(str, Enum):
    GS1_SPREAD_SPIKE = "GS1_SPREAD_SPIKE"
    GS2_SLIPPAGE_CLUSTER = "GS2_SLIPPAGE_CLUSTER"
    GS3_SUPPRESSED_REGIME = "GS3_SUPPRESSED_REGIME"
    GS4_NO_BREAKDOWN_CONFIRM = "GS4_NO_BREAKDOWN_CONFIRM"
    GS5_BOUNCE_TRAP = "GS5_BOUNCE_TRAP"
    GS6_CARRY_DRAG = "GS6_CARRY_DRAG"
    GS7_FRICTION_SHORT = "GS7_FRICTION_SHORT"
    GS8_CONTEXT_UNAVAILABLE = "GS8_CONTEXT_UNAVAILABLE"


GateId = Union[LongGateId, ShortGateId]

INFRASTRUCTURE_GATES = frozenset({
    LongGateId.G9_PRICE_DATA_UNAVAILABLE.value,
    LongGateId.G10_ANALYSIS_UNAVAILABLE.value,
    LongGateId.G11_INFRA_UNIT_MISMATCH.value,
    LongGateId.G12_SYMBOL_MAPPING_FAILURE.value,
    ShortGateId.GS8_CONTEXT_UNAVAILABLE.value,
})


def gate_category(gate_id) -> GateCategory:
    value = gate_id.value if isinstance(gate_id, Enum) else str(gate_id)
    if value in INFRASTRUCTURE_GATES:
        return GateCategory.INFRASTRUCTURE
    return GateCategory.STRATEGY


@dataclass(frozen=True)
class GateEntry:
    """A fired gate"""
    id: GateId
    message: str

    @property
    def category(self) -> GateCategory:
        return gate_category(self.id)

    def to_dict(self) -> dict:
        return {'id': self.id.value, 'message': self.message, 'category': self.category.value}


# ========================================
# MARKET CONTEXT
# ========================================

@dataclass(frozen=True)
class MarketContext:
    """
    Point-in-time market snapshot for one symbol.

    Immutable: a fresh context is derived for every evaluation and never
    patched in place. Use with_overrides() to derive a variant.
    """

    symbol: str
    timeframe: str = "1h"

    # Multi-timeframe alignment (slow)
    alignment_score: float = 0.0
    htf_supports: bool = False
    mtf_confirms: bool = False
    ltf_clean: bool = False
    directional_bias: Optional[DirectionalBias] = None

    # Regime phase (slow)
    volatility_phase: VolatilityPhase = VolatilityPhase.COMPRESSION
    phase_confidence: float = 0.0
    atr_value: float = 0.0
    atr_avg: float = 0.0

    # Session (slow)
    session: LiquiditySession = LiquiditySession.LATE_NY
    session_aggressiveness: float = 22.0

    # Trade sequencing (slow)
    sequencing_cluster: SequencingCluster = SequencingCluster.NEUTRAL
    sequencing_confidence_adj: float = 0.0
    sequencing_density_adj: float = 0.0
    edge_decaying: bool = False
    edge_decay_rate: float = 0.0
    pair_expectancy: float = 55.0
    pair_favored: bool = False
    is_major_pair: bool = False
    overtrading_throttled: bool = False

    # Microstructure (fast)
    spread: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    slippage_estimate: float = 0.0
    total_friction: float = 0.0
    friction_ratio: float = 0.0
    spread_stability_rank: float = 0.0
    liquidity_shock_prob: float = 100.0

    # Availability
    price_data_available: bool = False
    analysis_available: bool = False
    symbol_mapped: bool = True

    slow_computed_at_ms: int = 0
    fast_computed_at_ms: int = 0

    @property
    def data_complete(self) -> bool:
        return self.price_data_available and self.analysis_available

    def with_overrides(self, **changes) -> "MarketContext":
        return replace(self, **changes)

    def to_snapshot(self) -> dict:
        """Flat snapshot stored with every decision log entry"""
        return {
            'spread': float(self.spread),
            'bid': float(self.bid),
            'ask': float(self.ask),
            'slippage_estimate': float(self.slippage_estimate),
            'total_friction': float(self.total_friction),
            'atr_value': float(self.atr_value),
            'atr_avg': float(self.atr_avg),
            'volatility_phase': self.volatility_phase.value,
            'session': self.session.value,
            'friction_ratio': float(self.friction_ratio),
            'alignment_score': float(self.alignment_score),
            'spread_stability_rank': float(self.spread_stability_rank),
            'liquidity_shock_prob': float(self.liquidity_shock_prob),
            'price_data_available': bool(self.price_data_available),
            'analysis_available': bool(self.analysis_available),
        }


# ========================================
# CLASSIFICATION / SCORING / RESULTS
# ========================================

@dataclass(frozen=True)
class RegimeClassification:
    regime: Regime
    confidence: float
    is_tradeable: bool
    suppression_reason: Optional[str] = None
    rule: str = ""

    def to_dict(self) -> dict:
        return {
            'regime': self.regime.value,
            'confidence': float(self.confidence),
            'is_tradeable': bool(self.is_tradeable),
            'suppression_reason': self.suppression_reason,
            'rule': self.rule,
        }


@dataclass(frozen=True)
class MultiplierBreakdown:
    """Five independent multipliers and their product"""
    regime_strength: float
    microstructure_safety: float
    session_fit: float
    directional_momentum: float
    friction_penalty: float

    @property
    def composite(self) -> float:
        return (
            self.regime_strength
            * self.microstructure_safety
            * self.session_fit
            * self.directional_momentum
            * self.friction_penalty
        )

    def to_dict(self) -> dict:
        return {
            'regime_strength': float(self.regime_strength),
            'microstructure_safety': float(self.microstructure_safety),
            'session_fit': float(self.session_fit),
            'directional_momentum': float(self.directional_momentum),
            'friction_penalty': float(self.friction_penalty),
            'composite': float(self.composite),
        }


@dataclass(frozen=True)
class EntrySignal:
    """Short-side entry confirmation attached to tradeable proposals"""
    stage: str
    indicator_signature: str
    confirmation_type: str
    bounce_tolerance_passed: bool
    details: str

    def to_dict(self) -> dict:
        return {
            'stage': self.stage,
            'indicator_signature': self.indicator_signature,
            'confirmation_type': self.confirmation_type,
            'bounce_tolerance_passed': self.bounce_tolerance_passed,
            'details': self.details,
        }


@dataclass(frozen=True)
class StopRecommendation:
    initial_stop_r: float
    no_shrink_candles: int
    trail_activation_mfe: float

    def to_dict(self) -> dict:
        return {
            'initial_stop_r': float(self.initial_stop_r),
            'no_shrink_candles': int(self.no_shrink_candles),
            'trail_activation_mfe': float(self.trail_activation_mfe),
        }


@dataclass(frozen=True)
class GovernanceResult:
    """Output of one engine's evaluation"""
    direction: Direction
    decision: GovernanceDecision
    regime: RegimeClassification
    gates: Tuple[GateEntry, ...]
    multipliers: MultiplierBreakdown
    composite_threshold: float
    governance_score: float

    # Long-side forensics
    confidence_boost: Optional[float] = None
    alignment_label: Optional[str] = None
    exit_latency_grade: Optional[str] = None
    trade_mode: Optional[str] = None

    # Short-side forensics
    entry_signal: Optional[EntrySignal] = None
    stop_recommendation: Optional[StopRecommendation] = None

    @property
    def composite(self) -> float:
        return self.multipliers.composite

    @property
    def reason(self) -> str:
        """Human-readable justification for the decision"""
        if self.decision == GovernanceDecision.APPROVED:
            return f"Approved: {self.regime.regime.value} composite {self.composite:.3f}"
        parts: List[str] = []
        if not self.regime.is_tradeable:
            parts.append(self.regime.suppression_reason or f"Regime {self.regime.regime.value} suppressed")
        parts.extend(g.message for g in self.gates)
        if self.composite < self.composite_threshold:
            parts.append(f"Composite {self.composite:.3f} < {self.composite_threshold:.2f}")
        label = "Rejected" if self.decision == GovernanceDecision.REJECTED else "Throttled"
        return f"{label}: " + "; ".join(parts)

    def to_dict(self) -> dict:
        result = {
            'direction': self.direction.value,
            'decision': self.decision.value,
            'regime': self.regime.to_dict(),
            'gates': [g.to_dict() for g in self.gates],
            'multipliers': self.multipliers.to_dict(),
            'composite': float(self.composite),
            'composite_threshold': float(self.composite_threshold),
            'governance_score': float(self.governance_score),
            'reason': self.reason,
        }
        if self.confidence_boost is not None:
            result['confidence_boost'] = float(self.confidence_boost)
            result['alignment_label'] = self.alignment_label
            result['exit_latency_grade'] = self.exit_latency_grade
            result['trade_mode'] = self.trade_mode
        if self.entry_signal is not None:
            result['entry_signal'] = self.entry_signal.to_dict()
        if self.stop_recommendation is not None:
            result['stop_recommendation'] = self.stop_recommendation.to_dict()
        return result


@dataclass(frozen=True)
class RouterDecision:
    engine: EngineTarget
    reason: str
    direction: Direction
    shadow_only: bool = False

    def to_dict(self) -> dict:
        return {
            'engine': self.engine.value,
            'reason': self.reason,
            'direction': self.direction.value,
            'shadow_only': self.shadow_only,
        }


# ========================================
# TRADE HISTORY / PROPOSALS
# ========================================

@dataclass(frozen=True)
class TradeRecord:
    """
    Closed trade as supplied by the trade-history collaborator.

    pnl_percent, friction_cost and avg loss thresholds are all in percent.
    """
    symbol: str
    timestamp_ms: int
    pnl_percent: float
    outcome: TradeOutcome = TradeOutcome.WIN
    direction: Direction = Direction.LONG
    session: Optional[LiquiditySession] = None
    capture_ratio: float = 0.0
    duration_minutes: float = 0.0
    friction_cost: float = 0.0
    mae: float = 0.0
    mfe: float = 0.0
    agent_id: Optional[str] = None

    @property
    def is_win(self) -> bool:
        return self.pnl_percent > 0

    @property
    def executed(self) -> bool:
        return self.outcome != TradeOutcome.AVOIDED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        pnl = float(data.get('pnl_percent', data.get('pnl', 0.0)))
        outcome = data.get('outcome')
        if outcome is None:
            outcome = TradeOutcome.WIN if pnl > 0 else TradeOutcome.LOSS
        session = data.get('session')
        return cls(
            symbol=data['symbol'],
            timestamp_ms=to_epoch_ms(data['timestamp'] if 'timestamp' in data else data['timestamp_ms']),
            pnl_percent=pnl,
            outcome=TradeOutcome(outcome),
            direction=Direction(data.get('direction', 'long')),
            session=LiquiditySession(session) if session else None,
            capture_ratio=float(data.get('capture_ratio', 0.0)),
            duration_minutes=float(data.get('duration_minutes', 0.0)),
            friction_cost=float(data.get('friction_cost', 0.0)),
            mae=float(data.get('mae', 0.0)),
            mfe=float(data.get('mfe', 0.0)),
            agent_id=data.get('agent_id'),
        )


@dataclass(frozen=True)
class TradeProposal:
    """A trade proposed by an agent, prior to governance"""
    symbol: str
    direction: Direction
    agent_id: str
    timeframe: str = "1h"
    directional_bias: Optional[DirectionalBias] = None
    directional_confidence: float = 0.0
    annex: Dict[str, Any] = field(default_factory=dict)
