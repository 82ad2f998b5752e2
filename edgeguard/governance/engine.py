"""
Governance Engine

Directional evaluators and the orchestrator that wires the control flow:

    proposal -> Router -> Context Provider -> Regime Classifier
             -> Multiplier Scorer -> Gate Battery -> Decision -> Decision Logger

The long and short evaluators share no state: each owns its classifier,
scorer, gate battery and thresholds. GovernanceEngine never raises for any
context; a failure while deriving context or scoring yields a rejected,
logged decision. The only exception that escapes is RouterIntegrityError
in strict mode, since an engine/direction mismatch is a bug.
"""

from dataclasses import dataclass
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple
import logging
import threading

from .config import ConfigManager, EngineConfig, GovernanceConfig
from .context import ContextProvider, MarketDataProvider, PriceFeed
from .gates import decide, evaluate_long_gates, evaluate_short_gates
from .regime import LONG_CLASSIFIER, SHORT_CLASSIFIER, RegimeClassifier
from .router import EngineRouter
from .schemas import (
    Direction,
    DirectionalBias,
    EngineTarget,
    EntrySignal,
    FinalDecision,
    GovernanceDecision,
    GovernanceResult,
    LiquiditySession,
    MarketContext,
    RegimeClassification,
    RouterDecision,
    ShortRegime,
    StopRecommendation,
    TradeProposal,
    TradeRecord,
    VolatilityPhase,
)
from .scoring import LongScorer, ShortScorer, clamp_score
from .stops import config_for_regime
from .validation import ShadowModeGuard, validate_unit_consistency
from ..alerts import AlertConfig, AlertKind, AlertSink
from ..audit.analytics import DecisionAnalytics
from ..audit.decision_log import DecisionLogEntry, DecisionLogger
from ..audit.stores import DecisionLogStore, ShadowTradeStore
from ..clock import Clock, SystemClock
from ..events import Event, EventType, GovernanceEventBus
from ..monitoring.rolling_health import RollingHealthMonitor, RollingHealthState
from ..monitoring.shadow_validation import (
    DEFAULT_BASELINE,
    BaselineMetrics,
    ShadowMetrics,
    ShadowResult,
    ShadowValidationPipeline,
    evaluate_shadow,
)
from ..symbols import to_display_symbol

LOG = logging.getLogger(__name__)

THROTTLED_SIZE = 0.5


# ========================================
# LONG ENGINE
# ========================================

def alignment_label(ctx: MarketContext) -> str:
    if ctx.htf_supports and ctx.mtf_confirms and ctx.ltf_clean:
        return "Full Alignment"
    if ctx.htf_supports and ctx.mtf_confirms:
        return "HTF+MTF Aligned"
    if ctx.htf_supports:
        return "HTF Only"
    return "Misaligned"


def exit_latency_grade(latency_score: float) -> str:
    if latency_score > 1.2:
        return "A"
    if latency_score > 1.0:
        return "B"
    if latency_score > 0.85:
        return "C"
    return "D"


def confidence_boost(composite: float) -> float:
    if composite > 1.1:
        return 18.0
    if composite > 0.9:
        return 8.0
    if composite > 0.7:
        return -3.0
    return -12.0


class LongGovernanceEngine:
    """Long-side evaluator (scalping-tuned, friction K=3)"""

    def __init__(
        self,
        friction_k: float = 3.0,
        min_composite_threshold: float = 0.60,
        classifier: RegimeClassifier = LONG_CLASSIFIER,
    ):
        self.friction_k = friction_k
        self.min_composite_threshold = min_composite_threshold
        self.classifier = classifier
        self.scorer = LongScorer(friction_k)

    def evaluate(self, ctx: MarketContext) -> GovernanceResult:
        regime = self.classifier.classify(ctx)
        multipliers = self.scorer.score(ctx, regime)
        gates = evaluate_long_gates(ctx, self.friction_k)
        composite = multipliers.composite
        decision = decide(regime.is_tradeable, len(gates), composite, self.min_composite_threshold)

        score = clamp_score(composite * 60 + (25 if not gates else 0) + (5 if ctx.is_major_pair else 0))
        latency = self.scorer.exit_efficiency(ctx) * multipliers.session_fit
        continuation = (
            ctx.volatility_phase == VolatilityPhase.EXPANSION and ctx.htf_supports and ctx.mtf_confirms
        )

        return GovernanceResult(
            direction=Direction.LONG,
            decision=decision,
            regime=regime,
            gates=gates,
            multipliers=multipliers,
            composite_threshold=self.min_composite_threshold,
            governance_score=score,
            confidence_boost=confidence_boost(composite),
            alignment_label=alignment_label(ctx),
            exit_latency_grade=exit_latency_grade(latency),
            trade_mode="continuation" if continuation else "scalp",
        )


# ========================================
# SHORT ENGINE
# ========================================

# regime -> (indicator signature, confirmation type)
SHORT_ENTRY_SIGNATURES: Dict[ShortRegime, Tuple[str, str]] = {
    ShortRegime.SHOCK_BREAKDOWN: ("donchian20+adx14", "donchian-break"),
    ShortRegime.RISK_OFF_IMPULSE: ("ema20-slope+roc9+vol", "ema-slope-roc"),
    ShortRegime.LIQUIDITY_VACUUM: ("supertrend10+trendEff", "supertrend-flip"),
    ShortRegime.BREAKDOWN_CONTINUATION: ("ichimoku-cloud+adx", "ichimoku-cloud-break"),
}
DEFAULT_ENTRY_SIGNATURE = ("ema50+rsi14", "pivot-rejection")


def entry_signal_for(regime: RegimeClassification) -> EntrySignal:
    signature, confirmation = SHORT_ENTRY_SIGNATURES.get(regime.regime, DEFAULT_ENTRY_SIGNATURE)
    return EntrySignal(
        stage="trigger",
        indicator_signature=signature,
        confirmation_type=confirmation,
        bounce_tolerance_passed=True,
        details=f"{regime.regime.value} confirmed with {confirmation}",
    )


class ShortGovernanceEngine:
    """Short-side evaluator: stricter friction, spread-spike and slippage gates"""

    def __init__(self, config: Optional[EngineConfig] = None, classifier: RegimeClassifier = SHORT_CLASSIFIER):
        self.config = config or EngineConfig()
        self.classifier = classifier
        self.scorer = ShortScorer(self.config.friction_gate_k)

    def update_config(self, config: EngineConfig):
        self.config = config
        self.scorer = ShortScorer(config.friction_gate_k)

    def evaluate(self, ctx: MarketContext) -> GovernanceResult:
        config = self.config
        regime = self.classifier.classify(ctx)
        multipliers = self.scorer.score(ctx, regime)
        gates = evaluate_short_gates(ctx, regime, config)
        composite = multipliers.composite
        decision = decide(regime.is_tradeable, len(gates), composite, config.min_composite_threshold)

        score = clamp_score(composite * 55 + (30 if not gates else 0) + (15 if regime.is_tradeable else 0))

        entry = None
        if regime.is_tradeable and decision != GovernanceDecision.REJECTED:
            entry = entry_signal_for(regime)

        stop_config = config.stop_config_for(ctx.symbol)
        if regime.is_tradeable:
            stop_config = config_for_regime(stop_config, regime.regime)
        stop = StopRecommendation(
            initial_stop_r=1.5 + (1 - multipliers.microstructure_safety) * 0.5,
            no_shrink_candles=stop_config.no_shrink_candle_count,
            trail_activation_mfe=stop_config.trail_activation_mfe_multiple,
        )

        return GovernanceResult(
            direction=Direction.SHORT,
            decision=decision,
            regime=regime,
            gates=gates,
            multipliers=multipliers,
            composite_threshold=config.min_composite_threshold,
            governance_score=score,
            entry_signal=entry,
            stop_recommendation=stop,
        )


# ========================================
# ORCHESTRATOR
# ========================================

@dataclass(frozen=True)
class GovernanceVerdict:
    """Outcome of one proposal passing through the full control flow"""
    proposal: TradeProposal
    route: RouterDecision
    final_decision: FinalDecision
    final_reason: str
    shadow: bool
    size_multiplier: float
    timestamp_ms: int
    result: Optional[GovernanceResult] = None
    context: Optional[MarketContext] = None
    log_entry: Optional[DecisionLogEntry] = None

    @property
    def governance_decision(self) -> GovernanceDecision:
        return self.result.decision if self.result else GovernanceDecision.REJECTED

    def to_dict(self) -> dict:
        return {
            'symbol': to_display_symbol(self.proposal.symbol),
            'direction': self.proposal.direction.value,
            'agent_id': self.proposal.agent_id,
            'route': self.route.to_dict(),
            'governance_decision': self.governance_decision.value,
            'final_decision': self.final_decision.value,
            'final_reason': self.final_reason,
            'shadow': self.shadow,
            'size_multiplier': float(self.size_multiplier),
            'timestamp_ms': self.timestamp_ms,
            'result': self.result.to_dict() if self.result else None,
            'market_snapshot': self.context.to_snapshot() if self.context else None,
            'entry_id': self.log_entry.entry_id if self.log_entry else None,
        }


def bias_conflicts(direction: Direction, bias: Optional[DirectionalBias]) -> bool:
    if bias is None or bias == DirectionalBias.NEUTRAL:
        return False
    return (direction == Direction.LONG) != (bias == DirectionalBias.LONG)


class GovernanceEngine:
    """
    Owns every piece of governance state (caches, logs, alerts, monitors).

    Nothing is module-global: build one engine per deployment or per test.
    Config changes arrive through the ConfigManager listener and swap the
    snapshot each component reads.
    """

    def __init__(
        self,
        market_data: MarketDataProvider,
        price_feed: PriceFeed,
        config: Optional[GovernanceConfig] = None,
        config_manager: Optional[ConfigManager] = None,
        clock: Optional[Clock] = None,
        alert_config: Optional[AlertConfig] = None,
        event_bus: Optional[GovernanceEventBus] = None,
        shadow_store: Optional[ShadowTradeStore] = None,
        decision_archive: Optional[DecisionLogStore] = None,
        symbol_registry: Optional[Iterable[str]] = None,
        shadow_baseline: Optional[BaselineMetrics] = None,
        max_trade_history: int = 5000,
    ):
        self.config_manager = config_manager or ConfigManager(config=config)
        cfg = self.config_manager.current
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or GovernanceEventBus(clock=self.clock)
        self.alerts = AlertSink(
            max_history=cfg.alert_history_size,
            clock=self.clock,
            config=alert_config,
            event_bus=self.event_bus,
        )

        self.context_provider = ContextProvider(
            market_data, price_feed, cfg, self.clock, symbol_registry=symbol_registry,
        )
        self.router = EngineRouter(cfg.engine, self.clock, self.alerts, strict=cfg.strict_integrity)
        self.long_engine = LongGovernanceEngine(cfg.long_friction_k, cfg.long_min_composite_threshold)
        self.short_engine = ShortGovernanceEngine(cfg.engine)

        self.decision_logger = DecisionLogger(
            max_entries=cfg.decision_log_max_entries,
            shadow_store=shadow_store,
            archive=decision_archive,
            alerts=self.alerts,
            clock=self.clock,
        )
        self.analytics = DecisionAnalytics(self.decision_logger, self.alerts, cfg, self.clock)
        self.shadow_guard = ShadowModeGuard(self.alerts)
        self.health_monitor = RollingHealthMonitor(cfg.degradation, self.clock, self.alerts)
        self.shadow_pipeline = ShadowValidationPipeline(
            shadow_baseline or DEFAULT_BASELINE, cfg.engine.shadow_min_trades,
        )

        self._trades: Deque[TradeRecord] = deque(maxlen=max_trade_history)
        self._trades_lock = threading.Lock()

        self.config_manager.add_listener(self._on_config_reloaded)
        LOG.info(f"GovernanceEngine initialized (config {cfg.get_config_hash()})")

    @property
    def config(self) -> GovernanceConfig:
        return self.config_manager.current

    # ========================================
    # CONFIG
    # ========================================

    def _on_config_reloaded(self, config: GovernanceConfig):
        self.context_provider.update_config(config)
        self.router.update_config(config.engine)
        self.router.strict = config.strict_integrity
        self.long_engine = LongGovernanceEngine(config.long_friction_k, config.long_min_composite_threshold)
        self.short_engine.update_config(config.engine)
        self.analytics.update_config(config)
        self.health_monitor.thresholds = config.degradation
        self.shadow_pipeline.min_trades = config.engine.shadow_min_trades
        self.event_bus.publish(Event(
            event_type=EventType.CONFIG_RELOADED,
            data={'config_hash': config.get_config_hash()},
        ))

    # ========================================
    # EVALUATION
    # ========================================

    def evaluate(
        self,
        proposal: TradeProposal,
        trade_history: Optional[Iterable[TradeRecord]] = None,
    ) -> GovernanceVerdict:
        """
        Run one proposal through routing, context, scoring and gating.

        Args:
            proposal: Trade proposal from an agent
            trade_history: Closed trades (any order; sorted internally).
                Defaults to the trades recorded via record_trade().

        Returns:
            GovernanceVerdict. BLOCKED routes return SKIP without evaluation.
        """
        now = self.clock.now_ms()
        symbol = to_display_symbol(proposal.symbol)
        route = self.router.route(proposal.direction, symbol, proposal.agent_id)

        if route.engine == EngineTarget.BLOCKED:
            self.event_bus.publish(Event(
                event_type=EventType.ROUTE_BLOCKED,
                symbol=symbol,
                data=route.to_dict(),
            ))
            return GovernanceVerdict(
                proposal=proposal,
                route=route,
                final_decision=FinalDecision.SKIP,
                final_reason=f"Blocked: {route.reason}",
                shadow=False,
                size_multiplier=0.0,
                timestamp_ms=now,
            )

        if trade_history is None:
            trade_history = self.get_trade_history()

        ctx = None
        result = None
        try:
            ctx = self.context_provider.get_context(symbol, proposal.timeframe, trade_history)
            if route.engine == EngineTarget.LONG_ENGINE:
                result = self.long_engine.evaluate(ctx)
            else:
                result = self.short_engine.evaluate(ctx)
        except Exception as e:
            LOG.error(f"Governance evaluation failed for {symbol}: {e}", exc_info=True)
            final, reason, size = FinalDecision.SKIP, f"Rejected: governance evaluation failed ({e})", 0.0
        else:
            self._emit_infrastructure_alerts(ctx)
            final, reason, size = self._finalize(proposal, result, ctx)

        shadow = route.shadow_only
        if shadow and final != FinalDecision.SKIP:
            reason = f"{reason} [shadow only]"

        entry = self._build_entry(proposal, symbol, now, shadow, result, ctx, final, reason)
        self.decision_logger.log(entry)

        verdict = GovernanceVerdict(
            proposal=proposal,
            route=route,
            final_decision=final,
            final_reason=reason,
            shadow=shadow,
            size_multiplier=size,
            timestamp_ms=now,
            result=result,
            context=ctx,
            log_entry=entry,
        )
        self.event_bus.publish(Event(
            event_type=EventType.DECISION_MADE,
            symbol=symbol,
            data=verdict.to_dict(),
        ))
        return verdict

    def _finalize(
        self,
        proposal: TradeProposal,
        result: GovernanceResult,
        ctx: MarketContext,
    ) -> Tuple[FinalDecision, str, float]:
        if result.decision == GovernanceDecision.REJECTED:
            return FinalDecision.SKIP, result.reason, 0.0

        bias = proposal.directional_bias or ctx.directional_bias
        if bias_conflicts(proposal.direction, bias):
            return (
                FinalDecision.SKIP,
                f"Directional bias {bias.value} conflicts with {proposal.direction.value} proposal",
                0.0,
            )

        final = FinalDecision.BUY if proposal.direction == Direction.LONG else FinalDecision.SELL
        size = THROTTLED_SIZE if result.decision == GovernanceDecision.THROTTLED else 1.0
        return final, result.reason, size

    def _emit_infrastructure_alerts(self, ctx: MarketContext):
        if ctx.data_complete:
            units = validate_unit_consistency(ctx)
            if not units.valid:
                self.alerts.emit(AlertKind.UNIT_CONSISTENCY_FAILURE, {
                    'symbol': ctx.symbol,
                    'failures': units.failures,
                })
        if not ctx.symbol_mapped:
            self.alerts.emit(AlertKind.SYMBOL_MAPPING_FAILURE, {'symbol': ctx.symbol})

    def _build_entry(
        self,
        proposal: TradeProposal,
        symbol: str,
        timestamp_ms: int,
        shadow: bool,
        result: Optional[GovernanceResult],
        ctx: Optional[MarketContext],
        final: FinalDecision,
        reason: str,
    ) -> DecisionLogEntry:
        annex: Optional[Dict[str, Any]] = dict(proposal.annex) if proposal.annex else None
        if result is not None and result.stop_recommendation is not None:
            annex = dict(annex or {})
            annex['stop_recommendation'] = result.stop_recommendation.to_dict()
        return DecisionLogEntry(
            timestamp_ms=timestamp_ms,
            symbol=symbol,
            timeframe=proposal.timeframe,
            direction=proposal.direction,
            shadow=shadow,
            governance_decision=result.decision if result else GovernanceDecision.REJECTED,
            regime=result.regime.regime.value if result else "unavailable",
            multipliers=result.multipliers.to_dict() if result else {},
            composite=result.composite if result else 0.0,
            gates=result.gates if result else (),
            final_decision=final,
            final_reason=reason,
            directional_bias=proposal.directional_bias or (ctx.directional_bias if ctx else None),
            directional_confidence=proposal.directional_confidence,
            market_snapshot=ctx.to_snapshot() if ctx else {},
            annex=annex,
            agent_id=proposal.agent_id,
        )

    def authorize_execution(self, verdict: GovernanceVerdict) -> bool:
        """Last check before an order leaves: never SKIP, never shadow-only"""
        if verdict.final_decision == FinalDecision.SKIP:
            return False
        return self.shadow_guard.assert_not_shadow_mode(verdict.shadow, {
            'symbol': to_display_symbol(verdict.proposal.symbol),
            'direction': verdict.proposal.direction.value,
            'agent_id': verdict.proposal.agent_id,
        })

    def route(
        self,
        direction: Direction,
        symbol: str,
        agent_id: str,
        session: Optional[LiquiditySession] = None,
    ) -> RouterDecision:
        return self.router.route(direction, symbol, agent_id, session=session)

    # ========================================
    # TRADE HISTORY & MONITORING
    # ========================================

    def record_trade(self, trade: TradeRecord):
        with self._trades_lock:
            self._trades.append(trade)

    def get_trade_history(self) -> List[TradeRecord]:
        with self._trades_lock:
            return list(self._trades)

    def compute_rolling_health(self, trades: Optional[Iterable[TradeRecord]] = None) -> RollingHealthState:
        state = self.health_monitor.compute(self.get_trade_history() if trades is None else trades)
        self.event_bus.publish(Event(
            event_type=EventType.HEALTH_EVALUATED,
            data={
                'health_score': state.health_score,
                'protection_level': state.protection_level.value,
                'alert_count': len(state.alerts),
            },
        ))
        return state

    def evaluate_shadow(
        self,
        metrics: ShadowMetrics,
        baseline: Optional[BaselineMetrics] = None,
        min_trades: Optional[int] = None,
    ) -> ShadowResult:
        return evaluate_shadow(
            metrics,
            baseline or self.shadow_pipeline.baseline,
            self.config.engine.shadow_min_trades if min_trades is None else min_trades,
        )

    def get_health_status(self) -> dict:
        cfg = self.config
        return {
            'config_hash': cfg.get_config_hash(),
            'short_engine_enabled': cfg.engine.enabled,
            'short_shadow_only': cfg.engine.shadow_only,
            'long_only_override': cfg.engine.long_only_override,
            'decision_count': len(self.decision_logger),
            'shadow_persistence': self.decision_logger.get_persistence_stats(),
            'router_integrity_violations': self.router.violation_count,
            'shadow_mode_violations': self.shadow_guard.violation_count,
            'alert_counts': self.alerts.get_alert_counts(),
            'cache': self.context_provider.monitor.get_stats(),
            'events': self.event_bus.get_metrics(),
            'recorded_trades': len(self.get_trade_history()),
        }

    # ========================================
    # LIFECYCLE
    # ========================================

    def reset(self):
        """Drop caches, logs, alerts and recorded trades"""
        with self._trades_lock:
            self._trades.clear()
        self.context_provider.reset()
        self.decision_logger.clear()
        self.alerts.clear()
        self.shadow_guard.reset()
        self.shadow_pipeline.reset()

    def start(self):
        """Start background dispatch and config file watching"""
        self.event_bus.start()
        self.config_manager.start()

    def shutdown(self):
        self.config_manager.stop()
        self.decision_logger.shutdown()
        self.alerts.shutdown()
        self.context_provider.shutdown()
        self.event_bus.stop()
