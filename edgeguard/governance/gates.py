"""
Gate Batteries & Decision Rule

Gates are independent pure predicates over (context, regime, config). A gate
fires at most once per evaluation. Gate evaluation never raises: a gate that
cannot evaluate is reported as fired with an "inconclusive" message so the
proposal is suppressed rather than silently passed.

Decision rule (stateless, re-derived every call):

    rejected   regime not tradeable OR >= 2 gates fired
    throttled  exactly 1 gate fired OR composite < threshold
    approved   otherwise
"""

from typing import Callable, List, NamedTuple, Sequence, Tuple
import logging

from .config import EngineConfig
from .schemas import (
    GateEntry,
    GateId,
    GovernanceDecision,
    LongGateId,
    MarketContext,
    RegimeClassification,
    SequencingCluster,
    ShortGateId,
    VolatilityPhase,
)
from .validation import validate_unit_consistency

LOG = logging.getLogger(__name__)


class GateCheck(NamedTuple):
    id: GateId
    fires: Callable[..., bool]
    message: Callable[..., str]


def run_battery(checks: Sequence[GateCheck], *args) -> Tuple[GateEntry, ...]:
    fired: List[GateEntry] = []
    for check in checks:
        try:
            if check.fires(*args):
                fired.append(GateEntry(id=check.id, message=check.message(*args)))
        except Exception as e:
            LOG.error(f"Gate {check.id.value} inconclusive: {e}")
            fired.append(GateEntry(id=check.id, message=f"Gate inconclusive: {e}"))
    return tuple(fired)


def decide(is_tradeable: bool, gate_count: int, composite: float, threshold: float) -> GovernanceDecision:
    if not is_tradeable or gate_count >= 2:
        return GovernanceDecision.REJECTED
    if gate_count == 1 or composite < threshold:
        return GovernanceDecision.THROTTLED
    return GovernanceDecision.APPROVED


# ========================================
# LONG BATTERY (G1-G12)
# ========================================

def _unit_mismatch_message(ctx: MarketContext, k: float) -> str:
    return f"Unit mismatch: {validate_unit_consistency(ctx).first_failure}"


LONG_GATES = (
    GateCheck(
        LongGateId.G1_FRICTION,
        lambda c, k: c.friction_ratio < k,
        lambda c, k: f"Friction ratio {c.friction_ratio:.1f}× < {k:g}× threshold",
    ),
    GateCheck(
        LongGateId.G2_NO_HTF_WEAK_MTF,
        lambda c, k: not c.htf_supports and c.alignment_score < 35,
        lambda c, k: f"MTF alignment {c.alignment_score:.0f}% without HTF support",
    ),
    GateCheck(
        LongGateId.G3_EDGE_DECAY,
        lambda c, k: c.edge_decaying and c.edge_decay_rate > 20,
        lambda c, k: f"Edge decaying {c.edge_decay_rate:.0f}%",
    ),
    GateCheck(
        LongGateId.G4_SPREAD_INSTABILITY,
        lambda c, k: c.spread_stability_rank < 30,
        lambda c, k: f"Spread instability {c.spread_stability_rank:.0f}%",
    ),
    GateCheck(
        LongGateId.G5_COMPRESSION_LOW_SESSION,
        lambda c, k: c.session_aggressiveness < 30 and c.volatility_phase == VolatilityPhase.COMPRESSION,
        lambda c, k: "Compression + low-activity session",
    ),
    GateCheck(
        LongGateId.G6_OVERTRADING,
        lambda c, k: c.overtrading_throttled,
        lambda c, k: "Anti-overtrading governor active",
    ),
    GateCheck(
        LongGateId.G7_LOSS_CLUSTER_WEAK_MTF,
        lambda c, k: c.sequencing_cluster == SequencingCluster.LOSS_CLUSTER and c.alignment_score < 55,
        lambda c, k: f"Loss cluster + weak alignment {c.alignment_score:.0f}%",
    ),
    GateCheck(
        LongGateId.G8_HIGH_SHOCK,
        lambda c, k: c.liquidity_shock_prob > 70 and c.volatility_phase != VolatilityPhase.IGNITION,
        lambda c, k: f"High shock risk {c.liquidity_shock_prob:.0f}% outside ignition",
    ),
    # Infrastructure
    GateCheck(
        LongGateId.G9_PRICE_DATA_UNAVAILABLE,
        lambda c, k: not c.price_data_available,
        lambda c, k: f"Price data unavailable for {c.symbol}",
    ),
    GateCheck(
        LongGateId.G10_ANALYSIS_UNAVAILABLE,
        lambda c, k: not c.analysis_available,
        lambda c, k: f"Analysis data unavailable for {c.symbol}",
    ),
    GateCheck(
        LongGateId.G11_INFRA_UNIT_MISMATCH,
        lambda c, k: not validate_unit_consistency(c).valid,
        _unit_mismatch_message,
    ),
    GateCheck(
        LongGateId.G12_SYMBOL_MAPPING_FAILURE,
        lambda c, k: not c.symbol_mapped,
        lambda c, k: f"Symbol {c.symbol} not found in price feed or registry",
    ),
)


def evaluate_long_gates(ctx: MarketContext, friction_k: float = 3.0) -> Tuple[GateEntry, ...]:
    return run_battery(LONG_GATES, ctx, friction_k)


# ========================================
# SHORT BATTERY (GS1-GS8)
# ========================================

SHORT_GATES = (
    GateCheck(
        ShortGateId.GS1_SPREAD_SPIKE,
        lambda c, r, cfg: c.spread_stability_rank < 100 / cfg.spread_spike_multiplier,
        lambda c, r, cfg: f"Spread instability {c.spread_stability_rank:.0f}%: spike detected, shorts blocked",
    ),
    GateCheck(
        ShortGateId.GS2_SLIPPAGE_CLUSTER,
        lambda c, r, cfg: c.liquidity_shock_prob > 65 and c.spread_stability_rank < 40,
        lambda c, r, cfg: (
            f"Slippage cluster risk: shock {c.liquidity_shock_prob:.0f}% + "
            f"spread rank {c.spread_stability_rank:.0f}%"
        ),
    ),
    GateCheck(
        ShortGateId.GS3_SUPPRESSED_REGIME,
        lambda c, r, cfg: not r.is_tradeable,
        lambda c, r, cfg: r.suppression_reason or "Short regime suppressed",
    ),
    GateCheck(
        ShortGateId.GS7_FRICTION_SHORT,
        lambda c, r, cfg: c.friction_ratio < cfg.friction_gate_k,
        lambda c, r, cfg: f"Friction ratio {c.friction_ratio:.1f}× < {cfg.friction_gate_k:g}× short threshold",
    ),
    GateCheck(
        ShortGateId.GS8_CONTEXT_UNAVAILABLE,
        lambda c, r, cfg: not c.data_complete or not c.symbol_mapped,
        lambda c, r, cfg: (
            f"Context unavailable for {c.symbol}: price={c.price_data_available} "
            f"analysis={c.analysis_available} mapped={c.symbol_mapped}"
        ),
    ),
)


def evaluate_short_gates(
    ctx: MarketContext,
    regime: RegimeClassification,
    config: EngineConfig,
) -> Tuple[GateEntry, ...]:
    return run_battery(SHORT_GATES, ctx, regime, config)
