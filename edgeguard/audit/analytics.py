"""
Decision Analytics

Read-only analytics derived on demand from the decision log:

1. Pass rate by session
2. Gate trigger frequency (strategy vs infrastructure)
3. Neutral-direction rate among approvals (alerts above threshold)
4. Composite-score vs realized-outcome deciles
5. Price / analysis data availability (alerts below threshold)
6. Summary (decision counts, top gates, top reasons)

Nothing here feeds back into decisions.
"""

from dataclasses import dataclass, field
from collections import Counter
from typing import Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy.stats import spearmanr

from ..alerts import AlertKind, AlertSink
from ..clock import Clock, SystemClock
from ..governance.config import GovernanceConfig
from ..governance.schemas import (
    DirectionalBias,
    FinalDecision,
    GovernanceDecision,
    LiquiditySession,
    TradeRecord,
    gate_category,
)
from ..symbols import to_display_symbol
from .decision_log import DecisionLogEntry, DecisionLogger

LOG = logging.getLogger(__name__)

DECISION_VALUES = [d.value for d in GovernanceDecision]


@dataclass
class SessionBreakdown:
    session: str
    total: int
    approved: int
    throttled: int
    rejected: int
    approval_rate: float


@dataclass
class PassStats:
    total_evaluations: int
    approved_count: int
    throttled_count: int
    rejected_count: int
    approval_rate: float
    by_session: Dict[str, SessionBreakdown] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'total_evaluations': self.total_evaluations,
            'approved_count': self.approved_count,
            'throttled_count': self.throttled_count,
            'rejected_count': self.rejected_count,
            'approval_rate': self.approval_rate,
            'by_session': {s: vars(b) for s, b in self.by_session.items()},
        }


@dataclass
class GateFrequency:
    gate_id: str
    category: str
    trigger_count: int
    trigger_rate: float


@dataclass
class NeutralRateStats:
    total_approved: int
    neutral_count: int
    neutral_rate: float
    alert_triggered: bool


@dataclass
class CompositeDecile:
    decile: int
    range_label: str
    composite_min: float
    composite_max: float
    count: int
    win_rate: float
    avg_pnl: float
    avg_mae: float
    avg_mfe: float


@dataclass
class DecileReport:
    sample_count: int
    sufficient: bool
    deciles: List[CompositeDecile] = field(default_factory=list)
    spearman: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'sample_count': self.sample_count,
            'sufficient': self.sufficient,
            'deciles': [vars(d) for d in self.deciles],
            'spearman': self.spearman,
        }


@dataclass
class AvailabilityStats:
    total_evaluations: int
    price_unavailable_count: int
    analysis_unavailable_count: int
    price_availability_rate: float
    analysis_availability_rate: float
    alert_triggered: bool


def gate_reason_key(message: str) -> str:
    """Message text before any colon or parenthesis"""
    return message.split(':')[0].split('(')[0].strip()


def is_neutral_bias(bias: Optional[DirectionalBias]) -> bool:
    """No directional conviction: missing or explicitly neutral"""
    return bias is None or bias == DirectionalBias.NEUTRAL


class DecisionAnalytics:
    """On-demand analytics over a DecisionLogger"""

    def __init__(
        self,
        logger: DecisionLogger,
        alerts: Optional[AlertSink] = None,
        config: Optional[GovernanceConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.logger = logger
        self.alerts = alerts
        self.config = config or GovernanceConfig()
        self.clock = clock or SystemClock()

    def update_config(self, config: GovernanceConfig):
        self.config = config

    def _entries(self, time_range_ms: Optional[int] = None) -> List[DecisionLogEntry]:
        entries = self.logger.get_all()
        if not time_range_ms:
            return entries
        cutoff = self.clock.now_ms() - time_range_ms
        return [e for e in entries if e.timestamp_ms >= cutoff]

    # ========================================
    # 1. PASS RATE
    # ========================================

    def compute_pass_stats(self, time_range_ms: Optional[int] = None) -> PassStats:
        entries = self._entries(time_range_ms)
        df = pd.DataFrame(
            [(e.market_snapshot.get('session'), e.governance_decision.value) for e in entries],
            columns=['session', 'decision'],
        )

        by_session = {}
        for session in LiquiditySession:
            sub = df[df['session'] == session.value]
            counts = sub['decision'].value_counts()
            total = len(sub)
            approved = int(counts.get('approved', 0))
            by_session[session.value] = SessionBreakdown(
                session=session.value,
                total=total,
                approved=approved,
                throttled=int(counts.get('throttled', 0)),
                rejected=int(counts.get('rejected', 0)),
                approval_rate=approved / total if total > 0 else 0.0,
            )

        counts = df['decision'].value_counts()
        total = len(df)
        approved = int(counts.get('approved', 0))
        return PassStats(
            total_evaluations=total,
            approved_count=approved,
            throttled_count=int(counts.get('throttled', 0)),
            rejected_count=int(counts.get('rejected', 0)),
            approval_rate=approved / total if total > 0 else 0.0,
            by_session=by_session,
        )

    # ========================================
    # 2. GATE FREQUENCY
    # ========================================

    def compute_gate_frequency(self, time_range_ms: Optional[int] = None, top_n: int = 10) -> List[GateFrequency]:
        entries = self._entries(time_range_ms)
        if not entries:
            return []
        counts = Counter(gate_id for e in entries for gate_id in e.gate_ids)
        return [
            GateFrequency(
                gate_id=gate_id,
                category=gate_category(gate_id).value,
                trigger_count=count,
                trigger_rate=count / len(entries),
            )
            for gate_id, count in counts.most_common(top_n)
        ]

    # ========================================
    # 3. NEUTRAL RATE
    # ========================================

    def compute_neutral_rate(self, time_range_ms: Optional[int] = None) -> NeutralRateStats:
        approved = [
            e for e in self._entries(time_range_ms)
            if e.governance_decision == GovernanceDecision.APPROVED
        ]
        neutral = [
            e for e in approved
            if is_neutral_bias(e.directional_bias)
        ]
        rate = len(neutral) / len(approved) if approved else 0.0
        threshold = self.config.neutral_rate_threshold
        triggered = rate > threshold

        if triggered and self.alerts is not None:
            self.alerts.emit(AlertKind.NEUTRAL_RATE_SPIKE, {
                'neutral_rate': rate,
                'threshold': threshold,
                'total_approved': len(approved),
            })

        return NeutralRateStats(
            total_approved=len(approved),
            neutral_count=len(neutral),
            neutral_rate=rate,
            alert_triggered=triggered,
        )

    # ========================================
    # 4. COMPOSITE DECILES
    # ========================================

    def match_trades(self, entries: Sequence[DecisionLogEntry], trades: Sequence[TradeRecord]):
        """(entry, trade) pairs: same symbol, nearest timestamp within the match window"""
        window = self.config.decile_match_window_ms
        by_symbol: Dict[str, List[TradeRecord]] = {}
        for trade in trades:
            if trade.executed:
                by_symbol.setdefault(to_display_symbol(trade.symbol), []).append(trade)

        matched = []
        for entry in entries:
            candidates = [
                t for t in by_symbol.get(entry.symbol, [])
                if abs(t.timestamp_ms - entry.timestamp_ms) <= window
            ]
            if candidates:
                nearest = min(candidates, key=lambda t: abs(t.timestamp_ms - entry.timestamp_ms))
                matched.append((entry, nearest))
        return matched

    def compute_composite_deciles(
        self,
        trades: Sequence[TradeRecord],
        time_range_ms: Optional[int] = None,
    ) -> DecileReport:
        approved = [
            e for e in self._entries(time_range_ms)
            if e.governance_decision == GovernanceDecision.APPROVED
        ]
        matched = self.match_trades(approved, trades)
        n = len(matched)
        if n < self.config.min_decile_samples:
            return DecileReport(sample_count=n, sufficient=False)

        matched.sort(key=lambda pair: pair[0].composite)
        size = max(1, n // 10)
        deciles = []
        for i in range(10):
            start = i * size
            end = n if i == 9 else start + size
            chunk = matched[start:end]
            if not chunk:
                continue
            composites = [e.composite for e, _ in chunk]
            pnls = np.array([t.pnl_percent for _, t in chunk])
            deciles.append(CompositeDecile(
                decile=i + 1,
                range_label=f"{composites[0]:.2f}-{composites[-1]:.2f}",
                composite_min=composites[0],
                composite_max=composites[-1],
                count=len(chunk),
                win_rate=float((pnls > 0).mean()),
                avg_pnl=float(pnls.mean()),
                avg_mae=float(np.mean([t.mae for _, t in chunk])),
                avg_mfe=float(np.mean([t.mfe for _, t in chunk])),
            ))

        rho, _ = spearmanr([e.composite for e, _ in matched], [t.pnl_percent for _, t in matched])
        spearman = None if rho is None or np.isnan(rho) else float(rho)
        return DecileReport(sample_count=n, sufficient=True, deciles=deciles, spearman=spearman)

    # ========================================
    # 5. DATA AVAILABILITY
    # ========================================

    def compute_data_availability(self, time_range_ms: Optional[int] = None) -> AvailabilityStats:
        entries = self._entries(time_range_ms)
        if not entries:
            return AvailabilityStats(0, 0, 0, 1.0, 1.0, False)

        price_missing = sum(1 for e in entries if not e.market_snapshot.get('price_data_available', False))
        analysis_missing = sum(1 for e in entries if not e.market_snapshot.get('analysis_available', False))
        price_rate = 1 - price_missing / len(entries)
        analysis_rate = 1 - analysis_missing / len(entries)
        threshold = self.config.data_availability_threshold
        triggered = price_rate < threshold or analysis_rate < threshold

        if triggered and self.alerts is not None:
            self.alerts.emit(AlertKind.DATA_AVAILABILITY_DEGRADATION, {
                'price_availability_rate': price_rate,
                'analysis_availability_rate': analysis_rate,
                'threshold': threshold,
            })

        return AvailabilityStats(
            total_evaluations=len(entries),
            price_unavailable_count=price_missing,
            analysis_unavailable_count=analysis_missing,
            price_availability_rate=price_rate,
            analysis_availability_rate=analysis_rate,
            alert_triggered=triggered,
        )

    # ========================================
    # 6. SUMMARY
    # ========================================

    def compute_summary(self, entries: Optional[Sequence[DecisionLogEntry]] = None) -> dict:
        source = list(entries) if entries is not None else self._entries()
        if not source:
            return {
                'total_evaluations': 0,
                'decisions': {d: 0 for d in DECISION_VALUES},
                'final_decisions': {d.value: 0 for d in FinalDecision},
                'avg_composite': 0.0,
                'top_gate_ids': [],
                'top_gate_reasons': [],
                'neutral_bias_rate': 0.0,
            }

        decisions = Counter(e.governance_decision.value for e in source)
        finals = Counter(e.final_decision.value for e in source)
        gate_ids = Counter(gate_id for e in source for gate_id in e.gate_ids)
        reasons = Counter(gate_reason_key(g.message) for e in source for g in e.gates)
        neutral = sum(1 for e in source if is_neutral_bias(e.directional_bias))

        return {
            'total_evaluations': len(source),
            'decisions': {d: decisions.get(d, 0) for d in DECISION_VALUES},
            'final_decisions': {d.value: finals.get(d.value, 0) for d in FinalDecision},
            'avg_composite': float(np.mean([e.composite for e in source])),
            'top_gate_ids': [{'id': k, 'count': v} for k, v in gate_ids.most_common(10)],
            'top_gate_reasons': [{'reason': k, 'count': v} for k, v in reasons.most_common(5)],
            'neutral_bias_rate': neutral / len(source),
        }
