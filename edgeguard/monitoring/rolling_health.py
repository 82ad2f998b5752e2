"""
Rolling Health Monitor

Tracks live performance across three rolling windows (last 50 trades, last
200 trades, last 30 days), detects metric degradation against a threshold
table and derives auto-protection triggers that throttle trade density when
edge quality decays.

Avoided (never executed) trades are excluded from every window. Profit
factor is None when gross loss is ~0; it is never reported as infinite.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence
import logging

import numpy as np

from ..alerts import AlertKind, AlertSink
from ..clock import Clock, SystemClock
from ..governance.config import DegradationThresholds
from ..governance.schemas import TradeRecord

LOG = logging.getLogger(__name__)

PF_EPSILON = 1e-9
DAY_MS = 86_400_000


class RollingWindow(str, Enum):
    LAST_50 = "50"
    LAST_200 = "200"
    LAST_30_DAYS = "30d"

    @property
    def label(self) -> str:
        return WINDOW_LABELS[self]


WINDOW_LABELS = {
    RollingWindow.LAST_50: "Last 50 Trades",
    RollingWindow.LAST_200: "Last 200 Trades",
    RollingWindow.LAST_30_DAYS: "Last 30 Days",
}


class DegradationSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class ProtectionAction(str, Enum):
    THROTTLE_DENSITY = "throttle-density"
    RAISE_GATING = "raise-gating"
    TIGHTEN_DURATION = "tighten-duration"
    DEFENSIVE_EXITS = "defensive-exits"
    RESTRICT_PAIRS = "restrict-pairs"
    REDUCE_SIZE = "reduce-size"


class ProtectionLevel(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


# Metric names used as dedup keys
WIN_RATE = "Win Rate"
CAPTURE_RATIO = "Capture Ratio"
AVG_LOSS = "Avg Loss"
PAYOUT_ASYMMETRY = "Payout Asymmetry"
AVG_DURATION = "Avg Duration"
NET_EXPECTANCY = "Net Expectancy"
MAX_DRAWDOWN = "Max Drawdown"


@dataclass
class RollingWindowMetrics:
    window: RollingWindow
    trade_count: int = 0
    win_rate: float = 0.0
    avg_win_size: float = 0.0
    avg_loss_size: float = 0.0
    payout_asymmetry: float = 0.0
    avg_capture_ratio: float = 0.0
    avg_duration: float = 0.0
    avg_friction_cost: float = 0.0
    net_expectancy: float = 0.0
    net_pnl: float = 0.0
    max_drawdown: float = 0.0
    profit_factor: Optional[float] = None
    sharpe: float = 0.0

    def to_dict(self) -> dict:
        d = dict(vars(self))
        d['window'] = self.window.value
        return d


@dataclass
class DegradationAlert:
    metric: str
    current: float
    threshold: float
    severity: DegradationSeverity
    direction: str  # 'below' | 'above'
    message: str

    def to_dict(self) -> dict:
        d = dict(vars(self))
        d['severity'] = self.severity.value
        return d


@dataclass
class AutoProtectionTrigger:
    action: ProtectionAction
    reason: str
    severity: DegradationSeverity
    adjustment_factor: float

    def to_dict(self) -> dict:
        return {
            'action': self.action.value,
            'reason': self.reason,
            'severity': self.severity.value,
            'adjustment_factor': self.adjustment_factor,
        }


@dataclass
class RollingHealthState:
    windows: Dict[RollingWindow, RollingWindowMetrics]
    alerts: List[DegradationAlert] = field(default_factory=list)
    protection_triggers: List[AutoProtectionTrigger] = field(default_factory=list)
    is_healthy: bool = True
    health_score: float = 100.0
    protection_level: ProtectionLevel = ProtectionLevel.NONE
    do_not_trade: List[str] = field(default_factory=list)
    top_fixes: List[str] = field(default_factory=list)
    timestamp_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'windows': {w.value: m.to_dict() for w, m in self.windows.items()},
            'alerts': [a.to_dict() for a in self.alerts],
            'protection_triggers': [t.to_dict() for t in self.protection_triggers],
            'is_healthy': self.is_healthy,
            'health_score': self.health_score,
            'protection_level': self.protection_level.value,
            'do_not_trade': list(self.do_not_trade),
            'top_fixes': list(self.top_fixes),
            'timestamp_ms': self.timestamp_ms,
        }


# ========================================
# METRICS
# ========================================

def slice_window(trades_desc: Sequence[TradeRecord], window: RollingWindow, now_ms: int) -> List[TradeRecord]:
    executed = [t for t in trades_desc if t.executed]
    if window == RollingWindow.LAST_30_DAYS:
        cutoff = now_ms - 30 * DAY_MS
        return [t for t in executed if t.timestamp_ms >= cutoff]
    count = 50 if window == RollingWindow.LAST_50 else 200
    return executed[:count]


def compute_window_metrics(trades: Sequence[TradeRecord], window: RollingWindow) -> RollingWindowMetrics:
    if not trades:
        return RollingWindowMetrics(window=window, avg_loss_size=0.001)

    pnl = np.array([t.pnl_percent for t in trades], dtype=float)
    wins = pnl[pnl > 0]
    losses = pnl[pnl <= 0]

    avg_win = float(wins.mean()) if wins.size else 0.0
    avg_loss = float(abs(losses.mean())) if losses.size else 0.001
    gross_profit = float(wins.sum())
    gross_loss = float(abs(losses.sum()))

    net_pnl = float(pnl.sum())
    avg_return = net_pnl / pnl.size
    avg_friction = float(np.mean([t.friction_cost for t in trades]))
    std = float(pnl.std(ddof=1)) if pnl.size > 1 else 1.0

    # Sequential peak-to-trough over the window order
    cumulative = np.cumsum(pnl)
    peaks = np.maximum.accumulate(np.concatenate(([0.0], cumulative)))[1:]
    max_dd = float(np.max(peaks - cumulative, initial=0.0))

    return RollingWindowMetrics(
        window=window,
        trade_count=int(pnl.size),
        win_rate=wins.size / pnl.size,
        avg_win_size=avg_win,
        avg_loss_size=avg_loss,
        payout_asymmetry=avg_win / avg_loss if avg_loss > 0 else 0.0,
        avg_capture_ratio=float(np.mean([t.capture_ratio for t in trades])),
        avg_duration=float(np.mean([t.duration_minutes for t in trades])),
        avg_friction_cost=avg_friction,
        net_expectancy=avg_return - avg_friction,
        net_pnl=net_pnl,
        max_drawdown=max_dd,
        profit_factor=gross_profit / gross_loss if gross_loss > PF_EPSILON else None,
        sharpe=avg_return / std if std > 0 else 0.0,
    )


# ========================================
# DEGRADATION
# ========================================

def _check(metric: str, value: float, threshold: float, direction: str, message: str,
           critical_gap: float) -> Optional[DegradationAlert]:
    failed = value < threshold if direction == 'below' else value > threshold
    if not failed:
        return None
    if threshold == 0:
        gap = float('inf')
    elif direction == 'below':
        gap = (threshold - value) / abs(threshold)
    else:
        gap = (value - threshold) / abs(threshold)
    severity = DegradationSeverity.CRITICAL if gap > critical_gap else DegradationSeverity.WARNING
    return DegradationAlert(
        metric=metric,
        current=value,
        threshold=threshold,
        severity=severity,
        direction=direction,
        message=f"{message} ({gap * 100:.0f}% {direction} threshold)",
    )


def detect_degradation(metrics: RollingWindowMetrics, thresholds: DegradationThresholds) -> List[DegradationAlert]:
    """Threshold breaches for one window; an empty window has nothing to report"""
    if metrics.trade_count == 0:
        return []
    gap = thresholds.critical_gap
    checks = [
        _check(WIN_RATE, metrics.win_rate, thresholds.min_win_rate, 'below',
               f"Win rate {metrics.win_rate * 100:.1f}% below {thresholds.min_win_rate * 100:.0f}%", gap),
        _check(CAPTURE_RATIO, metrics.avg_capture_ratio, thresholds.min_capture_ratio, 'below',
               f"Capture ratio {metrics.avg_capture_ratio * 100:.0f}% below {thresholds.min_capture_ratio * 100:.0f}%", gap),
        _check(AVG_LOSS, metrics.avg_loss_size, thresholds.max_avg_loss, 'above',
               f"Avg loss {metrics.avg_loss_size:.3f}% exceeds {thresholds.max_avg_loss}%", gap),
        _check(PAYOUT_ASYMMETRY, metrics.payout_asymmetry, thresholds.min_payout_asymmetry, 'below',
               f"Win/loss ratio {metrics.payout_asymmetry:.1f}:1 below {thresholds.min_payout_asymmetry}:1", gap),
        _check(AVG_DURATION, metrics.avg_duration, thresholds.max_avg_duration, 'above',
               f"Avg duration {metrics.avg_duration:.0f}min exceeds {thresholds.max_avg_duration}min", gap),
        _check(NET_EXPECTANCY, metrics.net_expectancy, thresholds.min_expectancy, 'below',
               f"Net expectancy {metrics.net_expectancy:.4f}% below {thresholds.min_expectancy}%", gap),
        _check(MAX_DRAWDOWN, metrics.max_drawdown, thresholds.max_drawdown, 'above',
               f"Drawdown {metrics.max_drawdown:.2f}% exceeds {thresholds.max_drawdown}%", gap),
    ]
    return [a for a in checks if a is not None]


def merge_alerts(alerts: Iterable[DegradationAlert]) -> List[DegradationAlert]:
    """One alert per metric; a critical replaces an earlier warning"""
    unique: Dict[str, DegradationAlert] = {}
    for alert in alerts:
        existing = unique.get(alert.metric)
        if existing is None or (
            alert.severity == DegradationSeverity.CRITICAL
            and existing.severity == DegradationSeverity.WARNING
        ):
            unique[alert.metric] = alert
    return list(unique.values())


def _count(alerts: Sequence[DegradationAlert], severity: DegradationSeverity) -> int:
    return sum(1 for a in alerts if a.severity == severity)


def generate_protection_triggers(alerts: Sequence[DegradationAlert]) -> List[AutoProtectionTrigger]:
    triggers = []
    critical = DegradationSeverity.CRITICAL

    for alert in alerts:
        if alert.metric == WIN_RATE and alert.severity == critical:
            triggers.append(AutoProtectionTrigger(ProtectionAction.RAISE_GATING, alert.message, critical, 0.6))
        elif alert.metric == AVG_LOSS:
            triggers.append(AutoProtectionTrigger(ProtectionAction.DEFENSIVE_EXITS, alert.message, alert.severity, 0.7))
        elif alert.metric == AVG_DURATION:
            triggers.append(AutoProtectionTrigger(ProtectionAction.TIGHTEN_DURATION, alert.message, alert.severity, 0.75))
        elif alert.metric == NET_EXPECTANCY and alert.severity == critical:
            triggers.append(AutoProtectionTrigger(ProtectionAction.THROTTLE_DENSITY, alert.message, critical, 0.4))
        elif alert.metric == MAX_DRAWDOWN:
            triggers.append(AutoProtectionTrigger(ProtectionAction.REDUCE_SIZE, alert.message, alert.severity, 0.5))
        elif alert.metric == PAYOUT_ASYMMETRY:
            triggers.append(AutoProtectionTrigger(ProtectionAction.RESTRICT_PAIRS, alert.message, alert.severity, 0.8))

    critical_count = _count(alerts, critical)
    warning_count = _count(alerts, DegradationSeverity.WARNING)
    if critical_count >= 3:
        triggers.append(AutoProtectionTrigger(
            ProtectionAction.THROTTLE_DENSITY,
            f"{critical_count} critical degradations: emergency throttle",
            critical,
            0.2,
        ))
    elif warning_count >= 4:
        triggers.append(AutoProtectionTrigger(
            ProtectionAction.THROTTLE_DENSITY,
            f"{warning_count} warnings: precautionary throttle",
            DegradationSeverity.WARNING,
            0.6,
        ))
    return triggers


def health_score(critical_count: int, warning_count: int) -> float:
    return float(np.clip(100 - 20 * critical_count - 8 * warning_count, 0, 100))


def protection_level(critical_count: int, warning_count: int) -> ProtectionLevel:
    if critical_count >= 3:
        return ProtectionLevel.HEAVY
    if critical_count >= 1:
        return ProtectionLevel.MODERATE
    if warning_count >= 2:
        return ProtectionLevel.LIGHT
    return ProtectionLevel.NONE


def derive_do_not_trade(alerts: Sequence[DegradationAlert],
                        windows: Dict[RollingWindow, RollingWindowMetrics]) -> List[str]:
    critical = {a.metric for a in alerts if a.severity == DegradationSeverity.CRITICAL}
    conditions = []
    if NET_EXPECTANCY in critical:
        conditions.append("Expectancy negative after friction: all new entries suspended")
    if MAX_DRAWDOWN in critical:
        conditions.append("Drawdown exceeds critical threshold: position sizing halved")
    if WIN_RATE in critical and AVG_LOSS in critical:
        conditions.append("Win rate and loss size both critical: full trade suspension recommended")

    recent = windows[RollingWindow.LAST_50]
    longer = windows[RollingWindow.LAST_200]
    if recent.trade_count > 10 and longer.trade_count > 50 and recent.win_rate < longer.win_rate * 0.8:
        conditions.append("Recent performance degrading vs historical: possible regime shift")
    return conditions


TOP_FIXES = {
    WIN_RATE: "Raise governance composite threshold to filter weaker setups",
    AVG_LOSS: "Tighten loss compression bounds",
    PAYOUT_ASYMMETRY: "Increase minimum friction ratio gate from 3x to 4x",
    AVG_DURATION: "Reduce max duration caps in exhaustion/compression regimes",
    NET_EXPECTANCY: "Restrict to top-5 performing pairs until expectancy recovers",
    MAX_DRAWDOWN: "Activate position size reduction (50%) until drawdown stabilizes",
    CAPTURE_RATIO: "Implement tighter give-back caps on partial profits",
}

HEALTHY_FIXES = [
    "System healthy: maintain current parameters",
    "Consider shadow-testing +5% friction gate increase",
    "Review session performance for Asian session viability",
]


def derive_top_fixes(alerts: Sequence[DegradationAlert]) -> List[str]:
    ordered = sorted(alerts, key=lambda a: 0 if a.severity == DegradationSeverity.CRITICAL else 1)
    fixes = [TOP_FIXES[a.metric] for a in ordered[:3] if a.metric in TOP_FIXES]
    return fixes[:3] if fixes else list(HEALTHY_FIXES)


# ========================================
# MONITOR
# ========================================

class RollingHealthMonitor:
    """Computes RollingHealthState from a trade history"""

    def __init__(
        self,
        thresholds: Optional[DegradationThresholds] = None,
        clock: Optional[Clock] = None,
        alerts: Optional[AlertSink] = None,
    ):
        self.thresholds = thresholds or DegradationThresholds()
        self.clock = clock or SystemClock()
        self.alerts = alerts

    def compute(self, trades: Iterable[TradeRecord]) -> RollingHealthState:
        now = self.clock.now_ms()
        trades_desc = sorted(trades, key=lambda t: t.timestamp_ms, reverse=True)

        windows = {
            w: compute_window_metrics(slice_window(trades_desc, w, now), w)
            for w in RollingWindow
        }

        raw_alerts = []
        for window in RollingWindow:
            for alert in detect_degradation(windows[window], self.thresholds):
                alert.message = f"[{window.label}] {alert.message}"
                raw_alerts.append(alert)
        alerts = merge_alerts(raw_alerts)

        critical_count = _count(alerts, DegradationSeverity.CRITICAL)
        warning_count = _count(alerts, DegradationSeverity.WARNING)

        state = RollingHealthState(
            windows=windows,
            alerts=alerts,
            protection_triggers=generate_protection_triggers(alerts),
            is_healthy=critical_count == 0 and warning_count <= 1,
            health_score=health_score(critical_count, warning_count),
            protection_level=protection_level(critical_count, warning_count),
            do_not_trade=derive_do_not_trade(alerts, windows),
            top_fixes=derive_top_fixes(alerts),
            timestamp_ms=now,
        )

        if alerts:
            LOG.warning(
                f"Rolling health degraded: score={state.health_score:.0f} "
                f"critical={critical_count} warning={warning_count} level={state.protection_level.value}"
            )
            if self.alerts is not None:
                self.alerts.emit(AlertKind.DEGRADATION_DETECTED, {
                    'health_score': state.health_score,
                    'critical_count': critical_count,
                    'warning_count': warning_count,
                    'protection_level': state.protection_level.value,
                    'metrics': [a.metric for a in alerts],
                })
        return state
