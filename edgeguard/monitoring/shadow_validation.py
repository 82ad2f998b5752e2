"""
Shadow Validation Pipeline

A candidate configuration trades in shadow mode until it has collected a
minimum sample. Only then are the five promotion gates evaluated:

    1. expectancy > 0
    2. profit factor >= 1.2 (None when gross loss ~0: insufficient diversity)
    3. drawdown density <= baseline x 1.1
    4. average friction <= baseline x 1.05
    5. execution quality score >= 70

All five must pass for promotion; otherwise the result carries a failure
report listing every failing gate.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence
import logging
import threading

import numpy as np

from ..governance.schemas import TradeRecord

LOG = logging.getLogger(__name__)

PF_EPSILON = 0.001
MIN_PROFIT_FACTOR = 1.2
DRAWDOWN_TOLERANCE = 1.10
FRICTION_TOLERANCE = 1.05
MIN_EXECUTION_QUALITY = 70.0


class ShadowStatus(str, Enum):
    COLLECTING = "collecting"
    EVALUATING = "evaluating"
    PROMOTED = "promoted"
    FAILED = "failed"


@dataclass(frozen=True)
class ShadowMetrics:
    trade_count: int
    expectancy: float
    gross_profit: float
    gross_loss: float
    win_rate: float
    drawdown_density: float
    avg_friction: float
    execution_quality_score: float

    @property
    def profit_factor(self) -> Optional[float]:
        if self.gross_loss < PF_EPSILON:
            return None
        return self.gross_profit / self.gross_loss

    @classmethod
    def from_trades(cls, trades: Sequence[TradeRecord], execution_quality_score: float) -> "ShadowMetrics":
        """Aggregate shadow samples in arrival order"""
        executed = [t for t in trades if t.executed]
        if not executed:
            return cls(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, execution_quality_score)

        pnl = np.array([t.pnl_percent for t in executed], dtype=float)
        return cls(
            trade_count=int(pnl.size),
            expectancy=float(pnl.mean()),
            gross_profit=float(pnl[pnl > 0].sum()),
            gross_loss=float(abs(pnl[pnl <= 0].sum())),
            win_rate=float((pnl > 0).mean()),
            drawdown_density=drawdown_density(pnl),
            avg_friction=float(np.mean([t.friction_cost for t in executed])),
            execution_quality_score=execution_quality_score,
        )


def drawdown_density(pnl: Sequence[float]) -> float:
    """Worst consecutive-loss run as a share of total absolute P&L"""
    worst = streak = total = 0.0
    for value in pnl:
        total += abs(value)
        if value <= 0:
            streak += abs(value)
            worst = max(worst, streak)
        else:
            streak = 0.0
    return worst / total if total > 0 else 0.0


@dataclass(frozen=True)
class BaselineMetrics:
    """Metrics of the configuration currently live"""
    expectancy: float
    drawdown_density: float
    avg_friction: float

    @classmethod
    def from_trades(cls, trades: Sequence[TradeRecord]) -> "BaselineMetrics":
        metrics = ShadowMetrics.from_trades(trades, 0.0)
        return cls(metrics.expectancy, metrics.drawdown_density, metrics.avg_friction)


DEFAULT_BASELINE = BaselineMetrics(expectancy=0.5, drawdown_density=0.3, avg_friction=0.002)


@dataclass(frozen=True)
class ShadowGates:
    expectancy_positive: bool
    profit_factor_stable: bool
    drawdown_not_worse: bool
    friction_not_worse: bool
    execution_quality_ok: bool

    @property
    def all_passed(self) -> bool:
        return all(vars(self).values())


@dataclass
class ShadowResult:
    status: ShadowStatus
    trade_count: int
    min_trades_required: int
    gates: Optional[ShadowGates] = None
    all_gates_passed: bool = False
    failure_report: Optional[str] = None
    metrics_snapshot: Optional[Dict] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'trade_count': self.trade_count,
            'min_trades_required': self.min_trades_required,
            'gates': vars(self.gates) if self.gates else None,
            'all_gates_passed': self.all_gates_passed,
            'failure_report': self.failure_report,
            'metrics_snapshot': self.metrics_snapshot,
        }


def evaluate_shadow(metrics: ShadowMetrics, baseline: BaselineMetrics, min_trades: int = 30) -> ShadowResult:
    """
    Evaluate one candidate's shadow sample against the live baseline.

    Args:
        metrics: Accumulated shadow metrics
        baseline: Live configuration's metrics
        min_trades: Sample-size floor; below it no gate is evaluated

    Returns:
        ShadowResult (collecting, promoted or failed)
    """
    if metrics.trade_count < min_trades:
        return ShadowResult(
            status=ShadowStatus.COLLECTING,
            trade_count=metrics.trade_count,
            min_trades_required=min_trades,
        )

    pf = metrics.profit_factor
    gates = ShadowGates(
        expectancy_positive=metrics.expectancy > 0,
        profit_factor_stable=pf is not None and pf >= MIN_PROFIT_FACTOR,
        drawdown_not_worse=metrics.drawdown_density <= baseline.drawdown_density * DRAWDOWN_TOLERANCE,
        friction_not_worse=metrics.avg_friction <= baseline.avg_friction * FRICTION_TOLERANCE,
        execution_quality_ok=metrics.execution_quality_score >= MIN_EXECUTION_QUALITY,
    )

    failures: List[str] = []
    if not gates.expectancy_positive:
        failures.append(f"Expectancy negative ({metrics.expectancy:.4f})")
    if not gates.profit_factor_stable:
        if pf is None:
            failures.append("PF invalid (gross loss below epsilon, insufficient sample diversity)")
        else:
            failures.append(f"PF {pf:.2f} < {MIN_PROFIT_FACTOR}")
    if not gates.drawdown_not_worse:
        failures.append(
            f"Drawdown density {metrics.drawdown_density:.3f} > baseline "
            f"{baseline.drawdown_density:.3f} x {DRAWDOWN_TOLERANCE}"
        )
    if not gates.friction_not_worse:
        failures.append(
            f"Avg friction {metrics.avg_friction:.5f} > baseline {baseline.avg_friction:.5f} x {FRICTION_TOLERANCE}"
        )
    if not gates.execution_quality_ok:
        failures.append(f"Execution quality {metrics.execution_quality_score:.0f} < {MIN_EXECUTION_QUALITY:.0f}")

    passed = not failures
    return ShadowResult(
        status=ShadowStatus.PROMOTED if passed else ShadowStatus.FAILED,
        trade_count=metrics.trade_count,
        min_trades_required=min_trades,
        gates=gates,
        all_gates_passed=passed,
        failure_report=None if passed else "Shadow promotion failed: " + "; ".join(failures),
        metrics_snapshot={
            'expectancy': metrics.expectancy,
            'profit_factor': pf,
            'drawdown_density': metrics.drawdown_density,
            'avg_friction': metrics.avg_friction,
            'win_rate': metrics.win_rate,
        },
    )


class ShadowValidationPipeline:
    """Accumulates shadow samples per candidate configuration"""

    def __init__(self, baseline: BaselineMetrics, min_trades: int = 30):
        self.baseline = baseline
        self.min_trades = min_trades
        self._samples: Dict[str, List[TradeRecord]] = {}
        self._quality: Dict[str, float] = {}
        self._results: Dict[str, ShadowResult] = {}
        self._lock = threading.Lock()

    def add_sample(self, candidate_id: str, trade: TradeRecord):
        with self._lock:
            self._samples.setdefault(candidate_id, []).append(trade)
            self._results.pop(candidate_id, None)

    def set_execution_quality(self, candidate_id: str, score: float):
        with self._lock:
            self._quality[candidate_id] = float(score)

    def sample_count(self, candidate_id: str) -> int:
        with self._lock:
            return sum(1 for t in self._samples.get(candidate_id, []) if t.executed)

    def status(self, candidate_id: str) -> ShadowStatus:
        """Collecting below the floor, evaluating until evaluate() runs"""
        with self._lock:
            result = self._results.get(candidate_id)
        if result is not None:
            return result.status
        if self.sample_count(candidate_id) < self.min_trades:
            return ShadowStatus.COLLECTING
        return ShadowStatus.EVALUATING

    def metrics(self, candidate_id: str) -> ShadowMetrics:
        with self._lock:
            trades = list(self._samples.get(candidate_id, []))
            quality = self._quality.get(candidate_id, 0.0)
        return ShadowMetrics.from_trades(trades, quality)

    def evaluate(self, candidate_id: str) -> ShadowResult:
        result = evaluate_shadow(self.metrics(candidate_id), self.baseline, self.min_trades)
        with self._lock:
            self._results[candidate_id] = result
        if result.status == ShadowStatus.PROMOTED:
            LOG.info(f"Shadow candidate {candidate_id} promoted after {result.trade_count} trades")
        elif result.status == ShadowStatus.FAILED:
            LOG.warning(f"Shadow candidate {candidate_id} failed: {result.failure_report}")
        return result

    def candidates(self) -> List[str]:
        with self._lock:
            return list(self._samples.keys())

    def reset(self, candidate_id: Optional[str] = None):
        with self._lock:
            if candidate_id is None:
                self._samples.clear()
                self._quality.clear()
                self._results.clear()
            else:
                self._samples.pop(candidate_id, None)
                self._quality.pop(candidate_id, None)
                self._results.pop(candidate_id, None)
