"""
Short Survivorship Scoring

Scores short-side setups per (pair, session, agent, indicator signature,
regime) and tiers them viable / marginal / suppress. On top of the usual
expectancy and profit factor it tracks snapback survival: how many eventual
winners first went more than 0.6R against the position.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np

from ..governance.schemas import LiquiditySession, ShortRegime

LOG = logging.getLogger(__name__)

PF_EPSILON = 0.001
MIN_SAMPLE = 10
DEFAULT_EMPIRICAL_STOP_R = 1.5


class SurvivorshipTier(str, Enum):
    VIABLE = "viable"
    MARGINAL = "marginal"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class ShortTradeRecord:
    """Closed short trade with excursions measured in R (1R = initial stop distance)"""
    pair: str
    session: LiquiditySession
    agent_id: str
    regime: ShortRegime
    indicator_signature: str
    pnl_pips: float
    mae_r: float
    mfe_r: float
    spread_pips: float = 0.0
    slippage_pips: float = 0.0
    is_win: bool = False
    initial_risk_r: float = 1.0


@dataclass
class SnapbackSurvivalMetrics:
    avg_mae_r: float = 0.0
    win_rate_when_mae_gt_05r: float = 0.0
    win_rate_when_mae_gt_1r: float = 0.0
    pct_winners_with_snapback: float = 0.0
    empirical_stop_r: float = DEFAULT_EMPIRICAL_STOP_R
    sample_size: int = 0


@dataclass
class ShortSurvivorshipEntry:
    pair: str
    session: LiquiditySession
    agent_id: str
    indicator_signature: str
    regime: ShortRegime
    trade_count: int
    expectancy: float
    profit_factor: Optional[float]
    win_rate: float
    snapback: SnapbackSurvivalMetrics
    avg_mae: float
    avg_mfe: float
    avg_give_back: float
    drawdown_density: float
    avg_spread: float
    avg_slippage: float
    tier: SurvivorshipTier
    tier_reason: str

    def to_dict(self) -> dict:
        d = dict(vars(self))
        d['session'] = self.session.value
        d['regime'] = self.regime.value
        d['tier'] = self.tier.value
        d['snapback'] = vars(self.snapback)
        return d


def _win_rate(trades: Sequence[ShortTradeRecord]) -> float:
    return sum(1 for t in trades if t.is_win) / len(trades) if trades else 0.0


def compute_snapback_survival(trades: Sequence[ShortTradeRecord]) -> SnapbackSurvivalMetrics:
    if not trades:
        return SnapbackSurvivalMetrics()

    winners = [t for t in trades if t.is_win]
    snapback_winners = [t for t in winners if t.mae_r > 0.6]

    # MAE level 75% of eventual winners stayed inside, plus a 10% buffer
    winner_mae = sorted(t.mae_r for t in winners)
    if winner_mae:
        idx = min(int(len(winner_mae) * 0.75), len(winner_mae) - 1)
        empirical_stop = winner_mae[idx] * 1.1
    else:
        empirical_stop = DEFAULT_EMPIRICAL_STOP_R

    return SnapbackSurvivalMetrics(
        avg_mae_r=float(np.mean([t.mae_r for t in trades])),
        win_rate_when_mae_gt_05r=_win_rate([t for t in trades if t.mae_r > 0.5]),
        win_rate_when_mae_gt_1r=_win_rate([t for t in trades if t.mae_r > 1.0]),
        pct_winners_with_snapback=len(snapback_winners) / len(winners) * 100 if winners else 0.0,
        empirical_stop_r=empirical_stop,
        sample_size=len(trades),
    )


def _drawdown_density(trades: Sequence[ShortTradeRecord]) -> float:
    worst = streak = total = 0.0
    for t in trades:
        total += abs(t.pnl_pips)
        if not t.is_win:
            streak += abs(t.pnl_pips)
            worst = max(worst, streak)
        else:
            streak = 0.0
    return worst / total if total > 0 else 0.0


def _classify(count: int, expectancy: float, pf: Optional[float], win_rate: float,
              dd_density: float, snapback_pct: float) -> Tuple[SurvivorshipTier, str]:
    if count < MIN_SAMPLE:
        return SurvivorshipTier.SUPPRESS, f"Insufficient sample ({count} < {MIN_SAMPLE})"
    if (expectancy > 0 and (pf is None or pf >= 1.2) and win_rate >= 0.45
            and dd_density < 0.5 and snapback_pct > 30):
        pf_text = f"{pf:.2f}" if pf is not None else "N/A"
        return SurvivorshipTier.VIABLE, (
            f"Positive expectancy ({expectancy:.1f} pips), PF {pf_text}, "
            f"snapback survival {snapback_pct:.0f}%"
        )
    detail = f"expectancy {expectancy:.1f}, WR {win_rate * 100:.0f}%, DD density {dd_density * 100:.0f}%"
    if expectancy > -0.5 and win_rate >= 0.40 and dd_density < 0.65:
        return SurvivorshipTier.MARGINAL, f"Borderline: {detail}"
    return SurvivorshipTier.SUPPRESS, f"Poor performance: {detail}"


def score_short_survivorship(
    trades: Sequence[ShortTradeRecord],
    pair: str,
    session: LiquiditySession,
    agent_id: str,
    indicator_signature: str,
    regime: ShortRegime,
) -> ShortSurvivorshipEntry:
    subset = [
        t for t in trades
        if t.pair == pair and t.session == session and t.agent_id == agent_id
        and t.indicator_signature == indicator_signature and t.regime == regime
    ]
    count = len(subset)
    pnl = np.array([t.pnl_pips for t in subset], dtype=float)
    wins = pnl[[t.is_win for t in subset]] if count else pnl
    losses = pnl[[not t.is_win for t in subset]] if count else pnl

    expectancy = float(pnl.mean()) if count else 0.0
    gross_loss = float(abs(losses.sum()))
    profit_factor = float(wins.sum()) / gross_loss if gross_loss > PF_EPSILON else None

    snapback = compute_snapback_survival(subset)
    avg_mae = float(np.mean([t.mae_r for t in subset])) if count else 0.0
    avg_mfe = float(np.mean([t.mfe_r for t in subset])) if count else 0.0
    give_back = 0.0
    if avg_mfe > 0:
        give_back = max(0.0, (1 - expectancy / (avg_mfe * subset[0].initial_risk_r)) * 100)

    dd_density = _drawdown_density(subset)
    win_rate = _win_rate(subset)
    tier, reason = _classify(count, expectancy, profit_factor, win_rate, dd_density,
                             snapback.pct_winners_with_snapback)

    return ShortSurvivorshipEntry(
        pair=pair,
        session=session,
        agent_id=agent_id,
        indicator_signature=indicator_signature,
        regime=regime,
        trade_count=count,
        expectancy=expectancy,
        profit_factor=profit_factor,
        win_rate=win_rate,
        snapback=snapback,
        avg_mae=avg_mae,
        avg_mfe=avg_mfe,
        avg_give_back=give_back,
        drawdown_density=dd_density,
        avg_spread=float(np.mean([t.spread_pips for t in subset])) if count else 0.0,
        avg_slippage=float(np.mean([t.slippage_pips for t in subset])) if count else 0.0,
        tier=tier,
        tier_reason=reason,
    )


def score_all(trades: Sequence[ShortTradeRecord]) -> List[ShortSurvivorshipEntry]:
    """Score every (pair, session, agent, signature, regime) combination present"""
    keys: Dict[tuple, None] = {}
    for t in trades:
        keys[(t.pair, t.session, t.agent_id, t.indicator_signature, t.regime)] = None
    return [score_short_survivorship(trades, *key) for key in keys]
