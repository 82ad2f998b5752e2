"""
Short Stop Geometry

Shorts get wider initial stops and a delayed trail:

    Phase A  entry -> N candles: stop never shrinks, snapbacks are tolerated
    Phase B  MFE >= X x initial risk: trail above the last N-bar high

Initial stop = max(k x ATR(5), m x spread, swing high + buffer - entry),
never tighter than 2 x spread.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Sequence
import logging

from .config import StopGeometryConfig
from .schemas import ShortRegime
from ..symbols import pip_scale

LOG = logging.getLogger(__name__)

MIN_SPREAD_MULTIPLE = 2.0


class StopSource(str, Enum):
    ATR = "atr"
    SPREAD = "spread"
    SWING = "swing"


class StopPhase(str, Enum):
    A = "A"  # no shrink
    B = "B"  # trailing


@dataclass(frozen=True)
class ShortStopLevel:
    initial_stop_distance: float
    stop_source: StopSource
    no_shrink_candles: int
    trail_activation_threshold: float
    current_phase: StopPhase = StopPhase.A

    def to_dict(self) -> dict:
        return {
            'initial_stop_distance': float(self.initial_stop_distance),
            'stop_source': self.stop_source.value,
            'no_shrink_candles': int(self.no_shrink_candles),
            'trail_activation_threshold': float(self.trail_activation_threshold),
            'current_phase': self.current_phase.value,
        }


class PhaseState(NamedTuple):
    phase: StopPhase
    should_activate_trail: bool


class RegimeStopAdjustment(NamedTuple):
    atr_multiplier: Optional[float] = None
    no_shrink_candles: Optional[int] = None
    mfe_threshold: Optional[float] = None


REGIME_STOP_ADJUSTMENTS = {
    # Fast move: tighter initial stop, trail activates quickly
    ShortRegime.SHOCK_BREAKDOWN: RegimeStopAdjustment(1.2, 3, 1.0),
    # Wide spreads need more room
    ShortRegime.LIQUIDITY_VACUUM: RegimeStopAdjustment(2.0, 8, 1.5),
    # Second leg: moderate
    ShortRegime.BREAKDOWN_CONTINUATION: RegimeStopAdjustment(1.3, 4, 1.1),
}


def regime_stop_adjustment(regime: ShortRegime) -> RegimeStopAdjustment:
    return REGIME_STOP_ADJUSTMENTS.get(regime, RegimeStopAdjustment())


def config_for_regime(config: StopGeometryConfig, regime: ShortRegime) -> StopGeometryConfig:
    """Apply a regime's overrides on top of a (pair) stop config"""
    adj = regime_stop_adjustment(regime)
    overrides = {}
    if adj.atr_multiplier is not None:
        overrides['initial_stop_atr_multiplier'] = adj.atr_multiplier
    if adj.no_shrink_candles is not None:
        overrides['no_shrink_candle_count'] = adj.no_shrink_candles
    if adj.mfe_threshold is not None:
        overrides['trail_activation_mfe_multiple'] = adj.mfe_threshold
    return config.merged(overrides)


def compute_initial_stop(
    atr5: float,
    spread: float,
    swing_high: float,
    entry_price: float,
    config: Optional[StopGeometryConfig] = None,
) -> ShortStopLevel:
    """
    Widest of the ATR, spread and swing candidates, floored at 2 x spread.

    Args:
        atr5: ATR(5) in price units
        spread: Current spread in price units
        swing_high: Recent swing high price
        entry_price: Short entry price (sets pip scale)
        config: Stop geometry, defaults when omitted

    Returns:
        ShortStopLevel in phase A
    """
    cfg = config or StopGeometryConfig()
    buffer = cfg.swing_high_buffer_pips * pip_scale(entry_price)

    atr_stop = atr5 * cfg.initial_stop_atr_multiplier
    spread_stop = spread * cfg.initial_stop_spread_multiplier
    swing_stop = max(0.0, (swing_high + buffer) - entry_price)

    # Ties resolve atr > spread > swing
    if atr_stop >= spread_stop and atr_stop >= swing_stop:
        distance, source = atr_stop, StopSource.ATR
    elif spread_stop >= swing_stop:
        distance, source = spread_stop, StopSource.SPREAD
    else:
        distance, source = swing_stop, StopSource.SWING

    distance = max(distance, spread * MIN_SPREAD_MULTIPLE)

    return ShortStopLevel(
        initial_stop_distance=distance,
        stop_source=source,
        no_shrink_candles=cfg.no_shrink_candle_count,
        trail_activation_threshold=cfg.trail_activation_mfe_multiple,
    )


def evaluate_stop_phase(
    candles_since_entry: int,
    current_mfe: float,
    initial_risk: float,
    config: Optional[StopGeometryConfig] = None,
) -> PhaseState:
    cfg = config or StopGeometryConfig()
    if candles_since_entry < cfg.no_shrink_candle_count:
        return PhaseState(StopPhase.A, False)

    mfe_multiple = current_mfe / initial_risk if initial_risk > 0 else 0.0
    activate = mfe_multiple >= cfg.trail_activation_mfe_multiple
    return PhaseState(StopPhase.B if activate else StopPhase.A, activate)


def compute_trailing_stop(recent_highs: Sequence[float], config: Optional[StopGeometryConfig] = None) -> Optional[float]:
    """Last-N-bar high plus buffer. None when there are no bars (keep the current stop)."""
    cfg = config or StopGeometryConfig()
    if not recent_highs:
        return None
    structure_high = max(recent_highs[-cfg.trail_structure_bars:])
    return structure_high + cfg.trail_buffer_pips * pip_scale(structure_high)
