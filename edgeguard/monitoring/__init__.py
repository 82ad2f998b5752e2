"""
Monitoring

Consumers of completed-trade history, off the hot decision path:
rolling-window degradation and auto-protection, shadow promotion gates,
and short-side survivorship tiering.
"""

from edgeguard.monitoring.rolling_health import (
    AutoProtectionTrigger,
    DegradationAlert,
    RollingHealthMonitor,
    RollingHealthState,
    RollingWindow,
    RollingWindowMetrics,
)
from edgeguard.monitoring.shadow_validation import (
    BaselineMetrics,
    ShadowMetrics,
    ShadowResult,
    ShadowStatus,
    ShadowValidationPipeline,
    evaluate_shadow,
)
from edgeguard.monitoring.survivorship import (
    ShortSurvivorshipEntry,
    ShortTradeRecord,
    SnapbackSurvivalMetrics,
    SurvivorshipTier,
    compute_snapback_survival,
    score_short_survivorship,
)

__all__ = [
    'AutoProtectionTrigger',
    'DegradationAlert',
    'RollingHealthMonitor',
    'RollingHealthState',
    'RollingWindow',
    'RollingWindowMetrics',
    'BaselineMetrics',
    'ShadowMetrics',
    'ShadowResult',
    'ShadowStatus',
    'ShadowValidationPipeline',
    'evaluate_shadow',
    'ShortSurvivorshipEntry',
    'ShortTradeRecord',
    'SnapbackSurvivalMetrics',
    'SurvivorshipTier',
    'compute_snapback_survival',
    'score_short_survivorship',
]
