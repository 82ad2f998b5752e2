"""
Governance

Per-proposal decision path: the long and short engines, their regime
classifiers, multiplier scorers and gate batteries, plus the router that
keeps the two directions isolated.

Decision rule:
    rejected   regime not tradeable OR >= 2 gates
    throttled  exactly 1 gate OR composite below threshold
    approved   otherwise
"""

from edgeguard.governance.engine import (
    GovernanceEngine,
    GovernanceVerdict,
    LongGovernanceEngine,
    ShortGovernanceEngine,
)
from edgeguard.governance.config import (
    ConfigManager,
    DegradationThresholds,
    EngineConfig,
    GovernanceConfig,
    StopGeometryConfig,
)
from edgeguard.governance.context import (
    AnalysisSnapshot,
    CacheMonitor,
    ContextProvider,
    InMemoryMarketData,
    InMemoryPriceFeed,
    MarketDataProvider,
    PriceFeed,
    PriceQuote,
)
from edgeguard.governance.regime import (
    LONG_CLASSIFIER,
    SHORT_CLASSIFIER,
    RegimeClassifier,
    RegimeRule,
    classify_long_regime,
    classify_short_regime,
)
from edgeguard.governance.router import EngineRouter, route
from edgeguard.governance.schemas import (
    Direction,
    DirectionalBias,
    EngineTarget,
    FinalDecision,
    GateEntry,
    GovernanceDecision,
    GovernanceResult,
    LiquiditySession,
    LongGateId,
    LongRegime,
    MarketContext,
    RegimeClassification,
    RouterDecision,
    SequencingCluster,
    ShortGateId,
    ShortRegime,
    TradeOutcome,
    TradeProposal,
    TradeRecord,
    VolatilityPhase,
)

__all__ = [
    'GovernanceEngine',
    'GovernanceVerdict',
    'LongGovernanceEngine',
    'ShortGovernanceEngine',
    'ConfigManager',
    'DegradationThresholds',
    'EngineConfig',
    'GovernanceConfig',
    'StopGeometryConfig',
    'AnalysisSnapshot',
    'CacheMonitor',
    'ContextProvider',
    'InMemoryMarketData',
    'InMemoryPriceFeed',
    'MarketDataProvider',
    'PriceFeed',
    'PriceQuote',
    'LONG_CLASSIFIER',
    'SHORT_CLASSIFIER',
    'RegimeClassifier',
    'RegimeRule',
    'classify_long_regime',
    'classify_short_regime',
    'EngineRouter',
    'route',
    'Direction',
    'DirectionalBias',
    'EngineTarget',
    'FinalDecision',
    'GateEntry',
    'GovernanceDecision',
    'GovernanceResult',
    'LiquiditySession',
    'LongGateId',
    'LongRegime',
    'MarketContext',
    'RegimeClassification',
    'RouterDecision',
    'SequencingCluster',
    'ShortGateId',
    'ShortRegime',
    'TradeOutcome',
    'TradeProposal',
    'TradeRecord',
    'VolatilityPhase',
]
