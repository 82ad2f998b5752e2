"""
Audit

Append-only decision log with fire-and-forget shadow persistence, the
store implementations behind it, and analytics derived on demand.
"""

from edgeguard.audit.decision_log import DecisionLogEntry, DecisionLogger
from edgeguard.audit.analytics import DecisionAnalytics
from edgeguard.audit.stores import (
    DecisionLogStore,
    FileDecisionLogStore,
    FileShadowTradeStore,
    InMemoryDecisionLogStore,
    InMemoryShadowTradeStore,
    RedisDecisionLogStore,
    RedisShadowTradeStore,
    ShadowTradeStore,
    create_shadow_store,
)

__all__ = [
    'DecisionLogEntry',
    'DecisionLogger',
    'DecisionAnalytics',
    'DecisionLogStore',
    'FileDecisionLogStore',
    'FileShadowTradeStore',
    'InMemoryDecisionLogStore',
    'InMemoryShadowTradeStore',
    'RedisDecisionLogStore',
    'RedisShadowTradeStore',
    'ShadowTradeStore',
    'create_shadow_store',
]
