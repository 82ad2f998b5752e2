"""
Governance Decision Logger

Every governance evaluation produces one immutable DecisionLogEntry that is
appended to a bounded ring buffer (oldest evicted past max_entries).

Shadow-mode entries are additionally persisted to a ShadowTradeStore on a
background executor. Persistence is fire-and-forget: a failed write flips
the shadow-persistence health flag and raises an alert, and the next
successful write flips it back. Nothing here ever blocks or fails the
decision path.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple
import logging
import threading
import uuid

from ..alerts import AlertKind, AlertSink
from ..clock import Clock, SystemClock
from ..governance.schemas import (
    DirectionalBias,
    Direction,
    FinalDecision,
    GateEntry,
    GovernanceDecision,
    LongGateId,
    ShortGateId,
)
from ..symbols import to_display_symbol, to_raw_symbol
from .stores import DecisionLogStore, ShadowTradeStore

LOG = logging.getLogger(__name__)


def parse_gate_id(value: str):
    try:
        return LongGateId(value)
    except ValueError:
        return ShortGateId(value)


@dataclass(frozen=True)
class DecisionLogEntry:
    """One governance evaluation, as audited"""

    timestamp_ms: int
    symbol: str
    timeframe: str
    direction: Direction
    shadow: bool

    # Governance
    governance_decision: GovernanceDecision
    regime: str
    multipliers: Dict[str, float]
    composite: float
    gates: Tuple[GateEntry, ...]

    # Final
    final_decision: FinalDecision
    final_reason: str

    # Directional provider
    directional_bias: Optional[DirectionalBias] = None
    directional_confidence: float = 0.0

    market_snapshot: Dict[str, Any] = field(default_factory=dict)
    annex: Optional[Dict[str, Any]] = None  # discovery-risk / edge-explain
    agent_id: Optional[str] = None
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def gate_ids(self) -> List[str]:
        return [g.id.value for g in self.gates]

    @property
    def signal_id(self) -> str:
        """Synthetic key used by the shadow-trade store"""
        return f"shadow-{to_raw_symbol(self.symbol)}-{self.timestamp_ms}-{self.entry_id[:8]}"

    def to_dict(self) -> dict:
        return {
            'entry_id': self.entry_id,
            'timestamp_ms': self.timestamp_ms,
            'symbol': self.symbol,
            'timeframe': self.timeframe,
            'direction': self.direction.value,
            'shadow': self.shadow,
            'agent_id': self.agent_id,
            'governance': {
                'decision': self.governance_decision.value,
                'regime': self.regime,
                'multipliers': dict(self.multipliers),
                'composite': float(self.composite),
                'gates': [g.to_dict() for g in self.gates],
            },
            'directional': {
                'bias': self.directional_bias.value if self.directional_bias else None,
                'confidence': float(self.directional_confidence),
            },
            'final_decision': {
                'decision': self.final_decision.value,
                'reason': self.final_reason,
            },
            'market_snapshot': dict(self.market_snapshot),
            'annex': self.annex,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DecisionLogEntry":
        gov = data['governance']
        directional = data.get('directional') or {}
        final = data['final_decision']
        bias = directional.get('bias')
        return cls(
            entry_id=data.get('entry_id') or str(uuid.uuid4()),
            timestamp_ms=int(data['timestamp_ms']),
            symbol=data['symbol'],
            timeframe=data.get('timeframe', '1h'),
            direction=Direction(data.get('direction', 'long')),
            shadow=bool(data.get('shadow', False)),
            agent_id=data.get('agent_id'),
            governance_decision=GovernanceDecision(gov['decision']),
            regime=gov.get('regime', ''),
            multipliers=dict(gov.get('multipliers', {})),
            composite=float(gov.get('composite', 0.0)),
            gates=tuple(GateEntry(parse_gate_id(g['id']), g['message']) for g in gov.get('gates', [])),
            directional_bias=DirectionalBias(bias) if bias else None,
            directional_confidence=float(directional.get('confidence', 0.0)),
            final_decision=FinalDecision(final['decision']),
            final_reason=final.get('reason', ''),
            market_snapshot=dict(data.get('market_snapshot') or {}),
            annex=data.get('annex'),
        )


class DecisionLogger:
    """
    Thread-safe bounded decision log with shadow persistence.

    Owned by a GovernanceEngine; tests create their own instance or call
    clear() between cases.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        shadow_store: Optional[ShadowTradeStore] = None,
        archive: Optional[DecisionLogStore] = None,
        alerts: Optional[AlertSink] = None,
        clock: Optional[Clock] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.max_entries = max_entries
        self.shadow_store = shadow_store
        self.archive = archive
        self.alerts = alerts
        self.clock = clock or SystemClock()

        self._entries: Deque[DecisionLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="DecisionLogWriter")
        self._pending: List[Future] = []
        self._closed = False

        self._shadow_healthy = True
        self._shadow_failures = 0
        self._shadow_writes = 0

    # ========================================
    # WRITE
    # ========================================

    def log(self, entry: DecisionLogEntry):
        with self._lock:
            self._entries.append(entry)

        LOG.info(
            f"[GOV] {entry.symbol} | {entry.governance_decision.value} -> {entry.final_decision.value} | "
            f"composite={entry.composite:.3f} | gates=[{','.join(entry.gate_ids)}] | shadow={entry.shadow}"
        )

        if entry.shadow and self.shadow_store is not None:
            self._submit(self._persist_shadow, entry)
        if self.archive is not None:
            self._submit(self._archive, entry)

    def _submit(self, fn, entry: DecisionLogEntry):
        with self._lock:
            if self._closed:
                LOG.warning(f"Decision logger is shut down, skipping background write for {entry.entry_id}")
                return
            future = self._executor.submit(fn, entry)
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _persist_shadow(self, entry: DecisionLogEntry):
        try:
            self.shadow_store.save(entry.signal_id, entry.to_dict())
        except Exception as e:
            with self._lock:
                self._shadow_healthy = False
                self._shadow_failures += 1
            LOG.error(f"Shadow persistence failed for {entry.signal_id}: {e}")
            if self.alerts is not None:
                self.alerts.emit(AlertKind.SHADOW_PERSISTENCE_FAILURE, {
                    'signal_id': entry.signal_id,
                    'symbol': entry.symbol,
                    'error': str(e),
                })
            return

        with self._lock:
            recovered = not self._shadow_healthy
            self._shadow_healthy = True
            self._shadow_writes += 1
        if recovered:
            LOG.info("Shadow persistence recovered")

    def _archive(self, entry: DecisionLogEntry):
        try:
            self.archive.append(entry.to_dict())
        except Exception as e:
            LOG.error(f"Decision archive write failed for {entry.entry_id}: {e}")

    def flush(self, timeout: Optional[float] = 5.0):
        """Wait for queued background writes"""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self):
        """Stop background writes. Entries logged afterwards stay in memory only."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.flush()
        self._executor.shutdown(wait=True)

    # ========================================
    # QUERY
    # ========================================

    def get_all(self) -> List[DecisionLogEntry]:
        with self._lock:
            return list(self._entries)

    def get_by_symbol(self, symbol: str) -> List[DecisionLogEntry]:
        display = to_display_symbol(symbol)
        with self._lock:
            return [e for e in self._entries if e.symbol == display]

    def get_recent(self, count: int = 50) -> List[DecisionLogEntry]:
        if count <= 0:
            return []
        with self._lock:
            return list(self._entries)[-count:]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ========================================
    # HEALTH
    # ========================================

    def is_shadow_persistence_healthy(self) -> bool:
        with self._lock:
            return self._shadow_healthy

    def get_persistence_stats(self) -> dict:
        with self._lock:
            return {
                'healthy': self._shadow_healthy,
                'writes': self._shadow_writes,
                'failures': self._shadow_failures,
            }
