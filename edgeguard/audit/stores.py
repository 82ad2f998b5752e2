"""
Audit Stores

Durable sinks behind the decision logger:

- ShadowTradeStore: shadow-mode evaluations keyed by a synthetic signal id.
  Writes are best-effort; failures raise ShadowPersistenceError and are
  handled by the logger's background worker.
- DecisionLogStore: append-only archive of decision log entries, queryable
  by symbol and recency.

Each comes in memory, JSON-lines file and Redis flavours.
"""

from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional
import json
import logging
import threading

import redis

from ..errors import ShadowPersistenceError
from ..symbols import to_display_symbol

LOG = logging.getLogger(__name__)


# ========================================
# SHADOW TRADE STORES
# ========================================

class ShadowTradeStore:
    """Base shadow-trade store"""

    def save(self, signal_id: str, record: Dict):
        raise NotImplementedError

    def get(self, signal_id: str) -> Optional[Dict]:
        raise NotImplementedError

    def list_all(self) -> List[Dict]:
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class InMemoryShadowTradeStore(ShadowTradeStore):

    def __init__(self):
        self._records: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def save(self, signal_id: str, record: Dict):
        with self._lock:
            self._records[signal_id] = dict(record)

    def get(self, signal_id: str) -> Optional[Dict]:
        with self._lock:
            return self._records.get(signal_id)

    def list_all(self) -> List[Dict]:
        with self._lock:
            return list(self._records.values())

    def clear(self):
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileShadowTradeStore(ShadowTradeStore):
    """One JSON object per line: {"signal_id": ..., "record": {...}}"""

    def __init__(self, path: str = "data/shadow_trades.jsonl"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def save(self, signal_id: str, record: Dict):
        line = json.dumps({'signal_id': signal_id, 'record': record}, default=str)
        try:
            with self._lock:
                with open(self.path, 'a') as f:
                    f.write(line + "\n")
        except OSError as e:
            raise ShadowPersistenceError(f"Shadow write to {self.path} failed: {e}") from e

    def _read(self) -> Dict[str, Dict]:
        records: Dict[str, Dict] = {}
        if not self.path.exists():
            return records
        with self._lock:
            with open(self.path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    item = json.loads(line)
                    records[item['signal_id']] = item['record']
        return records

    def get(self, signal_id: str) -> Optional[Dict]:
        return self._read().get(signal_id)

    def list_all(self) -> List[Dict]:
        return list(self._read().values())

    def clear(self):
        with self._lock:
            if self.path.exists():
                self.path.unlink()


class RedisShadowTradeStore(ShadowTradeStore):
    """Redis hash keyed by signal id"""

    def __init__(self, redis_url: Optional[str] = None, key: str = "edgeguard:shadow_trades", client=None):
        self.client = client or redis.from_url(redis_url or "redis://localhost:6379/0")
        self.key = key

    def save(self, signal_id: str, record: Dict):
        try:
            self.client.hset(self.key, signal_id, json.dumps(record, default=str))
        except redis.RedisError as e:
            raise ShadowPersistenceError(f"Redis shadow write failed: {e}") from e

    def get(self, signal_id: str) -> Optional[Dict]:
        data = self.client.hget(self.key, signal_id)
        return json.loads(data) if data else None

    def list_all(self) -> List[Dict]:
        return [json.loads(v) for v in self.client.hvals(self.key)]

    def clear(self):
        self.client.delete(self.key)


def create_shadow_store(kind: str = "memory", path: Optional[str] = None,
                        redis_url: Optional[str] = None) -> ShadowTradeStore:
    """Build a shadow store from EDGEGUARD_SHADOW_STORE-style settings"""
    if kind == "memory":
        return InMemoryShadowTradeStore()
    if kind == "file":
        return FileShadowTradeStore(path or "data/shadow_trades.jsonl")
    if kind == "redis":
        return RedisShadowTradeStore(redis_url)
    raise ValueError(f"Invalid shadow store: {kind}. Must be 'memory', 'file' or 'redis'")


# ========================================
# DECISION LOG STORES
# ========================================

class DecisionLogStore:
    """Append-only decision archive"""

    def append(self, entry: Dict):
        raise NotImplementedError

    def query(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        """Entries oldest first, optionally by symbol, optionally the last `limit`"""
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


def _filter(entries: List[Dict], symbol: Optional[str], limit: Optional[int]) -> List[Dict]:
    if symbol is not None:
        display = to_display_symbol(symbol)
        entries = [e for e in entries if e.get('symbol') == display]
    if limit is not None:
        entries = entries[-limit:] if limit > 0 else []
    return entries


class InMemoryDecisionLogStore(DecisionLogStore):

    def __init__(self, max_entries: int = 10000):
        self._entries: Deque[Dict] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, entry: Dict):
        with self._lock:
            self._entries.append(dict(entry))

    def query(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        with self._lock:
            entries = list(self._entries)
        return _filter(entries, symbol, limit)

    def clear(self):
        with self._lock:
            self._entries.clear()


class FileDecisionLogStore(DecisionLogStore):
    """JSON-lines archive"""

    def __init__(self, path: str = "data/decision_log.jsonl"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, entry: Dict):
        with self._lock:
            with open(self.path, 'a') as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def query(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        entries: List[Dict] = []
        if self.path.exists():
            with self._lock:
                with open(self.path, 'r') as f:
                    entries = [json.loads(line) for line in f if line.strip()]
        return _filter(entries, symbol, limit)

    def clear(self):
        with self._lock:
            if self.path.exists():
                self.path.unlink()


class RedisDecisionLogStore(DecisionLogStore):
    """Capped Redis list (RPUSH + LTRIM)"""

    def __init__(self, redis_url: Optional[str] = None, key: str = "edgeguard:decision_log",
                 max_entries: int = 10000, client=None):
        self.client = client or redis.from_url(redis_url or "redis://localhost:6379/0")
        self.key = key
        self.max_entries = max_entries

    def append(self, entry: Dict):
        pipe = self.client.pipeline()
        pipe.rpush(self.key, json.dumps(entry, default=str))
        pipe.ltrim(self.key, -self.max_entries, -1)
        pipe.execute()

    def query(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        entries = [json.loads(v) for v in self.client.lrange(self.key, 0, -1)]
        return _filter(entries, symbol, limit)

    def clear(self):
        self.client.delete(self.key)
