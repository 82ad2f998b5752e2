"""
Governance Configuration

Serializable policy for the router, both directional engines, the context
provider caches and the health monitor.

Configs are loaded at startup and may be hot-reloaded from a JSON file by
ConfigManager. The decision path only ever reads a snapshot; it never
mutates one.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional
from pathlib import Path
import hashlib
import json
import logging
import threading

from .schemas import LiquiditySession
from ..symbols import to_canonical_symbol

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class StopGeometryConfig:
    """Short-side stop geometry"""

    initial_stop_atr_multiplier: float = 1.5   # k x ATR(5)
    initial_stop_spread_multiplier: float = 3.0  # stop must clear friction
    swing_high_buffer_pips: float = 2.0
    no_shrink_candle_count: int = 5  # phase A length
    trail_activation_mfe_multiple: float = 1.2  # phase B trigger, in R
    trail_structure_bars: int = 3
    trail_buffer_pips: float = 1.5

    def validate(self) -> bool:
        if self.initial_stop_atr_multiplier <= 0:
            raise ValueError(f"initial_stop_atr_multiplier must be > 0, got {self.initial_stop_atr_multiplier}")
        if self.initial_stop_spread_multiplier <= 0:
            raise ValueError(f"initial_stop_spread_multiplier must be > 0, got {self.initial_stop_spread_multiplier}")
        if self.swing_high_buffer_pips < 0 or self.trail_buffer_pips < 0:
            raise ValueError("pip buffers must be >= 0")
        if self.no_shrink_candle_count < 0:
            raise ValueError(f"no_shrink_candle_count must be >= 0, got {self.no_shrink_candle_count}")
        if self.trail_activation_mfe_multiple <= 0:
            raise ValueError(f"trail_activation_mfe_multiple must be > 0, got {self.trail_activation_mfe_multiple}")
        if self.trail_structure_bars < 1:
            raise ValueError(f"trail_structure_bars must be >= 1, got {self.trail_structure_bars}")
        return True

    def merged(self, overrides: Optional[Dict] = None) -> "StopGeometryConfig":
        if not overrides:
            return self
        return replace(self, **overrides)

    def to_dict(self) -> dict:
        return {
            'initial_stop_atr_multiplier': float(self.initial_stop_atr_multiplier),
            'initial_stop_spread_multiplier': float(self.initial_stop_spread_multiplier),
            'swing_high_buffer_pips': float(self.swing_high_buffer_pips),
            'no_shrink_candle_count': int(self.no_shrink_candle_count),
            'trail_activation_mfe_multiple': float(self.trail_activation_mfe_multiple),
            'trail_structure_bars': int(self.trail_structure_bars),
            'trail_buffer_pips': float(self.trail_buffer_pips),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "StopGeometryConfig":
        return cls().merged(data or {})


def _default_short_pairs() -> List[str]:
    return ['USD_JPY', 'GBP_USD', 'EUR_USD', 'EUR_JPY', 'GBP_JPY']


def _default_short_sessions() -> Dict[str, List[LiquiditySession]]:
    return {
        pair: [LiquiditySession.LONDON_OPEN, LiquiditySession.NY_OVERLAP]
        for pair in _default_short_pairs()
    }


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine routing and short-side governance policy.

    A pair absent from allowed_sessions, or mapped to an empty list, has no
    session restriction.
    """

    # ========================================
    # ROUTING ALLOW-LISTS
    # ========================================

    enabled_pairs: List[str] = field(default_factory=_default_short_pairs)
    allowed_sessions: Dict[str, List[LiquiditySession]] = field(default_factory=_default_short_sessions)
    allowed_agents: List[str] = field(default_factory=lambda: [
        'forex-macro', 'range-navigator', 'volatility-architect',
    ])

    # ========================================
    # STOP GEOMETRY
    # ========================================

    default_stop_config: StopGeometryConfig = field(default_factory=StopGeometryConfig)
    stop_configs: Dict[str, Dict] = field(default_factory=dict)  # per-pair partial overrides

    # ========================================
    # SHORT GATES & THRESHOLDS
    # ========================================

    friction_gate_k: float = 4.0  # stricter than the long side's 3.0
    spread_spike_multiplier: float = 1.5
    slippage_cluster_window_minutes: int = 5
    min_composite_threshold: float = 0.75
    shadow_min_trades: int = 30

    # ========================================
    # GLOBAL FLAGS
    # ========================================

    enabled: bool = False  # short engine off until explicitly enabled
    shadow_only: bool = True
    long_only_override: bool = False  # blocks every short regardless of the above

    def validate(self) -> bool:
        """Raises ValueError if invalid"""
        if self.friction_gate_k <= 0:
            raise ValueError(f"friction_gate_k must be > 0, got {self.friction_gate_k}")
        if self.spread_spike_multiplier < 1.0:
            raise ValueError(f"spread_spike_multiplier must be >= 1.0, got {self.spread_spike_multiplier}")
        if self.slippage_cluster_window_minutes <= 0:
            raise ValueError(
                f"slippage_cluster_window_minutes must be > 0, got {self.slippage_cluster_window_minutes}"
            )
        if not (0 < self.min_composite_threshold <= 5.0):
            raise ValueError(f"min_composite_threshold must be in (0, 5], got {self.min_composite_threshold}")
        if self.shadow_min_trades < 1:
            raise ValueError(f"shadow_min_trades must be >= 1, got {self.shadow_min_trades}")
        for pair in self.allowed_sessions:
            if pair not in self.enabled_pairs:
                LOG.warning(f"allowed_sessions lists {pair} which is not short-enabled")
        self.default_stop_config.validate()
        for pair in self.stop_configs:
            self.stop_config_for(pair).validate()
        return True

    def is_pair_enabled(self, symbol: str) -> bool:
        return to_canonical_symbol(symbol) in self.enabled_pairs

    def sessions_for(self, symbol: str) -> Optional[List[LiquiditySession]]:
        """Allowed sessions for a pair, or None when unrestricted"""
        sessions = self.allowed_sessions.get(to_canonical_symbol(symbol))
        return list(sessions) if sessions else None

    def stop_config_for(self, symbol: str) -> StopGeometryConfig:
        return self.default_stop_config.merged(self.stop_configs.get(to_canonical_symbol(symbol)))

    def to_dict(self) -> dict:
        return {
            'enabled_pairs': list(self.enabled_pairs),
            'allowed_sessions': {
                pair: [LiquiditySession(s).value for s in sessions]
                for pair, sessions in self.allowed_sessions.items()
            },
            'allowed_agents': list(self.allowed_agents),
            'default_stop_config': self.default_stop_config.to_dict(),
            'stop_configs': {pair: dict(cfg) for pair, cfg in self.stop_configs.items()},
            'friction_gate_k': float(self.friction_gate_k),
            'spread_spike_multiplier': float(self.spread_spike_multiplier),
            'slippage_cluster_window_minutes': int(self.slippage_cluster_window_minutes),
            'min_composite_threshold': float(self.min_composite_threshold),
            'shadow_min_trades': int(self.shadow_min_trades),
            'enabled': bool(self.enabled),
            'shadow_only': bool(self.shadow_only),
            'long_only_override': bool(self.long_only_override),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "EngineConfig":
        data = dict(data)
        kwargs = {}
        if 'enabled_pairs' in data:
            kwargs['enabled_pairs'] = [to_canonical_symbol(p) for p in data.pop('enabled_pairs')]
        if 'allowed_sessions' in data:
            kwargs['allowed_sessions'] = {
                to_canonical_symbol(pair): [LiquiditySession(s) for s in sessions]
                for pair, sessions in data.pop('allowed_sessions').items()
            }
        if 'default_stop_config' in data:
            kwargs['default_stop_config'] = StopGeometryConfig.from_dict(data.pop('default_stop_config'))
        if 'stop_configs' in data:
            kwargs['stop_configs'] = {
                to_canonical_symbol(pair): dict(cfg) for pair, cfg in data.pop('stop_configs').items()
            }
        kwargs.update(data)
        return cls(**kwargs)

    def get_config_hash(self) -> str:
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class DegradationThresholds:
    """Rolling-window health thresholds (percent units for loss/expectancy/drawdown)"""

    min_win_rate: float = 0.60
    min_capture_ratio: float = 0.50
    max_avg_loss: float = 0.10
    min_payout_asymmetry: float = 3.0
    max_avg_duration: float = 20.0  # minutes
    min_expectancy: float = 0.01
    max_drawdown: float = 3.0

    # Relative gap beyond which a breach is critical
    critical_gap: float = 0.25

    def to_dict(self) -> dict:
        return {
            'min_win_rate': float(self.min_win_rate),
            'min_capture_ratio': float(self.min_capture_ratio),
            'max_avg_loss': float(self.max_avg_loss),
            'min_payout_asymmetry': float(self.min_payout_asymmetry),
            'max_avg_duration': float(self.max_avg_duration),
            'min_expectancy': float(self.min_expectancy),
            'max_drawdown': float(self.max_drawdown),
            'critical_gap': float(self.critical_gap),
        }


def _default_overtrading_caps() -> Dict[LiquiditySession, int]:
    return {
        LiquiditySession.LONDON_OPEN: 12,
        LiquiditySession.NY_OVERLAP: 10,
        LiquiditySession.ASIAN: 6,
        LiquiditySession.LATE_NY: 4,
    }


@dataclass(frozen=True)
class GovernanceConfig:
    """
    Top-level governance configuration.

    Groups the context-provider cache lifetimes, long-side thresholds,
    audit/analytics thresholds and the nested EngineConfig.
    """

    # ========================================
    # CONTEXT PROVIDER
    # ========================================

    slow_ttl_ms: int = 5000
    fast_ttl_ms: int = 500
    spread_window_ms: int = 60_000
    slippage_estimate: float = 0.00002
    overtrading_window_minutes: int = 30
    overtrading_caps: Dict[LiquiditySession, int] = field(default_factory=_default_overtrading_caps)
    upstream_timeout_seconds: float = 2.0

    # ========================================
    # LONG ENGINE
    # ========================================

    long_friction_k: float = 3.0
    long_min_composite_threshold: float = 0.60

    # ========================================
    # AUDIT & ANALYTICS
    # ========================================

    decision_log_max_entries: int = 1000
    alert_history_size: int = 500
    neutral_rate_threshold: float = 0.55
    data_availability_threshold: float = 0.98
    decile_match_window_ms: int = 60_000
    min_decile_samples: int = 10

    # Raise RouterIntegrityError instead of only logging + alerting
    strict_integrity: bool = False

    degradation: DegradationThresholds = field(default_factory=DegradationThresholds)
    engine: EngineConfig = field(default_factory=EngineConfig)

    def validate(self) -> bool:
        """Raises ValueError if invalid"""
        if self.fast_ttl_ms <= 0 or self.slow_ttl_ms <= 0:
            raise ValueError("cache TTLs must be > 0")
        if self.fast_ttl_ms > self.slow_ttl_ms:
            raise ValueError(
                f"fast_ttl_ms ({self.fast_ttl_ms}) must be <= slow_ttl_ms ({self.slow_ttl_ms})"
            )
        if self.spread_window_ms <= 0:
            raise ValueError(f"spread_window_ms must be > 0, got {self.spread_window_ms}")
        if self.slippage_estimate < 0:
            raise ValueError(f"slippage_estimate must be >= 0, got {self.slippage_estimate}")
        if self.upstream_timeout_seconds <= 0:
            raise ValueError(f"upstream_timeout_seconds must be > 0, got {self.upstream_timeout_seconds}")
        if self.long_friction_k <= 0:
            raise ValueError(f"long_friction_k must be > 0, got {self.long_friction_k}")
        if self.long_friction_k >= self.engine.friction_gate_k:
            LOG.warning(
                f"long_friction_k ({self.long_friction_k}) is not below the short "
                f"friction_gate_k ({self.engine.friction_gate_k})"
            )
        if not (0 < self.long_min_composite_threshold <= 5.0):
            raise ValueError(
                f"long_min_composite_threshold must be in (0, 5], got {self.long_min_composite_threshold}"
            )
        if self.decision_log_max_entries < 1 or self.alert_history_size < 1:
            raise ValueError("ring buffer sizes must be >= 1")
        if not (0.0 <= self.neutral_rate_threshold <= 1.0):
            raise ValueError(f"neutral_rate_threshold must be in [0, 1], got {self.neutral_rate_threshold}")
        if not (0.0 <= self.data_availability_threshold <= 1.0):
            raise ValueError(
                f"data_availability_threshold must be in [0, 1], got {self.data_availability_threshold}"
            )
        if self.decile_match_window_ms <= 0:
            raise ValueError(f"decile_match_window_ms must be > 0, got {self.decile_match_window_ms}")
        if self.min_decile_samples < 10:
            raise ValueError(f"min_decile_samples must be >= 10, got {self.min_decile_samples}")
        if any(cap < 1 for cap in self.overtrading_caps.values()):
            raise ValueError("overtrading caps must be >= 1")
        self.engine.validate()
        return True

    def to_dict(self) -> dict:
        return {
            'slow_ttl_ms': int(self.slow_ttl_ms),
            'fast_ttl_ms': int(self.fast_ttl_ms),
            'spread_window_ms': int(self.spread_window_ms),
            'slippage_estimate': float(self.slippage_estimate),
            'overtrading_window_minutes': int(self.overtrading_window_minutes),
            'overtrading_caps': {s.value: int(c) for s, c in self.overtrading_caps.items()},
            'upstream_timeout_seconds': float(self.upstream_timeout_seconds),
            'long_friction_k': float(self.long_friction_k),
            'long_min_composite_threshold': float(self.long_min_composite_threshold),
            'decision_log_max_entries': int(self.decision_log_max_entries),
            'alert_history_size': int(self.alert_history_size),
            'neutral_rate_threshold': float(self.neutral_rate_threshold),
            'data_availability_threshold': float(self.data_availability_threshold),
            'decile_match_window_ms': int(self.decile_match_window_ms),
            'min_decile_samples': int(self.min_decile_samples),
            'strict_integrity': bool(self.strict_integrity),
            'degradation': self.degradation.to_dict(),
            'engine': self.engine.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "GovernanceConfig":
        data = dict(data)
        kwargs = {}
        if 'overtrading_caps' in data:
            kwargs['overtrading_caps'] = {
                LiquiditySession(s): int(c) for s, c in data.pop('overtrading_caps').items()
            }
        if 'degradation' in data:
            kwargs['degradation'] = DegradationThresholds(**data.pop('degradation'))
        if 'engine' in data:
            kwargs['engine'] = EngineConfig.from_dict(data.pop('engine'))
        kwargs.update(data)
        return cls(**kwargs)

    def get_config_hash(self) -> str:
        """SHA256 of the canonical JSON form"""
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]


class ConfigManager:
    """
    Owns the active GovernanceConfig and hot-reloads it from disk.

    A reload that fails to parse or validate keeps the previous snapshot.
    Listeners are called with the new snapshot after a successful reload.
    start() polls the file on a daemon thread; check_reload() can also be
    called directly.
    """

    def __init__(self, path: Optional[str] = None, config: Optional[GovernanceConfig] = None,
                 poll_interval_seconds: float = 2.0):
        self.path = Path(path) if path else None
        self.poll_interval_seconds = poll_interval_seconds
        self._lock = threading.RLock()
        self._listeners = []
        self._mtime: Optional[float] = None
        self._config = config or GovernanceConfig()
        self._stop_event = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None

        if self.path is not None and self.path.exists():
            self._config = self._read()
            self._mtime = self.path.stat().st_mtime
        self._config.validate()

    @property
    def current(self) -> GovernanceConfig:
        with self._lock:
            return self._config

    def add_listener(self, callback):
        self._listeners.append(callback)

    def _read(self) -> GovernanceConfig:
        with open(self.path, 'r') as f:
            data = json.load(f)
        config = GovernanceConfig.from_dict(data)
        config.validate()
        return config

    def check_reload(self) -> bool:
        """Reload if the backing file changed. Returns True when a new config was applied."""
        if self.path is None or not self.path.exists():
            return False

        mtime = self.path.stat().st_mtime
        if self._mtime is not None and mtime == self._mtime:
            return False

        try:
            new_config = self._read()
        except (ValueError, TypeError, KeyError, OSError) as e:
            LOG.error(f"Config reload from {self.path} rejected, keeping previous config: {e}")
            self._mtime = mtime
            return False

        with self._lock:
            old_hash = self._config.get_config_hash()
            self._config = new_config
            self._mtime = mtime

        LOG.info(f"Config reloaded: {old_hash} -> {new_config.get_config_hash()}")
        for callback in list(self._listeners):
            callback(new_config)
        return True

    # ========================================
    # FILE WATCHING
    # ========================================

    @property
    def watching(self) -> bool:
        return self._watch_thread is not None and self._watch_thread.is_alive()

    def start(self):
        """Start polling the backing file for changes (no-op without a path)"""
        if self.path is None or self.watching:
            return
        self._stop_event.clear()
        self._watch_thread = threading.Thread(
            target=self._watch_loop,
            name="ConfigWatcher",
            daemon=True
        )
        self._watch_thread.start()
        LOG.info(f"Watching {self.path} every {self.poll_interval_seconds}s")

    def stop(self):
        if self._watch_thread is None:
            return
        self._stop_event.set()
        self._watch_thread.join(timeout=5.0)
        self._watch_thread = None
        LOG.info("Config watcher stopped")

    def _watch_loop(self):
        while not self._stop_event.wait(self.poll_interval_seconds):
            try:
                self.check_reload()
            except Exception:
                LOG.exception(f"Config reload listener failed for {self.path}")

    def update(self, config: GovernanceConfig):
        """Swap in a config built in code (validated first)"""
        config.validate()
        with self._lock:
            self._config = config
        for callback in list(self._listeners):
            callback(config)

    def save(self, path: Optional[str] = None):
        """Atomic write of the current config as JSON"""
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No config path configured")
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_suffix('.tmp')
        with open(temp_path, 'w') as f:
            json.dump(self.current.to_dict(), f, indent=2, sort_keys=True)
        temp_path.replace(target)
        if self.path is not None and target == self.path:
            self._mtime = target.stat().st_mtime
