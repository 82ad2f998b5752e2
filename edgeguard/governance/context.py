"""
Governance Context Provider

Produces the MarketContext a proposal is judged against. Computation is split
by how fast the inputs move:

    Slow context (per symbol + timeframe, TTL ~5s)
        session, multi-timeframe alignment, volatility phase, trade
        sequencing, pair expectancy, overtrading governor
    Fast context (per symbol, TTL ~500ms)
        spread stability, friction ratio, liquidity-shock probability

Upstream collaborators (analysis provider, price feed) are called with a
bounded timeout. A missing, failing or slow collaborator turns into an
availability flag on the context; it never yields a synthetic value.

Caches are owned by the provider instance (no module globals) and use
last-write-wins replace-on-miss. Two concurrent misses for the same key both
recompute, which is harmless because recomputation is pure.
"""

from dataclasses import dataclass, replace
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import threading
import time

import numpy as np

from .config import GovernanceConfig
from .schemas import (
    DirectionalBias,
    LiquiditySession,
    MarketContext,
    SequencingCluster,
    TradeRecord,
    VolatilityPhase,
)
from .validation import verify_symbol_mapping
from ..clock import Clock, SystemClock
from ..errors import UpstreamUnavailableError
from ..symbols import is_major_pair, to_display_symbol

LOG = logging.getLogger(__name__)


# ========================================
# COLLABORATOR INTERFACES
# ========================================

@dataclass(frozen=True)
class AnalysisSnapshot:
    """Multi-timeframe read from the analysis collaborator"""
    symbol: str
    bias_1d: Optional[str] = None
    bias_4h: Optional[str] = None
    bias_1h: Optional[str] = None
    efficiency_15m: float = 0.0
    alignment_score: Optional[float] = None  # provider-computed score, if any
    atr_1h: float = 0.0
    atr_4h: Optional[float] = None
    directional_bias: Optional[DirectionalBias] = None
    available: bool = True


@dataclass(frozen=True)
class PriceQuote:
    bid: float
    ask: float
    timestamp_ms: int = 0

    @property
    def spread(self) -> float:
        return self.ask - self.bid


class MarketDataProvider:
    """Read-only multi-timeframe analysis source"""

    def get_analysis(self, symbol: str, timeframe: str) -> AnalysisSnapshot:
        raise NotImplementedError


class PriceFeed:
    """Current bid/ask per display symbol"""

    def get_quote(self, display_symbol: str) -> Optional[PriceQuote]:
        raise NotImplementedError

    def known_symbols(self) -> Iterable[str]:
        return []


class InMemoryMarketData(MarketDataProvider):
    """Analysis snapshots pushed in by an upstream job (or a test)"""

    def __init__(self):
        self._snapshots: Dict[str, AnalysisSnapshot] = {}
        self._lock = threading.Lock()

    def set_analysis(self, snapshot: AnalysisSnapshot):
        with self._lock:
            self._snapshots[to_display_symbol(snapshot.symbol)] = snapshot

    def get_analysis(self, symbol: str, timeframe: str) -> AnalysisSnapshot:
        with self._lock:
            snapshot = self._snapshots.get(to_display_symbol(symbol))
        if snapshot is None:
            raise UpstreamUnavailableError("analysis", symbol, "no snapshot")
        return snapshot


class InMemoryPriceFeed(PriceFeed):
    """Latest quotes pushed in by a streaming client (or a test)"""

    def __init__(self):
        self._quotes: Dict[str, PriceQuote] = {}
        self._lock = threading.Lock()

    def update_quote(self, symbol: str, bid: float, ask: float, timestamp_ms: int = 0):
        with self._lock:
            self._quotes[to_display_symbol(symbol)] = PriceQuote(bid=bid, ask=ask, timestamp_ms=timestamp_ms)

    def remove(self, symbol: str):
        with self._lock:
            self._quotes.pop(to_display_symbol(symbol), None)

    def get_quote(self, display_symbol: str) -> Optional[PriceQuote]:
        with self._lock:
            return self._quotes.get(display_symbol)

    def known_symbols(self) -> Iterable[str]:
        with self._lock:
            return list(self._quotes.keys())


# ========================================
# PURE DERIVATIONS
# ========================================

SESSION_AGGRESSIVENESS: Dict[LiquiditySession, float] = {
    LiquiditySession.ASIAN: 35.0,
    LiquiditySession.LONDON_OPEN: 88.0,
    LiquiditySession.NY_OVERLAP: 78.0,
    LiquiditySession.LATE_NY: 22.0,
}

SEQUENCING_ADJUSTMENTS: Dict[SequencingCluster, Tuple[float, float]] = {
    # cluster: (confidence adjustment, density adjustment %)
    SequencingCluster.PROFIT_MOMENTUM: (10.0, 15.0),
    SequencingCluster.LOSS_CLUSTER: (-15.0, -25.0),
    SequencingCluster.MIXED: (-5.0, -10.0),
    SequencingCluster.NEUTRAL: (0.0, 0.0),
}

EDGE_DECAY_RATIO = 0.85
DEFAULT_SPREAD_RANK = 60.0
MAX_PHASE_CONFIDENCE = 95.0


def detect_session(utc_hour: int) -> LiquiditySession:
    """UTC hour -> liquidity session"""
    if 1 <= utc_hour < 7:
        return LiquiditySession.ASIAN
    if 7 <= utc_hour < 12:
        return LiquiditySession.LONDON_OPEN
    if 12 <= utc_hour < 17:
        return LiquiditySession.NY_OVERLAP
    return LiquiditySession.LATE_NY


def classify_volatility_phase(atr_current: float, atr_average: float) -> Tuple[VolatilityPhase, float]:
    """
    Bucket current/average ATR into a volatility phase.

    Confidence grows with distance into the bucket and is capped at 95.

    Args:
        atr_current: ATR on the working timeframe
        atr_average: Reference ATR (higher timeframe)

    Returns:
        (phase, confidence 0-95)
    """
    ratio = atr_current / atr_average if atr_average > 0 else 1.0

    if ratio < 0.65:
        phase, confidence = VolatilityPhase.COMPRESSION, 70 + (0.65 - ratio) * 80
    elif ratio < 0.95:
        phase, confidence = VolatilityPhase.COMPRESSION, 55 + ratio * 15
    elif ratio < 1.3:
        phase, confidence = VolatilityPhase.IGNITION, 60 + (ratio - 0.95) * 80
    elif ratio < 1.8:
        phase, confidence = VolatilityPhase.EXPANSION, 70 + (ratio - 1.3) * 50
    else:
        phase, confidence = VolatilityPhase.EXHAUSTION, 65 + min((ratio - 1.8) * 30, 25)

    return phase, min(confidence, MAX_PHASE_CONFIDENCE)


@dataclass(frozen=True)
class SequencingState:
    cluster: SequencingCluster
    confidence_adj: float
    density_adj: float
    edge_decaying: bool
    edge_decay_rate: float


def compute_sequencing(trades_desc: Sequence[TradeRecord]) -> SequencingState:
    """
    Cluster the last five outcomes and detect edge decay.

    Args:
        trades_desc: Executed trades, most recent first
    """
    if len(trades_desc) < 3:
        return SequencingState(SequencingCluster.NEUTRAL, 0.0, 0.0, False, 0.0)

    last5 = trades_desc[:5]
    wins = sum(1 for t in last5 if t.is_win)
    losses = len(last5) - wins

    if wins >= 4:
        cluster = SequencingCluster.PROFIT_MOMENTUM
    elif losses >= 4:
        cluster = SequencingCluster.LOSS_CLUSTER
    elif losses >= 3:
        cluster = SequencingCluster.MIXED
    else:
        cluster = SequencingCluster.NEUTRAL

    recent10 = trades_desc[:10]
    older10 = trades_desc[10:20]
    edge_decaying = False
    edge_decay_rate = 0.0

    if len(recent10) >= 5 and len(older10) >= 5:
        recent_wr = sum(1 for t in recent10 if t.is_win) / len(recent10)
        older_wr = sum(1 for t in older10 if t.is_win) / len(older10)
        if older_wr > 0 and recent_wr < older_wr * EDGE_DECAY_RATIO:
            edge_decaying = True
            edge_decay_rate = (older_wr - recent_wr) / older_wr * 100

    confidence_adj, density_adj = SEQUENCING_ADJUSTMENTS[cluster]
    return SequencingState(cluster, confidence_adj, density_adj, edge_decaying, edge_decay_rate)


def compute_pair_expectancy(display_symbol: str, trades: Sequence[TradeRecord]) -> Tuple[float, bool]:
    """Pair expectancy score (0-100) and whether the pair is favored"""
    pair_trades = [t for t in trades if to_display_symbol(t.symbol) == display_symbol]
    if len(pair_trades) < 3:
        return 55.0, False

    win_rate = sum(1 for t in pair_trades if t.is_win) / len(pair_trades)
    avg_pnl = float(np.mean([t.pnl_percent for t in pair_trades]))
    expectancy = float(np.clip(50 + win_rate * 30 + min(avg_pnl * 2, 20), 0, 100))
    return expectancy, expectancy > 65


def is_overtrading(
    trades: Sequence[TradeRecord],
    now_ms: int,
    session: LiquiditySession,
    caps: Dict[LiquiditySession, int],
    window_minutes: int = 30,
) -> bool:
    window_ms = window_minutes * 60_000
    in_window = sum(1 for t in trades if now_ms - t.timestamp_ms < window_ms)
    return in_window >= caps.get(session, 8)


def compute_alignment(analysis: AnalysisSnapshot) -> Tuple[bool, bool, bool, float]:
    """(htf_supports, mtf_confirms, ltf_clean, alignment_score)"""
    htf_supports = analysis.bias_4h is not None and analysis.bias_4h == analysis.bias_1d
    mtf_confirms = analysis.bias_1h is not None and analysis.bias_1h == analysis.bias_4h
    ltf_clean = analysis.efficiency_15m > 0.4

    if analysis.alignment_score is not None:
        score = float(analysis.alignment_score)
    else:
        score = (40.0 if htf_supports else 0.0) + (35.0 if mtf_confirms else 0.0) + (25.0 if ltf_clean else 0.0)
    return htf_supports, mtf_confirms, ltf_clean, score


def candles_since_alignment(bias_series: Sequence[Optional[str]], target: str) -> int:
    """
    Number of trailing candles whose own bias matched ``target``.

    Each entry is the bias computed from indicators as they stood at that
    candle's close (oldest first), so the count reflects when alignment
    actually began rather than re-reading history with today's values.
    """
    count = 0
    for bias in reversed(bias_series):
        if bias != target:
            break
        count += 1
    return count


def spread_stability_rank(spreads: Sequence[float]) -> float:
    """100 - 200 x coefficient of variation, clamped to [0, 100]"""
    if len(spreads) < 2:
        return DEFAULT_SPREAD_RANK
    values = np.asarray(spreads, dtype=float)
    mean = values.mean()
    cv = values.std() / mean if mean > 0 else 0.0
    return float(np.clip(100 - cv * 200, 0, 100))


def compute_friction(atr: float, spread: float, slippage: float) -> Tuple[float, float]:
    """(total_friction, friction_ratio)"""
    total = spread + slippage
    ratio = atr / total if total > 0 else 10.0
    return total, ratio


def liquidity_shock_probability(rank: float, phase: VolatilityPhase, session: LiquiditySession) -> float:
    base = 100 - rank
    if phase == VolatilityPhase.EXHAUSTION:
        base += 15
    if phase == VolatilityPhase.COMPRESSION:
        base += 5
    if session == LiquiditySession.LATE_NY:
        base += 10
    if session == LiquiditySession.ASIAN:
        base += 5
    return float(np.clip(base, 0, 100))


def sort_trade_history(trades: Optional[Iterable[TradeRecord]]) -> List[TradeRecord]:
    """Most-recent-first ordering required by every recency computation"""
    return sorted(trades or [], key=lambda t: t.timestamp_ms, reverse=True)


# ========================================
# CONTEXT PARTS
# ========================================

@dataclass(frozen=True)
class SlowContext:
    symbol: str
    timeframe: str
    session: LiquiditySession
    session_aggressiveness: float
    htf_supports: bool
    mtf_confirms: bool
    ltf_clean: bool
    alignment_score: float
    volatility_phase: VolatilityPhase
    phase_confidence: float
    atr_value: float
    atr_avg: float
    sequencing: SequencingState
    pair_expectancy: float
    pair_favored: bool
    is_major_pair: bool
    overtrading_throttled: bool
    analysis_available: bool
    directional_bias: Optional[DirectionalBias]
    symbol_mapped: bool
    computed_at_ms: int


@dataclass(frozen=True)
class FastContext:
    symbol: str
    spread: float
    bid: float
    ask: float
    spread_stability_rank: float
    slippage_estimate: float
    total_friction: float
    friction_ratio: float
    liquidity_shock_prob: float
    price_data_available: bool
    computed_at_ms: int


def rederive_fast_context(fast: FastContext, slow: SlowContext) -> FastContext:
    """Recompute the ATR and phase dependent fields of a cached quote read"""
    total, ratio = compute_friction(slow.atr_value, fast.spread, fast.slippage_estimate)
    return replace(
        fast,
        total_friction=total,
        friction_ratio=ratio,
        liquidity_shock_prob=liquidity_shock_probability(
            fast.spread_stability_rank, slow.volatility_phase, slow.session,
        ),
    )


# ========================================
# CACHE MONITOR
# ========================================

class CacheMonitor:
    """Hit/miss counters per tier and context retrieval latency"""

    def __init__(self, latency_window: int = 1000):
        self._lock = threading.Lock()
        self._hits: Dict[str, int] = defaultdict(int)
        self._misses: Dict[str, int] = defaultdict(int)
        self._latencies_ms: Deque[float] = deque(maxlen=latency_window)

    def record_hit(self, tier: str):
        with self._lock:
            self._hits[tier] += 1

    def record_miss(self, tier: str):
        with self._lock:
            self._misses[tier] += 1

    def record_retrieval(self, latency_ms: float):
        with self._lock:
            self._latencies_ms.append(latency_ms)

    def get_stats(self) -> dict:
        with self._lock:
            stats = {}
            for tier in ('slow', 'fast'):
                hits, misses = self._hits[tier], self._misses[tier]
                total = hits + misses
                stats[f'{tier}_hits'] = hits
                stats[f'{tier}_misses'] = misses
                stats[f'{tier}_hit_rate'] = hits / total if total > 0 else 0.0
            latencies = np.asarray(self._latencies_ms, dtype=float)
            stats['retrievals'] = int(latencies.size)
            stats['avg_retrieval_ms'] = float(latencies.mean()) if latencies.size else 0.0
            stats['p95_retrieval_ms'] = float(np.percentile(latencies, 95)) if latencies.size else 0.0
            return stats

    def reset(self):
        with self._lock:
            self._hits.clear()
            self._misses.clear()
            self._latencies_ms.clear()


class _TTLCache:
    """Last-write-wins TTL cache keyed by string"""

    def __init__(self):
        self._entries: Dict[str, Tuple[int, object]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, now_ms: int, ttl_ms: int):
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if now_ms - stored_at < ttl_ms:
            return value
        return None

    def put(self, key: str, value, now_ms: int):
        with self._lock:
            self._entries[key] = (now_ms, value)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ========================================
# PROVIDER
# ========================================

class ContextProvider:
    """
    Builds cached and uncached MarketContexts.

    Owns its slow/fast caches, spread history and cache monitor. Create one
    per engine; call reset() between test cases or tenants.
    """

    def __init__(
        self,
        market_data: MarketDataProvider,
        price_feed: PriceFeed,
        config: Optional[GovernanceConfig] = None,
        clock: Optional[Clock] = None,
        symbol_registry: Optional[Iterable[str]] = None,
        monitor: Optional[CacheMonitor] = None,
    ):
        self.market_data = market_data
        self.price_feed = price_feed
        self.config = config or GovernanceConfig()
        self.clock = clock or SystemClock()
        self.symbol_registry = set(to_display_symbol(s) for s in (symbol_registry or []))
        self.monitor = monitor or CacheMonitor()

        self._slow_cache = _TTLCache()
        self._fast_cache = _TTLCache()
        self._spread_history: Dict[str, Deque[Tuple[int, float]]] = defaultdict(deque)
        self._spread_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ContextUpstream")

    def update_config(self, config: GovernanceConfig):
        """Swap the config snapshot (cached parts expire naturally)"""
        self.config = config

    def reset(self):
        self._slow_cache.clear()
        self._fast_cache.clear()
        with self._spread_lock:
            self._spread_history.clear()
        self.monitor.reset()

    def shutdown(self):
        self._executor.shutdown(wait=False)

    # ----------------------------------------
    # Public API
    # ----------------------------------------

    def get_context(
        self,
        symbol: str,
        timeframe: str = "1h",
        trade_history: Optional[Iterable[TradeRecord]] = None,
    ) -> MarketContext:
        """Cached context: slow part per (symbol, timeframe), quote part per symbol"""
        start = time.perf_counter()
        trades = sort_trade_history(trade_history)
        slow = self.get_slow_context(symbol, timeframe, trades)
        fast = self.get_fast_context(symbol, slow)
        self.monitor.record_retrieval((time.perf_counter() - start) * 1000)
        return self.compose(slow, fast)

    def get_context_uncached(
        self,
        symbol: str,
        timeframe: str = "1h",
        trade_history: Optional[Iterable[TradeRecord]] = None,
    ) -> MarketContext:
        trades = sort_trade_history(trade_history)
        slow = self.compute_slow_context(symbol, timeframe, trades)
        fast = self.compute_fast_context(symbol, slow)
        return self.compose(slow, fast)

    def get_slow_context(self, symbol: str, timeframe: str, trades_desc: Sequence[TradeRecord]) -> SlowContext:
        display = to_display_symbol(symbol)
        key = f"{display}:{timeframe}"
        now = self.clock.now_ms()
        cached = self._slow_cache.get(key, now, self.config.slow_ttl_ms)
        if cached is not None:
            self.monitor.record_hit('slow')
            LOG.debug(f"Slow context cache hit: {key}")
            return cached
        self.monitor.record_miss('slow')
        slow = self.compute_slow_context(symbol, timeframe, trades_desc)
        self._slow_cache.put(key, slow, now)
        return slow

    def get_fast_context(self, symbol: str, slow: SlowContext) -> FastContext:
        display = to_display_symbol(symbol)
        now = self.clock.now_ms()
        cached = self._fast_cache.get(display, now, self.config.fast_ttl_ms)
        if cached is not None:
            self.monitor.record_hit('fast')
            LOG.debug(f"Fast context cache hit: {display}")
            # Quote fields are per symbol; friction and shock follow the caller's timeframe
            return rederive_fast_context(cached, slow)
        self.monitor.record_miss('fast')
        fast = self.compute_fast_context(symbol, slow)
        self._fast_cache.put(display, fast, now)
        return fast

    @staticmethod
    def compose(slow: SlowContext, fast: FastContext) -> MarketContext:
        return MarketContext(
            symbol=slow.symbol,
            timeframe=slow.timeframe,
            alignment_score=slow.alignment_score,
            htf_supports=slow.htf_supports,
            mtf_confirms=slow.mtf_confirms,
            ltf_clean=slow.ltf_clean,
            directional_bias=slow.directional_bias,
            volatility_phase=slow.volatility_phase,
            phase_confidence=slow.phase_confidence,
            atr_value=slow.atr_value,
            atr_avg=slow.atr_avg,
            session=slow.session,
            session_aggressiveness=slow.session_aggressiveness,
            sequencing_cluster=slow.sequencing.cluster,
            sequencing_confidence_adj=slow.sequencing.confidence_adj,
            sequencing_density_adj=slow.sequencing.density_adj,
            edge_decaying=slow.sequencing.edge_decaying,
            edge_decay_rate=slow.sequencing.edge_decay_rate,
            pair_expectancy=slow.pair_expectancy,
            pair_favored=slow.pair_favored,
            is_major_pair=slow.is_major_pair,
            overtrading_throttled=slow.overtrading_throttled,
            spread=fast.spread,
            bid=fast.bid,
            ask=fast.ask,
            slippage_estimate=fast.slippage_estimate,
            total_friction=fast.total_friction,
            friction_ratio=fast.friction_ratio,
            spread_stability_rank=fast.spread_stability_rank,
            liquidity_shock_prob=fast.liquidity_shock_prob,
            price_data_available=fast.price_data_available,
            analysis_available=slow.analysis_available,
            symbol_mapped=slow.symbol_mapped,
            slow_computed_at_ms=slow.computed_at_ms,
            fast_computed_at_ms=fast.computed_at_ms,
        )

    # ----------------------------------------
    # Computation
    # ----------------------------------------

    def compute_slow_context(self, symbol: str, timeframe: str, trades_desc: Sequence[TradeRecord]) -> SlowContext:
        display = to_display_symbol(symbol)
        now = self.clock.now_ms()
        executed = [t for t in trades_desc if t.executed]

        analysis = self._call_upstream("analysis", display, self.market_data.get_analysis, display, timeframe)
        if analysis is not None and analysis.available:
            htf, mtf, ltf, alignment = compute_alignment(analysis)
            atr_value = float(analysis.atr_1h)
            atr_avg = float(analysis.atr_4h) if analysis.atr_4h is not None else atr_value
            analysis_available = True
            bias = analysis.directional_bias
        else:
            htf = mtf = ltf = False
            alignment = atr_value = atr_avg = 0.0
            analysis_available = False
            bias = None
            LOG.warning(f"Analysis unavailable for {display}:{timeframe}")

        phase, phase_confidence = classify_volatility_phase(atr_value, atr_avg)
        session = detect_session(self.clock.utc_hour())
        sequencing = compute_sequencing(executed)
        pair_expectancy, pair_favored = compute_pair_expectancy(display, executed)
        overtrading = is_overtrading(
            executed, now, session,
            self.config.overtrading_caps, self.config.overtrading_window_minutes,
        )
        mapping = verify_symbol_mapping(symbol, self._known_price_symbols(), self.symbol_registry)

        return SlowContext(
            symbol=display,
            timeframe=timeframe,
            session=session,
            session_aggressiveness=SESSION_AGGRESSIVENESS[session],
            htf_supports=htf,
            mtf_confirms=mtf,
            ltf_clean=ltf,
            alignment_score=alignment,
            volatility_phase=phase,
            phase_confidence=phase_confidence,
            atr_value=atr_value,
            atr_avg=atr_avg,
            sequencing=sequencing,
            pair_expectancy=pair_expectancy,
            pair_favored=pair_favored,
            is_major_pair=is_major_pair(display),
            overtrading_throttled=overtrading,
            analysis_available=analysis_available,
            directional_bias=bias,
            symbol_mapped=mapping.valid,
            computed_at_ms=now,
        )

    def compute_fast_context(self, symbol: str, slow: SlowContext) -> FastContext:
        display = to_display_symbol(symbol)
        now = self.clock.now_ms()
        slippage = self.config.slippage_estimate

        quote = self._call_upstream("price", display, self.price_feed.get_quote, display)
        if quote is None:
            LOG.warning(f"Price data unavailable for {display}")
            total, ratio = compute_friction(slow.atr_value, 0.0, slippage)
            return FastContext(
                symbol=display,
                spread=0.0,
                bid=0.0,
                ask=0.0,
                spread_stability_rank=0.0,
                slippage_estimate=slippage,
                total_friction=total,
                friction_ratio=ratio,
                liquidity_shock_prob=liquidity_shock_probability(0.0, slow.volatility_phase, slow.session),
                price_data_available=False,
                computed_at_ms=now,
            )

        spread = quote.spread
        rank = spread_stability_rank(self._observe_spread(display, spread, now))
        total, ratio = compute_friction(slow.atr_value, spread, slippage)
        return FastContext(
            symbol=display,
            spread=spread,
            bid=quote.bid,
            ask=quote.ask,
            spread_stability_rank=rank,
            slippage_estimate=slippage,
            total_friction=total,
            friction_ratio=ratio,
            liquidity_shock_prob=liquidity_shock_probability(rank, slow.volatility_phase, slow.session),
            price_data_available=True,
            computed_at_ms=now,
        )

    def _observe_spread(self, display: str, spread: float, now_ms: int) -> List[float]:
        window = self.config.spread_window_ms
        with self._spread_lock:
            history = self._spread_history[display]
            history.append((now_ms, spread))
            while history and now_ms - history[0][0] >= window:
                history.popleft()
            return [s for _, s in history]

    def _known_price_symbols(self) -> List[str]:
        try:
            return list(self.price_feed.known_symbols())
        except Exception as e:
            LOG.warning(f"Price feed symbol listing failed: {e}")
            return []

    def _call_upstream(self, source: str, symbol: str, fn: Callable, *args):
        """Run a collaborator call with a bounded wait. None means unavailable."""
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.config.upstream_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            LOG.warning(f"{source} call for {symbol} exceeded {self.config.upstream_timeout_seconds}s")
            return None
        except UpstreamUnavailableError as e:
            LOG.warning(str(e))
            return None
        except Exception as e:
            LOG.error(f"{source} collaborator failed for {symbol}: {e}")
            return None
