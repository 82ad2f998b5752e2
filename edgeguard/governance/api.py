"""
Governance REST API

FastAPI interface for the governance engine: proposal evaluation, routing,
decision log, analytics, rolling health, shadow promotion, alerts and config.
"""

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import uvicorn
import logging

from .config import ConfigManager
from .context import AnalysisSnapshot, InMemoryMarketData, InMemoryPriceFeed
from .engine import GovernanceEngine
from .schemas import Direction, DirectionalBias, LiquiditySession, TradeProposal, TradeRecord
from ..alerts import AlertConfig, AlertKind
from ..audit.stores import create_shadow_store
from ..monitoring.shadow_validation import BaselineMetrics, ShadowMetrics

LOG = logging.getLogger(__name__)


# ========================================
# REQUEST/RESPONSE SCHEMAS
# ========================================

class TradeRecordModel(BaseModel):
    """Closed trade from the trade-history collaborator"""
    symbol: str
    timestamp_ms: int = Field(..., ge=0)
    pnl_percent: float
    outcome: Optional[str] = Field(None, description="win, loss, breakeven or avoided")
    direction: str = "long"
    session: Optional[str] = None
    capture_ratio: float = 0.0
    duration_minutes: float = Field(0.0, ge=0.0)
    friction_cost: float = 0.0
    mae: float = 0.0
    mfe: float = 0.0
    agent_id: Optional[str] = None


class EvaluateRequest(BaseModel):
    """Trade proposal from an agent"""
    symbol: str = Field(..., description="Symbol in any form (EUR/USD, EUR_USD, EURUSD)")
    direction: str = Field(..., description="long or short")
    agent_id: str
    timeframe: str = "1h"
    directional_bias: Optional[str] = Field(None, description="LONG, SHORT or NEUTRAL")
    directional_confidence: float = Field(0.0, ge=0.0, le=100.0)
    trade_history: Optional[List[TradeRecordModel]] = None
    annex: Dict[str, Any] = Field(default_factory=dict)


class RouteRequest(BaseModel):
    symbol: str
    direction: str
    agent_id: str
    session: Optional[str] = None


class RollingHealthRequest(BaseModel):
    trades: Optional[List[TradeRecordModel]] = None


class BaselineModel(BaseModel):
    expectancy: float
    drawdown_density: float = Field(..., ge=0.0)
    avg_friction: float = Field(..., ge=0.0)


class ShadowEvaluateRequest(BaseModel):
    """Accumulated shadow metrics for one candidate configuration"""
    trade_count: int = Field(..., ge=0)
    expectancy: float
    gross_profit: float = Field(..., ge=0.0)
    gross_loss: float = Field(..., ge=0.0)
    win_rate: float = Field(0.0, ge=0.0, le=1.0)
    drawdown_density: float = Field(0.0, ge=0.0)
    avg_friction: float = Field(0.0, ge=0.0)
    execution_quality_score: float = Field(0.0, ge=0.0, le=100.0)
    baseline: Optional[BaselineModel] = None
    min_trades: Optional[int] = Field(None, ge=1)


class QuoteUpdateRequest(BaseModel):
    symbol: str
    bid: float = Field(..., gt=0.0)
    ask: float = Field(..., gt=0.0)


class AnalysisUpdateRequest(BaseModel):
    symbol: str
    bias_1d: Optional[str] = None
    bias_4h: Optional[str] = None
    bias_1h: Optional[str] = None
    efficiency_15m: float = 0.0
    alignment_score: Optional[float] = Field(None, ge=0.0, le=100.0)
    atr_1h: float = Field(0.0, ge=0.0)
    atr_4h: Optional[float] = Field(None, ge=0.0)
    directional_bias: Optional[str] = None
    available: bool = True


# ========================================
# API INITIALIZATION
# ========================================

app = FastAPI(
    title="EdgeGuard Governance API",
    description="Risk governance and decision gating for long/short trade proposals",
    version="1.0.0",
)

# Global engine instance
engine: Optional[GovernanceEngine] = None


def get_engine() -> GovernanceEngine:
    """Get engine instance"""
    if engine is None:
        raise HTTPException(status_code=503, detail="Governance engine not initialized")
    return engine


def set_engine(instance: Optional[GovernanceEngine]):
    global engine
    engine = instance


def build_engine(
    config_path: Optional[str] = None,
    shadow_store: str = "memory",
    redis_url: Optional[str] = None,
    slack_webhook: Optional[str] = None,
) -> GovernanceEngine:
    """Engine backed by in-memory collaborators fed through /market endpoints"""
    return GovernanceEngine(
        market_data=InMemoryMarketData(),
        price_feed=InMemoryPriceFeed(),
        config_manager=ConfigManager(path=config_path),
        alert_config=AlertConfig(slack_webhook=slack_webhook),
        shadow_store=create_shadow_store(shadow_store, redis_url=redis_url),
    )


def _parse_trade(model: TradeRecordModel) -> TradeRecord:
    try:
        return TradeRecord.from_dict(model.model_dump(exclude_none=True))
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid trade record: {e}")


def _parse_trades(models: Optional[List[TradeRecordModel]]) -> Optional[List[TradeRecord]]:
    if models is None:
        return None
    return [_parse_trade(m) for m in models]


def _parse_enum(enum_cls, value: Optional[str], field_name: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise HTTPException(status_code=400, detail=f"Invalid {field_name} '{value}'. Must be one of: {allowed}")


# ========================================
# EVALUATION
# ========================================

@app.post("/evaluate")
async def evaluate(request: EvaluateRequest):
    """
    Evaluate a trade proposal.

    Routes the proposal, derives market context, classifies the regime,
    scores, gates and logs it. Always answers with a decision.
    """
    gov = get_engine()
    proposal = TradeProposal(
        symbol=request.symbol,
        direction=_parse_enum(Direction, request.direction, "direction"),
        agent_id=request.agent_id,
        timeframe=request.timeframe,
        directional_bias=_parse_enum(DirectionalBias, request.directional_bias, "directional_bias"),
        directional_confidence=request.directional_confidence,
        annex=request.annex,
    )
    verdict = gov.evaluate(proposal, _parse_trades(request.trade_history))
    return verdict.to_dict()


@app.post("/route")
async def route(request: RouteRequest):
    gov = get_engine()
    decision = gov.route(
        _parse_enum(Direction, request.direction, "direction"),
        request.symbol,
        request.agent_id,
        session=_parse_enum(LiquiditySession, request.session, "session"),
    )
    return decision.to_dict()


# ========================================
# DECISION LOG
# ========================================

@app.get("/decisions")
async def get_decisions(limit: int = 50):
    gov = get_engine()
    entries = gov.decision_logger.get_recent(limit)
    return {'count': len(entries), 'decisions': [e.to_dict() for e in entries]}


@app.get("/decisions/{symbol}")
async def get_decisions_for_symbol(symbol: str):
    """Symbol accepts any form, e.g. EURUSD or EUR_USD"""
    gov = get_engine()
    entries = gov.decision_logger.get_by_symbol(symbol)
    return {'count': len(entries), 'decisions': [e.to_dict() for e in entries]}


# ========================================
# ANALYTICS
# ========================================

@app.get("/analytics/pass_rate")
async def get_pass_rate(time_range_ms: Optional[int] = None):
    return get_engine().analytics.compute_pass_stats(time_range_ms).to_dict()


@app.get("/analytics/gates")
async def get_gate_frequency(time_range_ms: Optional[int] = None, top_n: int = 10):
    freqs = get_engine().analytics.compute_gate_frequency(time_range_ms, top_n)
    return {'gates': [vars(f) for f in freqs]}


@app.get("/analytics/neutral_rate")
async def get_neutral_rate(time_range_ms: Optional[int] = None):
    return vars(get_engine().analytics.compute_neutral_rate(time_range_ms))


@app.get("/analytics/deciles")
async def get_deciles(time_range_ms: Optional[int] = None):
    """Composite-vs-outcome deciles against trades recorded via POST /trades"""
    gov = get_engine()
    return gov.analytics.compute_composite_deciles(gov.get_trade_history(), time_range_ms).to_dict()


@app.get("/analytics/availability")
async def get_availability(time_range_ms: Optional[int] = None):
    return vars(get_engine().analytics.compute_data_availability(time_range_ms))


@app.get("/analytics/summary")
async def get_summary():
    return get_engine().analytics.compute_summary()


# ========================================
# TRADES, HEALTH & SHADOW
# ========================================

@app.post("/trades")
async def record_trades(trades: List[TradeRecordModel]):
    gov = get_engine()
    for trade in _parse_trades(trades):
        gov.record_trade(trade)
    return {'recorded': len(trades), 'total': len(gov.get_trade_history())}


@app.post("/health/rolling")
async def rolling_health(request: RollingHealthRequest):
    """Rolling-window health over the supplied trades (or the recorded ones)"""
    gov = get_engine()
    return gov.compute_rolling_health(_parse_trades(request.trades)).to_dict()


@app.post("/shadow/evaluate")
async def shadow_evaluate(request: ShadowEvaluateRequest):
    gov = get_engine()
    metrics = ShadowMetrics(
        trade_count=request.trade_count,
        expectancy=request.expectancy,
        gross_profit=request.gross_profit,
        gross_loss=request.gross_loss,
        win_rate=request.win_rate,
        drawdown_density=request.drawdown_density,
        avg_friction=request.avg_friction,
        execution_quality_score=request.execution_quality_score,
    )
    baseline = BaselineMetrics(**request.baseline.model_dump()) if request.baseline else None
    return gov.evaluate_shadow(metrics, baseline, request.min_trades).to_dict()


# ========================================
# MARKET DATA (in-memory collaborators)
# ========================================

@app.post("/market/quote")
async def update_quote(request: QuoteUpdateRequest):
    gov = get_engine()
    feed = gov.context_provider.price_feed
    if not isinstance(feed, InMemoryPriceFeed):
        raise HTTPException(status_code=400, detail="Price feed does not accept pushed quotes")
    if request.ask < request.bid:
        raise HTTPException(status_code=400, detail="ask must be >= bid")
    feed.update_quote(request.symbol, request.bid, request.ask, gov.clock.now_ms())
    return {'status': 'ok', 'symbol': request.symbol}


@app.post("/market/analysis")
async def update_analysis(request: AnalysisUpdateRequest):
    gov = get_engine()
    source = gov.context_provider.market_data
    if not isinstance(source, InMemoryMarketData):
        raise HTTPException(status_code=400, detail="Market data source does not accept pushed analysis")
    data = request.model_dump()
    data['directional_bias'] = _parse_enum(DirectionalBias, request.directional_bias, "directional_bias")
    source.set_analysis(AnalysisSnapshot(**data))
    return {'status': 'ok', 'symbol': request.symbol}


# ========================================
# MONITORING
# ========================================

@app.get("/alerts")
async def get_alerts(kind: Optional[str] = None, within_ms: Optional[int] = None, limit: int = 100):
    gov = get_engine()
    alerts = gov.alerts.get_alerts(_parse_enum(AlertKind, kind, "kind"), within_ms)[-limit:]
    return {
        'count': len(alerts),
        'counts_by_kind': gov.alerts.get_alert_counts(),
        'alerts': [a.to_dict() for a in alerts],
    }


@app.get("/cache/stats")
async def get_cache_stats():
    return get_engine().context_provider.monitor.get_stats()


@app.get("/config")
async def get_config():
    gov = get_engine()
    return {'config_hash': gov.config.get_config_hash(), 'config': gov.config.to_dict()}


@app.get("/health")
async def get_health():
    gov = get_engine()
    status = gov.get_health_status()
    status['status'] = 'healthy' if gov.decision_logger.is_shadow_persistence_healthy() else 'degraded'
    status['timestamp'] = datetime.now(timezone.utc).isoformat()
    return status


# ========================================
# LIFECYCLE EVENTS
# ========================================

@app.on_event("startup")
async def startup_event():
    if engine is None:
        LOG.warning("Governance API started without an engine; endpoints answer 503")
        return
    engine.start()
    LOG.info(f"Governance engine ready (config {engine.config.get_config_hash()})")


@app.on_event("shutdown")
async def shutdown_event():
    LOG.info("Governance API shutting down...")
    if engine is not None:
        engine.shutdown()


# ========================================
# MAIN ENTRY POINT
# ========================================

def run_api(host: str = "0.0.0.0", port: int = 8010, instance: Optional[GovernanceEngine] = None):
    """
    Run the governance API server.

    Args:
        host: Host address
        port: Port number (default 8010)
        instance: Engine to serve (built with defaults if not provided)
    """
    set_engine(instance or build_engine())
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_api()
