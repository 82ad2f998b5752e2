"""
Tests for the governance REST API.

Run: pytest tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from edgeguard.governance import api
from edgeguard.governance.engine import GovernanceEngine


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def engine(market_data, price_feed, clock):
    instance = GovernanceEngine(market_data, price_feed, clock=clock)
    api.set_engine(instance)
    yield instance
    api.set_engine(None)
    instance.shutdown()


@pytest.fixture
def client(engine):
    return TestClient(api.app)


# ============================================================================
# EVALUATION & ROUTING
# ============================================================================

class TestEvaluateEndpoint:

    def test_long_approved(self, client):
        response = client.post("/evaluate", json={
            'symbol': "EURUSD", 'direction': "long", 'agent_id': "forex-macro",
        })
        assert response.status_code == 200
        data = response.json()
        assert data['final_decision'] == "BUY"
        assert data['symbol'] == "EUR/USD"
        assert data['entry_id'] is not None

    def test_short_blocked(self, client):
        data = client.post("/evaluate", json={
            'symbol': "EUR/USD", 'direction': "short", 'agent_id': "forex-macro",
        }).json()
        assert data['final_decision'] == "SKIP"
        assert data['route']['engine'] == "BLOCKED"

    def test_invalid_direction(self, client):
        response = client.post("/evaluate", json={
            'symbol': "EUR/USD", 'direction': "sideways", 'agent_id': "forex-macro",
        })
        assert response.status_code == 400
        assert "Invalid direction" in response.json()['detail']

    def test_missing_field(self, client):
        assert client.post("/evaluate", json={'symbol': "EUR/USD"}).status_code == 422

    def test_inline_trade_history(self, client, clock):
        history = [
            {'symbol': "EUR/USD", 'timestamp_ms': clock.now_ms() - i * 60_000, 'pnl_percent': -0.4}
            for i in range(1, 5)
        ]
        response = client.post("/evaluate", json={
            'symbol': "EUR/USD", 'direction': "long", 'agent_id': "forex-macro", 'trade_history': history,
        })
        assert response.status_code == 200

    def test_invalid_trade_record(self, client):
        response = client.post("/evaluate", json={
            'symbol': "EUR/USD", 'direction': "long", 'agent_id': "forex-macro",
            'trade_history': [{'symbol': "EUR/USD", 'timestamp_ms': 0, 'pnl_percent': 1.0, 'outcome': "maybe"}],
        })
        assert response.status_code == 400

    def test_route(self, client):
        data = client.post("/route", json={
            'symbol': "EUR_USD", 'direction': "long", 'agent_id': "forex-macro", 'session': "asian",
        }).json()
        assert data['engine'] == "LONG_ENGINE"

    def test_route_invalid_session(self, client):
        response = client.post("/route", json={
            'symbol': "EUR_USD", 'direction': "short", 'agent_id': "forex-macro", 'session': "tokyo",
        })
        assert response.status_code == 400


# ============================================================================
# LOG & ANALYTICS
# ============================================================================

class TestLogAndAnalytics:

    @pytest.fixture(autouse=True)
    def _evaluations(self, client):
        for direction in ("long", "long", "short"):
            client.post("/evaluate", json={'symbol': "EUR/USD", 'direction': direction, 'agent_id': "forex-macro"})

    def test_decisions(self, client):
        data = client.get("/decisions", params={'limit': 1}).json()
        assert data['count'] == 1
        assert client.get("/decisions/EURUSD").json()['count'] == 2
        assert client.get("/decisions/GBPUSD").json()['count'] == 0

    def test_pass_rate(self, client):
        data = client.get("/analytics/pass_rate").json()
        assert data['total_evaluations'] == 2
        assert data['by_session']['ny-overlap']['total'] == 2

    def test_other_analytics(self, client):
        assert client.get("/analytics/gates").status_code == 200
        assert client.get("/analytics/neutral_rate").json()['total_approved'] == 2
        assert client.get("/analytics/availability").json()['price_availability_rate'] == 1.0
        assert client.get("/analytics/deciles").json()['sufficient'] is False
        assert client.get("/analytics/summary").json()['total_evaluations'] == 2


# ============================================================================
# TRADES, HEALTH, SHADOW, MARKET DATA
# ============================================================================

class TestMonitoringEndpoints:

    def test_record_trades_and_health(self, client, clock):
        trades = [
            {'symbol': "EUR/USD", 'timestamp_ms': clock.now_ms() - i * 60_000, 'pnl_percent': 0.5,
             'capture_ratio': 0.8, 'duration_minutes': 10}
            for i in range(5)
        ]
        data = client.post("/trades", json=trades).json()
        assert data == {'recorded': 5, 'total': 5}

        health = client.post("/health/rolling", json={}).json()
        assert health['windows']['50']['trade_count'] == 5

    def test_shadow_evaluate(self, client):
        data = client.post("/shadow/evaluate", json={
            'trade_count': 30, 'expectancy': 0.8, 'gross_profit': 20, 'gross_loss': 10,
            'win_rate': 0.55, 'drawdown_density': 0.25, 'avg_friction': 0.0019,
            'execution_quality_score': 85,
        }).json()
        assert data['status'] == "promoted"

    def test_shadow_evaluate_custom_baseline(self, client):
        data = client.post("/shadow/evaluate", json={
            'trade_count': 30, 'expectancy': 0.8, 'gross_profit': 20, 'gross_loss': 10,
            'drawdown_density': 0.25, 'avg_friction': 0.0019, 'execution_quality_score': 85,
            'baseline': {'expectancy': 0.5, 'drawdown_density': 0.1, 'avg_friction': 0.002},
        }).json()
        assert data['status'] == "failed"
        assert "Drawdown density" in data['failure_report']

    def test_market_updates(self, client, engine):
        assert client.post("/market/quote", json={'symbol': "GBPUSD", 'bid': 1.25, 'ask': 1.2502}).status_code == 200
        assert engine.context_provider.price_feed.get_quote("GBP/USD").bid == 1.25
        assert client.post("/market/quote", json={'symbol': "GBPUSD", 'bid': 1.25, 'ask': 1.24}).status_code == 400

        response = client.post("/market/analysis", json={
            'symbol': "GBP/USD", 'bias_1d': "bearish", 'atr_1h': 0.0015, 'directional_bias': "SHORT",
        })
        assert response.status_code == 200
        snapshot = engine.context_provider.market_data.get_analysis("GBP/USD", "1h")
        assert snapshot.directional_bias.value == "SHORT"

    def test_alerts(self, client, engine):
        engine.alerts.emit("neutral_rate_spike", {'neutral_rate': 0.7})
        data = client.get("/alerts", params={'kind': "neutral_rate_spike"}).json()
        assert data['count'] == 1
        assert client.get("/alerts", params={'kind': "nope"}).status_code == 400

    def test_config_cache_health(self, client, engine):
        config = client.get("/config").json()
        assert config['config_hash'] == engine.config.get_config_hash()
        assert config['config']['engine']['enabled'] is False

        assert client.get("/cache/stats").json()['slow_misses'] == 0
        health = client.get("/health").json()
        assert health['status'] == "healthy"
        assert health['router_integrity_violations'] == 0


class TestWithoutEngine:

    def test_503(self):
        api.set_engine(None)
        client = TestClient(api.app)
        assert client.get("/health").status_code == 503
        assert client.post("/evaluate", json={
            'symbol': "EUR/USD", 'direction': "long", 'agent_id': "forex-macro",
        }).status_code == 503
