from __future__ import annotations

from fastapi.testclient import TestClient

from tradeflow.backend.core.config import Settings
from tradeflow.backend.core.system import TradingSystem
from tradeflow.backend.interaction.paper_broker import PaperBrokerGateway
from tradeflow.backend.main import create_app
from tradeflow.backend.tests.stubs import StubResolver

HEDGE = {"type": "hedge", "symbol": "LULU", "strategy": "collar"}


def _client(resolver: StubResolver | None = None) -> TestClient:
    settings = Settings(CACHE_SWEEP_INTERVAL_SECONDS=0, JOURNAL_ENABLED=False, RETRY_BACKOFF_MS=0)
    system = TradingSystem(settings, resolver=resolver or StubResolver(data=HEDGE), broker=PaperBrokerGateway())
    return TestClient(create_app(system=system, warm_cache=False))


def test_dry_run_trade():
    with _client() as client:
        response = client.post("/api/v1/trade", json={"input": "Buy $100 of AAPL", "dry_run": True})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["intent"]["method"] == "deterministic"
    assert body["intent"]["intent"]["symbol"] == "AAPL"
    assert body["execution"] is None


def test_executed_trade_shows_in_account():
    with _client() as client:
        trade = client.post("/api/v1/trade", json={"input": "buy 2 shares of NVDA", "request_id": "req-api-1"})
        account = client.get("/api/v1/account")
    assert trade.json()["request_id"] == "req-api-1"
    assert trade.json()["execution"]["status"] == "filled"
    assert account.json()["positions"][0]["symbol"] == "NVDA"


def test_rejected_trade_is_a_normal_response():
    with _client() as client:
        response = client.post("/api/v1/trade", json={"input": "sell all TSLA"})
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("Trade validation failed")


def test_batch_trade():
    commands = [{"input": "Buy $100 of AAPL", "dry_run": True}, {"input": "hedge my LULU shares"}]
    with _client() as client:
        response = client.post("/api/v1/trade/batch", json={"commands": commands})
    assert response.status_code == 200
    assert [r["success"] for r in response.json()] == [True, True]


def test_parse_endpoint_uses_the_model_for_hedges():
    with _client() as client:
        response = client.post("/api/v1/parse", json={"text": "hedge my LULU position"})
    assert response.status_code == 200
    body = response.json()
    assert body["method"] == "model"
    assert body["plugin_type"] == "hedge"
    assert body["intent"]["strategy"] == "collar"


def test_parse_failure_maps_to_error_payload():
    with _client(StubResolver(error=RuntimeError("down"))) as client:
        response = client.post("/api/v1/parse", json={"text": "hedge my LULU shares"})
    assert response.status_code == 422
    assert response.json()["error"] == "resolution_failed"


def test_classify_endpoint():
    with _client() as client:
        response = client.post("/api/v1/classify", json={"text": "Buy $100 of AAPL"})
    body = response.json()
    assert body["normalized"] == "buy 100 dollars of AAPL"
    assert body["classification"]["strategy"] == "deterministic"


def test_empty_input_is_rejected():
    with _client() as client:
        response = client.post("/api/v1/trade", json={"input": ""})
    assert response.status_code == 422


def test_stats_endpoint():
    with _client() as client:
        client.post("/api/v1/trade", json={"input": "Buy $100 of AAPL", "dry_run": True})
        stats = client.get("/api/v1/stats").json()
    assert stats["orchestrator"]["total_requests"] == 1
    assert stats["pipeline"]["resolutions"]["deterministic"] == 1
    assert "distribution" in stats["cost_report"]


def test_health_endpoint():
    with _client() as client:
        assert client.get("/health").status_code == 200
    with _client(StubResolver(healthy=False)) as client:
        response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["services"] == {"resolver": False, "broker": True}
