from __future__ import annotations

import asyncio

import pytest

from tradeflow.backend.core.errors import PluginNotRegisteredError
from tradeflow.backend.engine.complexity_classifier import ComplexityClassifier
from tradeflow.backend.engine.intent_registry import IntentRegistry
from tradeflow.backend.engine.models import TradingOptions, TradingRequest
from tradeflow.backend.engine.orchestrator import (
    EXECUTING_TRADE,
    PARSING_INTENT,
    VALIDATING_TRADE,
    OrchestratorConfig,
    TradingOrchestrator,
)
from tradeflow.backend.engine.trade_journal import TradeJournal
from tradeflow.backend.interaction.plugins.trade_plugin import BasicTradePlugin
from tradeflow.backend.tests.stubs import BrokenCache, StubBroker, StubResolver, make_orchestrator, make_pipeline, make_registry

HEDGE = {"type": "hedge", "symbol": "LULU", "strategy": "collar"}


def _request(text: str, **options) -> TradingRequest:
    return TradingRequest(input=text, options=TradingOptions(**options))


class _CrashingTradePlugin(BasicTradePlugin):
    def validate(self, data: dict):
        if data.get("symbol") == "ZZZZ":
            raise RuntimeError("plugin crashed")
        return super().validate(data)


class _Collection:
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.docs: dict[str, dict] = {}
        self.fail = fail
        self.delay = delay

    async def update_one(self, query, update, upsert=False):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("mongo down")
        self.docs[query["request_id"]] = update["$set"]


def test_dry_run_validates_but_does_not_execute():
    broker = StubBroker()
    orchestrator, _ = make_orchestrator(StubResolver(), broker)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL", dry_run=True)))
    assert result.success
    assert result.validation.is_valid
    assert result.execution is None
    assert result.metadata.steps == [PARSING_INTENT, VALIDATING_TRADE]
    assert broker.execute_calls == 0
    assert orchestrator.stats()["dry_runs"] == 1


def test_full_request_executes_once():
    broker = StubBroker()
    orchestrator, sleep = make_orchestrator(StubResolver(), broker)
    result = asyncio.run(orchestrator.process_trading_request(_request("sell all TSLA")))
    assert result.success
    assert result.intent.intent.amount == -1
    assert result.execution.order_id == "stub-1"
    assert result.metadata.steps == [PARSING_INTENT, VALIDATING_TRADE, EXECUTING_TRADE]
    assert result.metadata.attempts == 1
    assert sleep.delays == []


def test_rejected_execution_is_retried_up_to_the_limit():
    broker = StubBroker(execute_success=False)
    orchestrator, sleep = make_orchestrator(StubResolver(), broker, execution_retries=2, retry_backoff_ms=100)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL")))
    assert not result.success
    assert broker.execute_calls == 3
    assert result.metadata.attempts == 3
    assert "after 3 attempts" in result.error
    assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]
    assert result.execution.status == "rejected"


def test_broker_exception_counts_as_failed_attempt():
    broker = StubBroker(execute_error=RuntimeError("connection reset"))
    orchestrator, _ = make_orchestrator(StubResolver(), broker, execution_retries=1)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL")))
    assert not result.success
    assert broker.execute_calls == 2
    assert "connection reset" in result.error


def test_zero_retries_means_single_attempt():
    broker = StubBroker(execute_success=False)
    orchestrator, _ = make_orchestrator(StubResolver(), broker, execution_retries=0)
    asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL")))
    assert broker.execute_calls == 1


def test_validation_failure_stops_before_execution():
    broker = StubBroker(valid=False, errors=["Insufficient buying power"])
    orchestrator, _ = make_orchestrator(StubResolver(), broker)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL")))
    assert not result.success
    assert result.error == "Trade validation failed: Insufficient buying power"
    assert broker.execute_calls == 0


def test_skip_validation_goes_straight_to_execution():
    broker = StubBroker()
    orchestrator, _ = make_orchestrator(StubResolver(), broker)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL", skip_validation=True)))
    assert result.success
    assert broker.validate_calls == 0
    assert result.metadata.steps == [PARSING_INTENT, EXECUTING_TRADE]


def test_parse_timeout_is_recorded():
    orchestrator, _ = make_orchestrator(StubResolver(data=HEDGE, delay=1.0), StubBroker())
    result = asyncio.run(orchestrator.process_trading_request(_request("hedge my LULU shares", timeout_ms=50)))
    assert not result.success
    assert result.metadata.timed_out_step == PARSING_INTENT
    assert orchestrator.stats()["timeouts"] == 1


def test_execution_timeout_is_recorded():
    broker = StubBroker(delay=1.0)
    orchestrator, _ = make_orchestrator(StubResolver(), broker, execution_retries=0, trade_execution_timeout_ms=20)
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL")))
    assert not result.success
    assert result.metadata.timed_out_step == EXECUTING_TRADE


def test_non_trade_intent_skips_the_broker():
    broker = StubBroker()
    orchestrator, _ = make_orchestrator(StubResolver(data=HEDGE), broker)
    result = asyncio.run(orchestrator.process_trading_request(_request("hedge my LULU shares")))
    assert result.success
    assert result.intent.intent.type == "hedge"
    assert result.metadata.steps == [PARSING_INTENT]
    assert broker.validate_calls == 0
    assert result.metadata.costs.resolver > 0


def test_resolution_failure_is_reported_in_result():
    orchestrator, _ = make_orchestrator(StubResolver(error=RuntimeError("quota exceeded")), StubBroker())
    result = asyncio.run(orchestrator.process_trading_request(_request("hedge my LULU shares")))
    assert not result.success
    assert "quota exceeded" in result.error
    assert result.intent is None


def test_unregistered_default_plugin_propagates():
    registry = make_registry(StubResolver(), fallback_strategy="default", default_plugin="missing")
    orchestrator = TradingOrchestrator(registry, StubBroker())
    with pytest.raises(PluginNotRegisteredError):
        asyncio.run(orchestrator.process_trading_request(_request("hello there")))


def test_batch_results_are_independent():
    broker = StubBroker()
    orchestrator, _ = make_orchestrator(StubResolver(error=RuntimeError("down")), broker)
    requests = [_request("Buy $100 of AAPL"), _request("hedge my LULU shares"), _request("sell all TSLA", dry_run=True)]
    results = asyncio.run(orchestrator.batch_process_trading_requests(requests))
    assert [r.request_id for r in results] == [r.id for r in requests]
    assert [r.success for r in results] == [True, False, True]
    assert results[0].metadata.steps == [PARSING_INTENT, VALIDATING_TRADE, EXECUTING_TRADE]
    assert results[1].metadata.steps == [PARSING_INTENT]
    assert orchestrator.stats()["total_requests"] == 3


def test_health_check_reports_each_service():
    orchestrator, _ = make_orchestrator(StubResolver(healthy=RuntimeError("unreachable")), StubBroker())
    report = asyncio.run(orchestrator.health_check())
    assert report == {"healthy": False, "services": {"resolver": False, "broker": True}}

    healthy, _ = make_orchestrator(StubResolver(), StubBroker())
    assert asyncio.run(healthy.health_check())["healthy"] is True


def test_health_check_without_resolver_is_unhealthy():
    orchestrator = TradingOrchestrator(make_registry(None), StubBroker())
    report = asyncio.run(orchestrator.health_check())
    assert report["services"]["resolver"] is False


def test_results_are_journaled():
    collection = _Collection()
    orchestrator, _ = make_orchestrator(StubResolver(), StubBroker(), journal=TradeJournal(collection))
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL", dry_run=True)))
    doc = collection.docs[result.request_id]
    assert doc["success"] is True
    assert "recorded_at" in doc


def test_journal_failure_does_not_change_the_result():
    orchestrator, _ = make_orchestrator(StubResolver(), StubBroker(), journal=TradeJournal(_Collection(fail=True)))
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL", dry_run=True)))
    assert result.success


def test_health_check_reports_broker_failure():
    orchestrator, _ = make_orchestrator(StubResolver(), StubBroker(healthy=RuntimeError("gateway down")))
    report = asyncio.run(orchestrator.health_check())
    assert report == {"healthy": False, "services": {"resolver": True, "broker": False}}


def test_stats_average_cost_and_latency():
    orchestrator, _ = make_orchestrator(StubResolver(), StubBroker(), broker_fee_per_trade=1.0)

    async def _run():
        await orchestrator.process_trading_request(_request("Buy $100 of AAPL", dry_run=True))
        await orchestrator.process_trading_request(_request("buy 2 shares of NVDA"))

    asyncio.run(_run())
    stats = orchestrator.stats()
    assert stats["total_requests"] == 2
    assert stats["average_cost"] == pytest.approx(0.5)
    assert stats["registry"]["success_rate"] == 1.0
    assert stats["registry"]["average_latency_ms"] >= 0.0


def test_batch_isolates_an_unexpected_crash():
    broker = StubBroker()
    registry = make_registry(StubResolver(), plugins=[_CrashingTradePlugin()])
    orchestrator = TradingOrchestrator(registry, broker, StubResolver())
    texts = ["Buy $100 of AAPL", "buy 2 shares of NVDA", "Buy $100 of ZZZZ", "sell all TSLA", "Buy $50 of MSFT"]
    requests = [_request(text) for text in texts]

    results = asyncio.run(orchestrator.batch_process_trading_requests(requests))

    assert len(results) == 5
    assert [r.request_id for r in results] == [r.id for r in requests]
    assert [r.success for r in results] == [True, True, False, True, True]
    assert results[2].error == "RuntimeError: plugin crashed"
    assert results[2].metadata.steps == [PARSING_INTENT]
    assert all(r.execution.success for i, r in enumerate(results) if i != 2)
    assert broker.execute_calls == 4
    assert orchestrator.stats()["failed"] == 1


def test_cache_outage_still_reaches_the_model():
    resolver = StubResolver(data={"type": "buy", "symbol": "AAPL", "amount_type": "dollars", "amount": 100})
    pipeline = make_pipeline(resolver, cache=BrokenCache(), classifier=ComplexityClassifier(simple_threshold=1.5))
    orchestrator = TradingOrchestrator(IntentRegistry(pipeline, plugins=[BasicTradePlugin()]), StubBroker(), resolver)

    result = asyncio.run(orchestrator.process_trading_request(_request("buy 100 dollars of AAPL", dry_run=True)))

    assert result.success
    assert result.error is None
    assert result.intent.method == "model"
    assert len(resolver.calls) == 1


def test_malformed_constraints_end_up_in_the_result():
    orchestrator, _ = make_orchestrator(StubResolver(), StubBroker())
    request = TradingRequest(input="Buy $100 of AAPL", context={"constraints": {"max_latency_ms": "fast"}})
    result = asyncio.run(orchestrator.process_trading_request(request))
    assert not result.success
    assert "Invalid selection constraints" in result.error


def test_slow_journal_is_abandoned_after_its_timeout():
    collection = _Collection(delay=1.0)
    orchestrator, _ = make_orchestrator(
        StubResolver(), StubBroker(), journal=TradeJournal(collection), journal_timeout_ms=20
    )
    result = asyncio.run(orchestrator.process_trading_request(_request("Buy $100 of AAPL", dry_run=True)))
    assert result.success
    assert collection.docs == {}


def test_journal_timeout_comes_from_settings():
    class _Settings:
        INTENT_PARSING_TIMEOUT_MS = 30000
        TRADE_VALIDATION_TIMEOUT_MS = 10000
        TRADE_EXECUTION_TIMEOUT_MS = 30000
        EXECUTION_RETRIES = 1
        RETRY_BACKOFF_MS = 0
        VALIDATION_REQUIRED = True
        JOURNAL_TIMEOUT_MS = 750

    assert OrchestratorConfig.from_settings(_Settings()).journal_timeout_ms == 750
