from __future__ import annotations

import asyncio
from datetime import date

import pytest

from tradeflow.backend.engine.models import BuyIntent, SellIntent
from tradeflow.backend.interaction.paper_broker import PaperBrokerGateway


def _buy(symbol="AAPL", amount=100.0, amount_type="dollars", **kw) -> BuyIntent:
    return BuyIntent(symbol=symbol, amount=amount, amount_type=amount_type, **kw)


def _sell(symbol="AAPL", amount=-1, amount_type="shares", **kw) -> SellIntent:
    return SellIntent(symbol=symbol, amount=amount, amount_type=amount_type, **kw)


def test_buy_fills_and_updates_account():
    broker = PaperBrokerGateway()

    async def _run():
        execution = await broker.execute_trade(_buy())
        account = await broker.get_account()
        return execution, account

    execution, account = asyncio.run(_run())
    assert execution.success and execution.status == "filled"
    assert execution.executed_price == 190.0
    assert account.cash == pytest.approx(9900.0)
    assert account.positions[0].symbol == "AAPL"
    assert account.portfolio_value == pytest.approx(10000.0)


def test_unknown_symbol_is_rejected():
    validation = asyncio.run(PaperBrokerGateway().validate_trade(_buy("ZZZZ")))
    assert not validation.is_valid
    assert "No market price" in validation.errors[0]


def test_position_size_limit():
    validation = asyncio.run(PaperBrokerGateway().validate_trade(_buy("MSFT", 10, "shares")))
    assert not validation.is_valid
    assert any("max position size" in e for e in validation.errors)


def test_buying_power_limit():
    broker = PaperBrokerGateway(starting_cash=50.0)
    validation = asyncio.run(broker.validate_trade(_buy()))
    assert any("Insufficient buying power" in e for e in validation.errors)


def test_daily_spending_limit_resets_next_day():
    day = {"today": date(2026, 3, 2)}
    broker = PaperBrokerGateway(today=lambda: day["today"])

    async def _run():
        first = await broker.execute_trade(_buy(amount=400))
        second = await broker.execute_trade(_buy(amount=400))
        third = await broker.validate_trade(_buy(amount=400))
        day["today"] = date(2026, 3, 3)
        next_day = await broker.validate_trade(_buy(amount=400))
        return first, second, third, next_day

    first, second, third, next_day = asyncio.run(_run())
    assert first.success and second.success
    assert any("Daily spending limit" in e for e in third.errors)
    assert next_day.is_valid


def test_cannot_sell_what_is_not_held():
    validation = asyncio.run(PaperBrokerGateway().validate_trade(_sell("TSLA")))
    assert not validation.is_valid
    assert "No position" in validation.errors[0]


def test_sell_all_closes_the_position():
    broker = PaperBrokerGateway()

    async def _run():
        await broker.execute_trade(_buy("NVDA", 2, "shares"))
        execution = await broker.execute_trade(_sell("NVDA"))
        return execution, await broker.get_account()

    execution, account = asyncio.run(_run())
    assert execution.executed_shares == 2
    assert account.positions == []
    assert account.cash == 10000.0


def test_oversell_is_rejected():
    broker = PaperBrokerGateway()

    async def _run():
        await broker.execute_trade(_buy("NVDA", 1, "shares"))
        return await broker.validate_trade(_sell("NVDA", 3))

    validation = asyncio.run(_run())
    assert any("only 1.0000 held" in e for e in validation.errors)


def test_rejected_execution_reports_errors():
    execution = asyncio.run(PaperBrokerGateway().execute_trade(_sell("TSLA")))
    assert not execution.success
    assert execution.status == "rejected"


def test_non_marketable_limit_rests():
    broker = PaperBrokerGateway()
    execution = asyncio.run(broker.execute_trade(_buy(amount=1, amount_type="shares", order_type="limit", limit_price=150)))
    assert execution.success
    assert execution.status == "accepted"
    assert broker.cash == 10000.0


def test_far_limit_price_warns():
    validation = asyncio.run(
        PaperBrokerGateway().validate_trade(_buy(amount=1, amount_type="shares", order_type="limit", limit_price=250))
    )
    assert validation.is_valid
    assert validation.warnings


def test_set_price_and_health():
    broker = PaperBrokerGateway(prices={})
    broker.set_price("GME", 20.0)
    assert asyncio.run(broker.validate_trade(_buy("GME"))).current_price == 20.0
    assert asyncio.run(broker.health()) is True


def test_concurrent_buys_respect_the_daily_limit():
    broker = PaperBrokerGateway(max_daily_spending=600.0, fill_delay_ms=10)

    async def _run():
        return await asyncio.gather(broker.execute_trade(_buy(amount=400.0)), broker.execute_trade(_buy(amount=400.0)))

    executions = asyncio.run(_run())
    assert sorted(e.success for e in executions) == [False, True]
    rejected = next(e for e in executions if not e.success)
    assert rejected.status == "rejected"
    assert "Daily spending limit" in rejected.error
    assert broker._spent_today == pytest.approx(400.0)
    assert broker.cash == pytest.approx(9600.0)


def test_concurrent_sell_all_fills_once():
    broker = PaperBrokerGateway()
    asyncio.run(broker.execute_trade(_buy(amount=190.0)))
    broker.fill_delay_ms = 10

    async def _run():
        return await asyncio.gather(broker.execute_trade(_sell()), broker.execute_trade(_sell()))

    executions = asyncio.run(_run())
    assert sorted(e.success for e in executions) == [False, True]
    assert "No position in AAPL" in next(e for e in executions if not e.success).error
    assert broker.positions == {}
    assert broker.cash == pytest.approx(10000.0)
