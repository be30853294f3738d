import asyncio
import uuid
from datetime import date
from typing import Callable

from loguru import logger

from tradeflow.backend.engine.models import OrderIntent, TradeExecution, TradeValidation
from tradeflow.backend.interaction.broker_gateway import AccountInfo, BrokerGateway, Position, limit_price_warnings

"""
Interaction Layer - Paper Broker.

In-memory brokerage used for dry runs, demos and tests. It enforces the same
risk limits a live account would: per-trade position size, daily spending,
buying power and held quantity.
"""

DEFAULT_PRICES = {
    "AAPL": 190.0,
    "MSFT": 410.0,
    "GOOGL": 165.0,
    "AMZN": 180.0,
    "TSLA": 250.0,
    "NVDA": 120.0,
    "META": 500.0,
    "LULU": 300.0,
    "SPY": 550.0,
    "QQQ": 470.0,
}


class PaperBrokerGateway(BrokerGateway):
    def __init__(
        self,
        prices: dict[str, float] | None = None,
        starting_cash: float = 10000.0,
        max_position_size: float = 500.0,
        max_daily_spending: float = 1000.0,
        fill_delay_ms: float = 0.0,
        today: Callable[[], date] = date.today,
    ):
        self.prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.cash = starting_cash
        self.max_position_size = max_position_size
        self.max_daily_spending = max_daily_spending
        self.fill_delay_ms = fill_delay_ms
        self._today = today
        self._day = today()
        self._spent_today = 0.0
        self.positions: dict[str, Position] = {}
        self.orders: list[dict] = []

    def set_price(self, symbol: str, price: float):
        self.prices[symbol] = price

    def _roll_day(self):
        today = self._today()
        if today != self._day:
            self._day = today
            self._spent_today = 0.0

    def _shares_for(self, intent: OrderIntent, price: float) -> float:
        if intent.sells_everything:
            held = self.positions.get(intent.symbol)
            return held.quantity if held else 0.0
        if intent.amount_type == "dollars":
            return intent.amount / price
        return intent.amount

    async def validate_trade(self, intent: OrderIntent) -> TradeValidation:
        self._roll_day()
        errors: list[str] = []

        if intent.type not in ("buy", "sell"):
            return TradeValidation(is_valid=False, errors=[f"'{intent.type}' intents are not executable"])

        price = self.prices.get(intent.symbol)
        if price is None:
            return TradeValidation(is_valid=False, errors=[f"No market price available for {intent.symbol}"])

        fill_price = intent.limit_price if intent.order_type == "limit" else price
        shares = self._shares_for(intent, price)
        estimated_cost = shares * fill_price

        if intent.type == "buy":
            if intent.sells_everything:
                errors.append("Buy orders need an explicit amount")
            if estimated_cost > self.cash:
                errors.append(f"Insufficient buying power: need {estimated_cost:.2f}, have {self.cash:.2f}")
            if estimated_cost > self.max_position_size:
                errors.append(f"Trade value {estimated_cost:.2f} exceeds max position size {self.max_position_size:.2f}")
            if self._spent_today + estimated_cost > self.max_daily_spending:
                errors.append(
                    f"Daily spending limit {self.max_daily_spending:.2f} would be exceeded "
                    f"(spent {self._spent_today:.2f} today)"
                )
        else:
            held = self.positions.get(intent.symbol)
            if held is None or held.quantity <= 0:
                errors.append(f"No position in {intent.symbol} to sell")
            elif shares > held.quantity + 1e-9:
                errors.append(f"Cannot sell {shares:.4f} shares of {intent.symbol}; only {held.quantity:.4f} held")

        return TradeValidation(
            is_valid=not errors,
            errors=errors,
            warnings=limit_price_warnings(intent, price),
            estimated_cost=estimated_cost,
            current_price=price,
        )

    async def execute_trade(self, intent: OrderIntent) -> TradeExecution:
        if self.fill_delay_ms:
            await asyncio.sleep(self.fill_delay_ms / 1000)

        # No await between this validation and the fill below, so concurrent
        # orders always see each other's cash, spend and position updates.
        validation = await self.validate_trade(intent)
        if not validation.is_valid:
            return TradeExecution(success=False, status="rejected", error="; ".join(validation.errors))

        price = validation.current_price
        order_id = f"paper-{uuid.uuid4().hex[:10]}"

        marketable = intent.order_type == "market" or (
            intent.limit_price >= price if intent.type == "buy" else intent.limit_price <= price
        )
        if not marketable:
            self.orders.append({"id": order_id, "symbol": intent.symbol, "side": intent.type, "status": "accepted"})
            logger.info(f"Paper order {order_id} accepted, resting at limit {intent.limit_price}")
            return TradeExecution(success=True, order_id=order_id, status="accepted")

        shares = self._shares_for(intent, price)
        value = shares * price
        held = self.positions.get(intent.symbol)

        if intent.type == "buy":
            self.cash -= value
            self._spent_today += value
            if held:
                total = held.quantity + shares
                held.average_price = (held.average_price * held.quantity + value) / total
                held.quantity = total
            else:
                self.positions[intent.symbol] = Position(symbol=intent.symbol, quantity=shares, average_price=price)
        else:
            self.cash += value
            held.quantity -= shares
            if held.quantity <= 1e-9:
                del self.positions[intent.symbol]

        self.orders.append({"id": order_id, "symbol": intent.symbol, "side": intent.type, "status": "filled"})
        logger.success(f"Paper {intent.type} filled: {shares:.4f} {intent.symbol} @ {price:.2f} ({order_id})")
        return TradeExecution(
            success=True,
            order_id=order_id,
            status="filled",
            executed_price=price,
            executed_shares=shares,
        )

    async def get_account(self) -> AccountInfo:
        positions = [
            position.model_copy(update={"market_price": self.prices.get(symbol)})
            for symbol, position in self.positions.items()
        ]
        return AccountInfo(
            account_id="paper",
            cash=self.cash,
            buying_power=self.cash,
            portfolio_value=self.cash + sum(p.market_value for p in positions),
            positions=positions,
        )

    async def health(self) -> bool:
        return True
