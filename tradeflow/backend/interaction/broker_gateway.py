from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from tradeflow.backend.engine.models import OrderIntent, TradeExecution, TradeValidation

"""
Interaction Layer - Broker Gateway contract.

Pre-trade validation, order execution and account queries. Implementations:
PaperBrokerGateway (in-memory simulation) and AlpacaBrokerGateway (REST).
"""

LIMIT_DEVIATION_WARNING = 0.10


class Position(BaseModel):
    symbol: str
    quantity: float
    average_price: float
    market_price: Optional[float] = None

    @property
    def market_value(self) -> float:
        return self.quantity * (self.market_price if self.market_price is not None else self.average_price)


class AccountInfo(BaseModel):
    account_id: str
    cash: float
    buying_power: float
    portfolio_value: float
    positions: list[Position] = Field(default_factory=list)


def limit_price_warnings(intent: OrderIntent, current_price: float | None) -> list[str]:
    """Warns when a limit price sits more than 10% away from the market."""
    if intent.order_type != "limit" or not current_price or intent.limit_price is None:
        return []
    deviation = (intent.limit_price - current_price) / current_price
    if intent.type == "buy" and deviation > LIMIT_DEVIATION_WARNING:
        return [f"Limit price {intent.limit_price:.2f} is {deviation:.0%} above market ({current_price:.2f})"]
    if intent.type == "sell" and deviation < -LIMIT_DEVIATION_WARNING:
        return [f"Limit price {intent.limit_price:.2f} is {-deviation:.0%} below market ({current_price:.2f})"]
    return []


class BrokerGateway(ABC):
    @abstractmethod
    async def validate_trade(self, intent: OrderIntent) -> TradeValidation:
        ...

    @abstractmethod
    async def execute_trade(self, intent: OrderIntent) -> TradeExecution:
        ...

    @abstractmethod
    async def get_account(self) -> AccountInfo:
        ...

    @abstractmethod
    async def health(self) -> bool:
        ...

    async def aclose(self):
        """Releases network resources, if any."""
