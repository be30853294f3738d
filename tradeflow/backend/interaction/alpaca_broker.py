from typing import Any

import httpx
from loguru import logger

from tradeflow.backend.core.errors import ExecutionError
from tradeflow.backend.engine.models import OrderIntent, TradeExecution, TradeValidation
from tradeflow.backend.interaction.broker_gateway import AccountInfo, BrokerGateway, Position, limit_price_warnings

"""
Interaction Layer - Alpaca Broker.

BrokerGateway over the Alpaca trading and market-data REST APIs (paper or
live, depending on the base URL and credentials). Retries are left to the
orchestrator; this adapter makes exactly one HTTP call per operation step.
"""


class AlpacaBrokerGateway(BrokerGateway):
    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = "https://paper-api.alpaca.markets",
        data_url: str = "https://data.alpaca.markets",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.headers = {
            "APCA-API-KEY-ID": api_key,
            "APCA-API-SECRET-KEY": secret_key,
        }

    async def _request(self, method: str, url: str, json_body: dict | None = None) -> Any:
        response = await self.client.request(method, url, headers=self.headers, json=json_body)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def _get(self, path: str) -> Any:
        return await self._request("GET", self.base_url + path)

    async def latest_price(self, symbol: str) -> float:
        data = await self._request("GET", f"{self.data_url}/v2/stocks/{symbol}/trades/latest")
        return float(data["trade"]["p"])

    async def _position(self, symbol: str) -> dict | None:
        try:
            return await self._get(f"/v2/positions/{symbol}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise

    async def validate_trade(self, intent: OrderIntent) -> TradeValidation:
        if intent.type not in ("buy", "sell"):
            return TradeValidation(is_valid=False, errors=[f"'{intent.type}' intents are not executable"])

        errors: list[str] = []
        account = await self._get("/v2/account")
        if account.get("trading_blocked"):
            errors.append("Account is blocked from trading")

        price = await self.latest_price(intent.symbol)
        fill_price = intent.limit_price if intent.order_type == "limit" else price

        if intent.type == "buy":
            if intent.sells_everything:
                errors.append("Buy orders need an explicit amount")
            shares = intent.amount / price if intent.amount_type == "dollars" else intent.amount
            estimated_cost = shares * fill_price
            buying_power = float(account.get("buying_power", 0))
            if estimated_cost > buying_power:
                errors.append(f"Insufficient buying power: need {estimated_cost:.2f}, have {buying_power:.2f}")
        else:
            position = await self._position(intent.symbol)
            held = float(position["qty"]) if position else 0.0
            if held <= 0:
                errors.append(f"No position in {intent.symbol} to sell")
            if intent.sells_everything:
                shares = held
            else:
                shares = intent.amount / price if intent.amount_type == "dollars" else intent.amount
            if held > 0 and shares > held:
                errors.append(f"Cannot sell {shares:.4f} shares of {intent.symbol}; only {held:.4f} held")
            estimated_cost = shares * fill_price

        return TradeValidation(
            is_valid=not errors,
            errors=errors,
            warnings=limit_price_warnings(intent, price),
            estimated_cost=estimated_cost,
            current_price=price,
        )

    def _order_payload(self, intent: OrderIntent) -> dict:
        payload = {
            "symbol": intent.symbol,
            "side": intent.type,
            "type": intent.order_type,
            "time_in_force": "day",
        }
        if intent.amount_type == "dollars":
            payload["notional"] = round(intent.amount, 2)
        else:
            payload["qty"] = intent.amount
        if intent.order_type == "limit":
            payload["limit_price"] = round(intent.limit_price, 2)
        return payload

    async def execute_trade(self, intent: OrderIntent) -> TradeExecution:
        try:
            if intent.sells_everything:
                order = await self._request("DELETE", f"{self.base_url}/v2/positions/{intent.symbol}")
            else:
                order = await self._request("POST", f"{self.base_url}/v2/orders", self._order_payload(intent))
        except httpx.HTTPStatusError as e:
            logger.error(f"Alpaca rejected {intent.type} {intent.symbol}: {e.response.text}")
            return TradeExecution(success=False, status="rejected", error=e.response.text or str(e))
        except httpx.HTTPError as e:
            raise ExecutionError(f"Alpaca request failed: {e}") from e

        filled_price = order.get("filled_avg_price")
        filled_qty = order.get("filled_qty")
        logger.info(f"Alpaca order {order.get('id')} {order.get('status')} for {intent.symbol}")
        return TradeExecution(
            success=True,
            order_id=order.get("id"),
            status=order.get("status", "accepted"),
            executed_price=float(filled_price) if filled_price else None,
            executed_shares=float(filled_qty) if filled_qty else None,
        )

    async def get_account(self) -> AccountInfo:
        account = await self._get("/v2/account")
        positions = await self._get("/v2/positions")
        return AccountInfo(
            account_id=account.get("id", ""),
            cash=float(account.get("cash", 0)),
            buying_power=float(account.get("buying_power", 0)),
            portfolio_value=float(account.get("portfolio_value", 0)),
            positions=[
                Position(
                    symbol=p["symbol"],
                    quantity=float(p["qty"]),
                    average_price=float(p["avg_entry_price"]),
                    market_price=float(p["current_price"]) if p.get("current_price") else None,
                )
                for p in positions
            ],
        )

    async def health(self) -> bool:
        clock = await self._get("/v2/clock")
        return "is_open" in clock

    async def aclose(self):
        await self.client.aclose()
