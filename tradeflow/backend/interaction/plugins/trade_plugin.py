import re

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.intent_registry import IntentPlugin, PluginValidation
from tradeflow.backend.engine.models import SELL_ALL, BuyIntent, SellIntent

"""
Interaction Layer - Basic Trade Plugin.

Handles plain buy/sell orders (market or limit, by dollars or by shares).
"""

ALIASES = {
    "action": "type",
    "amountType": "amount_type",
    "orderType": "order_type",
    "limitPrice": "limit_price",
    "ticker": "symbol",
}

ACTION_RE = re.compile(r"\b(?:buy|sell)\b")
QUANTITY_RE = re.compile(rf"\d|\b(?:all|half|quarter)\b|\b{lexicon.NUMBER_WORDS_PATTERN}\b")


def canonical_fields(data: dict) -> dict:
    """Maps camelCase or alternate keys onto the intent field names."""
    fields = {}
    for key, value in data.items():
        fields[ALIASES.get(key, key)] = value
    if isinstance(fields.get("symbol"), str):
        fields["symbol"] = fields["symbol"].strip().upper()
    for key in ("type", "amount_type", "order_type"):
        if isinstance(fields.get(key), str):
            fields[key] = fields[key].strip().lower()
    return fields


class BasicTradePlugin(IntentPlugin):
    type = "basic_trade"
    priority = 50
    intent_types = ("buy", "sell")
    schema = {
        "description": "Extract a buy or sell order for a single stock.",
        "fields": {
            "type": "'buy' | 'sell'",
            "symbol": "ticker, 1-5 uppercase letters",
            "amount_type": "'dollars' | 'shares'",
            "amount": "positive number, or -1 to sell the whole position",
            "order_type": "'market' | 'limit' (default market)",
            "limit_price": "number, required only for limit orders",
        },
        "examples": [
            "buy $100 of AAPL -> {\"type\": \"buy\", \"symbol\": \"AAPL\", \"amount_type\": \"dollars\", \"amount\": 100}",
            "sell all my TSLA -> {\"type\": \"sell\", \"symbol\": \"TSLA\", \"amount_type\": \"shares\", \"amount\": -1}",
            "buy 10 shares of MSFT at $400 -> {\"type\": \"buy\", \"symbol\": \"MSFT\", \"amount_type\": \"shares\", "
            "\"amount\": 10, \"order_type\": \"limit\", \"limit_price\": 400}",
        ],
    }

    def can_handle(self, text: str) -> bool:
        return bool(ACTION_RE.search(text.lower())) and bool(lexicon.extract_tickers(text)) and bool(
            QUANTITY_RE.search(text.lower())
        )

    def complexity(self, text: str) -> float:
        lowered = text.lower()
        score = 10.0
        if "limit" in lowered or re.search(r"\bat\s+\$?\d", lowered):
            score += 5
        if "stop" in lowered:
            score += 10
        if len(lowered.split()) > 10:
            score += 5
        return score

    def validate(self, data: dict) -> PluginValidation:
        fields = canonical_fields(data)
        errors: list[str] = []
        warnings: list[str] = []

        if fields.get("type") not in self.intent_types:
            errors.append("type must be 'buy' or 'sell'")
        if not lexicon.is_valid_symbol(fields.get("symbol")):
            errors.append("symbol must be 1-5 uppercase letters")
        if fields.get("amount_type") not in ("dollars", "shares"):
            errors.append("amount_type must be 'dollars' or 'shares'")

        amount = fields.get("amount")
        if not isinstance(amount, (int, float)) or isinstance(amount, bool):
            errors.append("amount must be a number")
        elif amount != SELL_ALL and amount <= 0:
            errors.append("amount must be positive, or -1 for the whole position")
        elif amount == SELL_ALL and fields.get("type") == "buy":
            errors.append("amount -1 is only valid for sell orders")

        order_type = fields.get("order_type") or "market"
        limit_price = fields.get("limit_price")
        if order_type not in ("market", "limit"):
            errors.append("order_type must be 'market' or 'limit'")
        elif order_type == "limit" and (not isinstance(limit_price, (int, float)) or limit_price <= 0):
            errors.append("limit orders require a positive limit_price")
        elif order_type == "market" and limit_price is not None:
            warnings.append("limit_price ignored on a market order")

        if isinstance(amount, (int, float)) and fields.get("amount_type") == "dollars" and amount > 10000:
            warnings.append("Large dollar amount")

        return PluginValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def transform(self, data: dict, context: dict | None = None) -> BuyIntent | SellIntent:
        fields = canonical_fields(data)
        order_type = fields.get("order_type") or "market"
        model = BuyIntent if fields["type"] == "buy" else SellIntent
        return model(
            symbol=fields["symbol"],
            amount_type=fields["amount_type"],
            amount=float(fields["amount"]),
            order_type=order_type,
            limit_price=float(fields["limit_price"]) if order_type == "limit" else None,
            confidence=float(fields.get("confidence", 1.0)),
            metadata={**fields.get("metadata", {}), "plugin": self.type},
        )
