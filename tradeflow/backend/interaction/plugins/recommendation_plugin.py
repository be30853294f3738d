import re

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.intent_registry import IntentPlugin, PluginValidation
from tradeflow.backend.engine.models import RecommendationIntent
from tradeflow.backend.interaction.plugins.trade_plugin import canonical_fields

"""
Interaction Layer - Recommendation Plugin.
"""

RECOMMENDATION_RE = re.compile(
    r"\b(?:recommend\w*|suggest\w*|advice|advise|should\s+i|opinion|good\s+(?:buy|investment))\b"
)
HORIZONS = ("short_term", "medium_term", "long_term")
RISK_LEVELS = ("low", "moderate", "high")


class RecommendationPlugin(IntentPlugin):
    type = "recommendation"
    priority = 20
    intent_types = ("recommendation",)
    schema = {
        "description": "Extract a request for a buy/hold/sell recommendation on a stock.",
        "fields": {
            "type": "'recommendation'",
            "symbol": "ticker the user asks about",
            "horizon": f"one of {list(HORIZONS)} (default medium_term)",
            "risk_level": f"one of {list(RISK_LEVELS)} (default moderate)",
        },
        "examples": [
            "should I buy NVDA for the long term -> {\"type\": \"recommendation\", \"symbol\": \"NVDA\", "
            "\"horizon\": \"long_term\"}",
        ],
    }

    def can_handle(self, text: str) -> bool:
        return bool(RECOMMENDATION_RE.search(text.lower())) and bool(lexicon.extract_tickers(text))

    def complexity(self, text: str) -> float:
        return 30.0

    def validate(self, data: dict) -> PluginValidation:
        fields = canonical_fields(data)
        errors = []
        if not lexicon.is_valid_symbol(fields.get("symbol")):
            errors.append("symbol must be 1-5 uppercase letters")
        if fields.get("horizon") is not None and fields["horizon"] not in HORIZONS:
            errors.append(f"horizon must be one of {', '.join(HORIZONS)}")
        if fields.get("risk_level") is not None and fields["risk_level"] not in RISK_LEVELS:
            errors.append(f"risk_level must be one of {', '.join(RISK_LEVELS)}")
        return PluginValidation(is_valid=not errors, errors=errors)

    def transform(self, data: dict, context: dict | None = None) -> RecommendationIntent:
        fields = canonical_fields(data)
        risk_level = fields.get("risk_level") or (context or {}).get("risk_level") or "moderate"
        return RecommendationIntent(
            symbol=fields["symbol"],
            horizon=fields.get("horizon") or "medium_term",
            risk_level=risk_level,
            metadata={"plugin": self.type},
        )
