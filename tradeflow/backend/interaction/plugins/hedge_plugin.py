import re

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.intent_registry import IntentPlugin, PluginValidation
from tradeflow.backend.engine.models import HedgeIntent
from tradeflow.backend.interaction.plugins.trade_plugin import canonical_fields

"""
Interaction Layer - Hedge Plugin.
"""

HEDGE_RE = re.compile(r"\b(?:hedg\w*|protect\w*|insure|insurance|downside|collar)\b")
STRATEGIES = ("protective_put", "collar", "covered_call", "inverse_etf", "stop_loss")


class HedgePlugin(IntentPlugin):
    type = "hedge"
    priority = 40
    intent_types = ("hedge",)
    schema = {
        "description": "Extract a request to hedge or protect an existing stock position.",
        "fields": {
            "type": "'hedge'",
            "symbol": "ticker of the position to protect",
            "strategy": f"one of {list(STRATEGIES)} (default protective_put)",
            "hedge_ratio": "fraction of the position to hedge, 0-1 (optional)",
        },
        "examples": [
            "hedge my LULU position -> {\"type\": \"hedge\", \"symbol\": \"LULU\", \"strategy\": \"protective_put\"}",
            "protect half my NVDA with a collar -> {\"type\": \"hedge\", \"symbol\": \"NVDA\", "
            "\"strategy\": \"collar\", \"hedge_ratio\": 0.5}",
        ],
    }

    def can_handle(self, text: str) -> bool:
        return bool(HEDGE_RE.search(text.lower())) and bool(lexicon.extract_tickers(text))

    def complexity(self, text: str) -> float:
        return 40.0 + 5 * max(0, len(lexicon.extract_tickers(text)) - 1)

    def validate(self, data: dict) -> PluginValidation:
        fields = canonical_fields(data)
        errors, warnings = [], []
        if not lexicon.is_valid_symbol(fields.get("symbol")):
            errors.append("symbol must be 1-5 uppercase letters")
        strategy = fields.get("strategy")
        if strategy is None:
            warnings.append("No strategy given; defaulting to protective_put")
        elif strategy not in STRATEGIES:
            errors.append(f"strategy must be one of {', '.join(STRATEGIES)}")
        ratio = fields.get("hedge_ratio")
        if ratio is not None and (not isinstance(ratio, (int, float)) or not 0 < ratio <= 1):
            errors.append("hedge_ratio must be in (0, 1]")
        return PluginValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def transform(self, data: dict, context: dict | None = None) -> HedgeIntent:
        fields = canonical_fields(data)
        return HedgeIntent(
            symbol=fields["symbol"],
            strategy=fields.get("strategy") or "protective_put",
            hedge_ratio=fields.get("hedge_ratio"),
            metadata={"plugin": self.type},
        )
