import re

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.intent_registry import IntentPlugin, PluginValidation
from tradeflow.backend.engine.models import AnalysisIntent
from tradeflow.backend.interaction.plugins.trade_plugin import canonical_fields

"""
Interaction Layer - Analysis Plugin.

Requests for technical, fundamental or sentiment analysis of a stock.
"""

ANALYSIS_RE = re.compile(
    r"\b(?:analy[sz]\w*|research|evaluate|assess\w*|outlook|fundamentals?|technicals?|sentiment|chart)\b"
)
ANALYSIS_TYPES = ("technical", "fundamental", "sentiment", "comprehensive")
TIMEFRAMES = ("1d", "1w", "1m", "3m", "6m", "1y")


class AnalysisPlugin(IntentPlugin):
    type = "analysis"
    priority = 30
    intent_types = ("analysis",)
    schema = {
        "description": "Extract a request to analyze a stock.",
        "fields": {
            "type": "'analysis'",
            "symbol": "ticker to analyze",
            "analysis_type": f"one of {list(ANALYSIS_TYPES)} (default comprehensive)",
            "timeframe": f"one of {list(TIMEFRAMES)} (default 1m)",
        },
        "examples": [
            "analyze AAPL -> {\"type\": \"analysis\", \"symbol\": \"AAPL\", \"analysis_type\": \"comprehensive\"}",
            "technical outlook for TSLA this week -> {\"type\": \"analysis\", \"symbol\": \"TSLA\", "
            "\"analysis_type\": \"technical\", \"timeframe\": \"1w\"}",
        ],
    }

    def can_handle(self, text: str) -> bool:
        return bool(ANALYSIS_RE.search(text.lower())) and bool(lexicon.extract_tickers(text))

    def complexity(self, text: str) -> float:
        lowered = text.lower()
        score = 20.0
        if "technical" in lowered:
            score += 5
        if "fundamental" in lowered:
            score += 10
        if "sentiment" in lowered:
            score += 5
        return score

    def validate(self, data: dict) -> PluginValidation:
        fields = canonical_fields(data)
        errors, warnings = [], []
        if not lexicon.is_valid_symbol(fields.get("symbol")):
            errors.append("symbol must be 1-5 uppercase letters")
        analysis_type = fields.get("analysis_type")
        if analysis_type is None:
            warnings.append("No analysis type given; defaulting to comprehensive")
        elif analysis_type not in ANALYSIS_TYPES:
            errors.append(f"analysis_type must be one of {', '.join(ANALYSIS_TYPES)}")
        timeframe = fields.get("timeframe")
        if timeframe is not None and timeframe not in TIMEFRAMES:
            warnings.append(f"Unusual timeframe '{timeframe}'")
        return PluginValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def transform(self, data: dict, context: dict | None = None) -> AnalysisIntent:
        fields = canonical_fields(data)
        return AnalysisIntent(
            symbol=fields["symbol"],
            analysis_type=fields.get("analysis_type") or "comprehensive",
            timeframe=fields.get("timeframe") or "1m",
            metadata={"plugin": self.type},
        )
