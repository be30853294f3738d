import time
import uuid
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from tradeflow.backend.engine.lexicon import UNKNOWN_SYMBOL, is_valid_symbol

"""
Engine - Data Model.

Pydantic models shared by every stage of the pipeline. TradeIntent is a
discriminated union on `type`; buy/sell orders carry the amount and order-type
invariants directly so that an invalid order can never be constructed.
"""

SELL_ALL = -1
EXECUTABLE_INTENT_TYPES = ("buy", "sell")


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Trade intents
# ---------------------------------------------------------------------------

class IntentBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allows_unknown_symbol: ClassVar[bool] = False

    id: str = Field(default_factory=lambda: new_id("intent"))
    symbol: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("symbol")
    @classmethod
    def check_symbol(cls, value: str) -> str:
        if cls.allows_unknown_symbol and value == UNKNOWN_SYMBOL:
            return value
        if not is_valid_symbol(value):
            raise ValueError(f"symbol must be 1-5 uppercase letters, got {value!r}")
        return value


class OrderIntent(IntentBase):
    amount_type: Literal["dollars", "shares"]
    amount: float
    order_type: Literal["market", "limit"] = "market"
    limit_price: Optional[float] = None

    @model_validator(mode="after")
    def check_order(self):
        if self.amount != SELL_ALL and self.amount <= 0:
            raise ValueError("amount must be positive, or -1 for the whole position")
        if self.order_type == "limit":
            if self.limit_price is None or self.limit_price <= 0:
                raise ValueError("limit orders require a positive limit_price")
        elif self.limit_price is not None:
            raise ValueError("limit_price is only allowed on limit orders")
        return self

    @property
    def sells_everything(self) -> bool:
        return self.amount == SELL_ALL


class BuyIntent(OrderIntent):
    type: Literal["buy"] = "buy"


class SellIntent(OrderIntent):
    type: Literal["sell"] = "sell"


class AnalysisIntent(IntentBase):
    type: Literal["analysis"] = "analysis"
    analysis_type: Literal["technical", "fundamental", "sentiment", "comprehensive"] = "comprehensive"
    timeframe: str = "1m"


class HedgeIntent(IntentBase):
    type: Literal["hedge"] = "hedge"
    strategy: str = "protective_put"
    hedge_ratio: Optional[float] = Field(default=None, gt=0.0, le=1.0)


class RecommendationIntent(IntentBase):
    type: Literal["recommendation"] = "recommendation"
    horizon: Literal["short_term", "medium_term", "long_term"] = "medium_term"
    risk_level: Literal["low", "moderate", "high"] = "moderate"


class CustomIntent(IntentBase):
    allows_unknown_symbol: ClassVar[bool] = True

    type: Literal["custom"] = "custom"
    description: str = ""


TradeIntent = Annotated[
    Union[BuyIntent, SellIntent, AnalysisIntent, HedgeIntent, RecommendationIntent, CustomIntent],
    Field(discriminator="type"),
]
trade_intent_adapter = TypeAdapter(TradeIntent)


def parse_trade_intent(data: dict) -> BuyIntent | SellIntent | AnalysisIntent | HedgeIntent | RecommendationIntent | CustomIntent:
    """Builds the right intent class from a dict carrying a `type` key."""
    return trade_intent_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Resolution stages
# ---------------------------------------------------------------------------

Strategy = Literal["deterministic", "cache", "model"]
ResolutionMethod = Literal["deterministic", "cache", "model", "fallback", "error"]


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    confidence: float = Field(ge=0.0, le=1.0)
    complex_score: float = 0.0
    simple_score: float = 0.0
    matched_patterns: tuple[str, ...] = ()


class ParseResult(BaseModel):
    """Deterministic parse outcome; confidence 0 means 'not parsed'."""

    intent: Optional[Union[BuyIntent, SellIntent]] = None
    confidence: float = 0.0
    matched_rule: Optional[str] = None

    @property
    def parsed(self) -> bool:
        return self.intent is not None and self.confidence > 0


class ModelTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    complexity: Literal["simple", "medium", "complex"]
    cost_per_k_tokens_in: float = Field(ge=0.0)
    cost_per_k_tokens_out: float = Field(ge=0.0)
    expected_latency_ms: float = Field(gt=0.0)
    recommended: bool = False

    @property
    def blended_cost(self) -> float:
        return self.cost_per_k_tokens_in + self.cost_per_k_tokens_out


class SelectionConstraints(BaseModel):
    max_latency_ms: Optional[float] = None
    max_cost_per_k_tokens: Optional[float] = None
    prefer_accuracy: bool = False
    prefer_speed: bool = False


class ModelSelection(BaseModel):
    tier: ModelTier
    complexity: float
    score: float
    estimated_tokens: int
    estimated_cost: float
    reason: str = ""

    @property
    def tier_name(self) -> str:
        return self.tier.name

    @property
    def estimated_latency_ms(self) -> float:
        return self.tier.expected_latency_ms


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    text: str
    intent: TradeIntent
    signature: tuple
    vector: tuple[float, ...]
    created_at: float = Field(default_factory=time.time)
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ProcessedIntent(BaseModel):
    intent: TradeIntent
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: float = 0.0
    plugin_type: str
    model: str = "none"
    tokens_used: int = 0
    method: ResolutionMethod
    cost: float = 0.0


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

class TradingOptions(BaseModel):
    dry_run: bool = False
    skip_validation: bool = False
    timeout_ms: Optional[int] = Field(default=None, gt=0)


class TradingRequest(BaseModel):
    id: str = Field(default_factory=lambda: new_id("req"))
    input: str
    context: dict[str, Any] = Field(default_factory=dict)
    options: TradingOptions = Field(default_factory=TradingOptions)


class ResultCosts(BaseModel):
    resolver: float = 0.0
    broker: float = 0.0


class ResultMetadata(BaseModel):
    processing_time_ms: float = 0.0
    costs: ResultCosts = Field(default_factory=ResultCosts)
    steps: list[str] = Field(default_factory=list)
    timed_out_step: Optional[str] = None
    attempts: int = 0


class TradeValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    estimated_cost: float = 0.0
    current_price: Optional[float] = None


class TradeExecution(BaseModel):
    success: bool
    order_id: Optional[str] = None
    status: str = "filled"
    executed_price: Optional[float] = None
    executed_shares: Optional[float] = None
    error: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class TradingResult(BaseModel):
    request_id: str
    success: bool = False
    intent: Optional[ProcessedIntent] = None
    validation: Optional[TradeValidation] = None
    execution: Optional[TradeExecution] = None
    error: Optional[str] = None
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
