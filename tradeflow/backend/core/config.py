from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # API Settings
    APP_NAME: str = "TradeFlow Intent Engine"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Risk limits (enforced by the paper broker gateway)
    MAX_POSITION_SIZE: float = 500.0
    MAX_DAILY_SPENDING: float = 1000.0

    # Orchestrator step timeouts
    INTENT_PARSING_TIMEOUT_MS: int = 30000
    TRADE_VALIDATION_TIMEOUT_MS: int = 10000
    TRADE_EXECUTION_TIMEOUT_MS: int = 30000
    EXECUTION_RETRIES: int = 3
    RETRY_BACKOFF_MS: int = 1000
    VALIDATION_REQUIRED: bool = True

    # Resolution cache
    CACHE_TTL_SECONDS: float = 30.0
    CACHE_SIMILARITY_THRESHOLD: float = 0.85
    CACHE_MAX_ENTRIES: int = 1000
    CACHE_MIN_CONFIDENCE: float = 0.8
    CACHE_SWEEP_INTERVAL_SECONDS: float = 60.0
    CACHE_USE_EMBEDDINGS: bool = False

    # Classifier thresholds
    CLASSIFIER_COMPLEX_THRESHOLD: float = 0.6
    CLASSIFIER_SIMPLE_THRESHOLD: float = 0.8
    CLASSIFIER_CACHE_THRESHOLD: float = 0.4

    # Model tiers (empty list means the built-in catalog)
    MODEL_TIERS: list[dict] = []

    # Intent registry
    FALLBACK_STRATEGY: Literal["best_effort", "default"] = "best_effort"
    DEFAULT_PLUGIN: str = "basic_trade"
    MAX_CONCURRENCY: int = 10

    # Broker
    BROKER_PROVIDER: Literal["paper", "alpaca"] = "paper"
    PAPER_STARTING_CASH: float = 10000.0
    ALPACA_API_KEY: str = ""
    ALPACA_SECRET_KEY: str = ""
    ALPACA_BASE_URL: str = "https://paper-api.alpaca.markets"
    ALPACA_DATA_URL: str = "https://data.alpaca.markets"

    # MongoDB Settings (trade journal)
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "tradeflow"
    JOURNAL_ENABLED: bool = False
    JOURNAL_TIMEOUT_MS: int = 2000

    # External Services
    GEMINI_API_KEY: str = ""
    GEMINI_EMBEDDING_MODEL: str = "text-embedding-004"

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings():
    return Settings()
