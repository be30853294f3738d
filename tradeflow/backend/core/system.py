import asyncio

from loguru import logger

from tradeflow.backend.core.config import Settings, get_settings
from tradeflow.backend.core.errors import ConfigurationError
from tradeflow.backend.engine.complexity_classifier import ComplexityClassifier
from tradeflow.backend.engine.deterministic_parser import DeterministicParser
from tradeflow.backend.engine.input_normalizer import InputNormalizer
from tradeflow.backend.engine.intent_registry import IntentRegistry
from tradeflow.backend.engine.model_selector import DEFAULT_TIERS, ModelSelector
from tradeflow.backend.engine.models import BuyIntent, ModelTier, SellIntent
from tradeflow.backend.engine.orchestrator import OrchestratorConfig, TradingOrchestrator
from tradeflow.backend.engine.resolution_cache import InMemoryResolutionCache
from tradeflow.backend.engine.resolution_pipeline import ResolutionPipeline
from tradeflow.backend.engine.trade_journal import TradeJournal
from tradeflow.backend.interaction.alpaca_broker import AlpacaBrokerGateway
from tradeflow.backend.interaction.broker_gateway import BrokerGateway
from tradeflow.backend.interaction.embeddings import GeminiEmbedder
from tradeflow.backend.interaction.gemini_resolver import GeminiIntentResolver
from tradeflow.backend.interaction.intent_resolver import IntentResolver
from tradeflow.backend.interaction.paper_broker import PaperBrokerGateway
from tradeflow.backend.interaction.plugins.analysis_plugin import AnalysisPlugin
from tradeflow.backend.interaction.plugins.hedge_plugin import HedgePlugin
from tradeflow.backend.interaction.plugins.recommendation_plugin import RecommendationPlugin
from tradeflow.backend.interaction.plugins.trade_plugin import BasicTradePlugin

"""
Core - Trading System wiring.

Builds every component from Settings and hands them to each other
explicitly. The FastAPI app keeps one TradingSystem on `app.state`; tests
build their own with stub collaborators.
"""

CACHE_SEEDS = [
    ("buy 100 dollars of AAPL", BuyIntent(symbol="AAPL", amount_type="dollars", amount=100, confidence=0.95)),
    ("buy 10 shares of MSFT", BuyIntent(symbol="MSFT", amount_type="shares", amount=10, confidence=0.95)),
    ("sell all TSLA", SellIntent(symbol="TSLA", amount_type="shares", amount=-1, confidence=0.9)),
]


def default_plugins():
    return [BasicTradePlugin(), HedgePlugin(), AnalysisPlugin(), RecommendationPlugin()]


class TradingSystem:
    """
    Owns the component graph and its background tasks.

    Args:
        settings: Application settings; defaults to get_settings().
        resolver: Overrides the Gemini resolver (tests, offline runs).
        broker: Overrides the broker chosen by BROKER_PROVIDER.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        resolver: IntentResolver | None = None,
        broker: BrokerGateway | None = None,
        journal: TradeJournal | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        tiers = [ModelTier(**tier) for tier in s.MODEL_TIERS] if s.MODEL_TIERS else list(DEFAULT_TIERS)
        self.resolver = resolver or GeminiIntentResolver(
            api_key=s.GEMINI_API_KEY,
            costs={t.name: (t.cost_per_k_tokens_in, t.cost_per_k_tokens_out) for t in tiers},
        )

        embedder = None
        if s.CACHE_USE_EMBEDDINGS:
            client = getattr(self.resolver, "client", None)
            if client is None:
                raise ConfigurationError("CACHE_USE_EMBEDDINGS needs a configured Gemini client")
            embedder = GeminiEmbedder(client, model=s.GEMINI_EMBEDDING_MODEL)

        self.normalizer = InputNormalizer()
        self.classifier = ComplexityClassifier(
            complex_threshold=s.CLASSIFIER_COMPLEX_THRESHOLD,
            simple_threshold=s.CLASSIFIER_SIMPLE_THRESHOLD,
            cache_threshold=s.CLASSIFIER_CACHE_THRESHOLD,
        )
        self.parser = DeterministicParser()
        self.cache = InMemoryResolutionCache(
            ttl_seconds=s.CACHE_TTL_SECONDS,
            similarity_threshold=s.CACHE_SIMILARITY_THRESHOLD,
            max_entries=s.CACHE_MAX_ENTRIES,
            embedder=embedder,
        )
        self.selector = ModelSelector(tiers)
        self.pipeline = ResolutionPipeline(
            normalizer=self.normalizer,
            classifier=self.classifier,
            parser=self.parser,
            cache=self.cache,
            selector=self.selector,
            resolver=self.resolver,
            cache_min_confidence=s.CACHE_MIN_CONFIDENCE,
            resolver_timeout_ms=s.INTENT_PARSING_TIMEOUT_MS,
        )
        self.registry = IntentRegistry(
            self.pipeline,
            plugins=default_plugins(),
            fallback_strategy=s.FALLBACK_STRATEGY,
            default_plugin=s.DEFAULT_PLUGIN,
            max_concurrency=s.MAX_CONCURRENCY,
        )
        self.broker = broker or self._build_broker()
        if journal is None and s.JOURNAL_ENABLED:
            journal = TradeJournal.connect(s.MONGODB_URL, s.DATABASE_NAME)
        self.journal = journal
        self.orchestrator = TradingOrchestrator(
            registry=self.registry,
            broker=self.broker,
            resolver=self.resolver,
            config=OrchestratorConfig.from_settings(s),
            journal=self.journal,
        )
        self._sweeper: asyncio.Task | None = None

    def _build_broker(self) -> BrokerGateway:
        s = self.settings
        if s.BROKER_PROVIDER == "alpaca":
            if not (s.ALPACA_API_KEY and s.ALPACA_SECRET_KEY):
                raise ConfigurationError("BROKER_PROVIDER=alpaca needs ALPACA_API_KEY and ALPACA_SECRET_KEY")
            logger.info(f"Using Alpaca broker at {s.ALPACA_BASE_URL}")
            return AlpacaBrokerGateway(
                api_key=s.ALPACA_API_KEY,
                secret_key=s.ALPACA_SECRET_KEY,
                base_url=s.ALPACA_BASE_URL,
                data_url=s.ALPACA_DATA_URL,
            )
        logger.info("Using paper broker")
        return PaperBrokerGateway(
            starting_cash=s.PAPER_STARTING_CASH,
            max_position_size=s.MAX_POSITION_SIZE,
            max_daily_spending=s.MAX_DAILY_SPENDING,
        )

    async def _sweep_forever(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            removed = await self.cache.sweep()
            if removed:
                logger.debug(f"Background sweep evicted {removed} cache entries")

    async def start(self, warm_cache: bool = True):
        if warm_cache:
            await self.cache.warm(CACHE_SEEDS)
        if self.settings.CACHE_SWEEP_INTERVAL_SECONDS > 0 and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(self.settings.CACHE_SWEEP_INTERVAL_SECONDS))
        logger.success("Trading system started")

    async def stop(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.broker.aclose()
        if self.journal is not None:
            self.journal.close()
        logger.info("Trading system stopped")

    def stats(self) -> dict:
        return {
            "orchestrator": self.orchestrator.stats(),
            "pipeline": self.pipeline.stats(),
            "normalizer": self.normalizer.stats(),
            "parser": self.parser.stats(),
            "cost_report": self.selector.cost_report(),
        }
