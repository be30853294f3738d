import time
from typing import Any, Iterable

from loguru import logger
from pydantic import BaseModel, Field

from tradeflow.backend.core.deadline import run_with_timeout
from tradeflow.backend.core.errors import ResolutionError, StepTimeoutError
from tradeflow.backend.engine.complexity_classifier import ComplexityClassifier
from tradeflow.backend.engine.deterministic_parser import DeterministicParser
from tradeflow.backend.engine.input_normalizer import InputNormalizer
from tradeflow.backend.engine.model_selector import ModelSelector
from tradeflow.backend.engine.models import (
    ClassificationResult,
    ResolutionMethod,
    SelectionConstraints,
    TradeIntent,
    new_id,
)
from tradeflow.backend.engine.resolution_cache import ResolutionCache
from tradeflow.backend.interaction.intent_resolver import IntentResolver, ResolutionRequest

"""
Engine - Resolution Pipeline.

Turns a command into structured intent data by the cheapest reliable path:
deterministic parser, then similarity cache, then the external resolver.
The classifier decides where in that order to start; a failed tier falls
through to the next one and each tier is tried at most once.
"""

CASCADE = {
    "deterministic": ("deterministic", "cache", "model"),
    "cache": ("cache", "model"),
    "model": ("model",),
}


class Resolution(BaseModel):
    data: dict[str, Any]
    confidence: float
    method: ResolutionMethod
    model: str = "none"
    tokens_used: int = 0
    cost: float = 0.0
    normalized_text: str
    classification: ClassificationResult
    attempted: list[str] = Field(default_factory=list)


class ResolutionPipeline:
    def __init__(
        self,
        normalizer: InputNormalizer,
        classifier: ComplexityClassifier,
        parser: DeterministicParser,
        cache: ResolutionCache,
        selector: ModelSelector,
        resolver: IntentResolver | None,
        cache_min_confidence: float = 0.8,
        resolver_timeout_ms: float = 30000,
    ):
        self.normalizer = normalizer
        self.classifier = classifier
        self.parser = parser
        self.cache = cache
        self.selector = selector
        self.resolver = resolver
        self.cache_min_confidence = cache_min_confidence
        self.resolver_timeout_ms = resolver_timeout_ms
        self._counts = {"deterministic": 0, "cache": 0, "model": 0, "failed": 0}

    async def resolve(
        self,
        text: str,
        plugin_schema: dict | None = None,
        accepted_types: Iterable[str] = ("buy", "sell"),
        context: dict | None = None,
        constraints: SelectionConstraints | None = None,
    ) -> Resolution:
        """
        Resolves `text` into data for a plugin.

        Args:
            text: Raw or normalized command.
            plugin_schema: Schema handed to the external resolver.
            accepted_types: Intent types the calling plugin can transform;
                deterministic and cached intents of other types are skipped.
            context: Caller context forwarded to the resolver.
            constraints: Latency/cost ceilings for model tier selection.

        Returns:
            Resolution with a confidence above zero.

        Raises:
            ResolutionError: when every tier in the cascade failed.
        """
        normalized = self.normalizer.normalize(text)
        if not normalized:
            raise ResolutionError("Cannot resolve an empty command")

        classification = self.classifier.classify(normalized)
        accepted = set(accepted_types)
        attempted: list[str] = []
        last_error: Exception | None = None

        for tier in CASCADE[classification.strategy]:
            attempted.append(tier)
            try:
                if tier == "deterministic":
                    resolution = self._from_parser(normalized, classification, accepted)
                elif tier == "cache":
                    resolution = await self._from_cache(normalized, classification, accepted)
                else:
                    resolution = await self._from_model(normalized, classification, plugin_schema, context, constraints)
            except (ResolutionError, StepTimeoutError) as e:
                logger.warning(f"Resolution tier '{tier}' failed for '{normalized}': {e}")
                last_error = e
                continue

            if resolution is not None:
                resolution.attempted = attempted
                self._counts[tier] += 1
                logger.info(f"Resolved '{normalized}' via {tier} (confidence={resolution.confidence:.2f})")
                return resolution

        self._counts["failed"] += 1
        message = f"No resolution strategy succeeded for '{normalized}' (tried {', '.join(attempted)})"
        if last_error is not None:
            message = f"{message}: {last_error}"
        raise ResolutionError(message)

    def _from_parser(self, normalized: str, classification: ClassificationResult, accepted: set) -> Resolution | None:
        result = self.parser.parse(normalized)
        if not result.parsed or result.intent.type not in accepted:
            return None
        return Resolution(
            data=result.intent.model_dump(exclude={"id"}),
            confidence=result.confidence,
            method="deterministic",
            normalized_text=normalized,
            classification=classification,
        )

    async def _from_cache(self, normalized: str, classification: ClassificationResult, accepted: set) -> Resolution | None:
        try:
            intent = await self.cache.lookup(normalized)
        except Exception as e:
            raise ResolutionError(f"Cache lookup failed: {e}") from e
        if intent is None or intent.type not in accepted or intent.confidence <= 0:
            return None
        return Resolution(
            data=intent.model_dump(exclude={"id"}),
            confidence=intent.confidence,
            method="cache",
            normalized_text=normalized,
            classification=classification,
        )

    async def _from_model(
        self,
        normalized: str,
        classification: ClassificationResult,
        plugin_schema: dict | None,
        context: dict | None,
        constraints: SelectionConstraints | None,
    ) -> Resolution:
        if self.resolver is None:
            raise ResolutionError("No intent resolver is configured")

        selection = self.selector.select(normalized, classification, constraints)
        request = ResolutionRequest(
            id=new_id("res"),
            text=normalized,
            plugin_schema=plugin_schema or {},
            context=context or {},
            model=selection.tier_name,
        )

        start = time.perf_counter()
        try:
            response = await run_with_timeout("resolving_intent", self.resolver.resolve(request), self.resolver_timeout_ms)
        except (ResolutionError, StepTimeoutError):
            raise
        except Exception as e:
            raise ResolutionError(f"Intent resolver failed: {e}") from e

        if response.confidence <= 0 or not response.data:
            raise ResolutionError("Intent resolver returned no usable data")

        tier = self.selector.get_tier(response.model) or selection.tier
        cost = self.selector.estimate_cost(tier, response.tokens_in, response.tokens_out)
        logger.debug(
            f"Resolver answered in {(time.perf_counter() - start) * 1000:.0f}ms "
            f"using {response.model} ({response.tokens_used} tokens, ${cost:.6f})"
        )
        return Resolution(
            data=response.data,
            confidence=response.confidence,
            method="model",
            model=response.model,
            tokens_used=response.tokens_used,
            cost=cost,
            normalized_text=normalized,
            classification=classification,
        )

    async def remember(self, normalized: str, intent: TradeIntent, method: str) -> bool:
        """Caches a model-path intent when its confidence clears the threshold."""
        if method != "model" or intent.confidence < self.cache_min_confidence:
            return False
        try:
            await self.cache.store(normalized, intent)
        except Exception as e:
            logger.warning(f"Could not cache resolution for '{normalized}': {e}")
            return False
        return True

    def stats(self) -> dict:
        return {
            "resolutions": dict(self._counts),
            "cache": self.cache.stats(),
            "models": self.selector.usage_stats(),
        }
