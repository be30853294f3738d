import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from tradeflow.backend.core.errors import IntentValidationError, PluginNotRegisteredError
from tradeflow.backend.engine.lexicon import UNKNOWN_SYMBOL
from tradeflow.backend.engine.models import CustomIntent, ProcessedIntent, SelectionConstraints, TradeIntent
from tradeflow.backend.engine.resolution_pipeline import ResolutionPipeline

"""
Engine - Intent Registry.

Holds the intent plugins and routes each command to one of them. A plugin
declares which commands it can handle, validates the structured data the
resolution pipeline produces, and transforms it into a canonical TradeIntent.
"""

FallbackStrategy = Literal["best_effort", "default"]


class PluginValidation(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class IntentPlugin(ABC):
    """
    Base class for intent plugins.

    Subclasses set `type`, `priority`, `intent_types` and `schema`. The
    schema is a plain dict (description, fields, examples) passed verbatim to
    the external resolver.
    """

    type: str = ""
    priority: int = 0
    intent_types: tuple[str, ...] = ()
    schema: dict[str, Any] = {}
    enabled: bool = True

    @abstractmethod
    def can_handle(self, text: str) -> bool:
        ...

    @abstractmethod
    def complexity(self, text: str) -> float:
        ...

    @abstractmethod
    def validate(self, data: dict) -> PluginValidation:
        ...

    @abstractmethod
    def transform(self, data: dict, context: dict | None = None) -> TradeIntent:
        ...


def priority_then_complexity(plugin: IntentPlugin, text: str) -> tuple:
    """Default plugin ordering: highest priority first, then the cheaper plugin."""
    return (-plugin.priority, plugin.complexity(text))


def _stub_intent(text: str, confidence: float, reason: str) -> CustomIntent:
    return CustomIntent(
        symbol=UNKNOWN_SYMBOL,
        confidence=confidence,
        description=reason,
        metadata={"original_input": text},
    )


class IntentRegistry:
    def __init__(
        self,
        pipeline: ResolutionPipeline,
        plugins: list[IntentPlugin] | None = None,
        fallback_strategy: FallbackStrategy = "best_effort",
        default_plugin: str | None = None,
        max_concurrency: int = 10,
        sort_key: Callable[[IntentPlugin, str], Any] = priority_then_complexity,
    ):
        if fallback_strategy == "default" and not default_plugin:
            raise ValueError("fallback_strategy 'default' needs a default_plugin")
        self.pipeline = pipeline
        self.fallback_strategy = fallback_strategy
        self.default_plugin = default_plugin
        self.max_concurrency = max(1, max_concurrency)
        self.sort_key = sort_key
        self._plugins: dict[str, IntentPlugin] = {}
        self._counts: dict[str, int] = {"processed": 0, "fallbacks": 0, "failures": 0}
        self._by_plugin: dict[str, int] = {}
        self._total_ms = 0.0
        for plugin in plugins or []:
            self.register(plugin)

    # ------------------------------------------------------------------
    # Plugin management
    # ------------------------------------------------------------------

    def register(self, plugin: IntentPlugin):
        if not plugin.type:
            raise ValueError("plugin must declare a type")
        if plugin.type in self._plugins:
            logger.warning(f"Replacing registered plugin '{plugin.type}'")
        self._plugins[plugin.type] = plugin
        logger.info(f"Registered intent plugin '{plugin.type}' (priority {plugin.priority})")

    def unregister(self, plugin_type: str) -> bool:
        removed = self._plugins.pop(plugin_type, None)
        if removed:
            logger.info(f"Unregistered intent plugin '{plugin_type}'")
        return removed is not None

    def get_plugin(self, plugin_type: str) -> IntentPlugin:
        try:
            return self._plugins[plugin_type]
        except KeyError:
            raise PluginNotRegisteredError(f"No intent plugin registered for type '{plugin_type}'") from None

    def list_plugins(self) -> list[IntentPlugin]:
        return sorted(self._plugins.values(), key=lambda p: p.priority, reverse=True)

    def supports(self, plugin_type: str) -> bool:
        return plugin_type in self._plugins

    def select_plugin(self, text: str) -> IntentPlugin | None:
        """First plugin that can handle `text` under `sort_key` (by default highest priority, then cheapest)."""
        candidates = [p for p in self._plugins.values() if p.enabled and p.can_handle(text)]
        if not candidates:
            return None
        candidates.sort(key=lambda p: self.sort_key(p, text))
        return candidates[0]

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, text: str, context: dict | None = None) -> ProcessedIntent:
        """
        Resolves one command into a ProcessedIntent.

        Raises:
            ResolutionError: no resolution tier produced data.
            IntentValidationError: the plugin rejected the resolved data.
            PluginNotRegisteredError: the 'default' fallback names a missing plugin.
        """
        start = time.perf_counter()
        context = context or {}
        normalized = self.pipeline.normalizer.normalize(text)

        plugin = self.select_plugin(normalized)
        if plugin is None:
            if self.fallback_strategy == "default":
                plugin = self.get_plugin(self.default_plugin)
                logger.info(f"No plugin matched; routing to default plugin '{plugin.type}'")
            else:
                self._counts["fallbacks"] += 1
                logger.info(f"No plugin matched '{normalized}'; returning best-effort stub")
                return ProcessedIntent(
                    intent=_stub_intent(text, 0.1, "No intent plugin could handle this input"),
                    confidence=0.1,
                    processing_time_ms=(time.perf_counter() - start) * 1000,
                    plugin_type="fallback",
                    method="fallback",
                )

        try:
            constraints = SelectionConstraints(**context["constraints"]) if "constraints" in context else None
        except (ValidationError, TypeError) as e:
            raise IntentValidationError(f"Invalid selection constraints: {e}") from e
        resolution = await self.pipeline.resolve(
            normalized,
            plugin_schema=plugin.schema,
            accepted_types=plugin.intent_types,
            context=context,
            constraints=constraints,
        )

        validation = plugin.validate(resolution.data)
        if not validation.is_valid:
            raise IntentValidationError(
                f"{plugin.type} rejected resolved data: {'; '.join(validation.errors)}",
                errors=validation.errors,
                warnings=validation.warnings,
            )

        try:
            intent = plugin.transform(resolution.data, context)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise IntentValidationError(f"{plugin.type} could not build an intent: {e}") from e

        intent = intent.model_copy(update={"confidence": resolution.confidence})
        if validation.warnings:
            intent.metadata["warnings"] = list(validation.warnings)

        await self.pipeline.remember(normalized, intent, resolution.method)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._counts["processed"] += 1
        self._by_plugin[plugin.type] = self._by_plugin.get(plugin.type, 0) + 1
        self._total_ms += elapsed_ms
        return ProcessedIntent(
            intent=intent,
            confidence=resolution.confidence,
            processing_time_ms=elapsed_ms,
            plugin_type=plugin.type,
            model=resolution.model,
            tokens_used=resolution.tokens_used,
            method=resolution.method,
            cost=resolution.cost,
        )

    async def batch_process(self, texts: list[str], context: dict | None = None) -> list[ProcessedIntent]:
        """
        Processes commands in windows of `max_concurrency`. A failing item
        becomes a zero-confidence custom intent and never affects its siblings.
        """
        results: list[ProcessedIntent] = []
        for offset in range(0, len(texts), self.max_concurrency):
            window = texts[offset:offset + self.max_concurrency]
            outcomes = await asyncio.gather(
                *(self.process(text, context) for text in window),
                return_exceptions=True,
            )
            for text, outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception) or isinstance(outcome, PluginNotRegisteredError):
                        raise outcome
                    self._counts["failures"] += 1
                    logger.error(f"Batch item failed for '{text}': {outcome}")
                    results.append(
                        ProcessedIntent(
                            intent=_stub_intent(text, 0.0, f"error: {outcome}"),
                            confidence=0.0,
                            plugin_type="error",
                            method="error",
                        )
                    )
                else:
                    results.append(outcome)
        return results

    def stats(self) -> dict:
        processed = self._counts["processed"]
        attempted = processed + self._counts["failures"]
        return {
            **self._counts,
            "success_rate": processed / attempted if attempted else 0.0,
            "average_latency_ms": self._total_ms / processed if processed else 0.0,
            "by_plugin": dict(self._by_plugin),
            "plugins": [
                {"type": p.type, "priority": p.priority, "enabled": p.enabled} for p in self.list_plugins()
            ],
            "fallback_strategy": self.fallback_strategy,
        }
