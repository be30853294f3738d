import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger
from pydantic import BaseModel

from tradeflow.backend.core.deadline import run_with_timeout
from tradeflow.backend.core.errors import (
    ExecutionError,
    IntentValidationError,
    PluginNotRegisteredError,
    StepTimeoutError,
    TradeFlowError,
)
from tradeflow.backend.engine.intent_registry import IntentRegistry
from tradeflow.backend.engine.lexicon import is_valid_symbol
from tradeflow.backend.engine.models import (
    EXECUTABLE_INTENT_TYPES,
    OrderIntent,
    TradeExecution,
    TradingRequest,
    TradingResult,
)
from tradeflow.backend.engine.trade_journal import TradeJournal
from tradeflow.backend.interaction.broker_gateway import BrokerGateway
from tradeflow.backend.interaction.intent_resolver import IntentResolver

"""
Engine - Trading Orchestrator.

Central coordinator for a trading request: parse the command into an intent,
validate the trade with the broker, then execute it with bounded retries.
Every step runs under its own deadline, and pipeline errors end up in the
result's `error` field instead of escaping to the caller.
"""

PARSING_INTENT = "parsing_intent"
VALIDATING_TRADE = "validating_trade"
EXECUTING_TRADE = "executing_trade"


class OrchestratorConfig(BaseModel):
    intent_parsing_timeout_ms: float = 30000
    trade_validation_timeout_ms: float = 10000
    trade_execution_timeout_ms: float = 30000
    execution_retries: int = 3
    retry_backoff_ms: float = 1000
    validation_required: bool = True
    health_timeout_ms: float = 5000
    journal_timeout_ms: float = 2000
    broker_fee_per_trade: float = 0.0

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(
            intent_parsing_timeout_ms=settings.INTENT_PARSING_TIMEOUT_MS,
            trade_validation_timeout_ms=settings.TRADE_VALIDATION_TIMEOUT_MS,
            trade_execution_timeout_ms=settings.TRADE_EXECUTION_TIMEOUT_MS,
            execution_retries=settings.EXECUTION_RETRIES,
            retry_backoff_ms=settings.RETRY_BACKOFF_MS,
            validation_required=settings.VALIDATION_REQUIRED,
            journal_timeout_ms=settings.JOURNAL_TIMEOUT_MS,
        )


class TradingOrchestrator:
    def __init__(
        self,
        registry: IntentRegistry,
        broker: BrokerGateway,
        resolver: IntentResolver | None = None,
        config: OrchestratorConfig | None = None,
        journal: TradeJournal | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.broker = broker
        self.resolver = resolver
        self.config = config or OrchestratorConfig()
        self.journal = journal
        self._sleep = sleep
        self._stats = {
            "total_requests": 0,
            "successful": 0,
            "failed": 0,
            "dry_runs": 0,
            "timeouts": 0,
            "execution_attempts": 0,
            "resolver_cost": 0.0,
            "broker_cost": 0.0,
            "total_processing_ms": 0.0,
        }

    async def process_trading_request(self, request: TradingRequest) -> TradingResult:
        """
        Runs one request through parse -> validate -> execute.

        Args:
            request (TradingRequest): The command plus its options.

        Returns:
            TradingResult: always returned for pipeline failures; only
            contract errors (e.g. an unregistered default plugin) propagate.
        """
        result = TradingResult(request_id=request.id)
        try:
            await self._run(request, result)
        finally:
            self._finish(request, result)
        await self._journal(result)
        return result

    async def _run(self, request: TradingRequest, result: TradingResult):
        start = time.perf_counter()
        steps = result.metadata.steps
        try:
            # 1. Parse intent
            steps.append(PARSING_INTENT)
            parse_timeout = request.options.timeout_ms or self.config.intent_parsing_timeout_ms
            processed = await run_with_timeout(
                PARSING_INTENT, self.registry.process(request.input, request.context), parse_timeout
            )
            result.intent = processed
            result.metadata.costs.resolver += processed.cost
            intent = processed.intent
            logger.info(
                f"[{request.id}] Parsed {intent.type} {intent.symbol} via {processed.method} "
                f"(plugin={processed.plugin_type}, confidence={processed.confidence:.2f})"
            )

            # 2. Non-trade intents end here
            if intent.type not in EXECUTABLE_INTENT_TYPES:
                result.success = True
                return

            if not is_valid_symbol(intent.symbol):
                raise IntentValidationError(f"Invalid symbol '{intent.symbol}'")

            # 3. Validate with the broker
            if request.options.skip_validation or not self.config.validation_required:
                logger.debug(f"[{request.id}] Skipping trade validation")
            else:
                steps.append(VALIDATING_TRADE)
                validation = await self._validate(intent)
                result.validation = validation
                if not validation.is_valid:
                    result.error = f"Trade validation failed: {'; '.join(validation.errors)}"
                    logger.warning(f"[{request.id}] {result.error}")
                    return

            # 4. Dry run stops before execution
            if request.options.dry_run:
                logger.info(f"[{request.id}] Dry run: not executing {intent.type} {intent.symbol}")
                result.success = True
                return

            # 5. Execute with retries
            steps.append(EXECUTING_TRADE)
            result.execution = await self._execute_with_retries(request.id, intent, result)
            result.metadata.costs.broker += self.config.broker_fee_per_trade
            result.success = True

        except StepTimeoutError as e:
            result.error = str(e)
            result.metadata.timed_out_step = e.step
            logger.error(f"[{request.id}] {e}")
        except TradeFlowError as e:
            result.error = str(e)
            logger.error(f"[{request.id}] {type(e).__name__}: {e}")
        except PluginNotRegisteredError:
            raise
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.exception(f"[{request.id}] Unexpected failure: {e}")
        finally:
            result.metadata.processing_time_ms = (time.perf_counter() - start) * 1000

    async def _validate(self, intent: OrderIntent):
        try:
            return await run_with_timeout(
                VALIDATING_TRADE, self.broker.validate_trade(intent), self.config.trade_validation_timeout_ms
            )
        except TradeFlowError:
            raise
        except Exception as e:
            raise IntentValidationError(f"Broker validation error: {e}") from e

    async def _execute_with_retries(self, request_id: str, intent: OrderIntent, result: TradingResult) -> TradeExecution:
        attempts = self.config.execution_retries + 1
        last_error: TradeFlowError | None = None

        for attempt in range(1, attempts + 1):
            result.metadata.attempts = attempt
            self._stats["execution_attempts"] += 1
            try:
                execution = await run_with_timeout(
                    EXECUTING_TRADE, self.broker.execute_trade(intent), self.config.trade_execution_timeout_ms
                )
                if execution.success:
                    logger.success(f"[{request_id}] Executed {intent.type} {intent.symbol} on attempt {attempt}")
                    return execution
                result.execution = execution
                last_error = ExecutionError(execution.error or "Broker rejected the order")
            except StepTimeoutError as e:
                last_error = e
            except TradeFlowError as e:
                last_error = e
            except Exception as e:
                last_error = ExecutionError(f"Broker execution error: {e}")

            if attempt < attempts:
                delay_ms = self.config.retry_backoff_ms * attempt
                logger.warning(f"[{request_id}] Execution attempt {attempt}/{attempts} failed ({last_error}); retrying in {delay_ms:.0f}ms")
                await self._sleep(delay_ms / 1000)

        if isinstance(last_error, StepTimeoutError):
            raise last_error
        raise ExecutionError(f"Execution failed after {attempts} attempts: {last_error}")

    def _finish(self, request: TradingRequest, result: TradingResult):
        self._stats["total_requests"] += 1
        self._stats["successful" if result.success else "failed"] += 1
        if request.options.dry_run and result.success:
            self._stats["dry_runs"] += 1
        if result.metadata.timed_out_step:
            self._stats["timeouts"] += 1
        self._stats["resolver_cost"] += result.metadata.costs.resolver
        self._stats["broker_cost"] += result.metadata.costs.broker
        self._stats["total_processing_ms"] += result.metadata.processing_time_ms

    async def _journal(self, result: TradingResult):
        if self.journal is None:
            return
        try:
            await run_with_timeout("journaling_result", self.journal.record(result), self.config.journal_timeout_ms)
        except Exception as e:
            logger.error(f"[{result.request_id}] Failed to journal result: {e}")

    async def batch_process_trading_requests(self, requests: list[TradingRequest]) -> list[TradingResult]:
        """Processes requests concurrently; one failing request never affects another's result."""
        return list(await asyncio.gather(*(self.process_trading_request(request) for request in requests)))

    async def _probe(self, name: str, check: Callable[[], Awaitable[bool]] | None) -> bool:
        if check is None:
            return False
        try:
            return bool(await run_with_timeout(f"{name}_health", check(), self.config.health_timeout_ms))
        except Exception as e:
            logger.warning(f"Health check for {name} failed: {e}")
            return False

    async def health_check(self) -> dict:
        resolver_ok, broker_ok = await asyncio.gather(
            self._probe("resolver", self.resolver.health if self.resolver else None),
            self._probe("broker", self.broker.health),
        )
        return {
            "healthy": resolver_ok and broker_ok,
            "services": {"resolver": resolver_ok, "broker": broker_ok},
        }

    def stats(self) -> dict:
        total = self._stats["total_requests"]
        return {
            **self._stats,
            "success_rate": self._stats["successful"] / total if total else 0.0,
            "average_processing_ms": self._stats["total_processing_ms"] / total if total else 0.0,
            "average_cost": (self._stats["resolver_cost"] + self._stats["broker_cost"]) / total if total else 0.0,
            "registry": self.registry.stats(),
        }
