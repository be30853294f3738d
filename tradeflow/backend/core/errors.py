"""Exception hierarchy for the trade intent engine."""


class TradeFlowError(Exception):
    """Base class for every pipeline-level error."""

    code = "tradeflow_error"


class ResolutionError(TradeFlowError):
    """No resolution strategy produced a usable intent."""

    code = "resolution_failed"


class IntentValidationError(TradeFlowError):
    """Structured data or a trade was rejected by a validator."""

    code = "validation_failed"

    def __init__(self, message: str, errors: list[str] | None = None, warnings: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []
        self.warnings = warnings or []


class ExecutionError(TradeFlowError):
    """The broker rejected or failed to execute a trade."""

    code = "execution_failed"


class StepTimeoutError(TradeFlowError):
    """A pipeline step did not finish before its deadline."""

    code = "step_timeout"

    def __init__(self, step: str, timeout_ms: float):
        super().__init__(f"{step} timed out after {timeout_ms:.0f}ms")
        self.step = step
        self.timeout_ms = timeout_ms


class ConfigurationError(TradeFlowError):
    """Settings are missing or inconsistent."""

    code = "configuration_error"


class PluginNotRegisteredError(LookupError):
    """Contract violation: a plugin type was requested that is not registered.

    Not a TradeFlowError: the orchestrator never captures it into a result.
    """
