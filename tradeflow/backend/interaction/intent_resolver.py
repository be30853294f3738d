from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

"""
Interaction Layer - Intent Resolver contract.

The resolver turns a command into structured data that fits a plugin schema.
It is an external collaborator (an LLM in production, a stub in tests);
the pipeline only relies on this contract.
"""


class ResolutionRequest(BaseModel):
    id: str
    text: str
    plugin_schema: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None


class ResolutionResponse(BaseModel):
    data: dict[str, Any]
    confidence: float = Field(ge=0.0, le=1.0)
    model: str
    tokens_in: int = 0
    tokens_out: int = 0

    @property
    def tokens_used(self) -> int:
        return self.tokens_in + self.tokens_out


class IntentResolver(ABC):
    @abstractmethod
    async def resolve(self, request: ResolutionRequest) -> ResolutionResponse:
        """Returns structured data for `request.text`; raises on failure."""

    @abstractmethod
    async def health(self) -> bool:
        ...

    @abstractmethod
    def cost_per_k_tokens(self) -> dict[str, float]:
        """{'in': ..., 'out': ...} for the resolver's default model."""
