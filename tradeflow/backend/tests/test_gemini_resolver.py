from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from tradeflow.backend.core.errors import ResolutionError
from tradeflow.backend.interaction.embeddings import GeminiEmbedder
from tradeflow.backend.interaction.gemini_resolver import GeminiIntentResolver, build_prompt, clean_json
from tradeflow.backend.interaction.intent_resolver import ResolutionRequest


class _Models:
    def __init__(self, text: str = "{}", error: Exception | None = None, usage=None) -> None:
        self.text = text
        self.error = error
        self.usage = usage
        self.calls: list[dict] = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text, usage_metadata=self.usage)

    async def get(self, model):
        return SimpleNamespace(name=model)

    async def embed_content(self, model, contents):
        return SimpleNamespace(embeddings=[SimpleNamespace(values=[0.1, 0.2, 0.3])])


def _client(models: _Models):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


def _request(**kw) -> ResolutionRequest:
    fields = {"id": "res-1", "text": "hedge my LULU shares", "plugin_schema": {"description": "Extract a hedge."}}
    fields.update(kw)
    return ResolutionRequest(**fields)


def test_resolve_parses_fenced_json():
    models = _Models(
        text='```json\n{"type": "hedge", "symbol": "LULU", "confidence": 0.7}\n```',
        usage=SimpleNamespace(prompt_token_count=120, candidates_token_count=30),
    )
    resolver = GeminiIntentResolver(client=_client(models))
    response = asyncio.run(resolver.resolve(_request(model="gemini-2.5-flash")))
    assert response.data == {"type": "hedge", "symbol": "LULU"}
    assert response.confidence == 0.7
    assert response.model == "gemini-2.5-flash"
    assert response.tokens_used == 150
    assert models.calls[0]["model"] == "gemini-2.5-flash"
    assert "Extract a hedge." in models.calls[0]["contents"]


def test_missing_confidence_uses_default_and_token_estimate():
    resolver = GeminiIntentResolver(client=_client(_Models(text='{"type": "hedge", "symbol": "LULU"}')))
    response = asyncio.run(resolver.resolve(_request()))
    assert response.confidence == 0.85
    assert response.model == "gemini-2.5-flash-lite"
    assert response.tokens_in > 0 and response.tokens_out > 0


def test_out_of_range_confidence_is_clamped():
    resolver = GeminiIntentResolver(client=_client(_Models(text='{"symbol": "LULU", "confidence": 3}')))
    assert asyncio.run(resolver.resolve(_request())).confidence == 1.0


def test_malformed_json_raises_resolution_error():
    resolver = GeminiIntentResolver(client=_client(_Models(text="I think you want LULU")))
    with pytest.raises(ResolutionError):
        asyncio.run(resolver.resolve(_request()))


def test_api_error_raises_resolution_error():
    resolver = GeminiIntentResolver(client=_client(_Models(error=RuntimeError("429 quota"))))
    with pytest.raises(ResolutionError, match="429 quota"):
        asyncio.run(resolver.resolve(_request()))


def test_unconfigured_resolver():
    resolver = GeminiIntentResolver(api_key="")
    with pytest.raises(ResolutionError):
        asyncio.run(resolver.resolve(_request()))
    assert asyncio.run(resolver.health()) is False


def test_health_and_costs():
    resolver = GeminiIntentResolver(client=_client(_Models()), costs={"gemini-2.5-flash-lite": (0.0001, 0.0004)})
    assert asyncio.run(resolver.health()) is True
    assert resolver.cost_per_k_tokens() == {"in": 0.0001, "out": 0.0004}


def test_prompt_carries_schema_and_context():
    prompt = build_prompt(
        _request(
            plugin_schema={"description": "Extract a trade.", "fields": {"symbol": "ticker"}, "examples": ["buy AAPL"]},
            context={"risk_level": "high"},
        )
    )
    assert "Extract a trade." in prompt
    assert '"symbol": "ticker"' in prompt
    assert "- buy AAPL" in prompt
    assert '"risk_level": "high"' in prompt
    assert '"hedge my LULU shares"' in prompt


def test_clean_json_rejects_non_objects():
    with pytest.raises(ValueError):
        clean_json("[1, 2]")


def test_gemini_embedder_returns_values():
    embedder = GeminiEmbedder(_client(_Models()), model="text-embedding-004")
    assert asyncio.run(embedder.embed("buy 100 dollars of AAPL")) == [0.1, 0.2, 0.3]
