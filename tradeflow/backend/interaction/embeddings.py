from loguru import logger

from tradeflow.backend.engine.resolution_cache import Embedder

"""
Interaction Layer - Gemini Embeddings for the resolution cache.
"""


class GeminiEmbedder(Embedder):
    def __init__(self, client, model: str = "text-embedding-004"):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        response = await self.client.aio.models.embed_content(model=self.model, contents=text)
        values = response.embeddings[0].values
        logger.debug(f"Embedded {len(text)} chars into {len(values)} dimensions with {self.model}")
        return list(values)
