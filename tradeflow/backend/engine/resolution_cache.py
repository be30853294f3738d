import re
import time
import zlib
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Iterable

import numpy as np
from loguru import logger

from tradeflow.backend.engine import lexicon
from tradeflow.backend.engine.models import CacheEntry, TradeIntent, new_id

"""
Engine - Resolution Cache.

Remembers intents produced by the model path so that paraphrases of a recent
command skip the external resolver. Approximate matches are only considered
between entries whose critical tokens agree exactly: the same action words,
the same tickers and the same numbers. Similarity alone can never turn
'buy 100 AAPL' into a hit for 'buy 1000 AAPL'.
"""

CRITICAL_WORDS = frozenset(lexicon.ACTION_VERBS) | {"all", "dollars", "shares", "limit"}
VECTOR_SIZE = 512


class Embedder(ABC):
    """Turns text into a dense vector for cosine similarity."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...


class HashingEmbedder(Embedder):
    """Local bag-of-words vectors over hashed tokens."""

    def __init__(self, size: int = VECTOR_SIZE):
        self.size = size

    async def embed(self, text: str) -> list[float]:
        tokens = re.findall(r"[A-Za-z]+|\d+(?:\.\d+)?", text.lower())
        vector = np.zeros(self.size, dtype=float)
        for token in tokens:
            vector[zlib.crc32(token.encode()) % self.size] += 1.0
        return vector.tolist()


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def signature(text: str) -> tuple:
    """Critical tokens that must match exactly for two texts to share an entry."""
    words = set(re.findall(r"[a-z]+", text))
    return (
        tuple(sorted(words & CRITICAL_WORDS)),
        tuple(sorted(lexicon.extract_tickers(text))),
        tuple(sorted(float(n) for n in lexicon.NUMBER_RE.findall(text))),
    )


class ResolutionCache(ABC):
    """Storage contract for resolved intents, keyed by normalized text."""

    @abstractmethod
    async def lookup(self, text: str) -> TradeIntent | None:
        ...

    @abstractmethod
    async def store(self, text: str, intent: TradeIntent, ttl_seconds: float | None = None) -> None:
        ...

    @abstractmethod
    async def sweep(self) -> int:
        """Drops expired entries and returns how many were removed."""

    @abstractmethod
    def stats(self) -> dict:
        ...

    async def warm(self, seeds: Iterable[tuple[str, TradeIntent]]) -> int:
        """Pre-loads (normalized text, intent) pairs."""
        count = 0
        for text, intent in seeds:
            await self.store(text, intent)
            count += 1
        logger.info(f"Resolution cache warmed with {count} entries")
        return count


class InMemoryResolutionCache(ResolutionCache):
    """
    Process-local LRU cache with TTL and similarity lookup.

    Expired entries are evicted lazily on lookup and eagerly by `sweep()`.
    Entries are immutable; a store for an existing key replaces it wholesale.
    """

    def __init__(
        self,
        ttl_seconds: float | None = 30.0,
        similarity_threshold: float = 0.85,
        max_entries: int = 1000,
        embedder: Embedder | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.similarity_threshold = similarity_threshold
        self.max_entries = max_entries
        self.embedder = embedder or HashingEmbedder()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = {"hits": 0, "similar_hits": 0, "misses": 0, "stores": 0, "evictions": 0, "expired": 0}

    @staticmethod
    def _key(text: str) -> str:
        return lexicon.collapse_whitespace(text)

    def _hit(self, entry: CacheEntry) -> TradeIntent:
        self._entries.move_to_end(entry.key)
        metadata = {**entry.intent.metadata, "cache_hit": True, "cached_text": entry.text}
        return entry.intent.model_copy(update={"id": new_id("intent"), "metadata": metadata}, deep=True)

    def _drop(self, key: str):
        self._entries.pop(key, None)
        self._stats["expired"] += 1

    async def lookup(self, text: str) -> TradeIntent | None:
        key = self._key(text)
        if not key:
            return None
        now = self._clock()

        # 1. Exact key
        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_expired(now):
                self._drop(key)
            else:
                self._stats["hits"] += 1
                return self._hit(entry)

        # 2. Similar entries with an identical signature
        wanted = signature(key)
        candidates = []
        for candidate in list(self._entries.values()):
            if candidate.is_expired(now):
                self._drop(candidate.key)
            elif candidate.signature == wanted:
                candidates.append(candidate)

        if candidates:
            vector = await self.embedder.embed(key)
            best, best_score = None, 0.0
            for candidate in candidates:
                score = cosine_similarity(vector, candidate.vector)
                if score > best_score:
                    best, best_score = candidate, score
            if best is not None and best_score >= self.similarity_threshold:
                logger.debug(f"Cache similarity hit ({best_score:.3f}): '{key}' ~ '{best.text}'")
                self._stats["similar_hits"] += 1
                return self._hit(best)

        self._stats["misses"] += 1
        return None

    async def store(self, text: str, intent: TradeIntent, ttl_seconds: float | None = None) -> None:
        key = self._key(text)
        if not key:
            return
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        vector = await self.embedder.embed(key)
        entry = CacheEntry(
            key=key,
            text=text,
            intent=intent.model_copy(deep=True),
            signature=signature(key),
            vector=tuple(vector),
            created_at=now,
            expires_at=now + ttl if ttl else None,
        )

        self._entries.pop(key, None)
        self._entries[key] = entry
        self._stats["stores"] += 1
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats["evictions"] += 1
            logger.debug(f"Cache evicted least recently used entry: '{evicted}'")

    async def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        lookups = self._stats["hits"] + self._stats["similar_hits"] + self._stats["misses"]
        hits = self._stats["hits"] + self._stats["similar_hits"]
        return {
            **self._stats,
            "size": len(self._entries),
            "hit_rate": hits / lookups if lookups else 0.0,
        }
