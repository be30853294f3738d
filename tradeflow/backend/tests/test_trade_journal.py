from __future__ import annotations

import asyncio

from tradeflow.backend.engine.models import TradingResult
from tradeflow.backend.engine.trade_journal import TradeJournal


class _Cursor:
    def __init__(self, docs: list[dict]) -> None:
        self.docs = docs

    def sort(self, key, direction):
        self.docs = sorted(self.docs, key=lambda d: d[key], reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    async def to_list(self, length=None):
        return list(self.docs)


class _Collection:
    def __init__(self) -> None:
        self.docs: dict[str, dict] = {}

    async def update_one(self, query, update, upsert=False):
        assert upsert is True
        self.docs.setdefault(query["request_id"], {}).update(update["$set"])

    def find(self, query, projection=None):
        return _Cursor(list(self.docs.values()))


def test_record_upserts_by_request_id():
    collection = _Collection()
    journal = TradeJournal(collection)

    async def _run():
        await journal.record(TradingResult(request_id="req-1", success=False, error="first"))
        await journal.record(TradingResult(request_id="req-1", success=True))

    asyncio.run(_run())
    assert len(collection.docs) == 1
    assert collection.docs["req-1"]["success"] is True
    assert collection.docs["req-1"]["metadata"]["steps"] == []


def test_recent_returns_newest_first():
    collection = _Collection()
    journal = TradeJournal(collection)

    async def _run():
        for i in range(3):
            await journal.record(TradingResult(request_id=f"req-{i}"))
        return await journal.recent(limit=2)

    recent = asyncio.run(_run())
    assert len(recent) == 2
    assert recent[0]["recorded_at"] >= recent[1]["recorded_at"]


def test_close_without_client_is_a_no_op():
    TradeJournal(_Collection()).close()
