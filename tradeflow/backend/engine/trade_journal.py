import time

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient

from tradeflow.backend.engine.models import TradingResult

"""
Engine - Trade Journal.

Append-only record of every TradingResult in MongoDB, for audit and
reporting. Writes happen after the result is final and never change it.
"""


class TradeJournal:
    def __init__(self, collection, client: AsyncIOMotorClient | None = None):
        self.collection = collection
        self.client = client

    @classmethod
    def connect(cls, mongodb_url: str, database_name: str, collection_name: str = "trade_results") -> "TradeJournal":
        client = AsyncIOMotorClient(mongodb_url)
        logger.info(f"Trade journal connected to {database_name}.{collection_name}")
        return cls(client[database_name][collection_name], client=client)

    async def record(self, result: TradingResult) -> None:
        doc = result.model_dump(mode="json")
        doc["recorded_at"] = time.time()
        await self.collection.update_one(
            {"request_id": result.request_id},
            {"$set": doc},
            upsert=True,
        )

    async def recent(self, limit: int = 50) -> list[dict]:
        cursor = self.collection.find({}, {"_id": 0}).sort("recorded_at", -1).limit(limit)
        return await cursor.to_list(length=limit)

    def close(self):
        if self.client is not None:
            self.client.close()
