# backend/history.py

from typing import List

import redis.asyncio as redis

from config.settings import settings

from .model import HistoryItem

HISTORY_KEY_PREFIX = "history:"  # history:{user_id}


class HistoryStore:
    """Most recent generations per user, newest first, capped at ``limit`` items."""

    def __init__(self, rds: redis.Redis, limit: int = settings.HISTORY_LIMIT):
        self.rds = rds
        self.limit = limit

    @staticmethod
    def key(user_id: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{user_id}"

    async def add(self, user_id: str, item: HistoryItem) -> None:
        key = self.key(user_id)
        await self.rds.lpush(key, item.model_dump_json())
        await self.rds.ltrim(key, 0, self.limit - 1)

    async def list(self, user_id: str) -> List[HistoryItem]:
        raw_items = await self.rds.lrange(self.key(user_id), 0, -1)
        return [HistoryItem.model_validate_json(raw) for raw in raw_items]

    async def delete(self, user_id: str, item_id: str) -> bool:
        key = self.key(user_id)
        for raw in await self.rds.lrange(key, 0, -1):
            if HistoryItem.model_validate_json(raw).id == item_id:
                await self.rds.lrem(key, 1, raw)
                return True
        return False
