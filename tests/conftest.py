"""Shared test fixtures.

Provider traffic is served by ``httpx.MockTransport`` handlers; redis is
replaced by a small in-memory fake implementing the commands the backend
uses.
"""

import os
from collections.abc import Callable
from typing import Any, Dict, List, Optional

import httpx
import pytest

os.environ.setdefault("MODELSCOPE_API_TOKEN", "test-token")

from backend.provider import ModelScopeProvider
from backend.transport import TransportClient


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis used by the backend."""

    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self.values[key] = str(value)
        return True

    async def exists(self, key: str) -> int:
        return int(key in self.values or key in self.lists)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
        return removed

    async def lpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def rpop(self, key: str) -> Optional[str]:
        items = self.lists.get(key)
        return items.pop() if items else None

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        items = self.lists.get(key, [])
        self.lists[key] = items[start : None if end == -1 else end + 1]
        return True

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        items = self.lists.get(key, [])
        return items[start : None if end == -1 else end + 1]

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


class Recorder:
    """Records requests and answers them from a scripted list of responses."""

    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        status, body = item
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


@pytest.fixture
def make_provider() -> Callable[..., ModelScopeProvider]:
    """Build a ModelScopeProvider whose HTTP calls go to ``handler``."""

    def _make(handler, relay_mode: bool = False) -> ModelScopeProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = TransportClient(
            relay_mode=relay_mode,
            relay_base="http://relay.test/api",
            provider_base="https://provider.test",
            client=client,
        )
        return ModelScopeProvider(transport)

    return _make
