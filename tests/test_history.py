import pytest

from backend.history import HistoryStore
from backend.model import HistoryItem, Resolution


def item(n: int) -> HistoryItem:
    return HistoryItem(
        id=f"job-{n}",
        timestamp=1_700_000_000_000 + n,
        image_url=f"https://x/{n}.jpg",
        prompt=f"sweater {n}",
        seed=n,
        resolution=Resolution.SQUARE,
    )


@pytest.mark.asyncio
async def test_newest_first(fake_redis):
    store = HistoryStore(fake_redis)
    await store.add("u1", item(1))
    await store.add("u1", item(2))

    assert [i.id for i in await store.list("u1")] == ["job-2", "job-1"]
    assert await store.list("someone-else") == []


@pytest.mark.asyncio
async def test_history_is_capped(fake_redis):
    store = HistoryStore(fake_redis, limit=3)
    for n in range(5):
        await store.add("u1", item(n))

    assert [i.id for i in await store.list("u1")] == ["job-4", "job-3", "job-2"]


@pytest.mark.asyncio
async def test_delete(fake_redis):
    store = HistoryStore(fake_redis)
    await store.add("u1", item(1))
    await store.add("u1", item(2))

    assert await store.delete("u1", "job-1") is True
    assert await store.delete("u1", "job-1") is False
    assert [i.id for i in await store.list("u1")] == ["job-2"]
