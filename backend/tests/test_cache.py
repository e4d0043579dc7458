"""TTL cache and channel state tracker tests."""

import pytest

from app.services.stream_state import ChannelStateTracker
from app.utils.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Expiry is driven by the injected clock."""

    @pytest.mark.asyncio
    async def test_entry_expires(self) -> None:
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        await cache.set("b1", True)
        clock.now += 59
        assert await cache.get("b1") is True
        clock.now += 1
        assert await cache.get("b1") is None

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self) -> None:
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        await cache.set("b1", "x")
        clock.now += 10 ** 6
        assert await cache.get("b1") == "x"

    @pytest.mark.asyncio
    async def test_swap_returns_previous(self) -> None:
        cache = TTLCache()
        assert await cache.swap("k", 1) is None
        assert await cache.swap("k", 2) == 1
        assert await cache.get("k") == 2

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        cache = TTLCache()
        await cache.set("k", 1)
        await cache.delete("k")
        assert await cache.get("k") is None


class TestChannelStateTracker:
    """Title/category change detection."""

    @pytest.mark.asyncio
    async def test_first_observation_is_not_a_change(self) -> None:
        tracker = ChannelStateTracker()
        change = await tracker.observe("b1", "Title", "509658")
        assert not change.any

    @pytest.mark.asyncio
    async def test_title_change_detected(self) -> None:
        tracker = ChannelStateTracker()
        await tracker.observe("b1", "Title", "509658")
        change = await tracker.observe("b1", "New title", "509658")
        assert change.title_changed
        assert not change.category_changed

    @pytest.mark.asyncio
    async def test_category_change_detected(self) -> None:
        tracker = ChannelStateTracker()
        await tracker.observe("b1", "Title", "509658")
        change = await tracker.observe("b1", "Title", "743")
        assert change.category_changed
        assert not change.title_changed

    @pytest.mark.asyncio
    async def test_broadcasters_are_independent(self) -> None:
        tracker = ChannelStateTracker()
        await tracker.observe("b1", "A", "1")
        change = await tracker.observe("b2", "B", "2")
        assert not change.any
