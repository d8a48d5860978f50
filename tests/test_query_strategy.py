"""Tests for the preferred/fallback query strategy, independent of any view."""

from datetime import timedelta

import pytest

from property_chat.core.errors import TransientStoreError
from property_chat.models.message import MessageQuery
from property_chat.services.query_strategy import FallbackQuery, PreferredQuery, QueryStrategy

from conftest import FlakyStore, T0


def backwards_clock():
    """Clock running backwards so insertion order disagrees with time order."""
    state = {"n": 0}

    def tick():
        state["n"] += 1
        return T0 - timedelta(seconds=state["n"])

    return tick


class TestQueryStrategy:
    """Tests for QueryStrategy."""

    QUERY = MessageQuery(receiver_id="S", property_id="P")

    @pytest.mark.asyncio
    async def test_uses_ordered_query_when_available(self):
        store = FlakyStore()
        stream, plan = await QueryStrategy().open(store, self.QUERY)
        await stream.aclose()
        assert isinstance(plan, PreferredQuery)
        assert store.subscribe_calls == [(self.QUERY, True)]

    @pytest.mark.asyncio
    async def test_falls_back_once_on_unsupported_query(self):
        """Test the same predicate is retried without ordering."""
        store = FlakyStore()
        store.ordered_unsupported = True
        stream, plan = await QueryStrategy().open(store, self.QUERY)
        await stream.aclose()
        assert isinstance(plan, FallbackQuery)
        assert store.subscribe_calls == [(self.QUERY, True), (self.QUERY, False)]

    @pytest.mark.asyncio
    async def test_falls_back_on_transient_establishment_error(self):
        store = FlakyStore()
        store.fail_subscribe = 1
        stream, plan = await QueryStrategy().open(store, self.QUERY)
        await stream.aclose()
        assert plan.is_fallback

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(self):
        """Test there is no retry loop past the fallback."""
        store = FlakyStore()
        store.fail_subscribe = 2
        with pytest.raises(TransientStoreError):
            await QueryStrategy().open(store, self.QUERY)
        assert len(store.subscribe_calls) == 2

    @pytest.mark.asyncio
    async def test_fallback_snapshot_sorted_client_side(self):
        store = FlakyStore(clock=backwards_clock())
        store.ordered_unsupported = True
        for text in ("first written", "second written", "third written"):
            await store.append("B1", "S", "P", text)
        stream, plan = await QueryStrategy().open(store, self.QUERY)
        raw = (await stream.__anext__()).snapshot
        await stream.aclose()
        assert [m.content for m in raw] == ["first written", "second written", "third written"]
        assert [m.content for m in plan.normalize(raw)] == ["third written", "second written", "first written"]
