"""Tests for ChatService: sending, deleting, summaries and one-shot reads."""

import logging

import pytest

from property_chat.core.errors import SummaryWriteFailure, TransientStoreError
from property_chat.models.message import MessageQuery
from property_chat.repositories.memory_store import InMemorySummaryStore
from property_chat.services.chat_service import ChatService
from property_chat.utils.conversation_key import conversation_key

from conftest import seed_property_chat


class BrokenSummaryStore(InMemorySummaryStore):

    async def upsert(self, *args, **kwargs):
        raise SummaryWriteFailure("summary collection unavailable")


class TestSendMessage:
    """Tests for ChatService.send_message."""

    @pytest.mark.asyncio
    async def test_appends_with_store_assigned_fields(self, service, store):
        message = await service.send_message("B1", "S", "P", "  is it available?  ")
        assert message.content == "is it available?"
        assert message.read is False
        assert message.conversation_key == conversation_key("S", "B1", "P")
        assert await store.get(message.id) == message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   "])
    async def test_rejects_empty_content(self, service, content):
        with pytest.raises(ValueError):
            await service.send_message("B1", "S", "P", content)

    @pytest.mark.asyncio
    async def test_rejects_self_message(self, service):
        with pytest.raises(ValueError):
            await service.send_message("S", "S", "P", "note to self")

    @pytest.mark.asyncio
    async def test_writes_summary(self, service, summary_store):
        """Test the summary tracks the last message and the receiver's unread counter."""
        await service.send_message("B1", "S", "P", "hello")
        await service.send_message("B1", "S", "P", "are you there?")
        await service.flush_summaries()
        summaries = await service.list_conversations("S")
        assert len(summaries) == 1
        assert summaries[0].last_message_text == "are you there?"
        assert summaries[0].unread_count_for("S") == 2
        assert summaries[0].participants == ("B1", "S")
        assert await summary_store.list_for_user("B1") == summaries

    @pytest.mark.asyncio
    async def test_summary_failure_does_not_fail_send(self, store, caplog):
        """Test a summary write failure is logged and the message stays durable."""
        service = ChatService(store, BrokenSummaryStore())
        with caplog.at_level(logging.ERROR):
            message = await service.send_message("B1", "S", "P", "hello")
            await service.flush_summaries()
        assert await store.get(message.id) is not None
        assert "summary write for B1_S_P failed (summary_write)" in caplog.text
        assert caplog.records[-1].exc_info is not None


class TestDeleteMessage:
    """Tests for tombstone deletion."""

    @pytest.mark.asyncio
    async def test_sender_can_delete(self, service, store):
        message = await service.send_message("B1", "S", "P", "oops")
        assert await service.delete_message(message.id, "B1") is True
        stored = await store.get(message.id)
        assert stored is not None and stored.deleted

    @pytest.mark.asyncio
    async def test_delete_twice_reports_no_change(self, service):
        message = await service.send_message("B1", "S", "P", "oops")
        await service.delete_message(message.id, "B1")
        assert await service.delete_message(message.id, "B1") is False

    @pytest.mark.asyncio
    async def test_only_sender_can_delete(self, service):
        message = await service.send_message("B1", "S", "P", "mine")
        with pytest.raises(PermissionError):
            await service.delete_message(message.id, "S")

    @pytest.mark.asyncio
    async def test_unknown_message(self, service):
        with pytest.raises(LookupError):
            await service.delete_message("does-not-exist", "B1")


class TestReadOperations:
    """Tests for mark_read and the unread total."""

    @pytest.mark.asyncio
    async def test_mark_read_then_total(self, service, store):
        await seed_property_chat(store)
        assert await service.get_unread_total("B1") == 1
        assert await service.mark_read("B1", "S", "P") == 1
        assert await service.mark_read("B1", "S", "P") == 0
        assert await service.get_unread_total("B1") == 0

    @pytest.mark.asyncio
    async def test_mark_read_resets_denormalized_counter(self, service):
        await service.send_message("S", "B1", "P", "hi")
        await service.flush_summaries()
        await service.mark_read("B1", "S", "P")
        summaries = await service.list_conversations("B1")
        assert summaries[0].unread_count_for("B1") == 0

    @pytest.mark.asyncio
    async def test_mark_read_failure_surfaces(self, service, store):
        """Test one-shot read operations reject instead of degrading."""

        async def broken(query: MessageQuery) -> int:
            raise TransientStoreError("timeout")

        store.bulk_set_read = broken
        with pytest.raises(TransientStoreError):
            await service.mark_read("B1", "S", "P")

    @pytest.mark.asyncio
    async def test_open_session_is_per_viewer(self, service):
        first = service.open_session("B1")
        second = service.open_session("B1")
        assert first is not second
        assert first.viewer_id == "B1"
        first.close()
        second.close()


class TestSummarySubscription:
    """Tests for the live conversation summary list."""

    @pytest.mark.asyncio
    async def test_subscribe_follows_new_conversations(self, service, summary_store):
        stream = await summary_store.subscribe("S")
        initial = await stream.__anext__()
        assert initial.snapshot == []
        await service.send_message("B1", "S", "P", "hello")
        await service.send_message("B2", "S", "Q", "is Q available?")
        await service.flush_summaries()
        latest = await stream.__anext__()
        await stream.aclose()
        # pushes coalesce, so the second read already sees both summaries
        assert [s.property_id for s in latest.snapshot] == ["Q", "P"]
        assert summary_store._streams == []
