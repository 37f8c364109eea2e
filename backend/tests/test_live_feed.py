"""
Unit tests for the live feed subscriber.
"""

import pytest
from unittest.mock import AsyncMock

from livechat.chat import LiveFeedSubscriber
from livechat.exceptions import GatewayError, SubscriptionError
from livechat.gateway import MESSAGES_TABLE
from livechat.models import SenderRole


class Collector:
    def __init__(self):
        self.messages = []
        self.errors = []

    async def on_message(self, message):
        self.messages.append(message)

    async def on_error(self, error):
        self.errors.append(error)


class TestLiveFeedSubscriber:
    """Tests for LiveFeedSubscriber."""

    @pytest.mark.asyncio
    async def test_delivers_only_own_session(self, gateway, session_store, message_store):
        first = await session_store.get_or_create_session("Jane")
        await session_store.close_session(first.id)
        second = await session_store.get_or_create_session("John")

        collector = Collector()
        feed = LiveFeedSubscriber(gateway, "chat")
        await feed.open(first.id, collector.on_message)

        await message_store.send_message(second.id, "not for you", SenderRole.USER)
        sent = await message_store.send_message(first.id, "for you", SenderRole.ADMIN)

        assert [m.id for m in collector.messages] == [sent.id]
        assert feed.session_id == first.id
        assert feed.active

    @pytest.mark.asyncio
    async def test_reopen_tears_down_previous(self, gateway, session_store, message_store):
        first = await session_store.get_or_create_session("Jane")
        await session_store.close_session(first.id)
        second = await session_store.get_or_create_session("John")

        collector = Collector()
        feed = LiveFeedSubscriber(gateway, "admin-chat")
        await feed.open(first.id, collector.on_message)
        old_channel = feed.channel_name
        await feed.open(second.id, collector.on_message)

        assert gateway.subscription_names == [feed.channel_name]
        assert feed.channel_name != old_channel

        await message_store.send_message(first.id, "old session", SenderRole.USER)
        assert collector.messages == []

    @pytest.mark.asyncio
    async def test_channel_names_are_unique(self, gateway):
        first = LiveFeedSubscriber(gateway, "chat")
        second = LiveFeedSubscriber(gateway, "chat")
        await first.open("s1", AsyncMock())
        await second.open("s1", AsyncMock())
        assert first.channel_name.startswith("chat-s1-")
        assert first.channel_name != second.channel_name
        assert len(gateway.subscription_names) == 2

    @pytest.mark.asyncio
    async def test_close(self, gateway, session_store, message_store):
        session = await session_store.get_or_create_session("Jane")
        collector = Collector()
        async with LiveFeedSubscriber(gateway, "chat") as feed:
            await feed.open(session.id, collector.on_message)
        assert not feed.active
        assert gateway.subscription_names == []

        await message_store.send_message(session.id, "after close", SenderRole.USER)
        assert collector.messages == []
        # Closing twice is harmless
        await feed.close()

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, gateway):
        collector = Collector()
        feed = LiveFeedSubscriber(gateway, "chat")
        await feed.open("s1", collector.on_message)
        await gateway.insert(MESSAGES_TABLE, {"chat_session_id": "s1", "message": "no sender"})
        assert collector.messages == []

    @pytest.mark.asyncio
    async def test_drop_notifies_subscriber(self, gateway):
        collector = Collector()
        feed = LiveFeedSubscriber(gateway, "chat")
        await feed.open("s1", collector.on_message, on_error=collector.on_error)
        await gateway.disconnect("network gone")
        assert len(collector.errors) == 1
        assert isinstance(collector.errors[0], SubscriptionError)
        assert not feed.active

    @pytest.mark.asyncio
    async def test_subscribe_failure(self):
        gateway = AsyncMock()
        gateway.subscribe.side_effect = GatewayError("realtime disabled")
        feed = LiveFeedSubscriber(gateway, "chat")
        with pytest.raises(SubscriptionError):
            await feed.open("s1", AsyncMock())
        assert not feed.active
