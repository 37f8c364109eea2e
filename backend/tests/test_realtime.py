"""
Unit tests for the realtime client: frame building, parsing and the
subscription lifecycle against an in-memory socket.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, patch

from livechat.exceptions import SubscriptionError
from livechat.gateway import MESSAGES_TABLE, ChangeType, RowFilter, SupabaseGateway
from livechat.gateway.realtime import (
    build_socket_url,
    heartbeat_frame,
    join_frame,
    leave_frame,
    parse_change,
    topic_for,
)


class FakeSocket:
    """Websocket stand-in that answers joins and replays queued frames."""

    def __init__(self, reply_status: str = "ok", reply: bool = True):
        self.reply_status = reply_status
        self.reply = reply
        self.sent = []
        self.incoming = asyncio.Queue()

    async def send(self, raw: str) -> None:
        frame = json.loads(raw)
        self.sent.append(frame)
        if frame["event"] == "phx_join" and self.reply:
            await self.push({
                "topic": frame["topic"],
                "event": "phx_reply",
                "payload": {"status": self.reply_status, "response": {}},
                "ref": frame["ref"],
            })

    async def push(self, frame) -> None:
        await self.incoming.put(json.dumps(frame))

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        raw = await self.incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.hang_up()


def insert_frame(topic: str, record: dict) -> dict:
    return {
        "topic": topic,
        "event": "postgres_changes",
        "payload": {"data": {"table": MESSAGES_TABLE, "type": "INSERT", "record": record}, "ids": [1]},
        "ref": None,
    }


class TestFrames:
    """Tests for Phoenix frame helpers."""

    def test_socket_url(self):
        url = build_socket_url("https://proj.supabase.co", "anon")
        assert url == "wss://proj.supabase.co/realtime/v1/websocket?apikey=anon&vsn=1.0.0"
        assert build_socket_url("http://localhost:54321", "k").startswith("ws://localhost:54321/")

    def test_join_frame(self):
        frame = join_frame(
            topic_for("chat-s1-1"), "3", MESSAGES_TABLE, ChangeType.INSERT,
            RowFilter.eq("chat_session_id", "s1"), access_token="anon",
        )
        assert frame["topic"] == "realtime:chat-s1-1"
        assert frame["event"] == "phx_join"
        assert frame["ref"] == "3"
        change = frame["payload"]["config"]["postgres_changes"][0]
        assert change == {
            "event": "INSERT",
            "schema": "public",
            "table": "chat_messages",
            "filter": "chat_session_id=eq.s1",
        }
        assert frame["payload"]["access_token"] == "anon"

    def test_leave_and_heartbeat(self):
        assert leave_frame("realtime:x", "4")["event"] == "phx_leave"
        heartbeat = heartbeat_frame("5")
        assert heartbeat["topic"] == "phoenix"
        assert heartbeat["event"] == "heartbeat"

    def test_parse_change(self):
        change = parse_change(insert_frame("realtime:x", {"id": "m1"}))
        assert change.type == ChangeType.INSERT
        assert change.table == MESSAGES_TABLE
        assert change.record == {"id": "m1"}

    def test_parse_ignores_other_events(self):
        assert parse_change({"event": "presence_state", "payload": {}}) is None
        assert parse_change({"event": "postgres_changes", "payload": {"data": {"type": "TRUNCATE"}}}) is None


class TestRealtimeSubscriptions:
    """Tests for the subscription lifecycle through the Supabase gateway."""

    @pytest.mark.asyncio
    async def test_join_deliver_leave(self):
        socket = FakeSocket()
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon")
        received = asyncio.Event()
        records = []

        async def callback(event):
            records.append(event.record)
            received.set()

        with patch("websockets.connect", new=AsyncMock(return_value=socket)):
            handle = await gateway.subscribe(
                MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                callback, name="chat-s1-1",
            )
            await socket.push(insert_frame("realtime:chat-s1-1", {"id": "m1", "chat_session_id": "s1"}))
            await asyncio.wait_for(received.wait(), timeout=1)

            await handle.close()
            await gateway.aclose()

        assert records == [{"id": "m1", "chat_session_id": "s1"}]
        assert handle.closed
        assert [frame["event"] for frame in socket.sent] == ["phx_join", "phx_leave"]

    @pytest.mark.asyncio
    async def test_join_rejected(self):
        socket = FakeSocket(reply_status="error")
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon")
        with patch("websockets.connect", new=AsyncMock(return_value=socket)):
            with pytest.raises(SubscriptionError):
                await gateway.subscribe(
                    MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                    AsyncMock(), name="chat-s1-1",
                )
            await gateway.aclose()

    @pytest.mark.asyncio
    async def test_join_timeout(self):
        socket = FakeSocket(reply=False)
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon", join_timeout=0.05)
        with patch("websockets.connect", new=AsyncMock(return_value=socket)):
            with pytest.raises(SubscriptionError):
                await gateway.subscribe(
                    MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                    AsyncMock(), name="chat-s1-1",
                )
            await gateway.aclose()

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon")
        with patch("websockets.connect", new=AsyncMock(side_effect=OSError("unreachable"))):
            with pytest.raises(SubscriptionError):
                await gateway.subscribe(
                    MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                    AsyncMock(), name="chat-s1-1",
                )

    @pytest.mark.asyncio
    async def test_socket_drop_fails_subscription(self):
        socket = FakeSocket()
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon")
        dropped = asyncio.Event()
        errors = []

        async def on_error(error):
            errors.append(error)
            dropped.set()

        with patch("websockets.connect", new=AsyncMock(return_value=socket)):
            handle = await gateway.subscribe(
                MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                AsyncMock(), name="chat-s1-1", on_error=on_error,
            )
            socket.hang_up()
            await asyncio.wait_for(dropped.wait(), timeout=1)
            await gateway.aclose()

        assert handle.closed
        assert isinstance(errors[0], SubscriptionError)
        assert not gateway.realtime.connected

    @pytest.mark.asyncio
    async def test_failed_join_frees_channel_name(self):
        socket = FakeSocket()
        gateway = SupabaseGateway(url="https://proj.supabase.co", api_key="anon")
        with patch("websockets.connect", new=AsyncMock(return_value=socket)):
            failing_send = AsyncMock(side_effect=SubscriptionError("Realtime socket is not connected"))
            with patch.object(gateway.realtime, "_send", new=failing_send):
                with pytest.raises(SubscriptionError):
                    await gateway.subscribe(
                        MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                        AsyncMock(), name="chat-s1-1",
                    )

            handle = await gateway.subscribe(
                MESSAGES_TABLE, ChangeType.INSERT, RowFilter.eq("chat_session_id", "s1"),
                AsyncMock(), name="chat-s1-1",
            )
            await gateway.aclose()

        assert handle.closed
        assert [frame["event"] for frame in socket.sent] == ["phx_join"]
