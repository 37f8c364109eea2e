"""
Realtime client - Phoenix channel protocol over a websocket.

The platform's realtime service multiplexes every subscription (one topic per
channel) over a single socket. Row changes arrive as `postgres_changes` events
already filtered server-side by the join config.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..exceptions import SubscriptionError
from .interface import ChangeEvent, ChangeType, RowFilter, SubscriptionHandle

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0.0"


def build_socket_url(base_url: str, api_key: str) -> str:
    """Realtime websocket endpoint for a project URL."""
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    query = urlencode({"apikey": api_key, "vsn": PROTOCOL_VERSION})
    return f"{scheme}://{parts.netloc}/realtime/v1/websocket?{query}"


def topic_for(channel_name: str) -> str:
    return f"realtime:{channel_name}"


def join_frame(
    topic: str,
    ref: str,
    table: str,
    event: ChangeType,
    row_filter: RowFilter,
    schema: str = "public",
    access_token: Optional[str] = None
) -> Dict[str, Any]:
    """Build the `phx_join` frame subscribing a topic to filtered row changes."""
    payload: Dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [{
                "event": event.value,
                "schema": schema,
                "table": table,
                "filter": str(row_filter),
            }],
            "private": False,
        },
    }
    if access_token:
        payload["access_token"] = access_token
    return {"topic": topic, "event": "phx_join", "payload": payload, "ref": ref, "join_ref": ref}


def leave_frame(topic: str, ref: str) -> Dict[str, Any]:
    return {"topic": topic, "event": "phx_leave", "payload": {}, "ref": ref}


def heartbeat_frame(ref: str) -> Dict[str, Any]:
    return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": ref}


def parse_change(message: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Extract a row change from a `postgres_changes` frame, None for anything else."""
    if message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    change_type = data.get("type") or data.get("eventType")
    if change_type not in ChangeType.__members__:
        return None
    return ChangeEvent(
        table=data.get("table", ""),
        type=ChangeType(change_type),
        record=data.get("record") or data.get("new") or {},
        old_record=data.get("old_record") or data.get("old") or {},
    )


class RealtimeClient:
    """
    Single-socket realtime connection shared by every subscription of a gateway.
    A dropped socket fails all live subscriptions; there is no automatic reconnect.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        schema: str = "public",
        heartbeat_interval: float = 25.0,
        join_timeout: float = 10.0
    ):
        self.socket_url = build_socket_url(base_url, api_key)
        self.api_key = api_key
        self.schema = schema
        self.heartbeat_interval = heartbeat_interval
        self.join_timeout = join_timeout
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._channels: Dict[str, SubscriptionHandle] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._refs = itertools.count(1)
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def connect(self) -> None:
        """Open the socket if it is not open yet."""
        async with self._connect_lock:
            if self._ws is not None:
                return
            try:
                self._ws = await websockets.connect(self.socket_url)
            except (OSError, WebSocketException) as e:
                logger.error(f"Realtime connection failed: {e}")
                raise SubscriptionError(f"Realtime connection failed: {e}") from e

            self._reader_task = asyncio.create_task(self._read_loop())
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
            logger.info("Realtime socket connected")

    async def join(self, handle: SubscriptionHandle) -> None:
        """Join the topic for a subscription and wait for the server to accept it."""
        topic = topic_for(handle.name)
        if topic in self._channels:
            raise SubscriptionError(f"Channel name already in use: {handle.name}")
        await self.connect()
        ref = self._next_ref()
        reply_future = asyncio.get_running_loop().create_future()
        self._pending[ref] = reply_future
        self._channels[topic] = handle

        joined = False
        try:
            await self._send(join_frame(
                topic, ref, handle.table, handle.event, handle.row_filter,
                schema=self.schema, access_token=self.api_key,
            ))
            reply = await asyncio.wait_for(reply_future, timeout=self.join_timeout)
            status = (reply.get("payload") or {}).get("status")
            if status != "ok":
                detail = (reply.get("payload") or {}).get("response")
                raise SubscriptionError(f"Join rejected for {topic}: {detail}")
            joined = True
        except asyncio.TimeoutError as e:
            raise SubscriptionError(f"Timed out joining {topic}") from e
        except ConnectionClosed as e:
            raise SubscriptionError(f"Realtime connection closed while joining {topic}") from e
        finally:
            self._pending.pop(ref, None)
            # A failed join must not keep the topic name reserved
            if not joined and self._channels.get(topic) is handle:
                del self._channels[topic]
        logger.debug(f"Joined {topic} ({handle.row_filter})")

    async def leave(self, handle: SubscriptionHandle) -> None:
        """Leave the topic of a subscription."""
        topic = topic_for(handle.name)
        if self._channels.pop(topic, None) is None or self._ws is None:
            return
        try:
            await self._send(leave_frame(topic, self._next_ref()))
        except ConnectionClosed:
            logger.debug(f"Socket already closed while leaving {topic}")

    async def _send(self, frame: Dict[str, Any]) -> None:
        if self._ws is None:
            raise SubscriptionError("Realtime socket is not connected")
        await self._ws.send(json.dumps(frame))

    async def _read_loop(self) -> None:
        reason = "Realtime connection closed"
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring malformed realtime frame: {raw!r:.200}")
                    continue
                await self._dispatch(message)
        except ConnectionClosed as e:
            reason = f"Realtime connection closed: {e}"
        await self._drop(SubscriptionError(reason))

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        topic = message.get("topic", "")

        if event == "phx_reply":
            future = self._pending.get(message.get("ref"))
            if future is not None and not future.done():
                future.set_result(message)
            return

        if event in ("phx_error", "phx_close"):
            handle = self._channels.pop(topic, None)
            if handle is not None:
                await handle.fail(SubscriptionError(f"Channel {topic} closed by server ({event})"))
            return

        change = parse_change(message)
        if change is None:
            return
        handle = self._channels.get(topic)
        if handle is not None and change.type == handle.event:
            await handle.deliver(change)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._send(heartbeat_frame(self._next_ref()))
            except (ConnectionClosed, SubscriptionError):
                return

    async def _drop(self, error: SubscriptionError) -> None:
        logger.warning(str(error))
        handles = list(self._channels.values())
        self._channels.clear()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._ws = None
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        for handle in handles:
            await handle.fail(error)

    async def close(self) -> None:
        """Close the socket without notifying subscribers."""
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None:
                task.cancel()
        self._heartbeat_task = self._reader_task = None
        for handle in self._channels.values():
            handle.mark_closed()
        self._channels.clear()
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
