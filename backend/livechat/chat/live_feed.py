"""
Live Feed Subscriber - streams newly inserted messages of one session to a chat view.
"""

import itertools
import logging
import time
from typing import Awaitable, Callable, Optional

from ..exceptions import GatewayError, SubscriptionError
from ..gateway import (
    MESSAGES_TABLE,
    ChangeEvent,
    ChangeType,
    PersistenceGateway,
    RowFilter,
    SubscriptionHandle,
)
from ..models import ChatMessage

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChatMessage], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]

_channel_sequence = itertools.count(1)


class LiveFeedSubscriber:
    """
    Owns the single live message subscription of a chat view.

    Opening a session tears down the previous subscription first, so a view
    never receives the same insert twice.
    """

    def __init__(self, gateway: PersistenceGateway, view: str):
        """
        Args:
            gateway: Persistence gateway providing the change feed
            view: View label used as channel name prefix (e.g. "chat", "admin-chat")
        """
        self.gateway = gateway
        self.view = view
        self.session_id: Optional[str] = None
        self._handle: Optional[SubscriptionHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._handle.closed

    @property
    def channel_name(self) -> Optional[str]:
        return self._handle.name if self._handle else None

    def _new_channel_name(self, session_id: str) -> str:
        # Unique per (session, open time) so a stale channel never collides
        return f"{self.view}-{session_id}-{time.time_ns()}-{next(_channel_sequence)}"

    async def open(
        self,
        session_id: str,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> SubscriptionHandle:
        """
        Subscribe to message inserts of a session, replacing any previous subscription.

        Args:
            session_id: Session whose inserts are delivered
            on_message: Awaited with each new message
            on_error: Awaited once if the feed drops

        Returns:
            SubscriptionHandle: The live subscription

        Raises:
            SubscriptionError: The subscription could not be established
        """
        await self.close()

        async def handle_event(event: ChangeEvent) -> None:
            try:
                message = ChatMessage.from_row(event.record)
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring malformed message row on {self.view}: {e}")
                return
            await on_message(message)

        name = self._new_channel_name(session_id)
        try:
            handle = await self.gateway.subscribe(
                MESSAGES_TABLE,
                ChangeType.INSERT,
                RowFilter.eq("chat_session_id", session_id),
                handle_event,
                name=name,
                on_error=on_error,
            )
        except (GatewayError, SubscriptionError) as e:
            logger.error(f"Live feed for session {session_id} could not be opened: {e}")
            raise SubscriptionError(f"Live updates unavailable: {e}") from e

        self._handle = handle
        self.session_id = session_id
        logger.debug(f"Live feed {name} opened")
        return handle

    async def close(self) -> None:
        """Tear down the current subscription, if any."""
        handle, self._handle = self._handle, None
        self.session_id = None
        if handle is not None:
            await handle.close()
            logger.debug(f"Live feed {handle.name} closed")

    async def __aenter__(self) -> "LiveFeedSubscriber":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
