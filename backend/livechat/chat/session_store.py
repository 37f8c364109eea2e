"""
Session Store - chat session records: creation, lookup and status changes.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from ..exceptions import (
    GatewayError,
    InvalidStatusTransition,
    SessionNotFound,
    StoreUnavailable,
)
from ..gateway import SESSIONS_TABLE, PersistenceGateway, RowFilter
from ..models import OPEN_STATUSES, ChatSession, SessionStatus

logger = logging.getLogger(__name__)

# Allowed status changes; nothing enters `waiting` automatically
STATUS_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.WAITING, SessionStatus.CLOSED}),
    SessionStatus.WAITING: frozenset({SessionStatus.ACTIVE, SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
}


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """
    Manages chat session rows through the persistence gateway.
    """

    def __init__(self, gateway: PersistenceGateway):
        """
        Initialize the session store.

        Args:
            gateway: Persistence gateway holding the chat_sessions table
        """
        self.gateway = gateway
        # Serializes lookup-then-create for callers sharing this store
        self._create_lock = asyncio.Lock()

    async def get_or_create_session(
        self,
        visitor_name: Optional[str] = None,
        visitor_email: Optional[str] = None
    ) -> ChatSession:
        """
        Return the newest active session, creating one if none exists.

        The visitor name and email only apply to a brand-new session.

        Raises:
            StoreUnavailable: The gateway could not be reached (retryable)
        """
        async with self._create_lock:
            try:
                rows = await self.gateway.select(
                    SESSIONS_TABLE,
                    filters=[RowFilter.eq("status", SessionStatus.ACTIVE.value)],
                    order_by="created_at",
                    descending=True,
                    limit=1,
                )
                if rows:
                    session = ChatSession.from_row(rows[0])
                    logger.info(f"Rejoined active chat session {session.id}")
                    return session

                row = await self.gateway.insert(SESSIONS_TABLE, {
                    "user_name": visitor_name,
                    "user_email": visitor_email,
                    "status": SessionStatus.ACTIVE.value,
                    "last_message_at": _utcnow_iso(),
                })
            except GatewayError as e:
                logger.warning(f"Could not get or create chat session: {e}")
                raise StoreUnavailable(f"Chat is unavailable right now: {e}") from e

        session = ChatSession.from_row(row)
        logger.info(
            f"Created chat session {session.id}",
            extra={"extra_fields": {"session_id": session.id, "has_email": bool(visitor_email)}}
        )
        return session

    async def list_open_sessions(self) -> List[ChatSession]:
        """
        All active and waiting sessions, most recent message first.

        Raises:
            StoreUnavailable: The gateway could not be reached
        """
        try:
            rows = await self.gateway.select(
                SESSIONS_TABLE,
                filters=[RowFilter.in_("status", [s.value for s in OPEN_STATUSES])],
                order_by="last_message_at",
                descending=True,
            )
        except GatewayError as e:
            logger.warning(f"Could not list open chat sessions: {e}")
            raise StoreUnavailable(f"Could not load chat sessions: {e}") from e
        return [ChatSession.from_row(row) for row in rows]

    async def get_session(self, session_id: str) -> ChatSession:
        """
        Fetch one session.

        Raises:
            SessionNotFound: No session with this id
            StoreUnavailable: The gateway could not be reached
        """
        try:
            rows = await self.gateway.select(
                SESSIONS_TABLE,
                filters=[RowFilter.eq("id", session_id)],
                limit=1,
            )
        except GatewayError as e:
            raise StoreUnavailable(f"Could not load chat session {session_id}: {e}") from e
        if not rows:
            raise SessionNotFound(f"Chat session {session_id} not found")
        return ChatSession.from_row(rows[0])

    async def update_status(self, session_id: str, status: SessionStatus) -> ChatSession:
        """
        Move a session to another status.

        Args:
            session_id: Session to update
            status: Target status

        Returns:
            ChatSession: The updated session (unchanged when already in that status)

        Raises:
            InvalidStatusTransition: The state machine forbids the change
            SessionNotFound: No session with this id
            StoreUnavailable: The gateway could not be reached
        """
        status = SessionStatus(status)
        session = await self.get_session(session_id)
        if session.status == status:
            return session
        if status not in STATUS_TRANSITIONS[session.status]:
            raise InvalidStatusTransition(
                f"Cannot move session {session_id} from {session.status.value} to {status.value}"
            )

        try:
            rows = await self.gateway.update(
                SESSIONS_TABLE,
                {"status": status.value},
                filters=[RowFilter.eq("id", session_id)],
            )
        except GatewayError as e:
            logger.warning(f"Could not update status of session {session_id}: {e}")
            raise StoreUnavailable(f"Could not update chat session {session_id}: {e}") from e
        if not rows:
            raise SessionNotFound(f"Chat session {session_id} not found")

        logger.info(f"Session {session_id} moved from {session.status.value} to {status.value}")
        return ChatSession.from_row(rows[0])

    async def close_session(self, session_id: str) -> ChatSession:
        """Close a session. Its messages are kept."""
        return await self.update_status(session_id, SessionStatus.CLOSED)

    async def touch(self, session_id: str, at: datetime) -> None:
        """
        Record the time of the latest accepted message.

        Raises:
            GatewayError: The update failed
        """
        await self.gateway.update(
            SESSIONS_TABLE,
            {"last_message_at": at.isoformat()},
            filters=[RowFilter.eq("id", session_id)],
        )

    async def provision_visitor(self, email: str, name: Optional[str] = None) -> Optional[str]:
        """
        Make sure a platform account exists for a visitor who gave an email.

        Failures are logged and never block the chat.

        Returns:
            Optional[str]: Account id, or None if provisioning failed
        """
        try:
            account_id = await self.gateway.ensure_account(email, name)
        except GatewayError as e:
            logger.warning(f"Visitor account provisioning failed: {e}")
            return None
        logger.debug(f"Visitor account ready: {account_id}")
        return account_id
