"""
Message Store - append-only chat message log, read state and attachments.
"""

import logging
import mimetypes
import secrets
import time
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional

from ..exceptions import GatewayError, SendFailed, StoreUnavailable, UploadFailed
from ..gateway import MESSAGES_TABLE, PersistenceGateway, RowFilter
from ..models import Attachment, ChatMessage, SenderRole
from .session_store import SessionStore

logger = logging.getLogger(__name__)

ATTACHMENT_MARKER = "\N{PAPERCLIP}"
DEFAULT_MIME_TYPE = "application/octet-stream"


def attachment_label(filename: str) -> str:
    """Displayable body of a message that carries a file."""
    return f"{ATTACHMENT_MARKER} {filename}"


def attachment_path(session_id: str, filename: str) -> str:
    """Object path for an upload: session namespace plus a random, time-salted name."""
    extension = PurePosixPath(filename).suffix.lower()
    token = secrets.token_hex(6)
    return f"{session_id}/{token}_{int(time.time() * 1000)}{extension}"


class MessageStore:
    """
    Reads and writes chat messages through the persistence gateway.
    """

    def __init__(self, gateway: PersistenceGateway, sessions: Optional[SessionStore] = None):
        """
        Initialize the message store.

        Args:
            gateway: Persistence gateway holding the chat_messages table
            sessions: Session store used to bump last_message_at
        """
        self.gateway = gateway
        self.sessions = sessions or SessionStore(gateway)

    async def send_message(
        self,
        session_id: str,
        body: str,
        sender_role: SenderRole,
        sender_name: Optional[str] = None,
        sender_email: Optional[str] = None,
        attachment: Optional[Attachment] = None
    ) -> ChatMessage:
        """
        Append a message to a session.

        Admin messages are stored already read; user messages start unread.
        The parent session's last_message_at is bumped afterwards; a failure
        there is logged and not rolled back.

        Args:
            session_id: Target session
            body: Displayable text (the attachment label for file messages)
            sender_role: user or admin
            sender_name: Display name captured at send time
            sender_email: Email captured at send time
            attachment: Descriptor returned by upload_attachment

        Returns:
            ChatMessage: The persisted message with its server-assigned id and created_at

        Raises:
            ValueError: Empty body
            SendFailed: The insert did not go through
        """
        role = SenderRole(sender_role)
        if not body or not body.strip():
            raise ValueError("Message body must not be empty")

        values = {
            "chat_session_id": session_id,
            "sender_id": role.value,
            "sender_name": sender_name,
            "sender_email": sender_email,
            "message": body,
            "file_url": attachment.url if attachment else None,
            "file_name": attachment.name if attachment else None,
            "file_type": attachment.mime_type if attachment else None,
            "is_read": role == SenderRole.ADMIN,
        }
        try:
            row = await self.gateway.insert(MESSAGES_TABLE, values)
        except GatewayError as e:
            logger.error(
                f"Sending message to session {session_id} failed: {e}",
                extra={"extra_fields": {"session_id": session_id, "sender_role": role.value}}
            )
            raise SendFailed(f"Message could not be sent: {e}") from e

        message = ChatMessage.from_row(row)
        try:
            await self.sessions.touch(session_id, message.created_at)
        except GatewayError as e:
            logger.warning(f"Message {message.id} stored but last_message_at not updated: {e}")

        logger.debug(f"Message {message.id} sent to session {session_id} by {role.value}")
        return message

    async def get_messages(self, session_id: str) -> List[ChatMessage]:
        """
        Full transcript of a session, oldest first.

        Raises:
            StoreUnavailable: The gateway could not be reached
        """
        try:
            rows = await self.gateway.select(
                MESSAGES_TABLE,
                filters=[RowFilter.eq("chat_session_id", session_id)],
                order_by="created_at",
            )
        except GatewayError as e:
            logger.warning(f"Could not load transcript of session {session_id}: {e}")
            raise StoreUnavailable(f"Could not load messages: {e}") from e
        return [ChatMessage.from_row(row) for row in rows]

    async def mark_session_read(self, session_id: str) -> int:
        """
        Mark every user-authored message of a session as read. Idempotent.

        Returns:
            int: Number of rows the update touched

        Raises:
            StoreUnavailable: The gateway could not be reached
        """
        try:
            rows = await self.gateway.update(
                MESSAGES_TABLE,
                {"is_read": True},
                filters=[
                    RowFilter.eq("chat_session_id", session_id),
                    RowFilter.eq("sender_id", SenderRole.USER.value),
                ],
            )
        except GatewayError as e:
            logger.warning(f"Could not mark session {session_id} read: {e}")
            raise StoreUnavailable(f"Could not mark messages read: {e}") from e
        return len(rows)

    async def count_unread(self, session_ids: Iterable[str]) -> Dict[str, int]:
        """
        Unread user-message count per session, computed by the store.

        Returns:
            Dict[str, int]: Count for every requested session (0 when none)

        Raises:
            StoreUnavailable: The gateway could not be reached
        """
        ids = list(session_ids)
        counts = {session_id: 0 for session_id in ids}
        if not ids:
            return counts
        try:
            rows = await self.gateway.select(
                MESSAGES_TABLE,
                filters=[
                    RowFilter.in_("chat_session_id", ids),
                    RowFilter.eq("sender_id", SenderRole.USER.value),
                    RowFilter.eq("is_read", False),
                ],
            )
        except GatewayError as e:
            logger.warning(f"Could not count unread messages: {e}")
            raise StoreUnavailable(f"Could not count unread messages: {e}") from e

        for row in rows:
            session_id = str(row["chat_session_id"])
            counts[session_id] = counts.get(session_id, 0) + 1
        return counts

    async def upload_attachment(
        self,
        filename: str,
        content: bytes,
        session_id: str,
        mime_type: Optional[str] = None
    ) -> Attachment:
        """
        Store a file under the session's namespace.

        Must succeed before a message referencing the file is sent.

        Args:
            filename: Original file name, kept for display
            content: Raw file bytes
            session_id: Owning session
            mime_type: MIME type; guessed from the name when omitted

        Returns:
            Attachment: Public URL, original name and MIME type

        Raises:
            UploadFailed: Empty file or the upload did not go through
        """
        if not content:
            raise UploadFailed(f"{filename} is empty")

        content_type = mime_type or mimetypes.guess_type(filename)[0] or DEFAULT_MIME_TYPE
        path = attachment_path(session_id, filename)
        try:
            await self.gateway.upload(path, content, content_type)
        except GatewayError as e:
            logger.error(
                f"Uploading {filename} for session {session_id} failed: {e}",
                extra={"extra_fields": {"session_id": session_id, "size": len(content)}}
            )
            raise UploadFailed(f"{filename} could not be uploaded: {e}") from e

        logger.info(f"Uploaded attachment {path} ({len(content)} bytes, {content_type})")
        return Attachment(
            url=self.gateway.get_public_url(path),
            name=filename,
            mime_type=content_type,
        )
