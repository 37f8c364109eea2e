"""
Customer chat widget - one visitor bound to at most one session at a time.

State machine:
    NAME_COLLECTION -> CONNECTING -> READY <-> (SENDING | UPLOADING) -> CLOSED
A failed connect stays in CONNECTING with `last_error` set; retry with connect().
"""

import logging
from enum import Enum
from typing import List, Optional

from ..exceptions import SendFailed, StoreUnavailable, SubscriptionError, UploadFailed
from ..models import ChatMessage, ChatSession, SenderRole
from .live_feed import LiveFeedSubscriber
from .message_store import MessageStore, attachment_label
from .notifications import NotificationSound
from .reconcile import reconcile
from .session_store import SessionStore
from .transcript import TranscriptLine, render_transcript

logger = logging.getLogger(__name__)


class WidgetState(str, Enum):
    NAME_COLLECTION = "name_collection"
    CONNECTING = "connecting"
    READY = "ready"
    SENDING = "sending"
    UPLOADING = "uploading"
    CLOSED = "closed"


class CustomerChat:
    """
    Visitor-side chat view.

    Nothing identifies the visitor across a reload: reopening asks the
    session store again and rejoins the newest active session.
    """

    VIEW = "chat"

    def __init__(
        self,
        sessions: SessionStore,
        messages: MessageStore,
        notifier: Optional[NotificationSound] = None
    ):
        self.sessions = sessions
        self.messages = messages
        self.notifier = notifier or NotificationSound()
        self.feed = LiveFeedSubscriber(messages.gateway, self.VIEW)

        self.state = WidgetState.NAME_COLLECTION
        self.is_open = False
        self.visitor_name: Optional[str] = None
        self.visitor_email: Optional[str] = None
        self.session: Optional[ChatSession] = None
        self.transcript: List[ChatMessage] = []
        self.draft = ""
        self.last_error: Optional[str] = None
        self.feed_lost = False

    @property
    def lines(self) -> List[TranscriptLine]:
        return render_transcript(self.transcript, SenderRole.USER)

    async def open(self) -> None:
        """Open the widget; a visitor who already gave a name is reconnected right away."""
        self.is_open = True
        if self.session is not None:
            return
        if self.visitor_name:
            await self.connect()
        else:
            self.state = WidgetState.NAME_COLLECTION

    async def submit_name(self, name: str, email: Optional[str] = None) -> bool:
        """Collect the visitor's display name (required) and email (optional), then connect."""
        name = (name or "").strip()
        if not name:
            self.last_error = "Please enter your name"
            return False
        self.visitor_name = name
        self.visitor_email = (email or "").strip() or None
        return await self.connect()

    async def connect(self) -> bool:
        """
        Get or create the session, subscribe to it and load the transcript.

        Returns:
            bool: True once the widget is READY
        """
        if not self.visitor_name:
            self.state = WidgetState.NAME_COLLECTION
            return False

        self.state = WidgetState.CONNECTING
        self.last_error = None
        if self.visitor_email:
            await self.sessions.provision_visitor(self.visitor_email, self.visitor_name)

        try:
            session = await self.sessions.get_or_create_session(self.visitor_name, self.visitor_email)
            # Subscribe before loading so nothing inserted in between is missed
            await self.feed.open(session.id, self._on_message, on_error=self._on_feed_error)
            history = await self.messages.get_messages(session.id)
        except (StoreUnavailable, SubscriptionError) as e:
            await self.feed.close()
            self.last_error = str(e)
            logger.warning(f"Customer chat could not connect: {e}")
            return False

        self.session = session
        self.transcript = reconcile(history, self.transcript)
        self.feed_lost = False
        self.state = WidgetState.READY
        return True

    async def reconnect(self) -> bool:
        """Re-subscribe after a feed drop and re-fetch the full transcript."""
        if self.session is None:
            return await self.connect()
        session_id = self.session.id
        try:
            await self.feed.open(session_id, self._on_message, on_error=self._on_feed_error)
            history = await self.messages.get_messages(session_id)
        except (StoreUnavailable, SubscriptionError) as e:
            self.last_error = str(e)
            return False
        self.transcript = reconcile(history, self.transcript)
        self.feed_lost = False
        self.last_error = None
        return True

    async def _on_message(self, message: ChatMessage) -> None:
        known = any(m.id == message.id for m in self.transcript)
        self.transcript = reconcile(self.transcript, [message])
        if not known and message.sender_role == SenderRole.ADMIN:
            await self.notifier.play()

    async def _on_feed_error(self, error: Exception) -> None:
        self.feed_lost = True
        self.last_error = "Live updates disconnected. Reconnect to continue."

    async def send(self, text: Optional[str] = None) -> Optional[ChatMessage]:
        """
        Send the draft (or `text`). The draft is cleared immediately and
        restored if the send fails.
        """
        if text is not None:
            self.draft = text
        original = self.draft
        body = original.strip()
        if not body or self.session is None or self.state != WidgetState.READY:
            return None

        self.draft = ""
        self.state = WidgetState.SENDING
        self.last_error = None
        try:
            message = await self.messages.send_message(
                self.session.id,
                body,
                SenderRole.USER,
                sender_name=self.visitor_name,
                sender_email=self.visitor_email,
            )
        except SendFailed as e:
            self.draft = original
            self.last_error = f"Error sending message: {e}"
            return None
        finally:
            if self.state == WidgetState.SENDING:
                self.state = WidgetState.READY

        self.transcript = reconcile(self.transcript, [message])
        return message

    async def send_file(
        self,
        filename: str,
        content: bytes,
        mime_type: Optional[str] = None
    ) -> Optional[ChatMessage]:
        """Upload a file, then send a message referencing it."""
        if self.session is None or self.state != WidgetState.READY:
            return None

        self.state = WidgetState.UPLOADING
        self.last_error = None
        try:
            attachment = await self.messages.upload_attachment(filename, content, self.session.id, mime_type)
            message = await self.messages.send_message(
                self.session.id,
                attachment_label(filename),
                SenderRole.USER,
                sender_name=self.visitor_name,
                sender_email=self.visitor_email,
                attachment=attachment,
            )
        except UploadFailed as e:
            self.last_error = f"Error uploading file: {e}"
            return None
        except SendFailed as e:
            self.last_error = f"Error sending file: {e}"
            return None
        finally:
            if self.state == WidgetState.UPLOADING:
                self.state = WidgetState.READY

        self.transcript = reconcile(self.transcript, [message])
        return message

    async def close(self) -> None:
        """Close the widget and release its subscription."""
        self.is_open = False
        await self.feed.close()
        self.session = None
        self.transcript = []
        self.state = WidgetState.CLOSED

    async def __aenter__(self) -> "CustomerChat":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
