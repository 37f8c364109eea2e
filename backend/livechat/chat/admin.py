"""
Admin chat console - session list with unread counts and one selected conversation.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Union

from ..exceptions import (
    InvalidStatusTransition,
    SendFailed,
    SessionNotFound,
    StoreUnavailable,
    SubscriptionError,
    UploadFailed,
)
from ..models import ChatMessage, ChatSession, SenderRole, SessionStatus
from .live_feed import LiveFeedSubscriber
from .message_store import MessageStore, attachment_label
from .notifications import NotificationSound
from .reconcile import reconcile
from .session_store import SessionStore
from .transcript import TranscriptLine, render_transcript

logger = logging.getLogger(__name__)


class AdminConsole:
    """
    Operator-side chat view.

    The open-session list is re-polled every `poll_interval` seconds while
    the console is started. Only the selected session has a live feed.
    """

    VIEW = "admin-chat"

    def __init__(
        self,
        sessions: SessionStore,
        messages: MessageStore,
        admin_name: str = "Admin",
        notifier: Optional[NotificationSound] = None,
        poll_interval: float = 5.0,
        auto_select: bool = False
    ):
        """
        Initialize the console.

        Args:
            sessions: Session store
            messages: Message store
            admin_name: Sender name stamped on operator messages
            notifier: Sound played when a visitor writes in the selected session
            poll_interval: Seconds between session list refreshes
            auto_select: Select the most recent session when nothing is selected
        """
        self.sessions = sessions
        self.messages = messages
        self.admin_name = admin_name
        self.notifier = notifier or NotificationSound()
        self.poll_interval = poll_interval
        self.auto_select = auto_select
        self.feed = LiveFeedSubscriber(messages.gateway, self.VIEW)

        self.open_sessions: List[ChatSession] = []
        self.unread_counts: Dict[str, int] = {}
        self.selected: Optional[ChatSession] = None
        self.transcript: List[ChatMessage] = []
        self.draft = ""
        self.sending = False
        self.uploading = False
        self.last_error: Optional[str] = None
        self.feed_lost = False
        self._poll_task: Optional[asyncio.Task] = None
        self._loading: Optional[str] = None
        self._pending: List[ChatMessage] = []

    @property
    def lines(self) -> List[TranscriptLine]:
        return render_transcript(self.transcript, SenderRole.ADMIN)

    def unread_count(self, session_id: str) -> int:
        """Unread visitor messages: local for the selected session, polled otherwise."""
        if self.selected is not None and session_id == self.selected.id:
            return sum(
                1 for m in self.transcript
                if m.session_id == session_id and m.sender_role == SenderRole.USER and not m.is_read
            )
        return self.unread_counts.get(session_id, 0)

    async def refresh_sessions(self) -> List[ChatSession]:
        """
        Reload open sessions and their unread counts.

        On failure the previous list is kept and `last_error` is set.
        """
        try:
            sessions = await self.sessions.list_open_sessions()
            counts = await self.messages.count_unread([s.id for s in sessions])
        except StoreUnavailable as e:
            self.last_error = str(e)
            return self.open_sessions

        self.open_sessions = sessions
        self.unread_counts = counts
        if self.selected is not None:
            for session in sessions:
                if session.id == self.selected.id:
                    self.selected = session
                    break
        elif self.auto_select and sessions:
            await self.select_session(sessions[0])
        return sessions

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.refresh_sessions()
            except Exception as e:
                self.last_error = "Could not refresh sessions"
                logger.error(f"Session list refresh failed: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        """Start polling the session list in the background."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def select_session(self, session: Union[ChatSession, str]) -> bool:
        """
        Switch the conversation pane to a session.

        The previous live feed is torn down, the new one is opened before the
        transcript is loaded, and the visitor's messages are marked read.
        If the transcript cannot be loaded the new feed is closed and the pane
        keeps its previous session and transcript.

        Returns:
            bool: True if the transcript was loaded
        """
        if isinstance(session, str):
            found = next((s for s in self.open_sessions if s.id == session), None)
            if found is None:
                try:
                    found = await self.sessions.get_session(session)
                except (SessionNotFound, StoreUnavailable) as e:
                    self.last_error = str(e)
                    return False
            session = found

        self.last_error = None
        self._loading = session.id
        self._pending = []
        try:
            await self.feed.open(session.id, self._on_message, on_error=self._on_feed_error)
            history = await self.messages.get_messages(session.id)
        except (StoreUnavailable, SubscriptionError) as e:
            # The pane keeps its previous conversation, without a live feed
            await self.feed.close()
            if self.selected is not None:
                self.feed_lost = True
            self.last_error = str(e)
            logger.warning(f"Admin console could not open session {session.id}: {e}")
            return False
        finally:
            self._loading = None

        same_session = self.selected is not None and self.selected.id == session.id
        previous = self.transcript if same_session else []
        self.selected = session
        self.transcript = reconcile(previous, history, self._pending)
        self._pending = []
        self.feed_lost = False
        await self._mark_read(session.id)
        return True

    async def reconnect(self) -> bool:
        """Re-subscribe the selected session and merge a fresh transcript into the shown one."""
        if self.selected is None:
            return False
        return await self.select_session(self.selected)

    async def _mark_read(self, session_id: str) -> None:
        try:
            await self.messages.mark_session_read(session_id)
        except StoreUnavailable as e:
            self.last_error = str(e)
            return
        # The feed only carries inserts, so local copies are patched here
        self.transcript = [
            m.model_copy(update={"is_read": True})
            if m.session_id == session_id and m.sender_role == SenderRole.USER else m
            for m in self.transcript
        ]
        self.unread_counts[session_id] = 0

    async def _on_message(self, message: ChatMessage) -> None:
        if message.session_id == self._loading:
            # Arrived between subscribe and history fetch
            self._pending.append(message)
            return
        if self.selected is None or message.session_id != self.selected.id:
            return
        known = any(m.id == message.id for m in self.transcript)
        self.transcript = reconcile(self.transcript, [message])
        if message.sender_role == SenderRole.USER:
            if not known:
                await self.notifier.play()
            await self._mark_read(message.session_id)

    async def _on_feed_error(self, error: Exception) -> None:
        self.feed_lost = True
        self.last_error = "Live updates disconnected. Reconnect to continue."

    async def send(self, text: Optional[str] = None) -> Optional[ChatMessage]:
        """Send the draft (or `text`) to the selected session as the operator."""
        if text is not None:
            self.draft = text
        original = self.draft
        body = original.strip()
        if not body or self.selected is None or self.sending:
            return None

        self.draft = ""
        self.sending = True
        self.last_error = None
        try:
            message = await self.messages.send_message(
                self.selected.id,
                body,
                SenderRole.ADMIN,
                sender_name=self.admin_name,
            )
        except SendFailed as e:
            self.draft = original
            self.last_error = f"Error sending message: {e}"
            return None
        finally:
            self.sending = False

        self.transcript = reconcile(self.transcript, [message])
        await self.refresh_sessions()
        return message

    async def send_file(
        self,
        filename: str,
        content: bytes,
        mime_type: Optional[str] = None
    ) -> Optional[ChatMessage]:
        """Upload a file into the selected session, then send a message referencing it."""
        if self.selected is None or self.uploading:
            return None

        session_id = self.selected.id
        self.uploading = True
        self.last_error = None
        try:
            attachment = await self.messages.upload_attachment(filename, content, session_id, mime_type)
            message = await self.messages.send_message(
                session_id,
                attachment_label(filename),
                SenderRole.ADMIN,
                sender_name=self.admin_name,
                attachment=attachment,
            )
        except UploadFailed as e:
            self.last_error = f"Error uploading file: {e}"
            return None
        except SendFailed as e:
            self.last_error = f"Error sending file: {e}"
            return None
        finally:
            self.uploading = False

        self.transcript = reconcile(self.transcript, [message])
        await self.refresh_sessions()
        return message

    async def set_status(self, status: SessionStatus) -> Optional[ChatSession]:
        """
        Change the selected session's status.

        A closed session leaves the list and the pane is cleared.
        """
        if self.selected is None:
            return None
        try:
            updated = await self.sessions.update_status(self.selected.id, status)
        except (InvalidStatusTransition, SessionNotFound, StoreUnavailable) as e:
            self.last_error = str(e)
            return None

        if updated.is_open:
            self.selected = updated
        else:
            await self.feed.close()
            self.selected = None
            self.transcript = []
        await self.refresh_sessions()
        return updated

    async def close_selected(self) -> Optional[ChatSession]:
        return await self.set_status(SessionStatus.CLOSED)

    async def aclose(self) -> None:
        """Stop polling and release the live feed."""
        await self.stop()
        await self.feed.close()

    async def __aenter__(self) -> "AdminConsole":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
