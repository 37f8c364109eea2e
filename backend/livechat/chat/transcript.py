"""
Transcript presentation model: what each chat view shows for a message.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..models import Attachment, ChatMessage, ChatSession, SenderRole

DEFAULT_SENDER_LABELS = {
    SenderRole.ADMIN: "Admin",
    SenderRole.USER: "User",
}


@dataclass(frozen=True)
class TranscriptLine:
    """One rendered transcript entry."""
    message_id: str
    align: str  # "right" for the viewer's own messages, "left" otherwise
    sender_label: Optional[str]  # shown only for the other party
    text: str  # attachment name in place of the body for file messages
    attachment: Optional[Attachment]
    time_label: str


def render_line(message: ChatMessage, viewer_role: SenderRole) -> TranscriptLine:
    own = message.sender_role == viewer_role
    label = None
    if not own:
        label = message.sender_name or DEFAULT_SENDER_LABELS[message.sender_role]
    return TranscriptLine(
        message_id=message.id,
        align="right" if own else "left",
        sender_label=label,
        text=message.attachment.name if message.attachment else message.body,
        attachment=message.attachment,
        time_label=message.created_at.astimezone().strftime("%H:%M"),
    )


def render_transcript(messages: Iterable[ChatMessage], viewer_role: SenderRole) -> List[TranscriptLine]:
    """Render an already reconciled transcript for the customer or the admin side."""
    viewer_role = SenderRole(viewer_role)
    return [render_line(message, viewer_role) for message in messages]


def session_title(session: ChatSession) -> str:
    return session.visitor_name or "Anonymous"
