"""Models module."""

from .chat import (
    Attachment,
    ChatMessage,
    ChatSession,
    OPEN_STATUSES,
    SenderRole,
    SessionStatus,
)

__all__ = [
    'Attachment', 'ChatMessage', 'ChatSession',
    'OPEN_STATUSES', 'SenderRole', 'SessionStatus'
]
