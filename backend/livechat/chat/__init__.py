"""Chat module - session and message stores, live feed and the two chat views."""

from .reconcile import reconcile
from .session_store import SessionStore, STATUS_TRANSITIONS
from .message_store import MessageStore, attachment_label
from .live_feed import LiveFeedSubscriber
from .notifications import NotificationSound
from .transcript import TranscriptLine, render_transcript, session_title
from .customer import CustomerChat, WidgetState
from .admin import AdminConsole
from .factory import create_customer_chat, create_admin_console

__all__ = [
    'reconcile',
    'SessionStore',
    'STATUS_TRANSITIONS',
    'MessageStore',
    'attachment_label',
    'LiveFeedSubscriber',
    'NotificationSound',
    'TranscriptLine',
    'render_transcript',
    'session_title',
    'CustomerChat',
    'WidgetState',
    'AdminConsole',
    'create_customer_chat',
    'create_admin_console',
]
