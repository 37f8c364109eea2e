"""
Chat Factory - Builds configured chat views on top of a gateway.
"""

from typing import Any, Optional

from ..gateway import PersistenceGateway
from .admin import AdminConsole
from .customer import CustomerChat
from .message_store import MessageStore
from .notifications import NotificationSound, SoundPlayer
from .session_store import SessionStore


def _stores(gateway: PersistenceGateway):
    sessions = SessionStore(gateway)
    return sessions, MessageStore(gateway, sessions)


def create_customer_chat(
    gateway: PersistenceGateway,
    config: Any,
    player: Optional[SoundPlayer] = None
) -> CustomerChat:
    """
    Create a customer widget.

    Args:
        gateway: Persistence gateway shared with the admin side
        config: Settings object (notification_volume)
        player: Sound output; no sound is played when omitted

    Returns:
        CustomerChat instance
    """
    sessions, messages = _stores(gateway)
    notifier = NotificationSound(player=player, volume=config.notification_volume)
    return CustomerChat(sessions, messages, notifier=notifier)


def create_admin_console(
    gateway: PersistenceGateway,
    config: Any,
    player: Optional[SoundPlayer] = None,
    admin_name: Optional[str] = None,
    auto_select: bool = False
) -> AdminConsole:
    """
    Create an admin console.

    Args:
        gateway: Persistence gateway shared with the customer side
        config: Settings object (session_poll_interval, default_admin_name, notification_volume)
        player: Sound output; no sound is played when omitted
        admin_name: Operator display name (default_admin_name when omitted)
        auto_select: Select the most recent session when nothing is selected

    Returns:
        AdminConsole instance
    """
    sessions, messages = _stores(gateway)
    return AdminConsole(
        sessions,
        messages,
        admin_name=admin_name or config.default_admin_name,
        notifier=NotificationSound(player=player, volume=config.notification_volume),
        poll_interval=config.session_poll_interval,
        auto_select=auto_select,
    )
