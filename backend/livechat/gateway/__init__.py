"""Gateway module - the managed backend platform behind the chat core."""

from .interface import (
    MESSAGES_TABLE,
    SESSIONS_TABLE,
    ChangeEvent,
    ChangeType,
    PersistenceGateway,
    RowFilter,
    SubscriptionHandle,
)
from .local_gateway import LocalGateway
from .supabase_gateway import SupabaseGateway
from .factory import create_gateway

__all__ = [
    'MESSAGES_TABLE', 'SESSIONS_TABLE', 'ChangeEvent', 'ChangeType',
    'PersistenceGateway', 'RowFilter', 'SubscriptionHandle',
    'LocalGateway', 'SupabaseGateway', 'create_gateway'
]
