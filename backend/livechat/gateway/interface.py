"""
Persistence Gateway Interface - the managed backend platform as seen by the chat core.

The platform offers row storage with change notification, a blob store with
public URLs and a password-based account system. Implementations raise
GatewayError for every failure.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "chat_sessions"
MESSAGES_TABLE = "chat_messages"


class ChangeType(str, Enum):
    """Row change kinds published by the change feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class RowFilter:
    """Column predicate used for queries and server-side feed filtering."""
    column: str
    value: Any
    op: str = "eq"  # eq, in

    @classmethod
    def eq(cls, column: str, value: Any) -> "RowFilter":
        return cls(column, value, "eq")

    @classmethod
    def in_(cls, column: str, values: Sequence[Any]) -> "RowFilter":
        return cls(column, tuple(values), "in")

    def matches(self, row: Dict[str, Any]) -> bool:
        """Evaluate the predicate against a row."""
        actual = _plain(row.get(self.column))
        if self.op == "eq":
            return actual == _plain(self.value)
        if self.op == "in":
            return actual in {_plain(v) for v in self.value}
        raise ValueError(f"Unsupported filter operator: {self.op}")

    def to_postgrest(self) -> str:
        """Render the operator/value part, e.g. `eq.42` or `in.(a,b)`."""
        if self.op == "eq":
            return f"eq.{_render(self.value)}"
        if self.op == "in":
            return "in.(" + ",".join(_render(v) for v in self.value) + ")"
        raise ValueError(f"Unsupported filter operator: {self.op}")

    def __str__(self) -> str:
        return f"{self.column}={self.to_postgrest()}"


def _plain(value: Any) -> Any:
    # Enum members compare by their stored value
    return value.value if isinstance(value, Enum) else value


def _render(value: Any) -> str:
    value = _plain(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "null" if value is None else str(value)


@dataclass
class ChangeEvent:
    """A single row change delivered by the feed."""
    table: str
    type: ChangeType
    record: Dict[str, Any]
    old_record: Dict[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class SubscriptionHandle:
    """
    Capability for one live change-feed subscription.

    Returned by PersistenceGateway.subscribe and released with close() or by
    leaving an `async with` block.
    """

    def __init__(
        self,
        gateway: "PersistenceGateway",
        name: str,
        table: str,
        event: ChangeType,
        row_filter: RowFilter,
        callback: ChangeCallback,
        on_error: Optional[ErrorCallback] = None
    ):
        self.gateway = gateway
        self.name = name
        self.table = table
        self.event = event
        self.row_filter = row_filter
        self._callback = callback
        self._on_error = on_error
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ChangeEvent) -> bool:
        """Whether an event belongs to this subscription."""
        return (
            not self._closed
            and event.table == self.table
            and event.type == self.event
            and self.row_filter.matches(event.record)
        )

    async def deliver(self, event: ChangeEvent) -> None:
        """Hand an event to the subscriber. Subscriber failures never reach the publisher."""
        if self._closed:
            return
        try:
            await self._callback(event)
        except Exception:
            logger.exception(f"Subscriber callback failed on channel {self.name}")

    async def fail(self, error: Exception) -> None:
        """Mark the subscription dead and notify the subscriber."""
        if self._closed:
            return
        self._closed = True
        logger.warning(f"Subscription {self.name} dropped: {error}")
        if self._on_error is not None:
            await self._on_error(error)

    def mark_closed(self) -> None:
        self._closed = True

    async def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if not self._closed:
            await self.gateway.unsubscribe(self)

    async def __aenter__(self) -> "SubscriptionHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<SubscriptionHandle {self.name} {self.table} {self.row_filter} {state}>"


class PersistenceGateway(ABC):
    """
    Abstract gateway to the managed backend platform.
    All methods raise GatewayError when the platform cannot serve the request.
    """

    @abstractmethod
    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert one row.

        Args:
            table: Table name
            values: Column values; `id`, `created_at` and `updated_at` are assigned by the store

        Returns:
            Dict: The persisted row
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[RowFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Query rows matching every filter.

        Args:
            table: Table name
            filters: Predicates combined with AND
            order_by: Column to sort by
            descending: Sort direction
            limit: Maximum number of rows

        Returns:
            List[Dict]: Matching rows
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Sequence[RowFilter]
    ) -> List[Dict[str, Any]]:
        """
        Update every row matching the filters.

        Returns:
            List[Dict]: The updated rows
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        event: ChangeType,
        row_filter: RowFilter,
        callback: ChangeCallback,
        name: str,
        on_error: Optional[ErrorCallback] = None
    ) -> SubscriptionHandle:
        """
        Subscribe to row changes filtered server-side.

        Args:
            table: Table to watch
            event: Change kind to receive
            row_filter: Server-side filter (e.g. chat_session_id=eq.<id>)
            callback: Awaited once per matching change
            name: Channel name, unique per subscription
            on_error: Awaited once if the subscription drops

        Returns:
            SubscriptionHandle: Closeable capability for the subscription
        """
        pass

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Tear down a subscription."""
        pass

    @abstractmethod
    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        """
        Store a blob. Never overwrites an existing object.

        Args:
            path: Object path inside the attachments bucket
            content: Raw bytes
            content_type: MIME type recorded with the object
        """
        pass

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Publicly resolvable URL of an uploaded object."""
        pass

    @abstractmethod
    async def ensure_account(self, email: str, name: Optional[str] = None) -> str:
        """
        Make sure a password-based account exists for the email.

        Returns:
            str: Account identifier
        """
        pass

    async def aclose(self) -> None:
        """Release connections held by the gateway."""
        return None
