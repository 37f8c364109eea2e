"""
Local Gateway - in-process implementation of the persistence gateway.

Tables live in memory, the change feed delivers row events to subscribers in
the publishing task, and attachment blobs go through a StorageInterface.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

from ..exceptions import GatewayError, SubscriptionError
from ..storage import StorageInterface
from ..utils.auth import generate_password, get_password_hash
from .interface import (
    MESSAGES_TABLE,
    SESSIONS_TABLE,
    ChangeCallback,
    ChangeEvent,
    ChangeType,
    ErrorCallback,
    PersistenceGateway,
    RowFilter,
    SubscriptionHandle,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _sort_key(value: Any):
    # Missing values sort first
    return (0, "") if value is None else (1, value)


class LocalGateway(PersistenceGateway):
    """
    Single-process gateway used for development, tests and self-hosted installs.
    """

    TABLES = (SESSIONS_TABLE, MESSAGES_TABLE)

    def __init__(
        self,
        storage: StorageInterface,
        public_base_url: str = "http://localhost:8000",
        bucket: str = "chat-files",
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the local gateway.

        Args:
            storage: Blob storage for uploaded attachments
            public_base_url: Base URL of the service serving /files
            bucket: Attachment bucket name (first path segment in storage)
            clock: Timestamp source for created_at/updated_at, UTC
        """
        self.storage = storage
        self.public_base_url = public_base_url.rstrip("/")
        self.bucket = bucket
        self._clock = clock or _utcnow
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._subscriptions: Dict[str, SubscriptionHandle] = {}
        self._accounts: Dict[str, Dict[str, Any]] = {}

    def _now(self) -> str:
        return self._clock().isoformat(timespec="microseconds")

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self.TABLES:
            raise GatewayError(f"Unknown table: {table}")
        return self._tables[table]

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        now = self._now()
        row.setdefault("created_at", now)
        row["updated_at"] = now

        if row["id"] in rows:
            raise GatewayError(f"Duplicate key {row['id']} in {table}")
        rows[row["id"]] = row

        await self._publish(ChangeEvent(table=table, type=ChangeType.INSERT, record=dict(row)))
        return dict(row)

    async def select(
        self,
        table: str,
        filters: Sequence[RowFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        rows = [
            dict(row) for row in self._table(table).values()
            if all(f.matches(row) for f in filters)
        ]
        if order_by:
            rows.sort(key=lambda row: _sort_key(row.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Sequence[RowFilter]
    ) -> List[Dict[str, Any]]:
        now = self._now()
        changed = []
        for row in self._table(table).values():
            if not all(f.matches(row) for f in filters):
                continue
            old = dict(row)
            row.update(values)
            row["updated_at"] = now
            changed.append((old, dict(row)))

        for old, new in changed:
            await self._publish(ChangeEvent(table=table, type=ChangeType.UPDATE, record=new, old_record=old))
        return [new for _, new in changed]

    async def subscribe(
        self,
        table: str,
        event: ChangeType,
        row_filter: RowFilter,
        callback: ChangeCallback,
        name: str,
        on_error: Optional[ErrorCallback] = None
    ) -> SubscriptionHandle:
        self._table(table)
        if name in self._subscriptions:
            raise GatewayError(f"Channel name already in use: {name}")

        handle = SubscriptionHandle(self, name, table, event, row_filter, callback, on_error)
        self._subscriptions[name] = handle
        logger.debug(f"Subscribed {name} to {event.value} on {table} where {row_filter}")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if self._subscriptions.get(handle.name) is handle:
            del self._subscriptions[handle.name]
        handle.mark_closed()
        logger.debug(f"Unsubscribed {handle.name}")

    @property
    def subscription_names(self) -> List[str]:
        """Names of live subscriptions."""
        return list(self._subscriptions)

    async def _publish(self, event: ChangeEvent) -> None:
        for handle in list(self._subscriptions.values()):
            if handle.matches(event):
                await handle.deliver(event)

    async def disconnect(self, reason: str = "connection lost") -> None:
        """Drop every live subscription, notifying each subscriber."""
        handles = list(self._subscriptions.values())
        self._subscriptions.clear()
        for handle in handles:
            await handle.fail(SubscriptionError(reason))

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        saved = await self.storage.save(
            f"{self.bucket}/{path}",
            content,
            metadata={"content_type": content_type},
            overwrite=False,
        )
        if not saved:
            raise GatewayError(f"Could not store object {path}")

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/files/{self.bucket}/{quote(path)}"

    async def ensure_account(self, email: str, name: Optional[str] = None) -> str:
        key = email.strip().lower()
        account = self._accounts.get(key)
        if account is None:
            account = {
                "id": str(uuid.uuid4()),
                "email": key,
                "name": name,
                "is_chat_user": True,
                "hashed_password": get_password_hash(generate_password()),
                "created_at": self._now(),
            }
            self._accounts[key] = account
            logger.info(f"Provisioned visitor account {account['id']}")
        return account["id"]

    async def aclose(self) -> None:
        await self.disconnect("gateway closed")
