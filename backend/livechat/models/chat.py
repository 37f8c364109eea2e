"""
Chat Models - Sessions, messages and attachment descriptors.

Rows are stored with the column names of the `chat_sessions` and
`chat_messages` tables; `from_row` maps them onto the models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator


class SessionStatus(str, Enum):
    """Lifecycle state of a chat session."""
    ACTIVE = "active"
    WAITING = "waiting"
    CLOSED = "closed"


# Statuses listed in the admin session queue
OPEN_STATUSES = (SessionStatus.ACTIVE, SessionStatus.WAITING)


class SenderRole(str, Enum):
    """Who authored a message."""
    USER = "user"
    ADMIN = "admin"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from the store are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Attachment(BaseModel):
    """Uploaded file descriptor carried by a message."""
    url: str
    name: str
    mime_type: str


class ChatSession(BaseModel):
    """One continuous visitor conversation."""
    id: str
    visitor_name: Optional[str] = None
    visitor_email: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    last_message_at: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("last_message_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChatSession":
        """Build a session from a `chat_sessions` row."""
        return cls(
            id=str(row["id"]),
            visitor_name=row.get("user_name"),
            visitor_email=row.get("user_email"),
            status=row.get("status") or SessionStatus.ACTIVE,
            last_message_at=row.get("last_message_at") or row["created_at"],
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


class ChatMessage(BaseModel):
    """A single transcript entry. Only `is_read` ever changes after creation."""
    id: str
    session_id: str
    sender_role: SenderRole
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
    body: str
    attachment: Optional[Attachment] = None
    is_read: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChatMessage":
        """Build a message from a `chat_messages` row."""
        attachment = None
        if row.get("file_url"):
            attachment = Attachment(
                url=row["file_url"],
                name=row.get("file_name") or "File",
                mime_type=row.get("file_type") or "application/octet-stream",
            )
        return cls(
            id=str(row["id"]),
            session_id=str(row["chat_session_id"]),
            sender_role=row["sender_id"],
            sender_name=row.get("sender_name"),
            sender_email=row.get("sender_email"),
            body=row.get("message") or "",
            attachment=attachment,
            is_read=bool(row.get("is_read", False)),
            created_at=row["created_at"],
        )
