"""
Supabase Gateway - the managed backend platform over its public HTTP APIs.

Rows go through PostgREST, attachments through the storage API, visitor
accounts through the auth API and the change feed through the realtime socket.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from ..exceptions import GatewayError
from ..utils.auth import generate_password
from .interface import (
    ChangeCallback,
    ChangeType,
    ErrorCallback,
    PersistenceGateway,
    RowFilter,
    SubscriptionHandle,
)
from .realtime import RealtimeClient

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    """Extract a concise error message from a platform error response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error", "hint"):
            if payload.get(key):
                return str(payload[key])
    return str(payload)[:500]


class SupabaseGateway(PersistenceGateway):
    """
    Gateway backed by a Supabase project.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        bucket: str = "chat-files",
        schema: str = "public",
        cache_control: str = "3600",
        timeout: float = 30.0,
        heartbeat_interval: float = 25.0,
        join_timeout: float = 10.0
    ):
        """
        Initialize the Supabase gateway.

        Args:
            url: Project URL (https://<ref>.supabase.co)
            api_key: Project API key (anon or service role)
            bucket: Storage bucket for chat attachments
            schema: Database schema holding the chat tables
            cache_control: Cache max-age (seconds) recorded on uploaded objects
            timeout: HTTP timeout per request, seconds
            heartbeat_interval: Realtime heartbeat period, seconds
            join_timeout: Maximum wait for a realtime join reply, seconds
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.schema = schema
        self.cache_control = cache_control
        self.timeout = timeout
        self.realtime = RealtimeClient(
            self.url,
            api_key,
            schema=schema,
            heartbeat_interval=heartbeat_interval,
            join_timeout=join_timeout,
        )

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _rest_headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = self._headers({
            "Content-Type": "application/json",
            "Accept-Profile": self.schema,
            "Content-Profile": self.schema,
        })
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _rest_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    @staticmethod
    def _filter_params(filters: Sequence[RowFilter]) -> List[Tuple[str, str]]:
        return [(f.column, f.to_postgrest()) for f in filters]

    async def _request(
        self,
        method: str,
        url: str,
        raise_for_status: bool = True,
        **kwargs
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **kwargs)
                if raise_for_status:
                    response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(
                f"Platform request failed: {method} {url} - {e.response.status_code} {detail}",
                extra={"extra_fields": {"method": method, "url": url, "status_code": e.response.status_code}}
            )
            raise GatewayError(f"{method} {url} failed with {e.response.status_code}: {detail}") from e
        except httpx.HTTPError as e:
            logger.error(f"Platform unreachable: {method} {url} - {e}")
            raise GatewayError(f"{method} {url} failed: {e}") from e

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            self._rest_url(table),
            json=values,
            headers=self._rest_headers(prefer="return=representation"),
        )
        rows = response.json()
        if not rows:
            raise GatewayError(f"Insert into {table} returned no row")
        return rows[0]

    async def select(
        self,
        table: str,
        filters: Sequence[RowFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        params = [("select", "*")] + self._filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request(
            "GET",
            self._rest_url(table),
            params=params,
            headers=self._rest_headers(),
        )
        return response.json()

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Sequence[RowFilter]
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "PATCH",
            self._rest_url(table),
            params=self._filter_params(filters),
            json=values,
            headers=self._rest_headers(prefer="return=representation"),
        )
        return response.json()

    async def subscribe(
        self,
        table: str,
        event: ChangeType,
        row_filter: RowFilter,
        callback: ChangeCallback,
        name: str,
        on_error: Optional[ErrorCallback] = None
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(self, name, table, event, row_filter, callback, on_error)
        await self.realtime.join(handle)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        await self.realtime.leave(handle)
        handle.mark_closed()

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        await self._request(
            "POST",
            f"{self.url}/storage/v1/object/{self.bucket}/{quote(path)}",
            content=content,
            headers=self._headers({
                "Content-Type": content_type,
                "cache-control": f"max-age={self.cache_control}",
                "x-upsert": "false",
            }),
        )

    def get_public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def ensure_account(self, email: str, name: Optional[str] = None) -> str:
        response = await self._request(
            "POST",
            f"{self.url}/auth/v1/signup",
            raise_for_status=False,
            json={
                "email": email,
                "password": generate_password(),
                "data": {"name": name, "is_chat_user": True},
            },
            headers=self._headers({"Content-Type": "application/json"}),
        )

        if response.is_success:
            payload = response.json()
            user = payload.get("user") or payload
            return str(user["id"])

        detail = _error_detail(response)
        if "already registered" in detail.lower():
            # Existing accounts are identified by their email
            return email
        raise GatewayError(f"Account signup failed with {response.status_code}: {detail}")

    async def aclose(self) -> None:
        await self.realtime.close()
