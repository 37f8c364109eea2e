"""
Unit tests for the Supabase gateway HTTP surface.
Requests are captured by patching httpx.AsyncClient.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from livechat.exceptions import GatewayError
from livechat.gateway import MESSAGES_TABLE, SESSIONS_TABLE, RowFilter, SupabaseGateway


def make_gateway() -> SupabaseGateway:
    return SupabaseGateway(url="https://proj.supabase.co/", api_key="anon-key")


def make_response(payload=None, status_code=200) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    response.status_code = status_code
    response.is_success = status_code < 400
    response.text = ""
    response.raise_for_status = MagicMock()
    return response


def patch_client(response):
    """Patch httpx.AsyncClient so every request returns `response`."""
    patcher = patch("httpx.AsyncClient")
    mock_client = patcher.start()
    mock_instance = AsyncMock()
    mock_instance.request.return_value = response
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    mock_client.return_value = mock_instance
    return patcher, mock_instance


class TestSupabaseRows:
    """Tests for PostgREST requests."""

    def test_init(self):
        gateway = make_gateway()
        assert gateway.url == "https://proj.supabase.co"
        assert gateway.realtime.socket_url.startswith("wss://proj.supabase.co/realtime/v1/websocket?")

    def test_headers(self):
        headers = make_gateway()._rest_headers(prefer="return=representation")
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer anon-key"
        assert headers["Prefer"] == "return=representation"
        assert headers["Accept-Profile"] == "public"

    @pytest.mark.asyncio
    async def test_insert(self):
        row = {"id": "m1", "chat_session_id": "s1"}
        patcher, client = patch_client(make_response([row]))
        try:
            result = await make_gateway().insert(MESSAGES_TABLE, {"chat_session_id": "s1"})
        finally:
            patcher.stop()

        assert result == row
        method, url = client.request.await_args.args
        assert method == "POST"
        assert url == "https://proj.supabase.co/rest/v1/chat_messages"
        assert client.request.await_args.kwargs["json"] == {"chat_session_id": "s1"}

    @pytest.mark.asyncio
    async def test_insert_without_representation(self):
        patcher, _ = patch_client(make_response([]))
        try:
            with pytest.raises(GatewayError):
                await make_gateway().insert(SESSIONS_TABLE, {"status": "active"})
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_select_params(self):
        patcher, client = patch_client(make_response([]))
        try:
            await make_gateway().select(
                SESSIONS_TABLE,
                filters=[RowFilter.in_("status", ["active", "waiting"])],
                order_by="last_message_at",
                descending=True,
                limit=5,
            )
        finally:
            patcher.stop()

        params = client.request.await_args.kwargs["params"]
        assert ("select", "*") in params
        assert ("status", "in.(active,waiting)") in params
        assert ("order", "last_message_at.desc") in params
        assert ("limit", "5") in params

    @pytest.mark.asyncio
    async def test_update(self):
        patcher, client = patch_client(make_response([{"id": "m1", "is_read": True}]))
        try:
            rows = await make_gateway().update(
                MESSAGES_TABLE,
                {"is_read": True},
                [RowFilter.eq("chat_session_id", "s1"), RowFilter.eq("sender_id", "user")],
            )
        finally:
            patcher.stop()

        assert rows == [{"id": "m1", "is_read": True}]
        assert client.request.await_args.args[0] == "PATCH"
        assert client.request.await_args.kwargs["params"] == [
            ("chat_session_id", "eq.s1"),
            ("sender_id", "eq.user"),
        ]

    @pytest.mark.asyncio
    async def test_http_error_maps_to_gateway_error(self):
        response = make_response({"message": "permission denied for table"}, status_code=401)
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "unauthorized", request=MagicMock(), response=response
        )
        patcher, _ = patch_client(response)
        try:
            with pytest.raises(GatewayError, match="permission denied"):
                await make_gateway().select(SESSIONS_TABLE)
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_network_error_maps_to_gateway_error(self):
        patcher, client = patch_client(make_response([]))
        client.request.side_effect = httpx.ConnectError("connection refused")
        try:
            with pytest.raises(GatewayError):
                await make_gateway().select(SESSIONS_TABLE)
        finally:
            patcher.stop()


class TestSupabaseStorageAndAuth:
    """Tests for storage uploads and visitor signup."""

    @pytest.mark.asyncio
    async def test_upload(self):
        patcher, client = patch_client(make_response({"Key": "chat-files/s1/a.pdf"}))
        try:
            await make_gateway().upload("s1/a.pdf", b"%PDF", "application/pdf")
        finally:
            patcher.stop()

        method, url = client.request.await_args.args
        headers = client.request.await_args.kwargs["headers"]
        assert method == "POST"
        assert url == "https://proj.supabase.co/storage/v1/object/chat-files/s1/a.pdf"
        assert headers["x-upsert"] == "false"
        assert headers["cache-control"] == "max-age=3600"
        assert headers["Content-Type"] == "application/pdf"
        assert client.request.await_args.kwargs["content"] == b"%PDF"

    def test_public_url(self):
        url = make_gateway().get_public_url("s1/a.pdf")
        assert url == "https://proj.supabase.co/storage/v1/object/public/chat-files/s1/a.pdf"

    @pytest.mark.asyncio
    async def test_signup_new_account(self):
        patcher, client = patch_client(make_response({"user": {"id": "u-1"}}))
        try:
            account_id = await make_gateway().ensure_account("jane@example.com", "Jane")
        finally:
            patcher.stop()

        assert account_id == "u-1"
        body = client.request.await_args.kwargs["json"]
        assert body["email"] == "jane@example.com"
        assert body["data"] == {"name": "Jane", "is_chat_user": True}
        assert body["password"].endswith("A1!")

    @pytest.mark.asyncio
    async def test_signup_existing_account(self):
        patcher, _ = patch_client(make_response({"msg": "User already registered"}, status_code=422))
        try:
            account_id = await make_gateway().ensure_account("jane@example.com")
        finally:
            patcher.stop()
        assert account_id == "jane@example.com"

    @pytest.mark.asyncio
    async def test_signup_failure(self):
        patcher, _ = patch_client(make_response({"msg": "Signups not allowed"}, status_code=400))
        try:
            with pytest.raises(GatewayError):
                await make_gateway().ensure_account("jane@example.com")
        finally:
            patcher.stop()
