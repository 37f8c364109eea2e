"""
Request logging middleware.

Pure ASGI (not BaseHTTPMiddleware) so streamed attachment downloads pass
through untouched. Logs method, path, status and duration; JSON bodies are
logged with credentials masked. Bodies under `skip_body_prefixes` are never
captured.
"""

import json
import logging
import time
from typing import Iterable, List, Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)


def _render_body(chunks: List[bytes]) -> Optional[str]:
    data = b"".join(chunks)
    if not data:
        return None
    text = data.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return truncate_large_data(text)
    return truncate_large_data(json.dumps(filter_sensitive_data(payload), ensure_ascii=False))


def _status_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware:
    """Logs every HTTP request handled by the service."""

    def __init__(
        self,
        app: ASGIApp,
        exclude_paths: Optional[Iterable[str]] = None,
        skip_body_prefixes: Optional[Iterable[str]] = None
    ):
        """
        Args:
            app: The ASGI application
            exclude_paths: Paths not logged at all (e.g. ["/health"])
            skip_body_prefixes: Path prefixes whose bodies are not captured
        """
        self.app = app
        self.exclude_paths = set(exclude_paths or ("/health", "/"))
        self.skip_body_prefixes = tuple(skip_body_prefixes or ("/files/",))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        method = scope.get("method", "UNKNOWN")
        capture = not path.startswith(self.skip_body_prefixes)
        client = scope.get("client")
        context = {
            "request_id": id(scope),
            "method": method,
            "path": path,
            "client": client[0] if client else None,
        }

        request_chunks: List[bytes] = []
        response_chunks: List[bytes] = []
        status_code = 0

        async def logging_receive() -> Message:
            message = await receive()
            if capture and message["type"] == "http.request":
                request_chunks.append(message.get("body", b""))
            return message

        async def logging_send(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
            elif capture and message["type"] == "http.response.body":
                response_chunks.append(message.get("body", b""))
            await send(message)

        start = time.perf_counter()
        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"Request failed: {method} {path} - {e}",
                exc_info=True,
                extra={"extra_fields": {**context, "duration_ms": duration_ms}}
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        request_body = _render_body(request_chunks)
        response_body = _render_body(response_chunks)
        if request_body and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Request body: {request_body}", extra={"extra_fields": context})

        logger.log(
            _status_level(status_code),
            f"Request completed: {method} {path} - {status_code} ({duration_ms:.2f}ms)",
            extra={"extra_fields": {
                **context,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "request_body": request_body,
                "response_body": response_body if status_code >= 400 else None,
            }}
        )
