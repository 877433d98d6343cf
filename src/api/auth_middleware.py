"""ASGI middleware for Bearer token authentication of the function routes."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from src.audit.logger import AuditSink
from src.models import AuditEvent, SecurityEventType, Severity

# Paths that bypass authentication (exact match)
PUBLIC_PATHS = {"/health"}


class AuthMiddleware:
    """Validates Bearer tokens using constant-time comparison.

    Provider webhooks authenticate by signature instead and are passed
    through via ``webhook_paths``. CORS preflight requests are never
    challenged.
    """

    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_sink: AuditSink | None = None,
        webhook_paths: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self._token = token.encode()
        self.audit_sink = audit_sink
        self._webhook_paths = webhook_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path

        if path in PUBLIC_PATHS or path in self._webhook_paths or request.method == "OPTIONS":
            await self.app(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "")

        if not auth_header.startswith("Bearer "):
            reason = "invalid_format" if auth_header else "missing_token"
            response = JSONResponse({"error": "Authentication required"}, status_code=401)
            self._log_failure(request, reason)
            await response(scope, receive, send)
            return

        # An empty configured token never authenticates anyone
        if not self._token or not hmac.compare_digest(auth_header[7:].encode(), self._token):
            response = JSONResponse({"error": "Access denied"}, status_code=403)
            self._log_failure(request, "invalid_token")
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

    def _log_failure(self, request: Request, reason: str) -> None:
        if self.audit_sink:
            self.audit_sink.log(AuditEvent(
                action=SecurityEventType.FAILED_LOGIN.value,
                resource=f"{request.method} {request.url.path}",
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                risk_level=Severity.HIGH,
                details={"reason": reason},
            ))
