# authguard/core/request_context.py
"""
Request context middleware and client identification.

Attaches per-request context (request_id, IP, user agent) that the security
event log auto-attaches to every event, and extracts the ClientInfo the
brute-force guard works from.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from authguard.core import clock
from authguard.core.config import settings

USER_AGENT_MAX_LENGTH = 512


@dataclass(frozen=True)
class ClientInfo:
    """Network and header identity of the caller of a guarded request."""

    ip: str = "unknown"
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""


@dataclass
class RequestContext:
    """Context attached to each request for security event logging."""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=clock.utcnow)
    ip_address: str = "unknown"
    user_agent: str | None = None
    request_method: str | None = None
    request_path: str | None = None


# Context variable for request-scoped data
_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


def get_request_context() -> RequestContext | None:
    """Get the current request context."""
    return _request_context.get()


def get_real_client_ip(request: Request) -> str:
    """
    Resolve the client IP.

    Order: CF-Connecting-IP, X-Real-IP, first X-Forwarded-For hop, socket peer.
    Proxy headers are ignored when TRUSTED_PROXY_HEADERS is off.
    """
    if settings.TRUSTED_PROXY_HEADERS:
        cf_ip = request.headers.get("CF-Connecting-IP")
        if cf_ip and cf_ip.strip():
            return cf_ip.strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_client_info(request: Request) -> ClientInfo:
    """FastAPI dependency building the ClientInfo for the current request."""
    user_agent = request.headers.get("User-Agent", "")
    return ClientInfo(
        ip=get_real_client_ip(request),
        user_agent=user_agent[:USER_AGENT_MAX_LENGTH],
        accept_language=request.headers.get("Accept-Language", ""),
        accept_encoding=request.headers.get("Accept-Encoding", ""),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that creates and attaches request context.

    Must be added early in the middleware stack.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        user_agent = request.headers.get("User-Agent", "")
        if user_agent and len(user_agent) > USER_AGENT_MAX_LENGTH:
            user_agent = user_agent[: USER_AGENT_MAX_LENGTH - 3] + "..."

        ctx = RequestContext(
            request_id=request.headers.get("X-Request-ID") or str(uuid.uuid4()),
            ip_address=get_real_client_ip(request),
            user_agent=user_agent or None,
            request_method=request.method,
            request_path=request.url.path[:255],
        )

        # Add request_id to response headers for tracing
        token = _request_context.set(ctx)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = ctx.request_id
            return response
        finally:
            _request_context.reset(token)
