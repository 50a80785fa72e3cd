# authguard/core/rate_limit.py
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from authguard.core.config import settings
from authguard.core.request_context import get_real_client_ip
from authguard.core.security_logger import security_log
from authguard.services.brute_force_guard import BruteForceGuard, get_brute_force_guard

logger = logging.getLogger(__name__)

# Coarse per-endpoint limits; the brute-force guard does the fine-grained work.
# LOGIN_RATE_LIMIT stays above IP_BLOCK_THRESHOLD so the guard's IP_BLOCKED
# answer comes first and slowapi only catches traffic past it.
limiter = Limiter(key_func=get_real_client_ip, enabled=settings.RATE_LIMIT_ENABLED)


def get_subject_and_ip(request: Request) -> str:
    """
    Key OTP endpoints on subject:ip.

    The subject is the `sub` claim of the bearer token, read without
    verification since it only partitions quotas; the route dependency still
    authenticates the token. Anonymous callers share the per-IP bucket.
    """
    ip = get_real_client_ip(request)
    auth_header = request.headers.get("Authorization", "")
    subject = "anonymous"
    if auth_header.startswith("Bearer "):
        try:
            subject = str(jwt.get_unverified_claims(auth_header[7:]).get("sub") or subject)
        except JWTError:
            pass
    return f"{subject}:{ip}"


def _guard_for(request: Request) -> BruteForceGuard:
    # Exception handlers run outside dependency injection; honour overrides by hand
    app = request.scope.get("app")
    overrides = getattr(app, "dependency_overrides", None) or {}
    return overrides.get(get_brute_force_guard, get_brute_force_guard)()


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi rejections in the service's error shape, after recording them."""
    ip = get_real_client_ip(request)
    security_log.rate_limited(ip, request.url.path)
    logger.warning(f"Rate limit exceeded on {request.url.path} from {ip}: {exc.detail}")
    await _guard_for(request).record_rate_limited(
        ip,
        request.url.path,
        user_agent=request.headers.get("user-agent"),
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests. Please try again later.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
    )
