"""Rate limiting configuration.

Two layers:

* ``UploadRateLimitMiddleware`` gates every upload entry point with the
  Redis-backed :class:`~fileswift.services.rate_limiter.RateLimiter`
  held by ``app.state.services``.
* ``limiter`` is the slowapi per-route limiter used by the polling and
  diagnostic endpoints. Separated from main.py to avoid circular imports.
"""

import hmac

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from starlette.middleware.base import BaseHTTPMiddleware

from fileswift.config import Settings

EXEMPT_PREFIXES = ("/health", "/api/health")


def client_key(request: Request) -> str:
    """Client identity for rate limiting: forwarded IP first, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


limiter = Limiter(key_func=client_key, default_limits=["300/minute"])


def is_metered(request: Request) -> bool:
    if request.method == "OPTIONS":
        return False
    path = request.url.path
    if path.startswith(EXEMPT_PREFIXES):
        return False
    return path in ("/upload", "/api/upload") or path.startswith("/api/upload/")


def has_bypass_token(request: Request, settings: Settings) -> bool:
    supplied = request.headers.get(settings.rate_limit_bypass_header)
    if not supplied or not settings.rate_limit_bypass_token:
        return False
    return hmac.compare_digest(supplied, settings.rate_limit_bypass_token)


class UploadRateLimitMiddleware(BaseHTTPMiddleware):
    """Reject upload traffic over the per-client cap with 429."""

    async def dispatch(self, request: Request, call_next):
        services = getattr(request.app.state, "services", None)
        if services is None or not is_metered(request):
            return await call_next(request)
        if has_bypass_token(request, services.settings):
            return await call_next(request)

        decision = await services.limiter.check(client_key(request))
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": f"Rate limit of {decision.limit} requests per "
                               f"{decision.retry_after}s exceeded. Try again later.",
                    "retryAfter": decision.retry_after,
                },
                headers={
                    "Retry-After": str(decision.retry_after),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        if decision.metered:
            response.headers["X-RateLimit-Limit"] = str(decision.limit)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
