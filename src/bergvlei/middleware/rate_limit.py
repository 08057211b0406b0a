import time
from dataclasses import dataclass

import structlog
from fastapi import Request
from jose import JWTError, jwt
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from bergvlei.config import settings

log = structlog.get_logger()

_AUTH_MESSAGE = "Too many authentication attempts, please try again later."
_RIDDLE_MESSAGE = "Too many riddle requests, please slow down."
_GENERAL_MESSAGE = "Too many requests, please try again later."

# Rate limit rules as a list so we can have multiple rules for the same path.
# Rules are matched top-to-bottom; the first matching rule wins.
RATE_LIMIT_RULES = [
    {
        "path": "/api/v1/auth/register",
        "limit": 5,
        "window": 900,
        "key": "ip",
        "message": _AUTH_MESSAGE,
    },
    {
        "path": "/api/v1/auth/login",
        "limit": 5,
        "window": 900,
        "key": "ip",
        "message": _AUTH_MESSAGE,
    },
    {
        "path": "/api/v1/auth/forgot-password",
        "limit": 5,
        "window": 900,
        "key": "ip",
        "message": _AUTH_MESSAGE,
    },
    {
        "path": "/api/v1/riddles",
        "exact": True,
        "limit": 10,
        "window": 60,
        "key": "user",
        "method": "GET",
        "message": _RIDDLE_MESSAGE,
    },
    {
        "path": "/api/v1/riddles/generate-ai",
        "limit": 10,
        "window": 60,
        "key": "user",
        "message": _RIDDLE_MESSAGE,
    },
    {
        "path": "/api/v1",
        "limit": settings.RATE_LIMIT_MAX_REQUESTS,
        "window": settings.RATE_LIMIT_WINDOW_SECONDS,
        "key": "ip",
        "message": _GENERAL_MESSAGE,
    },
]

# Provider webhooks retry on 429, so they are never limited
SKIP_PATHS = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/v1/subscription/webhook",
}


@dataclass
class RateLimitResult:
    """Holds the outcome of a sliding-window rate limit check."""

    current_count: int
    limit: int
    window: int
    reset_at: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    @property
    def exceeded(self) -> bool:
        return self.current_count > self.limit


def _find_matching_rule(path: str, method: str) -> dict | None:
    """Return the first rate limit rule that matches the request path and method."""
    normalized = path.rstrip("/") or "/"
    for rule in RATE_LIMIT_RULES:
        if rule.get("exact"):
            if normalized != rule["path"]:
                continue
        elif not path.startswith(rule["path"]):
            continue
        required_method = rule.get("method")
        if required_method and required_method.upper() != method.upper():
            continue
        return rule
    return None


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For when present."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _get_token_subject(request: Request) -> str | None:
    """User id from a valid bearer token; authentication proper happens later."""
    auth_header = request.headers.get("authorization", "")
    if not auth_header.lower().startswith("bearer "):
        return None
    try:
        payload = jwt.decode(
            auth_header[7:].strip(), settings.JWT_SECRET_KEY, algorithms=["HS256"]
        )
    except JWTError:
        return None
    return payload.get("sub")


def _resolve_identifier(request: Request, rule: dict) -> str:
    """Build the identifier string for rate limiting based on the rule key type."""
    if rule["key"] == "ip":
        return _get_client_ip(request)
    return _get_token_subject(request) or _get_client_ip(request)


async def _check_rate_limit(redis, redis_key: str, rule: dict, request: Request) -> RateLimitResult:
    """Execute the sliding window check against Redis and return the result."""
    now = int(time.time())
    window = rule["window"]

    pipe = redis.pipeline()
    pipe.zremrangebyscore(redis_key, 0, now - window)
    pipe.zadd(redis_key, {f"{now}:{id(request)}": now})
    pipe.zcard(redis_key)
    pipe.expire(redis_key, window)
    results = await pipe.execute()

    return RateLimitResult(
        current_count=results[2],
        limit=rule["limit"],
        window=window,
        reset_at=now + window,
    )


def _add_rate_limit_headers(response: Response, result: RateLimitResult) -> None:
    """Attach X-RateLimit-* headers to a response."""
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(result.reset_at)


def _build_429_response(result: RateLimitResult, message: str) -> JSONResponse:
    """Create a 429 Too Many Requests response in the error envelope."""
    response = JSONResponse(
        status_code=429,
        content={"success": False, "error": {"message": message}},
    )
    _add_rate_limit_headers(response, result)
    response.headers["Retry-After"] = str(result.window)
    return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-backed sliding window rate limiter; fails open when Redis is down."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        rule = _find_matching_rule(request.url.path, request.method)
        if rule is None:
            return await call_next(request)

        identifier = _resolve_identifier(request, rule)
        redis_key = f"ratelimit:{rule['path']}:{identifier}"

        try:
            redis = request.app.state.redis
            result = await _check_rate_limit(redis, redis_key, rule, request)
        except (RedisError, OSError, AttributeError) as exc:
            log.warning("rate_limit_redis_error", error=str(exc), path=request.url.path)
            return await call_next(request)

        if result.exceeded:
            log.warning(
                "rate_limit_exceeded",
                path=request.url.path,
                identifier=identifier,
                limit=result.limit,
                count=result.current_count,
            )
            return _build_429_response(result, rule["message"])

        response = await call_next(request)
        _add_rate_limit_headers(response, result)
        return response
