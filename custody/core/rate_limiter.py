# custody/core/rate_limiter.py
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from loguru import logger

from custody.core.config import RATE_LIMIT_ENABLED, RATE_LIMIT_READ, RATE_LIMIT_WRITE

# In-memory storage; untuk multi-instance gunakan storage_uri Redis
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

READ_LIMIT = RATE_LIMIT_READ
WRITE_LIMIT = RATE_LIMIT_WRITE


def get_rate_limiter() -> Limiter:
    return limiter


def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}", "error": "rate_limited"},
    )
