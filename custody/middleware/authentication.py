# custody/middleware/authentication.py
from typing import Awaitable, Callable, Optional, Set

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param
from jose import JWTError
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from custody.core.security import decode_token

# Path yang TIDAK memerlukan autentikasi
PUBLIC_PATHS: Set[str] = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def is_public_path(path: str) -> bool:
    if path in PUBLIC_PATHS:
        return True
    return path.startswith(("/docs", "/redoc", "/health"))


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail, "error": "unauthenticated"},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects unauthenticated calls to protected paths and stashes verified claims on request.state."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        request_id = getattr(request.state, "request_id", "N/A")

        if is_public_path(path):
            return await call_next(request)

        authorization: Optional[str] = request.headers.get("Authorization")
        scheme, token = get_authorization_scheme_param(authorization or "")
        if not authorization or scheme.lower() != "bearer" or not token:
            logger.warning(f"RID:{request_id} Auth failed: no Bearer token for protected path {path}.")
            return _unauthorized("Not authenticated")

        try:
            claims = decode_token(token)
        except JWTError as e:
            logger.warning(f"RID:{request_id} Auth failed: invalid token for path {path}. Error: {e}")
            return _unauthorized(f"Invalid token: {e}")

        request.state.token_claims = claims
        logger.debug(f"RID:{request_id} Authenticated '{claims['sub']}' for {path}.")
        return await call_next(request)
