# custody/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status as fastapi_status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import Middleware & Konfigurasi
from custody.core.config import STORAGE_BACKEND, setup_logging
from custody.core.errors import (
    AuthorizationError,
    ConflictError,
    CustodyError,
    NotFoundError,
    StateError,
    ValidationError,
)
from custody.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from custody.middleware.authentication import AuthMiddleware
from custody.middleware.logging import RequestLoggingMiddleware

# Import komponen aplikasi lain
from custody.api.deps import get_coordinator
from custody.api.v1.api import api_router_v1
from custody.core.lifecycle import LifecycleCoordinator
from custody.core.notifications import NotificationDispatcher, log_notification
from custody.db.database import build_store

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: fastapi_status.HTTP_400_BAD_REQUEST,
    ConflictError: fastapi_status.HTTP_409_CONFLICT,
    StateError: fastapi_status.HTTP_409_CONFLICT,
    NotFoundError: fastapi_status.HTTP_404_NOT_FOUND,
    AuthorizationError: fastapi_status.HTTP_403_FORBIDDEN,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    store = await build_store()
    app.state.coordinator = LifecycleCoordinator(store, NotificationDispatcher(log_notification))
    logger.info(f"Lifecycle coordinator ready (storage backend: {STORAGE_BACKEND}).")
    yield
    logger.info("Application shutdown...")
    await app.state.coordinator.notifier.drain()
    await store.close()


# Buat instance FastAPI dengan lifespan manager
app = FastAPI(
    title="Equipment Custody API",
    description="Reservation approval and custody tracking for shared equipment.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- KONFIGURASI MIDDLEWARE ---

# 1. Error Handling
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


@app.exception_handler(CustodyError)
async def custody_exception_handler(request: Request, exc: CustodyError):
    status_code = ERROR_STATUS_CODES.get(type(exc), fastapi_status.HTTP_400_BAD_REQUEST)
    content = {"detail": exc.message, "error": exc.category}
    if isinstance(exc, ConflictError):
        content["conflicting_reservation_ids"] = exc.conflicting_ids
    logger.warning(f"Rejected [{exc.category}] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation Error: {exc.errors()}", exc_info=False)
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "errors": jsonable_errors(exc)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled Exception: {exc}", exc_info=True)
    return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "An internal server error occurred."})


def jsonable_errors(exc: RequestValidationError):
    # ctx bisa berisi objek exception yang tidak bisa di-serialize
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


# 2. Authentication Middleware (inner, sees request_id set by the logging middleware)
app.add_middleware(AuthMiddleware)

# 3. Request Logging Middleware
app.add_middleware(RequestLoggingMiddleware)

# 4. Rate Limiter State (untuk decorator @limiter.limit)
app.state.limiter = get_rate_limiter()

# 5. GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=500)

# --- END MIDDLEWARE ---


# Include router API
app.include_router(api_router_v1)


# Root endpoint
@app.get("/")
async def read_root():
    return {"message": "Equipment Custody API"}


@app.get("/health")
async def health(coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    if not await coordinator.store.ping():
        raise HTTPException(status_code=503, detail="Storage backend is not reachable.")
    return {"status": "ok", "storage_backend": STORAGE_BACKEND}
