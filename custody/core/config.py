# custody/core/config.py
import os
import sys
import logging
from pathlib import Path
from typing import Dict

import pytz
from dotenv import load_dotenv
from loguru import logger

# .env di root project (satu level di atas package custody)
project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / ".env"

if dotenv_path.is_file():
    logger.debug(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Routes standard library log records into loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging():
    """Configure loguru sinks and intercept stdlib logging (uvicorn, fastapi, our own modules)."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path_str = os.getenv("LOG_FILE_PATH", "logs/custody_{time:YYYY-MM-DD}.log")
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "false").lower() == "true"

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    # File sink hanya jika path diisi
    if log_file_path_str:
        log_file_path = Path(log_file_path_str)
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file_path,
                level=log_level_name,
                format=log_format,
                rotation=log_rotation,
                retention=log_retention,
                serialize=log_serialize,
                enqueue=True,
                backtrace=True,
                diagnose=False,
                encoding="utf-8",
            )
            logger.info(f"File logging enabled at: {log_file_path}")
        except OSError as e:
            logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette")):
            existing_logger = logging.getLogger(name)
            existing_logger.handlers = [InterceptHandler()]
            existing_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


def parse_role_tiers(raw: str) -> Dict[str, str]:
    """Parse 'admin=approver,user=requester' into {'admin': 'approver', 'user': 'requester'}."""
    mapping: Dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        role, sep, tier = pair.partition("=")
        if not sep or not role.strip() or not tier.strip():
            logger.warning(f"Ignoring malformed ROLE_TIERS entry: {pair!r}")
            continue
        mapping[role.strip().lower()] = tier.strip().lower()
    return mapping


# --- JWT Configuration ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 30)

# --- Storage Configuration ---
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
if STORAGE_BACKEND not in ("memory", "mongo"):
    logger.critical(f"FATAL: unsupported STORAGE_BACKEND {STORAGE_BACKEND!r}.")
    raise ValueError(f"STORAGE_BACKEND must be 'memory' or 'mongo', got {STORAGE_BACKEND!r}")

MONGODB_URL: str = os.getenv("MONGODB_URL", "")
if STORAGE_BACKEND == "mongo" and not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "equipment_custody"
if MONGODB_URL:
    path_part = MONGODB_URL.rsplit("/", 1)[-1].split("?")[0]
    if path_part and "@" not in path_part and ":" not in path_part:
        _default_db_name = path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Calendar Configuration ---
REFERENCE_TIMEZONE_NAME: str = os.getenv("REFERENCE_TIMEZONE", "UTC")
try:
    REFERENCE_TIMEZONE = pytz.timezone(REFERENCE_TIMEZONE_NAME)
except pytz.UnknownTimeZoneError as e:
    logger.critical(f"FATAL: unknown REFERENCE_TIMEZONE {REFERENCE_TIMEZONE_NAME!r}.")
    raise ValueError(f"Unknown REFERENCE_TIMEZONE: {REFERENCE_TIMEZONE_NAME}") from e

# --- Authorization Configuration ---
ROLE_TIERS: Dict[str, str] = parse_role_tiers(
    os.getenv("ROLE_TIERS", "admin=approver,developer=approver,staff=approver,user=requester")
)

# --- Rate Limiting ---
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_READ: str = os.getenv("RATE_LIMIT_READ", "120/minute")
RATE_LIMIT_WRITE: str = os.getenv("RATE_LIMIT_WRITE", "30/minute")

logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Storage backend: {STORAGE_BACKEND}")
logger.info(f"Reference timezone: {REFERENCE_TIMEZONE_NAME}")
if STORAGE_BACKEND == "mongo":
    logger.info(f"Database Name: {DATABASE_NAME}")
