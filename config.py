"""
Runtime configuration for the Peripherals Store API.

Everything is read from environment variables so the service can run the same
way locally, in containers and on the hosting platform.
"""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Settings:
    database_url: str
    database_name: str
    mongo_timeout_ms: int
    jwt_secret: str
    jwt_expires_min: int
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Administrator"
    log_level: str = "INFO"
    port: int = 8000


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "peripherals_store"),
        mongo_timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "10000")),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
        jwt_expires_min=int(os.getenv("JWT_EXPIRES_MIN", "1440")),
        admin_email=os.getenv("ADMIN_EMAIL") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        admin_name=os.getenv("ADMIN_NAME", "Administrator"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", "8000")),
    )


_logging_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configures the root logger once; repeated calls are no-ops."""
    global _logging_configured
    if _logging_configured:
        return
    root = logging.getLogger()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))
    _logging_configured = True
