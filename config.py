"""
Application Configuration

Settings are read from the environment (and a local .env file) once at
startup and handed to every component through the application context.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    port: int = 8000
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "default-secret-change-in-production"
    token_ttl_hours: int = 24
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    db_timeout_ms: int = 10000
    bcrypt_rounds: int = 12
    log_level: str = "INFO"


def _get_env(key: str, default: str) -> str:
    value = os.getenv(key)
    return value if value else default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from environment variables, loading .env first."""
    load_dotenv(env_file)
    origins = _get_env("CORS_ORIGINS", "*")
    return Settings(
        port=int(_get_env("PORT", "8000")),
        database_url=_get_env("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=_get_env("DATABASE_NAME", "storefront"),
        jwt_secret=_get_env("JWT_SECRET", "default-secret-change-in-production"),
        token_ttl_hours=int(_get_env("TOKEN_TTL_HOURS", "24")),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        db_timeout_ms=int(_get_env("DB_TIMEOUT_MS", "10000")),
        bcrypt_rounds=int(_get_env("BCRYPT_ROUNDS", "12")),
        log_level=_get_env("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
