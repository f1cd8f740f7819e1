"""
Application Settings

Environment-driven configuration. Values are read once per process from the
environment (after loading the project ``.env``) and exposed through
``get_settings()``.
"""

from __future__ import annotations

import base64
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from app.core.exceptions import ConfigurationError
from app.core.logging import get_logger

logger = get_logger("expenseflow.config")

# backend/app/core/config.py -> backend -> project root
ENV_PATH = Path(__file__).resolve().parents[3] / ".env"


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer") from exc


def parse_key_list(raw: str) -> dict[int, bytes]:
    """Parse ``"1:<base64>,2:<base64>"`` into a version -> key mapping."""
    keys: dict[int, bytes] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        version_text, sep, encoded = chunk.partition(":")
        if not sep:
            raise ConfigurationError("ENCRYPTION_KEYS entries must look like '<version>:<base64 key>'")
        try:
            version = int(version_text)
            key = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Malformed encryption key entry for version '{version_text}'") from exc
        if len(key) != 32:
            raise ConfigurationError(f"Encryption key version {version} must decode to 32 bytes")
        keys[version] = key
    return keys


@dataclass
class Settings:
    """Runtime configuration for the ExpenseFlow API."""

    environment: str = "development"
    demo_mode: bool = True
    storage_backend: str = "local"
    encryption_keys: dict[int, bytes] = field(default_factory=dict)
    encryption_active_version: int = 1
    bcrypt_rounds: int = 12
    rate_limit_requests: int = 120
    rate_limit_window_seconds: int = 60
    session_cookie_name: str = "session"
    default_currency: str = "USD"

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.environ.get("ENVIRONMENT", "development")
        keys = parse_key_list(os.environ.get("ENCRYPTION_KEYS", ""))
        active_version = _env_int("ENCRYPTION_ACTIVE_VERSION", max(keys) if keys else 1)

        if not keys:
            if environment == "production":
                raise ConfigurationError("ENCRYPTION_KEYS is required in production")
            # Ephemeral key: data written in this process is unreadable after restart
            logger.warning("ENCRYPTION_KEYS not set; generating an ephemeral development key")
            keys = {active_version: secrets.token_bytes(32)}

        if active_version not in keys:
            raise ConfigurationError(f"No encryption key configured for active version {active_version}")

        return cls(
            environment=environment,
            demo_mode=_env_bool("DEMO_MODE", "true") and environment != "production",
            storage_backend=os.environ.get("STORAGE_BACKEND", "local"),
            encryption_keys=keys,
            encryption_active_version=active_version,
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
            rate_limit_requests=_env_int("RATE_LIMIT_REQUESTS", 120),
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", 60),
            session_cookie_name=os.environ.get("SESSION_COOKIE_NAME", "session"),
            default_currency=os.environ.get("DEFAULT_CURRENCY", "USD"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    global _settings
    if _settings is None:
        load_dotenv(ENV_PATH)
        _settings = Settings.from_env()
    return _settings
