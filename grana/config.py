"""
Application Configuration.

Pydantic Settings model for the GranaStream client.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- API ---
    APP_ENV: Literal["dev", "hml", "prod"] = "prod"
    API_BASE_URL: str = (
        "https://granastreamappcontainer.purplehill-6384ee00"
        ".brazilsouth.azurecontainerapps.io/api/v1"
    )
    API_BASE_URL_DEV: str = ""
    API_BASE_URL_HML: str = ""
    HTTP_TIMEOUT_S: float = 30.0

    # --- Secure credential storage ---
    KEYCHAIN_SERVICE: str = "GranaStreamApp"
    CREDENTIAL_BACKEND: Literal["keyring", "encrypted_file", "memory"] = "keyring"
    CREDENTIAL_FILE: Path = Path.home() / ".grana" / "credentials.json"
    CREDENTIAL_SALT_FILE: Path = Path.home() / ".grana" / "credentials.salt"

    # --- Session ---
    TOKEN_REFRESH_LEEWAY_S: float = 60.0

    # --- Logging ---
    LOG_FILE: str = "grana.log"
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_risky_defaults(self) -> "AppConfig":
        """Emit a startup warning when the configuration will surprise the user.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        and the ``memory`` backend silently forgets every token at exit.
        """
        _log = logging.getLogger("grana.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found - all configuration loaded from "
                "environment variables or defaults."
            )

        if self.CREDENTIAL_BACKEND == "memory":
            _log.warning(
                "CREDENTIAL_BACKEND is 'memory' - sessions will not survive "
                "an application restart."
            )

        return self

    def resolved_base_url(self) -> str:
        """Return the API base URL for ``APP_ENV`` without a trailing slash.

        ``dev`` and ``hml`` use their dedicated URL when one is configured
        and fall back to ``API_BASE_URL`` otherwise.
        """
        override: str = ""
        if self.APP_ENV == "dev":
            override = self.API_BASE_URL_DEV
        elif self.APP_ENV == "hml":
            override = self.API_BASE_URL_HML
        return (override or self.API_BASE_URL).rstrip("/")

    @property
    def log_level(self) -> int:
        """Numeric logging level for ``LOG_LEVEL`` (``INFO`` if unknown)."""
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path skips the lock.

    Prefer direct constructor injection of ``AppConfig`` in new code;
    this factory exists for modules such as the logger that need
    configuration before the composition root has run.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next ``get_config()`` re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None
