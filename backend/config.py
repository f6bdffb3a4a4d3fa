"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No lifecycle logic
- No default constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from constants import (
    CREDENTIALS_DIR_DEFAULT,
    HOST_DEFAULT,
    PAIRING_ARTIFACT_FORMAT_DEFAULT,
    PAIRING_ARTIFACT_TTL_S_DEFAULT,
    PORT_DEFAULT,
    RECONNECT_BACKOFF_DEFAULT,
    RECONNECT_BASE_DELAY_MS_DEFAULT,
    RECONNECT_MAX_DELAY_MS_DEFAULT,
    RECONNECT_MAX_RETRIES_DEFAULT,
    START_MODE_DEFAULT,
    START_WAIT_TIMEOUT_S_DEFAULT,
)

_VALID_BACKOFFS = ("exponential", "fixed")
_VALID_START_MODES = ("async", "wait")
_VALID_ARTIFACT_FORMATS = ("png", "text")


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to registry/gateway/bootstrap code.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Transport / credentials
    # ------------------------------------------------------------------

    # "package.module:attribute" naming a zero-argument transport factory
    transport: str | None = None
    credentials_dir: Path = Path(CREDENTIALS_DIR_DEFAULT)
    restore_sessions_on_startup: bool = False

    # ------------------------------------------------------------------
    # Reconnection policy
    # ------------------------------------------------------------------

    reconnect_max_retries: int = RECONNECT_MAX_RETRIES_DEFAULT
    reconnect_base_delay_ms: int = RECONNECT_BASE_DELAY_MS_DEFAULT
    reconnect_max_delay_ms: int = RECONNECT_MAX_DELAY_MS_DEFAULT
    reconnect_backoff: str = RECONNECT_BACKOFF_DEFAULT

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    pairing_artifact_ttl_s: float = PAIRING_ARTIFACT_TTL_S_DEFAULT
    pairing_artifact_format: str = PAIRING_ARTIFACT_FORMAT_DEFAULT

    # ------------------------------------------------------------------
    # Start façade
    # ------------------------------------------------------------------

    start_mode: str = START_MODE_DEFAULT
    start_wait_timeout_s: float = START_WAIT_TIMEOUT_S_DEFAULT

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str = HOST_DEFAULT
    port: int = PORT_DEFAULT
    cors_allow_origins: tuple[str, ...] = field(default=("*",))

    def __post_init__(self) -> None:
        if self.reconnect_backoff not in _VALID_BACKOFFS:
            raise ValueError(
                f"RECONNECT_BACKOFF must be one of {_VALID_BACKOFFS}, "
                f"got {self.reconnect_backoff!r}"
            )
        if self.start_mode not in _VALID_START_MODES:
            raise ValueError(
                f"START_MODE must be one of {_VALID_START_MODES}, got {self.start_mode!r}"
            )
        if self.pairing_artifact_format not in _VALID_ARTIFACT_FORMATS:
            raise ValueError(
                "PAIRING_ARTIFACT_FORMAT must be one of "
                f"{_VALID_ARTIFACT_FORMATS}, got {self.pairing_artifact_format!r}"
            )
        if self.reconnect_max_retries < 0:
            raise ValueError("RECONNECT_MAX_RETRIES must be >= 0")

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a variable holds an unusable value.
        """
        origins = os.environ.get("CORS_ALLOW_ORIGINS", "*")

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=_env_flag("ENABLE_JSON_LOGS", "1"),

            transport=os.environ.get("TRANSPORT") or None,
            credentials_dir=Path(
                os.environ.get("SESSION_CREDENTIALS_DIR", CREDENTIALS_DIR_DEFAULT)
            ),
            restore_sessions_on_startup=_env_flag("RESTORE_SESSIONS_ON_STARTUP", "0"),

            reconnect_max_retries=int(
                os.environ.get("RECONNECT_MAX_RETRIES", RECONNECT_MAX_RETRIES_DEFAULT)
            ),
            reconnect_base_delay_ms=int(
                os.environ.get("RECONNECT_BASE_DELAY_MS", RECONNECT_BASE_DELAY_MS_DEFAULT)
            ),
            reconnect_max_delay_ms=int(
                os.environ.get("RECONNECT_MAX_DELAY_MS", RECONNECT_MAX_DELAY_MS_DEFAULT)
            ),
            reconnect_backoff=os.environ.get("RECONNECT_BACKOFF", RECONNECT_BACKOFF_DEFAULT),

            pairing_artifact_ttl_s=float(
                os.environ.get("PAIRING_ARTIFACT_TTL_S", PAIRING_ARTIFACT_TTL_S_DEFAULT)
            ),
            pairing_artifact_format=os.environ.get(
                "PAIRING_ARTIFACT_FORMAT", PAIRING_ARTIFACT_FORMAT_DEFAULT
            ),

            start_mode=os.environ.get("START_MODE", START_MODE_DEFAULT),
            start_wait_timeout_s=float(
                os.environ.get("START_WAIT_TIMEOUT_S", START_WAIT_TIMEOUT_S_DEFAULT)
            ),

            host=os.environ.get("HOST", HOST_DEFAULT),
            port=int(os.environ.get("PORT", PORT_DEFAULT)),
            cors_allow_origins=tuple(
                o.strip() for o in origins.split(",") if o.strip()
            ) or ("*",),
        )
