"""
MODULE OVERVIEW:
Application-wide configuration, in two layers.

WHAT IS HAPPENING HERE:
`Settings` holds the process-level knobs (paths, stream timings, ports) and is read
from the environment / `.env` with Pydantic Settings, exactly once at startup.
`NotifierOptions` is the persisted settings map an administrator edits at runtime
(where notifications show, which statuses are tracked, ping/test toggles, toast
defaults, allowed roles). It lives in a JSON document next to the event buffer and
is re-read on every request, because there is no in-memory state worth trusting
between requests.

Both objects are handed to constructors explicitly; nothing below reaches for a
global options lookup.
"""
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from order_notifier.shared.storage import KeyValueStore


class Settings(BaseSettings):
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # Everything persisted (buffer, options, user meta, debug log) lives under here
    DATA_DIR: Path = Path("data")

    # Optional request signature; unset disables the nonce check
    NONCE_SECRET: str | None = None

    # Stream session
    STREAM_LIFETIME_S: float = 300.0
    STREAM_CHECK_INTERVAL_MS: int = 2000
    TEST_EVENT_INTERVAL_S: float = 45.0
    FALLBACK_PING_S: float = 90.0
    QUICK_PING_COUNT: int = 3
    QUICK_PING_INTERVAL_S: float = 1.0

    # Buffer / delivery
    EVENT_RETENTION_DAYS: int = 14
    ACK_MARKER_TTL_S: int = 300
    BUFFER_LOCK_TIMEOUT_S: float = 2.0

    # Polling fallback
    POLL_CACHE_TTL_S: int = 300
    ADAPTIVE_CEILING_S: float = 600.0

    # Client reconnect delay after a clean stream close (EventSource default)
    CLIENT_RETRY_S: float = 3.0

    # Debug log
    DEBUG_LOG_FILE: str = "ON_debug.log"
    DEBUG_LOG_ROTATION: str = "5 MB"
    DEBUG_LOG_RETENTION: int = 10

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

    @property
    def storage_dir(self) -> Path:
        return self.DATA_DIR / "order-notifier"

    @property
    def buffer_path(self) -> Path:
        return self.storage_dir / "sse-buffer.json"

    @property
    def debug_log_path(self) -> Path:
        return self.DATA_DIR / self.DEBUG_LOG_FILE


DEFAULT_ROLES = ["administrator", "shop_manager"]


class NotifierOptions(BaseModel):
    """The persisted, admin-editable settings map."""

    scope: Literal["orders_only", "everywhere"] = "orders_only"
    statuses: list[str] = Field(default_factory=lambda: ["wc-processing"])
    custom_message: str = "A new order has arrived!"
    reload_table: bool = False
    allowed_roles: list[str] = Field(default_factory=lambda: list(DEFAULT_ROLES))

    enable_ping: bool = False
    ping_interval: int = 15
    enable_test_events: bool = False

    default_notification_type: Literal["info", "success", "warning", "error"] = "info"
    default_notification_position: Literal[
        "top-center", "top-right", "top-left", "bottom-center", "bottom-right", "bottom-left"
    ] = "top-right"
    default_notification_icon: str = ""
    # Stored in milliseconds
    default_notification_timeout: int = 0
    max_notifications: int = 5

    # Adaptive polling (seconds)
    interval: int = 30
    adaptive_interval: bool = False
    adaptive_attempts: int = 5
    adaptive_step: int = 60

    @field_validator("default_notification_timeout")
    @classmethod
    def _clamp_timeout(cls, value: int) -> int:
        return max(0, min(60000, value))

    @field_validator("max_notifications")
    @classmethod
    def _clamp_max_notifications(cls, value: int) -> int:
        return max(1, min(10, value))

    @field_validator("ping_interval", "interval", "adaptive_attempts", "adaptive_step")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @classmethod
    def from_form(cls, raw: dict[str, Any]) -> "NotifierOptions":
        """Build options from admin form input, where the toast timeout is given in seconds."""
        data = dict(raw)
        if "default_notification_timeout" in data:
            data["default_notification_timeout"] = int(float(data["default_notification_timeout"]) * 1000)
        return cls.model_validate(data)

    def tracked_statuses(self) -> list[str]:
        """Statuses without the `wc-` prefix the settings page stores them with."""
        return [s.removeprefix("wc-") for s in self.statuses]


OPTIONS_KEY = "order_notifier_settings"


class OptionsRepository:
    """Loads and saves `NotifierOptions` through a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> NotifierOptions:
        raw = self.store.get(OPTIONS_KEY)
        if not isinstance(raw, dict):
            return NotifierOptions()
        # Unknown keys from older versions are dropped, missing keys take defaults
        known = {k: v for k, v in raw.items() if k in NotifierOptions.model_fields}
        try:
            return NotifierOptions.model_validate(known)
        except ValidationError as e:
            logger.warning(f"event=options_invalid reason='{e.error_count()} errors' action=defaults")
            return NotifierOptions()

    def save(self, options: NotifierOptions) -> bool:
        ok = self.store.set(OPTIONS_KEY, options.model_dump())
        logger.info(f"event=options_saved ok={ok}")
        return ok


settings = Settings()
