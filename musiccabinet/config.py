from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from musiccabinet.models.webservice_contracts import CallType

DEFAULT_DATA_DIR = ".musiccabinet"
DEFAULT_LASTFM_BASE_URL = "https://ws.audioscrobbler.com/2.0/"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("musiccabinet.db")),
    ("log_dir", Path("logs")),
    ("refresh_lock_path", Path("refresh.lock")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "lastfm_log_invocations",
    "refresh_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{MUSICCABINET_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


def parse_call_types(value: str) -> tuple[CallType, ...]:
    by_method = {call_type.method.lower(): call_type for call_type in CallType}
    parsed: list[CallType] = []
    for raw_method in value.split(","):
        method = raw_method.strip().lower()
        if not method:
            continue
        call_type = by_method.get(method)
        if call_type is None:
            raise ValueError(f"Unknown Last.fm method: {raw_method.strip()}")
        if call_type not in parsed:
            parsed.append(call_type)
    return tuple(parsed)


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `MUSICCABINET_*` environment variables (or a
    `.env` file) and documented here together with its default.
    """

    model_config = SettingsConfigDict(
        env_prefix="MUSICCABINET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database, logs and lock files.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("musiccabinet.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('musiccabinet.db'))}",
    )

    # Last.fm web service.
    lastfm_api_key: str | None = Field(
        default=None,
        description="Last.fm API key sent with every request.",
    )
    lastfm_base_url: str = Field(
        default=DEFAULT_LASTFM_BASE_URL,
        description="Last.fm web service endpoint.",
    )
    lastfm_user_agent: str = Field(
        default="musiccabinet/0.1",
        description="User-Agent header sent to Last.fm.",
    )
    lastfm_http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Socket timeout for a single Last.fm request.",
    )
    lastfm_call_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request before a recoverable failure is given up on.",
    )
    lastfm_retry_sleep_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Fixed wait between attempts after a recoverable failure.",
    )
    lastfm_log_invocations: bool = Field(
        default=True,
        description="Check and record invocation history for Last.fm requests.",
    )

    # Throttle.
    throttle_max_calls: int = Field(
        default=1500,
        ge=1,
        description="Maximum Last.fm calls per throttle window (5/s over five minutes).",
    )
    throttle_window_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Throttle sliding window length in seconds.",
    )

    # Refresh scheduling.
    refresh_enabled: bool = Field(
        default=False,
        description="Run the background artist refresh loop.",
    )
    refresh_poll_interval_seconds: int = Field(
        default=3600,
        ge=1,
        description="Cadence of the background artist refresh loop.",
    )
    refresh_max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent Last.fm fetches during an artist refresh.",
    )
    refresh_bucket_count: int = Field(
        default=30,
        ge=1,
        description="Recency buckets; only the oldest bucket of invoked artists is refreshed.",
    )
    refresh_methods: str = Field(
        default="artist.getInfo,artist.getSimilar,artist.getTopTracks,artist.getTopTags",
        description="Comma-separated Last.fm methods refreshed by the background loop.",
    )
    refresh_lock_path: Path = Field(
        default=_default_in_data_dir(Path("refresh.lock")),
        description=(
            "Single-instance lock for the refresh loop. "
            f"{_data_dir_default_note(Path('refresh.lock'))}"
        ),
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=False,
        description="Emit structured telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry sink. `log` writes events through the structured logger.",
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("MUSICCABINET_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("MUSICCABINET_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("lastfm_base_url", mode="before")
    @classmethod
    def _normalize_lastfm_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("MUSICCABINET_LASTFM_BASE_URL must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("MUSICCABINET_LASTFM_BASE_URL must not be empty.")
        return normalized

    @field_validator("lastfm_user_agent", mode="before")
    @classmethod
    def _normalize_lastfm_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("MUSICCABINET_LASTFM_USER_AGENT must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("MUSICCABINET_LASTFM_USER_AGENT must not be empty.")
        return normalized

    @field_validator("refresh_methods", mode="before")
    @classmethod
    def _normalize_refresh_methods(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("MUSICCABINET_REFRESH_METHODS must be a string.")
        call_types = parse_call_types(value)
        return ",".join(call_type.method for call_type in call_types)

    @property
    def refresh_call_types(self) -> tuple[CallType, ...]:
        return parse_call_types(self.refresh_methods)

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("lastfm_api_key", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_lastfm_configuration(*, lastfm_api_key: str | None) -> None:
    errors: list[str] = []

    if lastfm_api_key is None:
        errors.append("MUSICCABINET_LASTFM_API_KEY is required to call Last.fm.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid Last.fm configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_api_key: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_api_key:
        _validate_lastfm_configuration(lastfm_api_key=settings.lastfm_api_key)

    return settings
