from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".tubesummary"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


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
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class AppSettings(BaseSettings):
    """
    Runtime configuration, read from `TUBESUMMARY_*` environment variables or `.env`.
    """

    model_config = SettingsConfigDict(
        env_prefix="TUBESUMMARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs.",
    )

    # YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        description="API key for the YouTube Data API v3.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="Base URL of the YouTube Data API.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for a single YouTube API request.",
    )
    youtube_search_page_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Number of videos returned per search page.",
    )

    # Caption selection.
    caption_primary_language: str = Field(
        default="ko",
        description="Caption language picked first when a video has several tracks.",
    )
    caption_secondary_language: str | None = Field(
        default="en",
        description="Caption language picked when the primary language is missing.",
    )
    caption_content_format: Literal["srt", "xml"] = Field(
        default="srt",
        description="Timed-text format requested when downloading a caption track.",
    )

    # Rate limiting of outbound YouTube calls, per client.
    rate_limit_max_requests: int = Field(
        default=10,
        ge=1,
        description="Outbound YouTube calls allowed per client within one window.",
    )
    rate_limit_window_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Fixed rate-limit window length in seconds.",
    )
    rate_limit_max_tracked_clients: int = Field(
        default=500,
        ge=1,
        description="Maximum number of clients tracked; least recently seen are evicted.",
    )

    # Summary generation.
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI chat completions API.",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Optional override of the OpenAI API base URL.",
    )
    openai_model: str = Field(
        default="gpt-4",
        description="Chat model used to generate summaries.",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for summary generation.",
    )
    openai_timeout_seconds: float = Field(
        default=60.0,
        description="Timeout for a single generation request.",
    )
    summary_language: str = Field(
        default="Korean",
        description="Language the summary, key points and tags are written in.",
    )
    summary_max_transcript_chars: int = Field(
        default=12_000,
        ge=0,
        description="Transcript characters embedded in the prompt (0 disables the cap).",
    )
    summary_close_reset_delay_seconds: float = Field(
        default=0.3,
        ge=0.0,
        description="Grace delay before a closed summary modal resets to idle.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description="Directory for log files. Defaults to `${TUBESUMMARY_DATA_DIR}/logs`.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry sink backend. `log` emits structured telemetry locally.",
    )

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("youtube_api_key", "openai_api_key", "openai_base_url", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("caption_secondary_language", mode="before")
    @classmethod
    def _normalize_secondary_language(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("caption_content_format", mode="before")
    @classmethod
    def _normalize_caption_format(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBESUMMARY_CAPTION_CONTENT_FORMAT must be a string.")
        normalized = value.strip().lower()
        if normalized in {"srt", "xml"}:
            return normalized
        raise ValueError("TUBESUMMARY_CAPTION_CONTENT_FORMAT must be set to: srt, xml.")

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _normalize_youtube_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBESUMMARY_YOUTUBE_API_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("TUBESUMMARY_YOUTUBE_API_BASE_URL must not be empty.")
        return normalized

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("TUBESUMMARY_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("TUBESUMMARY_TELEMETRY_SINK must be set to: none, log.")


def _validate_api_keys(settings: AppSettings) -> None:
    missing: list[str] = []
    if settings.youtube_api_key is None:
        missing.append("TUBESUMMARY_YOUTUBE_API_KEY is not set")
    if settings.openai_api_key is None:
        missing.append("TUBESUMMARY_OPENAI_API_KEY is not set")
    if missing:
        bullets = "\n".join(f"- {item}" for item in missing)
        raise ValueError(f"Invalid configuration:\n{bullets}")


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
        field_name: _resolve_path(getattr(settings, field_name)) for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_api_keys: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_api_keys:
        _validate_api_keys(settings)

    return settings
