"""Server configuration via environment variables."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field, field_validator

from .types import parse_size

VALID_PROVIDERS = {"imagen", "placeholder"}
DEFAULT_IMAGE_MODEL = "imagen-4.0-fast-generate-001"


def _resolve_provider(flag_value: str, api_key: str) -> str:
    """Derive image_provider from env vars.

    - ``STORYBOARD_PROVIDER`` set → used as given (validated later).
    - Unset → ``imagen`` when a Gemini key is available, ``placeholder`` otherwise.
    """
    value = flag_value.strip().lower()
    if value:
        return value
    return "imagen" if api_key else "placeholder"


def _resolve_tracing_enabled(flag_value: str, tracking_uri: str) -> bool:
    """Derive tracing_enabled from env vars.

    - ``STORYBOARD_TRACING_ENABLED=false`` → always disabled (explicit opt-out).
    - Otherwise enabled when ``MLFLOW_TRACKING_URI`` is non-empty.
    """
    if flag_value.lower() == "false":
        return False
    return bool(tracking_uri)


class ServerConfig(BaseModel):
    """Runtime configuration resolved from environment."""

    gemini_api_key: str = Field(default="")
    image_provider: str = Field(default="placeholder")
    image_model: str = Field(default=DEFAULT_IMAGE_MODEL)
    default_size: str = Field(default="1024x1024")
    concurrency_limit: int = Field(default=3)
    max_retries: int = Field(default=2)
    retry_delay_seconds: float = Field(default=1.0)
    cache_ttl_seconds: int = Field(default=3600)
    cache_max_entries: int = Field(default=100)
    provider_timeout_seconds: float = Field(default=60.0)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0)
    retry_max_delay: float = Field(default=30.0)
    results_db_path: str = Field(default="")
    max_archived_runs: int = Field(default=50)
    tracing_enabled: bool = Field(default=False)
    mlflow_tracking_uri: str = Field(default="")
    mlflow_experiment_name: str = Field(default="storyboard-mcp")

    @field_validator("image_provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        provider = value.strip().lower()
        if provider not in VALID_PROVIDERS:
            allowed = ", ".join(sorted(VALID_PROVIDERS))
            raise ValueError(f"Invalid image provider '{value}'. Allowed: {allowed}")
        return provider

    @field_validator("default_size")
    @classmethod
    def validate_default_size(cls, value: str) -> str:
        width, height = parse_size(value)
        return f"{width}x{height}"

    @field_validator(
        "concurrency_limit", "cache_ttl_seconds", "cache_max_entries",
        "retry_max_attempts", "max_archived_runs",
    )
    @classmethod
    def validate_positive_ints(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Configuration values must be >= 1")
        return value

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @field_validator("retry_delay_seconds")
    @classmethod
    def validate_retry_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("retry_delay_seconds must be >= 0")
        return value

    @field_validator("provider_timeout_seconds", "retry_base_delay", "retry_max_delay")
    @classmethod
    def validate_positive_floats(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and backoff delays must be > 0")
        return value

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Build config from environment variables."""
        api_key = os.getenv("GEMINI_API_KEY", "")
        return cls(
            gemini_api_key=api_key,
            image_provider=_resolve_provider(os.getenv("STORYBOARD_PROVIDER", ""), api_key),
            image_model=os.getenv("STORYBOARD_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            default_size=os.getenv("STORYBOARD_DEFAULT_SIZE", "1024x1024"),
            concurrency_limit=int(os.getenv("STORYBOARD_CONCURRENCY", "3")),
            max_retries=int(os.getenv("STORYBOARD_MAX_RETRIES", "2")),
            retry_delay_seconds=float(os.getenv("STORYBOARD_RETRY_DELAY", "1.0")),
            cache_ttl_seconds=int(os.getenv("STORYBOARD_CACHE_TTL", "3600")),
            cache_max_entries=int(os.getenv("STORYBOARD_CACHE_MAX_ENTRIES", "100")),
            provider_timeout_seconds=float(os.getenv("STORYBOARD_PROVIDER_TIMEOUT", "60.0")),
            retry_max_attempts=int(os.getenv("STORYBOARD_RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay=float(os.getenv("STORYBOARD_RETRY_BASE_DELAY", "1.0")),
            retry_max_delay=float(os.getenv("STORYBOARD_RETRY_MAX_DELAY", "30.0")),
            results_db_path=os.getenv("STORYBOARD_RESULTS_DB", ""),
            max_archived_runs=int(os.getenv("STORYBOARD_MAX_ARCHIVED_RUNS", "50")),
            tracing_enabled=_resolve_tracing_enabled(
                os.getenv("STORYBOARD_TRACING_ENABLED", ""),
                os.getenv("MLFLOW_TRACKING_URI", ""),
            ),
            mlflow_tracking_uri=os.getenv("MLFLOW_TRACKING_URI", ""),
            mlflow_experiment_name=os.getenv("MLFLOW_EXPERIMENT_NAME", "storyboard-mcp"),
        )


_config: ServerConfig | None = None


def get_config() -> ServerConfig:
    """Return the global config singleton, creating it on first access.

    Loads ``~/.config/storyboard-mcp/.env`` before reading env vars.
    Process environment always takes precedence over the config file.
    """
    global _config
    if _config is None:
        from .dotenv import load_env_file

        injected = load_env_file()
        if injected:
            logging.getLogger(__name__).info(
                "Filled %d unset var(s) from env file: %s", len(injected), ", ".join(sorted(injected)),
            )
        _config = ServerConfig.from_env()
    return _config


def update_config(**overrides: object) -> ServerConfig:
    """Patch the live config; ``None`` overrides are ignored."""
    global _config
    cfg = get_config()
    data = cfg.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    _config = ServerConfig(**data)
    return _config
