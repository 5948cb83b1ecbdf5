"""Configuration with 4-layer resolution: defaults -> YAML -> env -> CLI.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``GLASS_BOWL_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from glass_bowl.retry import (
    DEFAULT_RETRY_DELAYS_MS,
    MAX_RETRIES,
    RetryPolicy,
    check_delay_table,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    """Antfarm dashboard server that serves the run database snapshot."""

    base_url: str = "http://localhost:3333"
    db_path: str = "/api/db"
    timeout: float = Field(
        default=10.0, gt=0.0, description="Per-request timeout in seconds."
    )

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = "base_url must start with http:// or https://"
            raise ValueError(msg)
        return value.rstrip("/")

    @property
    def snapshot_url(self) -> str:
        """Full URL of the snapshot endpoint."""
        path = self.db_path if self.db_path.startswith("/") else f"/{self.db_path}"
        return f"{self.base_url}{path}"


class RetrySettings(BaseModel):
    """Bounded retry and backoff for snapshot downloads and initialization."""

    max_retries: int = Field(default=MAX_RETRIES, ge=0, le=10)
    delays_ms: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_DELAYS_MS),
        description="Delay before each retry tier, in milliseconds.",
    )

    @model_validator(mode="after")
    def _validate_table(self) -> RetrySettings:
        check_delay_table(self.max_retries, self.delays_ms)
        return self

    def policy(self) -> RetryPolicy:
        """Build the immutable retry policy described by these settings."""
        return RetryPolicy(max_retries=self.max_retries, delays_ms=tuple(self.delays_ms))


class RefreshSettings(BaseModel):
    """Periodic re-query / re-render loop."""

    interval_seconds: float = Field(default=5.0, gt=0.0)
    reload_snapshot: bool = Field(
        default=True,
        description="Download a fresh snapshot on every tick before re-rendering.",
    )


class DisplaySettings(BaseModel):
    """Render surface presentation options."""

    title: str = "Glass Bowl"
    max_runs: int = Field(default=12, gt=0)
    show_completed_steps: bool = True
    full_screen: bool = Field(
        default=False, description="Draw on the terminal's alternate screen."
    )


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or ``--config`` path)
        3. Environment variables (prefixed ``GLASS_BOWL_``)
        4. CLI overrides (applied programmatically after loading)
    """

    model_config = SettingsConfigDict(
        env_prefix="GLASS_BOWL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    server: ServerSettings = Field(default_factory=ServerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    display: DisplaySettings = Field(default_factory=DisplaySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings (CLI) > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and CLI overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value CLI overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
