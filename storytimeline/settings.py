from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .models import DateFormat, Granularity, TimeFormat, TimelineSettings

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "data" / "storytimeline.db"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STORYTIMELINE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_title: str = Field(default="Story Timeline API", description="FastAPI application title")
    app_description: str = Field(
        default="Chronological ordering and grouping of story events",
        description="Description shown in the OpenAPI document",
    )
    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by CORS; comma separated in the environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Application log level (DEBUG/INFO/WARNING/ERROR/CRITICAL)",
    )
    enable_request_logging: bool = Field(
        default=True,
        description="Log one line per handled request",
    )
    db_path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="SQLite file holding session event lists",
    )
    date_format: DateFormat = Field(
        default="mm/dd/yyyy",
        description="Order of month and day in slashed calendar dates",
    )
    time_format: TimeFormat = Field(
        default="24h",
        description="Clock notation accepted after slashed calendar dates",
    )
    drag_drop_enabled: bool = Field(
        default=True,
        description="Allow manual reordering of timeline events",
    )
    default_view: Granularity = Field(
        default="all",
        description="Granularity used when a request does not choose one",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            raw = value.strip()
            if raw == "*":
                return ["*"]
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        candidate = value.upper()
        if candidate not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            logging.getLogger("storytimeline.settings").warning(
                "Unknown log level '%s', falling back to INFO.", value
            )
            return "INFO"
        return candidate

    def timeline_settings(self) -> TimelineSettings:
        """Snapshot of the options the ordering engine reads."""

        return TimelineSettings(
            date_format=self.date_format,
            time_format=self.time_format,
            drag_drop_enabled=self.drag_drop_enabled,
        )


settings = Settings()
