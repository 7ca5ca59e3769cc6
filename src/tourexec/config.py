"""Application configuration and settings management."""

from datetime import time
from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="TOUREXEC_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Tour Execution API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for journals and report outputs.")
    tours_dir: Path = Field(
        default=Path("data/tours"),
        description="Directory holding planned tours as JSON files.",
    )
    osrm_base_url: Optional[str] = Field(
        default="https://router.project-osrm.org",
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "walking", "cycling"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_timeout_seconds: float = Field(default=10.0, gt=0.0)
    osrm_max_retries: int = Field(default=2, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)
    reoptimization_max_iterations: int = Field(
        default=2000,
        ge=0,
        description="Upper bound on 2-opt move evaluations per proposal.",
    )
    reoptimization_min_savings_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Savings below this threshold are reported as no improvement.",
    )
    default_visit_duration_minutes: int = Field(default=30, ge=0)
    work_end_time: time = Field(default=time(18, 0), description="End of the agent's working day.")
    confirmation_words: tuple[str, ...] = Field(default=("TERMINER", "VALIDER", "CONFIRMER"))
    intent_sink: Literal["journal", "supabase", "memory"] = Field(
        default="journal",
        description="Where applied tour intents are written.",
    )
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", "tours_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "confirmation_words", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Accept a JSON array, a comma-separated string or a sequence."""
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                try:
                    value = json.loads(text)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Invalid JSON list: {exc}") from exc
            else:
                value = text.split(",")
        if value is None:
            return tuple()
        return tuple(str(item).strip() for item in value if str(item).strip())

    @field_validator("confirmation_words")
    @classmethod
    def _require_words(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("At least one confirmation word is required.")
        return value


settings = Settings()
