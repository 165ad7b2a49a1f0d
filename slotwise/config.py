from enum import Enum

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendAdapter(Enum):
    MEMORY = "memory"
    POSTGREST = "postgrest"


class SchedulingConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCHEDULING_", env_file=".env", extra="ignore")

    slot_minutes: int = Field(default=30, gt=0)
    default_duration_minutes: int = Field(default=30, gt=0)
    response_window_hours: int = Field(default=24, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    booking_horizon_days: int = Field(default=90, gt=0)


class BackendConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BACKEND_", env_file=".env", extra="ignore")

    adapter: BackendAdapter = BackendAdapter.MEMORY
    url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "BACKEND_URL",
            "SUPABASE_URL",
        ),
    )
    api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "BACKEND_API_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
        ),
    )
    timeout_seconds: float = 30.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "America/New_York"
    scheduling: SchedulingConfig = Field(default_factory=lambda: SchedulingConfig())
    backend: BackendConfig = Field(default_factory=lambda: BackendConfig())
