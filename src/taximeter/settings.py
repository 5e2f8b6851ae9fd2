from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MeterSettings(BaseSettings):
    clock_interval_ms: int = Field(default=1000, ge=100, le=10_000)
    wait_tick_interval_ms: int = Field(default=1000, ge=100, le=10_000)
    blink_interval_ms: int = Field(
        default=500,
        ge=50,
        le=5_000,
        description="Toggle period of the over-speed alert indicator",
    )
    poll_interval_ms: int = Field(
        default=50,
        ge=1,
        le=1_000,
        description="How often the SimPy pump drains the event inbox",
    )
    default_tariff: str = Field(
        default="Diurna",
        description="Tariff activated when the registry is first seeded",
    )
    realtime_factor: float = Field(
        default=1.0,
        gt=0.0,
        le=10.0,
        description="Wall-clock seconds per simulated second (1.0 = real time)",
    )

    model_config = SettingsConfigDict(env_prefix="METER_")

    @model_validator(mode="after")
    def validate_blink_faster_than_clock(self) -> "MeterSettings":
        if self.blink_interval_ms > self.clock_interval_ms:
            raise ValueError(
                f"Blink interval ({self.blink_interval_ms} ms) must not exceed "
                f"clock interval ({self.clock_interval_ms} ms)"
            )
        return self


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class StorageSettings(BaseSettings):
    backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Trip recorder backend: memory for tests and replays, sqlite for devices",
    )
    db_path: str = "data/trips.db"

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Storage db_path must not be empty")
        return v


class Settings(BaseSettings):
    meter: MeterSettings = Field(default_factory=MeterSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
