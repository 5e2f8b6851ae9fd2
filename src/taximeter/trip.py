"""Meter states and trip models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from taximeter.tariff import TariffConfig


class MeterState(str, Enum):
    """Meter lifecycle states."""

    IDLE = "idle"
    FREE = "free"
    OCCUPIED = "occupied"
    SETTLING = "settling"


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class PositionSample(BaseModel):
    """One GPS fix as delivered by the position source.

    Values are not validated here; the coordinator rejects bad samples
    without touching the running trip.
    """

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    speed_mps: float
    coordinates: Position

    @classmethod
    def at(cls, lat: float, lon: float, speed_mps: float, timestamp_ms: int = 0) -> "PositionSample":
        return cls(
            timestamp_ms=timestamp_ms,
            speed_mps=speed_mps,
            coordinates=Position(latitude=lat, longitude=lon),
        )


class Trip(BaseModel):
    """Running fare of one occupied ride.

    Frozen: the fare functions return updated copies, so a trip handed out
    at end of ride cannot change afterwards.
    """

    model_config = ConfigDict(frozen=True)

    trip_id: str = Field(default_factory=lambda: uuid4().hex)
    tariff: TariffConfig
    started_at: datetime
    distance_m: float = Field(default=0.0, ge=0)
    waiting_ms: int = Field(default=0, ge=0)
    # Stationary time accrued toward the next wait unit; zeroed when moving.
    wait_progress_ms: int = Field(default=0, ge=0)
    charged_wait_units: int = Field(default=0, ge=0)
    charged_distance_units: int = Field(default=0, ge=0)
    fare_total: int = Field(ge=0)
    last_position: Position | None = None
    current_speed_kmh: float = Field(default=0.0, ge=0)
    speed_alert_active: bool = False

    @classmethod
    def start(cls, tariff: TariffConfig, started_at: datetime) -> "Trip":
        """Fresh trip: flag-drop charged, every counter at zero."""
        return cls(tariff=tariff, started_at=started_at, fare_total=tariff.flag_drop)

    @property
    def waiting_seconds(self) -> int:
        return self.waiting_ms // 1000

    def expected_fare(self) -> int:
        """Fare implied by the charged units; always equals fare_total."""
        units = self.charged_distance_units + self.charged_wait_units
        return self.tariff.flag_drop + units * self.tariff.unit_charge
