"""Display frames, value formatting and the printed receipt.

The meter pushes a DisplayFrame to the presentation sink after every
mutation. The sink never reads state back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from taximeter.trip import MeterState, Trip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplayFrame:
    """Immutable snapshot of everything the meter face shows."""

    state: MeterState
    wall_time: datetime
    fare_total: int
    speed_kmh: float
    waiting_ms: int
    distance_m: float
    alert_visible: bool
    tariff_name: str

    @classmethod
    def from_trip(
        cls,
        state: MeterState,
        trip: Trip | None,
        wall_time: datetime,
        alert_visible: bool,
        tariff_name: str,
    ) -> "DisplayFrame":
        if trip is None:
            return cls(
                state=state,
                wall_time=wall_time,
                fare_total=0,
                speed_kmh=0.0,
                waiting_ms=0,
                distance_m=0.0,
                alert_visible=False,
                tariff_name=tariff_name,
            )
        return cls(
            state=state,
            wall_time=wall_time,
            fare_total=trip.fare_total,
            speed_kmh=trip.current_speed_kmh,
            waiting_ms=trip.waiting_ms,
            distance_m=trip.distance_m,
            alert_visible=alert_visible,
            tariff_name=trip.tariff.name,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert frame to formatted display strings."""
        return {
            "state": self.state.value,
            "date": self.wall_time.strftime("%d/%m/%Y"),
            "time": self.wall_time.strftime("%H:%M:%S"),
            "fare": str(self.fare_total),
            "speed": format_speed(self.speed_kmh),
            "waiting": format_waiting(self.waiting_ms),
            "distance": format_distance(self.distance_m),
            "alert_visible": self.alert_visible,
            "tariff": self.tariff_name,
        }


class DisplaySink(Protocol):
    """One-way presentation channel."""

    def publish(self, frame: DisplayFrame) -> None: ...


class LoggingDisplaySink:
    """Sink that writes every frame to the log, for headless runs."""

    def publish(self, frame: DisplayFrame) -> None:
        logger.debug(f"Display: {frame.to_dict()}")


def format_distance(distance_m: float) -> str:
    if distance_m < 1000:
        return f"{distance_m:.0f} m"
    return f"{distance_m / 1000.0:.2f} km"


def format_waiting(waiting_ms: int) -> str:
    seconds = waiting_ms // 1000
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def format_speed(speed_kmh: float) -> str:
    return f"{speed_kmh:.0f} km/h"


RECEIPT_RULE = "=" * 29


def render_receipt(trip: Trip, header: str = "TAXIMETER") -> str:
    """Render the ticket printed when a trip ends."""
    lines = [
        RECEIPT_RULE,
        header,
        RECEIPT_RULE,
        "",
        f"Tariff: {trip.tariff.name}",
        f"Flag-drop: $ {trip.tariff.flag_drop}",
        f"Unit charge: $ {trip.tariff.unit_charge}",
        "",
        f"Distance: {trip.distance_m / 1000.0:.2f} km",
        f"Stopped time: {format_waiting(trip.waiting_ms)}",
        "",
        f"TOTAL: $ {trip.fare_total}",
        "",
        RECEIPT_RULE,
        "Thank you for riding",
        RECEIPT_RULE,
    ]
    return "\n".join(lines)
