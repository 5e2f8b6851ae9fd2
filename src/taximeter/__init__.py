"""Taxi-fare metering engine."""

from taximeter.coordinator import CoordinatorEvent, CoordinatorEventType, UpdateCoordinator
from taximeter.display import DisplayFrame, DisplaySink, render_receipt
from taximeter.meter import build_meter
from taximeter.recorder import InMemoryTripRecorder, SqlTripRecorder, TripRecord, TripTotals
from taximeter.state_machine import MeterEvent, TransitionResult, TripStateMachine
from taximeter.tariff import DEFAULT_TARIFFS, TariffConfig, TariffRegistry
from taximeter.trip import MeterState, Position, PositionSample, Trip

__all__ = [
    "DEFAULT_TARIFFS",
    "CoordinatorEvent",
    "CoordinatorEventType",
    "DisplayFrame",
    "DisplaySink",
    "InMemoryTripRecorder",
    "MeterEvent",
    "MeterState",
    "Position",
    "PositionSample",
    "SqlTripRecorder",
    "TariffConfig",
    "TariffRegistry",
    "TransitionResult",
    "Trip",
    "TripRecord",
    "TripStateMachine",
    "TripTotals",
    "UpdateCoordinator",
    "build_meter",
    "render_receipt",
]
