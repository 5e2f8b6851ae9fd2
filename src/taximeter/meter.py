"""Assemble a ready-to-run meter from settings."""

import logging
from datetime import UTC, datetime

import simpy
import simpy.rt

from taximeter.clock import MeterClock
from taximeter.coordinator import UpdateCoordinator
from taximeter.db import init_database
from taximeter.display import DisplaySink
from taximeter.meter_logging import setup_logging
from taximeter.recorder import InMemoryTripRecorder, SqlTripRecorder, TripRecorder
from taximeter.settings import Settings, StorageSettings, get_settings
from taximeter.state_machine import TripStateMachine
from taximeter.tariff import TariffRegistry

logger = logging.getLogger(__name__)


def create_recorder(storage: StorageSettings) -> TripRecorder:
    """Pick the trip recorder backend from storage settings."""
    if storage.backend == "sqlite":
        logger.info(f"Using SQLite trip recorder at {storage.db_path}")
        return SqlTripRecorder(init_database(storage.db_path))

    logger.info("Using in-memory trip recorder")
    return InMemoryTripRecorder()


def configure_logging(settings: Settings) -> None:
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.format == "json",
        environment=settings.logging.environment,
    )


def build_meter(
    settings: Settings | None = None,
    *,
    env: simpy.Environment | None = None,
    sink: DisplaySink | None = None,
    recorder: TripRecorder | None = None,
    tariffs: TariffRegistry | None = None,
    start_time: datetime | None = None,
) -> UpdateCoordinator:
    """Wire registry, state machine and coordinator together.

    Without an explicit ``env`` the meter runs on a real-time SimPy
    environment so ticks follow the wall clock.

    Raises:
        UnknownTariffError: If the configured default tariff does not exist
    """
    settings = settings or get_settings()
    if env is None:
        env = simpy.rt.RealtimeEnvironment(factor=settings.meter.realtime_factor, strict=False)

    clock = MeterClock(start_time or datetime.now(UTC), env)
    tariffs = tariffs or TariffRegistry.with_defaults(active=settings.meter.default_tariff)
    machine = TripStateMachine(tariffs, clock=clock.current_time)

    coordinator = UpdateCoordinator(
        env,
        machine,
        recorder=recorder if recorder is not None else create_recorder(settings.storage),
        sink=sink,
        clock=clock,
        settings=settings.meter,
    )
    logger.info(f"Meter built with tariff {tariffs.active().name}")
    return coordinator
