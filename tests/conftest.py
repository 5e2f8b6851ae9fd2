from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
import simpy

from taximeter.clock import MeterClock
from taximeter.coordinator import UpdateCoordinator
from taximeter.recorder import InMemoryTripRecorder
from taximeter.settings import MeterSettings
from taximeter.state_machine import TripStateMachine
from taximeter.tariff import TariffConfig, TariffRegistry
from tests.factories import RouteFactory


@pytest.fixture
def fixed_start_time() -> datetime:
    return datetime(2025, 8, 13, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def tariff() -> TariffConfig:
    """Day tariff: 450 flag-drop, 190 per 200 m or per 60 s stopped."""
    return TariffConfig(
        name="Diurna",
        flag_drop=450,
        unit_charge=190,
        unit_distance_m=200.0,
        unit_wait_ms=60_000,
        min_moving_speed_kmh=3.0,
        max_speed_kmh=120.0,
    )


@pytest.fixture
def night_tariff() -> TariffConfig:
    return TariffConfig(
        name="Nocturna",
        flag_drop=550,
        unit_charge=230,
        unit_distance_m=200.0,
        unit_wait_ms=60_000,
    )


@pytest.fixture
def registry(tariff: TariffConfig, night_tariff: TariffConfig) -> TariffRegistry:
    return TariffRegistry([tariff, night_tariff], active="Diurna")


@pytest.fixture
def env() -> simpy.Environment:
    return simpy.Environment()


@pytest.fixture
def clock(env: simpy.Environment, fixed_start_time: datetime) -> MeterClock:
    return MeterClock(fixed_start_time, env)


@pytest.fixture
def machine(registry: TariffRegistry, clock: MeterClock) -> TripStateMachine:
    return TripStateMachine(registry, clock=clock.current_time)


@pytest.fixture
def occupied_machine(machine: TripStateMachine) -> TripStateMachine:
    machine.activate()
    machine.start_trip()
    return machine


@pytest.fixture
def mock_sink() -> Mock:
    """Presentation sink recording every published frame."""
    return Mock()


@pytest.fixture
def recorder() -> InMemoryTripRecorder:
    return InMemoryTripRecorder()


@pytest.fixture
def coordinator(
    env: simpy.Environment,
    machine: TripStateMachine,
    recorder: InMemoryTripRecorder,
    mock_sink: Mock,
    clock: MeterClock,
) -> UpdateCoordinator:
    return UpdateCoordinator(
        env,
        machine,
        recorder=recorder,
        sink=mock_sink,
        clock=clock,
        settings=MeterSettings(),
    )


@pytest.fixture
def route() -> RouteFactory:
    return RouteFactory()
