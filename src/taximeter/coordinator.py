"""Update coordinator: the single consumer that drives the meter.

Three sources feed the meter: the 1-second wall clock, the 1-second
waiting-time tick and the asynchronous GPS feed. User actions (start, end,
acknowledge) arrive the same way. Producers only enqueue; the SimPy thread
drains the inbox and applies each event to completion before the next one,
so trip mutations are never interleaved.
"""

import logging
import threading
from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from math import isfinite
from queue import Empty, Queue

import simpy

from taximeter.clock import MeterClock
from taximeter.core.exceptions import (
    InvalidSampleError,
    MeterError,
    NoActiveTariffError,
    TariffLockedError,
)
from taximeter.display import DisplayFrame, DisplaySink, LoggingDisplaySink
from taximeter.geo.distance import is_valid_coordinate
from taximeter.meter_logging import log_trip_context
from taximeter.recorder import InMemoryTripRecorder, TripRecord, TripRecorder
from taximeter.settings import MeterSettings
from taximeter.state_machine import TransitionResult, TripStateMachine
from taximeter.tariff import TariffConfig
from taximeter.trip import MeterState, PositionSample, Trip

logger = logging.getLogger(__name__)


class CoordinatorEventType(str, Enum):
    """Kinds of events accepted by the coordinator inbox."""

    ACTIVATE_METER = "activate_meter"
    DEACTIVATE_METER = "deactivate_meter"
    START_TRIP = "start_trip"
    END_TRIP = "end_trip"
    ACKNOWLEDGE = "acknowledge"
    POSITION = "position"
    WAIT_TICK = "wait_tick"
    CLOCK_TICK = "clock_tick"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class CoordinatorEvent:
    """One queued event."""

    type: CoordinatorEventType
    sample: PositionSample | None = None
    elapsed_ms: int = 0
    trip_id: str | None = None


class ShutdownError(Exception):
    """Raised when submitting events after shutdown."""

    pass


def validate_sample(sample: PositionSample) -> None:
    """Reject samples that would corrupt the trip.

    Raises:
        InvalidSampleError: On negative or non-finite speed, or on
            non-finite or out-of-range coordinates
    """
    if not isfinite(sample.speed_mps) or sample.speed_mps < 0:
        raise InvalidSampleError(
            f"Invalid speed {sample.speed_mps} m/s",
            details={"timestamp_ms": sample.timestamp_ms},
        )
    coords = sample.coordinates
    if not is_valid_coordinate(coords.latitude, coords.longitude):
        raise InvalidSampleError(
            f"Invalid coordinates ({coords.latitude}, {coords.longitude})",
            details={"timestamp_ms": sample.timestamp_ms},
        )


class UpdateCoordinator:
    """Serializes clock ticks, wait ticks, GPS samples and user actions."""

    def __init__(
        self,
        env: simpy.Environment,
        machine: TripStateMachine,
        recorder: TripRecorder | None = None,
        sink: DisplaySink | None = None,
        clock: MeterClock | None = None,
        settings: MeterSettings | None = None,
    ) -> None:
        self._env = env
        self._machine = machine
        self._recorder: TripRecorder = recorder if recorder is not None else InMemoryTripRecorder()
        self._sink: DisplaySink = sink if sink is not None else LoggingDisplaySink()
        self._clock = clock or MeterClock(datetime.now(UTC), env)
        self._settings = settings or MeterSettings()

        self._inbox: Queue[CoordinatorEvent] = Queue()
        # Held while one event is applied; tariff selection takes it too.
        self._dispatch_lock = threading.RLock()
        self._shutdown_event = threading.Event()

        self._periodic_processes: list[simpy.Process] = []
        self._wait_process: simpy.Process | None = None
        self._blink_process: simpy.Process | None = None
        self._alert_visible = False
        self._stopped = False

        self._handlers: dict[CoordinatorEventType, Callable[[CoordinatorEvent], None]] = {
            CoordinatorEventType.ACTIVATE_METER: self._on_activate_meter,
            CoordinatorEventType.DEACTIVATE_METER: self._on_deactivate_meter,
            CoordinatorEventType.START_TRIP: self._on_start_trip,
            CoordinatorEventType.END_TRIP: self._on_end_trip,
            CoordinatorEventType.ACKNOWLEDGE: self._on_acknowledge,
            CoordinatorEventType.POSITION: self._on_position,
            CoordinatorEventType.WAIT_TICK: self._on_wait_tick,
            CoordinatorEventType.CLOCK_TICK: self._on_clock_tick,
            CoordinatorEventType.SHUTDOWN: self._on_shutdown,
        }

    @property
    def state(self) -> MeterState:
        return self._machine.state

    @property
    def trip(self) -> Trip | None:
        return self._machine.trip

    @property
    def alert_visible(self) -> bool:
        return self._alert_visible

    @property
    def recorder(self) -> TripRecorder:
        return self._recorder

    @property
    def pending_events(self) -> int:
        return self._inbox.qsize()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    # Producers (safe from any thread)

    def submit(self, event: CoordinatorEvent) -> None:
        if self._shutdown_event.is_set():
            raise ShutdownError("Coordinator has been shut down")
        self._inbox.put(event)

    def submit_position(self, sample: PositionSample) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.POSITION, sample=sample))

    def activate_meter(self) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.ACTIVATE_METER))

    def deactivate_meter(self) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.DEACTIVATE_METER))

    def start_trip(self) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.START_TRIP))

    def end_trip(self) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.END_TRIP))

    def acknowledge(self) -> None:
        self.submit(CoordinatorEvent(type=CoordinatorEventType.ACKNOWLEDGE))

    def select_tariff(self, name: str) -> TariffConfig:
        """Activate a tariff by name, synchronously.

        Raises:
            UnknownTariffError: If the name is not registered
            TariffLockedError: If a trip is occupied or settling
        """
        with self._dispatch_lock:
            state = self._machine.state
            if state in (MeterState.OCCUPIED, MeterState.SETTLING):
                raise TariffLockedError(
                    f"Cannot change tariff while {state.value}",
                    details={"tariff": name, "state": state.value},
                )
            tariff = self._machine.tariffs.activate(name)
            self._publish()
        return tariff

    # Lifecycle

    def start(self) -> None:
        """Start the clock and inbox pump processes."""
        if self._periodic_processes:
            return
        self._periodic_processes.append(self._env.process(self._clock_process()))
        self._periodic_processes.append(self._env.process(self._pump_process()))
        logger.info("Update coordinator started")

    def shutdown(self) -> None:
        """Reject new events and stop every periodic process.

        Safe from any thread: the processes are stopped by the pump on the
        SimPy thread once it reaches the queued shutdown event.
        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        self._inbox.put(CoordinatorEvent(type=CoordinatorEventType.SHUTDOWN))
        logger.info("Update coordinator shutdown requested")

    def run(self, until: float | None = None) -> None:
        """Run the SimPy environment (blocking)."""
        self.start()
        self._env.run(until=until)

    # Consumer

    def process_pending_events(self) -> int:
        """Apply every queued event in arrival order. Returns count processed."""
        count = 0
        while True:
            try:
                event = self._inbox.get_nowait()
            except Empty:
                break

            with self._dispatch_lock:
                trip = self._machine.trip
                with log_trip_context(
                    trip.trip_id if trip else None,
                    meter_state=self._machine.state.value,
                    tariff=trip.tariff.name if trip else self._active_tariff_name(),
                ):
                    try:
                        self._handlers[event.type](event)
                    except MeterError as e:
                        logger.warning(f"Event {event.type.value} rejected: {e.message}")
                    except Exception:
                        logger.exception(f"Unexpected error handling {event.type.value}")
            count += 1

        return count

    # Handlers

    def _on_activate_meter(self, event: CoordinatorEvent) -> None:
        self._apply(self._machine.activate())

    def _on_deactivate_meter(self, event: CoordinatorEvent) -> None:
        self._apply(self._machine.deactivate())

    def _on_start_trip(self, event: CoordinatorEvent) -> None:
        result = self._machine.start_trip()
        if result.applied and result.trip is not None:
            self._start_wait_ticks(result.trip.trip_id)
        self._apply(result)

    def _on_position(self, event: CoordinatorEvent) -> None:
        if self._machine.state != MeterState.OCCUPIED:
            logger.debug(f"Position sample dropped while {self._machine.state.value}")
            return
        assert event.sample is not None
        validate_sample(event.sample)

        result = self._machine.position_sample(event.sample)
        if result.applied and result.trip is not None:
            self._sync_alert(result.trip.speed_alert_active)
        self._apply(result)

    def _on_wait_tick(self, event: CoordinatorEvent) -> None:
        trip = self._machine.trip
        if trip is None or trip.trip_id != event.trip_id:
            logger.debug(f"Stale wait tick for trip {event.trip_id} dropped")
            return
        self._apply(self._machine.wait_tick(event.elapsed_ms))

    def _on_end_trip(self, event: CoordinatorEvent) -> None:
        result = self._machine.end_trip()
        if result.applied:
            self._stop_wait_ticks()
            self._stop_blink()
        self._apply(result)

    def _on_acknowledge(self, event: CoordinatorEvent) -> None:
        result = self._machine.acknowledge()
        if result.applied and result.trip is not None:
            self._stop_blink()
            self._save_record(TripRecord.from_trip(result.trip, self._clock.current_time()))
        self._apply(result)

    def _on_clock_tick(self, event: CoordinatorEvent) -> None:
        self._publish()

    def _on_shutdown(self, event: CoordinatorEvent) -> None:
        for process in self._periodic_processes:
            if process.is_alive and process is not self._env.active_process:
                process.interrupt("shutdown")
        self._periodic_processes.clear()
        self._stop_wait_ticks()
        self._stop_blink()
        self._stopped = True
        logger.info("Update coordinator shut down")

    def _apply(self, result: TransitionResult) -> None:
        if result.applied:
            self._publish()

    def _save_record(self, record: TripRecord) -> None:
        try:
            self._recorder.save(record)
            logger.info(f"Trip {record.record_id} recorded (total {record.fare_total})")
        except Exception as e:
            logger.error(f"Failed to record trip {record.record_id}: {e}")

    def _active_tariff_name(self) -> str:
        try:
            return self._machine.tariffs.active().name
        except NoActiveTariffError:
            return "-"

    def _publish(self) -> None:
        # The sink sees one frame at a time, whichever thread publishes.
        with self._dispatch_lock:
            frame = DisplayFrame.from_trip(
                state=self._machine.state,
                trip=self._machine.trip,
                wall_time=self._clock.current_time(),
                alert_visible=self._alert_visible,
                tariff_name=self._machine.tariffs.active().name,
            )
            try:
                self._sink.publish(frame)
            except Exception as e:
                logger.error(f"Display sink failed: {e}")

    # Speed alert

    def _sync_alert(self, active: bool) -> None:
        if active and self._blink_process is None:
            self._alert_visible = True
            self._blink_process = self._env.process(self._blink_loop())
        elif not active and self._blink_process is not None:
            self._stop_blink()

    def _stop_blink(self) -> None:
        process = self._blink_process
        self._blink_process = None
        self._alert_visible = False
        if process is not None and process.is_alive and process is not self._env.active_process:
            process.interrupt("alert cleared")

    # Wait ticks

    def _start_wait_ticks(self, trip_id: str) -> None:
        self._stop_wait_ticks()
        self._wait_process = self._env.process(self._wait_tick_loop(trip_id))

    def _stop_wait_ticks(self) -> None:
        process = self._wait_process
        self._wait_process = None
        if process is not None and process.is_alive and process is not self._env.active_process:
            process.interrupt("trip ended")

    # SimPy processes

    def _clock_process(self) -> Generator[simpy.Event]:
        interval = self._settings.clock_interval_ms / 1000
        try:
            while not self._shutdown_event.is_set():
                yield self._env.timeout(interval)
                self.submit(CoordinatorEvent(type=CoordinatorEventType.CLOCK_TICK))
        except (simpy.Interrupt, ShutdownError):
            return

    def _pump_process(self) -> Generator[simpy.Event]:
        interval = self._settings.poll_interval_ms / 1000
        try:
            while True:
                self.process_pending_events()
                if self._stopped:
                    return
                yield self._env.timeout(interval)
        except simpy.Interrupt:
            return

    def _wait_tick_loop(self, trip_id: str) -> Generator[simpy.Event]:
        interval = self._settings.wait_tick_interval_ms / 1000
        last_ms = self._clock.now_ms()
        try:
            while True:
                yield self._env.timeout(interval)
                now_ms = self._clock.now_ms()
                self.submit(
                    CoordinatorEvent(
                        type=CoordinatorEventType.WAIT_TICK,
                        elapsed_ms=now_ms - last_ms,
                        trip_id=trip_id,
                    )
                )
                last_ms = now_ms
        except (simpy.Interrupt, ShutdownError):
            return

    def _blink_loop(self) -> Generator[simpy.Event]:
        interval = self._settings.blink_interval_ms / 1000
        try:
            while True:
                yield self._env.timeout(interval)
                self._alert_visible = not self._alert_visible
                self._publish()
        except simpy.Interrupt:
            return
