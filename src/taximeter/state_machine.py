"""Meter state machine: Idle, Free, Occupied, Settling.

Events that are not allowed in the current state are ignored rather than
raised, mirroring a physical meter whose buttons simply do nothing. Every
operation reports what happened through a TransitionResult.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from taximeter.core.exceptions import InvalidTransitionError
from taximeter.fare import apply_distance, apply_wait_tick, reset_wait
from taximeter.geo.distance import haversine_distance_m, mps_to_kmh
from taximeter.tariff import TariffRegistry
from taximeter.trip import MeterState, PositionSample, Trip

logger = logging.getLogger(__name__)


class MeterEvent(str, Enum):
    """Events the state machine understands."""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    START_TRIP = "start_trip"
    POSITION_SAMPLE = "position_sample"
    WAIT_TICK = "wait_tick"
    END_TRIP = "end_trip"
    ACKNOWLEDGE = "acknowledge"


VALID_TRANSITIONS: dict[MeterState, dict[MeterEvent, MeterState]] = {
    MeterState.IDLE: {MeterEvent.ACTIVATE: MeterState.FREE},
    MeterState.FREE: {
        MeterEvent.DEACTIVATE: MeterState.IDLE,
        MeterEvent.START_TRIP: MeterState.OCCUPIED,
    },
    MeterState.OCCUPIED: {
        MeterEvent.POSITION_SAMPLE: MeterState.OCCUPIED,
        MeterEvent.WAIT_TICK: MeterState.OCCUPIED,
        MeterEvent.END_TRIP: MeterState.SETTLING,
    },
    MeterState.SETTLING: {MeterEvent.ACKNOWLEDGE: MeterState.FREE},
}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one event: applied, or ignored with a reason."""

    event: MeterEvent
    applied: bool
    state: MeterState
    trip: Trip | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, event: MeterEvent, state: MeterState, trip: Trip | None = None) -> "TransitionResult":
        return cls(event=event, applied=True, state=state, trip=trip)

    @classmethod
    def ignored(cls, event: MeterEvent, state: MeterState, reason: str) -> "TransitionResult":
        return cls(event=event, applied=False, state=state, reason=reason)

    @property
    def is_ignored(self) -> bool:
        return not self.applied

    def raise_if_ignored(self) -> "TransitionResult":
        """Escalate an ignored event for callers that treat it as an error."""
        if not self.applied:
            raise InvalidTransitionError(
                self.reason or f"{self.event.value} ignored",
                details={"event": self.event.value, "state": self.state.value},
            )
        return self


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TripStateMachine:
    """Owns the meter state and the trip being metered.

    Only the update coordinator drives this object; nothing else may
    replace the trip.
    """

    def __init__(
        self,
        tariffs: TariffRegistry,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tariffs = tariffs
        self._clock = clock
        self._state = MeterState.IDLE
        self._trip: Trip | None = None

    @property
    def state(self) -> MeterState:
        return self._state

    @property
    def trip(self) -> Trip | None:
        """Trip in progress (Occupied) or awaiting acknowledgment (Settling)."""
        return self._trip

    @property
    def tariffs(self) -> TariffRegistry:
        return self._tariffs

    def _check(self, event: MeterEvent) -> TransitionResult | None:
        if event in VALID_TRANSITIONS[self._state]:
            return None
        reason = f"{event.value} not allowed while {self._state.value}"
        logger.debug(f"Ignored event: {reason}")
        return TransitionResult.ignored(event, self._state, reason)

    def _transition(self, event: MeterEvent) -> MeterState:
        new_state = VALID_TRANSITIONS[self._state][event]
        if new_state != self._state:
            logger.info(f"Meter {self._state.value} -> {new_state.value} ({event.value})")
        self._state = new_state
        return new_state

    def activate(self) -> TransitionResult:
        rejected = self._check(MeterEvent.ACTIVATE)
        if rejected:
            return rejected
        return TransitionResult.ok(MeterEvent.ACTIVATE, self._transition(MeterEvent.ACTIVATE))

    def deactivate(self) -> TransitionResult:
        rejected = self._check(MeterEvent.DEACTIVATE)
        if rejected:
            return rejected
        return TransitionResult.ok(MeterEvent.DEACTIVATE, self._transition(MeterEvent.DEACTIVATE))

    def start_trip(self) -> TransitionResult:
        """Snapshot the active tariff into a fresh trip charged with the flag-drop."""
        rejected = self._check(MeterEvent.START_TRIP)
        if rejected:
            return rejected
        trip = Trip.start(self._tariffs.active(), self._clock())
        self._trip = trip
        state = self._transition(MeterEvent.START_TRIP)
        logger.info(
            f"Trip {trip.trip_id} started on tariff {trip.tariff.name} "
            f"(flag-drop {trip.fare_total})"
        )
        return TransitionResult.ok(MeterEvent.START_TRIP, state, trip)

    def position_sample(self, sample: PositionSample) -> TransitionResult:
        """Update speed and alert, then charge distance from the previous fix.

        Movement below the minimum moving speed is GPS jitter and is not
        charged, but the fix still becomes the new previous position.
        """
        rejected = self._check(MeterEvent.POSITION_SAMPLE)
        if rejected:
            return rejected
        assert self._trip is not None

        trip = self._trip
        tariff = trip.tariff
        speed_kmh = mps_to_kmh(sample.speed_mps)
        alert = tariff.max_speed_kmh is not None and speed_kmh > tariff.max_speed_kmh

        previous = trip.last_position
        if previous is not None and speed_kmh >= tariff.min_moving_speed_kmh:
            delta_m = haversine_distance_m(
                previous.latitude,
                previous.longitude,
                sample.coordinates.latitude,
                sample.coordinates.longitude,
            )
            trip = apply_distance(trip, delta_m)

        self._trip = trip.model_copy(
            update={
                "current_speed_kmh": speed_kmh,
                "speed_alert_active": alert,
                "last_position": sample.coordinates,
            }
        )
        return TransitionResult.ok(MeterEvent.POSITION_SAMPLE, self._state, self._trip)

    def wait_tick(self, elapsed_ms: int) -> TransitionResult:
        """Accrue waiting time while stationary; forfeit partial progress while moving."""
        rejected = self._check(MeterEvent.WAIT_TICK)
        if rejected:
            return rejected
        assert self._trip is not None

        trip = self._trip
        if trip.current_speed_kmh < trip.tariff.min_moving_speed_kmh:
            self._trip = apply_wait_tick(trip, elapsed_ms)
        else:
            self._trip = reset_wait(trip)
        return TransitionResult.ok(MeterEvent.WAIT_TICK, self._state, self._trip)

    def end_trip(self) -> TransitionResult:
        """Freeze the trip for display and printing."""
        rejected = self._check(MeterEvent.END_TRIP)
        if rejected:
            return rejected
        assert self._trip is not None
        state = self._transition(MeterEvent.END_TRIP)
        logger.info(f"Trip {self._trip.trip_id} ended, total {self._trip.fare_total}")
        return TransitionResult.ok(MeterEvent.END_TRIP, state, self._trip)

    def acknowledge(self) -> TransitionResult:
        """Release the frozen trip and return to Free.

        The returned result carries the trip so the caller can hand it to
        the recorder; the machine keeps no reference to it.
        """
        rejected = self._check(MeterEvent.ACKNOWLEDGE)
        if rejected:
            return rejected
        trip = self._trip
        self._trip = None
        state = self._transition(MeterEvent.ACKNOWLEDGE)
        return TransitionResult.ok(MeterEvent.ACKNOWLEDGE, state, trip)
