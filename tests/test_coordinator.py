"""Tests for the update coordinator: event serialization and SimPy timing."""

import logging
import threading
from unittest.mock import Mock

import pytest

from taximeter.coordinator import (
    CoordinatorEvent,
    CoordinatorEventType,
    ShutdownError,
    UpdateCoordinator,
    validate_sample,
)
from taximeter.core.exceptions import (
    InvalidSampleError,
    PersistenceError,
    TariffLockedError,
    UnknownTariffError,
)
from taximeter.meter_logging import LogContext
from taximeter.settings import MeterSettings
from taximeter.trip import MeterState, PositionSample


def published_frames(sink: Mock) -> list:
    return [c.args[0] for c in sink.publish.call_args_list]


@pytest.fixture
def occupied(coordinator: UpdateCoordinator) -> UpdateCoordinator:
    coordinator.activate_meter()
    coordinator.start_trip()
    coordinator.process_pending_events()
    return coordinator


@pytest.mark.unit
class TestValidateSample:
    def test_accepts_valid_sample(self):
        validate_sample(PositionSample.at(-34.6, -58.4, speed_mps=10.0))

    @pytest.mark.parametrize(
        "sample",
        [
            PositionSample.at(-34.6, -58.4, speed_mps=-1.0),
            PositionSample.at(-34.6, -58.4, speed_mps=float("nan")),
            PositionSample.at(float("nan"), -58.4, speed_mps=5.0),
            PositionSample.at(-34.6, float("inf"), speed_mps=5.0),
            PositionSample.at(91.0, -58.4, speed_mps=5.0),
        ],
    )
    def test_rejects_bad_samples(self, sample):
        with pytest.raises(InvalidSampleError):
            validate_sample(sample)


@pytest.mark.unit
class TestEventProcessing:
    def test_events_applied_in_order(self, coordinator):
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.end_trip()
        assert coordinator.pending_events == 3

        assert coordinator.process_pending_events() == 3
        assert coordinator.state == MeterState.SETTLING
        assert coordinator.pending_events == 0

    def test_frame_published_per_applied_event(self, coordinator, mock_sink):
        coordinator.activate_meter()
        coordinator.end_trip()  # ignored while Free
        coordinator.process_pending_events()

        frames = published_frames(mock_sink)
        assert len(frames) == 1
        assert frames[0].state == MeterState.FREE
        assert frames[0].fare_total == 0
        assert frames[0].tariff_name == "Diurna"

    def test_start_trip_frame_shows_flag_drop(self, occupied, mock_sink):
        frame = published_frames(mock_sink)[-1]
        assert frame.state == MeterState.OCCUPIED
        assert frame.fare_total == 450

    def test_position_outside_trip_dropped(self, coordinator, mock_sink, route):
        coordinator.activate_meter()
        coordinator.process_pending_events()
        mock_sink.reset_mock()

        coordinator.submit_position(route.fix(0, 30))
        coordinator.process_pending_events()

        assert coordinator.trip is None
        mock_sink.publish.assert_not_called()

    def test_invalid_sample_dropped_and_logged(self, occupied, route, caplog):
        occupied.submit_position(route.fix(0, 30))
        occupied.process_pending_events()
        before = occupied.trip

        with caplog.at_level(logging.WARNING, logger="taximeter.coordinator"):
            occupied.submit_position(PositionSample.at(float("nan"), 0.0, speed_mps=10.0))
            occupied.submit_position(PositionSample.at(-34.6, -58.4, speed_mps=-3.0))
            occupied.process_pending_events()

        assert occupied.trip == before
        assert occupied.state == MeterState.OCCUPIED
        assert sum("rejected" in r.getMessage() for r in caplog.records) == 2

    def test_processing_continues_after_rejected_sample(self, occupied, route):
        occupied.submit_position(route.fix(0, 30))
        occupied.submit_position(PositionSample.at(-34.6, -58.4, speed_mps=-1.0))
        occupied.submit_position(route.advance(210, 30))
        occupied.process_pending_events()

        assert occupied.trip.distance_m == pytest.approx(210.0)
        assert occupied.trip.fare_total == 640

    def test_submits_from_many_threads(self, occupied, route):
        samples = [route.stay(10.0) for _ in range(200)]
        chunks = [samples[i::4] for i in range(4)]

        def producer(chunk):
            for sample in chunk:
                occupied.submit_position(sample)

        threads = [threading.Thread(target=producer, args=(c,)) for c in chunks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert occupied.process_pending_events() == 200
        assert occupied.trip.current_speed_kmh == pytest.approx(10.0)


@pytest.mark.unit
class TestWaitTicks:
    def test_stale_tick_dropped(self, occupied):
        occupied.submit(
            CoordinatorEvent(type=CoordinatorEventType.WAIT_TICK, elapsed_ms=60_000, trip_id="stale")
        )
        occupied.process_pending_events()
        assert occupied.trip.waiting_ms == 0

    def test_tick_for_current_trip_applied(self, occupied):
        occupied.submit(
            CoordinatorEvent(
                type=CoordinatorEventType.WAIT_TICK,
                elapsed_ms=60_000,
                trip_id=occupied.trip.trip_id,
            )
        )
        occupied.process_pending_events()
        assert occupied.trip.fare_total == 640

    def test_ticks_driven_by_timeline(self, coordinator, route):
        """Flag-drop, one distance unit, 65 s stopped: 450, 640, 830, 830."""
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.submit_position(route.fix(0, 30))
        coordinator.submit_position(route.advance(210, 30))
        coordinator.submit_position(route.stay(0.0))

        coordinator.run(until=59.5)
        assert coordinator.trip.fare_total == 640
        assert coordinator.trip.waiting_ms == 59_000

        coordinator.run(until=60.5)
        assert coordinator.trip.fare_total == 830
        assert coordinator.trip.waiting_seconds == 60

        coordinator.run(until=65.5)
        assert coordinator.trip.fare_total == 830
        assert coordinator.trip.wait_progress_ms == 5_000

    def test_moving_forfeits_partial_minute(self, coordinator, route):
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.run(until=45.5)
        assert coordinator.trip.wait_progress_ms == 45_000

        coordinator.submit_position(route.fix(0, 20))
        coordinator.run(until=46.5)
        assert coordinator.trip.wait_progress_ms == 0
        assert coordinator.trip.waiting_ms == 45_000
        assert coordinator.trip.fare_total == 450

    @pytest.mark.slow
    def test_ended_trip_stops_accruing(self, coordinator):
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.run(until=10.5)
        coordinator.end_trip()
        coordinator.run(until=200)

        assert coordinator.state == MeterState.SETTLING
        assert coordinator.trip.waiting_ms == 10_000
        assert coordinator.trip.fare_total == 450

    def test_old_ticks_do_not_reach_next_trip(self, coordinator):
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.run(until=30.5)
        coordinator.end_trip()
        coordinator.acknowledge()
        coordinator.start_trip()
        coordinator.run(until=35.5)

        assert coordinator.trip.waiting_ms <= 5_000


@pytest.mark.unit
class TestClockTicks:
    def test_clock_publishes_every_second(self, coordinator, mock_sink):
        coordinator.run(until=3.5)
        frames = published_frames(mock_sink)
        assert len(frames) == 3
        assert all(f.state == MeterState.IDLE for f in frames)

    def test_clock_frame_carries_wall_time(self, coordinator, mock_sink, fixed_start_time):
        coordinator.run(until=1.5)
        frame = published_frames(mock_sink)[0]
        assert frame.wall_time >= fixed_start_time
        assert (frame.wall_time - fixed_start_time).total_seconds() < 1.5


@pytest.mark.unit
class TestSpeedAlert:
    def test_alert_visible_immediately(self, occupied, route):
        occupied.submit_position(route.fix(0, 130))
        occupied.process_pending_events()
        assert occupied.alert_visible

    def test_alert_blinks(self, occupied, route, env):
        occupied.submit_position(route.fix(0, 130))
        occupied.process_pending_events()

        env.run(until=0.6)
        assert not occupied.alert_visible
        env.run(until=1.1)
        assert occupied.alert_visible

    def test_alert_cleared_when_speed_drops(self, occupied, route, env, mock_sink):
        occupied.submit_position(route.fix(0, 130))
        occupied.process_pending_events()
        env.run(until=1.1)

        occupied.submit_position(route.advance(30, 60))
        occupied.process_pending_events()
        assert not occupied.alert_visible
        assert published_frames(mock_sink)[-1].alert_visible is False

        env.run(until=3.0)
        assert not occupied.alert_visible

    def test_end_trip_stops_blinking(self, occupied, route, env):
        occupied.submit_position(route.fix(0, 130))
        occupied.end_trip()
        occupied.process_pending_events()
        env.run(until=2.2)
        assert not occupied.alert_visible


@pytest.mark.unit
class TestEndAndAcknowledge:
    def test_settling_trip_is_immutable(self, occupied, route):
        occupied.submit_position(route.fix(0, 30))
        occupied.submit_position(route.advance(250, 30))
        occupied.end_trip()
        occupied.process_pending_events()
        frozen = occupied.trip

        occupied.submit_position(route.advance(500, 30))
        occupied.submit(
            CoordinatorEvent(
                type=CoordinatorEventType.WAIT_TICK, elapsed_ms=120_000, trip_id=frozen.trip_id
            )
        )
        occupied.process_pending_events()

        assert occupied.trip is frozen
        assert frozen.fare_total == 640

    def test_acknowledge_records_trip(self, occupied, recorder, route, fixed_start_time):
        trip_id = occupied.trip.trip_id
        occupied.submit_position(route.fix(0, 30))
        occupied.submit_position(route.advance(450, 30))
        occupied.end_trip()
        occupied.acknowledge()
        occupied.process_pending_events()

        assert occupied.state == MeterState.FREE
        assert occupied.trip is None
        [record] = recorder.all_records()
        assert record.record_id == trip_id
        assert record.fare_total == 450 + 2 * 190
        assert record.distance_m == pytest.approx(450.0)
        assert record.tariff_name == "Diurna"
        assert record.recorded_at == fixed_start_time

    def test_end_without_acknowledge_records_nothing(self, occupied, recorder):
        occupied.end_trip()
        occupied.process_pending_events()
        assert recorder.all_records() == []

    def test_recorder_failure_contained(self, env, machine, mock_sink, clock, caplog):
        failing = Mock()
        failing.save.side_effect = PersistenceError("disk full")
        coordinator = UpdateCoordinator(env, machine, recorder=failing, sink=mock_sink, clock=clock)
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.end_trip()
        coordinator.acknowledge()

        with caplog.at_level(logging.ERROR, logger="taximeter.coordinator"):
            coordinator.process_pending_events()

        assert coordinator.state == MeterState.FREE
        failing.save.assert_called_once()
        assert any("Failed to record" in r.getMessage() for r in caplog.records)

    def test_sink_failure_contained(self, coordinator, mock_sink):
        mock_sink.publish.side_effect = RuntimeError("screen gone")
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.process_pending_events()
        assert coordinator.state == MeterState.OCCUPIED


@pytest.mark.unit
class TestSelectTariff:
    def test_select_while_free(self, coordinator, mock_sink):
        coordinator.activate_meter()
        coordinator.process_pending_events()

        tariff = coordinator.select_tariff("Nocturna")

        assert tariff.name == "Nocturna"
        assert published_frames(mock_sink)[-1].tariff_name == "Nocturna"
        coordinator.start_trip()
        coordinator.process_pending_events()
        assert coordinator.trip.fare_total == 550

    def test_select_while_idle(self, coordinator):
        assert coordinator.select_tariff("Nocturna").name == "Nocturna"

    def test_locked_while_occupied(self, occupied):
        with pytest.raises(TariffLockedError):
            occupied.select_tariff("Nocturna")
        assert occupied.trip.tariff.name == "Diurna"

    def test_locked_while_settling(self, occupied):
        occupied.end_trip()
        occupied.process_pending_events()
        with pytest.raises(TariffLockedError):
            occupied.select_tariff("Nocturna")

    def test_unknown_tariff(self, coordinator):
        with pytest.raises(UnknownTariffError):
            coordinator.select_tariff("Lunar")

    def test_frame_published_while_holding_dispatch_lock(self, coordinator, mock_sink):
        acquired = []

        def try_lock_elsewhere(frame):
            worker = threading.Thread(
                target=lambda: acquired.append(coordinator._dispatch_lock.acquire(blocking=False))
            )
            worker.start()
            worker.join()

        mock_sink.publish.side_effect = try_lock_elsewhere
        coordinator.select_tariff("Nocturna")

        assert acquired == [False]


@pytest.mark.unit
class TestLogContext:
    def test_events_logged_with_trip_and_tariff(self, coordinator, mock_sink):
        seen = []
        mock_sink.publish.side_effect = lambda frame: seen.append(dict(LogContext.get()))

        coordinator.activate_meter()
        coordinator.process_pending_events()
        assert seen[-1]["tariff"] == "Diurna"
        assert seen[-1]["trip_id"] == "-"

        coordinator.select_tariff("Nocturna")
        coordinator.start_trip()
        coordinator.submit_position(PositionSample.at(-34.6, -58.4, speed_mps=5.0))
        coordinator.process_pending_events()

        assert seen[-1]["tariff"] == "Nocturna"
        assert seen[-1]["trip_id"] == coordinator.trip.trip_id
        assert seen[-1]["meter_state"] == "occupied"
        assert LogContext.get() == {}


@pytest.mark.unit
class TestLifecycle:
    def test_submit_after_shutdown_raises(self, coordinator):
        coordinator.shutdown()
        assert coordinator.is_shutdown
        with pytest.raises(ShutdownError):
            coordinator.activate_meter()

    def test_shutdown_stops_periodic_processes(self, coordinator, env, mock_sink):
        coordinator.run(until=2.5)
        coordinator.shutdown()
        count = mock_sink.publish.call_count

        env.run(until=10)
        assert mock_sink.publish.call_count == count

    def test_start_is_idempotent(self, coordinator, mock_sink):
        coordinator.start()
        coordinator.start()
        coordinator.run(until=1.5)
        assert mock_sink.publish.call_count == 1

    def test_custom_intervals(self, env, machine, mock_sink, clock):
        settings = MeterSettings(clock_interval_ms=500, blink_interval_ms=250)
        coordinator = UpdateCoordinator(env, machine, sink=mock_sink, clock=clock, settings=settings)
        coordinator.run(until=2.2)
        assert mock_sink.publish.call_count == 4

    def test_shutdown_from_another_thread_is_queued(self, coordinator, env, mock_sink):
        coordinator.run(until=1.5)

        worker = threading.Thread(target=coordinator.shutdown)
        worker.start()
        worker.join()

        # Nothing on the SimPy timeline is touched until the pump runs.
        assert coordinator.pending_events == 1
        count = mock_sink.publish.call_count

        env.run(until=10)
        assert coordinator.pending_events == 0
        assert mock_sink.publish.call_count == count

    def test_shutdown_stops_trip_processes(self, coordinator, route, env):
        coordinator.activate_meter()
        coordinator.start_trip()
        coordinator.run(until=5.5)
        coordinator.submit_position(route.fix(0, 130))
        coordinator.run(until=5.9)
        assert coordinator.trip.waiting_ms == 5_000
        assert coordinator.alert_visible

        coordinator.shutdown()
        env.run(until=20)

        assert coordinator.trip.waiting_ms == 5_000
        assert not coordinator.alert_visible
