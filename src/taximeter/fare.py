"""Fare accrual.

Pure functions: each takes a trip plus one event and returns the updated
trip. Totals are integer currency units, distance is meters and time is
milliseconds.
"""

from math import floor, isfinite

from taximeter.trip import Trip


def apply_distance(trip: Trip, delta_m: float) -> Trip:
    """Add travelled distance and charge every distance unit newly crossed.

    Args:
        trip: Trip being metered
        delta_m: Distance since the previous fix in meters

    Returns:
        Updated trip (the same instance when nothing changes)

    Raises:
        ValueError: If delta_m is negative or not finite
    """
    if not isfinite(delta_m) or delta_m < 0:
        raise ValueError(f"Distance delta must be a finite value >= 0, got {delta_m}")
    if delta_m == 0:
        return trip

    tariff = trip.tariff
    distance_m = trip.distance_m + delta_m
    units = floor(distance_m / tariff.unit_distance_m)
    increase = units - trip.charged_distance_units

    update: dict[str, float | int] = {"distance_m": distance_m}
    if increase > 0:
        update["charged_distance_units"] = units
        update["fare_total"] = trip.fare_total + increase * tariff.unit_charge
    return trip.model_copy(update=update)


def apply_wait_tick(trip: Trip, elapsed_ms: int) -> Trip:
    """Accrue stationary time and charge every whole wait unit now due.

    A delayed tick may carry several units at once; all of them are charged
    in this single step.

    Raises:
        ValueError: If elapsed_ms is negative
    """
    if elapsed_ms < 0:
        raise ValueError(f"Elapsed time must be >= 0, got {elapsed_ms}")
    if elapsed_ms == 0:
        return trip

    tariff = trip.tariff
    progress = trip.wait_progress_ms + elapsed_ms
    units_due = progress // tariff.unit_wait_ms

    update: dict[str, int] = {
        "waiting_ms": trip.waiting_ms + elapsed_ms,
        "wait_progress_ms": progress - units_due * tariff.unit_wait_ms,
    }
    if units_due > 0:
        update["charged_wait_units"] = trip.charged_wait_units + units_due
        update["fare_total"] = trip.fare_total + units_due * tariff.unit_charge
    return trip.model_copy(update=update)


def reset_wait(trip: Trip) -> Trip:
    """Forfeit partial progress toward the next wait unit.

    Called when the vehicle moves above the minimum speed. Units already
    charged stay charged and the total stationary time is kept for display.
    """
    if trip.wait_progress_ms == 0:
        return trip
    return trip.model_copy(update={"wait_progress_ms": 0})
