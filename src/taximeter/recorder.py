"""Completed-trip records and the recorders that keep them.

The meter only depends on the TripRecorder protocol. Two implementations
ship with it: an in-memory list for tests and replays, and a SQLite store
for devices.
"""

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from taximeter.core.exceptions import PersistenceError
from taximeter.db.schema import TripRecordRow
from taximeter.db.transaction import transaction
from taximeter.trip import Trip

logger = logging.getLogger(__name__)


class TripRecord(BaseModel):
    """What is kept of a trip once the passenger has paid."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: uuid4().hex)
    recorded_at: datetime
    distance_m: float = Field(ge=0)
    waiting_seconds: int = Field(ge=0)
    fare_total: int = Field(ge=0)
    tariff_name: str

    @classmethod
    def from_trip(cls, trip: Trip, recorded_at: datetime) -> "TripRecord":
        return cls(
            record_id=trip.trip_id,
            recorded_at=recorded_at,
            distance_m=trip.distance_m,
            waiting_seconds=trip.waiting_seconds,
            fare_total=trip.fare_total,
            tariff_name=trip.tariff.name,
        )


class TripTotals(BaseModel):
    """Aggregate over a time range."""

    model_config = ConfigDict(frozen=True)

    count: int = 0
    total_fare: int = 0
    total_distance_m: float = 0.0


class TripRecorder(Protocol):
    """Persists finished trips and answers aggregate queries.

    Ranges are half-open: ``start <= recorded_at < end``.
    """

    def save(self, record: TripRecord) -> None: ...

    def query_aggregates(self, start: datetime, end: datetime) -> TripTotals: ...

    def list_records(self, start: datetime, end: datetime) -> list[TripRecord]: ...


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def day_range(at: datetime) -> tuple[datetime, datetime]:
    """Start and end of the calendar day containing ``at`` (in its own timezone)."""
    start = at.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_range(at: datetime) -> tuple[datetime, datetime]:
    """Start and end of the calendar month containing ``at`` (in its own timezone)."""
    start = at.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def totals_of(records: list[TripRecord]) -> TripTotals:
    return TripTotals(
        count=len(records),
        total_fare=sum(r.fare_total for r in records),
        total_distance_m=sum(r.distance_m for r in records),
    )


class InMemoryTripRecorder:
    """Thread-safe list of records."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[TripRecord] = []

    def save(self, record: TripRecord) -> None:
        with self._lock:
            self._records.append(record)

    def list_records(self, start: datetime, end: datetime) -> list[TripRecord]:
        lo, hi = _as_utc(start), _as_utc(end)
        with self._lock:
            return [r for r in self._records if lo <= _as_utc(r.recorded_at) < hi]

    def query_aggregates(self, start: datetime, end: datetime) -> TripTotals:
        return totals_of(self.list_records(start, end))

    def all_records(self) -> list[TripRecord]:
        with self._lock:
            return list(self._records)


class SqlTripRecorder:
    """SQLite-backed recorder."""

    def __init__(self, session_maker: sessionmaker[Any]):
        self._session_maker = session_maker

    @staticmethod
    def _to_db_time(dt: datetime) -> datetime:
        return _as_utc(dt).replace(tzinfo=None)

    def save(self, record: TripRecord) -> None:
        row = TripRecordRow(
            record_id=record.record_id,
            recorded_at=self._to_db_time(record.recorded_at),
            distance_m=record.distance_m,
            waiting_seconds=record.waiting_seconds,
            fare_total=record.fare_total,
            tariff_name=record.tariff_name,
        )
        try:
            with self._session_maker() as session, transaction(session):
                session.add(row)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to save trip record {record.record_id}: {e}",
                details={"record_id": record.record_id},
            ) from e

    def list_records(self, start: datetime, end: datetime) -> list[TripRecord]:
        stmt = (
            select(TripRecordRow)
            .where(TripRecordRow.recorded_at >= self._to_db_time(start))
            .where(TripRecordRow.recorded_at < self._to_db_time(end))
            .order_by(TripRecordRow.recorded_at)
        )
        with self._session_maker() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_domain(row) for row in rows]

    def query_aggregates(self, start: datetime, end: datetime) -> TripTotals:
        stmt = (
            select(
                func.count(TripRecordRow.record_id),
                func.coalesce(func.sum(TripRecordRow.fare_total), 0),
                func.coalesce(func.sum(TripRecordRow.distance_m), 0.0),
            )
            .where(TripRecordRow.recorded_at >= self._to_db_time(start))
            .where(TripRecordRow.recorded_at < self._to_db_time(end))
        )
        with self._session_maker() as session:
            count, total_fare, total_distance = session.execute(stmt).one()
        return TripTotals(
            count=count,
            total_fare=int(total_fare),
            total_distance_m=float(total_distance),
        )

    @staticmethod
    def _to_domain(row: TripRecordRow) -> TripRecord:
        return TripRecord(
            record_id=row.record_id,
            recorded_at=row.recorded_at.replace(tzinfo=UTC),
            distance_m=row.distance_m,
            waiting_seconds=row.waiting_seconds,
            fare_total=row.fare_total,
            tariff_name=row.tariff_name,
        )
