"""SQLAlchemy ORM models for trip persistence."""

from datetime import UTC, datetime

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    # SQLite stores naive datetimes; everything persisted is UTC.
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class TripRecordRow(Base):
    __tablename__ = "trip_records"

    record_id: Mapped[str] = mapped_column(String, primary_key=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    distance_m: Mapped[float] = mapped_column(Float, nullable=False)
    waiting_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    fare_total: Mapped[int] = mapped_column(Integer, nullable=False)
    tariff_name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_trip_records_recorded_at", "recorded_at"),)


class MeterMetadata(Base):
    __tablename__ = "meter_metadata"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: utc_now(),
        onupdate=lambda: utc_now(),
    )
