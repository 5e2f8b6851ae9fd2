"""Database persistence module."""

from .database import IN_MEMORY, SCHEMA_VERSION, init_database
from .schema import Base, MeterMetadata, TripRecordRow, utc_now
from .transaction import transaction

__all__ = [
    "IN_MEMORY",
    "SCHEMA_VERSION",
    "Base",
    "MeterMetadata",
    "TripRecordRow",
    "init_database",
    "transaction",
    "utc_now",
]
