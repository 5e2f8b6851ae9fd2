"""Database engine initialization and connection management."""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .schema import Base, MeterMetadata

SCHEMA_VERSION = "1.0.0"
IN_MEMORY = ":memory:"


def init_database(db_path: str) -> sessionmaker[Any]:
    """Initialize database and return session factory.

    ``":memory:"`` keeps a single shared connection so every session sees
    the same in-memory database.
    """
    if db_path == IN_MEMORY:
        engine = create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        # Ensure parent directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
    Base.metadata.create_all(engine)

    session_maker = sessionmaker(bind=engine)

    with session_maker() as session:
        schema_version = session.get(MeterMetadata, "schema_version")
        if not schema_version:
            session.add(MeterMetadata(key="schema_version", value=SCHEMA_VERSION))
            session.commit()

    return session_maker
