"""Shared pytest fixtures for the entity identification tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the project root is importable
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.entity_identification.data_sources.entity_store import (  # noqa: E402
    InMemoryEntityStore,
    known_entities,
)
from app.core.entity_identification.data_sources.sql_entity_store import SqlEntityStore  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """In-memory entity store seeded with the reference entities."""
    return InMemoryEntityStore(known_entities())


@pytest.fixture
def empty_store():
    return InMemoryEntityStore()


@pytest.fixture
def fixed_clock():
    return lambda: NOW


@pytest.fixture
def sql_store():
    """SQL entity store on a shared in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = SqlEntityStore(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))
    store.init_schema()
    yield store
    engine.dispose()
