"""Shared test fixtures for index_queue tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from index_queue import FailurePolicy, FailurePolicySettings, SQLAlchemyEntryStore
from index_queue.models import Base

if TYPE_CHECKING:
    from collections.abc import Generator

    from sqlalchemy.engine import Engine

# 2026-01-01T00:00:00Z in epoch milliseconds
START_MS = 1_767_225_600_000


class FakeClock:
    """Controllable clock returning epoch milliseconds."""

    def __init__(self, now: int = START_MS):
        self.now: int = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture
def in_memory_engine() -> Generator[Engine, None, None]:
    """Create SQLite in-memory engine with all tables created.

    Yields:
        Engine: SQLAlchemy engine with in-memory SQLite database
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(in_memory_engine: Engine) -> sessionmaker[Session]:
    """Create session factory bound to in-memory engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=in_memory_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy_settings() -> FailurePolicySettings:
    return FailurePolicySettings(
        max_attempts=3,
        deadly_errors=["ConnectionRefused"],
        undeletable_class_names=["Account"],
    )


@pytest.fixture
def store(
    session_factory: sessionmaker[Session],
    clock: FakeClock,
    policy_settings: FailurePolicySettings,
) -> SQLAlchemyEntryStore:
    """Create SQLAlchemyEntryStore driven by the fake clock."""
    return SQLAlchemyEntryStore(
        session_factory,
        policy=FailurePolicy(policy_settings),
        clock=clock,
    )
