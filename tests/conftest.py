"""
Pytest fixtures for the credit decisioning test suite.

Provides:
- In-memory SQLite sessions (StaticPool, SAVEPOINT-capable) for every test
- A partner seeded with the packaged defaults
- A deterministic clock, config service and decision recorder
- Structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from credit_config.service import PartnerConfigService
from credit_kernel.db.base import Base
from credit_kernel.db.engine import enable_sqlite_savepoints
from credit_kernel.db.immutability import register_immutability_listeners
from credit_kernel.db.registry import import_all_orm_models
from credit_kernel.domain.clock import DeterministicClock
from credit_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from credit_kernel.services.decision_recorder import DecisionRecorder

from tests.factories import TEST_ACTOR_ID, TEST_PARTNER_ID


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture credit_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor):
            executor.process_batch(...)
            logs = captured_logs()
            assert any(r["message"] == "batch_staged" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("credit_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    import_all_orm_models()
    register_immutability_listeners()
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config_service(session, clock) -> PartnerConfigService:
    return PartnerConfigService(session, clock)


@pytest.fixture
def recorder(session, clock) -> DecisionRecorder:
    return DecisionRecorder(session, clock)


@pytest.fixture
def seeded_partner(config_service) -> str:
    """A partner with every packaged default document active."""
    config_service.seed_defaults(TEST_PARTNER_ID, actor_id=TEST_ACTOR_ID)
    return TEST_PARTNER_ID


@pytest.fixture
def actor_id() -> str:
    return TEST_ACTOR_ID
