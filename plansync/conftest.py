# plansync/conftest.py
import os

import pytest
from sqlalchemy import create_engine

# Env validation is exercised explicitly in test_env_validation.py
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

from plansync.core.database import engine_options, metadata
from plansync.core.metrics import METRICS
from plansync.features.plans.coordinator import PlanReconciliationCoordinator
from plansync.features.plans.session import SessionCache
from plansync.features.plans.sql_store import SqlStoreClient
from plansync.tests.fakes import InMemoryPlanStore


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def store():
    """In-memory store seeded with nothing; tests add their own accounts."""
    return InMemoryPlanStore()


@pytest.fixture
def session_cache():
    return SessionCache(ttl_seconds=60)


@pytest.fixture
def coordinator(store, session_cache):
    return PlanReconciliationCoordinator(
        store,
        call_timeout=2.0,
        session_cache=session_cache,
        bypass_enabled=True,
    )


@pytest.fixture
def sql_engine(tmp_path):
    """File-backed SQLite database with the plan tables created."""
    url = f"sqlite:///{tmp_path / 'plansync.db'}"
    engine = create_engine(url, **engine_options(url))
    metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine):
    return SqlStoreClient(engine=sql_engine)
