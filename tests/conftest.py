"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from service_procurement.kernel.ids import SequentialIdFactory
from service_procurement.kernel.policy import WorkflowPolicy
from service_procurement.kernel.time import ManualTimeProvider
from service_procurement.orchestrator import Workflow, WorkflowOrchestrator, create_workflow
from service_procurement.procurement.models import Actor
from service_procurement.procurement.sqlite_store import SQLiteWorkflowStore
from service_procurement.procurement.store import InMemoryWorkflowStore
from tests.helpers import make_actor


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves -wal and -shm files next to the database)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def test_time() -> ManualTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC (a Wednesday, so a 7-day bidding
    window ends on the following Wednesday at noon)
    """
    return ManualTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def workflow_policy() -> WorkflowPolicy:
    """Provide default workflow policy for tests"""
    return WorkflowPolicy()


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    """Provide a fresh in-memory store for each test"""
    return InMemoryWorkflowStore()


@pytest.fixture
def sqlite_store(temp_db: Path) -> SQLiteWorkflowStore:
    """Provide a fresh SQLite store for each test"""
    return SQLiteWorkflowStore(temp_db)


@pytest.fixture
def workflow(
    store: InMemoryWorkflowStore,
    test_time: ManualTimeProvider,
    workflow_policy: WorkflowPolicy,
) -> Workflow:
    """
    Provide an orchestrator wired to a bus, inbox and dashboard

    Ids are sequential ("id-0001", ...) so failures are easy to read.
    """
    return create_workflow(
        store,
        time_provider=test_time,
        policy=workflow_policy,
        id_factory=SequentialIdFactory("id"),
    )


@pytest.fixture
def orchestrator(workflow: Workflow) -> WorkflowOrchestrator:
    return workflow.orchestrator


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def pm() -> Actor:
    """Project manager owning the requests created in tests"""
    return make_actor("pm.alice", "PROJECT_MANAGER")


@pytest.fixture
def other_pm() -> Actor:
    return make_actor("pm.carol", "PROJECT_MANAGER")


@pytest.fixture
def rp() -> Actor:
    return make_actor("rp.bob", "RESOURCE_PLANNER")


@pytest.fixture
def po() -> Actor:
    return make_actor("po.dave", "PROCUREMENT_OFFICER")


@pytest.fixture
def sp() -> Actor:
    return make_actor("sp.acme", "SERVICE_PROVIDER")


@pytest.fixture
def sp2() -> Actor:
    return make_actor("sp.globex", "SERVICE_PROVIDER")


@pytest.fixture
def admin() -> Actor:
    return make_actor("admin.eve", "SYSTEM_ADMIN")
