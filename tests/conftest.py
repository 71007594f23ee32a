"""
Pytest configuration and fixtures.
Shared identities, stores and a frozen clock.
"""

import os

# Must be set before hr_portal.config is imported.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-hr-portal-suite")
os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "4")
os.environ["SNOWFLAKE_ACCOUNT"] = ""

from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from data.hr_directory import MOCK_PROFILES, build_balance_rows  # noqa: E402
from hr_portal.auth import AuthContext  # noqa: E402
from hr_portal.memory_store import MemoryLeaveStore  # noqa: E402
from hr_portal.models import Role  # noqa: E402
from hr_portal.queries import LeaveQueries  # noqa: E402
from hr_portal.reconciler import LeaveReconciler  # noqa: E402

FROZEN_NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def employee():
    """John Doe, a regular employee."""
    return AuthContext(user_id="EMP-001", role=Role.EMPLOYEE, email="john.doe@company.com")


@pytest.fixture
def other_employee():
    """Jane Smith, another regular employee."""
    return AuthContext(user_id="EMP-002", role=Role.EMPLOYEE, email="jane.smith@company.com")


@pytest.fixture
def admin():
    """HR admin with reviewer privilege."""
    return AuthContext(user_id="ADM-001", role=Role.ADMIN, email="admin@company.com")


@pytest.fixture
def store():
    """In-memory store seeded with 2024 and 2025 balances."""
    return MemoryLeaveStore(balances=build_balance_rows(years=(2024, 2025)))


@pytest.fixture
def clock():
    return lambda: FROZEN_NOW


@pytest.fixture
def reconciler(store, clock):
    return LeaveReconciler(store, clock=clock)


@pytest.fixture
def queries(store):
    return LeaveQueries(store, MOCK_PROFILES, today=lambda: FROZEN_NOW.date())


@pytest.fixture
def annual_request():
    """The canonical valid submission: three days of annual leave."""
    return {
        "leave_type": "annual",
        "start_date": "2024-06-10",
        "end_date": "2024-06-12",
        "reason": "Family event travel",
    }


@pytest.fixture
def balance_of(store, admin):
    """Read one balance row's used_days straight from the store."""

    def _used(requester_id, leave_type, year=2024):
        rows = store.session(admin).select_where(
            "leave_balances",
            {"requester_id": requester_id, "leave_type": leave_type, "year": year},
        )
        return rows[0]["used_days"]

    return _used


@pytest.fixture
def test_client():
    """Create FastAPI test client on fresh services."""
    from hr_portal.main import app
    from hr_portal.services import reset_services

    reset_services()
    yield TestClient(app)
    reset_services()


@pytest.fixture
def this_year():
    return date.today().year
