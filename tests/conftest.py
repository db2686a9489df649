"""
Global pytest configuration and fixtures for the Framtt admin core.

This module keeps test execution deterministic through:
1. Fixed random seeds for all random operations
2. Frozen time for expiry tests
3. A fresh in-memory audit sink and principal store per test
"""

import os
import random
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

# Set deterministic seeds BEFORE any other imports that might use random
RANDOM_SEED = 42
random.seed(RANDOM_SEED)
Faker.seed(RANDOM_SEED)

# Import application modules after seeding
from framtt_admin.api.app import create_app
from framtt_admin.config import Settings
from framtt_admin.models.principal import Principal, PrincipalStatus, Role
from framtt_admin.services.audit_service import InMemoryAuditSink
from framtt_admin.services.auth import hash_password
from framtt_admin.services.container import AppServices, build_services
from framtt_admin.services.principal_store import PrincipalStore

TEST_PASSWORD = "CorrectHorse123!"
TEST_SECRET = "test-signing-secret-for-testing-only"


# =============================================================================
# Session-Scoped Fixtures (Run once per test session)
# =============================================================================


@pytest.fixture(scope="session")
def faker() -> Faker:
    """Seeded Faker instance for deterministic fake data."""
    fake = Faker()
    Faker.seed(RANDOM_SEED)
    return fake


@pytest.fixture(scope="session")
def test_password() -> str:
    """Password shared by every principal from ``make_principal``."""
    return TEST_PASSWORD


@pytest.fixture(scope="session")
def password_hash() -> str:
    """bcrypt digest of ``TEST_PASSWORD``, computed once."""
    return hash_password(TEST_PASSWORD)


# =============================================================================
# Function-Scoped Fixtures (Fresh per test)
# =============================================================================


@pytest.fixture
def fixed_datetime() -> datetime:
    """A fixed datetime for deterministic time-based tests."""
    return datetime(2025, 1, 30, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings() -> Settings:
    """Test-specific settings, independent of the environment and .env."""
    return Settings(
        _env_file=None,
        host="127.0.0.1",
        port=8899,
        debug=True,
        signing_secret=SecretStr(TEST_SECRET),
        log_format="human",
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Fresh in-memory audit sink."""
    return InMemoryAuditSink()


# =============================================================================
# Factory Fixtures (Deterministic Test Data)
# =============================================================================


@pytest.fixture
def make_principal(faker, password_hash):
    """Factory for creating Principal objects with the shared test password."""
    counter = 0

    def _make(
        role: Role = Role.USER,
        status: PrincipalStatus = PrincipalStatus.ACTIVE,
        **kwargs,
    ) -> Principal:
        nonlocal counter
        counter += 1
        return Principal(
            id=kwargs.pop("id", f"user-{counter:04d}"),
            email=kwargs.pop("email", faker.unique.email()),
            full_name=kwargs.pop("full_name", faker.name()),
            role=role,
            status=status,
            password_hash=kwargs.pop("password_hash", password_hash),
            **kwargs,
        )

    return _make


@pytest.fixture
def principals(make_principal) -> dict[str, Principal]:
    """
    A small staff and customer directory.

    IDs mirror the support scenarios: admin ``1`` impersonating user ``5``,
    csm ``2`` trying to impersonate admin ``1``.
    """
    return {
        "admin": make_principal(id="1", role=Role.ADMIN, email="admin@framtt.test"),
        "csm": make_principal(id="2", role=Role.CSM, email="csm@framtt.test"),
        "superadmin": make_principal(id="3", role=Role.SUPERADMIN, email="root@framtt.test"),
        "suspended": make_principal(
            id="4", role=Role.USER, status=PrincipalStatus.SUSPENDED, email="gone@framtt.test"
        ),
        "user": make_principal(id="5", role=Role.USER, email="customer@framtt.test"),
        "other_admin": make_principal(id="6", role=Role.ADMIN, email="admin2@framtt.test"),
    }


@pytest.fixture
def principal_store(principals) -> PrincipalStore:
    """Principal store seeded with the test directory."""
    return PrincipalStore(list(principals.values()))


@pytest.fixture
def services(test_settings, principal_store, audit_sink) -> AppServices:
    """Complete service graph over the in-memory collaborators."""
    return build_services(test_settings, principals=principal_store, audit=audit_sink)


@pytest.fixture
def token_for(services):
    """Issue a normal session token for a principal."""

    def _issue(principal: Principal) -> str:
        return services.sessions.issue(principal).access_token

    return _issue


@pytest.fixture
def app(services):
    """Create a fresh FastAPI application for testing."""
    return create_app(services=services)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for API testing.

    Uses ASGI transport to test without network calls.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# =============================================================================
# Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_random_seed():
    """Reset random seed before each test for determinism."""
    random.seed(RANDOM_SEED)
    Faker.seed(RANDOM_SEED)
    yield


@pytest.fixture(autouse=True)
def clean_environment():
    """Ensure settings-related environment variables do not leak into tests."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.lower() in Settings.model_fields:
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


# =============================================================================
# Markers Registration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast isolated unit tests")
    config.addinivalue_line("markers", "integration: Tests touching a real database")
    config.addinivalue_line("markers", "api: Tests going through the HTTP layer")
    config.addinivalue_line("markers", "critical: Must pass for deployment")
