"""
Shared fixtures: seeded identity oracle, session tokens and a wired app.
"""

import time

import jwt
import pytest
from fastapi.testclient import TestClient

from adapters.db import InMemoryDocumentStore
from adapters.identity import IdentityAdapter, InMemoryIdentityOracle
from app.settings import Settings
from core.metrics import reset_metrics
from core.rbac.compliance import MILLIS_PER_DAY

SESSION_SECRET = "test-session-secret"

ADMIN_ID = "user_admin"
SECOND_ADMIN_ID = "user_admin_2"
EMPLOYEE_ID = "user_employee"
NEW_USER_ID = "user_new"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def clean_metrics():
    """Reset global metrics before and after each test."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def now_ms():
    return int(time.time() * 1000)


@pytest.fixture
def oracle(now_ms):
    """
    Identity oracle seeded with:
    - two compliant admins
    - a compliant employee
    - a user with an empty metadata bag
    """
    oracle = InMemoryIdentityOracle()
    compliant = {
        "has2FA": True,
        "trainingComplete": True,
        "lastTrainingDate": now_ms - 10 * MILLIS_PER_DAY,
    }
    oracle.add_user(ADMIN_ID, email="admin@example.com", public_metadata={"role": "admin", **compliant},
                    first_name="Ada", last_name="Admin")
    oracle.add_user(SECOND_ADMIN_ID, email="admin2@example.com", public_metadata={"role": "admin", **compliant})
    oracle.add_user(EMPLOYEE_ID, email="employee@example.com",
                    public_metadata={"role": "employee", "department": "call_center", **compliant})
    oracle.add_user(NEW_USER_ID, email="new@example.com", public_metadata={})
    return oracle


@pytest.fixture
def identity(oracle):
    return IdentityAdapter(oracle)


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def make_token():
    """Build a signed session token for a user."""
    def _make(user_id, role=None, issued_at=None, expires_in=3600, secret=SESSION_SECRET, **extra):
        issued_at = int(time.time()) if issued_at is None else issued_at
        payload = {"sub": user_id, "iat": issued_at, "exp": issued_at + expires_in, **extra}
        if role is not None:
            payload["metadata"] = {"role": role}
        return jwt.encode(payload, secret, algorithm="HS256")
    return _make


@pytest.fixture
def settings():
    return Settings(
        SESSION_JWT_SECRET=SESSION_SECRET,
        ROLE_CLAIMS_MAX_AGE_SECONDS=60,
        ROUTE_GUARD_ENFORCE_COMPLIANCE=False,
    )


@pytest.fixture
def app(settings, oracle, document_store):
    from main import create_app
    return create_app(settings=settings, identity_oracle=oracle, document_store=document_store)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def auth_headers(make_token):
    """Authorization headers for a user, with the role claim read from the oracle seed."""
    def _headers(user_id, role=None, **kwargs):
        return {"Authorization": f"Bearer {make_token(user_id, role=role, **kwargs)}"}
    return _headers
