"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip MongoDB startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token
from services.plan_catalog import plan_catalog

ACCOUNT_ID = "acct-1"
ACCOUNT_CREATED_AT = "2025-01-15T09:30:00+00:00"


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


def make_account_doc(account_id=ACCOUNT_ID, properties=0, units=0, team_members=0):
    """Account as returned by find_account_with_properties_and_units; units spread round-robin."""
    if units and not properties:
        raise ValueError("units need at least one property")
    props = [
        {"property_id": f"{account_id}-prop-{i}", "account_id": account_id, "name": f"Block {i}", "units": []}
        for i in range(properties)
    ]
    for n in range(units):
        prop = props[n % properties]
        prop["units"].append({"unit_id": f"{prop['property_id']}-unit-{n}", "property_id": prop["property_id"]})
    return {
        "account_id": account_id,
        "name": "Jane Landlord",
        "email": "jane@example.com",
        "role": "ROLE_LANDLORD",
        "team_member_ids": [f"member-{i}" for i in range(team_members)],
        "created_at": ACCOUNT_CREATED_AT,
        "properties": props,
    }


def make_subscription_doc(account_id=ACCOUNT_ID, tier="STARTER", status="ACTIVE", overrides=None, **extra):
    doc = {
        "subscription_id": f"sub-{account_id}",
        "account_id": account_id,
        "tier": tier,
        "status": status,
        "monthly_price": plan_catalog.get_plan(tier).monthly_price,
        "start_date": "2025-02-01T00:00:00+00:00",
        "overrides": overrides or {},
        "history": [],
    }
    doc.update(extra)
    return doc


@pytest.fixture
def account_doc():
    return make_account_doc


@pytest.fixture
def subscription_doc():
    return make_subscription_doc


@pytest.fixture
def store():
    """Patch the account store everywhere the engine reads or writes through it."""
    mock = MagicMock()
    mock.find_account_with_properties_and_units = AsyncMock(return_value=None)
    mock.find_subscription = AsyncMock(return_value=None)
    mock.find_property = AsyncMock(return_value=None)
    mock.list_subscriptions = AsyncMock(return_value=[])
    mock.count_properties = AsyncMock(return_value=0)
    mock.count_units = AsyncMock(return_value=0)
    mock.claim_usage_slot = AsyncMock(return_value={"account_id": ACCOUNT_ID, "usage_version": 1})
    mock.insert_property = AsyncMock(side_effect=lambda doc, session=None: doc)
    mock.insert_unit = AsyncMock(side_effect=lambda doc, session=None: doc)
    mock.create_subscription = AsyncMock(side_effect=lambda data, entry: {**data, "history": [entry]})
    mock.update_subscription = AsyncMock(return_value=None)
    with patch("services.usage_resolver.account_store", mock), \
            patch("services.subscription_service.account_store", mock), \
            patch("services.property_service.account_store", mock), \
            patch("routes.admin_subscriptions.account_store", mock):
        yield mock


@pytest.fixture
def fake_transaction():
    """Replace database.transaction with one yielding a stand-in session."""
    session = MagicMock(name="session")

    @asynccontextmanager
    async def _transaction():
        yield session

    with patch("services.property_service.database.transaction", _transaction):
        yield session


@pytest.fixture(autouse=True)
def audit_db():
    """Audit writes go to an in-memory mock instead of MongoDB."""
    db = MagicMock()
    db.audit_logs.insert_one = AsyncMock()
    db.audit_logs.find.return_value.sort.return_value.limit.return_value.to_list = AsyncMock(return_value=[])
    with patch("utils.audit.database.get_db", return_value=db):
        yield db


def bearer(role="ROLE_LANDLORD", account_id=ACCOUNT_ID, user_id="user-1", **claims):
    payload = {"user_id": user_id, "role": role, "name": "Jane Landlord", **claims}
    if account_id:
        payload["account_id"] = account_id
    return {"Authorization": f"Bearer {create_access_token(payload)}"}


@pytest.fixture
def landlord_headers():
    return bearer()


@pytest.fixture
def admin_headers():
    return bearer(role="ROLE_ADMIN", account_id=None, user_id="admin-1")


@pytest.fixture
def tenant_headers():
    return bearer(role="ROLE_TENANT", user_id="tenant-1")
