"""
Shared fixtures. Environment is set before any orderdesk import reads settings.
"""
import os

os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest  # noqa: E402

from orderdesk.auth import create_access_token  # noqa: E402
from orderdesk.lifecycle import OrderLifecycleEngine  # noqa: E402
from orderdesk.memory_store import InMemoryStore  # noqa: E402

from _helper import order_payload  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStore(lock_timeout=2.0)


@pytest.fixture
def customer(store):
    return store.add_customer(
        name="Northwind Traders",
        email="ops@northwind.example",
        phone="+1 604 555 0101",
        address="12 Harbour Rd",
        city="Vancouver",
        country="Canada",
    )


@pytest.fixture
def carrier(store):
    return store.add_carrier(
        name="Coastal Freight",
        code="CFL",
        contact_person="Dana Lee",
        contact_email="dispatch@coastal.example",
        contact_phone="+1 604 555 0199",
        mobile="+1 604 555 0198",
    )


@pytest.fixture
def driver(store, carrier):
    return store.add_driver(
        name="Sam Ortiz",
        phone="+1 604 555 0142",
        license_number="BC-778812",
        carrier_id=carrier.id,
        vehicle_type="53ft dry van",
    )


@pytest.fixture
def engine(store):
    return OrderLifecycleEngine(store)


@pytest.fixture
def order_input(customer):
    return order_payload(customer.id)


@pytest.fixture
def auth_headers():
    token = create_access_token("user-1", username="dispatcher", role="admin")
    return {"Authorization": f"Bearer {token}"}
