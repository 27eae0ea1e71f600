import mongomock
import pytest
from fastapi.testclient import TestClient

import security
from config import Settings
from main import Services, create_app

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(security, "PBKDF2_ITERATIONS", 1000)


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        database_url="mongodb://localhost:27017",
        database_name="marketplace_test",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["marketplace_test"]


@pytest.fixture
def services(db, settings):
    return Services(db, settings)


@pytest.fixture
def client(db, settings):
    return TestClient(create_app(settings, db))


@pytest.fixture
def make_user(services):
    def _make(username="buyer1", role="buyer"):
        profile = {"name": username.title(), "username": username, "email": f"{username}@example.com", "role": role}
        return services.auth.register(profile, PASSWORD)
    return _make


@pytest.fixture
def make_product(services):
    def _make(owner_id, name="Widget", price=10.0, stock=5, **extra):
        return services.catalog.create_product(owner_id, {"name": name, "price": price, "stock": stock, **extra})
    return _make


@pytest.fixture
def make_address(services):
    def _make(user_id, **extra):
        data = {
            "name": "Home",
            "phone_number": "1234567890",
            "address_line1": "1 Main Street",
            "city": "Springfield",
            "postal_code": "12345",
            "country": "US",
        }
        data.update(extra)
        return services.addresses.create_address(user_id, data)
    return _make


@pytest.fixture
def auth_headers(services):
    def _headers(user):
        return {"Authorization": f"Bearer {services.auth.issue_token(user['id'])}"}
    return _headers
