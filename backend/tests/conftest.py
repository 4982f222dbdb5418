import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before `iot_monitor` is imported.
_DB_DIR = tempfile.mkdtemp(prefix="iot_monitor_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ["ENV"] = "dev"


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Ensure the schema exists even when no test imports the app first."""
    from iot_monitor.database import create_db_and_tables
    create_db_and_tables()
    yield


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Clear the latest-status cache and auth rate limiter between tests."""
    from iot_monitor import main, services
    services.latest_status_cache.clear()
    main._auth_rate_limiter.reset()
    yield


def register_and_login(client, password='secret123'):
    """Register a fresh user; return `(email, bearer_headers)`."""
    email = f"user-{uuid.uuid4().hex[:10]}@example.com"
    r = client.post('/api/v1/register', json={
        'name': 'Test User', 'email': email, 'password': password, 'password_confirmation': password,
    })
    assert r.status_code == 201
    login = client.post('/api/v1/login', json={'email': email, 'password': password})
    assert login.status_code == 200
    return email, {'Authorization': f"Bearer {login.json()['access_token']}"}


@pytest.fixture
def auth_headers():
    from fastapi.testclient import TestClient
    from iot_monitor.main import app
    _, headers = register_and_login(TestClient(app))
    return headers
