import base64
import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

# settings are read at import time, so point the app at a throwaway database first
_DB_DIR = Path(tempfile.mkdtemp(prefix="finance-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["ENV"] = "dev"
os.environ["MAIL_HOST"] = ""
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(b"test-webhook-secret").decode()

import pytest
from fastapi.testclient import TestClient

from finance_app.database import create_db_and_tables, drop_db_and_tables
from finance_app.main import app, rate_limiter


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test empty tables and a fresh rate limiter."""
    drop_db_and_tables()
    create_db_and_tables()
    rate_limiter.reset()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def signup(client):
    """Register a user and return `(auth_headers, user_id)`."""
    def _signup(email="owner@example.com", first_name="Olive", last_name="Owner", password="password123"):
        r = client.post('/api/auth/register', json={
            'email': email, 'password': password, 'first_name': first_name, 'last_name': last_name,
        })
        assert r.status_code == 201, r.text
        body = r.json()
        return {'Authorization': f"Bearer {body['access_token']}"}, body['id']
    return _signup


@pytest.fixture
def household(client, signup):
    """An owner with a seeded household, one account and one household user."""
    headers, user_id = signup()
    r = client.post('/api/households', json={'name': 'Home', 'annual_budget': 12000, 'seed_defaults': True},
                    headers=headers)
    assert r.status_code == 201, r.text
    hid = r.json()['id']
    account = client.post('/api/accounts', json={'household_id': hid, 'name': 'Checking'}, headers=headers).json()
    person = client.post('/api/household-users', json={'household_id': hid, 'name': 'Alex', 'annual_budget': 2400},
                         headers=headers).json()
    categories = client.get('/api/categories', params={'household_id': hid}, headers=headers).json()
    types = client.get('/api/types', params={'household_id': hid}, headers=headers).json()
    return SimpleNamespace(
        id=hid,
        headers=headers,
        user_id=user_id,
        account=account,
        person=person,
        categories={c['name']: c for c in categories},
        types={t['name']: t for t in types},
    )


@pytest.fixture
def add_txn(client, household):
    """Create a transaction in the `household` fixture; keyword overrides win."""
    def _add(description="Coffee", amount=-4.5, transaction_date="2024-03-05", category="Food & Dining",
             type_name="Expense", **extra):
        payload = {
            'household_id': household.id,
            'account_id': household.account['id'],
            'household_user_id': household.person['id'],
            'category_id': household.categories[category]['id'],
            'type_id': household.types[type_name]['id'],
            'transaction_date': transaction_date,
            'description': description,
            'amount': amount,
        }
        payload.update(extra)
        r = client.post('/api/transactions', json=payload, headers=household.headers)
        assert r.status_code == 201, r.text
        return r.json()
    return _add


@pytest.fixture
def join(client, household, signup):
    """Sign up another user and bring them into `household` with `role` via an invitation."""
    def _join(email="member@example.com", role="MEMBER", first_name="Morgan"):
        inv = client.post(f'/api/households/{household.id}/invitations', json={'role': role},
                          headers=household.headers)
        assert inv.status_code == 201, inv.text
        headers, user_id = signup(email=email, first_name=first_name, last_name="Member")
        r = client.post(f"/api/invitations/by-token/{inv.json()['token']}/accept", headers=headers)
        assert r.status_code == 200, r.text
        return headers, user_id
    return _join
