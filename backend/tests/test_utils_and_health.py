import logging
from datetime import date
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from finance_app.config import settings
from finance_app.main import app
from finance_app.utils import periods
from finance_app.utils.error_logging import REDACTED, log_api_error, sanitize
from finance_app.utils.rate_limit import InMemoryRateLimiter, RateLimitExceeded, RateLimitResult

client = TestClient(app)


@pytest.mark.parametrize('kind,divisor', [('month', 12), ('quarter', 4), ('year', 1), ('all', 1), ('MONTH', 12)])
def test_period_divisor(kind, divisor):
    assert periods.period_divisor(kind) == divisor


def test_period_divisor_rejects_unknown():
    with pytest.raises(ValueError):
        periods.period_divisor('fortnight')


def test_period_bounds():
    today = date(2024, 5, 17)
    assert periods.period_bounds('month', today) == (date(2024, 5, 1), date(2024, 5, 31))
    assert periods.period_bounds('quarter', today) == (date(2024, 4, 1), date(2024, 6, 30))
    assert periods.period_bounds('year', today) == (date(2024, 1, 1), date(2024, 12, 31))
    assert periods.period_bounds('all', today) == (None, None)
    assert periods.month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert periods.previous_month(2024, 1) == (2023, 12)


def test_rate_limiter_window(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr('finance_app.utils.rate_limit.time.monotonic', lambda: clock[0])
    limiter = InMemoryRateLimiter()
    assert limiter.hit('auth', '1.2.3.4', 2, 60) == RateLimitResult(True, 2, 1)
    clock[0] = 130.0
    assert limiter.hit('auth', '1.2.3.4', 2, 60).remaining == 0
    denied = limiter.hit('auth', '1.2.3.4', 2, 60)
    assert not denied.allowed
    assert denied.retry_after == 30
    assert denied.headers() == {'X-RateLimit-Limit': '2', 'X-RateLimit-Remaining': '0', 'Retry-After': '30'}
    # scopes and clients are counted separately
    assert limiter.hit('import', '1.2.3.4', 2, 60).allowed
    assert limiter.hit('auth', '5.6.7.8', 2, 60).allowed
    # the first hit leaves the window
    clock[0] = 160.0
    assert limiter.hit('auth', '1.2.3.4', 2, 60).allowed
    with pytest.raises(RateLimitExceeded) as err:
        limiter.check('auth', '1.2.3.4', 2, 60)
    assert err.value.scope == 'auth'
    limiter.reset()
    assert limiter.hit('auth', '1.2.3.4', 1, 60).allowed


def test_auth_routes_share_one_budget(monkeypatch):
    monkeypatch.setattr(settings, 'AUTH_RATE_LIMIT_PER_MIN', 1)
    first = client.post('/api/auth/login', json={'email': 'x@example.com', 'password': 'password123'})
    assert first.status_code == 401
    r = client.post('/api/auth/register', json={'email': 'x@example.com', 'password': 'password123'})
    assert r.status_code == 429
    assert r.headers['X-RateLimit-Remaining'] == '0'
    assert int(r.headers['Retry-After']) >= 1


def test_sanitize_redacts_nested_secrets():
    data = {
        'email': 'a@example.com',
        'Password': 'hunter2',
        'nested': {'access_token': 'abc', 'rows': [{'api-key': 'k', 'amount': 5}]},
    }
    assert sanitize(data) == {
        'email': 'a@example.com',
        'Password': REDACTED,
        'nested': {'access_token': REDACTED, 'rows': [{'api-key': REDACTED, 'amount': 5}]},
    }


def test_log_api_error_payload(caplog):
    request = SimpleNamespace(
        method='POST',
        url=SimpleNamespace(path='/api/accounts'),
        headers={'authorization': 'Bearer xyz', 'user-agent': 'pytest'},
        state=SimpleNamespace(request_id='req-1'),
    )
    with caplog.at_level(logging.ERROR, logger='finance_app.errors'):
        payload = log_api_error(request, RuntimeError('boom'), operation='create account',
                                context={'secret': 's', 'name': 'Visa'})
    assert payload['request_id'] == 'req-1'
    assert payload['headers'] == {'authorization': REDACTED, 'user-agent': 'pytest'}
    assert payload['context'] == {'secret': REDACTED, 'name': 'Visa'}
    assert payload['error_type'] == 'RuntimeError'
    assert 'api_error' in caplog.text
    assert 'xyz' not in caplog.text


def test_health_and_request_id():
    r = client.get('/api/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.json() == {'status': 'ok', 'database': 'ok'}
    assert r.headers['X-Request-ID'] == 'abc123'
    assert client.get('/api/health').headers['X-Request-ID']


def test_home_page():
    r = client.get('/')
    assert r.status_code == 200
    assert 'Household Finance Tracker API' in r.text
