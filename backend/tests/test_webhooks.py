import inspect
import json
import time

import pytest
from fastapi.testclient import TestClient

from finance_app.config import settings
from finance_app.main import app
from finance_app.utils.webhook_signature import TOLERANCE_SECONDS, WebhookVerificationError, sign, verify

client = TestClient(app)

BODY = b'{"type": "user.created"}'


def _headers(body, secret=None, msg_id='msg_1', timestamp=None):
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return {
        'webhook-id': msg_id,
        'webhook-timestamp': ts,
        'webhook-signature': sign(secret or settings.WEBHOOK_SECRET, msg_id, ts, body),
    }


def _event(event_type, user_id='user_abc', email='synced@example.com', **data):
    payload = {'id': user_id, **data}
    if email is not None:
        payload.update({
            'primary_email_address_id': 'em_1',
            'email_addresses': [
                {'id': 'em_0', 'email_address': 'old@example.com'},
                {'id': 'em_1', 'email_address': email},
            ],
        })
    return {'type': event_type, 'data': payload}


def _deliver(event):
    body = json.dumps(event).encode()
    return client.post('/api/webhooks/auth', content=body, headers=_headers(body))


def test_verify_accepts_valid_signature():
    headers = _headers(BODY)
    verify(settings.WEBHOOK_SECRET, headers, BODY)
    # one matching entry among several is enough
    headers['webhook-signature'] = 'v1,bogus ' + headers['webhook-signature']
    verify(settings.WEBHOOK_SECRET, headers, BODY)


@pytest.mark.parametrize('mutate', [
    lambda h: h.pop('webhook-id'),
    lambda h: h.pop('webhook-signature'),
    lambda h: h.update({'webhook-timestamp': 'yesterday'}),
    lambda h: h.update({'webhook-signature': 'v2,' + h['webhook-signature'][3:]}),
])
def test_verify_rejects_bad_headers(mutate):
    headers = _headers(BODY)
    mutate(headers)
    with pytest.raises(WebhookVerificationError):
        verify(settings.WEBHOOK_SECRET, headers, BODY)


def test_verify_rejects_tampering_and_stale_deliveries():
    headers = _headers(BODY)
    with pytest.raises(WebhookVerificationError):
        verify(settings.WEBHOOK_SECRET, headers, BODY + b' ')
    old = int(time.time()) - TOLERANCE_SECONDS - 10
    with pytest.raises(WebhookVerificationError):
        verify(settings.WEBHOOK_SECRET, _headers(BODY, timestamp=old), BODY)
    with pytest.raises(WebhookVerificationError):
        verify('', headers, BODY)


def test_endpoint_rejects_unsigned_delivery():
    r = client.post('/api/webhooks/auth', content=BODY)
    assert r.status_code == 400


def test_user_created_updated_deleted():
    created = _deliver(_event('user.created', first_name='Sky', last_name='Synced'))
    assert created.status_code == 200, created.text
    assert created.json()['action'] == 'created'
    user_id = created.json()['user_id']

    updated = _deliver(_event('user.updated', email='Renamed@Example.com', first_name='Skylar'))
    assert updated.json() == {'status': 'ok', 'action': 'updated', 'user_id': user_id}

    deleted = _deliver({'type': 'user.deleted', 'data': {'id': 'user_abc'}})
    assert deleted.json()['action'] == 'deleted'
    again = _deliver({'type': 'user.deleted', 'data': {'id': 'user_abc'}})
    assert again.json()['action'] == 'ignored'


def test_webhook_links_existing_local_account(signup):
    headers, user_id = signup(email='synced@example.com')
    r = _deliver(_event('user.created', first_name='Olive'))
    assert r.json() == {'status': 'ok', 'action': 'updated', 'user_id': user_id}
    # the local login keeps working after the link
    assert client.get('/api/users/current', headers=headers).json()['email'] == 'synced@example.com'


def test_webhook_payload_errors():
    assert _deliver(_event('user.created', email=None)).status_code == 400
    assert _deliver({'type': 'session.created', 'data': {}}).json()['action'] == 'ignored'

    body = b'not json'
    r = client.post('/api/webhooks/auth', content=body, headers=_headers(body))
    assert r.status_code == 400
    assert r.json()['detail'] == 'invalid JSON payload'


def test_webhook_route_runs_in_threadpool():
    route = next(r for r in app.routes if getattr(r, 'path', None) == '/api/webhooks/auth')
    assert not inspect.iscoroutinefunction(route.endpoint)
    r = _deliver(_event('user.created', user_id='user_thread', email='thread@example.com'))
    assert r.json()['action'] == 'created'
