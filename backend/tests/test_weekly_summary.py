from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from finance_app import models
from finance_app.config import settings
from finance_app.database import engine
from finance_app.main import app
from finance_app.services import SummaryService
from finance_app.utils import mailer, periods

client = TestClient(app)

CRON = {'Authorization': 'Bearer test-cron-secret'}


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(to_email, subject, text_body, html_body=None):
        sent.append({'to': to_email, 'subject': subject, 'text': text_body, 'html': html_body})
        return True

    monkeypatch.setattr('finance_app.utils.mailer.send_email', fake_send)
    return sent


@pytest.fixture
def march(household, add_txn):
    cat = household.categories['Food & Dining']
    client.put(f"/api/categories/{cat['id']}", json={'annual_budget': 4800}, headers=household.headers)
    add_txn(description='Groceries', amount=-450, transaction_date='2024-03-02')
    add_txn(description='Movie', amount=-60, transaction_date='2024-03-10', category='Entertainment')
    add_txn(description='Salary', amount=2000, transaction_date='2024-03-15', category='Other', type_name='Income')
    add_txn(description='Rent', amount=-900, transaction_date='2024-02-01', category='Bills & Utilities')
    return household


def _summary(household_id, today):
    with Session(engine) as session:
        household = session.get(models.Household, household_id)
        return SummaryService(session).household_summary(household, today)


def test_reporting_period():
    assert periods.reporting_period(date(2024, 4, 3)) == (date(2024, 3, 1), date(2024, 3, 31), 'review')
    assert periods.reporting_period(date(2024, 4, 7)) == (date(2024, 3, 1), date(2024, 3, 31), 'review')
    assert periods.reporting_period(date(2024, 4, 8)) == (date(2024, 4, 1), date(2024, 4, 30), 'current')
    assert periods.reporting_period(date(2024, 1, 2)) == (date(2023, 12, 1), date(2023, 12, 31), 'review')


def test_household_summary_review_of_last_month(march):
    s = _summary(march.id, date(2024, 4, 3))
    assert s['household_name'] == 'Home'
    assert s['period'] == {'type': 'review', 'start_date': '2024-03-01', 'end_date': '2024-03-31',
                           'month_name': 'March', 'year': 2024}
    assert s['spending'] == {'current_total': 510.0, 'previous_total': 900.0, 'percentage_change': -43.33,
                             'trend': 'down'}
    assert s['budget_performance'] == {'total_budget': 1000.0, 'budget_used': 510.0, 'remaining': 490.0,
                                       'percentage_used': 51.0, 'status': 'on-track'}
    assert [(c['name'], c['amount'], c['percentage']) for c in s['top_categories']] == [
        ('Food & Dining', 450.0, 88.24), ('Entertainment', 60.0, 11.76),
    ]
    assert s['cash_flow'] == {'income': 2000.0, 'expenses': 510.0, 'net_flow': 1490.0, 'is_positive': True}
    assert [(a['type'], a['severity']) for a in s['budget_alerts']] == [
        ('category', 'critical'), ('household', 'info'),
    ]


def test_household_summary_current_month_and_empty_period(march):
    current = _summary(march.id, date(2024, 3, 20))
    assert current['period']['type'] == 'current'
    assert current['spending']['current_total'] == 510.0
    assert _summary(march.id, date(2024, 6, 15)) is None


def test_summary_without_budget_or_history(household, add_txn):
    client.put(f'/api/households/{household.id}', json={'annual_budget': None}, headers=household.headers)
    add_txn(amount=-25, transaction_date='2024-05-10')
    s = _summary(household.id, date(2024, 5, 20))
    assert s['budget_performance'] is None
    assert s['spending']['percentage_change'] == 100.0
    assert s['spending']['trend'] == 'up'
    assert s['cash_flow']['is_positive'] is False


def test_cron_requires_secret(monkeypatch):
    assert client.post('/api/cron/weekly-summary').status_code == 401
    assert client.post('/api/cron/weekly-summary', headers={'Authorization': 'Bearer nope'}).status_code == 401
    monkeypatch.setattr(settings, 'CRON_SECRET', '')
    assert client.get('/api/cron/weekly-summary', headers={'Authorization': 'Bearer '}).status_code == 401


def test_cron_sends_to_subscribed_members(household, add_txn, join, signup, outbox):
    start, _, _ = periods.reporting_period(date.today())
    add_txn(description='Groceries', amount=-80, transaction_date=start.isoformat())

    member_headers, _ = join(email='member@example.com')
    quiet_headers, _ = join(email='quiet@example.com', first_name='Quinn')
    r = client.put('/api/users/email-subscriptions', json={'household_id': household.id, 'weekly_summary': False},
                   headers=quiet_headers)
    assert r.status_code == 200

    # subscribed, but the household has nothing to report
    loner_headers, _ = signup(email='loner@example.com')
    client.post('/api/households', json={'name': 'Empty'}, headers=loner_headers)

    r = client.get('/api/cron/weekly-summary', headers=CRON)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body['total_users'] == 3
    assert (body['sent'], body['skipped'], body['failed'], body['not_sent']) == (2, 1, 0, 0)
    assert sorted(m['to'] for m in outbox) == ['member@example.com', 'owner@example.com']
    mail = outbox[0]
    assert 'Home' in mail['subject']
    assert 'Groceries' not in mail['text']
    assert 'Food &amp; Dining' in mail['html']
    assert 'Food & Dining' in mail['text']


def test_cron_failure_does_not_stop_the_batch(household, add_txn, join, monkeypatch):
    start, _, _ = periods.reporting_period(date.today())
    add_txn(transaction_date=start.isoformat())
    join(email='member@example.com')
    calls = []

    def flaky(to_email, subject, text_body, html_body=None):
        calls.append(to_email)
        if len(calls) == 1:
            raise RuntimeError('smtp exploded')
        return False

    monkeypatch.setattr('finance_app.utils.mailer.send_email', flaky)
    body = client.post('/api/cron/weekly-summary', headers=CRON).json()
    assert len(calls) == 2
    assert body['failed'] == 1
    assert body['not_sent'] == 1
    failed = [d for d in body['details'] if d['status'] == 'failed']
    assert failed[0]['error'] == 'smtp exploded'


def test_send_test_summary_to_self(household, add_txn, outbox):
    start, _, _ = periods.reporting_period(date.today())
    add_txn(amount=-12, transaction_date=start.isoformat())
    r = client.post('/api/email/weekly-summary-test', headers=household.headers)
    assert r.status_code == 200
    body = r.json()
    assert body['status'] == 'sent'
    assert body['households'] == 1
    assert body['summaries'][0]['spending']['current_total'] == 12.0
    assert outbox[0]['to'] == 'owner@example.com'


def test_summary_email_renders_without_mail_server(march):
    s = _summary(march.id, date(2024, 4, 3))
    text = mailer.render('weekly_summary.txt', user_name='Olive', summaries=[s])
    assert 'March 2024 (monthly review)' in text
    assert '$510.00' in text
    assert '-43.3%' in text
    # MAIL_HOST is blank in tests, so nothing is delivered
    assert mailer.send_weekly_summary_email('owner@example.com', 'Olive', [s]) is False


def test_cron_rejects_non_ascii_secret():
    r = client.post('/api/cron/weekly-summary', headers={'Authorization': 'Bearer café'.encode('latin-1')})
    assert r.status_code == 401


def _cabin_fails(monkeypatch):
    original = SummaryService.household_summary

    def household_summary(self, household, today=None):
        if household.name == 'Cabin':
            raise RuntimeError('household exploded')
        return original(self, household, today)

    monkeypatch.setattr(SummaryService, 'household_summary', household_summary)


def test_failing_household_does_not_block_the_email(household, add_txn, outbox, monkeypatch):
    start, _, _ = periods.reporting_period(date.today())
    add_txn(amount=-20, transaction_date=start.isoformat())
    r = client.post('/api/households', json={'name': 'Cabin'}, headers=household.headers)
    assert r.status_code == 201
    _cabin_fails(monkeypatch)

    body = client.post('/api/cron/weekly-summary', headers=CRON).json()
    assert (body['sent'], body['failed']) == (1, 0)
    detail = body['details'][0]
    assert detail['households'] == 1
    assert detail['failed_households'] == [{'household_id': r.json()['id'], 'error': 'household exploded'}]
    assert len(outbox) == 1
    assert 'Home' in outbox[0]['subject']


def test_user_fails_when_every_household_fails(signup, outbox, monkeypatch):
    headers, _ = signup()
    client.post('/api/households', json={'name': 'Cabin'}, headers=headers)
    _cabin_fails(monkeypatch)

    body = client.post('/api/cron/weekly-summary', headers=CRON).json()
    assert body['failed'] == 1
    assert body['details'][0]['error'] == 'household exploded'
    assert outbox == []


def test_test_email_builds_each_summary_once(household, add_txn, outbox, monkeypatch):
    start, _, _ = periods.reporting_period(date.today())
    add_txn(amount=-12, transaction_date=start.isoformat())
    original = SummaryService.household_summary
    calls = []

    def household_summary(self, household, today=None):
        calls.append(household.id)
        return original(self, household, today)

    monkeypatch.setattr(SummaryService, 'household_summary', household_summary)
    body = client.post('/api/email/weekly-summary-test', headers=household.headers).json()
    assert calls == [household.id]
    assert body['summaries'][0]['household_id'] == household.id
    assert len(outbox) == 1
