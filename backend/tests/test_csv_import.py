from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from finance_app import models
from finance_app.config import settings
from finance_app.database import engine
from finance_app.main import app
from finance_app.utils.csv_import import canonical_header, parse_amount, parse_csv, parse_date, validate_row

client = TestClient(app)

CSV = (
    '\ufeffAccount,User,Transaction Date,Post Date,Description,Category,Type,Amount,Memo\n'
    'Checking,Alex,01/15/2024,01/16/2024,Groceries,Food & Dining,Expense,"-1,234.50",big shop\n'
    'Checking,,02/01/2024,,Paycheck,Other,Income,$2500.00,\n'
    ',,,,,,,,\n'
).encode('utf-8')


def _row(**overrides):
    row = {
        'account': 'Checking', 'user': 'Alex', 'transaction_date': '03/01/2024', 'post_date': '',
        'description': 'Lunch', 'category': 'Food & Dining', 'type': 'Expense', 'amount': '-12.00', 'memo': '',
    }
    row.update(overrides)
    return row


def _count_transactions():
    with Session(engine) as session:
        return len(session.exec(select(models.Transaction)).all())


@pytest.mark.parametrize('header,expected', [
    ('Transaction Date', 'transaction_date'),
    ('transactionDate', 'transaction_date'),
    ('post_date', 'post_date'),
    ('AMOUNT', 'amount'),
    ('Date', 'transaction_date'),
    ('Reference', None),
])
def test_canonical_header(header, expected):
    assert canonical_header(header) == expected


def test_parse_date_formats():
    assert parse_date('1/5/2024') == date(2024, 1, 5)
    assert parse_date('2024-01-05') == date(2024, 1, 5)
    assert parse_date('02/30/2024') is None
    assert parse_date('2024/01/05') is None
    assert parse_date('') is None


def test_parse_amount():
    assert parse_amount('$1,234.50') == Decimal('1234.50')
    assert parse_amount('-12') == Decimal('-12.00')
    assert parse_amount(7.5) == Decimal('7.50')
    assert parse_amount('abc') is None
    assert parse_amount('NaN') is None


def test_parse_csv_normalizes_headers_and_skips_blank_rows():
    rows = parse_csv(CSV)
    assert len(rows) == 2
    assert rows[0]['transaction_date'] == '01/15/2024'
    assert rows[0]['amount'] == '-1,234.50'
    assert rows[1]['user'] == ''


def test_parse_csv_requires_date_and_amount_columns():
    with pytest.raises(ValueError):
        parse_csv(b'description,category\nLunch,Food\n')
    with pytest.raises(ValueError):
        parse_csv(b'')
    with pytest.raises(ValueError):
        parse_csv('amount,date\n1,01/01/2024\n'.encode('utf-16'))


def test_validate_row_reports_each_problem():
    today = date(2024, 6, 1)
    clean, errors = validate_row(_row(), 2, today)
    assert errors == []
    assert clean['amount'] == Decimal('-12.00')
    assert clean['post_date'] == date(2024, 3, 1)

    clean, errors = validate_row(_row(account='', transaction_date='06/02/2024', amount='x'), 7, today)
    assert clean is None
    assert {e['field'] for e in errors} == {'account', 'transaction_date', 'amount'}
    assert all(e['row'] == 7 for e in errors)

    _, errors = validate_row(_row(transaction_date='01/01/1899'), 3, today)
    assert errors[0]['message'] == 'Transaction date must be after 1900'
    _, errors = validate_row(_row(amount='1000000.01'), 3, today)
    assert errors[0]['field'] == 'amount'
    _, errors = validate_row(_row(description='d' * 501), 3, today)
    assert errors[0]['field'] == 'description'


def test_upload_csv(household):
    files = {'file': ('bank.csv', CSV, 'text/csv')}
    r = client.post('/api/transactions/upload', data={'household_id': str(household.id)}, files=files,
                    headers=household.headers)
    assert r.status_code == 201, r.text
    assert r.json()['created'] == 2

    listed = client.get('/api/transactions', params={'household_id': household.id},
                        headers=household.headers).json()['transactions']
    paycheck, groceries = listed
    assert groceries['amount'] == -1234.5
    assert groceries['post_date'] == '2024-01-16'
    assert groceries['household_user'] == 'Alex'
    assert paycheck['amount'] == 2500.0
    assert paycheck['household_user_id'] is None
    assert paycheck['post_date'] == '2024-02-01'


def test_upload_rejects_wrong_files(household, monkeypatch):
    data = {'household_id': str(household.id)}
    txt = client.post('/api/transactions/upload', data=data, files={'file': ('notes.txt', b'hi', 'text/plain')},
                      headers=household.headers)
    assert txt.status_code == 400
    monkeypatch.setattr(settings, 'MAX_UPLOAD_BYTES', 10)
    big = client.post('/api/transactions/upload', data=data, files={'file': ('big.csv', CSV, 'text/csv')},
                      headers=household.headers)
    assert big.status_code == 400
    assert big.json()['detail'] == 'file too large'


def test_bulk_import_is_all_or_nothing(household):
    future = (date.today() + timedelta(days=3)).strftime('%m/%d/%Y')
    rows = [
        _row(),
        _row(account='Nope'),
        _row(transaction_date='13/45/2024'),
        _row(transaction_date=future),
    ]
    r = client.post('/api/transactions/bulk', json={'household_id': household.id, 'transactions': rows},
                    headers=household.headers)
    assert r.status_code == 400
    errors = r.json()['validation_errors']
    assert [(e['row'], e['field']) for e in errors] == [
        (3, 'account'), (4, 'transaction_date'), (5, 'transaction_date'),
    ]
    assert errors[0]['message'] == 'Account "Nope" not found in this household'
    assert _count_transactions() == 0


def test_bulk_import_accepts_camel_case_keys(household):
    rows = [{'account': 'Checking', 'transactionDate': '03/01/2024', 'description': 'Taxi',
             'category': 'Transportation', 'type': 'Expense', 'amount': -18}]
    r = client.post('/api/transactions/bulk', json={'household_id': household.id, 'transactions': rows},
                    headers=household.headers)
    assert r.status_code == 201, r.text
    assert r.json()['created'] == 1
    assert _count_transactions() == 1


def test_bulk_import_limits(household, join, monkeypatch):
    empty = client.post('/api/transactions/bulk', json={'household_id': household.id, 'transactions': []},
                        headers=household.headers)
    assert empty.status_code == 400
    monkeypatch.setattr(settings, 'MAX_BULK_TRANSACTIONS', 2)
    too_many = client.post('/api/transactions/bulk', json={'household_id': household.id,
                                                           'transactions': [_row(), _row(), _row()]},
                           headers=household.headers)
    assert too_many.status_code == 400

    viewer_headers, _ = join(role='VIEWER')
    denied = client.post('/api/transactions/bulk', json={'household_id': household.id, 'transactions': [_row()]},
                         headers=viewer_headers)
    assert denied.status_code == 403


def test_import_endpoints_are_rate_limited(household, monkeypatch):
    monkeypatch.setattr(settings, 'API_RATE_LIMIT_PER_MIN', 1)
    payload = {'household_id': household.id, 'transactions': [_row()]}
    assert client.post('/api/transactions/bulk', json=payload, headers=household.headers).status_code == 201
    assert client.post('/api/transactions/bulk', json=payload, headers=household.headers).status_code == 429
