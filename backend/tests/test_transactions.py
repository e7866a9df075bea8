from datetime import date

from fastapi.testclient import TestClient

from finance_app.main import app

client = TestClient(app)


def test_create_and_get_transaction(household, add_txn):
    txn = add_txn(description='  Farmers market  ', amount=-23.456, memo='weekly shop')
    assert txn['description'] == 'Farmers market'
    assert txn['amount'] == -23.46
    assert txn['post_date'] == txn['transaction_date'] == '2024-03-05'
    assert txn['account'] == 'Checking'
    assert txn['household_user'] == 'Alex'
    assert txn['category'] == 'Food & Dining'
    assert txn['is_outflow'] is True

    r = client.get(f"/api/transactions/{txn['id']}", headers=household.headers)
    assert r.status_code == 200
    assert r.json()['memo'] == 'weekly shop'


def test_references_must_belong_to_household(household, signup):
    headers, _ = signup(email='other@example.com')
    other = client.post('/api/households', json={'name': 'Other', 'seed_defaults': True}, headers=headers).json()
    foreign_account = client.post('/api/accounts', json={'household_id': other['id'], 'name': 'Theirs'},
                                  headers=headers).json()
    payload = {
        'household_id': household.id,
        'account_id': foreign_account['id'],
        'category_id': household.categories['Travel']['id'],
        'type_id': household.types['Expense']['id'],
        'transaction_date': '2024-01-02',
        'description': 'Flight',
        'amount': -300,
    }
    r = client.post('/api/transactions', json=payload, headers=household.headers)
    assert r.status_code == 400
    assert r.json()['detail'] == 'Account does not belong to this household'

    # outsiders cannot write into the household at all
    payload['account_id'] = household.account['id']
    assert client.post('/api/transactions', json=payload, headers=headers).status_code == 404


def test_field_validation(household, add_txn):
    base = {
        'household_id': household.id,
        'account_id': household.account['id'],
        'category_id': household.categories['Travel']['id'],
        'type_id': household.types['Expense']['id'],
        'transaction_date': '2024-01-02',
    }
    assert client.post('/api/transactions', json={**base, 'description': ' ', 'amount': 1},
                       headers=household.headers).status_code == 400
    assert client.post('/api/transactions', json={**base, 'description': 'x' * 501, 'amount': 1},
                       headers=household.headers).status_code == 400
    assert client.post('/api/transactions', json={**base, 'description': 'Big', 'amount': 1000000.01},
                       headers=household.headers).status_code == 400
    assert client.post('/api/transactions', json={**base, 'description': 'Memo', 'amount': 1, 'memo': 'm' * 1001},
                       headers=household.headers).status_code == 400
    ok = client.post('/api/transactions', json={**base, 'description': 'Edge', 'amount': -1000000},
                     headers=household.headers)
    assert ok.status_code == 201


def test_list_filters_and_pagination(household, add_txn):
    add_txn(description='Coffee shop', transaction_date='2024-03-01')
    add_txn(description='Grocery store', transaction_date='2024-03-03')
    add_txn(description='Salary', amount=3000, transaction_date='2024-03-02', category='Other', type_name='Income')
    add_txn(description='COFFEE beans', transaction_date='2024-02-20')

    r = client.get('/api/transactions', params={'household_id': household.id, 'limit': 2},
                   headers=household.headers)
    assert r.status_code == 200
    body = r.json()
    assert body['pagination'] == {'page': 1, 'limit': 2, 'total': 4, 'pages': 2}
    assert [t['description'] for t in body['transactions']] == ['Grocery store', 'Salary']

    page2 = client.get('/api/transactions', params={'household_id': household.id, 'limit': 2, 'page': 2},
                       headers=household.headers).json()
    assert [t['description'] for t in page2['transactions']] == ['Coffee shop', 'COFFEE beans']

    search = client.get('/api/transactions', params={'household_id': household.id, 'search': 'coffee'},
                        headers=household.headers).json()
    assert search['pagination']['total'] == 2

    march = client.get('/api/transactions', params={'household_id': household.id, 'start_date': '2024-03-01',
                                                    'end_date': '2024-03-31',
                                                    'type_id': household.types['Expense']['id']},
                       headers=household.headers).json()
    assert [t['description'] for t in march['transactions']] == ['Grocery store', 'Coffee shop']


def test_list_rejects_bad_paging(household):
    params = {'household_id': household.id}
    assert client.get('/api/transactions', params={**params, 'limit': 0}, headers=household.headers).status_code == 400
    assert client.get('/api/transactions', params={**params, 'limit': 501},
                      headers=household.headers).status_code == 400
    assert client.get('/api/transactions', params={**params, 'page': 0}, headers=household.headers).status_code == 400


def test_update_and_delete(household, add_txn, join):
    txn = add_txn()
    r = client.put(f"/api/transactions/{txn['id']}", json={
        'description': 'Espresso', 'amount': -3, 'category_id': household.categories['Entertainment']['id'],
        'household_user_id': None, 'transaction_date': '2024-03-07',
    }, headers=household.headers)
    assert r.status_code == 200
    updated = r.json()
    assert updated['description'] == 'Espresso'
    assert updated['amount'] == -3.0
    assert updated['category'] == 'Entertainment'
    assert updated['household_user_id'] is None
    assert updated['transaction_date'] == '2024-03-07'

    viewer_headers, _ = join(role='VIEWER')
    assert client.get(f"/api/transactions/{txn['id']}", headers=viewer_headers).status_code == 200
    assert client.delete(f"/api/transactions/{txn['id']}", headers=viewer_headers).status_code == 403
    assert client.delete(f"/api/transactions/{txn['id']}", headers=household.headers).status_code == 200
    assert client.get(f"/api/transactions/{txn['id']}", headers=household.headers).status_code == 404


def test_date_ranges(household, add_txn):
    empty = client.get('/api/transactions/date-ranges', params={'household_id': household.id},
                       headers=household.headers).json()
    assert empty['years'] == []
    assert empty['current_year'] == date.today().year

    add_txn(transaction_date='2021-06-01')
    add_txn(transaction_date='2023-01-15')
    r = client.get('/api/transactions/date-ranges', params={'household_id': household.id},
                   headers=household.headers).json()
    assert r['years'] == [2023, 2022, 2021]
    assert r['earliest_date'] == '2021-06-01'


def test_duplicates_endpoint(household, add_txn):
    add_txn(description='AMAZON.COM LLC', amount=-19.99, transaction_date='2024-03-01')
    add_txn(description='Amazon.com', amount=-19.99, transaction_date='2024-03-02')
    add_txn(description='Netflix', amount=-15.49, transaction_date='2024-03-02')
    add_txn(description='Gym', amount=-19.99, transaction_date='2024-04-20')

    r = client.get('/api/transactions/duplicates', params={'household_id': household.id},
                   headers=household.headers)
    assert r.status_code == 200
    body = r.json()
    assert body['total_transactions'] == 4
    assert len(body['duplicates']) == 1
    pair = body['duplicates'][0]
    assert {pair['transaction1']['description'], pair['transaction2']['description']} == {
        'AMAZON.COM LLC', 'Amazon.com'}
    assert pair['days_difference'] == 1
    assert pair['risk'] == 'High Risk'
    assert body['stats']['total'] == 1

    bad = client.get('/api/transactions/duplicates', params={'household_id': household.id, 'time_window': 0},
                     headers=household.headers)
    assert bad.status_code == 400
