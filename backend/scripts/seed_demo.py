"""Fill a local database with a demo household to click around in.

Usage: python scripts/seed_demo.py [--email demo@example.com] [--password demo-password]

Creates the user (unless it exists), a household seeded with the default
categories and types, two accounts, two household users and a couple of
months of transactions ending today.
"""
import argparse
import pathlib
import sys
from datetime import date, timedelta

# Ensure `backend/` is on sys.path so `finance_app` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlmodel import Session

from finance_app import repositories, services
from finance_app.database import create_db_and_tables, engine

# (days ago, account, user, description, category, type, amount)
DEMO_ROWS = [
    (1, 'Checking', 'Jamie', 'Whole Foods Market', 'Food & Dining', 'Expense', '-86.40'),
    (2, 'Visa', 'Riley', 'Shell Oil', 'Transportation', 'Expense', '-48.10'),
    (3, 'Visa', 'Riley', 'Netflix', 'Entertainment', 'Bill Payment', '-15.49'),
    (5, 'Checking', 'Jamie', 'Paycheck', 'Other', 'Income', '3200.00'),
    (6, 'Checking', '', 'City Power & Light', 'Bills & Utilities', 'Bill Payment', '-132.77'),
    (9, 'Visa', 'Jamie', 'Whole Foods Market Inc', 'Food & Dining', 'Expense', '-86.40'),
    (12, 'Visa', 'Riley', 'Target', 'Shopping', 'Expense', '-54.99'),
    (14, 'Visa', 'Riley', 'Target', 'Shopping', 'Refund', '12.00'),
    (20, 'Checking', 'Riley', 'Paycheck', 'Other', 'Income', '2100.00'),
    (27, 'Checking', 'Jamie', 'Rent', 'Home & Garden', 'Bill Payment', '-1650.00'),
    (33, 'Visa', 'Jamie', 'Trader Joes', 'Food & Dining', 'Expense', '-64.25'),
    (41, 'Checking', 'Riley', 'Gym membership', 'Personal Care', 'Purchase', '-39.00'),
    (48, 'Checking', 'Jamie', 'Paycheck', 'Other', 'Income', '3200.00'),
    (57, 'Checking', 'Jamie', 'Rent', 'Home & Garden', 'Bill Payment', '-1650.00'),
]


def main(email: str, password: str) -> int:
    create_db_and_tables()
    today = date.today()
    with Session(engine) as session:
        user = repositories.UserRepository(session).get_by_email(email)
        if user is None:
            user = services.AuthService(session).register(email, password, 'Demo', 'User')
            print(f'Created user {email}')
        household = services.HouseholdService(session).create(user, 'Demo Household', annual_budget='60000',
                                                              seed_defaults=True)
        hid = household['id']
        for name in ('Checking', 'Visa'):
            services.AccountService(session).create(hid, user, {'name': name})
        for name, budget in (('Jamie', '12000'), ('Riley', '9000')):
            services.HouseholdUserService(session).create(hid, user, {'name': name, 'annual_budget': budget})
        rows = [
            {
                'account': account,
                'user': person,
                'transaction_date': (today - timedelta(days=days)).strftime('%m/%d/%Y'),
                'description': description,
                'category': category,
                'type': type_name,
                'amount': amount,
            }
            for days, account, person, description, category, type_name, amount in DEMO_ROWS
        ]
        result = services.ImportService(session).import_rows(hid, user, rows, today)
    print(f"Household {hid}: {result['message']}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--email', default='demo@example.com')
    parser.add_argument('--password', default='demo-password')
    args = parser.parse_args()
    raise SystemExit(main(args.email, args.password))
