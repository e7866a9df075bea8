"""Create the database tables for a fresh install.

Usage: python scripts/init_db.py

Uses `DATABASE_URL` (default: `backend/finance.db`).
"""
import pathlib
import sys

# Ensure `backend/` is on sys.path so `finance_app` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from finance_app.config import settings
from finance_app.database import create_db_and_tables


def run():
    print("Using database:", settings.DATABASE_URL)
    create_db_and_tables()
    print("Tables created.")


if __name__ == '__main__':
    run()
