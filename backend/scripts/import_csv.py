"""Import a bank CSV export into a household from the command line.
Usage: python scripts/import_csv.py --email you@example.com --household-id 1 export.csv
"""
import argparse
import pathlib
import sys

# Ensure `backend/` is on sys.path so `finance_app` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlmodel import Session

from finance_app import repositories, services
from finance_app.database import create_db_and_tables, engine
from finance_app.errors import ForbiddenError, ImportValidationError, NotFoundError


def main(email: str, household_id: int, path: pathlib.Path) -> int:
    """Import every row of `path` as `email`; nothing is saved if any row is invalid."""
    if not path.exists():
        print(f'File not found: {path}')
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        user = repositories.UserRepository(session).get_by_email(email.strip().lower())
        if user is None:
            print(f'No user with email {email}')
            return 1
        try:
            result = services.ImportService(session).import_csv(household_id, user, path.read_bytes())
        except ImportValidationError as exc:
            print(exc)
            for err in exc.errors:
                print(f"  row {err['row']} {err['field']}: {err['message']}")
            return 1
        except (NotFoundError, ForbiddenError, ValueError) as exc:
            print(f'Import failed: {exc}')
            return 1
    print(result['message'])
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--email', required=True, help='Email of a household member allowed to edit')
    parser.add_argument('--household-id', type=int, required=True)
    parser.add_argument('csv_file', type=pathlib.Path)
    args = parser.parse_args()
    raise SystemExit(main(args.email, args.household_id, args.csv_file))
