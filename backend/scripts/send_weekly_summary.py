"""Send the weekly household summaries without going through HTTP.

Usage: python scripts/send_weekly_summary.py [--date YYYY-MM-DD] [--dry-run]

`--date` pretends today is another day, which picks the reporting
month the same way the scheduled job does. `--dry-run` prints the
summaries instead of emailing them.
"""
import argparse
import json
import pathlib
import sys
from datetime import date

# Ensure `backend/` is on sys.path so `finance_app` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlmodel import Session

from finance_app import repositories
from finance_app.database import engine
from finance_app.services import SummaryService


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument('--date', type=date.fromisoformat, default=None, help='Run as if today were this date')
    parser.add_argument('--dry-run', action='store_true', help='Print summaries instead of sending email')
    args = parser.parse_args()

    with Session(engine) as session:
        svc = SummaryService(session)
        if args.dry_run:
            for user in repositories.UserRepository(session).with_weekly_summary():
                summaries = svc.summaries_for_user(user, args.date)
                print(json.dumps({'email': user.email, 'summaries': summaries}, indent=2))
            return 0
        result = svc.run_weekly(args.date)
    print(json.dumps({k: v for k, v in result.items() if k != 'details'}, indent=2))
    return 1 if result['failed'] else 0


if __name__ == "__main__":
    raise SystemExit(main())
