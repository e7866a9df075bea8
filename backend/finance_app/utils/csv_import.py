"""CSV parsing and row validation for bulk transaction imports.

Rows reference household definitions by *name* (account, user, category,
type); resolving names to ids is the import service's job. This module
only normalizes headers, parses dates/amounts and reports row-level
validation errors in the shape the API returns:
`{'row', 'field', 'value', 'message'}` where row 2 is the first data row.
"""

import csv
import io
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

FIELDS = ("account", "user", "transaction_date", "post_date", "description",
          "category", "type", "amount", "memo")
REQUIRED_FIELDS = ("account", "transaction_date", "description", "category", "type", "amount")

MAX_AMOUNT = Decimal("1000000")
MAX_DESCRIPTION = 500
MAX_MEMO = 1000
MAX_NAME = 100
MIN_YEAR = 1900

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# header aliases -> canonical field
_HEADER_ALIASES = {
    "date": "transaction_date",
    "transactiondate": "transaction_date",
    "postdate": "post_date",
    "posteddate": "post_date",
    "householduser": "user",
    "spender": "user",
    "source": "account",
    "notes": "memo",
}


def canonical_header(name: str) -> Optional[str]:
    """Map `Transaction Date`, `transactionDate` or `transaction_date` to one key."""
    squashed = re.sub(r"[^a-z]", "", (name or "").lower())
    if squashed in _HEADER_ALIASES:
        return _HEADER_ALIASES[squashed]
    for field in FIELDS:
        if squashed == field.replace("_", ""):
            return field
    return None


def normalize_row(raw: Dict) -> Dict[str, str]:
    """Re-key a row by canonical field names; values become stripped strings."""
    item = {field: "" for field in FIELDS}
    for key, value in raw.items():
        field = canonical_header(key) if isinstance(key, str) else None
        if field:
            item[field] = "" if value is None else str(value).strip()
    return item


def parse_csv(b: bytes) -> List[Dict[str, str]]:
    """Parse CSV bytes into dicts keyed by canonical field names.

    Unknown columns are dropped; missing columns come back as empty
    strings so validation can report them per row.
    """
    try:
        text = b.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValueError("CSV file must be UTF-8 encoded")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV file has no header row")
    fields = {canonical_header(h) for h in reader.fieldnames}
    if "amount" not in fields or "transaction_date" not in fields:
        raise ValueError("CSV header must include at least transaction date and amount columns")
    out = []
    for row in reader:
        item = normalize_row(row)
        if any(item.values()):
            out.append(item)
    return out


def parse_date(value: str) -> Optional[date]:
    """Parse MM/DD/YYYY (or ISO YYYY-MM-DD); invalid calendar dates give None."""
    value = (value or "").strip()
    m = _US_DATE.match(value)
    if m:
        month, day, year = (int(g) for g in m.groups())
    else:
        m = _ISO_DATE.match(value)
        if not m:
            return None
        year, month, day = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_amount(value) -> Optional[Decimal]:
    """Parse `-1,234.50` or `$12.00`; returns None when not a finite number."""
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        raw = re.sub(r"[$,\s]", "", value or "")
    try:
        amount = Decimal(raw)
        if not amount.is_finite():
            return None
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def sanitize_text(value: Optional[str]) -> str:
    """Strip control characters and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", value or "").strip()


def validate_row(row: Dict[str, str], row_number: int, today: date) -> Tuple[Optional[dict], List[dict]]:
    """Validate one parsed row.

    Returns `(clean_row, errors)`; `clean_row` is None when any error was
    found. Entity names are returned as-is for the caller to resolve.
    """
    errors = []

    def err(field, message):
        errors.append({"row": row_number, "field": field, "value": str(row.get(field) or ""), "message": message})

    for field in REQUIRED_FIELDS:
        value = row.get(field)
        if value is None or str(value).strip() == "":
            err(field, f"{field.replace('_', ' ').capitalize()} is required")
    for field in ("account", "user", "category", "type"):
        if len(str(row.get(field) or "")) > MAX_NAME:
            err(field, f"{field.capitalize()} name too long")

    txn_date = None
    if row.get("transaction_date"):
        txn_date = parse_date(row["transaction_date"])
        if txn_date is None:
            err("transaction_date", f'Invalid date format. Expected MM/DD/YYYY but got "{row["transaction_date"]}"')
        elif txn_date > today:
            err("transaction_date", "Transaction date cannot be in the future")
        elif txn_date.year < MIN_YEAR:
            err("transaction_date", "Transaction date must be after 1900")

    post_date = txn_date
    if row.get("post_date"):
        post_date = parse_date(row["post_date"])
        if post_date is None:
            err("post_date", f'Invalid date format. Expected MM/DD/YYYY but got "{row["post_date"]}"')

    amount = None
    if row.get("amount") not in (None, ""):
        amount = parse_amount(row["amount"])
        if amount is None:
            err("amount", f'Invalid amount. Expected a number but got "{row["amount"]}"')
        elif abs(amount) > MAX_AMOUNT:
            err("amount", "Amount must be between -1,000,000 and 1,000,000")

    description = sanitize_text(row.get("description"))
    if len(description) > MAX_DESCRIPTION:
        err("description", "Description too long")
    memo = sanitize_text(row.get("memo"))
    if len(memo) > MAX_MEMO:
        err("memo", "Memo too long")

    if errors:
        return None, errors
    return {
        "account": row["account"].strip(),
        "user": (row.get("user") or "").strip(),
        "category": row["category"].strip(),
        "type": row["type"].strip(),
        "transaction_date": txn_date,
        "post_date": post_date or txn_date,
        "description": description,
        "amount": amount,
        "memo": memo or None,
    }, []
