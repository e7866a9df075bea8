"""Duplicate transaction detection.

Transactions are bucketed by absolute amount; every pair inside a bucket
that falls within the day window is scored. The score averages a
day-proximity component with a description similarity built from three
measures on normalized descriptions:

- Dice coefficient over character bigrams (40%)
- normalized Levenshtein similarity (30%)
- Dice over words longer than two characters (30%)

Pairs scoring above 0.1 are returned, best first.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

DEFAULT_TIME_WINDOW = 5
MIN_SCORE = 0.1
HIGH_RISK = 0.75
MEDIUM_RISK = 0.25

_SUFFIXES = re.compile(r"\b(llc|inc|corp|ltd|co|company)\b")
_LEADING_JUNK = re.compile(r"^[\d\s\-#]+")
_SPACES = re.compile(r"\s+")


@dataclass
class DuplicateCandidate:
    """The fields of a transaction the detector looks at (plus display names)."""
    id: int
    transaction_date: date
    description: str
    amount: Decimal
    account: str = ""
    category: str = ""
    type: str = ""
    user: str = ""
    memo: Optional[str] = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["transaction_date"] = self.transaction_date.isoformat()
        out["amount"] = float(self.amount)
        return out


@dataclass
class DuplicatePair:
    transaction1: DuplicateCandidate
    transaction2: DuplicateCandidate
    score: float
    day_score: float
    description_score: float
    days_difference: int

    def to_dict(self) -> dict:
        return {
            "transaction1": self.transaction1.to_dict(),
            "transaction2": self.transaction2.to_dict(),
            "score": round(self.score, 4),
            "day_score": round(self.day_score, 4),
            "description_score": round(self.description_score, 4),
            "days_difference": self.days_difference,
            "risk": risk_label(self.score),
        }


def normalize_description(description: str) -> str:
    """Lower-case, drop business suffixes and leading reference numbers."""
    text = description.lower().strip()
    text = _SUFFIXES.sub("", text)
    text = _LEADING_JUNK.sub("", text)
    return _SPACES.sub(" ", text).strip()


def _bigrams(text: str) -> set:
    return {text[i:i + 2] for i in range(len(text) - 1)}


def dice_coefficient(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    ba, bb = _bigrams(a), _bigrams(b)
    return 2 * len(ba & bb) / (len(ba) + len(bb))


def normalized_levenshtein(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 when every character differs."""
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - Levenshtein.distance(a, b) / longest


def word_overlap(a: str, b: str) -> float:
    wa = {w for w in a.split() if len(w) > 2}
    wb = {w for w in b.split() if len(w) > 2}
    if not wa and not wb:
        return 1.0
    if not wa or not wb:
        return 0.0
    return 2 * len(wa & wb) / (len(wa) + len(wb))


def description_similarity(desc1: str, desc2: str) -> float:
    n1 = normalize_description(desc1)
    n2 = normalize_description(desc2)
    return (
        dice_coefficient(n1, n2) * 0.4
        + normalized_levenshtein(n1, n2) * 0.3
        + word_overlap(n1, n2) * 0.3
    )


def days_between(d1: date, d2: date) -> int:
    return abs((d2 - d1).days)


def find_duplicates(transactions: Iterable[DuplicateCandidate], time_window: int = DEFAULT_TIME_WINDOW) -> List[DuplicatePair]:
    """Return likely duplicate pairs sorted by score (highest first).

    Only transactions with the same absolute amount are compared, so the
    pairwise work stays inside small buckets.
    """
    if time_window <= 0:
        raise ValueError("time_window must be positive")
    buckets: dict = {}
    for t in transactions:
        buckets.setdefault(abs(Decimal(t.amount)), []).append(t)

    pairs = []
    for same_amount in buckets.values():
        if len(same_amount) < 2:
            continue
        for i, first in enumerate(same_amount):
            for second in same_amount[i + 1:]:
                days = days_between(first.transaction_date, second.transaction_date)
                if days > time_window:
                    continue
                day_score = max(0.0, 1 - days / time_window)
                desc_score = description_similarity(first.description, second.description)
                score = (day_score + desc_score) / 2
                if score > MIN_SCORE:
                    pairs.append(DuplicatePair(first, second, score, day_score, desc_score, days))
    pairs.sort(key=lambda p: p.score, reverse=True)
    return pairs


def risk_label(score: float) -> str:
    if score >= HIGH_RISK:
        return "High Risk"
    if score >= MEDIUM_RISK:
        return "Medium Risk"
    return "Low Risk"


def format_score(score: float) -> str:
    return f"{round(score * 100)}%"


def duplicate_stats(pairs: List[DuplicatePair]) -> dict:
    return {
        "total": len(pairs),
        "high_risk": sum(1 for p in pairs if p.score >= HIGH_RISK),
        "medium_risk": sum(1 for p in pairs if MEDIUM_RISK <= p.score < HIGH_RISK),
        "low_risk": sum(1 for p in pairs if p.score < MEDIUM_RISK),
    }
