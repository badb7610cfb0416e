import re
import unicodedata
from datetime import date, datetime
from typing import List, Optional

# Sentinel distance for comparisons where a date is missing
MISSING_DAYS = 999


def normalize_text(text) -> str:
    if not text:
        return ""
    s = unicodedata.normalize("NFKD", str(text))
    s = "".join(c for c in s if not unicodedata.combining(c))
    s = s.lower().strip()
    s = re.sub(r"[^a-z0-9 ]", "", re.sub(r"\s+", " ", s))
    return re.sub(r"\s+", " ", s).strip()


def normalize_amount(value) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if amount != amount:  # NaN
        return 0.0
    return abs(amount)


def parse_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def days_between(d1, d2) -> int:
    a, b = parse_date(d1), parse_date(d2)
    if a is None or b is None:
        return MISSING_DAYS
    return abs((a - b).days)


def significant_words(name: str) -> List[str]:
    return [w for w in (name or "").split() if len(w) >= 3]


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


def email_domain(email) -> str:
    parts = normalize_email(email).split("@")
    return parts[1] if len(parts) > 1 else ""


def amount_bucket(amount: float) -> int:
    # half-up so buckets stay within ceil(diff) of each other
    return int(normalize_amount(amount) + 0.5)


def within_tolerance(a: float, b: float, tolerance: float, inclusive: bool = True) -> bool:
    """Compare amounts to the cent so float noise never decides a boundary."""
    diff, limit = round(abs(a - b), 2), round(tolerance, 2)
    return diff <= limit if inclusive else diff < limit
