from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Tuple

from normalize import normalize_amount, parse_date

# Typed field -> keys accepted from the store, first non-empty wins
LEGACY_KEYS: Dict[str, Tuple[str, ...]] = {
    "invoice_number": ("invoice_number",),
    "customer_name": ("customer_name",),
    "customer_email": ("customer_email", "email"),
    "account_code": ("account_code", "financial_account_code"),
    "transaction_id": ("transaction_id", "gocardless_id", "payment_id"),
    "disbursement_date": ("disbursement_date",),
    "settlement_date": ("settlement_date",),
    "available_on": ("available_on",),
    "created": ("created",),
    "payment_source": ("payment_source", "paymentSource"),
    "matched_invoice_number": ("matched_invoice_number",),
    "matched_account_code": ("matched_account_code", "matched_invoice_fac"),
    "pnl_account_code": ("pnl_account_code", "pnl_fac"),
    "pnl_line": ("pnl_line",),
}


def _first(raw: Dict, keys: Tuple[str, ...]) -> Optional[str]:
    for k in keys:
        v = raw.get(k)
        if v not in (None, ""):
            return str(v)
    return None


@dataclass(frozen=True)
class RecordMeta:
    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    account_code: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_ids: Tuple[str, ...] = ()
    disbursement_date: Optional[str] = None
    settlement_date: Optional[str] = None
    available_on: Optional[str] = None
    created: Optional[str] = None
    payment_source: Optional[str] = None
    matched_invoice_number: Optional[str] = None
    matched_account_code: Optional[str] = None
    pnl_account_code: Optional[str] = None
    pnl_line: Optional[str] = None
    raw: Dict = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_raw(cls, raw: Optional[Dict]) -> "RecordMeta":
        """Map a schema-less metadata dict from the store onto typed fields."""
        raw = dict(raw or {})
        values = {name: _first(raw, keys) for name, keys in LEGACY_KEYS.items()}
        tx_ids = raw.get("transaction_ids") or ()
        if isinstance(tx_ids, str):
            tx_ids = (tx_ids,)
        values["transaction_ids"] = tuple(str(t) for t in tx_ids if t)
        return cls(raw=raw, **values)


@dataclass(frozen=True)
class LedgerRecord:
    id: str
    amount: float
    date: Optional[date]
    description: str
    source: str
    reconciled: bool = False
    meta: RecordMeta = field(default_factory=RecordMeta)

    @classmethod
    def from_row(cls, row: Dict) -> "LedgerRecord":
        try:
            amount = float(row.get("amount"))
        except (TypeError, ValueError):
            amount = 0.0
        return cls(
            id=str(row.get("id")),
            amount=amount if amount == amount else 0.0,
            date=parse_date(row.get("date")),
            description=row.get("description") or "",
            source=row.get("source") or "",
            reconciled=bool(row.get("reconciled")),
            meta=RecordMeta.from_raw(row.get("custom_data") or row.get("metadata")),
        )

    @property
    def abs_amount(self) -> float:
        return normalize_amount(self.amount)


@dataclass(frozen=True)
class MatchResult:
    strategy: str
    confidence: float
    matched_record_id: Optional[str] = None
    account_code: Optional[str] = None
    invoice_number: Optional[str] = None
    matched_customer: Optional[str] = None

    @property
    def strategy_group(self) -> str:
        # fuzzy-name+amount(acme corp) -> fuzzy-name+amount
        return self.strategy.split("(")[0] if self.strategy.startswith("fuzzy") else self.strategy


@dataclass
class RecordUpdate:
    record_id: str
    source: str
    fields: Dict


@dataclass
class WriteOutcome:
    attempted: int = 0
    written: int = 0
    failed: int = 0
