"""Gateway -> invoice ledger phases.

Customer-keyed gateways (card processors exporting customer name/email) go
through the candidate matcher cascade; amount-keyed gateways (direct debit
exports with no customer data) are matched on amount and date proximity.
Rows that stay unmatched still receive an account code by fallback.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from fallback import fallback_account, most_common_code
from invoice_index import InvoiceIndex
from ledger_models import LedgerRecord, MatchResult, RecordUpdate
from matcher import CandidateMatcher
from normalize import amount_bucket, days_between, within_tolerance

CUSTOMER_FALLBACK_CONFIDENCE = 0.45
GATEWAY_DOMINANT_CONFIDENCE = 0.35

# amount-keyed gateways
MIN_GATEWAY_AMOUNT = 5
BUCKET_SPREAD = 5
MAX_AMOUNT_DIFF = 5
MAX_WINDOW_DAYS = 30
NEAR_WINDOW_DAYS = 15
AMOUNT_ONLY_DIFF = 1
AMOUNT_ONLY_MAX_CANDIDATES = 3


@dataclass
class PhaseResult:
    label: str
    total: int = 0
    already_classified: int = 0
    matched: int = 0
    fallback: int = 0
    updates: List[RecordUpdate] = field(default_factory=list)
    strategy_counts: Counter = field(default_factory=Counter)
    accounts: Dict[str, str] = field(default_factory=dict)

    def add(self, record: LedgerRecord, fields: Dict, strategy: str, is_fallback: bool = False):
        self.updates.append(RecordUpdate(record.id, record.source, fields))
        self.strategy_counts[strategy] += 1
        if fields.get("matched_account_code"):
            self.accounts[record.id] = fields["matched_account_code"]
        if is_fallback:
            self.fallback += 1
        else:
            self.matched += 1

    @property
    def with_account(self) -> int:
        return self.already_classified + self.matched + self.fallback


def is_resolved(record: LedgerRecord) -> bool:
    return bool(record.meta.matched_invoice_number or record.meta.matched_account_code)


def match_fields(result: MatchResult, reconciliation_type: str, run_at: str) -> Dict:
    return {
        "matched_invoice_number": result.invoice_number,
        "matched_account_code": result.account_code,
        "reconciliation_strategy": result.strategy,
        "reconciliation_confidence": result.confidence,
        "reconciled_at": run_at,
        "matched_customer": result.matched_customer or "",
        "reconciliation_type": reconciliation_type,
    }


def fallback_fields(code: str, strategy: str, confidence: float, reconciliation_type: str, run_at: str) -> Dict:
    return {
        "matched_account_code": code,
        "reconciliation_strategy": strategy,
        "reconciliation_confidence": confidence,
        "reconciled_at": run_at,
        "reconciliation_type": reconciliation_type,
    }


def reconcile_customer_gateway(label: str, records: List[LedgerRecord], matcher: CandidateMatcher,
                               run_at: Optional[str] = None) -> PhaseResult:
    run_at = run_at or datetime.now().isoformat()
    phase = PhaseResult(label, total=len(records))
    for r in records:
        if is_resolved(r):
            phase.already_classified += 1
            continue
        result = matcher.match_record(r)
        if result:
            phase.add(r, match_fields(result, f"{label}-invoices", run_at), result.strategy_group)
            continue
        code = fallback_account(matcher.index, r.meta.customer_name, r.meta.customer_email)
        if code:
            fields = fallback_fields(code, "customer-fac-fallback", CUSTOMER_FALLBACK_CONFIDENCE,
                                     f"{label}-fallback", run_at)
            phase.add(r, fields, "customer-fac-fallback", is_fallback=True)
    return phase


def _amount_match(record: LedgerRecord, index: InvoiceIndex, used: Set[str]) -> Optional[MatchResult]:
    amount = record.abs_amount
    key = amount_bucket(amount)
    candidates = [
        c
        for k in range(key - BUCKET_SPREAD, key + BUCKET_SPREAD + 1)
        for c in index.by_amount.get(k, ())
        if c.id not in used and index.account_for(c)
    ]

    best, best_score, strategy = None, float("inf"), ""
    for c in candidates:
        diff = abs(amount - c.abs_amount)
        if not within_tolerance(amount, c.abs_amount, MAX_AMOUNT_DIFF):
            continue
        days = days_between(record.date, c.date)
        if days > MAX_WINDOW_DAYS:
            continue
        score = diff * 10 + days
        if score < best_score:
            best, best_score = c, score
            strategy = f"amount+date({NEAR_WINDOW_DAYS}d)" if days <= NEAR_WINDOW_DAYS else f"amount+date({MAX_WINDOW_DAYS}d)"
    if best:
        confidence = 0.65 if strategy.endswith(f"({NEAR_WINDOW_DAYS}d)") else 0.55
    else:
        # an amount only identifies an invoice when few invoices share it
        exact = [c for c in candidates if abs(amount - c.abs_amount) < AMOUNT_ONLY_DIFF]
        if 1 <= len(exact) <= AMOUNT_ONLY_MAX_CANDIDATES:
            best = min(exact, key=lambda c: (days_between(record.date, c.date), c.id))
            strategy, confidence = "amount-only", 0.45
    if not best:
        return None
    return MatchResult(
        strategy=strategy,
        confidence=confidence,
        matched_record_id=best.id,
        account_code=index.account_for(best),
        invoice_number=best.meta.invoice_number,
        matched_customer=best.meta.customer_name or "",
    )


def reconcile_amount_gateway(label: str, records: List[LedgerRecord], index: InvoiceIndex,
                             run_at: Optional[str] = None) -> PhaseResult:
    run_at = run_at or datetime.now().isoformat()
    phase = PhaseResult(label, total=len(records))
    used: Set[str] = set()
    pending: List[LedgerRecord] = []
    for r in records:
        if is_resolved(r):
            phase.already_classified += 1
            continue
        if r.abs_amount < MIN_GATEWAY_AMOUNT:
            continue
        result = _amount_match(r, index, used)
        if result:
            used.add(result.matched_record_id)
            phase.add(r, match_fields(result, f"{label}-invoices", run_at), result.strategy)
        else:
            pending.append(r)

    dominant = most_common_code(phase.accounts.values())
    if dominant:
        print(f"  [{label}] dominant account across matches: {dominant}")
        for r in pending:
            fields = fallback_fields(dominant, "gateway-dominant-fallback", GATEWAY_DOMINANT_CONFIDENCE,
                                     f"{label}-fallback", run_at)
            phase.add(r, fields, "gateway-dominant-fallback", is_fallback=True)
    return phase
