from collections import Counter
from typing import Dict, Iterable, Mapping, Optional

from invoice_index import InvoiceIndex, dominant_code
from ledger_models import LedgerRecord
from normalize import email_domain, normalize_text

FUZZY_FALLBACK_NAMES = 3


def fallback_account(index: InvoiceIndex, name: str, email: str) -> Optional[str]:
    """Account code from customer history when no invoice matched.

    Email domain dominance first, then exact name dominance, then the
    dominant code of the closest fuzzy names.
    """
    code = index.dominant_account_by_domain(email_domain(email)) if email else None
    name = normalize_text(name)
    if not code and name:
        code = index.dominant_account(name)
    if not code and name:
        for fuzzy in index.fuzzy_names(name)[:FUZZY_FALLBACK_NAMES]:
            code = index.dominant_account(fuzzy.name)
            if code:
                break
    return code


def most_common_code(codes: Iterable[Optional[str]]) -> Optional[str]:
    return dominant_code(Counter(c for c in codes if c))


def resolved_account(record: LedgerRecord, index: InvoiceIndex, patched: Mapping[str, str],
                     tx_accounts: Mapping[str, str] = None) -> Optional[str]:
    """Best known account for a gateway row, preferring this run's patches."""
    code = patched.get(record.id) or record.meta.matched_account_code
    if not code:
        code = index.account_for_invoice(record.meta.matched_invoice_number)
    if not code and tx_accounts and record.meta.transaction_id:
        code = tx_accounts.get(record.meta.transaction_id)
    return code


def gateway_dominant_account(records: Iterable[LedgerRecord], index: InvoiceIndex,
                             patched: Mapping[str, str], tx_accounts: Mapping[str, str] = None) -> Optional[str]:
    return most_common_code(resolved_account(r, index, patched, tx_accounts) for r in records)


def build_transaction_accounts(records: Iterable[LedgerRecord], index: InvoiceIndex,
                               patched: Mapping[str, str]) -> Dict[str, str]:
    """Gateway transaction id -> account code, used to resolve bank chains."""
    lookup: Dict[str, str] = {}
    for r in records:
        tx_id = r.meta.transaction_id
        if not tx_id:
            continue
        code = resolved_account(r, index, patched)
        if not code and r.meta.customer_name:
            code = index.dominant_account(r.meta.customer_name)
        if code:
            lookup[tx_id] = code
    return lookup
