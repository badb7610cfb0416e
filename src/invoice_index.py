"""Lookup structures over the invoice/order ledger.

The index is folded from the ledger once per run and is read-only afterwards:
every mapping is a ``MappingProxyType`` over tuples / frozensets, so the
matcher can share it across workers without locking.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ledger_models import LedgerRecord
from normalize import amount_bucket, email_domain, normalize_email, normalize_text, significant_words


def dominant_code(counts: Mapping[str, int], min_count: int = 1) -> Optional[str]:
    """Most frequent code; ties go to the lexicographically smallest code."""
    if not counts:
        return None
    code, count = min(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return code if count >= min_count else None


@dataclass(frozen=True)
class FuzzyName:
    name: str
    score: float


@dataclass(frozen=True)
class InvoiceIndex:
    by_name: Mapping[str, Tuple[LedgerRecord, ...]]
    by_email: Mapping[str, Tuple[LedgerRecord, ...]]
    by_amount: Mapping[int, Tuple[LedgerRecord, ...]]
    by_word: Mapping[str, frozenset]
    name_accounts: Mapping[str, Mapping[str, int]]
    domain_accounts: Mapping[str, Mapping[str, int]]
    invoice_accounts: Mapping[str, str]

    def account_for(self, record: LedgerRecord) -> Optional[str]:
        inv = record.meta.invoice_number
        return self.invoice_accounts.get(inv) if inv else None

    def account_for_invoice(self, invoice_number: Optional[str]) -> Optional[str]:
        return self.invoice_accounts.get(invoice_number) if invoice_number else None

    def dominant_account(self, name: str) -> Optional[str]:
        return dominant_code(self.name_accounts.get(normalize_text(name), {}))

    def dominant_account_by_domain(self, domain: str) -> Optional[str]:
        # a single occurrence is too noisy to generalize from
        return dominant_code(self.domain_accounts.get(domain or "", {}), min_count=2)

    def fuzzy_names(self, name: str) -> List[FuzzyName]:
        """Invoice names sharing significant words with ``name``, best first."""
        if not name or len(name) < 4:
            return []
        words = significant_words(name)
        if not words:
            return []
        shared: Counter = Counter()
        for w in words:
            for candidate in self.by_word.get(w, ()):
                shared[candidate] += 1
        results = []
        for candidate, count in shared.items():
            ratio = count / max(len(words), len(significant_words(candidate)))
            if count >= 1 and ratio >= 0.5:
                results.append(FuzzyName(candidate, ratio))
        results.sort(key=lambda f: (-f.score, f.name))
        return results

    def stats(self) -> Dict[str, int]:
        return {
            "names": len(self.by_name),
            "emails": len(self.by_email),
            "amounts": len(self.by_amount),
            "words": len(self.by_word),
            "invoices_with_account": len(self.invoice_accounts),
        }


def _freeze_lists(d: Dict) -> Mapping:
    return MappingProxyType({k: tuple(v) for k, v in d.items()})


def build_invoice_index(records: Iterable[LedgerRecord]) -> InvoiceIndex:
    by_name = defaultdict(list)
    by_email = defaultdict(list)
    by_amount = defaultdict(list)
    by_word = defaultdict(set)
    name_accounts = defaultdict(Counter)
    domain_accounts = defaultdict(Counter)
    invoice_accounts: Dict[str, str] = {}

    for r in records:
        meta = r.meta
        name = normalize_text(meta.customer_name)
        email = normalize_email(meta.customer_email)
        domain = email_domain(email)
        code = meta.account_code
        amount = r.abs_amount

        if meta.invoice_number and code:
            invoice_accounts[meta.invoice_number] = code
        if name and code:
            name_accounts[name][code] += 1
        if domain and code:
            domain_accounts[domain][code] += 1
        if name:
            by_name[name].append(r)
            for w in significant_words(name):
                by_word[w].add(name)
        if email:
            by_email[email].append(r)
        if amount > 0:
            by_amount[amount_bucket(amount)].append(r)

    return InvoiceIndex(
        by_name=_freeze_lists(by_name),
        by_email=_freeze_lists(by_email),
        by_amount=_freeze_lists(by_amount),
        by_word=MappingProxyType({k: frozenset(v) for k, v in by_word.items()}),
        name_accounts=MappingProxyType({k: MappingProxyType(dict(v)) for k, v in name_accounts.items()}),
        domain_accounts=MappingProxyType({k: MappingProxyType(dict(v)) for k, v in domain_accounts.items()}),
        invoice_accounts=MappingProxyType(invoice_accounts),
    )
