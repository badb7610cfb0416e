"""Candidate matching of gateway records against the invoice index.

Strategies run in a fixed priority order and the first one that produces a
result wins. Each strategy only scans its own index partition (email bucket,
name bucket, or names sharing a word with the query), never the full ledger.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

from invoice_index import InvoiceIndex
from ledger_models import LedgerRecord, MatchResult
from normalize import days_between, normalize_email, normalize_text, within_tolerance


@dataclass(frozen=True)
class MatchQuery:
    name: str = ""
    email: str = ""
    amount: float = 0.0
    date: Optional[date] = None

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "MatchQuery":
        return cls(
            name=normalize_text(record.meta.customer_name),
            email=normalize_email(record.meta.customer_email),
            amount=record.abs_amount,
            date=record.date,
        )


@dataclass(frozen=True)
class MatchOptions:
    max_days: int = 365
    amount_tolerance: float = 0.05
    min_amount_tolerance: float = 2

    def tolerance_for(self, amount: float) -> float:
        return max(amount * self.amount_tolerance, self.min_amount_tolerance)

    def accepts(self, query_amount: float, candidate_amount: float) -> bool:
        return within_tolerance(query_amount, candidate_amount, self.tolerance_for(query_amount))


def _result(strategy: str, confidence: float, match: LedgerRecord, index: InvoiceIndex) -> MatchResult:
    return MatchResult(
        strategy=strategy,
        confidence=confidence,
        matched_record_id=match.id,
        account_code=index.account_for(match),
        invoice_number=match.meta.invoice_number,
        matched_customer=match.meta.customer_name or "",
    )


def closest_by_amount(query: MatchQuery, candidates: Iterable[LedgerRecord], index: InvoiceIndex,
                      opts: MatchOptions) -> Optional[LedgerRecord]:
    """Candidate within amount tolerance, ranked by amount diff then date."""
    best, best_score = None, float("inf")
    for c in candidates:
        if not index.account_for(c):
            continue
        c_amount = c.abs_amount
        if c_amount == 0:
            continue
        if opts.accepts(query.amount, c_amount):
            score = abs(query.amount - c_amount) + days_between(query.date, c.date) * 0.1
            if score < best_score:
                best, best_score = c, score
    return best


def closest_by_date(query: MatchQuery, candidates: Iterable[LedgerRecord], index: InvoiceIndex):
    best, best_days = None, float("inf")
    for c in candidates:
        if not index.account_for(c):
            continue
        days = days_between(query.date, c.date)
        if days < best_days:
            best, best_days = c, days
    return best, best_days


class MatchStrategy:
    name = ""

    def try_match(self, query: MatchQuery, index: InvoiceIndex, opts: MatchOptions) -> Optional[MatchResult]:
        raise NotImplementedError


class EmailAmountStrategy(MatchStrategy):
    name = "email+amount"
    confidence = 0.92

    def try_match(self, query, index, opts):
        if not query.email:
            return None
        best = closest_by_amount(query, index.by_email.get(query.email, ()), index, opts)
        return _result(self.name, self.confidence, best, index) if best else None


class EmailDateStrategy(MatchStrategy):
    name = "email+date"
    confidence = 0.78

    def try_match(self, query, index, opts):
        if not query.email:
            return None
        best, days = closest_by_date(query, index.by_email.get(query.email, ()), index)
        if best and days <= opts.max_days:
            return _result(self.name, self.confidence, best, index)
        return None


class NameAmountStrategy(MatchStrategy):
    name = "name+amount"
    confidence = 0.88

    def try_match(self, query, index, opts):
        if len(query.name) < 3:
            return None
        best = closest_by_amount(query, index.by_name.get(query.name, ()), index, opts)
        return _result(self.name, self.confidence, best, index) if best else None


class NameDateStrategy(MatchStrategy):
    name = "name+date"

    def try_match(self, query, index, opts):
        if len(query.name) < 3:
            return None
        best, days = closest_by_date(query, index.by_name.get(query.name, ()), index)
        if best and days <= opts.max_days:
            return _result(self.name, 0.72 if days <= 30 else 0.55, best, index)
        return None


class FuzzyNameAmountStrategy(MatchStrategy):
    name = "fuzzy-name+amount"
    confidence = 0.70
    top_names = 5

    def try_match(self, query, index, opts):
        best, best_score, best_name = None, float("inf"), ""
        for fuzzy in index.fuzzy_names(query.name)[: self.top_names]:
            for c in index.by_name.get(fuzzy.name, ()):
                if not index.account_for(c) or c.abs_amount == 0:
                    continue
                if not opts.accepts(query.amount, c.abs_amount):
                    continue
                score = abs(query.amount - c.abs_amount) + days_between(query.date, c.date) * 0.1
                if score < best_score:
                    best, best_score, best_name = c, score, fuzzy.name
        if best:
            return _result(f"{self.name}({best_name})", self.confidence, best, index)
        return None


class FuzzyNameStrategy(MatchStrategy):
    name = "fuzzy-name"
    confidence = 0.50
    top_names = 3

    def try_match(self, query, index, opts):
        for fuzzy in index.fuzzy_names(query.name)[: self.top_names]:
            with_account = next((c for c in index.by_name.get(fuzzy.name, ()) if index.account_for(c)), None)
            if with_account:
                return _result(f"{self.name}({fuzzy.name})", self.confidence, with_account, index)
        return None


DEFAULT_CASCADE: Sequence[MatchStrategy] = (
    EmailAmountStrategy(),
    EmailDateStrategy(),
    NameAmountStrategy(),
    NameDateStrategy(),
    FuzzyNameAmountStrategy(),
    FuzzyNameStrategy(),
)


class CandidateMatcher:
    def __init__(self, index: InvoiceIndex, options: MatchOptions = None,
                 strategies: Sequence[MatchStrategy] = DEFAULT_CASCADE):
        self.index = index
        self.options = options or MatchOptions()
        self.strategies: List[MatchStrategy] = list(strategies)

    def find_best_match(self, query: MatchQuery) -> Optional[MatchResult]:
        for strategy in self.strategies:
            result = strategy.try_match(query, self.index, self.options)
            if result:
                return result
        return None

    def match_record(self, record: LedgerRecord) -> Optional[MatchResult]:
        return self.find_best_match(MatchQuery.from_record(record))
