from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from bank_linker import FALLBACK_STATES, NEW_LINK_STATES, BankLink, BankLinkState
from gateway_reconciler import is_resolved
from ledger_models import LedgerRecord, RecordUpdate, WriteOutcome

FALLBACK_STRATEGIES = {"customer-fac-fallback", "gateway-dominant-fallback"}


@dataclass
class SourceSummary:
    source: str
    total: int = 0
    already_classified: int = 0
    newly_matched: int = 0
    fallback_assigned: int = 0
    with_account: int = 0
    strategies: Counter = field(default_factory=Counter)
    writes: Optional[WriteOutcome] = None

    @property
    def pct_with_account(self) -> float:
        return round(self.with_account / self.total * 100, 1) if self.total else 0.0

    def to_dict(self, include_writes: bool = True) -> Dict:
        d = {
            "source": self.source,
            "total": self.total,
            "already_classified": self.already_classified,
            "newly_matched": self.newly_matched,
            "fallback_assigned": self.fallback_assigned,
            "with_account": self.with_account,
            "pct_with_account": self.pct_with_account,
            "strategies": dict(sorted(self.strategies.items())),
        }
        if include_writes and self.writes is not None:
            d["written"] = self.writes.written
            d["write_failures"] = self.writes.failed
        return d


def _strategy_group(strategy: str) -> str:
    return strategy.split("(")[0] if strategy.startswith("fuzzy") else strategy


def summarize_gateway(source: str, records: Iterable[LedgerRecord], updates: Iterable[RecordUpdate]) -> SourceSummary:
    by_id = {u.record_id: u for u in updates}
    summary = SourceSummary(source)
    for r in records:
        summary.total += 1
        if is_resolved(r):
            summary.already_classified += 1
            summary.with_account += 1
            continue
        u = by_id.get(r.id)
        if not u:
            continue
        strategy = _strategy_group(u.fields.get("reconciliation_strategy", ""))
        summary.strategies[strategy] += 1
        if strategy in FALLBACK_STRATEGIES:
            summary.fallback_assigned += 1
        else:
            summary.newly_matched += 1
        if u.fields.get("matched_account_code"):
            summary.with_account += 1
    return summary


def summarize_bank(source: str, links: Iterable[BankLink]) -> SourceSummary:
    summary = SourceSummary(source)
    for link in links:
        if link.record.source != source:
            continue
        summary.total += 1
        if link.state == BankLinkState.ALREADY_CLASSIFIED:
            summary.already_classified += 1
            summary.with_account += 1
            continue
        if link.strategy:
            summary.strategies[link.strategy] += 1
        if link.state in NEW_LINK_STATES:
            summary.newly_matched += 1
        elif link.state in FALLBACK_STATES:
            summary.fallback_assigned += 1
        if link.account_code:
            summary.with_account += 1
    return summary


def print_scorecard(summaries: List[SourceSummary], dry_run: bool):
    print("\n=== Reconciliation scorecard" + (" (DRY RUN)" if dry_run else "") + " ===")
    for s in summaries:
        print(f"\n  {s.source}")
        print(f"    total: {s.total}")
        print(f"    already classified: {s.already_classified}")
        print(f"    newly matched: {s.newly_matched}")
        print(f"    fallback assigned: {s.fallback_assigned}")
        print(f"    with account code: {s.with_account}/{s.total} ({s.pct_with_account}%)")
        if s.strategies:
            print(f"    strategies: {dict(sorted(s.strategies.items()))}")
        if s.writes is not None:
            print(f"    written: {s.writes.written}/{s.writes.attempted} (failures: {s.writes.failed})")
