import argparse
import os
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from bank_linker import BankLinker, GatewayData, link_bank_rows
from config_loader import load_recon_config
from fallback import build_transaction_accounts, gateway_dominant_account
from gateway_reconciler import reconcile_amount_gateway, reconcile_customer_gateway
from invoice_index import build_invoice_index
from ledger_models import LedgerRecord, RecordUpdate, WriteOutcome
from ledger_store import ConfigError, LedgerStoreError, client_from_env
from loader import load_sources
from matcher import CandidateMatcher, MatchOptions
from notifier import send_run_summary
from scorecard import SourceSummary, print_scorecard, summarize_bank, summarize_gateway
from state_store import init_db, record_run
from writeback import group_by_source, write_updates

GATEWAY_FAMILIES = ("stripe", "gocardless", "braintree", "amex", "disbursements")


@dataclass
class RunReport:
    run_id: str
    dry_run: bool
    summaries: List[SourceSummary] = field(default_factory=list)
    writes: Dict[str, WriteOutcome] = field(default_factory=dict)

    def to_dict(self, include_writes: bool = True) -> Dict:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "sources": [s.to_dict(include_writes) for s in self.summaries],
        }


def _as_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _family_records(loaded: Dict[str, List[LedgerRecord]], sources: List[str]) -> List[LedgerRecord]:
    return [r for s in sources for r in loaded.get(s, [])]


def run_reconciliation(store, cfg: Dict, dry_run: bool = False, run_id: Optional[str] = None,
                       run_at: Optional[str] = None) -> RunReport:
    """Load every source, match, link bank rows and write the patches back."""
    run_id = run_id or f"recon-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6]}"
    run_at = run_at or datetime.now().isoformat()
    started_at = datetime.now().isoformat()
    report = RunReport(run_id, dry_run)
    init_db()

    sources_cfg = cfg["sources"]
    invoice_sources = _as_list(sources_cfg.get("invoices"))
    family_sources = {f: _as_list(sources_cfg.get(f)) for f in GATEWAY_FAMILIES}
    bank_sources = _as_list(sources_cfg.get("banks"))

    print("\n[1/5] Loading sources...")
    all_sources = invoice_sources + [s for f in GATEWAY_FAMILIES for s in family_sources[f]] + bank_sources
    loaded = load_sources(store, all_sources, cfg["store"]["page_size"], cfg["store"]["max_pages"])
    for source, rows in loaded.items():
        print(f"  {source}: {len(rows)} rows")

    print("\n[2/5] Building invoice index...")
    index = build_invoice_index(_family_records(loaded, invoice_sources))
    print(f"  {index.stats()}")

    print("\n[3/5] Matching gateway rows to invoices...")
    matcher = CandidateMatcher(index, MatchOptions(**cfg["matching"]))
    gateways = {f: _family_records(loaded, family_sources[f]) for f in GATEWAY_FAMILIES}
    stripe_phase = reconcile_customer_gateway("stripe", gateways["stripe"], matcher, run_at)
    gc_phase = reconcile_amount_gateway("gocardless", gateways["gocardless"], index, run_at)
    for phase in (stripe_phase, gc_phase):
        print(f"  [{phase.label}] {phase.matched} matched, {phase.fallback} fallback, "
              f"{phase.already_classified} already classified, of {phase.total}")

    print("\n[4/5] Linking bank inflows to gateways...")
    patched = {**stripe_phase.accounts, **gc_phase.accounts}
    tx_accounts = build_transaction_accounts(
        [r for f in GATEWAY_FAMILIES for r in gateways[f]], index, patched
    )
    dominant = {
        f: gateway_dominant_account(gateways[f], index, patched, tx_accounts)
        for f in ("stripe", "gocardless", "braintree", "amex")
    }
    print(f"  transaction lookup: {len(tx_accounts)} ids, dominant accounts: {dominant}")
    gateway_data = GatewayData(
        stripe=gateways["stripe"],
        gocardless=gateways["gocardless"],
        braintree=gateways["braintree"],
        amex=gateways["amex"],
        disbursements=gateways["disbursements"],
        tx_accounts=tx_accounts,
        patched=patched,
        dominant=dominant,
    )
    bank_cfg = cfg.get("bank") or {}
    linker = BankLinker(
        index,
        gateway_data,
        mark_internal_transfers=bool(bank_cfg.get("mark_internal_transfers")),
        catch_all_account=bank_cfg.get("catch_all_account"),
    )
    links, bank_updates = link_bank_rows(linker, _family_records(loaded, bank_sources))

    for source in family_sources["stripe"]:
        report.summaries.append(summarize_gateway(source, loaded.get(source, []), stripe_phase.updates))
    for source in family_sources["gocardless"]:
        report.summaries.append(summarize_gateway(source, loaded.get(source, []), gc_phase.updates))
    for source in bank_sources:
        report.summaries.append(summarize_bank(source, links))

    print("\n[5/5] Writing results" + (" (DRY RUN, no writes)" if dry_run else "") + "...")
    updates: List[RecordUpdate] = stripe_phase.updates + gc_phase.updates + bank_updates
    batch_size = cfg["write"]["batch_size"]
    for source, group in group_by_source(updates).items():
        outcome = write_updates(store, group, source, batch_size=batch_size, dry_run=dry_run, run_id=run_id)
        report.writes[source] = outcome
        if not dry_run:
            print(f"  ✅ [{source}] {outcome.written}/{outcome.attempted} written")
    for s in report.summaries:
        s.writes = None if dry_run else report.writes.get(s.source, WriteOutcome())

    print_scorecard(report.summaries, dry_run)
    record_run(run_id, started_at, dry_run, report.to_dict())
    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile gateway and bank ledgers against invoices")
    parser.add_argument("--dry-run", action="store_true", help="compute everything, write nothing")
    args = parser.parse_args(argv)

    load_dotenv()
    dry_run = args.dry_run or os.getenv("DRY_RUN", "false").lower() == "true"

    print("=== Reconciliation run ===")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    if dry_run:
        print("\n*** DRY RUN: nothing will be written ***")

    cfg = load_recon_config()
    try:
        store = client_from_env(cfg["store"])
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        print("Set LEDGER_STORE_URL and LEDGER_STORE_KEY")
        return 2

    try:
        store.ping()
    except (requests.RequestException, LedgerStoreError) as e:
        print(f"❌ Ledger store unreachable: {e}")
        return 1

    report = run_reconciliation(store, cfg, dry_run=dry_run)

    webhook_url = os.getenv("SLACK_WEBHOOK_URL")
    if webhook_url:
        print("\nPosting summary to Slack...")
        send_run_summary(webhook_url, report.to_dict()["sources"], dry_run, report.run_id)

    print(f"\n=== Done: {report.run_id} ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
