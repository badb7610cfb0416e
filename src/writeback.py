import sqlite3
from typing import Dict, List, Optional

import requests

from ledger_models import RecordUpdate, WriteOutcome
from ledger_store import LedgerStoreError
from state_store import write_audit

BATCH_SIZE = 50


def merge_fields(existing: Optional[Dict], fields: Dict) -> Dict:
    """Shallow merge: new fields win, everything else is kept."""
    merged = dict(existing or {})
    merged.update(fields)
    return merged


def write_updates(store, updates: List[RecordUpdate], label: str, batch_size: int = BATCH_SIZE,
                  dry_run: bool = False, run_id: str = "") -> WriteOutcome:
    """Merge each update into the record's stored metadata.

    One read-modify-write per record, in fixed-size batches. A failing record
    is reported and audited but does not stop the rest of its batch; there are
    no retries within a run. ``dry_run`` makes no store calls at all.
    """
    outcome = WriteOutcome(attempted=len(updates))
    if dry_run or not updates:
        return outcome

    for start in range(0, len(updates), batch_size):
        batch = updates[start:start + batch_size]
        failed_ids = []
        for u in batch:
            try:
                current = store.get_metadata(u.record_id)
                store.update_metadata(u.record_id, merge_fields(current, u.fields))
                outcome.written += 1
            except (requests.RequestException, LedgerStoreError) as e:
                outcome.failed += 1
                failed_ids.append(u.record_id)
                print(f"  ❌ [{label}] {u.record_id}: {e}")
                try:
                    write_audit("ERROR", run_id, "write", [u.record_id, u.source], "failed", str(e))
                except sqlite3.Error as audit_error:
                    print(f"  ⚠️ [{label}] audit not recorded for {u.record_id}: {audit_error}")
        if failed_ids:
            print(f"  ⚠️ [{label}] batch {start // batch_size}: {len(failed_ids)} failures")
    return outcome


def group_by_source(updates: List[RecordUpdate]) -> Dict[str, List[RecordUpdate]]:
    grouped: Dict[str, List[RecordUpdate]] = {}
    for u in updates:
        grouped.setdefault(u.source, []).append(u)
    return grouped
