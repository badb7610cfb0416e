import os
import sqlite3
import sys
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest
import requests

from ledger_models import RecordUpdate
from ledger_store import LedgerStoreError
from state_store import get_audit, init_db
from writeback import group_by_source, merge_fields, write_updates


@pytest.fixture(autouse=True)
def audit_db(tmp_path, monkeypatch):
    monkeypatch.setenv("RECON_STATE_DB", str(tmp_path / "state.db"))
    init_db()


def _updates(n, source="stripe-eur"):
    return [RecordUpdate(f"r{i}", source, {"matched_account_code": "4000"}) for i in range(n)]


def test_merge_keeps_existing_keys():
    merged = merge_fields({"customer_name": "Acme", "matched_account_code": "old"}, {"matched_account_code": "4000"})
    assert merged == {"customer_name": "Acme", "matched_account_code": "4000"}
    assert merge_fields(None, {"a": 1}) == {"a": 1}


def test_write_reads_merges_and_writes_each_record():
    store = MagicMock()
    store.get_metadata.return_value = {"customer_name": "Acme"}

    outcome = write_updates(store, _updates(3), "stripe-eur", run_id="run-1")

    assert (outcome.attempted, outcome.written, outcome.failed) == (3, 3, 0)
    assert store.get_metadata.call_count == 3
    store.update_metadata.assert_any_call("r0", {"customer_name": "Acme", "matched_account_code": "4000"})


def test_failing_record_does_not_abort_its_batch():
    store = MagicMock()
    store.get_metadata.return_value = {}
    store.update_metadata.side_effect = [None, LedgerStoreError("boom"), requests.ConnectionError("down"), None, None]

    outcome = write_updates(store, _updates(5), "stripe-eur", batch_size=2, run_id="run-2")

    assert (outcome.attempted, outcome.written, outcome.failed) == (5, 3, 2)
    assert store.update_metadata.call_count == 5
    errors = get_audit("run-2", level="ERROR")
    assert [e["target_ids"][0] for e in errors] == ["r1", "r2"]
    assert errors[0]["error"] == "boom"


@patch('writeback.write_audit', side_effect=sqlite3.OperationalError("database is locked"))
def test_unwritable_audit_log_does_not_abort_the_batch(_audit, capsys):
    store = MagicMock()
    store.get_metadata.return_value = {}
    store.update_metadata.side_effect = [LedgerStoreError("boom"), None, None]

    outcome = write_updates(store, _updates(3), "stripe-eur", run_id="run-3")

    assert (outcome.attempted, outcome.written, outcome.failed) == (3, 2, 1)
    assert store.update_metadata.call_count == 3
    assert "audit not recorded for r0" in capsys.readouterr().out


def test_dry_run_makes_no_store_calls():
    store = MagicMock()
    outcome = write_updates(store, _updates(4), "stripe-eur", dry_run=True)
    assert outcome.attempted == 4
    assert outcome.written == 0
    assert store.method_calls == []


def test_group_by_source_keeps_order():
    updates = _updates(2, "stripe-eur") + _updates(1, "gocardless") + [RecordUpdate("x", "stripe-eur", {})]
    grouped = group_by_source(updates)
    assert list(grouped) == ["stripe-eur", "gocardless"]
    assert [u.record_id for u in grouped["stripe-eur"]] == ["r0", "r1", "x"]
