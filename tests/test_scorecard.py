import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from bank_linker import BankLink, BankLinkState
from ledger_models import LedgerRecord, RecordUpdate, WriteOutcome
from scorecard import print_scorecard, summarize_bank, summarize_gateway


def _row(id, source, **custom):
    return LedgerRecord.from_row({"id": id, "amount": 10, "date": "2024-01-01", "source": source,
                                  "custom_data": custom})


def test_gateway_summary_groups_fuzzy_strategies():
    records = [
        _row("a", "stripe-eur", matched_invoice_number="INV1"),
        _row("b", "stripe-eur"),
        _row("c", "stripe-eur"),
        _row("d", "stripe-eur"),
    ]
    updates = [
        RecordUpdate("b", "stripe-eur", {"reconciliation_strategy": "fuzzy-name(acme)", "matched_account_code": "4000"}),
        RecordUpdate("c", "stripe-eur", {"reconciliation_strategy": "customer-fac-fallback",
                                         "matched_account_code": "4100"}),
    ]

    summary = summarize_gateway("stripe-eur", records, updates)

    assert (summary.total, summary.already_classified, summary.newly_matched, summary.fallback_assigned) == (4, 1, 1, 1)
    assert summary.with_account == 3
    assert summary.pct_with_account == 75.0
    assert summary.to_dict()["strategies"] == {"customer-fac-fallback": 1, "fuzzy-name": 1}


def test_bank_summary_counts_only_its_source():
    links = [
        BankLink(_row("1", "bankinter-eur"), BankLinkState.ALREADY_CLASSIFIED),
        BankLink(_row("2", "bankinter-eur"), BankLinkState.SOURCE_MATCHED, "bank-stripe", {"pnl_account_code": "4000"}),
        BankLink(_row("3", "bankinter-eur"), BankLinkState.FALLBACK_ASSIGNED, "gateway-dominant-fallback",
                 {"pnl_account_code": "4000"}),
        BankLink(_row("4", "bankinter-eur"), BankLinkState.INTERNAL_TRANSFER, "internal-transfer", {"pnl_line": "internal"}),
        BankLink(_row("5", "chase-usd"), BankLinkState.TERMINAL_UNMATCHED),
    ]

    summary = summarize_bank("bankinter-eur", links)

    assert summary.total == 4
    assert summary.newly_matched == 1
    assert summary.fallback_assigned == 1
    assert summary.with_account == 3
    assert summary.strategies["internal-transfer"] == 1


def test_writes_only_reported_when_present(capsys):
    summary = summarize_bank("chase-usd", [])
    assert "written" not in summary.to_dict()
    summary.writes = WriteOutcome(attempted=2, written=1, failed=1)
    assert summary.to_dict()["write_failures"] == 1
    assert "written" not in summary.to_dict(include_writes=False)

    print_scorecard([summary], dry_run=False)
    assert "written: 1/2 (failures: 1)" in capsys.readouterr().out
