import os
import sys
from datetime import date

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from ledger_models import LedgerRecord, MatchResult, RecordMeta


def test_legacy_keys_are_read_into_typed_fields():
    meta = RecordMeta.from_raw({
        "email": "ap@acme.com",
        "financial_account_code": "4000",
        "gocardless_id": "PM123",
        "matched_invoice_fac": "4100",
        "pnl_fac": "4200",
        "paymentSource": "stripe",
    })
    assert meta.customer_email == "ap@acme.com"
    assert meta.account_code == "4000"
    assert meta.transaction_id == "PM123"
    assert meta.matched_account_code == "4100"
    assert meta.pnl_account_code == "4200"
    assert meta.payment_source == "stripe"


def test_typed_key_wins_over_legacy_key():
    meta = RecordMeta.from_raw({"account_code": "4000", "financial_account_code": "9999"})
    assert meta.account_code == "4000"


def test_from_row_tolerates_bad_values():
    record = LedgerRecord.from_row({"id": 7, "amount": "n/a", "date": "yesterday", "custom_data": None})
    assert record.id == "7"
    assert record.amount == 0.0
    assert record.date is None
    assert record.meta == RecordMeta()


def test_from_row_reads_metadata_column_and_transaction_ids():
    record = LedgerRecord.from_row({
        "id": "b1", "amount": "-12.50", "date": "2024-03-10T08:00:00", "source": "chase-usd",
        "metadata": {"transaction_ids": ["ch_1", "", "ch_2"]},
    })
    assert record.abs_amount == 12.5
    assert record.date == date(2024, 3, 10)
    assert record.meta.transaction_ids == ("ch_1", "ch_2")


def test_strategy_group_strips_fuzzy_name():
    assert MatchResult("fuzzy-name+amount(acme corp)", 0.7).strategy_group == "fuzzy-name+amount"
    assert MatchResult("amount+date(15d)", 0.65).strategy_group == "amount+date(15d)"
