import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from invoice_index import build_invoice_index, dominant_code
from ledger_models import LedgerRecord


def _invoice(id, name=None, email=None, amount=100, code=None, inv=None, date="2024-01-10"):
    custom = {}
    if name:
        custom["customer_name"] = name
    if email:
        custom["customer_email"] = email
    if code:
        custom["account_code"] = code
    custom["invoice_number"] = inv or f"INV-{id}"
    return LedgerRecord.from_row({
        "id": id, "amount": amount, "date": date, "description": "", "source": "invoice-orders",
        "custom_data": custom,
    })


def test_dominant_code_tie_goes_to_smallest_code():
    assert dominant_code({"4100": 2, "4000": 2, "4200": 1}) == "4000"
    assert dominant_code({}) is None
    assert dominant_code({"4000": 1}, min_count=2) is None


def test_dominant_account_by_name():
    index = build_invoice_index([
        _invoice("1", name="ACME Corp", code="4100"),
        _invoice("2", name="acme corp.", code="4000"),
        _invoice("3", name="Acme Corp", code="4100"),
    ])
    assert index.dominant_account("ACME CORP") == "4100"
    assert index.dominant_account("unknown") is None


def test_dominant_account_by_domain_needs_two_occurrences():
    index = build_invoice_index([
        _invoice("1", email="a@acme.com", code="4000"),
        _invoice("2", email="b@beta.io", code="4200"),
        _invoice("3", email="c@beta.io", code="4200"),
    ])
    assert index.dominant_account_by_domain("acme.com") is None
    assert index.dominant_account_by_domain("beta.io") == "4200"


def test_records_missing_fields_are_left_out_of_their_index():
    index = build_invoice_index([
        _invoice("1", name=None, email=None, amount=0, code="4000"),
        _invoice("2", name="Beta Ltd", email="x@beta.io", amount=250, code="4100"),
    ])
    assert list(index.by_name) == ["beta ltd"]
    assert list(index.by_email) == ["x@beta.io"]
    assert list(index.by_amount) == [250]
    assert index.account_for_invoice("INV-1") == "4000"


def test_account_for_uses_invoice_number():
    inv = _invoice("1", name="Beta Ltd", code="4100", inv="F-77")
    index = build_invoice_index([inv])
    assert index.account_for(inv) == "4100"
    assert index.account_for_invoice("F-404") is None


def test_fuzzy_names_threshold():
    index = build_invoice_index([
        _invoice("1", name="Global Widgets", code="4000"),
        _invoice("2", name="Global Widgets International", code="4100"),
    ])
    # 1 shared word of 2 -> 0.5 accepted; 1 of 3 -> 0.33 rejected
    names = index.fuzzy_names("global parts")
    assert [f.name for f in names] == ["global widgets"]
    assert names[0].score == pytest.approx(0.5)


def test_fuzzy_names_sorted_by_score_then_name():
    index = build_invoice_index([
        _invoice("1", name="north star", code="4000"),
        _invoice("2", name="star north", code="4000"),
        _invoice("3", name="north wind", code="4000"),
    ])
    names = [f.name for f in index.fuzzy_names("north star")]
    assert names == ["north star", "star north", "north wind"]


def test_fuzzy_names_short_query_yields_nothing():
    index = build_invoice_index([_invoice("1", name="abc", code="4000")])
    assert index.fuzzy_names("abc") == []


def test_index_is_read_only():
    index = build_invoice_index([_invoice("1", name="Beta Ltd", code="4100")])
    with pytest.raises(TypeError):
        index.by_name["x"] = ()
