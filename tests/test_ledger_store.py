import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from ledger_store import ConfigError, LedgerStoreClient, LedgerStoreError, client_from_env


def _response(status=200, payload=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    response.text = "error body"
    return response


class TestLedgerStoreClient(unittest.TestCase):
    def setUp(self):
        self.client = LedgerStoreClient("https://store.example.com/", "secret", table="csv_rows")

    def test_headers_and_url(self):
        self.assertEqual(self.client.table_url, "https://store.example.com/rest/v1/csv_rows")
        self.assertEqual(self.client.headers["apikey"], "secret")
        self.assertEqual(self.client.headers["Authorization"], "Bearer secret")

    @patch('ledger_store.requests.get')
    def test_fetch_page_paginates_by_offset(self, mock_get):
        mock_get.return_value = _response(payload=[{"id": 1}])

        rows = self.client.fetch_page("stripe-eur", 2, page_size=1000)

        self.assertEqual(rows, [{"id": 1}])
        params = mock_get.call_args.kwargs["params"]
        self.assertEqual(params["source"], "eq.stripe-eur")
        self.assertEqual(params["offset"], 2000)
        self.assertEqual(params["limit"], 1000)
        self.assertEqual(params["order"], "id")

    @patch('ledger_store.requests.get')
    def test_fetch_page_rejects_errors_and_bad_payloads(self, mock_get):
        mock_get.return_value = _response(status=500)
        with self.assertRaises(LedgerStoreError):
            self.client.fetch_page("stripe-eur", 0)

        mock_get.return_value = _response(payload={"message": "not a list"})
        with self.assertRaises(LedgerStoreError):
            self.client.fetch_page("stripe-eur", 0)

    @patch('ledger_store.requests.get')
    def test_get_metadata(self, mock_get):
        mock_get.return_value = _response(payload=[{"custom_data": {"customer_name": "Acme"}}])
        self.assertEqual(self.client.get_metadata("42"), {"customer_name": "Acme"})

        mock_get.return_value = _response(payload=[{"custom_data": None}])
        self.assertEqual(self.client.get_metadata("42"), {})

        mock_get.return_value = _response(payload=[])
        with self.assertRaises(LedgerStoreError):
            self.client.get_metadata("42")

    @patch('ledger_store.requests.patch')
    def test_update_metadata_sends_whole_metadata(self, mock_patch):
        mock_patch.return_value = _response(status=204)

        self.client.update_metadata("42", {"a": 1})

        kwargs = mock_patch.call_args.kwargs
        self.assertEqual(kwargs["params"], {"id": "eq.42"})
        self.assertEqual(kwargs["json"], {"custom_data": {"a": 1}})
        self.assertEqual(kwargs["headers"]["Prefer"], "return=minimal")

    @patch('ledger_store.requests.get')
    def test_ping_raises_on_http_error(self, mock_get):
        mock_get.return_value = _response(status=401)
        with self.assertRaises(LedgerStoreError):
            self.client.ping()


@patch('ledger_store.load_dotenv')
def test_client_from_env_requires_url_and_key(_load_dotenv, monkeypatch):
    monkeypatch.delenv("LEDGER_STORE_URL", raising=False)
    monkeypatch.setenv("LEDGER_STORE_KEY", "k")
    with pytest.raises(ConfigError, match="LEDGER_STORE_URL"):
        client_from_env({})

    monkeypatch.setenv("LEDGER_STORE_URL", "https://store.example.com")
    monkeypatch.setenv("LEDGER_STORE_TABLE", "other_rows")
    client = client_from_env({"table": "csv_rows", "timeout": 5})
    assert client.table == "other_rows"
    assert client.timeout == 5
