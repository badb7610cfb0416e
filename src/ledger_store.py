import os
from typing import Dict, List

import requests
from dotenv import load_dotenv

SELECT_COLUMNS = "id,amount,date,description,reconciled,custom_data,source"


class LedgerStoreError(RuntimeError):
    """The store answered, but not with something we can use."""


class ConfigError(RuntimeError):
    pass


class LedgerStoreClient:
    """Client for the shared ledger table (PostgREST-style REST API)"""

    def __init__(self, base_url: str, api_key: str, table: str = "csv_rows", timeout: int = 30):
        self.base_url = f"{base_url.rstrip('/')}/rest/v1"
        self.table = table
        self.timeout = timeout
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def table_url(self) -> str:
        return f"{self.base_url}/{self.table}"

    def _check(self, response: requests.Response, what: str):
        if response.status_code >= 400:
            raise LedgerStoreError(f"{what} failed: HTTP {response.status_code} {response.text[:200]}")

    def ping(self) -> None:
        """Fail fast when the store cannot be reached at all."""
        response = requests.get(
            self.table_url,
            headers=self.headers,
            params={"select": "id", "limit": 1},
            timeout=self.timeout,
        )
        self._check(response, "ping")

    def fetch_page(self, source: str, page: int, page_size: int = 1000) -> List[Dict]:
        params = {
            "select": SELECT_COLUMNS,
            "source": f"eq.{source}",
            "order": "id",
            "offset": page * page_size,
            "limit": page_size,
        }
        response = requests.get(self.table_url, headers=self.headers, params=params, timeout=self.timeout)
        self._check(response, f"fetch {source} page {page}")
        rows = response.json()
        if not isinstance(rows, list):
            raise LedgerStoreError(f"fetch {source} page {page}: expected a list, got {type(rows).__name__}")
        return rows

    def get_metadata(self, record_id: str) -> Dict:
        params = {"select": "custom_data", "id": f"eq.{record_id}"}
        response = requests.get(self.table_url, headers=self.headers, params=params, timeout=self.timeout)
        self._check(response, f"read {record_id}")
        rows = response.json()
        if not rows:
            raise LedgerStoreError(f"read {record_id}: record not found")
        return rows[0].get("custom_data") or {}

    def update_metadata(self, record_id: str, metadata: Dict) -> None:
        headers = dict(self.headers, Prefer="return=minimal")
        response = requests.patch(
            self.table_url,
            headers=headers,
            params={"id": f"eq.{record_id}"},
            json={"custom_data": metadata},
            timeout=self.timeout,
        )
        self._check(response, f"write {record_id}")


def client_from_env(store_cfg: Dict = None) -> LedgerStoreClient:
    load_dotenv()
    store_cfg = store_cfg or {}
    url = os.getenv("LEDGER_STORE_URL")
    key = os.getenv("LEDGER_STORE_KEY")
    missing = [name for name, value in (("LEDGER_STORE_URL", url), ("LEDGER_STORE_KEY", key)) if not value]
    if missing:
        raise ConfigError(f"missing environment variables: {', '.join(missing)}")
    return LedgerStoreClient(
        url,
        key,
        table=os.getenv("LEDGER_STORE_TABLE", store_cfg.get("table", "csv_rows")),
        timeout=int(store_cfg.get("timeout", 30)),
    )
