from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List

import requests

from ledger_models import LedgerRecord
from ledger_store import LedgerStoreError


def paginate(store, source: str, page_size: int = 1000, max_pages: int = 60) -> List[LedgerRecord]:
    """Fetch every page of one source.

    Stops at the first empty page or after ``max_pages`` pages. A page that
    fails to load ends pagination for this source only; rows fetched so far
    are kept.
    """
    records: List[LedgerRecord] = []
    for page in range(max_pages):
        try:
            rows = store.fetch_page(source, page, page_size)
        except (requests.RequestException, LedgerStoreError) as e:
            print(f"  ⚠️ [{source}] page {page} failed, stopping pagination: {e}")
            break
        if not rows:
            break
        records.extend(LedgerRecord.from_row(dict(r, source=r.get("source") or source)) for r in rows)
    else:
        print(f"  ⚠️ [{source}] hit page ceiling ({max_pages}), remaining rows not loaded")
    return records


def load_sources(store, sources: Iterable[str], page_size: int = 1000, max_pages: int = 60,
                 max_workers: int = 4) -> Dict[str, List[LedgerRecord]]:
    """Load several independent sources concurrently."""
    unique = list(dict.fromkeys(sources))
    loaded: Dict[str, List[LedgerRecord]] = {}
    if not unique:
        return loaded
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(unique)))) as executor:
        futures = {executor.submit(paginate, store, s, page_size, max_pages): s for s in unique}
        for future in as_completed(futures):
            loaded[futures[future]] = future.result()
    return {s: loaded[s] for s in unique}
