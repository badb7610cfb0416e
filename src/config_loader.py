import os
import yaml


DEFAULTS = {
    "store": {"table": "csv_rows", "page_size": 1000, "max_pages": 60, "timeout": 30},
    "write": {"batch_size": 50},
    "sources": {
        "invoices": "invoice-orders",
        "stripe": ["stripe-eur", "stripe-usd"],
        "gocardless": ["gocardless"],
        "braintree": ["braintree-api-revenue"],
        "amex": ["braintree-amex"],
        "disbursements": ["braintree-api-disbursement"],
        "banks": ["bankinter-eur", "chase-usd"],
    },
    "matching": {"max_days": 365, "amount_tolerance": 0.05, "min_amount_tolerance": 2},
    "bank": {"mark_internal_transfers": False, "catch_all_account": None},
}


def _config_path() -> str:
    default = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "reconciliation.yml")
    return os.getenv("RECON_CONFIG", default)


def load_recon_config(path: str = None) -> dict:
    path = path or _config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return DEFAULTS

    # shallow merge defaults
    merged = dict(DEFAULTS)
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged
