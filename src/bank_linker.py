"""Bank statement inflows -> gateway payouts.

Every bank row walks a small state machine: an existing transaction-id chain
resolves it immediately; otherwise a recognized gateway family triggers a
day-window search over that gateway's transactions; untagged rows try to
pull a customer name out of the description. Tagged rows that still have no
account get the gateway's dominant account code.
"""

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from fallback import resolved_account
from invoice_index import InvoiceIndex
from ledger_models import LedgerRecord, RecordUpdate
from normalize import normalize_text, parse_date, significant_words, within_tolerance


class BankLinkState(Enum):
    UNMATCHED = "unmatched"
    ALREADY_CLASSIFIED = "already_classified"
    CHAIN_RESOLVED = "chain_resolved"
    SOURCE_MATCHED = "source_matched"
    DESC_MATCHED = "desc_matched"
    FALLBACK_ASSIGNED = "fallback_assigned"
    INTERNAL_TRANSFER = "internal_transfer"
    CATCH_ALL = "catch_all"
    TERMINAL_UNMATCHED = "terminal_unmatched"


TRANSFER_RE = re.compile(
    r"transferencia|traspaso|dotacion|intragrupo|intercompany|propia cuenta|cuenta propia|movimiento entre",
    re.IGNORECASE,
)
TRANSFER_PREFIX_RE = re.compile(
    r"^(transfer|transf|trans|abono|remesa|ach|wire|chips|inm|otras\s+entid|otras\s+e)\b[\s/:]*",
    re.IGNORECASE,
)
DIGIT_RUN_RE = re.compile(r"\d{2,}")

# Counterparty name carried by common bank transfer formats, tried in order
NAME_EXTRACTORS = (
    ("transf-prefix", re.compile(r"trans(?:f|\.?\s*inm)?/(.+)", re.IGNORECASE)),
    ("mxiso", re.compile(r"^mxiso\s+(.+)", re.IGNORECASE)),
    ("orig-co-name", re.compile(r"orig co name:\s*(.+?)(?:\s+orig id|\s+sec|\s*$)", re.IGNORECASE)),
    ("remesa", re.compile(r"\bremesa\s+(?:de\s+)?(.+)", re.IGNORECASE)),
    ("ach-wire", re.compile(r"\b(?:ach|wire|chips)\s+(?:credit|deposit|transfer)?\s*(?:from\s+)?(.+)", re.IGNORECASE)),
    ("abono", re.compile(r"\babono\s+(?:de\s+)?(.+)", re.IGNORECASE)),
)
GATEWAY_NAMES = ("paypal", "stripe", "gocardless", "braintree", "american express")

# (step, strategy) in order of decreasing evidence
DESCRIPTION_STEPS = (
    ("exact-name", "bank-desc-name"),
    ("substring-name", "bank-desc-substring"),
    ("fuzzy-name", "bank-desc-fuzzy"),
)
STEM_LENGTH = 4
MIN_STEM_WORD = 5

MAX_TX_IDS = 50
MAX_LOOKUP_IDS = 20

CONFIDENCE = {
    "bank-chain": 0.90,
    "window-sum": 0.80,
    "window-single": 0.75,
    "bank-desc-name": 0.60,
    "bank-desc-substring": 0.55,
    "bank-desc-fuzzy": 0.50,
    "gateway-dominant-fallback": 0.35,
    "catch-all": 0.20,
}


@dataclass(frozen=True)
class Tolerance:
    pct: float
    floor: float

    def accepts(self, expected: float, actual: float) -> bool:
        return within_tolerance(expected, actual, max(expected * self.pct, self.floor), inclusive=False)


@dataclass
class GatewayData:
    """Gateway record sets plus the lookups derived from this run's matches."""

    stripe: List[LedgerRecord] = field(default_factory=list)
    gocardless: List[LedgerRecord] = field(default_factory=list)
    braintree: List[LedgerRecord] = field(default_factory=list)
    amex: List[LedgerRecord] = field(default_factory=list)
    disbursements: List[LedgerRecord] = field(default_factory=list)
    tx_accounts: Mapping[str, str] = field(default_factory=dict)
    patched: Mapping[str, str] = field(default_factory=dict)
    dominant: Mapping[str, Optional[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class BankLink:
    record: LedgerRecord
    state: BankLinkState
    strategy: str = ""
    fields: Dict = field(default_factory=dict)

    @property
    def account_code(self) -> Optional[str]:
        return self.fields.get("pnl_account_code")


def detect_family(record: LedgerRecord) -> Optional[str]:
    ps = (record.meta.payment_source or "").lower()
    desc = record.description.lower()
    if "stripe" in ps or "stripe" in desc:
        return "stripe"
    if "gocardless" in ps or "gocardless" in desc or "go cardless" in desc:
        return "gocardless"
    if "paypal" in ps or ("paypal" in desc and "braintree" not in desc):
        return "paypal"
    if "amex" in ps or "amex" in desc or "american express" in desc:
        return "amex"
    if "braintree" in ps:
        return "braintree"
    return None


def day_offsets(window: int) -> List[int]:
    """0, -1, +1, -2, +2, ... so nearer days are always tried first."""
    offsets = [0]
    for d in range(1, window + 1):
        offsets.extend((-d, d))
    return offsets


def clean_description(description: str) -> str:
    s = TRANSFER_PREFIX_RE.sub("", (description or "").strip())
    s = DIGIT_RUN_RE.sub("", s)
    return normalize_text(s)


def extract_customer_name(description: str) -> Optional[Tuple[str, str]]:
    """(method, raw name) from the first transfer format that carries a counterparty.

    Names that are really a payment gateway are not customers and yield None.
    """
    for method, pattern in NAME_EXTRACTORS:
        m = pattern.search(description or "")
        if not m:
            continue
        name = m.group(1).strip(" /:-")
        if len(name) < 3:
            return None
        if any(g in name.lower() for g in GATEWAY_NAMES):
            return None
        return method, name
    return None


def _by_day(records: Iterable[LedgerRecord], key) -> Dict[date, List[LedgerRecord]]:
    out: Dict[date, List[LedgerRecord]] = defaultdict(list)
    for r in records:
        d = parse_date(key(r))
        if d:
            out[d].append(r)
    return out


class BankLinker:
    def __init__(self, index: InvoiceIndex, gateways: GatewayData,
                 mark_internal_transfers: bool = False, catch_all_account: Optional[str] = None):
        self.index = index
        self.gw = gateways
        self.mark_internal_transfers = mark_internal_transfers
        self.catch_all_account = catch_all_account

        self.stripe_by_day = _by_day(gateways.stripe, lambda r: r.meta.available_on or r.meta.created or r.date)
        self.gc_by_day = _by_day(gateways.gocardless, lambda r: r.date)
        self.disb_by_day = _by_day(gateways.disbursements, lambda r: r.date)
        self.bt_by_disb_day = _by_day(gateways.braintree, lambda r: r.meta.disbursement_date)
        self.amex_by_settlement = _by_day(gateways.amex,
                                          lambda r: r.meta.settlement_date or r.meta.disbursement_date)

        self._names = sorted(n for n in index.by_name if len(n) >= 4)
        self._by_stem: Dict[str, set] = defaultdict(set)
        for word, names in index.by_word.items():
            if len(word) >= MIN_STEM_WORD:
                self._by_stem[word[:STEM_LENGTH]].update(names)

        self._searches = {
            "stripe": (5, self._search_stripe),
            "gocardless": (5, self._search_gocardless),
            "paypal": (5, self._search_paypal),
            "amex": (7, self._search_amex),
            "braintree": (3, self._search_braintree),
        }

    # account resolution

    def _account_of(self, txs: Iterable[LedgerRecord]) -> Optional[str]:
        for t in txs:
            code = resolved_account(t, self.index, self.gw.patched, self.gw.tx_accounts)
            if code:
                return code
        return None

    def _account_of_ids(self, tx_ids: Iterable[str]) -> Optional[str]:
        for tx_id in list(tx_ids)[:MAX_LOOKUP_IDS]:
            if tx_id in self.gw.tx_accounts:
                return self.gw.tx_accounts[tx_id]
        return None

    def family_dominant(self, family: str) -> Optional[str]:
        key = "braintree" if family == "paypal" else family
        return self.gw.dominant.get(key)

    # window searches; each returns (kind, tx_ids, account) or None for one day

    @staticmethod
    def _ids(txs: Iterable[LedgerRecord]) -> List[str]:
        return [t.meta.transaction_id for t in txs if t.meta.transaction_id]

    def _sum_or_single(self, txs, amount, sum_tol: Tolerance, single_tol: Tolerance):
        total = sum(t.abs_amount for t in txs)
        if total > 0 and sum_tol.accepts(amount, total):
            return "window-sum", self._ids(txs), self._account_of(txs)
        for t in txs:
            if single_tol.accepts(amount, t.abs_amount):
                return "window-single", self._ids([t]), self._account_of([t])
        return None

    def _search_stripe(self, day: date, amount: float):
        return self._sum_or_single(self.stripe_by_day.get(day, ()), amount, Tolerance(0.03, 5), Tolerance(0.02, 2))

    def _search_gocardless(self, day: date, amount: float):
        return self._sum_or_single(self.gc_by_day.get(day, ()), amount, Tolerance(0.05, 10), Tolerance(0.02, 2))

    def _disbursement_match(self, day: date, amount: float, tol: Tolerance):
        for disb in self.disb_by_day.get(day, ()):
            if tol.accepts(amount, disb.abs_amount):
                tx_ids = list(disb.meta.transaction_ids)
                return "window-single", tx_ids, self._account_of_ids(tx_ids)
        return None

    def _search_paypal(self, day: date, amount: float):
        found = self._disbursement_match(day, amount, Tolerance(0.03, 5))
        if found:
            return found
        txs = self.bt_by_disb_day.get(day, ())
        if txs and Tolerance(0.05, 10).accepts(amount, sum(t.abs_amount for t in txs)):
            tx_ids = self._ids(txs)
            return "window-sum", tx_ids, self._account_of_ids(tx_ids)
        return None

    def _search_amex(self, day: date, amount: float):
        txs = self.amex_by_settlement.get(day, ())
        if txs and Tolerance(0.05, 10).accepts(amount, sum(t.abs_amount for t in txs)):
            tx_ids = self._ids(txs)
            return "window-sum", tx_ids, self._account_of_ids(tx_ids)
        return None

    def _search_braintree(self, day: date, amount: float):
        return self._disbursement_match(day, amount, Tolerance(0.02, 2))

    # states

    def _chain(self, record: LedgerRecord) -> Optional[BankLink]:
        for tx_id in record.meta.transaction_ids:
            code = self.gw.tx_accounts.get(tx_id)
            if code:
                fields = {
                    "pnl_account_code": code,
                    "pnl_source": "existing-chain",
                    "reconciliation_type": "bank-chain",
                    "reconciliation_confidence": CONFIDENCE["bank-chain"],
                }
                return BankLink(record, BankLinkState.CHAIN_RESOLVED, "bank-chain", fields)
        return None

    def _source(self, record: LedgerRecord, family: str) -> Optional[BankLink]:
        if record.date is None:
            return None
        window, search = self._searches[family]
        for offset in day_offsets(window):
            found = search(record.date + timedelta(days=offset), record.amount)
            if not found:
                continue
            kind, tx_ids, code = found
            strategy = f"bank-{family}"
            fields = {
                "payment_source": family,
                "reconciliation_type": strategy,
                "reconciliation_confidence": CONFIDENCE[kind],
                "pnl_source": "gateway-window",
            }
            if tx_ids:
                fields["transaction_ids"] = tx_ids[:MAX_TX_IDS]
            if not code:
                code = self.family_dominant(family)
                if code:
                    fields["pnl_source"] = "gateway-window+dominant"
            if code:
                fields["pnl_account_code"] = code
            return BankLink(record, BankLinkState.SOURCE_MATCHED, strategy, fields)
        return None

    def _with_account(self, rows: Iterable[LedgerRecord]) -> Optional[LedgerRecord]:
        return next((r for r in rows if self.index.account_for(r)), None)

    def _desc_link(self, record, match: LedgerRecord, strategy: str, pnl_source: str,
                   extracted: Optional[str] = None) -> BankLink:
        fields = {
            "pnl_account_code": self.index.account_for(match),
            "pnl_source": pnl_source,
            "matched_customer": match.meta.customer_name or "",
            "reconciliation_type": strategy,
            "reconciliation_confidence": CONFIDENCE[strategy],
        }
        if extracted:
            fields["extracted_customer"] = extracted
        return BankLink(record, BankLinkState.DESC_MATCHED, strategy, fields)

    # name lookups; each returns index names in the order they should be tried

    def _exact_names(self, name: str) -> List[str]:
        return [name] if name in self.index.by_name else []

    def _substring_names(self, name: str) -> List[str]:
        padded = f" {name} "
        return [n for n in self._names if n != name and (f" {n} " in padded or padded in f" {n} ")]

    def _fuzzy_names(self, name: str) -> List[str]:
        words = list(dict.fromkeys(significant_words(name)))
        shared: Counter = Counter()
        for w in words:
            hits = set(self.index.by_word.get(w, ()))
            if len(w) >= MIN_STEM_WORD:
                hits |= self._by_stem.get(w[:STEM_LENGTH], set())
            for candidate in hits:
                shared[candidate] += 1
        out = []
        for candidate, count in sorted(shared.items(), key=lambda kv: (-kv[1], kv[0])):
            if len(candidate) < 4:
                continue
            single_word_hit = (
                count == 1 and len(words) == 1 and len(significant_words(candidate)) == 1
                and len(words[0]) >= MIN_STEM_WORD
            )
            if count >= 2 or single_word_hit:
                out.append(candidate)
        return out

    def _description(self, record: LedgerRecord) -> Optional[BankLink]:
        # (normalized name, pnl_source prefix, raw extracted name)
        candidates: List[Tuple[str, str, Optional[str]]] = []
        cleaned = clean_description(record.description)
        if len(cleaned) >= 4:
            candidates.append((cleaned, "desc", None))
        extracted = extract_customer_name(record.description)
        if extracted:
            method, raw_name = extracted
            name = clean_description(raw_name)
            if len(name) >= 3 and name != cleaned:
                candidates.append((name, f"extract-{method}", raw_name))
        if not candidates:
            return None

        lookups = {
            "exact-name": self._exact_names,
            "substring-name": self._substring_names,
            "fuzzy-name": self._fuzzy_names,
        }
        for step, strategy in DESCRIPTION_STEPS:
            for name, prefix, raw_name in candidates:
                for candidate in lookups[step](name):
                    match = self._with_account(self.index.by_name.get(candidate, ()))
                    if match:
                        return self._desc_link(record, match, strategy, f"{prefix}-{step}", raw_name)
        return None

    def _fallback(self, record: LedgerRecord, family: str) -> Optional[BankLink]:
        code = self.family_dominant(family)
        if not code:
            return None
        fields = {
            "pnl_account_code": code,
            "pnl_source": "gateway-dominant-fac",
            "reconciliation_type": "bank-gateway-dominant",
            "reconciliation_confidence": CONFIDENCE["gateway-dominant-fallback"],
        }
        return BankLink(record, BankLinkState.FALLBACK_ASSIGNED, "gateway-dominant-fallback", fields)

    def link(self, record: LedgerRecord) -> BankLink:
        meta = record.meta
        if meta.pnl_line or meta.pnl_account_code:
            return BankLink(record, BankLinkState.ALREADY_CLASSIFIED)

        chained = self._chain(record)
        if chained:
            return chained

        family = detect_family(record)
        if family:
            return self._source(record, family) or self._fallback(record, family) or \
                BankLink(record, BankLinkState.TERMINAL_UNMATCHED)

        if TRANSFER_RE.search(record.description or ""):
            if self.mark_internal_transfers:
                fields = {"pnl_line": "internal", "is_internal_transfer": True, "pnl_source": "auto-internal"}
                return BankLink(record, BankLinkState.INTERNAL_TRANSFER, "internal-transfer", fields)
            return BankLink(record, BankLinkState.TERMINAL_UNMATCHED)

        described = self._description(record)
        if described:
            return described

        if self.catch_all_account:
            fields = {
                "pnl_account_code": self.catch_all_account,
                "pnl_source": "catch-all",
                "reconciliation_type": "bank-catch-all",
                "reconciliation_confidence": CONFIDENCE["catch-all"],
            }
            return BankLink(record, BankLinkState.CATCH_ALL, "catch-all", fields)
        return BankLink(record, BankLinkState.TERMINAL_UNMATCHED)


NEW_LINK_STATES = {
    BankLinkState.CHAIN_RESOLVED,
    BankLinkState.SOURCE_MATCHED,
    BankLinkState.DESC_MATCHED,
}
FALLBACK_STATES = {BankLinkState.FALLBACK_ASSIGNED, BankLinkState.CATCH_ALL}


def link_bank_rows(linker: BankLinker, records: Iterable[LedgerRecord]) -> Tuple[List[BankLink], List[RecordUpdate]]:
    """Link every inflow; returns all links and the updates to write."""
    links: List[BankLink] = []
    updates: List[RecordUpdate] = []
    for r in records:
        if r.amount <= 0:
            continue
        link = linker.link(r)
        links.append(link)
        if link.fields:
            updates.append(RecordUpdate(r.id, r.source, dict(link.fields)))
    return links, updates
