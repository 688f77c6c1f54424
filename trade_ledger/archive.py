"""
archive.py – CSV export of the trade ledger for audit
=====================================================

The Redis list stays authoritative; this only appends rows that are not
yet in `<history>/trades/trade_log.csv` (tracked by the highest `seq`
already on disk).
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

import pandas as pd

from shared.logging import get_logger
from shared.models import LedgerEntry

from .ledger import TradeLedger

log = get_logger("trade_ledger.archive")

COLUMNS = [
    "seq", "time", "timestamp", "symbol", "action",
    "quantity", "price", "resulting_cash", "resulting_quantity",
]


def ledger_frame(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    rows = []
    for e in entries:
        d = e.to_dict()
        dec = d.pop("decision")
        qty = dec.get("quantity", -dec.get("delta_quantity", 0.0))
        rows.append({**d, "action": dec["kind"], "quantity": qty, "price": dec.get("price")})
    return pd.DataFrame(rows, columns=COLUMNS)


def _archived_seq(csv_path: Path) -> int:
    if not csv_path.exists():
        return 0
    seqs = pd.read_csv(csv_path, usecols=["seq"])["seq"]
    return int(seqs.max()) if len(seqs) else 0


def archive_ledger(ledger: TradeLedger, history_dir: Path) -> int:
    """Append unarchived entries to trade_log.csv; returns rows written."""
    csv_path = Path(history_dir) / "trades" / "trade_log.csv"
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    done = _archived_seq(csv_path)
    fresh: List[LedgerEntry] = [e for e in ledger.entries() if e.seq > done]
    if not fresh:
        return 0
    ledger_frame(fresh).to_csv(csv_path, mode="a", index=False, header=not csv_path.exists())
    log.info("Archived %d ledger entr%s → %s", len(fresh), "y" if len(fresh) == 1 else "ies", csv_path)
    return len(fresh)
