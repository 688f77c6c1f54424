"""
ledger.py – append-only trade ledger + portfolio snapshot in Redis
==================================================================

Redis schema
------------
ledger:entries       LIST    JSON LedgerEntry, oldest → newest
ledger:seq           INT     sequence id of the newest entry
portfolio:snapshot   STRING  JSON PortfolioState (display readers)

An append bumps the sequence and pushes the entry in one MULTI block
under WATCH, so ids are gap-free and an entry is never visible without
its id. Entries are never rewritten.
"""

from __future__ import annotations

import json
import time
from typing import Callable, List, Optional

import redis

from shared.constants import KEY_LEDGER, KEY_LEDGER_SEQ, KEY_SNAPSHOT
from shared.errors import PersistenceFailure
from shared.logging import get_logger
from shared.models import Decision, LedgerEntry, PortfolioState

log = get_logger("trade_ledger")

MAX_APPEND_RETRIES = 5


class TradeLedger:
    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time) -> None:
        self.client = client
        self.clock = clock

    def append(
        self,
        symbol: str,
        decision: Decision,
        resulting_cash: float,
        resulting_quantity: float,
        timestamp: float | None = None,
    ) -> LedgerEntry:
        ts = timestamp if timestamp is not None else self.clock()
        try:
            for _ in range(MAX_APPEND_RETRIES):
                with self.client.pipeline() as pipe:
                    try:
                        pipe.watch(KEY_LEDGER_SEQ)
                        seq = int(pipe.get(KEY_LEDGER_SEQ) or 0) + 1
                        entry = LedgerEntry(seq, ts, symbol, decision, resulting_cash, resulting_quantity)
                        pipe.multi()
                        pipe.set(KEY_LEDGER_SEQ, seq)
                        pipe.rpush(KEY_LEDGER, json.dumps(entry.to_dict()))
                        pipe.execute()
                    except redis.WatchError:
                        continue
                log.info("ledger #%d %s %s → cash=%.2f qty=%.6f",
                         seq, symbol, decision.kind, resulting_cash, resulting_quantity)
                return entry
        except redis.RedisError as exc:
            raise PersistenceFailure(f"ledger append {symbol} – {exc}") from exc
        raise PersistenceFailure(f"ledger append {symbol} – sequence contention")

    def entries(self, start: int = 0, end: int = -1) -> List[LedgerEntry]:
        try:
            rows = self.client.lrange(KEY_LEDGER, start, end)
        except redis.RedisError as exc:
            raise PersistenceFailure(f"ledger read – {exc}") from exc
        return [LedgerEntry.from_dict(json.loads(r)) for r in rows]

    def tail(self, n: int) -> List[LedgerEntry]:
        return self.entries(-n, -1) if n > 0 else []

    def last_seq(self) -> int:
        try:
            return int(self.client.get(KEY_LEDGER_SEQ) or 0)
        except redis.RedisError as exc:
            raise PersistenceFailure(f"ledger seq read – {exc}") from exc

    def __len__(self) -> int:
        return int(self.client.llen(KEY_LEDGER))

    # ───── snapshot ────────────────────────────────────────────────────
    def save_snapshot(self, state: PortfolioState) -> None:
        try:
            self.client.set(KEY_SNAPSHOT, json.dumps(state.to_dict()))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"snapshot write – {exc}") from exc

    def load_snapshot(self) -> Optional[PortfolioState]:
        try:
            raw = self.client.get(KEY_SNAPSHOT)
        except redis.RedisError as exc:
            raise PersistenceFailure(f"snapshot read – {exc}") from exc
        return None if raw is None else PortfolioState.from_dict(json.loads(raw))
