#!/usr/bin/env python3
"""
scheduler.py – one tick per interval: aggregate → decide → persist → notify
===========================================================================

Phases
------
Idle → Aggregating → Deciding → Persisting → Notifying → Idle

• All quotes are resolved before any decision, all decisions before any
  notification.
• A decision changes the in-memory portfolio only after its ledger entry
  is durable; a failed append leaves that holding untouched and the next
  tick decides it again from scratch.
• A tick still running when the next is due makes that slot be skipped,
  never queued.
• The global pause flag (operator API) skips ticks entirely.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import redis

from decision_service import engine as E
from decision_service.rules import recommend
from notification_service import events as N
from notification_service.notifier import Notifier
from notification_service.throttle import NotificationThrottle
from quote_loader.aggregator import QuoteAggregator
from quote_loader.feeds import ExternalFeed
from shared.cache import FreshnessCache
from shared.config import Settings
from shared.constants import KEY_TICK_REPORT, PRICE, SENTIMENT, SERVICE_NAME
from shared.errors import InvariantViolation, PersistenceFailure
from shared.logging import AuditLog, get_logger
from shared.models import Hold, LedgerEntry, NotificationEvent, PortfolioState
from shared.redis_client import heartbeat, trading_paused
from trade_ledger.ledger import TradeLedger

log = get_logger("scheduler")

MAX_PENDING_TRADE_ALERTS = 100


class Phase(str, Enum):
    IDLE = "idle"
    AGGREGATING = "aggregating"
    DECIDING = "deciding"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


@dataclass
class TickReport:
    started_at: float
    finished_at: float = 0.0
    phase_secs: Dict[str, float] = field(default_factory=dict)
    total_value: float = 0.0
    unavailable: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    decisions: Dict[str, str] = field(default_factory=dict)
    advice: Dict[str, Optional[str]] = field(default_factory=dict)
    ledger_seqs: List[int] = field(default_factory=list)
    feed_failures: List[str] = field(default_factory=list)
    persistence_failures: List[str] = field(default_factory=list)
    invariant_violations: List[str] = field(default_factory=list)
    notifications_sent: List[str] = field(default_factory=list)
    notifier_failures: List[str] = field(default_factory=list)
    valuation_complete: bool = True
    alerts_carried: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class Scheduler:
    def __init__(
        self,
        settings: Settings,
        feed: ExternalFeed,
        notifier: Notifier,
        client: redis.Redis,
        clock: Callable[[], float] = time.time,
        audit: AuditLog | None = None,
    ) -> None:
        th = settings.thresholds
        self.settings = settings
        self.th = th
        self.client = client
        self.notifier = notifier
        self.clock = clock
        self.audit = audit or AuditLog(
            Path(settings.history_dir) / "portfolio_log.txt",
            settings.audit_secret,
            enabled=settings.environment == "prod",
        )

        self.cache = FreshnessCache(
            client,
            ttls={PRICE: th.price_ttl, SENTIMENT: th.sentiment_ttl},
            retention=th.stale_retention,
            notify_window=th.notify_window,
            clock=clock,
        )
        self.aggregator = QuoteAggregator(feed, self.cache, clock)
        self.ledger = TradeLedger(client, clock)
        self.throttle = NotificationThrottle(self.cache, th.notification, th.notify_window, clock)

        self.genesis = E.genesis_state(settings.holdings, settings.initial_cash)
        self.state = self.restore()
        self.phase = Phase.IDLE
        self.skipped = 0
        self.last_report: TickReport | None = None

        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._prev_prices: Dict[str, float] = {}
        self._pending_trades: List[NotificationEvent] = []
        self._prev_sentiment: Dict[str, float] = {}

    # ───── restart recovery ────────────────────────────────────────────
    def restore(self) -> PortfolioState:
        """Fold the ledger over genesis; reuse snapshot valuation if in step."""
        state = E.replay(self.genesis, self.ledger.entries())
        try:
            snap = self.ledger.load_snapshot()
        except PersistenceFailure as exc:
            log.warning("snapshot unreadable – %s", exc)
            snap = None
        if snap is not None:
            if snap.last_seq == state.last_seq:
                state.last_prices = {s: p for s, p in snap.last_prices.items() if state.holding(s)}
                state.last_total_value = snap.last_total_value
                state.last_updated = snap.last_updated
            else:
                log.warning("snapshot at seq %d, ledger at seq %d – using ledger",
                            snap.last_seq, state.last_seq)
        log.info("portfolio restored: %d holdings, cash=%.2f, seq=%d",
                 len(state.holdings), state.cash, state.last_seq)
        return state

    # ───── one tick ────────────────────────────────────────────────────
    def run_tick(self) -> TickReport | None:
        """Run one full tick; returns None if another tick is in flight."""
        if not self._tick_lock.acquire(blocking=False):
            self.skipped += 1
            log.warning("tick still running – slot skipped (%d so far)", self.skipped)
            return None
        try:
            return self._tick()
        finally:
            self.phase = Phase.IDLE
            self._tick_lock.release()

    def _enter(self, phase: Phase, report: TickReport, t0: float) -> float:
        now = self.clock()
        if self.phase is not Phase.IDLE:
            report.phase_secs[self.phase.value] = round(now - t0, 4)
        self.phase = phase
        return now

    def _tick(self) -> TickReport:
        th = self.th
        started = self.clock()
        deadline_at = started + th.tick_deadline
        report = TickReport(started_at=started)
        prev_total = self.state.last_total_value

        # 1️⃣ aggregate
        t = self._enter(Phase.AGGREGATING, report, started)
        symbols = [h.symbol for h in self.state.holdings]
        feed_budget = min(th.feed_deadline, max(0.0, deadline_at - self.clock()))
        agg = self.aggregator.aggregate(symbols, feed_budget)
        quotes = agg.quotes
        report.unavailable, report.stale = agg.unavailable, agg.stale
        report.feed_failures = [str(f) for f in agg.failures]

        # 2️⃣ decide
        t = self._enter(Phase.DECIDING, report, t)
        _, decisions = E.evaluate(self.state, quotes, th)
        prices = E.valuation_prices(self.state, quotes)
        report.valuation_complete = E.valuation_complete(self.state, prices)
        for sym, dec in decisions:
            report.decisions[sym] = dec.kind
        for sym, q in quotes.items():
            report.advice[sym] = recommend(q.sentiment_score, th.positive_threshold, th.negative_threshold)

        # 3️⃣ persist
        t = self._enter(Phase.PERSISTING, report, t)
        state = self.state
        entries: List[LedgerEntry] = []
        for sym, dec in decisions:
            if isinstance(dec, Hold):
                continue
            try:
                candidate = E.apply_decision(state, sym, dec)
            except InvariantViolation as exc:
                log.error("INVARIANT VIOLATION – %s skipped this tick: %s", sym, exc, exc_info=True)
                report.invariant_violations.append(str(exc))
                continue
            try:
                entry = self.ledger.append(sym, dec, candidate.cash,
                                           E.resulting_quantity(candidate, sym), self.clock())
            except PersistenceFailure as exc:
                log.error("%s %s not persisted – retry next tick: %s", sym, dec.kind, exc)
                report.persistence_failures.append(str(exc))
                continue
            candidate.last_seq = entry.seq
            state = candidate
            entries.append(entry)
            report.ledger_seqs.append(entry.seq)
            self.audit.record(
                f"{dec.kind.upper()} {sym} at ${dec.price:.4f} → cash ${entry.resulting_cash:.2f}, "
                f"remaining {entry.resulting_quantity:g} (seq {entry.seq})"
            )

        try:
            state = E.settle(state, prices, self.clock())
        except InvariantViolation as exc:
            log.error("INVARIANT VIOLATION at settle – %s", exc, exc_info=True)
            report.invariant_violations.append(str(exc))
        self.state = state
        try:
            self.ledger.save_snapshot(state)
        except PersistenceFailure as exc:
            log.error("%s", exc)
            report.persistence_failures.append(str(exc))

        # 4️⃣ notify
        t = self._enter(Phase.NOTIFYING, report, t)
        now = self.clock()
        events = self._pending_trades + self._events(entries, prev_total, quotes, now)
        dispatch = self.throttle.dispatch(events, self.notifier, deadline_at)
        report.notifications_sent = dispatch.sent
        report.notifier_failures = dispatch.failures
        self._pending_trades = self._undelivered_trades(events, dispatch, now)
        report.alerts_carried = [e.dedup_key for e in self._pending_trades]

        self._enter(Phase.IDLE, report, t)
        report.total_value = state.last_total_value
        report.finished_at = self.clock()
        self.last_report = report
        self._publish(report)
        log.info("tick done – value=$%.2f trades=%d alerts=%d unavailable=%s",
                 report.total_value, len(entries), len(dispatch.sent), report.unavailable or "-")
        return report

    def _events(self, entries: List[LedgerEntry], prev_total: float,
                quotes: dict, now: float) -> List[NotificationEvent]:
        nth = self.th.notification
        state = self.state
        # holding moves are priced at today's quantity so a trade is not a "value change"
        values, previous = {}, {}
        for h in state.holdings:
            price = state.last_prices.get(h.symbol)
            if price is None:
                continue
            values[h.symbol] = h.value(price)
            if h.symbol in self._prev_prices:
                previous[h.symbol] = h.value(self._prev_prices[h.symbol])
        sentiment = {s: q.sentiment_score for s, q in quotes.items() if q.sentiment_score is not None}

        events: List[NotificationEvent] = [N.trade_event(e, now) for e in entries]
        if E.valuation_complete(state, state.last_prices):
            pev = N.portfolio_event(prev_total, state.last_total_value, now, nth)
            if pev is not None:
                events.append(pev)
        events += N.holding_events(previous, values, now, nth)
        events += N.sentiment_events(self._prev_sentiment, sentiment, now, nth)

        self._prev_prices = {**self._prev_prices, **state.last_prices}
        self._prev_sentiment = {**self._prev_sentiment, **sentiment}
        return events

    def _undelivered_trades(self, events: List[NotificationEvent], dispatch,
                            now: float) -> List[NotificationEvent]:
        """Trade alerts neither sent nor deduplicated; retried next tick until the window ends."""
        done = set(dispatch.sent) | set(dispatch.suppressed)
        pending, seen = [], set()
        for ev in events:
            if ev.kind not in N.TRADE_KINDS or ev.dedup_key in done or ev.dedup_key in seen:
                continue
            seen.add(ev.dedup_key)
            if now - ev.created_at > self.th.notify_window:
                log.error("trade alert %s undelivered for %.0f s – dropped", ev.dedup_key, now - ev.created_at)
                continue
            pending.append(ev)
        if len(pending) > MAX_PENDING_TRADE_ALERTS:
            log.error("%d trade alerts pending – oldest %d dropped", len(pending),
                      len(pending) - MAX_PENDING_TRADE_ALERTS)
            pending = pending[-MAX_PENDING_TRADE_ALERTS:]
        if pending:
            log.warning("%d trade alert(s) carried to next tick", len(pending))
        return pending

    def _publish(self, report: TickReport) -> None:
        try:
            self.client.set(KEY_TICK_REPORT, json.dumps(report.to_dict()))
        except redis.RedisError as exc:
            log.warning("tick report not published – %s", exc)

    # ───── main loop ───────────────────────────────────────────────────
    def run_forever(self) -> None:
        interval = self.th.tick_interval
        log.info("scheduler up – %d symbols, every %.0f s", len(self.state.holdings), interval)
        try:
            self.cache.sweep()
        except redis.RedisError as exc:
            log.warning("cache sweep skipped – %s", exc)
        next_due = self.clock()
        while not self._stop.is_set():
            now = self.clock()
            if now < next_due:
                self._stop.wait(next_due - now)
                continue

            if trading_paused(self.client):
                log.info("trading paused – tick skipped")
            else:
                try:
                    self.run_tick()
                except Exception:  # noqa: BLE001
                    log.exception("tick aborted – retry next interval")
            heartbeat(SERVICE_NAME, self.client)

            next_due += interval
            now = self.clock()
            if now >= next_due:
                missed = int((now - next_due) // interval) + 1
                self.skipped += missed
                log.warning("tick overran – skipping %d slot(s)", missed)
                next_due += missed * interval

    def stop(self) -> None:
        self._stop.set()
