"""
throttle.py – magnitude gate + dedup window + dispatch
======================================================

An event goes out iff it clears its magnitude gate (trades always do)
and its dedup key was not marked within the window.

Ordering
--------
default          send → mark   a crash between the two may repeat one alert
idempotent sink  claim → send  atomic SET NX; a crash may drop one alert

A send that fails on every channel is not marked, so the same condition
can alert again next tick. Trades are never rolled back because an alert
failed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List

from shared.cache import FreshnessCache
from shared.config import NotificationThresholds
from shared.errors import NotifierFailure, PersistenceFailure
from shared.logging import get_logger
from shared.models import NotificationEvent

from .events import KIND_HOLDING, KIND_PORTFOLIO, KIND_SENTIMENT, TRADE_KINDS
from .notifier import Notifier, payload_for

log = get_logger("notification_service")


@dataclass
class DispatchReport:
    sent: List[str] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


class NotificationThrottle:
    def __init__(
        self,
        cache: FreshnessCache,
        thresholds: NotificationThresholds,
        window: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.th = thresholds
        self.window = window
        self.clock = clock

    def passes_gate(self, event: NotificationEvent) -> bool:
        if event.kind in TRADE_KINDS:
            return True
        if event.kind == KIND_PORTFOLIO:
            return event.magnitude > self.th.portfolio_value_change_percent
        if event.kind == KIND_HOLDING:
            return event.magnitude > self.th.holding_value_change_percent
        if event.kind == KIND_SENTIMENT:
            return event.magnitude > self.th.sentiment_change
        log.warning("unknown notification kind %r – dropped", event.kind)
        return False

    def should_notify(self, event: NotificationEvent) -> bool:
        if not self.passes_gate(event):
            return False
        return not self.cache.seen_notification(event.dedup_key, self.window)

    def dispatch(
        self,
        events: Iterable[NotificationEvent],
        notifier: Notifier,
        deadline_at: float | None = None,
    ) -> DispatchReport:
        report = DispatchReport()
        handled: set[str] = set()
        for event in events:
            key = event.dedup_key
            if key in handled:
                report.suppressed.append(key)
                continue
            handled.add(key)

            if deadline_at is not None and self.clock() > deadline_at:
                report.failures.append(f"{key}: tick deadline passed before send")
                continue
            try:
                if not self.passes_gate(event):
                    continue
                if notifier.idempotent:
                    if not self.cache.claim_notification(key, self.window):
                        report.suppressed.append(key)
                        continue
                elif self.cache.seen_notification(key, self.window):
                    report.suppressed.append(key)
                    continue
            except PersistenceFailure as exc:
                log.error("dedup check failed, alert %s skipped – %s", key, exc)
                report.failures.append(f"{key}: {exc}")
                continue

            delivered = self._send(event, notifier, report)
            try:
                if delivered and not notifier.idempotent:
                    self.cache.mark_notification(key, self.window)
                elif not delivered and notifier.idempotent:
                    self.cache.forget_notification(key)
            except PersistenceFailure as exc:
                # at most this one alert may repeat (or be lost) next tick
                log.error("alert %s dedup mark not updated – %s", key, exc)
                report.failures.append(f"{key}: {exc}")
            if delivered:
                report.sent.append(key)
        return report

    def _send(self, event: NotificationEvent, notifier: Notifier, report: DispatchReport) -> bool:
        delivered = False
        for channel in notifier.channels:
            try:
                notifier.send(channel, payload_for(channel, event))
                delivered = True
            except NotifierFailure as exc:
                log.error("%s – %s", event.dedup_key, exc)
                report.failures.append(f"{event.dedup_key}: {exc}")
        return delivered
