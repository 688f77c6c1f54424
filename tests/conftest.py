import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import fakeredis
import pytest

# make the top-level packages importable without an install
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from notification_service.notifier import Channel, Notifier, Transport  # noqa: E402
from quote_loader.feeds import ExternalFeed  # noqa: E402
from shared.cache import FreshnessCache  # noqa: E402
from shared.config import HoldingSpec, Settings, Thresholds  # noqa: E402
from shared.constants import PRICE, SENTIMENT  # noqa: E402
from shared.errors import FeedError, NetworkError, NotifierFailure  # noqa: E402
from shared.models import PriceQuote, SentimentScore  # noqa: E402

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedFeed(ExternalFeed):
    """
    Feed whose answers are set per symbol. A missing symbol answers with
    NetworkError; a FeedError value is returned as-is; an Exception value
    is raised (adapter bug); `block` holds a call until released.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.prices: Dict[str, Any] = {}
        self.sentiment: Dict[str, Any] = {}
        self.calls: List[tuple] = []
        self.block: Dict[str, threading.Event] = {}

    def _answer(self, category: str, symbol: str, table: Dict[str, Any]) -> Any:
        self.calls.append((category, symbol))
        gate = self.block.get(symbol)
        if gate is not None:
            gate.wait(5)
        val = table.get(symbol)
        if val is None:
            return NetworkError(symbol, "feed down")
        if isinstance(val, FeedError):
            return val
        if isinstance(val, Exception):
            raise val
        return val

    def fetch_price(self, symbol):
        val = self._answer(PRICE, symbol, self.prices)
        if isinstance(val, FeedError):
            return val
        return PriceQuote(symbol, float(val), "scripted", self.clock())

    def fetch_sentiment(self, symbol):
        val = self._answer(SENTIMENT, symbol, self.sentiment)
        if isinstance(val, FeedError):
            return val
        return SentimentScore(symbol, float(val), "scripted", self.clock())


class RecordingTransport(Transport):
    def __init__(self, channel: Channel = Channel.EMAIL, idempotent: bool = False) -> None:
        self.channel = channel
        self.idempotent = idempotent
        self.sent: List[Any] = []
        self.fail: Optional[str] = None

    def send(self, payload):
        if self.fail:
            raise NotifierFailure(self.channel.value, self.fail)
        self.sent.append(payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rds():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache(rds, clock):
    return FreshnessCache(rds, clock=clock)


@pytest.fixture
def feed(clock):
    return ScriptedFeed(clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier(transport):
    return Notifier({transport.channel: transport})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        holdings=(
            HoldingSpec("PHA", 250.0, 0.20, 0.20),
            HoldingSpec("SUI", 10.0, 3.00, 0.20),
            HoldingSpec("DUSK", 80.0, 0.25, 0.20),
        ),
        initial_cash=0.0,
        thresholds=Thresholds(),
        history_dir=tmp_path,
    )
