from unittest.mock import MagicMock

import redis

from shared.constants import KEY_HEARTBEAT
from shared.redis_client import heartbeat, heartbeat_age, set_paused, trading_paused


def test_pause_flag_round_trip(rds):
    assert trading_paused(rds) is False
    set_paused(True, "test", rds)
    assert trading_paused(rds) is True
    set_paused(False, client=rds)
    assert trading_paused(rds) is False


def test_unreachable_redis_counts_as_paused():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    assert trading_paused(client) is True


def test_heartbeat(rds):
    assert heartbeat_age("scheduler", rds) is None
    heartbeat("scheduler", rds)
    assert rds.get(KEY_HEARTBEAT.format("scheduler")) is not None
    assert 0 <= heartbeat_age("scheduler", rds) < 5


def test_heartbeat_failure_is_logged_not_raised():
    client = MagicMock()
    client.set.side_effect = redis.ConnectionError("down")
    heartbeat("scheduler", client)
