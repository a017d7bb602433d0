"""
Atomicity and failure behaviour of upserts.
"""

import fakeredis
import pytest

from redisboard import (
    DENSE,
    POSITIONAL,
    Leaderboard,
    LuaLeaderboard,
    StoreUnavailableError,
    TransactionConflictError,
)


class InterferingLeaderboard(Leaderboard):
    """Writes to the score index between the watched read and EXEC."""

    def _count_holders(self, pipeline, score):
        count = super()._count_holders(pipeline, score)
        self._redis.zadd(self._score_key, {"intruder": score})
        return count


def test_lost_watch_race_raises_conflict(redis_client):
    leaderboard = InterferingLeaderboard("test", redis_client=redis_client, mode=DENSE)
    leaderboard.upsert("a", 1)

    with pytest.raises(TransactionConflictError) as excinfo:
        leaderboard.upsert("a", 2)

    assert excinfo.value.member == "a"


def test_lost_watch_race_writes_nothing(redis_client):
    leaderboard = InterferingLeaderboard("test", redis_client=redis_client, mode=DENSE)
    leaderboard.upsert("a", 1)

    with pytest.raises(TransactionConflictError):
        leaderboard.upsert("a", 2)

    assert leaderboard.get_score("a") == 1
    assert redis_client.zrange(leaderboard.rank_key, 0, -1) == [b"1"]


def test_retry_after_conflict_succeeds(redis_client):
    racing = InterferingLeaderboard("test", redis_client=redis_client, mode=DENSE)
    racing.upsert("a", 1)
    with pytest.raises(TransactionConflictError):
        racing.upsert("a", 2)

    Leaderboard("test", redis_client=redis_client, mode=DENSE).upsert("a", 2)

    # The intruder still holds 1, so the old score stays ranked.
    assert racing.get_score("a") == 2
    assert racing.rank("a") == 1
    assert racing.rank("intruder") == 2


def test_new_member_skips_the_watched_count(redis_client):
    leaderboard = InterferingLeaderboard("test", redis_client=redis_client, mode=DENSE)

    leaderboard.upsert("a", 1)
    leaderboard.upsert("a", 1)

    assert leaderboard.get_score("a") == 1
    assert leaderboard.total() == 1


@pytest.fixture
def disconnected_client():
    server = fakeredis.FakeServer()
    server.connected = False
    return fakeredis.FakeRedis(server=server)


@pytest.mark.parametrize("leaderboard_class", [Leaderboard, LuaLeaderboard])
@pytest.mark.parametrize("mode", [POSITIONAL, DENSE])
def test_store_failures_propagate(disconnected_client, leaderboard_class, mode):
    leaderboard = leaderboard_class("test", redis_client=disconnected_client, mode=mode)

    with pytest.raises(StoreUnavailableError):
        leaderboard.upsert("a", 1)
    with pytest.raises(StoreUnavailableError):
        leaderboard.rank("a")
    with pytest.raises(StoreUnavailableError):
        leaderboard.list(0, 10)
    with pytest.raises(StoreUnavailableError):
        leaderboard.clear()
