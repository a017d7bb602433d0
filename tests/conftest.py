import fakeredis
import pytest

from redisboard import Leaderboard, LuaLeaderboard


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture(params=[Leaderboard, LuaLeaderboard], ids=["transaction", "lua"])
def leaderboard_class(request):
    return request.param


@pytest.fixture
def make_leaderboard(leaderboard_class, redis_client):
    def make(name="test", **options):
        return leaderboard_class(name, redis_client=redis_client, **options)
    return make
