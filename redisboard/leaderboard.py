import logging
from collections import namedtuple
from datetime import timedelta

import redis

from .errors import MemberNotFoundError, TransactionConflictError

logger = logging.getLogger(__name__)

POSITIONAL = "positional"
DENSE = "dense"

ASC = "asc"
DESC = "desc"

DEFAULT_NAMESPACE = "redisboard"

Member = namedtuple("Member", ["id", "score", "rank"])
Cursor = namedtuple("Cursor", ["begin", "end"])

def window_start(position, limit, total):
    """First position of a window of ``limit`` members centred on ``position``.

    Near the end of the population the window slides back instead of
    coming up short.
    """
    start = max(position - limit // 2, 0)
    remainder = start + limit - total
    if remainder > 0:
        start = max(0, start - remainder)
    return start

def _check_order(order):
    if order not in (ASC, DESC):
        raise ValueError(
            "{} is not one of [{}]".format(order, ",".join([ASC, DESC])))

class _BaseLeaderboard:
    def __init__(self, name, *, redis_client, mode=POSITIONAL, rank_order=DESC,
            lifetime=None, namespace=None):
        if mode not in (POSITIONAL, DENSE):
            raise ValueError(
                "{} is not one of [{}]".format(mode, ",".join([POSITIONAL, DENSE])))
        _check_order(rank_order)

        if isinstance(lifetime, timedelta):
            lifetime = int(lifetime.total_seconds())
        if lifetime is not None and lifetime <= 0:
            raise ValueError("lifetime must be positive: {}".format(lifetime))

        if namespace is None:
            namespace = DEFAULT_NAMESPACE

        self._name = name
        self._mode = mode
        self._rank_order = rank_order
        self._lifetime = lifetime

        self._score_key = namespace + ":" + name + ":member_score_set"
        self._rank_key = namespace + ":" + name + ":rank_set"

        self._redis = redis_client

    @property
    def name(self):
        return self._name

    @property
    def mode(self):
        return self._mode

    @property
    def rank_order(self):
        return self._rank_order

    @property
    def score_key(self):
        return self._score_key

    @property
    def rank_key(self):
        return self._rank_key

    def upsert(self, member, score):
        score = int(score)
        if self._mode == DENSE:
            self._upsert_dense(member, score)
        else:
            self._upsert_positional(member, score)
        logger.debug("Set score of %r to %d in %s", member, score, self._score_key)

    def rank(self, member):
        if self._mode == DENSE:
            rank = self._dense_rank(member)
        else:
            rank = self._positional_rank(member)

        if rank is None:
            raise MemberNotFoundError(self, self._name, member)
        return rank

    def list(self, offset, limit, order=DESC):
        _check_order(order)
        if offset < 0:
            raise ValueError("offset must not be negative: {}".format(offset))

        if limit <= 0:
            return [], Cursor(offset, offset)

        members = self._list(offset, limit, order)
        return members, Cursor(offset, offset + len(members))

    def around(self, member, limit, order=DESC):
        _check_order(order)
        start, members = self._around(member, limit, order)
        return members, Cursor(start, start + len(members))

    def clear(self):
        self._redis.delete(self._score_key, self._rank_key)
        logger.debug("Cleared leaderboard %s", self._name)

    def get_score(self, member):
        score = self._redis.zscore(self._score_key, member)
        return None if score is None else int(score)

    def total(self):
        return self._redis.zcard(self._score_key)

    def _upsert_positional(self, member, score):
        pipeline = self._redis.pipeline(transaction=True)
        pipeline.zadd(self._score_key, {member: score})
        self._expire(pipeline, self._score_key)
        pipeline.execute()

    def _positional_rank(self, member):
        position = self._position(self._redis, member, self._rank_order)
        return None if position is None else position + 1

    def _position(self, client, member, order):
        if order == ASC:
            return client.zrank(self._score_key, member)
        return client.zrevrank(self._score_key, member)

    def _expire(self, pipeline, *keys):
        if self._lifetime:
            for key in keys:
                pipeline.expire(key, self._lifetime)

    def _score(self, value):
        return int(float(self._decode(value)))

    def _decode(self, value):
        if isinstance(value, bytes):
            value = self._redis.get_encoder().decode(value, force=True)
        return value

class Leaderboard(_BaseLeaderboard):
    """Leaderboard kept consistent with WATCH/MULTI transactions.

    A dense upsert that races another write to the same leaderboard is
    aborted and reported with TransactionConflictError; nothing is retried.
    """

    def _upsert_dense(self, member, score):
        pipeline = self._redis.pipeline(transaction=False)

        try:
            pipeline.watch(self._score_key, self._rank_key)
            old_score = pipeline.zscore(self._score_key, member)

            # The member still holds old_score until EXEC, so a count of
            # one means nobody else does.
            stale = (old_score is not None and old_score != score
                    and self._count_holders(pipeline, old_score) == 1)

            pipeline.multi()
            pipeline.zadd(self._score_key, {member: score})
            pipeline.zadd(self._rank_key, {str(score): score})
            if stale:
                pipeline.zremrangebyscore(self._rank_key, old_score, old_score)
            self._expire(pipeline, self._score_key, self._rank_key)

            pipeline.execute()
        except redis.exceptions.WatchError:
            logger.warning("Concurrent write to %s while setting score of %r",
                    self._name, member)
            raise TransactionConflictError(self, self._name, member)
        finally:
            pipeline.reset()

    def _count_holders(self, pipeline, score):
        return pipeline.zcount(self._score_key, score, score)

    def _dense_rank(self, member):
        score = self._redis.zscore(self._score_key, member)
        if score is None:
            return None
        return self._redis.zcount(self._rank_key, *self._better_than(score)) + 1

    def _list(self, offset, limit, order):
        pipeline = self._redis.pipeline(transaction=True)
        end = offset + limit - 1
        if order == ASC:
            pipeline.zrange(self._score_key, offset, end, withscores=True)
        else:
            pipeline.zrevrange(self._score_key, offset, end, withscores=True)
        pipeline.zcard(self._score_key)
        rows, total = pipeline.execute()

        if self._mode == DENSE:
            ranks = self._dense_ranks(set(score for _, score in rows))
            return [Member(self._decode(member), int(score), ranks[score])
                    for member, score in rows]

        members = []
        for position, (member, score) in enumerate(rows, start=offset):
            if order == self._rank_order:
                rank = position + 1
            else:
                rank = total - position
            members.append(Member(self._decode(member), int(score), rank))
        return members

    def _dense_ranks(self, scores):
        scores = sorted(scores)
        pipeline = self._redis.pipeline(transaction=False)
        for score in scores:
            pipeline.zcount(self._rank_key, *self._better_than(score))

        return {score: count + 1
                for score, count in zip(scores, pipeline.execute())}

    def _around(self, member, limit, order):
        pipeline = self._redis.pipeline(transaction=True)
        self._position(pipeline, member, order)
        pipeline.zcard(self._score_key)
        position, total = pipeline.execute()

        if position is None:
            raise MemberNotFoundError(self, self._name, member)

        start = window_start(position, limit, total)
        if limit <= 0:
            return start, []
        return start, self._list(start, limit, order)

    def _better_than(self, score):
        bound = "({}".format(int(score))
        if self._rank_order == ASC:
            return "-inf", bound
        return bound, "+inf"

_LUA_RANKED_RANGE = """
local function better_than(rank_key, score, rank_order)
    if rank_order == 'asc' then
        return redis.call('ZCOUNT', rank_key, '-inf', '(' .. score)
    end
    return redis.call('ZCOUNT', rank_key, '(' .. score, '+inf')
end

local function ranked_range(score_key, rank_key, offset, limit, order, rank_order, mode)
    local range_cmd = 'ZREVRANGE'
    if order == 'asc' then
        range_cmd = 'ZRANGE'
    end
    local rows = redis.call(range_cmd, score_key, offset, offset + limit - 1, 'WITHSCORES')
    local total = redis.call('ZCARD', score_key)

    local dense_ranks = {}
    local ranked = {}
    for i = 1, #rows, 2 do
        local score = rows[i + 1]
        local position = offset + math.floor((i - 1) / 2)
        local rank
        if mode == 'dense' then
            rank = dense_ranks[score]
            if not rank then
                rank = better_than(rank_key, score, rank_order) + 1
                dense_ranks[score] = rank
            end
        elseif order == rank_order then
            rank = position + 1
        else
            rank = total - position
        end
        table.insert(ranked, rows[i])
        table.insert(ranked, score)
        table.insert(ranked, rank)
    end
    return ranked
end
"""

class LuaLeaderboard(_BaseLeaderboard):
    """Leaderboard whose dense upserts and ranked reads run as Lua scripts."""

    def __init__(self, name, **kwargs):
        super().__init__(name, **kwargs)

        self._lua_upsert = self._redis.register_script("""
        local old_score = redis.call('ZSCORE', KEYS[1], ARGV[1])
        redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
        redis.call('ZADD', KEYS[2], ARGV[2], ARGV[2])
        if old_score and tonumber(old_score) ~= tonumber(ARGV[2]) then
            if redis.call('ZCOUNT', KEYS[1], old_score, old_score) == 0 then
                redis.call('ZREMRANGEBYSCORE', KEYS[2], old_score, old_score)
            end
        end
        local lifetime = tonumber(ARGV[3])
        if lifetime > 0 then
            redis.call('EXPIRE', KEYS[1], lifetime)
            redis.call('EXPIRE', KEYS[2], lifetime)
        end
        return 1
        """)
        self._lua_rank = self._redis.register_script(_LUA_RANKED_RANGE + """
        local score = redis.call('ZSCORE', KEYS[1], ARGV[1])
        if not score then
            return false
        end
        return better_than(KEYS[2], score, ARGV[2]) + 1
        """)
        self._lua_list = self._redis.register_script(_LUA_RANKED_RANGE + """
        return ranked_range(KEYS[1], KEYS[2], tonumber(ARGV[1]), tonumber(ARGV[2]),
            ARGV[3], ARGV[4], ARGV[5])
        """)
        self._lua_around = self._redis.register_script(_LUA_RANKED_RANGE + """
        local position_cmd = 'ZREVRANK'
        if ARGV[3] == 'asc' then
            position_cmd = 'ZRANK'
        end
        local position = redis.call(position_cmd, KEYS[1], ARGV[1])
        if not position then
            return false
        end

        local limit = tonumber(ARGV[2])
        local total = redis.call('ZCARD', KEYS[1])
        local start = math.max(position - math.floor(limit / 2), 0)
        local remainder = start + limit - total
        if remainder > 0 then
            start = math.max(0, start - remainder)
        end

        if limit <= 0 then
            return {start, {}}
        end
        return {start, ranked_range(KEYS[1], KEYS[2], start, limit, ARGV[3], ARGV[4], ARGV[5])}
        """)

    def _keys(self):
        return [self._score_key, self._rank_key]

    def _upsert_dense(self, member, score):
        self._lua_upsert(keys=self._keys(),
                args=[member, score, self._lifetime or 0])

    def _dense_rank(self, member):
        rank = self._lua_rank(keys=self._keys(), args=[member, self._rank_order])
        return None if rank is None else int(rank)

    def _list(self, offset, limit, order):
        response = self._lua_list(keys=self._keys(),
                args=[offset, limit, order, self._rank_order, self._mode])
        return self._members(response)

    def _around(self, member, limit, order):
        response = self._lua_around(keys=self._keys(),
                args=[member, limit, order, self._rank_order, self._mode])
        if response is None:
            raise MemberNotFoundError(self, self._name, member)

        start, rows = response
        return int(start), self._members(rows)

    def _members(self, rows):
        members = []
        for i in range(0, len(rows), 3):
            members.append(Member(
                self._decode(rows[i]),
                self._score(rows[i + 1]),
                int(rows[i + 2])
            ))
        return members
