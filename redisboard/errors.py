import redis

# Transport failures reach the caller as raised by redis-py.
StoreUnavailableError = redis.exceptions.ConnectionError

class LeaderboardError(Exception):
    def __init__(self, leaderboard, name, member):
        super().__init__(name, member)
        self._leaderboard = leaderboard
        self._name = name
        self._member = member

    @property
    def member(self):
        return self._member

    @property
    def name(self):
        return self._name

class MemberNotFoundError(LeaderboardError, KeyError):
    def __str__(self):
        return "{2}: Member '{1}' has no score in leaderboard '{0}' (type: {3})".format(
                self._name, self._member, type(self).__name__,
                type(self._leaderboard).__name__)

class TransactionConflictError(LeaderboardError):
    def __str__(self):
        return "{2}: Score of '{1}' in leaderboard '{0}' was not updated, concurrent write detected (type: {3})".format(
                self._name, self._member, type(self).__name__,
                type(self._leaderboard).__name__)
