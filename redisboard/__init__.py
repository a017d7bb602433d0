from .config import create_redis_client
from .errors import (
    LeaderboardError,
    MemberNotFoundError,
    StoreUnavailableError,
    TransactionConflictError,
)
from .leaderboard import (
    ASC,
    DENSE,
    DESC,
    POSITIONAL,
    Cursor,
    Leaderboard,
    LuaLeaderboard,
    Member,
    window_start,
)

__version__ = "0.1.0"

__all__ = [
    "ASC",
    "DENSE",
    "DESC",
    "POSITIONAL",
    "Cursor",
    "Leaderboard",
    "LeaderboardError",
    "LuaLeaderboard",
    "Member",
    "MemberNotFoundError",
    "StoreUnavailableError",
    "TransactionConflictError",
    "create_redis_client",
    "window_start",
]
