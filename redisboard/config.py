"""Redis connection configuration for leaderboards.

The Redis URL is taken from, in order: the ``url`` argument, the
``REDISBOARD_REDIS_URL`` environment variable, the ``REDIS_URL`` environment
variable and finally a local development default.
"""

import logging
import os
from urllib.parse import urlsplit, urlunsplit

import redis

logger = logging.getLogger(__name__)

REDIS_URL_ENV = "REDISBOARD_REDIS_URL"
FALLBACK_REDIS_URL_ENV = "REDIS_URL"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

def get_redis_url():
    return (os.getenv(REDIS_URL_ENV)
            or os.getenv(FALLBACK_REDIS_URL_ENV)
            or DEFAULT_REDIS_URL)

def create_redis_client(url=None, **options):
    """Build a redis client; no connection is opened until the first command."""
    if url is None:
        url = get_redis_url()

    client = redis.Redis.from_url(url, **options)
    logger.info("Using Redis at %s", redact_url(url))
    return client

def redact_url(url):
    parts = urlsplit(url)
    if parts.password is None:
        return url

    netloc = parts.hostname or ""
    if parts.username:
        netloc = parts.username + ":***@" + netloc
    else:
        netloc = ":***@" + netloc
    if parts.port is not None:
        netloc += ":" + str(parts.port)
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
