"""
Redis access for the service: one pooled client, every command retried on
connection loss and surfaced as StoreUnavailableError when Redis stays down.
"""
import logging
import random
import time
from typing import Any, Optional

import redis
from redis.exceptions import AuthenticationError, ConnectionError, RedisError, TimeoutError

from freshmart.config import Config
from freshmart.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

RETRYABLE = (ConnectionError, TimeoutError)


class RedisClient:
    """Thin command wrapper; services never touch redis.Redis directly"""

    def __init__(self, client: Optional[redis.Redis] = None):
        """
        Args:
            client: Pre-built client to wrap (tests pass a fakeredis instance).
                When omitted a pooled connection is opened from Config.
        """
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        if client is None:
            self._open_pool()

    def _open_pool(self) -> None:
        options = {
            "max_connections": Config.REDIS_MAX_CONNECTIONS,
            "socket_connect_timeout": Config.REDIS_SOCKET_CONNECT_TIMEOUT,
            "socket_timeout": Config.REDIS_SOCKET_TIMEOUT,
            "retry_on_timeout": Config.REDIS_RETRY_ON_TIMEOUT,
            "decode_responses": True,
        }
        if Config.REDIS_SSL:
            # ElastiCache in-transit encryption presents a self-signed cert
            options["ssl_cert_reqs"] = None

        try:
            self.pool = redis.ConnectionPool.from_url(Config.redis_url(), **options)
            self.client = redis.Redis(connection_pool=self.pool)
            self.client.ping()
        except (ConnectionError, AuthenticationError) as e:
            raise StoreUnavailableError(f"Failed to connect to Redis: {e}")

    def _call(self, command: str, *args, **kwargs) -> Any:
        """
        Run one Redis command with exponential backoff and jitter between
        attempts. Only connection-level failures are retried; any other
        RedisError is reported at once.
        """
        delay = Config.REDIS_INITIAL_BACKOFF
        attempts = Config.REDIS_MAX_RETRIES

        for attempt in range(1, attempts + 1):
            try:
                return getattr(self.client, command)(*args, **kwargs)
            except RETRYABLE as e:
                if attempt == attempts:
                    raise StoreUnavailableError(f"Redis {command} failed after {attempts} attempts: {e}")
                logger.warning(
                    f"Redis {command} failed, retrying",
                    extra={"attempt": attempt, "max_attempts": attempts, "error": str(e)}
                )
                time.sleep(delay + random.uniform(0, delay * 0.1))
                delay = min(delay * 2, Config.REDIS_MAX_BACKOFF)
                self._reopen()
            except RedisError as e:
                raise StoreUnavailableError(f"Redis {command} rejected: {e}")

    def _reopen(self) -> None:
        # Injected clients manage their own connections
        if self.pool is None:
            return
        self.pool.disconnect()
        try:
            self._open_pool()
        except StoreUnavailableError as e:
            logger.warning(f"Redis reconnect failed: {e}")

    # Strings

    def get(self, key: str) -> Optional[str]:
        return self._call("get", key)

    def mget(self, *keys: str) -> list:
        """Several values in one atomic read"""
        return self._call("mget", *keys)

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        return self._call("set", key, value, ex=ex)

    def delete(self, *keys: str) -> int:
        return self._call("delete", *keys)

    def exists(self, *keys: str) -> int:
        return self._call("exists", *keys)

    # Hashes

    def hget(self, key: str, field: str) -> Optional[str]:
        return self._call("hget", key, field)

    def hset(self, key: str, field: str, value: Any) -> int:
        return self._call("hset", key, field, value)

    def hdel(self, key: str, *fields: str) -> int:
        return self._call("hdel", key, *fields)

    def hgetall(self, key: str) -> dict:
        return self._call("hgetall", key)

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        return self._call("hincrby", key, field, amount)

    # Lists

    def lpush(self, key: str, *values: Any) -> int:
        return self._call("lpush", key, *values)

    def lrange(self, key: str, start: int = 0, end: int = -1) -> list:
        return self._call("lrange", key, start, end)

    # Scripts and health

    def eval(self, script: str, num_keys: int, *keys_and_args) -> Any:
        return self._call("eval", script, num_keys, *keys_and_args)

    def ping(self) -> bool:
        """True when Redis answers; never raises"""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        if self.pool:
            self.pool.disconnect()


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Shared client for the default application"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
