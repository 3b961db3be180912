"""Redis-backed bucket store.

Buckets live in a single hash per limiter id with an absolute expiry
(PEXPIREAT). Create and consume each run as one Lua script, so Redis executes
the existence check and the write as a single atomic step and no other client
can observe a half-written bucket.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from redis.asyncio import Redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from limiter.adapters.store.base import AbstractBucketStore, StoreConnectionError, StoreError
from limiter.core.config import RedisSettings, settings

logger = logging.getLogger(__name__)


# KEYS[1] = bucket key; ARGV[1] = expire-at (ms); ARGV[2..] = field/value pairs
CREATE_BUCKET_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return false
end
local written = redis.call('HSET', KEYS[1], unpack(ARGV, 2))
local expiry = redis.call('PEXPIREAT', KEYS[1], ARGV[1])
return {written, expiry}
"""

# KEYS[1] = bucket key; ARGV[1] = counter field
DECREMENT_AND_READ_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return false
end
local value = redis.call('HINCRBY', KEYS[1], ARGV[1], -1)
return {value, redis.call('HGETALL', KEYS[1])}
"""

_CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError)


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, list):
        return [_decode(v) for v in value]
    if isinstance(value, dict):
        return {_decode(k): _decode(v) for k, v in value.items()}
    return value


class RedisBucketStore(AbstractBucketStore):
    """Bucket store on top of a ``redis.asyncio`` client.

    Connectivity is tracked from command outcomes: a connection or timeout
    error flips the store to disconnected and starts a background task that
    pings with exponential backoff until Redis answers again.
    """

    def __init__(
        self,
        client: Redis,
        *,
        owns_client: bool = False,
        reconnect_backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._client = client
        self._owns_client = owns_client
        self._backoff = reconnect_backoff or ExponentialBackoff(
            cap=settings.redis.retry_backoff_cap_ms / 1000,
            base=settings.redis.retry_backoff_base_ms / 1000,
        )
        self._connected = True
        self._reconnect_task: asyncio.Task[None] | None = None
        self._create_script = client.register_script(CREATE_BUCKET_SCRIPT)
        self._consume_script = client.register_script(DECREMENT_AND_READ_SCRIPT)

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings | None = None) -> "RedisBucketStore":
        """Build a store (and the client it owns) from connection settings."""

        cfg = redis_settings or settings.redis
        backoff = ExponentialBackoff(
            cap=cfg.retry_backoff_cap_ms / 1000,
            base=cfg.retry_backoff_base_ms / 1000,
        )
        options: dict[str, Any] = {
            "db": cfg.db,
            "socket_timeout": cfg.socket_timeout_seconds,
            "socket_connect_timeout": cfg.socket_connect_timeout_seconds,
            "retry": Retry(backoff, cfg.retry_attempts),
            "retry_on_error": [RedisConnectionError, RedisTimeoutError],
            "decode_responses": True,
        }
        if cfg.password:
            options["password"] = cfg.password

        if cfg.url:
            client = Redis.from_url(cfg.url, **options)
        elif cfg.unix_socket_path:
            client = Redis(unix_socket_path=cfg.unix_socket_path, **options)
        else:
            client = Redis(host=cfg.host, port=cfg.port, **options)

        logger.debug(
            "store.client_created",
            extra={
                "host": cfg.host,
                "port": cfg.port,
                "unix_socket_path": cfg.unix_socket_path,
                "db": cfg.db,
                "retry_attempts": cfg.retry_attempts,
            },
        )
        return cls(client, owns_client=True, reconnect_backoff=backoff)

    @property
    def client(self) -> Redis:
        return self._client

    def is_connected(self) -> bool:
        return self._connected

    async def _execute(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await call()
        except _CONNECTION_ERRORS as exc:
            self._mark_disconnected(operation, exc)
            raise StoreConnectionError(f"{operation} failed: {exc}") from exc
        except RedisError as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

        self._mark_connected()
        return _decode(result)

    def _mark_connected(self) -> None:
        if self._connected:
            return
        self._connected = True
        logger.info("store.reconnected")

    def _mark_disconnected(self, operation: str, exc: BaseException) -> None:
        if self._connected:
            self._connected = False
            logger.warning(
                "store.disconnected",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_until_connected())

    async def _reconnect_until_connected(self) -> None:
        failures = 0
        while not self._connected:
            failures += 1
            await asyncio.sleep(self._backoff.compute(failures))
            try:
                await self._client.ping()
            except RedisError as exc:
                logger.debug(
                    "store.reconnect_failed",
                    extra={"attempt": failures, "error_type": type(exc).__name__},
                )
                continue
            self._mark_connected()

    async def exists(self, key: str) -> bool:
        count = await self._execute("exists", lambda: self._client.exists(key))
        return count == 1

    async def create_if_absent(
        self,
        key: str,
        fields: Mapping[str, int],
        expire_at_ms: int,
    ) -> Sequence[Any] | None:
        args: list[Any] = [expire_at_ms]
        for name, value in fields.items():
            args.extend([name, value])
        return await self._execute(
            "create_if_absent",
            lambda: self._create_script(keys=[key], args=args),
        )

    async def decrement_and_read(self, key: str, field: str) -> Sequence[Any] | None:
        return await self._execute(
            "decrement_and_read",
            lambda: self._consume_script(keys=[key], args=[field]),
        )

    async def read(self, key: str) -> Mapping[Any, Any]:
        return await self._execute("read", lambda: self._client.hgetall(key))

    async def ping(self) -> bool:
        try:
            await self._execute("ping", self._client.ping)
        except StoreError:
            return False
        return True

    async def close(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._owns_client:
            await self._client.aclose()
