"""Redis-backed store adapter.

Each rate limit key maps to two Redis keys derived from the same
hash-tagged base key:

- ``{key_prefix}{base}:z``: sorted set of admitted request timestamps
- ``{key_prefix}{base}:block``: block marker holding ``blocked_until_ms``

All window mutations run inside server-side Lua (EVALSHA, or FCALL when
Redis Functions are enabled), so the store itself provides the per-key
atomicity. No client-side locking is involved.
"""

import asyncio
import hashlib
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import NoScriptError, RedisError, ResponseError

from windowguard.core.config import RedisConnectionSettings
from windowguard.core.keys import BLOCK_SUFFIX, WINDOW_SUFFIX, generate_member
from windowguard.exceptions import StoreUnavailable
from windowguard.storage.base import StoreAdapter, StoreOutcome
from windowguard.storage.redis_lua import (
    DEFAULT_LIBRARY_NAME,
    SLIDING_WINDOW_SCRIPT,
    TRIM_SCRIPT,
    build_function_library,
    evaluate_function_name,
    trim_function_name,
)

logger = logging.getLogger(__name__)

# Errors normalized to StoreUnavailable at the adapter boundary
BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def _script_sha(script: str) -> str:
    return hashlib.sha1(script.encode("utf-8")).hexdigest()


class RedisStore(StoreAdapter):
    """Distributed store using Redis sorted sets and Lua.

    Args:
        connection: Connection parameters (ignored when ``redis_client`` is given)
        redis_client: Optional pre-built ``redis.asyncio`` client
        max_window_size: Upper bound on entries kept per key
        use_functions: Load a Redis Functions library instead of plain scripts
        library_name: Name of the Redis Functions library
    """

    name = "redis"

    def __init__(
        self,
        connection: Optional[RedisConnectionSettings] = None,
        *,
        redis_client: Optional[Any] = None,
        max_window_size: int = 1000,
        use_functions: bool = False,
        library_name: str = DEFAULT_LIBRARY_NAME,
    ) -> None:
        self._connection = connection or RedisConnectionSettings()
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._max_window_size = max_window_size
        self._use_functions = use_functions
        self._library_name = library_name
        self._functions_loaded = False
        self._shas: dict[str, str] = {}

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            conn = self._connection
            timeout = conn.socket_timeout_ms / 1000
            self._redis = aioredis.Redis(
                host=conn.host,
                port=conn.port,
                db=conn.db,
                password=conn.password,
                ssl=conn.tls,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        return self._redis

    @property
    def functions_loaded(self) -> bool:
        return self._functions_loaded

    @property
    def key_overhead(self) -> int:
        suffix = max(len(WINDOW_SUFFIX), len(BLOCK_SUFFIX)) + 1
        return len(self._connection.key_prefix) + suffix

    def window_key(self, key: str) -> str:
        return f"{self._connection.key_prefix}{key}:{WINDOW_SUFFIX}"

    def block_key(self, key: str) -> str:
        return f"{self._connection.key_prefix}{key}:{BLOCK_SUFFIX}"

    async def initialize(self) -> None:
        """Load the Lua code ahead of the first request.

        Failures here are logged, not raised: scripts are loaded lazily on
        first use anyway, and an unreachable store at startup is handled by
        the failure strategy like any other outage.
        """
        if self._use_functions:
            await self._load_functions()

        client = self._get_redis()
        for script in (SLIDING_WINDOW_SCRIPT, TRIM_SCRIPT):
            try:
                self._shas[script] = await client.script_load(script)
            except BACKEND_ERRORS as e:
                logger.warning(f"Could not preload Lua script: {e}")
                break

    async def _load_functions(self) -> bool:
        """Load (or replace) the Redis Functions library."""
        client = self._get_redis()
        try:
            await client.function_load(
                build_function_library(self._library_name), replace=True
            )
        except BACKEND_ERRORS as e:
            self._functions_loaded = False
            logger.warning(
                f"Redis Functions library '{self._library_name}' unavailable, "
                f"using Lua scripts: {e}"
            )
            return False
        self._functions_loaded = True
        logger.info(f"Loaded Redis Functions library '{self._library_name}'")
        return True

    async def _run_script(
        self, script: str, keys: Sequence[str], args: Sequence[Any]
    ) -> Any:
        """Run a script by SHA, sending the source only when Redis lacks it."""
        client = self._get_redis()
        sha = self._shas.get(script)
        if sha is not None:
            try:
                return await client.evalsha(sha, len(keys), *keys, *args)
            except NoScriptError:
                # Script cache was flushed (restart, failover, SCRIPT FLUSH)
                self._shas.pop(script, None)
        result = await client.eval(script, len(keys), *keys, *args)
        self._shas[script] = _script_sha(script)
        return result

    async def _call(
        self,
        script: str,
        function_name: str,
        keys: Sequence[str],
        args: Sequence[Any],
    ) -> Any:
        if self._functions_loaded:
            client = self._get_redis()
            try:
                return await client.fcall(function_name, len(keys), *keys, *args)
            except ResponseError as e:
                if "function not found" not in str(e).lower():
                    raise
                logger.warning("Redis Functions library was unloaded, reloading")
                if await self._load_functions():
                    return await client.fcall(function_name, len(keys), *keys, *args)
        return await self._run_script(script, keys, args)

    async def atomic_evaluate(
        self,
        key: str,
        now_ms: int,
        limit_count: int,
        window_duration_ms: int,
        block_duration_ms: int = 0,
    ) -> StoreOutcome:
        keys = [self.window_key(key), self.block_key(key)]
        args = [
            str(now_ms),
            str(limit_count),
            str(window_duration_ms),
            str(block_duration_ms),
            generate_member(now_ms),
            str(self._max_window_size),
        ]
        try:
            raw = await self._call(
                SLIDING_WINDOW_SCRIPT,
                evaluate_function_name(self._library_name),
                keys,
                args,
            )
        except BACKEND_ERRORS as e:
            raise StoreUnavailable(f"Redis evaluate failed: {e}", cause=e) from e
        return self._parse_outcome(raw)

    @staticmethod
    def _parse_outcome(raw: Any) -> StoreOutcome:
        try:
            admitted, count, blocked_until, oldest = (int(v) for v in raw)
        except (TypeError, ValueError) as e:
            raise StoreUnavailable(
                f"Unexpected evaluate reply from Redis: {raw!r}", cause=e
            ) from e
        return StoreOutcome(
            admitted=admitted == 1,
            count=max(0, count),
            blocked_until_ms=blocked_until if blocked_until >= 0 else None,
            oldest_ms=oldest if oldest >= 0 else None,
        )

    async def trim_expired(self, key: str, before_ms: int) -> int:
        try:
            removed = await self._call(
                TRIM_SCRIPT,
                trim_function_name(self._library_name),
                [self.window_key(key)],
                [str(before_ms)],
            )
        except BACKEND_ERRORS as e:
            raise StoreUnavailable(f"Redis trim failed: {e}", cause=e) from e
        return int(removed or 0)

    async def delete_key(self, key: str) -> None:
        client = self._get_redis()
        try:
            await client.delete(self.window_key(key), self.block_key(key))
        except BACKEND_ERRORS as e:
            raise StoreUnavailable(f"Redis delete failed: {e}", cause=e) from e

    async def scan_keys(self, pattern: str, batch_size: int = 100) -> AsyncIterator[str]:
        """Iterate base keys with a window set, using incremental SCAN."""
        client = self._get_redis()
        prefix = self._connection.key_prefix
        suffix = f":{WINDOW_SUFFIX}"
        try:
            async for raw in client.scan_iter(
                match=f"{prefix}{pattern}{suffix}", count=batch_size
            ):
                name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                yield name[len(prefix):-len(suffix)]
        except BACKEND_ERRORS as e:
            raise StoreUnavailable(f"Redis scan failed: {e}", cause=e) from e

    async def close(self) -> None:
        """Close the Redis connection if this store created it."""
        if self._redis is not None and self._owns_client:
            try:
                await self._redis.aclose()
            except BACKEND_ERRORS as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
