"""
Redis接続クライアントモジュール。

検索トークンキャッシュの保存先として使う最小限のキー/値インターフェース:
- RedisClient: get/set のみを持つプロトコル型(テストではインメモリ実装に差し替える)
- AsyncRedisClientImpl: redis-py asyncio による実装

起動時の接続失敗は ConnectionError として即座に伝播させる。
稼働中の障害では操作を失敗させたうえで、バックグラウンドで再接続を続ける。
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import Protocol, TypeVar

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisClient(Protocol):
    """トークンキャッシュが必要とするRedis操作。"""

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        """値を保存する。exを指定した場合は秒単位の有効期限を付ける。"""
        ...

    async def get(self, key: str) -> str | None:
        """値を取得する。存在しない場合はNone。"""
        ...


def backoff_delays(initial: float, maximum: float, multiplier: float) -> Iterator[float]:
    """再接続の待機時間を返し続ける(initial から maximum まで指数的に増加)。"""
    delay = initial
    while True:
        yield delay
        delay = min(delay * multiplier, maximum)


class AsyncRedisClientImpl:
    """RedisClientの非同期実装。

    Attributes:
        _redis: redis-pyクライアント(応答はstrにデコード済み)
        _connected: 直近の操作が成功したかどうか
        _reconnect_task: 実行中の再接続タスク
    """

    INITIAL_BACKOFF = 1.0
    MAX_BACKOFF = 30.0
    BACKOFF_MULTIPLIER = 2.0

    def __init__(self, redis_url: str, socket_timeout: float | None = None) -> None:
        """AsyncRedisClientImplを初期化する。

        Args:
            redis_url: Redis接続URL (例: redis://localhost:6379)
            socket_timeout: ソケットのタイムアウト(秒)。Noneの場合は無制限。
        """
        self._redis: Redis = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._connected = False
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """疎通確認を行う。

        Raises:
            ConnectionError: Redisに到達できない場合
        """
        try:
            await self._redis.ping()
        except Exception as e:
            logger.error("Failed to connect to Redis: %s", e)
            raise ConnectionError(f"Failed to connect to Redis: {e}") from e
        self._connected = True
        logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None

        await self._redis.aclose()
        self._connected = False
        logger.info("Disconnected from Redis")

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        """値を保存する。

        Raises:
            ConnectionError: 切断中の場合
        """
        await self._guarded("set", key, lambda: self._redis.set(key, value, ex=ex))

    async def get(self, key: str) -> str | None:
        """値を取得する。

        Raises:
            ConnectionError: 切断中の場合
        """
        value = await self._guarded("get", key, lambda: self._redis.get(key))
        return None if value is None else str(value)

    async def _guarded(self, operation: str, key: str, call: Callable[[], Awaitable[T]]) -> T:
        """切断中なら即座に失敗し、失敗した操作は切断として再接続を開始する。"""
        if not self._connected:
            self._start_reconnect()
            raise ConnectionError(f"Cannot {operation} {key}: not connected to Redis")

        try:
            return await call()
        except Exception as e:
            logger.error("Redis %s failed for key %s: %s", operation, key, e)
            self._connected = False
            self._start_reconnect()
            raise

    def _start_reconnect(self) -> None:
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        delays = backoff_delays(self.INITIAL_BACKOFF, self.MAX_BACKOFF, self.BACKOFF_MULTIPLIER)
        for delay in delays:
            try:
                await self._redis.ping()
            except Exception as e:
                logger.warning("Redis reconnection failed, retrying in %.1fs: %s", delay, e)
                await asyncio.sleep(delay)
                continue
            self._connected = True
            logger.info("Reconnected to Redis")
            return
