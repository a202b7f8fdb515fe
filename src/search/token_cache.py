"""
検索トークンキャッシュモジュール。

ビジターIDごとに検索トークンをRedisへ保存する:
- キー: search_token:{visitor_id}
- 値: {"user": visitor_id, "token": token, "expire": 発行時刻(エポック秒)}
- 発行から10時間を超えたトークンは期限切れとして扱う(読み取り時に判定)
- 行は明示的に削除しない

キャッシュはベストエフォートであり、Redisの障害は検索処理に影響させない。
get/putの失敗はログ出力のみ行い、呼び出し元には伝播しない。
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError

from src.redis.client import RedisClient
from src.search.models import CachedToken

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "search_token:"
TOKEN_MAX_AGE_SECONDS = 10 * 60 * 60  # 10時間


def visitor_id_for(user_id: str) -> str:
    """SlackユーザーIDからビジターIDを生成する。

    暗号化ではなく単純な難読化(文字列の反転)。

    Args:
        user_id: SlackユーザーID

    Returns:
        反転したユーザーID
    """
    return (user_id or "")[::-1]


class TokenCache(Protocol):
    """検索トークンキャッシュのプロトコル型。"""

    async def get(self, visitor_id: str) -> str | None:
        """有効なトークンを取得する。存在しない・期限切れの場合はNone。"""
        ...

    async def put(self, visitor_id: str, token: str) -> None:
        """トークンを保存する。"""
        ...


class RedisTokenCache:
    """TokenCacheのRedis実装。

    Attributes:
        _redis: Redisクライアント
        _clock: 現在時刻(エポック秒)を返す関数
        _max_age: トークンの有効期間(秒)
    """

    def __init__(
        self,
        redis: RedisClient,
        clock: Callable[[], float] = time.time,
        max_age_seconds: int = TOKEN_MAX_AGE_SECONDS,
    ) -> None:
        """RedisTokenCacheを初期化する。

        Args:
            redis: Redisクライアント
            clock: 現在時刻を返す関数(テスト用に差し替え可能)
            max_age_seconds: トークンの有効期間(秒)
        """
        self._redis = redis
        self._clock = clock
        self._max_age = max_age_seconds

    async def get(self, visitor_id: str) -> str | None:
        """有効なトークンを取得する。

        Redisの障害、行の欠落、不正な行、期限切れはすべてNoneとして扱う。

        Args:
            visitor_id: ビジターID

        Returns:
            トークン。存在しない場合はNone。
        """
        try:
            raw = await self._redis.get(_key(visitor_id))
        except Exception as e:
            logger.error("Failed to read cached token for visitor %s: %s", visitor_id, e)
            return None

        if raw is None:
            logger.debug("No cached token for visitor %s", visitor_id)
            return None

        try:
            row = CachedToken.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Invalid cached token row for visitor %s: %s", visitor_id, e)
            return None

        if row.is_expired(self._clock(), self._max_age):
            logger.info("Expired cached token for visitor %s", visitor_id)
            return None

        return row.token or None

    async def put(self, visitor_id: str, token: str) -> None:
        """トークンを発行時刻とともに保存する。

        保存に失敗してもログ出力のみ行う。

        Args:
            visitor_id: ビジターID
            token: 検索トークン
        """
        row = CachedToken(user=visitor_id, token=token, expire=int(self._clock()))
        try:
            await self._redis.set(_key(visitor_id), row.model_dump_json())
            logger.debug("Cached search token for visitor %s", visitor_id)
        except Exception as e:
            logger.error("Failed to cache token for visitor %s: %s", visitor_id, e)


def _key(visitor_id: str) -> str:
    return f"{TOKEN_KEY_PREFIX}{visitor_id}"
