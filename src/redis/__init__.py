"""
Redis接続モジュール。

検索トークンキャッシュの保存先となるキー/値クライアントを提供する。
"""

from src.redis.client import AsyncRedisClientImpl, RedisClient

__all__ = ["AsyncRedisClientImpl", "RedisClient"]
