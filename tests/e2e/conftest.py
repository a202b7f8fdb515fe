"""
E2Eテスト用の共有フィクスチャ。

Slack APIと検索バックエンドのHTTP通信のみを置き換え、
それ以外(ルーター・オーケストレーター・検索クライアント・トークンキャッシュ・
レンダラー)は本物のコンポーネントを組み合わせて使用する。
"""

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from src.config.settings import Settings
from src.search import RedisTokenCache, SearchClient, SearchOrchestrator
from src.slack import InteractionRouter, ResultRenderer


class InMemoryRedis:
    """RedisClientプロトコルを満たすインメモリ実装。"""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.store[key] = value

    async def get(self, key: str) -> str | None:
        return self.store.get(key)


class SearchBackendStub:
    """検索バックエンドのHTTPエンドポイントを模倣し、受信したリクエストを記録する。"""

    def __init__(self, search_response: dict[str, Any]) -> None:
        self.search_response = search_response
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def handler(self) -> Callable[[httpx.Request], httpx.Response]:
        def handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if request.url.path == "/rest/search/v2/token":
                return httpx.Response(200, json={"token": "issued-token"})
            if request.url.path == "/rest/search/v2/":
                return httpx.Response(200, json=self.search_response)
            return httpx.Response(200, json={})

        return handle


@pytest.fixture
def redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def backend_stub(search_response: dict[str, Any]) -> SearchBackendStub:
    return SearchBackendStub(search_response)


@pytest.fixture
def slack_bot() -> MagicMock:
    """SlackBotプロトコルのモック。"""
    bot = MagicMock()
    bot.get_user_email = AsyncMock(return_value="ann@example.com")
    bot.publish_home = AsyncMock()
    bot.open_modal = AsyncMock()
    bot.update_modal = AsyncMock()
    bot.post_message = AsyncMock(return_value="999.000")
    return bot


@pytest.fixture
def router(
    settings: Settings,
    redis: InMemoryRedis,
    backend_stub: SearchBackendStub,
    slack_bot: MagicMock,
) -> InteractionRouter:
    """本物のコンポーネントで構成したルーター。"""
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend_stub.handler()))
    orchestrator = SearchOrchestrator(
        backend=SearchClient(http, settings),
        token_cache=RedisTokenCache(redis),
    )
    return InteractionRouter(
        settings=settings,
        slack_bot=slack_bot,
        orchestrator=orchestrator,
        renderer=ResultRenderer(settings),
    )
