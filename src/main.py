"""
検索ボットの起動モジュール。

環境変数の読み込み、Redis接続、検索クライアントの作成、ハンドラの登録、
リダイレクト用Webサーバーの起動、Socket Mode接続を行う。
"""

import asyncio
import logging

import httpx
from slack_bolt.async_app import AsyncApp
from slack_sdk.web.async_client import AsyncWebClient

from src.config import get_settings
from src.redis import AsyncRedisClientImpl
from src.search import RedisTokenCache, SearchClient, SearchOrchestrator, TenantCredentials
from src.slack import InteractionRouter, ResultRenderer, SlackBotImpl
from src.web import OpenServer

logger = logging.getLogger(__name__)


async def main() -> None:
    """各コンポーネントを組み立ててボットを起動する。

    1. 設定を読み込み、ログを初期化
    2. Redisに接続(検索トークンキャッシュ)
    3. 検索クライアントとオーケストレーターを作成
    4. AsyncAppを作成し、ハンドラを登録
    5. リダイレクト用Webサーバーを起動
    6. SlackBotImplを作成してSocket Modeで起動
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    redis = AsyncRedisClientImpl(settings.redis_url, socket_timeout=settings.http_timeout_seconds)
    await redis.connect()

    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds))
    orchestrator = SearchOrchestrator(
        backend=SearchClient(http, settings),
        token_cache=RedisTokenCache(redis),
    )

    # AsyncAppの作成
    app = AsyncApp(token=settings.slack_bot_token)
    client = AsyncWebClient(token=settings.slack_bot_token)
    bot = SlackBotImpl(
        app=app,
        web_client=client,
        app_token=settings.slack_app_token,
    )

    # ハンドラの登録
    router = InteractionRouter(
        settings=settings,
        slack_bot=bot,
        orchestrator=orchestrator,
        renderer=ResultRenderer(settings),
    )
    router.register(app)

    open_server = OpenServer(
        orchestrator=orchestrator,
        defaults=TenantCredentials(org_id=settings.search_org_id, api_key=settings.search_api_key),
        port=settings.web_port,
    )
    runner = await open_server.start()

    try:
        logger.info("Starting Slack Bot...")
        await bot.start()
    finally:
        await bot.stop()
        await open_server.stop(runner)
        await http.aclose()
        await redis.disconnect()


def run() -> None:
    """コンソールスクリプト用のエントリーポイント。"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
