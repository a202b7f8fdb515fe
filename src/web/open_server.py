"""
リダイレクト兼記録用Webサーバーモジュール。

検索結果のリンクは GET /open を指し、クエリ文字列にトラッキングパラメータを持つ。
ハンドラはアナリティクスにオープンイベントを記録し、本来のURLへ301でリダイレクトする。
リダイレクト先は http/https のURLに限る。
"""

import logging
from urllib.parse import urlsplit

from aiohttp import web

from src.search.models import TenantCredentials, TrackingParams
from src.search.orchestrator import SearchOrchestrator

logger = logging.getLogger(__name__)

ALLOWED_REDIRECT_SCHEMES = ("http", "https")


class OpenServer:
    """オープン記録用リダイレクトエンドポイントを公開するHTTPサーバー。

    Attributes:
        _orchestrator: オープンイベントの記録に使う検索オーケストレーター
        _defaults: デフォルトのテナント認証情報
        _port: 待ち受けポート
    """

    def __init__(
        self,
        orchestrator: SearchOrchestrator,
        defaults: TenantCredentials,
        port: int = 3000,
    ) -> None:
        """OpenServerを初期化する。

        Args:
            orchestrator: 検索オーケストレーター
            defaults: デフォルトのテナント認証情報
            port: 待ち受けポート
        """
        self._orchestrator = orchestrator
        self._defaults = defaults
        self._port = port
        self.app = web.Application()
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/open", self._handle_open)
        logger.info("Routes configured: /health, /open")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    async def _handle_open(self, request: web.Request) -> web.Response:
        """オープンイベントを記録し、対象URLへリダイレクトする。

        urlがない、またはhttp/https以外の場合は記録せずに400を返す。
        """
        try:
            params = TrackingParams.from_query(dict(request.query))
            if not params.url:
                raise ValueError("empty url")
        except ValueError:
            logger.warning("Open request without target url: %s", request.query_string)
            return web.json_response({"error": "url is required"}, status=400)

        if urlsplit(params.url).scheme.lower() not in ALLOWED_REDIRECT_SCHEMES:
            logger.warning("Refusing redirect to non-http url: %s", params.url[:100])
            return web.json_response({"error": "url must be http or https"}, status=400)

        credentials = self._defaults
        if params.org:
            credentials = TenantCredentials(org_id=params.org, api_key=self._defaults.api_key)
        await self._orchestrator.record_open(credentials, params)

        raise web.HTTPMovedPermanently(location=params.url)

    async def start(self) -> web.AppRunner:
        """Webサーバーを起動する。

        Returns:
            停止時にstopへ渡すAppRunner
        """
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", self._port)
        await site.start()
        logger.info("Open endpoint listening on port %d", self._port)
        return runner

    async def stop(self, runner: web.AppRunner) -> None:
        """Webサーバーを停止する。"""
        await runner.cleanup()
        logger.info("Web server stopped")
