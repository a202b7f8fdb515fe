"""
検索オーケストレーターモジュール。

1回のインタラクションにおける検索処理を順に実行する:
1. トークンキャッシュから検索トークンを取得(なければ発行してキャッシュ)
2. 検索バックエンドで検索を実行
3. アナリティクスに検索イベントを送信

障害時の方針:
- 検索バックエンドに到達できない/非2xx応答 -> 0件として扱う
- トークン発行失敗 -> 空トークンで続行(検索は0件になる想定)
- アナリティクス失敗 -> ログ出力のみ
"""

import logging
from typing import Protocol

from src.search.models import AnalyticsOutcome, ResultSet, TenantCredentials, TrackingParams
from src.search.session import SessionContext
from src.search.token_cache import TokenCache

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    """検索バックエンドのプロトコル型(SearchClientが実装する)。"""

    async def search(
        self,
        credentials: TenantCredentials,
        token: str,
        username: str,
        query: str,
        advanced_query: str,
        first_result: int,
        page_size: int,
        referrer: str,
        channel_context: str,
    ) -> ResultSet: ...

    async def issue_token(self, credentials: TenantCredentials, email: str) -> str | None: ...

    async def record_search(
        self,
        credentials: TenantCredentials,
        result_set: ResultSet,
        query: str,
        advanced_query: str,
        visitor_id: str,
        token: str,
        referrer: str,
        channel_context: str,
        username: str,
    ) -> AnalyticsOutcome: ...

    async def record_open(
        self,
        credentials: TenantCredentials,
        params: TrackingParams,
    ) -> AnalyticsOutcome: ...


class SearchOrchestrator:
    """検索処理のオーケストレーター。

    Attributes:
        _backend: 検索バックエンドクライアント
        _token_cache: 検索トークンキャッシュ
    """

    def __init__(self, backend: SearchBackend, token_cache: TokenCache) -> None:
        """SearchOrchestratorを初期化する。

        Args:
            backend: 検索バックエンドクライアント
            token_cache: 検索トークンキャッシュ
        """
        self._backend = backend
        self._token_cache = token_cache

    async def ensure_token(
        self,
        visitor_id: str,
        email: str,
        credentials: TenantCredentials,
    ) -> str:
        """有効な検索トークンを返す。

        キャッシュにない場合はメールアドレスを使って新しいトークンを発行し、
        キャッシュに保存する。発行に失敗した場合は空文字を返す。

        Args:
            visitor_id: ビジターID
            email: ユーザーのメールアドレス(なりすましID)
            credentials: リクエスト単位の認証情報

        Returns:
            検索トークン。取得できなかった場合は空文字。
        """
        cached = await self._token_cache.get(visitor_id)
        if cached:
            logger.debug("Using cached search token", extra={"visitor_id": visitor_id})
            return cached

        logger.info("Requesting new search token", extra={"visitor_id": visitor_id})
        try:
            token = await self._backend.issue_token(credentials, email)
        except Exception:
            logger.exception("Failed to issue search token for visitor %s", visitor_id)
            return ""

        if not token:
            logger.warning("Search backend returned no token for visitor %s", visitor_id)
            return ""

        await self._token_cache.put(visitor_id, token)
        return token

    async def search(
        self,
        credentials: TenantCredentials,
        token: str,
        username: str,
        query: str,
        advanced_query: str,
        first_result: int,
        page_size: int,
        referrer: str,
        channel_context: str,
    ) -> ResultSet:
        """検索を実行する。失敗時は0件のResultSetを返す。"""
        try:
            return await self._backend.search(
                credentials=credentials,
                token=token,
                username=username,
                query=query,
                advanced_query=advanced_query,
                first_result=first_result,
                page_size=page_size,
                referrer=referrer,
                channel_context=channel_context,
            )
        except Exception:
            logger.exception("Search failed, showing no results")
            return ResultSet.empty()

    async def record_search(
        self,
        credentials: TenantCredentials,
        result_set: ResultSet,
        query: str,
        advanced_query: str,
        visitor_id: str,
        token: str,
        referrer: str,
        channel_context: str,
        username: str,
    ) -> None:
        """検索イベントをアナリティクスに送信する(ベストエフォート)。"""
        try:
            outcome = await self._backend.record_search(
                credentials=credentials,
                result_set=result_set,
                query=query,
                advanced_query=advanced_query,
                visitor_id=visitor_id,
                token=token,
                referrer=referrer,
                channel_context=channel_context,
                username=username,
            )
        except Exception as e:
            outcome = AnalyticsOutcome.failure(str(e))
        _log_outcome("search", outcome)

    async def record_open(self, credentials: TenantCredentials, params: TrackingParams) -> None:
        """結果を開いたイベントをアナリティクスに送信する(ベストエフォート)。"""
        try:
            outcome = await self._backend.record_open(credentials, params)
        except Exception as e:
            outcome = AnalyticsOutcome.failure(str(e))
        _log_outcome("open", outcome)

    async def run(
        self,
        session: SessionContext,
        credentials: TenantCredentials,
        username: str,
        visitor_id: str,
        query: str,
        advanced_query: str,
        page_size: int,
    ) -> ResultSet:
        """セッションに基づき検索とアナリティクス送信を順に実行する。

        Args:
            session: トークン取得済みのセッション
            credentials: リクエスト単位の認証情報
            username: Slackユーザー名
            visitor_id: ビジターID
            query: 検索クエリ
            advanced_query: ファセットから生成した絞り込み条件
            page_size: 取得件数

        Returns:
            ResultSet
        """
        result_set = await self.search(
            credentials=credentials,
            token=session.search_token,
            username=username,
            query=query,
            advanced_query=advanced_query,
            first_result=0,
            page_size=page_size,
            referrer=session.referrer,
            channel_context=session.channel_name,
        )
        logger.info(
            "Search completed",
            extra={
                "total_count": result_set.total_count,
                "returned": result_set.returned_count,
                "visitor_id": visitor_id,
            },
        )
        await self.record_search(
            credentials=credentials,
            result_set=result_set,
            query=query,
            advanced_query=advanced_query,
            visitor_id=visitor_id,
            token=session.search_token,
            referrer=session.referrer,
            channel_context=session.channel_name,
            username=username,
        )
        return result_set


def _log_outcome(event: str, outcome: AnalyticsOutcome) -> None:
    if outcome.ok:
        logger.debug("Analytics %s recorded (status %s)", event, outcome.status_code)
    else:
        logger.warning(
            "Analytics %s failed: %s (status %s)", event, outcome.error, outcome.status_code
        )
