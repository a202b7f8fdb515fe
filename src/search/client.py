"""
検索バックエンドクライアントモジュール。

検索プラットフォームへの非同期HTTPクライアント:
- POST /rest/search/v2/         検索の実行(Bearer: 検索トークン)
- POST /rest/search/v2/token    なりすましトークンの発行(Bearer: APIキー)
- POST /rest/ua/v15/analytics/search|click   利用状況アナリティクス(Bearer: 検索トークン)

検索とトークン発行で通信自体に失敗した場合は SearchBackendUnreachableError を送出する。
検索の非2xx応答はログに記録し、0件として扱う。
アナリティクスは例外を送出せず、AnalyticsOutcome を返す。
"""

import logging
from typing import Any

import httpx

from src.config.settings import Settings
from src.search.models import AnalyticsOutcome, ResultSet, TenantCredentials, TrackingParams

logger = logging.getLogger(__name__)

USER_AGENT = "Slack/1.0 (platform; Slack Integration)"
TOKEN_PROVIDER = "Email Security Provider"

FIELDS_TO_INCLUDE = ["clickableuri", "title", "date", "excerpt", "filetype", "language"]
FIELDS_TO_EXCLUDE = ["documenttype", "size"]

FACET_NUMBER_OF_VALUES = 8
FACET_INJECTION_DEPTH = 1000


class SearchBackendUnreachableError(Exception):
    """検索バックエンドにまったく到達できない場合に送出される。"""

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        super().__init__(f"Search backend unreachable during {operation}: {cause}")


def build_search_body(
    settings: Settings,
    username: str,
    query: str,
    advanced_query: str,
    first_result: int,
    page_size: int,
    referrer: str,
    channel_context: str,
    pipeline: str | None = None,
    search_hub: str | None = None,
    tab: str | None = None,
) -> dict[str, Any]:
    """検索リクエストのJSONボディを組み立てる。

    設定済みのファセット/表示/画像フィールドはfieldsToIncludeに追加し、
    ファセットフィールドごとにファセットリクエストを付ける。

    Args:
        settings: アプリケーション設定
        username: Slackユーザー名(context.userName)
        query: 検索クエリ
        advanced_query: ファセットから生成した絞り込み条件
        first_result: 取得開始位置
        page_size: 取得件数
        referrer: リファラー
        channel_context: チャンネル名(context.channel)
        pipeline: クエリパイプライン。Noneの場合は設定値。
        search_hub: 検索ハブ。Noneの場合は設定値。
        tab: タブ。Noneの場合は設定値。

    Returns:
        リクエストボディ
    """
    fields_to_include = list(FIELDS_TO_INCLUDE)
    facets: list[dict[str, Any]] = []
    for facet_field in settings.facet_fields:
        fields_to_include.append(facet_field.field)
        facets.append(
            {
                "facetId": facet_field.field,
                "field": facet_field.field,
                "type": "specific",
                "injectionDepth": FACET_INJECTION_DEPTH,
                "filterFacetCount": False,
                "numberOfValues": FACET_NUMBER_OF_VALUES,
                "freezeCurrentValues": False,
                "preventAutoSelect": True,
                "isFieldExpanded": False,
            }
        )
    for display_field in settings.display_fields:
        fields_to_include.append(display_field.field)
    for picture_field in settings.picture_fields:
        fields_to_include.append(picture_field.field)
        fields_to_include.append(picture_field.srcfield)

    return {
        "q": query,
        "aq": advanced_query,
        "fieldsToInclude": fields_to_include,
        "fieldsToExclude": list(FIELDS_TO_EXCLUDE),
        "firstResult": first_result,
        "numberOfResults": page_size,
        "pipeline": settings.search_pipeline if pipeline is None else pipeline,
        "searchHub": settings.search_hub if search_hub is None else search_hub,
        "tab": settings.search_tab if tab is None else tab,
        "referrer": referrer,
        "context": {"userName": username, "channel": channel_context},
        "facets": facets,
    }


class SearchClient:
    """検索プラットフォームの非同期クライアント。

    Attributes:
        _http: httpxクライアント(外部から注入し、接続プールを共有する)
        _settings: アプリケーション設定(エンドポイント、ルーティング、フィールド)
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        """SearchClientを初期化する。

        Args:
            http: httpxクライアント
            settings: アプリケーション設定
        """
        self._http = http
        self._settings = settings
        self._search_endpoint = settings.search_endpoint.rstrip("/")
        self._analytics_endpoint = settings.analytics_endpoint.rstrip("/")

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
        pipeline: str | None = None,
        search_hub: str | None = None,
        tab: str | None = None,
    ) -> ResultSet:
        """検索を実行する。

        引数はbuild_search_bodyと同じ。credentialsの組織IDをクエリに付与し、
        tokenをBearerとして送る。

        Returns:
            ResultSet。非2xxや不正な応答の場合は0件。

        Raises:
            SearchBackendUnreachableError: 通信に失敗した場合
        """
        body = build_search_body(
            self._settings,
            username=username,
            query=query,
            advanced_query=advanced_query,
            first_result=first_result,
            page_size=page_size,
            referrer=referrer,
            channel_context=channel_context,
            pipeline=pipeline,
            search_hub=search_hub,
            tab=tab,
        )
        try:
            response = await self._http.post(
                f"{self._search_endpoint}/rest/search/v2/",
                params={"organizationId": credentials.org_id},
                headers=_headers(token),
                json=body,
            )
        except httpx.TransportError as e:
            raise SearchBackendUnreachableError("search", e) from e

        logger.info(
            "Search response",
            extra={"status_code": response.status_code, "org_id": credentials.org_id},
        )
        if not response.is_success:
            logger.error(
                "Search request failed with status %s: %s",
                response.status_code,
                response.text[:500],
            )
            return ResultSet.empty()

        try:
            payload = response.json()
        except ValueError:
            logger.error("Search response is not valid JSON")
            return ResultSet.empty()
        return ResultSet.from_response(payload)

    async def issue_token(self, credentials: TenantCredentials, email: str) -> str | None:
        """ユーザーになりすます検索トークンを発行する。

        Args:
            credentials: APIキーを含む認証情報
            email: なりすますユーザーのメールアドレス

        Returns:
            発行されたトークン。バックエンドが返さなかった場合はNone。

        Raises:
            SearchBackendUnreachableError: 通信に失敗した場合
        """
        body = {"userIds": [{"name": email, "provider": TOKEN_PROVIDER}]}
        try:
            response = await self._http.post(
                f"{self._search_endpoint}/rest/search/v2/token",
                headers=_headers(credentials.api_key),
                json=body,
            )
        except httpx.TransportError as e:
            raise SearchBackendUnreachableError("token", e) from e

        if not response.is_success:
            logger.error("Token request failed with status %s", response.status_code)
            return None
        try:
            token = response.json().get("token")
        except (ValueError, AttributeError):
            logger.error("Token response is not a JSON object")
            return None
        return str(token) if token else None

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
    ) -> AnalyticsOutcome:
        """検索イベントをアナリティクスに送信する。

        Args:
            credentials: リクエスト単位の認証情報
            result_set: 検索結果(searchUid、件数、応答時間を送る)
            query: 検索クエリ
            advanced_query: 絞り込み条件
            visitor_id: ビジターID
            token: 検索トークン
            referrer: リファラー(originLevel3)
            channel_context: チャンネル名。空でなければcustomDataに含める。
            username: Slackユーザー名

        Returns:
            送信結果
        """
        body: dict[str, Any] = {
            **self._analytics_base(referrer),
            "userDisplayName": username,
            "searchQueryUid": result_set.search_uid,
            "queryText": query,
            "actionCause": "searchboxSubmit",
            "actionType": "search box",
            "advancedQuery": advanced_query,
            "numberOfResults": result_set.total_count,
            "responseTime": result_set.duration,
        }
        if channel_context:
            body["customData"] = {"context_channel": channel_context}
        return await self._post_analytics("search", credentials, visitor_id, token, body)

    async def record_open(
        self,
        credentials: TenantCredentials,
        params: TrackingParams,
    ) -> AnalyticsOutcome:
        """ドキュメントを開いた(クリック)イベントをアナリティクスに送信する。"""
        body: dict[str, Any] = {
            **self._analytics_base(params.ref),
            "userDisplayName": params.visitor,
            "searchQueryUid": params.search_uid,
            "documentUri": params.url,
            "documentUriHash": params.urihash,
            "documentPosition": params.position,
            "sourceName": params.source,
            "actionCause": "documentOpen",
            "documentTitle": params.title,
            "documentUrl": params.url,
        }
        if params.ch:
            body["customData"] = {"context_channel": params.ch}
        return await self._post_analytics("click", credentials, params.visitor, params.token, body)

    def _analytics_base(self, referrer: str) -> dict[str, Any]:
        return {
            "language": "en",
            "userAgent": USER_AGENT,
            "originLevel1": self._settings.search_hub,
            "originLevel2": self._settings.search_tab,
            "originLevel3": referrer,
            "queryPipeline": self._settings.search_pipeline,
        }

    async def _post_analytics(
        self,
        event: str,
        credentials: TenantCredentials,
        visitor_id: str,
        token: str,
        body: dict[str, Any],
    ) -> AnalyticsOutcome:
        try:
            response = await self._http.post(
                f"{self._analytics_endpoint}/rest/ua/v15/analytics/{event}",
                params={
                    "access_token": token,
                    "prioritizeVisitorParameter": "true",
                    "org": credentials.org_id,
                    "visitor": visitor_id,
                },
                headers=_headers(token),
                json=body,
            )
        except httpx.HTTPError as e:
            return AnalyticsOutcome.failure(f"{event} analytics transport error: {e}")

        if not response.is_success:
            return AnalyticsOutcome.failure(
                f"{event} analytics rejected", status_code=response.status_code
            )
        return AnalyticsOutcome.success(response.status_code)


def _headers(bearer: str) -> dict[str, str]:
    return {
        "accept": "application/json",
        "Authorization": f"Bearer {bearer}",
    }
