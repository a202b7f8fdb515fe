"""
検索関連の型定義モジュール。

検索バックエンドとのやり取りに使う型をPydanticモデルとして実装する:
- Highlight: ハイライト範囲
- SearchResult: 1件の検索結果
- Facet / FacetValue: ファセットとその値
- ResultSet: 検索レスポンス全体
- TenantCredentials: リクエスト単位の組織ID・APIキー
- AnalyticsOutcome: アナリティクス送信の結果(ベストエフォート)
- TrackingParams: 結果を開いた時のトラッキング情報
- CachedToken: Redisに保存する検索トークンの行
"""

import logging
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Highlight(BaseModel):
    """プレーンテキスト上のハイライト範囲。

    Attributes:
        offset: 元の文字列における開始位置
        length: ハイライトする文字数
    """

    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)


class SearchResult(BaseModel):
    """検索結果1件。

    Attributes:
        title: タイトル
        excerpt: 抜粋
        click_uri: 結果を開くためのURI
        raw: インデックスのフィールド値
        title_highlights: タイトルのハイライト範囲
        excerpt_highlights: 抜粋のハイライト範囲
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    excerpt: str = ""
    click_uri: str = Field(default="", alias="clickUri")
    raw: dict[str, Any] = Field(default_factory=dict)
    title_highlights: list[Highlight] = Field(default_factory=list, alias="titleHighlights")
    excerpt_highlights: list[Highlight] = Field(default_factory=list, alias="excerptHighlights")


class FacetValue(BaseModel):
    """ファセットの値1件。"""

    model_config = ConfigDict(populate_by_name=True)

    value: str
    number_of_results: int = Field(default=0, alias="numberOfResults")


class Facet(BaseModel):
    """検索レスポンスに含まれるファセット。"""

    model_config = ConfigDict(populate_by_name=True)

    field: str
    values: list[FacetValue] = Field(default_factory=list)


class ResultSet(BaseModel):
    """検索レスポンス全体。

    Attributes:
        total_count: ヒット総数
        duration: 検索に要した時間(ミリ秒)
        search_uid: 検索実行ID(アナリティクスで使用)
        results: 返却された結果(ランキング順)
        facets: ファセット
    """

    model_config = ConfigDict(populate_by_name=True)

    total_count: int = Field(default=0, alias="totalCount")
    duration: float = 0
    search_uid: str = Field(default="", alias="searchUid")
    results: list[SearchResult] = Field(default_factory=list)
    facets: list[Facet] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "ResultSet":
        """結果0件のResultSetを返す。"""
        return cls()

    @classmethod
    def from_response(cls, body: Any) -> "ResultSet":
        """レスポンスボディからResultSetを生成する。

        ボディが欠落している、または形式が不正な場合は0件として扱う。

        Args:
            body: JSONデコード済みのレスポンスボディ

        Returns:
            ResultSet
        """
        if not isinstance(body, dict):
            return cls.empty()
        try:
            return cls.model_validate(body)
        except ValidationError as e:
            logger.warning("Malformed search response, treating as no results: %s", e)
            return cls.empty()

    @property
    def returned_count(self) -> int:
        """実際に返却された結果数を返す。"""
        return len(self.results)


class TenantCredentials(BaseModel):
    """リクエスト単位で解決される組織IDとAPIキー。

    プロセス全体の共有状態には保持せず、ハンドラから検索クライアントまで
    引数として明示的に受け渡す。
    """

    model_config = ConfigDict(frozen=True)

    org_id: str
    api_key: str


class AnalyticsOutcome(BaseModel):
    """アナリティクス送信の結果。

    失敗しても呼び出し元はログ出力のみ行い、ユーザー向けの処理は継続する。
    """

    ok: bool
    status_code: int | None = None
    error: str | None = None

    @classmethod
    def success(cls, status_code: int) -> "AnalyticsOutcome":
        return cls(ok=True, status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: int | None = None) -> "AnalyticsOutcome":
        return cls(ok=False, status_code=status_code, error=error)


class TrackingParams(BaseModel):
    """結果を開いた時にアナリティクスへ送るトラッキング情報。

    Openボタンの値とリダイレクトエンドポイントのクエリ文字列として
    URLエンコードされて往復する。

    Attributes:
        url: 遷移先URL
        urihash: 結果のコンテンツハッシュ
        position: 結果の順位(1始まり)
        title: 結果のタイトル
        visitor: ビジターID
        token: 検索トークン
        source: ソース名
        search_uid: 検索実行ID
        ref: リファラー
        ch: チャンネル名
        org: 組織ID(テナント上書き時のみ)
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str
    urihash: str = ""
    position: int = 0
    title: str = ""
    visitor: str = ""
    token: str = ""
    source: str = ""
    search_uid: str = Field(default="", alias="searchUid")
    ref: str = ""
    ch: str = ""
    org: str = ""

    def to_query(self) -> str:
        """URLエンコード済みのクエリ文字列を返す。"""
        params = {
            "url": self.url,
            "urihash": self.urihash,
            "position": str(self.position),
            "title": self.title,
            "visitor": self.visitor,
            "token": self.token,
            "source": self.source,
            "searchUid": self.search_uid,
            "ref": self.ref,
            "ch": self.ch,
        }
        if self.org:
            params["org"] = self.org
        return urlencode(params)

    @classmethod
    def from_query(cls, query: dict[str, str]) -> "TrackingParams":
        """デコード済みのクエリパラメータから生成する。

        Raises:
            ValidationError: urlが含まれない場合
        """
        data = dict(query)
        position = data.get("position", "")
        data["position"] = int(position) if position.isdigit() else 0
        return cls.model_validate(data)

    @classmethod
    def from_url(cls, url: str) -> "TrackingParams":
        """トラッキングURLからパラメータを復元する。"""
        parsed = parse_qs(urlsplit(url).query, keep_blank_values=True)
        return cls.from_query({key: values[0] for key, values in parsed.items()})


class CachedToken(BaseModel):
    """Redisに保存する検索トークンの行。

    Attributes:
        user: ビジターID
        token: 検索トークン
        expire: 発行時刻(エポック秒)。名前に反して期限ではなく発行時刻。
    """

    user: str = ""
    token: str
    expire: int

    def is_expired(self, now: float, max_age_seconds: int) -> bool:
        """発行からmax_age_secondsを超えて経過しているかを判定する。"""
        return now - self.expire > max_age_seconds
