"""
検索ボットの設定モジュール。

Slackトークン・Redis・検索バックエンドの接続先と、検索UIの表示内容を
環境変数(または .env)から読み込む。

ファセット・表示フィールド・画像フィールドの定義はJSON文字列として
環境変数から渡され、pydanticモデルのリストに変換される。
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FacetField(BaseModel):
    """ファセットとして公開するフィールド定義。

    Attributes:
        field: インデックス上のフィールド名(@なし)
        caption: UIに表示するラベル
    """

    field: str
    caption: str


class DisplayField(BaseModel):
    """検索結果の下に要約として表示するフィールド定義。"""

    field: str
    caption: str


class PictureField(BaseModel):
    """検索結果のサムネイル画像に使うフィールド定義。

    Attributes:
        field: 画像パスを保持するフィールド名
        srcfield: 画像が存在することを示すフィールド名(両方が存在する場合のみ表示)
        prefix: 画像URLの前に付与するプレフィックス
    """

    field: str
    srcfield: str
    prefix: str = ""


class TenantOverride(BaseModel):
    """Slackワークスペース単位の検索組織・APIキーの上書き設定。"""

    org_id: str
    api_key: str


class Settings(BaseSettings):
    """検索ボットの設定。

    Slackトークン・Redis URL・既定の検索組織とAPIキーは必須。
    欠落や形式不正は起動時に ValidationError となる。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    slack_bot_token: str = Field(
        ...,
        pattern=r"^xoxb-.+$",
        description="Slack Bot token (must start with xoxb-)",
    )
    slack_app_token: str = Field(
        ...,
        pattern=r"^xapp-.+$",
        description="Slack App token (must start with xapp-)",
    )
    redis_url: str = Field(
        ...,
        description="Redis connection URL (search token cache)",
    )
    search_endpoint: str = Field(
        default="https://platform.cloud.coveo.com",
        description="Search platform base URL",
    )
    analytics_endpoint: str = Field(
        default="https://analytics.cloud.coveo.com",
        description="Usage analytics base URL",
    )
    search_org_id: str = Field(
        ...,
        description="Default search organization ID",
    )
    search_api_key: str = Field(
        ...,
        description="Default API key (must have impersonation rights)",
    )
    search_pipeline: str = Field(default="", description="Query pipeline name")
    search_hub: str = Field(default="Slack", description="Search hub name")
    search_tab: str = Field(default="", description="Search tab name")
    full_search_page_url: str = Field(
        default="",
        description="URL of the full search page (linked from chat replies)",
    )
    facet_fields: list[FacetField] = Field(
        default_factory=list,
        description="Fields exposed as facets (JSON list)",
    )
    display_fields: list[DisplayField] = Field(
        default_factory=list,
        description="Fields summarized under each result (JSON list)",
    )
    picture_fields: list[PictureField] = Field(
        default_factory=list,
        description="Fields used as result thumbnails (JSON list)",
    )
    tenant_overrides: dict[str, TenantOverride] = Field(
        default_factory=dict,
        description="Per Slack team ID organization/API key overrides (JSON object)",
    )
    results_per_page_modal: int = Field(default=5, ge=1)
    results_per_page_home: int = Field(default=5, ge=1)
    results_per_page_chat: int = Field(default=3, ge=1)
    quick_search_command: str = Field(default="/search_for")
    modal_search_command: str = Field(default="/search_for_modal")
    open_endpoint_url: str = Field(
        default="http://localhost:3000/open",
        description="Public URL of the redirect-and-log endpoint",
    )
    web_port: int = Field(default=3000, ge=1, le=65535)
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for search/analytics HTTP calls",
    )
    log_level: str = Field(default="INFO")


@lru_cache
def get_settings() -> Settings:
    """プロセス内で共有するSettingsを返す(初回のみ環境変数を読む)。"""
    return Settings()
