"""
検索セッションコンテキストモジュール。

Slackがビューに保持してくれるのは1つの不透明な文字列(private_metadata)だけで、
インタラクションのたびにそのまま送り返される。チャンネル情報、ユーザー、
検索トークン、テナント上書きといった検索セッションはこの文字列で引き継ぐ。

シリアライズ形式(スキーマバージョン2):
    v2;channel_id;channel_name;message_id;user_id;search_token;api_key;org_id

各フィールドはパーセントエンコードするため、値に ";" が含まれても
後続フィールドがずれることはない。

後方互換:
- "v1;" で始まる文字列はエンコードなしの旧形式としてデコードする
- バージョン接頭辞がない文字列は同じ7フィールドのレガシー形式として扱う
  (空のApp Homeコンテキストがこの形式)
"""

import logging
from enum import Enum
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict

from src.search.models import TenantCredentials

logger = logging.getLogger(__name__)

SESSION_SCHEMA_VERSION = "v2"
PLAIN_SCHEMA_VERSION = "v1"
SESSION_DELIMITER = ";"

# シリアライズ時のフィールド順。並べ替え禁止、追加はスキーマバージョンの更新とともに行う。
SESSION_FIELDS = (
    "channel_id",
    "channel_name",
    "message_id",
    "user_id",
    "search_token",
    "api_key_override",
    "org_id_override",
)

APP_HOME_CHANNEL_NAME = "App Home"
DIRECT_MESSAGE_CHANNEL_NAME = "directmessage"
REFERRER_BASE_URL = "https://slack.com/"


class Surface(Enum):
    """検索結果の表示先。"""

    HOME = "home"
    MODAL = "modal"
    CHAT = "chat"


class ViewMode(Enum):
    """モーダルを新規に開くか、既存のものを更新するか。"""

    OPEN = "open"
    UPDATE = "update"


def is_direct_message(channel_id: str, channel_name: str) -> bool:
    """ダイレクトメッセージの会話かどうかを判定する。"""
    return channel_name == DIRECT_MESSAGE_CHANNEL_NAME or channel_id.startswith("D")


class SessionContext(BaseModel):
    """ビューのprivate_metadataで引き継ぐ検索セッション。

    Attributes:
        channel_id: 結果を添付するチャンネル。DMとApp Homeでは空。
        channel_name: チャンネル名(リファラーとアナリティクスのコンテキストに使う)
        message_id: 元メッセージのts(ショートカット時のみ)。添付時のthread_tsになる。
        user_id: セッションを開始したSlackユーザー
        search_token: ユーザーに発行された検索トークン
        api_key_override: テナントのAPIキー。空の場合はデフォルトを使う。
        org_id_override: テナントの組織ID。空の場合はデフォルトを使う。
    """

    model_config = ConfigDict(frozen=True)

    channel_id: str = ""
    channel_name: str = ""
    message_id: str = ""
    user_id: str = ""
    search_token: str = ""
    api_key_override: str = ""
    org_id_override: str = ""

    @classmethod
    def for_home(cls, credentials: TenantCredentials | None = None) -> "SessionContext":
        """App Homeを開いた直後の空のセッションを作成する。

        Args:
            credentials: チーム単位のテナント上書き。なければNone。

        Returns:
            チャンネル名が "App Home" のSessionContext
        """
        return cls(
            channel_name=APP_HOME_CHANNEL_NAME,
            api_key_override=credentials.api_key if credentials else "",
            org_id_override=credentials.org_id if credentials else "",
        )

    @classmethod
    def for_channel(
        cls,
        channel_id: str,
        channel_name: str,
        user_id: str,
        message_id: str = "",
        credentials: TenantCredentials | None = None,
    ) -> "SessionContext":
        """ショートカット/スラッシュコマンド用のセッションを作成する。

        DMではチャンネルIDを空にし、結果をDMへ添付できないようにする。

        Args:
            channel_id: 呼び出し元チャンネルID
            channel_name: 呼び出し元チャンネル名
            user_id: 呼び出したユーザーID
            message_id: ショートカット対象メッセージのts
            credentials: チーム単位のテナント上書き。なければNone。

        Returns:
            作成されたSessionContext
        """
        if is_direct_message(channel_id, channel_name):
            channel_id = ""
        return cls(
            channel_id=channel_id,
            channel_name=channel_name,
            message_id=message_id,
            user_id=user_id,
            api_key_override=credentials.api_key if credentials else "",
            org_id_override=credentials.org_id if credentials else "",
        )

    @property
    def can_attach(self) -> bool:
        """チャンネルがある場合のみ結果をメッセージに添付できる。"""
        return bool(self.channel_id)

    @property
    def referrer(self) -> str:
        return f"{REFERRER_BASE_URL}{self.channel_name}"

    def with_token(self, token: str) -> "SessionContext":
        return self.model_copy(update={"search_token": token})

    def credentials(self, defaults: TenantCredentials) -> TenantCredentials:
        """このリクエストで使う認証情報を解決する。

        セッションの上書き値がフィールド単位でデフォルトより優先される。

        Args:
            defaults: 上書きがない場合に使う認証情報

        Returns:
            解決済みのTenantCredentials
        """
        return TenantCredentials(
            org_id=self.org_id_override or defaults.org_id,
            api_key=self.api_key_override or defaults.api_key,
        )

    def encode(self) -> str:
        return encode(self)


def encode(session: SessionContext) -> str:
    """セッションをprivate_metadata文字列にシリアライズする。

    Args:
        session: シリアライズするセッション

    Returns:
        "v2;" で始まる、各フィールドをパーセントエンコードした文字列
    """
    values = [quote(getattr(session, name), safe="") for name in SESSION_FIELDS]
    return SESSION_DELIMITER.join([SESSION_SCHEMA_VERSION, *values])


def decode(raw: str | None) -> SessionContext:
    """private_metadata文字列からセッションを復元する。

    末尾の欠けたフィールドは空文字、余分なフィールドは無視するため、
    切り詰められた文字列や旧形式の文字列でも例外は発生しない。

    Args:
        raw: private_metadata文字列(未設定ならNoneまたは空文字)

    Returns:
        復元されたSessionContext
    """
    if not raw:
        return SessionContext()

    parts = raw.split(SESSION_DELIMITER)
    if parts[0] == SESSION_SCHEMA_VERSION:
        parts = [unquote(part) for part in parts[1:]]
    elif parts[0] == PLAIN_SCHEMA_VERSION:
        parts = parts[1:]
    else:
        logger.debug("Decoding unversioned session context")

    parts += [""] * (len(SESSION_FIELDS) - len(parts))
    return SessionContext(**dict(zip(SESSION_FIELDS, parts, strict=False)))
