"""
Slack API操作モジュール。

検索UIが使うSlack Web API呼び出しをSlackBotプロトコルとしてまとめる:
- views.publish / views.open / views.update (App Homeとモーダル)
- chat.postMessage (結果のスレッドへの添付)
- users.info (検索トークン発行に使うメールアドレス)

ハンドラはこのプロトコルにのみ依存し、テストではモックに差し替える。
"""

import logging
from typing import Any, Protocol

from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

logger = logging.getLogger(__name__)

STALE_VIEW_ERROR = "hash_conflict"


class SlackBot(Protocol):
    """検索UIが必要とするSlack操作。"""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def get_user_email(self, user_id: str) -> str:
        """ユーザーのメールアドレスを返す。取得できない場合は空文字。"""
        ...

    async def publish_home(self, user_id: str, view: dict[str, Any]) -> None: ...

    async def open_modal(self, trigger_id: str, view: dict[str, Any]) -> None: ...

    async def update_modal(self, view_id: str, view_hash: str, view: dict[str, Any]) -> bool:
        """モーダルを更新する。ビューが古くなっていた場合はFalse。"""
        ...

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]],
        thread_ts: str | None = None,
    ) -> str:
        """メッセージを送信し、そのタイムスタンプを返す。"""
        ...


class SlackBotImpl:
    """slack-bolt/slack-sdkによるSlackBotの実装。

    イベントはSocket Mode経由で受信し、Web APIの呼び出しは
    AsyncWebClientで行う。

    Attributes:
        _app: ハンドラ登録済みのAsyncApp
        _web_client: Web APIクライアント
        _app_token: Socket Mode用のアプリトークン(xapp-)
        _handler: 起動後のSocket Modeハンドラ
    """

    def __init__(
        self,
        app: AsyncApp,
        web_client: AsyncWebClient,
        app_token: str | None = None,
    ) -> None:
        self._app = app
        self._web_client = web_client
        self._app_token = app_token
        self._handler: AsyncSocketModeHandler | None = None

    async def start(self) -> None:
        """Socket Modeで接続し、切断されるまで待機する。

        Raises:
            ValueError: アプリトークンが未設定の場合
        """
        if not self._app_token:
            msg = "app_token is required for Socket Mode"
            raise ValueError(msg)

        self._handler = AsyncSocketModeHandler(app=self._app, app_token=self._app_token)
        logger.info("Connecting to Slack over Socket Mode")
        await self._handler.start_async()

    async def stop(self) -> None:
        if self._handler is not None:
            await self._handler.close_async()
            self._handler = None
            logger.info("Socket Mode connection closed")

    async def get_user_email(self, user_id: str) -> str:
        """users:read.email スコープが必要。"""
        response = await self._web_client.users_info(user=user_id)
        profile = (response.get("user") or {}).get("profile") or {}
        email: str = profile.get("email", "")
        if not email:
            logger.warning("No email in profile for user %s", user_id)
        return email

    async def publish_home(self, user_id: str, view: dict[str, Any]) -> None:
        await self._web_client.views_publish(user_id=user_id, view=view)

    async def open_modal(self, trigger_id: str, view: dict[str, Any]) -> None:
        await self._web_client.views_open(trigger_id=trigger_id, view=view)

    async def update_modal(self, view_id: str, view_hash: str, view: dict[str, Any]) -> bool:
        """同じビューIDのままモーダルを置き換える。

        hashが古い(他の更新が先に適用された)場合は再試行せずFalseを返す。
        それ以外のAPIエラーはそのまま伝播する。
        """
        try:
            await self._web_client.views_update(view_id=view_id, hash=view_hash, view=view)
        except SlackApiError as e:
            if e.response.get("error") != STALE_VIEW_ERROR:
                raise
            logger.warning("Modal %s changed since it was rendered, update skipped", view_id)
            return False
        return True

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]],
        thread_ts: str | None = None,
    ) -> str:
        """ブロック付きメッセージを送信する。

        リンクの展開は行わない(結果のOpenボタンが本文になるため)。

        Args:
            channel: 送信先チャンネルID
            text: 通知用のフォールバックテキスト
            blocks: Block Kitブロック
            thread_ts: 返信先スレッド。Noneの場合はチャンネルに直接投稿する。
        """
        response = await self._web_client.chat_postMessage(
            channel=channel,
            text=text,
            blocks=blocks,
            thread_ts=thread_ts,
            unfurl_links=False,
            unfurl_media=False,
        )
        return str(response["ts"])
