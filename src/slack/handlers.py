"""
インタラクションルーターモジュール。

Slackのインタラクションを検索オーケストレーターとレンダラーに振り分ける:

| トリガー                           | 結果                                   |
|------------------------------------|----------------------------------------|
| クイック検索スラッシュコマンド     | チャンネルへのコンパクトな返信         |
| app_home_opened                    | App Homeに空の検索ボックスを表示       |
| App Homeの検索ボックス送信         | App Homeを再公開                       |
| モーダルの検索ボックス/ファセット  | モーダルをその場で更新(ビューハッシュ) |
| メッセージショートカット/モーダルコマンド | 新しいモーダルを開く            |
| openDocumentアクション             | アナリティクスにオープンイベントを送信 |
| attachToMessageアクション          | 元のスレッドに結果を投稿               |

すべてのハンドラは最初にackを返す。ack後の処理はベストエフォートで、
失敗はログに記録して再送出しない。
"""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from slack_bolt.async_app import AsyncApp

from src.config.settings import Settings
from src.search.facets import build_advanced_query
from src.search.models import ResultSet, TenantCredentials, TrackingParams
from src.search.orchestrator import SearchOrchestrator
from src.search.session import SessionContext, Surface, ViewMode, decode
from src.search.token_cache import visitor_id_for
from src.slack.app import SlackBot
from src.slack.blocks import (
    ATTACH_ACTION_ID,
    FACET_ACTION_ID,
    FACET_BLOCK_ID,
    HOME_SEARCH_ACTION_ID,
    MODAL_SEARCH_ACTION_ID,
    OPEN_ACTION_ID,
    SEARCH_BLOCK_ID,
    RenderOptions,
    ResultRenderer,
    build_attachment_message,
)

logger = logging.getLogger(__name__)

# 型エイリアス
AckFunction = Callable[..., Awaitable[None]]
RespondFunction = Callable[..., Awaitable[Any]]

SHORTCUT_CALLBACK_PATTERN = re.compile(r".*short-modal")
QUICK_SEARCH_EMPTY_QUERY = "empty query"
MODAL_EMPTY_QUERY = " "
FALLBACK_USERNAME = "John Doe"


def selected_facets_from_state(view: dict[str, Any]) -> list[str]:
    """ビューで選択中のファセットの値を返す。"""
    values = (view.get("state") or {}).get("values") or {}
    facet_state = (values.get(FACET_BLOCK_ID) or {}).get(FACET_ACTION_ID) or {}
    return [option["value"] for option in facet_state.get("selected_options") or []]


def query_from_state(view: dict[str, Any]) -> str:
    """ビューの検索ボックスに入力された文字列を返す。"""
    values = (view.get("state") or {}).get("values") or {}
    search_state = values.get(SEARCH_BLOCK_ID) or {}
    for action_id in (MODAL_SEARCH_ACTION_ID, HOME_SEARCH_ACTION_ID):
        if action_id in search_state:
            return search_state[action_id].get("value") or ""
    return ""


def team_id_from_body(body: dict[str, Any]) -> str:
    team = body.get("team")
    if isinstance(team, dict) and team.get("id"):
        return str(team["id"])
    return str(body.get("team_id") or (body.get("user") or {}).get("team_id") or "")


class InteractionRouter:
    """Slackのインタラクションを検索セッションの状態遷移に沿って処理する。

    Attributes:
        _settings: アプリケーション設定
        _slack_bot: Slack API操作
        _orchestrator: 検索オーケストレーター
        _renderer: 検索結果レンダラー
        _defaults: デフォルトのテナント認証情報
    """

    def __init__(
        self,
        settings: Settings,
        slack_bot: SlackBot,
        orchestrator: SearchOrchestrator,
        renderer: ResultRenderer,
    ) -> None:
        """InteractionRouterを初期化する。

        Args:
            settings: アプリケーション設定
            slack_bot: Slack API操作
            orchestrator: 検索オーケストレーター
            renderer: 検索結果レンダラー
        """
        self._settings = settings
        self._slack_bot = slack_bot
        self._orchestrator = orchestrator
        self._renderer = renderer
        self._defaults = TenantCredentials(
            org_id=settings.search_org_id,
            api_key=settings.search_api_key,
        )

    def register(self, app: AsyncApp) -> None:
        """すべてのハンドラをboltアプリに登録する。

        Args:
            app: 登録先のAsyncApp
        """
        app.command(self._settings.quick_search_command)(self.handle_quick_search)
        app.command(self._settings.modal_search_command)(self.handle_modal_command)
        app.event("app_home_opened")(self.handle_app_home_opened)
        app.action(HOME_SEARCH_ACTION_ID)(self.handle_home_search)
        app.action(MODAL_SEARCH_ACTION_ID)(self.handle_modal_search)
        app.action(FACET_ACTION_ID)(self.handle_facet_change)
        app.action(OPEN_ACTION_ID)(self.handle_open_document)
        app.action(ATTACH_ACTION_ID)(self.handle_attach_to_message)
        app.shortcut({"type": "message_action", "callback_id": SHORTCUT_CALLBACK_PATTERN})(
            self.handle_message_shortcut
        )
        logger.info("Interaction handlers registered")

    # ------------------------------------------------------------------
    # スラッシュコマンド
    # ------------------------------------------------------------------

    async def handle_quick_search(
        self,
        ack: AckFunction,
        command: dict[str, Any],
        respond: RespondFunction,
    ) -> None:
        """クイック検索コマンドを処理する。

        呼び出し元チャンネルにコンパクトな結果を返信する。

        Args:
            ack: 受信確認用の関数
            command: スラッシュコマンドのペイロード
            respond: 返信用の関数
        """
        await ack()

        query = command.get("text") or QUICK_SEARCH_EMPTY_QUERY
        user_id = command.get("user_id", "")
        username = command.get("user_name") or user_id
        logger.info("Received quick search command", extra={"user_id": user_id, "query": query})

        try:
            # チャンネルIDは保持しないため、返信に添付ボタンは出ない
            session = SessionContext(
                channel_name=command.get("channel_name", ""),
                user_id=user_id,
            )
            session = self._apply_team_override(session, command.get("team_id", ""))
            page_size = self._page_size(Surface.CHAT)
            session, result_set = await self._search(
                session, user_id, username, query, "", page_size
            )
            blocks = self._renderer.render_chat_reply(
                query,
                username,
                page_size,
                result_set,
                self._render_options(session, user_id, Surface.CHAT),
            )
            await respond(
                text=f"Search results for: {query}",
                blocks=blocks,
                unfurl_links=False,
                unfurl_media=False,
            )
        except Exception:
            logger.exception("Quick search failed for user %s", user_id)

    async def handle_modal_command(
        self,
        ack: AckFunction,
        command: dict[str, Any],
    ) -> None:
        """モーダル検索コマンドを処理する。

        呼び出し元チャンネルに紐づく検索モーダルを開く。

        Args:
            ack: 受信確認用の関数
            command: スラッシュコマンドのペイロード
        """
        await ack()

        user_id = command.get("user_id", "")
        logger.info("Received modal search command", extra={"user_id": user_id})
        try:
            session = SessionContext.for_channel(
                channel_id=command.get("channel_id", ""),
                channel_name=command.get("channel_name", ""),
                user_id=user_id,
                credentials=self._team_override(command.get("team_id", "")),
            )
            await self._show(
                surface=Surface.MODAL,
                mode=ViewMode.OPEN,
                session=session,
                user_id=user_id,
                username=command.get("user_name") or FALLBACK_USERNAME,
                query=command.get("text") or MODAL_EMPTY_QUERY,
                selected_facets=[],
                trigger_id=command.get("trigger_id", ""),
            )
        except Exception:
            logger.exception("Modal search command failed for user %s", user_id)

    # ------------------------------------------------------------------
    # ショートカット
    # ------------------------------------------------------------------

    async def handle_message_shortcut(
        self,
        ack: AckFunction,
        shortcut: dict[str, Any],
    ) -> None:
        """メッセージショートカットを処理する。

        メッセージ本文で検索し、結果を新しいモーダルに表示する。

        Args:
            ack: 受信確認用の関数
            shortcut: ショートカットのペイロード
        """
        await ack()

        user = shortcut.get("user") or {}
        user_id = user.get("id", "")
        channel = shortcut.get("channel") or {}
        logger.info("Received message shortcut", extra={"user_id": user_id})
        try:
            session = SessionContext.for_channel(
                channel_id=channel.get("id", ""),
                channel_name=channel.get("name", ""),
                user_id=user_id,
                message_id=shortcut.get("message_ts", ""),
                credentials=self._team_override(team_id_from_body(shortcut)),
            )
            await self._show(
                surface=Surface.MODAL,
                mode=ViewMode.OPEN,
                session=session,
                user_id=user_id,
                username=user.get("username") or FALLBACK_USERNAME,
                query=(shortcut.get("message") or {}).get("text") or MODAL_EMPTY_QUERY,
                selected_facets=[],
                trigger_id=shortcut.get("trigger_id", ""),
            )
        except Exception:
            logger.exception("Message shortcut failed for user %s", user_id)

    # ------------------------------------------------------------------
    # App Home
    # ------------------------------------------------------------------

    async def handle_app_home_opened(self, event: dict[str, Any], body: dict[str, Any]) -> None:
        """App Homeに空の検索ボックスを公開する。

        Args:
            event: app_home_openedイベント
            body: リクエストボディ(チームIDの取得に使う)
        """
        user_id = event.get("user", "")
        try:
            session = SessionContext.for_home(self._team_override(team_id_from_body(body)))
            blocks = self._renderer.render_view(
                HOME_SEARCH_ACTION_ID, "", None, RenderOptions()
            )
            await self._slack_bot.publish_home(
                user_id, self._renderer.home_view(blocks, session.encode())
            )
        except Exception:
            logger.exception("Failed to publish home view for user %s", user_id)

    # ------------------------------------------------------------------
    # ビューのアクション
    # ------------------------------------------------------------------

    async def handle_home_search(
        self,
        ack: AckFunction,
        action: dict[str, Any],
        body: dict[str, Any],
    ) -> None:
        """App Homeの検索ボックス送信。"""
        await ack()
        await self._refresh_view(
            body,
            Surface.HOME,
            query=action.get("value") or "",
            selected_facets=selected_facets_from_state(body.get("view") or {}),
        )

    async def handle_modal_search(
        self,
        ack: AckFunction,
        action: dict[str, Any],
        body: dict[str, Any],
    ) -> None:
        """モーダルの検索ボックス送信。"""
        await ack()
        await self._refresh_view(
            body,
            Surface.MODAL,
            query=action.get("value") or "",
            selected_facets=selected_facets_from_state(body.get("view") or {}),
        )

    async def handle_facet_change(
        self,
        ack: AckFunction,
        action: dict[str, Any],
        body: dict[str, Any],
    ) -> None:
        """App Homeまたはモーダルでファセットの選択が変わった。"""
        await ack()
        view = body.get("view") or {}
        surface = Surface.HOME if view.get("type") == "home" else Surface.MODAL
        await self._refresh_view(
            body,
            surface,
            query=query_from_state(view),
            selected_facets=[o["value"] for o in action.get("selected_options") or []],
        )

    # ------------------------------------------------------------------
    # 結果のアクション
    # ------------------------------------------------------------------

    async def handle_open_document(
        self,
        ack: AckFunction,
        action: dict[str, Any],
        body: dict[str, Any],
    ) -> None:
        """アナリティクスにオープンイベントを記録する。

        リンク自体はボタンのurlでSlackが開くため、ここでは記録のみ行う。

        Args:
            ack: 受信確認用の関数
            action: ボタンのアクション(valueにトラッキングURL)
            body: リクエストボディ
        """
        await ack()
        try:
            params = TrackingParams.from_url(action.get("value", ""))
            credentials = self._tracking_credentials(params, body)
            await self._orchestrator.record_open(credentials, params)
        except Exception:
            logger.exception("Failed to record document open")

    async def handle_attach_to_message(
        self,
        ack: AckFunction,
        action: dict[str, Any],
        body: dict[str, Any],
    ) -> None:
        """選択された結果をセッションのチャンネルとスレッドに投稿する。

        Args:
            ack: 受信確認用の関数
            action: ボタンのアクション(valueにトラッキングURL)
            body: リクエストボディ(viewのprivate_metadataにセッション)
        """
        await ack()
        try:
            session = decode((body.get("view") or {}).get("private_metadata"))
            if not session.can_attach:
                logger.warning(
                    "Attach requested without a channel in session",
                    extra={"user_id": session.user_id},
                )
                return

            tracking_url = action.get("value", "")
            params = TrackingParams.from_url(tracking_url)
            await self._slack_bot.post_message(
                channel=session.channel_id,
                text=f":page_facing_up: {params.title}",
                blocks=build_attachment_message(params, tracking_url),
                thread_ts=session.message_id or None,
            )
        except Exception:
            logger.exception("Failed to attach result to message")

    # ------------------------------------------------------------------
    # 内部処理
    # ------------------------------------------------------------------

    async def _refresh_view(
        self,
        body: dict[str, Any],
        surface: Surface,
        query: str,
        selected_facets: list[str],
    ) -> None:
        user = body.get("user") or {}
        user_id = user.get("id", "")
        view = body.get("view") or {}
        try:
            await self._show(
                surface=surface,
                mode=ViewMode.UPDATE,
                session=decode(view.get("private_metadata")),
                user_id=user_id,
                username=user.get("name") or user.get("username") or user_id,
                query=query,
                selected_facets=selected_facets,
                view_id=view.get("id", ""),
                view_hash=view.get("hash", ""),
            )
        except Exception:
            logger.exception("Failed to refresh %s view for user %s", surface.value, user_id)

    async def _show(
        self,
        surface: Surface,
        mode: ViewMode,
        session: SessionContext,
        user_id: str,
        username: str,
        query: str,
        selected_facets: list[str],
        trigger_id: str = "",
        view_id: str = "",
        view_hash: str = "",
    ) -> None:
        """検索して描画し、App Homeの公開またはモーダルのオープン/更新を行う。"""
        advanced_query = build_advanced_query(selected_facets, self._settings.facet_fields)
        action_id = HOME_SEARCH_ACTION_ID if surface is Surface.HOME else MODAL_SEARCH_ACTION_ID
        page_size = self._page_size(surface)

        session, result_set = await self._search(
            session, user_id, username, query, advanced_query, page_size
        )
        options = self._render_options(session, user_id, surface)
        blocks = self._renderer.render_view(action_id, query, result_set, options, selected_facets)
        metadata = session.encode()

        if surface is Surface.HOME:
            await self._slack_bot.publish_home(user_id, self._renderer.home_view(blocks, metadata))
        elif mode is ViewMode.OPEN:
            await self._slack_bot.open_modal(trigger_id, self._renderer.modal_view(blocks, metadata))
        else:
            await self._slack_bot.update_modal(
                view_id, view_hash, self._renderer.modal_view(blocks, metadata)
            )

    async def _search(
        self,
        session: SessionContext,
        user_id: str,
        username: str,
        query: str,
        advanced_query: str,
        page_size: int,
    ) -> tuple[SessionContext, ResultSet]:
        visitor_id = visitor_id_for(user_id)
        credentials = session.credentials(self._defaults)
        if not session.search_token:
            email = await self._user_email(user_id)
            token = await self._orchestrator.ensure_token(visitor_id, email, credentials)
            session = session.with_token(token)

        result_set = await self._orchestrator.run(
            session=session,
            credentials=credentials,
            username=username,
            visitor_id=visitor_id,
            query=query,
            advanced_query=advanced_query,
            page_size=page_size,
        )
        return session, result_set

    async def _user_email(self, user_id: str) -> str:
        try:
            return await self._slack_bot.get_user_email(user_id)
        except Exception:
            logger.exception("Failed to look up email for user %s", user_id)
            return ""

    def _page_size(self, surface: Surface) -> int:
        if surface is Surface.HOME:
            return self._settings.results_per_page_home
        if surface is Surface.MODAL:
            return self._settings.results_per_page_modal
        return self._settings.results_per_page_chat

    def _render_options(
        self, session: SessionContext, user_id: str, surface: Surface
    ) -> RenderOptions:
        # 添付ボタンはモーダルのみ
        return RenderOptions(
            visitor_id=visitor_id_for(user_id),
            token=session.search_token,
            referrer=session.referrer,
            channel_id=session.channel_id,
            channel_name=session.channel_name,
            add_attachment=surface is Surface.MODAL,
            org_id=session.org_id_override,
        )

    def _team_override(self, team_id: str) -> TenantCredentials | None:
        override = self._settings.tenant_overrides.get(team_id)
        if override is None:
            return None
        return TenantCredentials(org_id=override.org_id, api_key=override.api_key)

    def _apply_team_override(self, session: SessionContext, team_id: str) -> SessionContext:
        override = self._team_override(team_id)
        if override is None:
            return session
        return session.model_copy(
            update={"api_key_override": override.api_key, "org_id_override": override.org_id}
        )

    def _tracking_credentials(
        self, params: TrackingParams, body: dict[str, Any]
    ) -> TenantCredentials:
        view = body.get("view") or {}
        credentials = decode(view.get("private_metadata")).credentials(
            self._team_override(team_id_from_body(body)) or self._defaults
        )
        if params.org:
            credentials = TenantCredentials(org_id=params.org, api_key=credentials.api_key)
        return credentials
