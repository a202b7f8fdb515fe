"""
SlackBot実装の単体テスト。

SlackBotプロトコルの実装をテストする。
"""

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.errors import SlackApiError

if TYPE_CHECKING:
    from src.slack.app import SlackBotImpl


@pytest.fixture
def mock_web_client() -> MagicMock:
    """モックされたSlack WebClientを返す。"""
    client = MagicMock()
    client.chat_postMessage = AsyncMock(return_value={"ts": "1234567890.123456"})
    client.users_info = AsyncMock(
        return_value={"user": {"id": "U1", "profile": {"email": "ann@example.com"}}}
    )
    client.views_publish = AsyncMock()
    client.views_open = AsyncMock()
    client.views_update = AsyncMock()
    return client


@pytest.fixture
def slack_bot(mock_web_client: MagicMock) -> "SlackBotImpl":
    """テスト用のSlackBotImplインスタンスを返す。"""
    from src.slack.app import SlackBotImpl

    return SlackBotImpl(app=MagicMock(), web_client=mock_web_client)


class TestSlackBotProtocol:
    """SlackBotプロトコルの型チェックテスト。"""

    def test_slack_bot_impl_implements_protocol(self, slack_bot: "SlackBotImpl") -> None:
        """SlackBotImplがSlackBotプロトコルを実装していることを検証。"""
        from src.slack.app import SlackBot

        for name in ("start", "stop", "get_user_email", "publish_home", "open_modal", "update_modal", "post_message"):
            assert hasattr(slack_bot, name)

        bot: SlackBot = slack_bot
        assert bot is not None


class TestSlackBotImplStart:
    """startメソッドのテスト。"""

    @pytest.mark.asyncio
    async def test_start_without_app_token_raises(self, slack_bot: "SlackBotImpl") -> None:
        """app_tokenがない場合はValueErrorが発生することを検証。"""
        with pytest.raises(ValueError, match="app_token"):
            await slack_bot.start()


class TestSlackBotImplUsers:
    """get_user_emailメソッドのテスト。"""

    @pytest.mark.asyncio
    async def test_returns_profile_email(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """プロフィールのメールアドレスを返すことを検証。"""
        assert await slack_bot.get_user_email("U1") == "ann@example.com"
        mock_web_client.users_info.assert_called_once_with(user="U1")

    @pytest.mark.asyncio
    async def test_missing_email_returns_empty(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """メールアドレスがない場合は空文字を返すことを検証。"""
        mock_web_client.users_info = AsyncMock(return_value={"user": {"id": "U1"}})

        assert await slack_bot.get_user_email("U1") == ""


class TestSlackBotImplViews:
    """ビュー操作のテスト。"""

    @pytest.mark.asyncio
    async def test_publish_home(self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock) -> None:
        """App Homeビューを公開できることを検証。"""
        view = {"type": "home", "blocks": []}

        await slack_bot.publish_home("U1", view)

        mock_web_client.views_publish.assert_called_once_with(user_id="U1", view=view)

    @pytest.mark.asyncio
    async def test_open_modal(self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock) -> None:
        """モーダルを開けることを検証。"""
        view = {"type": "modal", "blocks": []}

        await slack_bot.open_modal("trigger-1", view)

        mock_web_client.views_open.assert_called_once_with(trigger_id="trigger-1", view=view)

    @pytest.mark.asyncio
    async def test_update_modal_passes_hash(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """モーダル更新時にビューIDとハッシュを渡すことを検証。"""
        view = {"type": "modal", "blocks": []}

        assert await slack_bot.update_modal("V1", "hash-1", view) is True

        mock_web_client.views_update.assert_called_once_with(view_id="V1", hash="hash-1", view=view)

    @pytest.mark.asyncio
    async def test_update_modal_with_stale_hash_is_skipped(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """ハッシュが古い場合は再試行せずFalseを返すことを検証。"""
        mock_web_client.views_update = AsyncMock(
            side_effect=SlackApiError("conflict", {"ok": False, "error": "hash_conflict"})
        )

        assert await slack_bot.update_modal("V1", "old-hash", {"type": "modal"}) is False
        mock_web_client.views_update.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_modal_other_errors_propagate(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """ハッシュ以外のAPIエラーは伝播することを検証。"""
        mock_web_client.views_update = AsyncMock(
            side_effect=SlackApiError("not found", {"ok": False, "error": "not_found"})
        )

        with pytest.raises(SlackApiError):
            await slack_bot.update_modal("V1", "hash-1", {"type": "modal"})


class TestSlackBotImplPostMessage:
    """post_messageメソッドのテスト。"""

    @pytest.mark.asyncio
    async def test_post_message_in_thread(
        self, slack_bot: "SlackBotImpl", mock_web_client: MagicMock
    ) -> None:
        """スレッドにブロック付きメッセージを送信できることを検証。"""
        blocks = [{"type": "divider"}]

        result = await slack_bot.post_message("C1", "text", blocks, thread_ts="111.222")

        mock_web_client.chat_postMessage.assert_called_once_with(
            channel="C1",
            text="text",
            blocks=blocks,
            thread_ts="111.222",
            unfurl_links=False,
            unfurl_media=False,
        )
        assert result == "1234567890.123456"
