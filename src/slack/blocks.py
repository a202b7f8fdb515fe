"""
検索結果レンダラーモジュール。

ResultSetと設定済みのファセット/表示/画像フィールドから、App Home・モーダル・
チャット返信用のBlock Kitブロックを順序どおりに組み立てる。

1件の結果につき、ランキング順に以下を出力する:
- タイトル(画像フィールドがあれば画像を付ける)
- アクション(Open、許可されていれば Attach to message)
- 抜粋(空でなく、画像を表示しない場合のみ)
- 表示フィールドのコンテキスト
- 区切り線
"""

import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel

from src.config.settings import Settings
from src.search.facets import encode_option_value
from src.search.models import Facet, Highlight, ResultSet, SearchResult, TrackingParams
from src.search.session import is_direct_message

logger = logging.getLogger(__name__)

# インタラクションハンドラと共有するブロック/アクションID
SEARCH_BLOCK_ID = "search_input"
FACET_BLOCK_ID = "facet_section"
FACET_ACTION_ID = "facet_input"
HOME_SEARCH_ACTION_ID = "home_tab_searchBox_enter"
MODAL_SEARCH_ACTION_ID = "modal_searchBox_enter"
OPEN_ACTION_ID = "openDocument"
ATTACH_ACTION_ID = "attachToMessage"

HIGHLIGHT_MARKER = "*"
NO_RESULTS_TEXT = "Sorry, no results"
MODAL_TITLE = "Search"
MODAL_TITLE_MAX_LENGTH = 25
OPTION_TEXT_MAX_LENGTH = 75
# Slackは150文字を超える選択肢の値を含むビュー全体を拒否する
OPTION_VALUE_MAX_LENGTH = 150

Block = dict[str, Any]


class RenderOptions(BaseModel):
    """リクエスト単位の描画オプション。

    Attributes:
        visitor_id: トラッキングURLに含めるビジターID
        token: トラッキングURLに含める検索トークン
        referrer: トラッキングURLに含めるリファラー
        channel_id: セッションのチャンネルID(DMとApp Homeでは空)
        channel_name: セッションのチャンネル名
        add_attachment: コンテキストが許せば "Attach to message" を表示する
        org_id: トラッキングURLに含めるテナントの組織ID(デフォルトなら空)
    """

    visitor_id: str = ""
    token: str = ""
    referrer: str = ""
    channel_id: str = ""
    channel_name: str = ""
    add_attachment: bool = False
    org_id: str = ""

    @property
    def attach_allowed(self) -> bool:
        if not self.add_attachment or not self.channel_id:
            return False
        return not is_direct_message(self.channel_id, self.channel_name)


def apply_highlights(text: str, spans: Sequence[Highlight]) -> str:
    """ハイライト範囲を強調マーカーで囲む。

    オフセットはマーカー挿入前の文字列に対する位置。1つの範囲につき
    マーカーを2つ挿入するため、後続の範囲は範囲ごとに2ずつずらす。

    Args:
        text: 対象の文字列
        spans: ハイライト範囲(offset, length)

    Returns:
        マーカーを挿入した文字列
    """
    inserted = 0
    for span in sorted(spans, key=lambda s: s.offset):
        start = span.offset + inserted
        text = text[:start] + HIGHLIGHT_MARKER + text[start:]
        end = start + span.length + 1
        text = text[:end] + HIGHLIGHT_MARKER + text[end:]
        inserted += 2
    return text


def limit_length(text: str, max_length: int) -> str:
    return text[: max_length - 4] + "..." if len(text) > max_length else text


def build_tracking_url(base_url: str, params: TrackingParams) -> str:
    """結果ごとのリダイレクト兼記録用URLを作成する。"""
    return f"{base_url}?{params.to_query()}"


def _plain(text: str) -> dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def _mrkdwn(text: str) -> dict[str, Any]:
    return {"type": "mrkdwn", "text": text}


def build_open_button(tracking_url: str, click_uri: str) -> Block:
    return {
        "type": "button",
        "text": _plain(":link: Open"),
        "value": tracking_url,
        "action_id": OPEN_ACTION_ID,
        "url": click_uri,
    }


def build_attach_button(tracking_url: str) -> Block:
    return {
        "type": "button",
        "text": _plain("Attach to message"),
        "value": tracking_url,
        "action_id": ATTACH_ACTION_ID,
    }


def build_attachment_message(params: TrackingParams, tracking_url: str) -> list[Block]:
    """結果をメッセージに添付する際にチャンネルへ投稿するブロック。

    Args:
        params: 添付する結果のトラッキングパラメータ
        tracking_url: Openボタンに持たせるトラッキングURL

    Returns:
        タイトルとOpenボタンのブロック
    """
    return [
        {"type": "section", "text": _mrkdwn(f":page_facing_up: {params.title}")},
        {"type": "actions", "elements": [build_open_button(tracking_url, params.url)]},
    ]


class ResultRenderer:
    """検索結果からBlock Kitブロックを組み立てる。

    Attributes:
        _settings: フィールド定義とURLを持つ設定
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build_search_input(self, action_id: str, query: str) -> Block:
        return {
            "type": "input",
            "dispatch_action": True,
            "block_id": SEARCH_BLOCK_ID,
            "element": {
                "type": "plain_text_input",
                "action_id": action_id,
                "placeholder": {"type": "plain_text", "text": "What are you looking for?"},
                "initial_value": query,
                "dispatch_action_config": {"trigger_actions_on": ["on_enter_pressed"]},
            },
            "label": _plain("Search for:"),
        }

    def build_facet_picker(
        self,
        facets: Sequence[Facet],
        selected: Sequence[str] = (),
    ) -> Block | None:
        """ファセットの複数選択メニューを作成する。

        選択肢のグループは設定済みファセットの順に並び、選択中の選択肢は
        選択状態のまま残る。値がSlackの上限を超える選択肢は表示しない。

        Args:
            facets: 検索応答のファセット
            selected: 選択中の選択肢の値("field$value")

        Returns:
            セクションブロック。値のあるファセットがない場合はNone。
        """
        groups: list[dict[str, Any]] = []
        initial_options: list[dict[str, Any]] = []
        for facet_field in self._settings.facet_fields:
            options = []
            for facet in facets:
                if facet.field != facet_field.field:
                    continue
                for facet_value in facet.values:
                    value = encode_option_value(facet_field.field, facet_value.value)
                    if len(value) > OPTION_VALUE_MAX_LENGTH:
                        logger.debug("Skipping facet value too long for Slack: %s", value[:40])
                        continue
                    option = {
                        "value": value,
                        "text": {
                            "type": "plain_text",
                            "text": limit_length(facet_value.value, OPTION_TEXT_MAX_LENGTH),
                        },
                    }
                    options.append(option)
                    if option["value"] in selected:
                        initial_options.append(option)
            if options:
                groups.append(
                    {"label": {"type": "plain_text", "text": facet_field.caption}, "options": options}
                )

        if not groups:
            return None

        accessory: dict[str, Any] = {
            "action_id": FACET_ACTION_ID,
            "type": "multi_static_select",
            "placeholder": {"type": "plain_text", "text": "Select items"},
            "option_groups": groups,
        }
        if initial_options:
            accessory["initial_options"] = initial_options
        return {
            "type": "section",
            "block_id": FACET_BLOCK_ID,
            "text": _mrkdwn(":file_cabinet: Filters"),
            "accessory": accessory,
        }

    def build_chat_header(self, query: str, username: str, page_size: int) -> list[Block]:
        """チャット返信の先頭に置くヘッダーとコンテキストの組。"""
        elements = [
            _mrkdwn(f"Hey {username}! Here are the {page_size} top results for your query: *{query}*")
        ]
        if self._settings.full_search_page_url:
            elements.append(
                _mrkdwn(f"<{self._settings.full_search_page_url}#q={quote(query)}|Full search page>")
            )
        return [
            {"type": "header", "text": {"type": "plain_text", "text": "Search Results"}},
            {"type": "context", "elements": elements},
        ]

    def build_result_count(self, returned: int, total: int) -> Block | None:
        if returned <= 0:
            return None
        return {"type": "context", "elements": [_mrkdwn(f"Result 1-{returned} of {total}")]}

    def render_results(self, result_set: ResultSet, options: RenderOptions) -> list[Block]:
        """件数行と結果ブロックを出力する。0件の場合は結果なしのセクションのみ。"""
        if result_set.total_count <= 0 or not result_set.results:
            return [{"type": "section", "text": _mrkdwn(NO_RESULTS_TEXT)}]

        blocks: list[Block] = []
        count = self.build_result_count(result_set.returned_count, result_set.total_count)
        if count is not None:
            blocks.append(count)
        for position, result in enumerate(result_set.results, start=1):
            blocks.extend(self.render_result(result, position, result_set.search_uid, options))
        return blocks

    def render_result(
        self,
        result: SearchResult,
        position: int,
        search_uid: str,
        options: RenderOptions,
    ) -> list[Block]:
        """1件の結果のブロックを出力する。

        Args:
            result: 検索結果
            position: 1始まりの表示順位
            search_uid: 検索応答のsearchUid(トラッキングURLに含める)
            options: 描画オプション

        Returns:
            タイトル、アクション、抜粋、表示フィールド、区切り線のブロック
        """
        title = apply_highlights(result.title, result.title_highlights)
        excerpt = apply_highlights(result.excerpt, result.excerpt_highlights)
        image_url = self._image_url(result)

        tracking = TrackingParams(
            url=result.click_uri,
            urihash=str(result.raw.get("urihash", "")),
            position=position,
            title=result.title,
            visitor=options.visitor_id,
            token=options.token,
            source=str(result.raw.get("source", "")),
            search_uid=search_uid,
            ref=options.referrer,
            ch=options.channel_name,
            org=options.org_id,
        )
        tracking_url = build_tracking_url(self._settings.open_endpoint_url, tracking)

        blocks: list[Block] = []
        if image_url:
            blocks.append(
                {
                    "type": "section",
                    "text": _mrkdwn(f":page_facing_up: {title}\n{excerpt}"),
                    "accessory": {"type": "image", "image_url": image_url, "alt_text": result.title},
                }
            )
        else:
            blocks.append({"type": "section", "text": _mrkdwn(f":page_facing_up: {title}")})

        buttons = [build_open_button(tracking_url, result.click_uri)]
        if options.attach_allowed:
            buttons.append(build_attach_button(tracking_url))
        blocks.append({"type": "actions", "elements": buttons})

        if excerpt and not image_url:
            blocks.append({"type": "section", "text": _mrkdwn(excerpt)})

        summary = [
            {"type": "plain_text", "text": f"{field.caption}: {result.raw[field.field]}"}
            for field in self._settings.display_fields
            if result.raw.get(field.field)
        ]
        if summary:
            blocks.append({"type": "context", "elements": summary})

        blocks.append({"type": "divider"})
        return blocks

    def render_view(
        self,
        search_action_id: str,
        query: str,
        result_set: ResultSet | None,
        options: RenderOptions,
        selected_facets: Sequence[str] = (),
    ) -> list[Block]:
        """App Homeまたはモーダル用のブロック(検索ボックス、ファセット、結果)。

        Args:
            search_action_id: 検索ボックスのアクションID
            query: 検索ボックスの初期値
            result_set: 検索結果。Noneの場合は検索ボックスのみ出力する。
            options: 描画オプション
            selected_facets: 選択中のファセット

        Returns:
            ビューのブロック
        """
        blocks = [self.build_search_input(search_action_id, query)]
        if result_set is None:
            return blocks
        picker = self.build_facet_picker(result_set.facets, selected_facets)
        if picker is not None:
            blocks.append(picker)
        blocks.extend(self.render_results(result_set, options))
        return blocks

    def render_chat_reply(
        self,
        query: str,
        username: str,
        page_size: int,
        result_set: ResultSet,
        options: RenderOptions,
    ) -> list[Block]:
        """クイック検索コマンドへのコンパクトな返信。"""
        return self.build_chat_header(query, username, page_size) + self.render_results(
            result_set, options
        )

    def modal_view(self, blocks: list[Block], private_metadata: str) -> dict[str, Any]:
        return {
            "type": "modal",
            "title": {"type": "plain_text", "text": limit_length(MODAL_TITLE, MODAL_TITLE_MAX_LENGTH)},
            "close": {"type": "plain_text", "text": "Close"},
            "blocks": blocks,
            "private_metadata": private_metadata,
        }

    def home_view(self, blocks: list[Block], private_metadata: str) -> dict[str, Any]:
        return {"type": "home", "blocks": blocks, "private_metadata": private_metadata}

    def _image_url(self, result: SearchResult) -> str:
        image_url = ""
        for picture in self._settings.picture_fields:
            if result.raw.get(picture.field) and result.raw.get(picture.srcfield):
                image_url = f"{picture.prefix}{result.raw[picture.field]}"
        return image_url
