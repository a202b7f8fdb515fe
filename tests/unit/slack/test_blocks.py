"""
Block Kit検索結果レンダラーの単体テスト。
"""

from typing import Any

import pytest
from src.config.settings import Settings
from src.search.models import Facet, FacetValue, Highlight, ResultSet, SearchResult, TrackingParams
from src.slack.blocks import (
    ATTACH_ACTION_ID,
    FACET_ACTION_ID,
    HOME_SEARCH_ACTION_ID,
    NO_RESULTS_TEXT,
    OPEN_ACTION_ID,
    RenderOptions,
    ResultRenderer,
    apply_highlights,
    build_attachment_message,
    limit_length,
)


@pytest.fixture
def renderer(settings: Settings) -> ResultRenderer:
    return ResultRenderer(settings)


@pytest.fixture
def result_set(search_response: dict[str, Any]) -> ResultSet:
    return ResultSet.from_response(search_response)


def _types(blocks: list[dict[str, Any]]) -> list[str]:
    return [block["type"] for block in blocks]


def _buttons(blocks: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        element
        for block in blocks
        if block["type"] == "actions"
        for element in block["elements"]
    ]


class TestApplyHighlights:
    """apply_highlightsのテスト。"""

    def test_single_span(self) -> None:
        assert apply_highlights("Widget guide", [Highlight(offset=0, length=6)]) == "*Widget* guide"

    def test_multiple_spans_shift_by_markers(self) -> None:
        """後続の範囲は先に挿入されたマーカー分ずれることを検証。"""
        spans = [Highlight(offset=4, length=1), Highlight(offset=0, length=1)]

        assert apply_highlights("a b c", spans) == "*a* b *c*"

    def test_no_spans(self) -> None:
        assert apply_highlights("plain", []) == "plain"


class TestLimitLength:
    """limit_lengthのテスト。"""

    def test_short_text_unchanged(self) -> None:
        assert limit_length("Search", 25) == "Search"

    def test_long_text_truncated(self) -> None:
        assert limit_length("x" * 30, 25) == "x" * 21 + "..."


class TestRenderResults:
    """ResultRenderer.render_resultsのテスト。"""

    def test_no_results(self, renderer: ResultRenderer) -> None:
        """0件の場合は結果なしのセクションだけになることを検証。"""
        blocks = renderer.render_results(ResultSet.empty(), RenderOptions())

        assert blocks == [{"type": "section", "text": {"type": "mrkdwn", "text": NO_RESULTS_TEXT}}]

    def test_count_line_and_result_blocks(
        self, renderer: ResultRenderer, result_set: ResultSet
    ) -> None:
        """件数行と結果ごとのブロックがランキング順に並ぶことを検証。"""
        blocks = renderer.render_results(result_set, RenderOptions())

        assert blocks[0]["elements"][0]["text"] == "Result 1-2 of 42"
        # 1件目: タイトル、アクション、抜粋、表示フィールド、区切り線
        # 2件目: タイトル、アクション、区切り線
        assert _types(blocks[1:]) == [
            "section", "actions", "section", "context", "divider",
            "section", "actions", "divider",
        ]
        assert blocks[1]["text"]["text"] == ":page_facing_up: *Widget* guide"
        assert blocks[3]["text"]["text"] == "How to build *widgets*"
        assert blocks[4]["elements"][0]["text"] == "Author: Ann"

    def test_open_button_carries_tracking_url(
        self, renderer: ResultRenderer, result_set: ResultSet
    ) -> None:
        """Openボタンが結果へのリンクとトラッキングURLを持つことを検証。"""
        options = RenderOptions(visitor_id="1U", token="tok", referrer="https://slack.com/general", channel_name="general")

        button = _buttons(renderer.render_results(result_set, options))[0]

        assert button["action_id"] == OPEN_ACTION_ID
        assert button["url"] == "https://docs.example.com/widgets"
        assert button["value"].startswith("https://bot.example.com/open?")
        params = TrackingParams.from_url(button["value"])
        assert params.url == "https://docs.example.com/widgets"
        assert params.position == 1
        assert params.urihash == "hash1"
        assert params.search_uid == "uid-123"
        assert params.visitor == "1U"
        assert params.ch == "general"

    def test_attach_button_only_for_channel(
        self, renderer: ResultRenderer, result_set: ResultSet
    ) -> None:
        """チャンネルがあれば全結果に添付ボタンが付くことを検証。"""
        options = RenderOptions(channel_id="C1", channel_name="general", add_attachment=True)

        action_ids = [b["action_id"] for b in _buttons(renderer.render_results(result_set, options))]

        assert action_ids.count(ATTACH_ACTION_ID) == 2

    @pytest.mark.parametrize(
        "options",
        [
            RenderOptions(channel_id="D1", channel_name="directmessage", add_attachment=True),
            RenderOptions(channel_id="", channel_name="App Home", add_attachment=True),
            RenderOptions(channel_id="C1", channel_name="general", add_attachment=False),
        ],
    )
    def test_attach_button_suppressed(
        self, renderer: ResultRenderer, result_set: ResultSet, options: RenderOptions
    ) -> None:
        """DMやApp Home、要求されていない場合は添付ボタンを出さないことを検証。"""
        action_ids = [b["action_id"] for b in _buttons(renderer.render_results(result_set, options))]

        assert ATTACH_ACTION_ID not in action_ids

    def test_image_replaces_excerpt_block(self, renderer: ResultRenderer) -> None:
        """画像がある結果は抜粋を画像の横に表示することを検証。"""
        result = SearchResult(
            title="Pic",
            excerpt="An excerpt",
            click_uri="https://x",
            raw={"thumbnail": "a.png", "hasthumbnail": "1"},
        )

        blocks = renderer.render_result(result, 1, "uid", RenderOptions())

        assert _types(blocks) == ["section", "actions", "divider"]
        assert blocks[0]["accessory"]["image_url"] == "https://img.example.com/a.png"
        assert "An excerpt" in blocks[0]["text"]["text"]


class TestFacetPicker:
    """ResultRenderer.build_facet_pickerのテスト。"""

    def test_groups_follow_configured_order(self, renderer: ResultRenderer) -> None:
        """グループが設定順に並び、選択状態を保持することを検証。"""
        facets = [
            Facet(field="source", values=[FacetValue(value="Docs", number_of_results=3)]),
            Facet(field="filetype", values=[FacetValue(value="pdf", number_of_results=1)]),
        ]

        picker = renderer.build_facet_picker(facets, selected=["source$Docs"])

        assert picker is not None
        accessory = picker["accessory"]
        assert accessory["action_id"] == FACET_ACTION_ID
        assert [g["label"]["text"] for g in accessory["option_groups"]] == ["File type", "Source"]
        assert accessory["initial_options"][0]["value"] == "source$Docs"

    def test_none_without_values(self, renderer: ResultRenderer) -> None:
        assert renderer.build_facet_picker([Facet(field="filetype", values=[])]) is None

    def test_skips_values_too_long_for_slack(self, renderer: ResultRenderer) -> None:
        """値が150文字を超える選択肢は除外し、他の選択肢は残すことを検証。"""
        long_value = "x" * 150
        facets = [
            Facet(
                field="source",
                values=[
                    FacetValue(value=long_value, number_of_results=1),
                    FacetValue(value="Docs", number_of_results=3),
                ],
            ),
        ]

        picker = renderer.build_facet_picker(facets)

        assert picker is not None
        options = picker["accessory"]["option_groups"][0]["options"]
        assert [o["value"] for o in options] == ["source$Docs"]
        assert all(len(o["value"]) <= 150 for o in options)

    def test_none_when_every_value_is_too_long(self, renderer: ResultRenderer) -> None:
        """全選択肢が長すぎる場合はメニュー自体を出さないことを検証。"""
        facets = [Facet(field="filetype", values=[FacetValue(value="y" * 200, number_of_results=1)])]

        assert renderer.build_facet_picker(facets) is None


class TestViews:
    """App Home、モーダル、チャットのレイアウトのテスト。"""

    def test_empty_home_view_has_only_search_box(self, renderer: ResultRenderer) -> None:
        blocks = renderer.render_view(HOME_SEARCH_ACTION_ID, "", None, RenderOptions())

        assert len(blocks) == 1
        assert blocks[0]["element"]["action_id"] == HOME_SEARCH_ACTION_ID

    def test_view_with_results(self, renderer: ResultRenderer, result_set: ResultSet) -> None:
        blocks = renderer.render_view(HOME_SEARCH_ACTION_ID, "widgets", result_set, RenderOptions())

        assert blocks[0]["element"]["initial_value"] == "widgets"
        assert blocks[1]["accessory"]["action_id"] == FACET_ACTION_ID

    def test_chat_reply_has_header(self, renderer: ResultRenderer, result_set: ResultSet) -> None:
        """チャット返信がヘッダーと検索ページへのリンクで始まることを検証。"""
        blocks = renderer.render_chat_reply("widgets", "ann", 3, result_set, RenderOptions())

        assert blocks[0]["type"] == "header"
        context = blocks[1]["elements"]
        assert context[0]["text"] == "Hey ann! Here are the 3 top results for your query: *widgets*"
        assert context[1]["text"] == "<https://docs.example.com/search#q=widgets|Full search page>"

    def test_modal_view(self, renderer: ResultRenderer) -> None:
        view = renderer.modal_view([], "v2;C1;;;;;;")

        assert view["type"] == "modal"
        assert view["title"]["text"] == "Search"
        assert view["private_metadata"] == "v2;C1;;;;;;"


class TestAttachmentMessage:
    """build_attachment_messageのテスト。"""

    def test_contains_title_and_open_button(self) -> None:
        params = TrackingParams(url="https://docs.example.com/a", title="Doc A")

        blocks = build_attachment_message(params, "https://bot.example.com/open?url=x")

        assert blocks[0]["text"]["text"] == ":page_facing_up: Doc A"
        button = blocks[1]["elements"][0]
        assert button["url"] == "https://docs.example.com/a"
        assert button["value"] == "https://bot.example.com/open?url=x"
