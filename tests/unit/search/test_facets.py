"""
ファセット選択の単体テスト。

選択肢の値のエンコードと絞り込み条件の組み立てをテストする。
"""

from src.config.settings import FacetField
from src.search.facets import build_advanced_query, encode_option_value, parse_option_value

FACETS = [
    FacetField(field="filetype", caption="File type"),
    FacetField(field="source", caption="Source"),
]


class TestOptionValue:
    """選択肢の値のテスト。"""

    def test_encode(self) -> None:
        assert encode_option_value("filetype", "pdf") == "filetype$pdf"

    def test_parse(self) -> None:
        assert parse_option_value("filetype$pdf") == ("filetype", "pdf")

    def test_parse_keeps_separator_in_value(self) -> None:
        """最初の区切り文字だけでフィールドと値を分割することを検証。"""
        assert parse_option_value("source$a$b") == ("source", "a$b")

    def test_parse_without_separator(self) -> None:
        assert parse_option_value("filetype") is None


class TestBuildAdvancedQuery:
    """build_advanced_queryのテスト。"""

    def test_empty_selection(self) -> None:
        assert build_advanced_query([], FACETS) == ""

    def test_values_of_one_field_are_grouped(self) -> None:
        aq = build_advanced_query(["filetype$pdf", "filetype$html"], FACETS)

        assert aq == ' @filetype==("pdf","html")'

    def test_fields_follow_configured_order(self) -> None:
        """条件は選択順ではなく設定順に並ぶことを検証。"""
        aq = build_advanced_query(["source$Docs", "filetype$pdf"], FACETS)

        assert aq == ' @filetype==("pdf") @source==("Docs")'

    def test_unknown_fields_and_malformed_values_are_ignored(self) -> None:
        aq = build_advanced_query(["author$Ann", "garbage", "source$Docs"], FACETS)

        assert aq == ' @source==("Docs")'

    def test_quotes_and_parentheses_are_stripped(self) -> None:
        aq = build_advanced_query(['source$Team "A" (old)'], FACETS)

        assert aq == ' @source==("Team A old")'
