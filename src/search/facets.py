"""
ファセット選択モジュール。

ファセットの選択肢はSlack上で "field$value" 形式の文字列としてやり取りする。
選択された選択肢を検索バックエンドの絞り込み条件(advanced query)に変換する:

    @field1==("A","B") @field2==("C")

同じフィールドの値はOR、異なるフィールド同士はANDで結合される。
"""

from collections.abc import Iterable, Sequence

from src.config.settings import FacetField

FACET_VALUE_SEPARATOR = "$"


def encode_option_value(field: str, value: str) -> str:
    """ファセット値をSlackの選択肢の値に変換する。"""
    return f"{field}{FACET_VALUE_SEPARATOR}{value}"


def parse_option_value(option_value: str) -> tuple[str, str] | None:
    """"field$value" 形式の値を分割する。

    Args:
        option_value: Slackの選択肢の値

    Returns:
        (field, value) のタプル。区切り文字がない場合はNone。
    """
    field, separator, value = option_value.partition(FACET_VALUE_SEPARATOR)
    if not separator:
        return None
    return field, value


def _quote(value: str) -> str:
    # 引用符と括弧は条件式の外に出てしまうため除去する
    cleaned = value.replace('"', "").replace("(", "").replace(")", "")
    return f'"{cleaned}"'


def build_advanced_query(
    selected_values: Iterable[str],
    facet_fields: Sequence[FacetField],
) -> str:
    """選択されたファセットから絞り込み条件を組み立てる。

    ファセットとして設定されていないフィールドの選択肢は無視する。
    フィールドは設定順に並び、各条件の先頭には空白が付く。

    Args:
        selected_values: ユーザーが選択した選択肢の値("field$value")
        facet_fields: 設定済みのファセットフィールド

    Returns:
        絞り込み条件。何も選択されていない場合は空文字。
    """
    by_field: dict[str, list[str]] = {}
    for option_value in selected_values:
        parsed = parse_option_value(option_value)
        if parsed is None:
            continue
        field, value = parsed
        by_field.setdefault(field, []).append(value)

    aq = ""
    for facet_field in facet_fields:
        values = by_field.get(facet_field.field)
        if values:
            aq += f" @{facet_field.field}==({','.join(_quote(v) for v in values)})"
    return aq
