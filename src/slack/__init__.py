"""
Slackモジュール。

Slack Botの実装、検索結果のレンダリング、インタラクションのルーティングを提供する。
"""

from src.slack.app import SlackBot, SlackBotImpl
from src.slack.blocks import RenderOptions, ResultRenderer, apply_highlights
from src.slack.handlers import InteractionRouter

__all__ = [
    "InteractionRouter",
    "RenderOptions",
    "ResultRenderer",
    "SlackBot",
    "SlackBotImpl",
    "apply_highlights",
]
