"""
Webサーバーモジュール。

検索結果を開く際のリダイレクト・ログ記録エンドポイントを提供する。
"""

from src.web.open_server import OpenServer

__all__ = ["OpenServer"]
