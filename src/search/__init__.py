"""
検索モジュール。

検索セッション、トークンキャッシュ、検索バックエンドとの通信、
検索処理のオーケストレーションを提供する。
"""

from src.search.client import SearchBackendUnreachableError, SearchClient
from src.search.models import (
    AnalyticsOutcome,
    CachedToken,
    Facet,
    FacetValue,
    Highlight,
    ResultSet,
    SearchResult,
    TenantCredentials,
    TrackingParams,
)
from src.search.orchestrator import SearchOrchestrator
from src.search.session import SessionContext, Surface, ViewMode
from src.search.token_cache import RedisTokenCache, TokenCache, visitor_id_for

__all__ = [
    "AnalyticsOutcome",
    "CachedToken",
    "Facet",
    "FacetValue",
    "Highlight",
    "RedisTokenCache",
    "ResultSet",
    "SearchBackendUnreachableError",
    "SearchClient",
    "SearchOrchestrator",
    "SearchResult",
    "SessionContext",
    "Surface",
    "TenantCredentials",
    "TokenCache",
    "TrackingParams",
    "ViewMode",
    "visitor_id_for",
]
