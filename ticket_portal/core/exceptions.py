"""カスタム例外クラスおよびFastAPI例外ハンドラ登録。

アプリケーション全体で使用するドメイン固有の例外階層と、
FastAPIアプリケーションへのハンドラ登録関数を提供する。
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 基底例外
# ---------------------------------------------------------------------------

class AppException(Exception):
    """アプリケーション基底例外。

    Attributes:
        status_code: HTTPステータスコード。
        detail: エラー詳細メッセージ。
    """

    def __init__(
        self,
        status_code: int = 500,
        detail: str = "Internal server error",
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


# ---------------------------------------------------------------------------
# 認証
# ---------------------------------------------------------------------------

class AuthenticationError(AppException):
    """認証エラー (401 Unauthorized)。"""

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(status_code=401, detail=detail)


# ---------------------------------------------------------------------------
# リソース・状態
# ---------------------------------------------------------------------------

class NotFoundError(AppException):
    """リソース未検出エラー (404 Not Found)。"""

    def __init__(self, detail: str = "Resource not found") -> None:
        super().__init__(status_code=404, detail=detail)


class SyncConflictError(AppException):
    """同期ジョブが既に実行中 (409 Conflict)。"""

    def __init__(self, detail: str = "Sync is already in progress") -> None:
        super().__init__(status_code=409, detail=detail)


class ConfigurationError(AppException):
    """必須設定の欠落 (503 Service Unavailable)。"""

    def __init__(self, detail: str = "Service is not configured") -> None:
        super().__init__(status_code=503, detail=detail)


# ---------------------------------------------------------------------------
# 外部API
# ---------------------------------------------------------------------------

class ExternalAPIError(AppException):
    """外部APIエラー (502 Bad Gateway)。リトライ対象外。"""

    def __init__(self, detail: str = "External API error") -> None:
        super().__init__(status_code=502, detail=detail)


class TransientAPIError(ExternalAPIError):
    """一時的な外部APIエラー。リトライ対象。

    Attributes:
        retry_after: サーバーが指示した待機秒数。指示がない場合はNone。
    """

    def __init__(
        self,
        detail: str = "Transient external API error",
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(detail=detail)


class ClickUpRateLimitError(TransientAPIError):
    """ClickUp APIレート制限エラー (HTTP 429)。"""

    def __init__(
        self,
        detail: str = "ClickUp API rate limit exceeded",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(detail=detail, retry_after=retry_after)


class ClickUpServerError(TransientAPIError):
    """ClickUp APIのサーバーエラー・タイムアウト・通信エラー。"""

    def __init__(self, detail: str = "ClickUp API server error") -> None:
        super().__init__(detail=detail)


# ---------------------------------------------------------------------------
# FastAPI例外ハンドラ登録
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """FastAPIアプリケーションにカスタム例外ハンドラを登録する。

    Args:
        app: FastAPIアプリケーションインスタンス。
    """

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> JSONResponse:
        """AppException系例外をJSON形式でレスポンスする。"""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """未処理例外をキャッチし500レスポンスを返す。"""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
