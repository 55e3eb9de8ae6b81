"""ClickUp REST API 非同期クライアント。

httpx.AsyncClient を使用し、レート制限管理、リトライ/バックオフ、
ページ単位のタスク取得、コメントの取得・投稿を提供する。
"""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ticket_portal.config import settings
from ticket_portal.core.exceptions import (
    ClickUpRateLimitError,
    ClickUpServerError,
    ConfigurationError,
    ExternalAPIError,
    TransientAPIError,
)
from ticket_portal.core.rate_limiter import ClickUpRateLimiter, get_rate_limiter
from ticket_portal.core.retry import RetryPolicy, exponential_backoff

logger = logging.getLogger(__name__)

# ClickUp のタスク一覧APIは1ページ最大100件を返す
PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# レスポンスモデル
# ---------------------------------------------------------------------------

class CustomField(BaseModel):
    """タスクのカスタムフィールド。``value`` の型は ``type`` に依存する。"""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    type: str | None = None
    value: Any = None
    type_config: dict[str, Any] | None = None


class TaskStatus(BaseModel):
    """タスクのステータス。"""

    model_config = ConfigDict(extra="allow")

    status: str | None = None


class TaskPriority(BaseModel):
    """タスクの優先度。"""

    model_config = ConfigDict(extra="allow")

    priority: str | None = None


class ClickUpTask(BaseModel):
    """同期処理が依存するClickUpタスクの最小構造。

    日時はエポックミリ秒（通常は文字列）で返される。
    """

    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    date_created: str | int | None = None
    date_updated: str | int | None = None
    due_date: str | int | None = None
    custom_fields: list[CustomField] | None = Field(default=None)
    attachments: list[dict[str, Any]] | None = Field(default=None)


class PageStatus(str, enum.Enum):
    """ページ取得結果の種別。"""

    OK = "ok"
    # リトライを使い切った一時的エラー。リストの終端とは限らない
    FAILED = "failed"
    # リトライ対象外のエラー。このページ以降のデータは無いものとして扱う
    TERMINAL = "terminal"


@dataclass(frozen=True)
class PageResult:
    """1ページ分のタスク取得結果。

    Attributes:
        status: 取得結果の種別。
        tasks: 取得したタスク（FAILED/TERMINALの場合は空）。
        has_more: 次のページが存在し得るか。
        error: エラー詳細。
    """

    status: PageStatus
    tasks: list[ClickUpTask] = field(default_factory=list)
    has_more: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, tasks: list[ClickUpTask], has_more: bool) -> PageResult:
        return cls(status=PageStatus.OK, tasks=tasks, has_more=has_more)

    @classmethod
    def failed(cls, error: str) -> PageResult:
        return cls(status=PageStatus.FAILED, has_more=True, error=error)

    @classmethod
    def terminal(cls, error: str) -> PageResult:
        return cls(status=PageStatus.TERMINAL, has_more=False, error=error)


def default_retry_policy() -> RetryPolicy:
    """設定値からClickUp呼び出し用のリトライポリシーを生成する。"""
    return RetryPolicy(
        max_attempts=settings.CLICKUP_MAX_RETRIES + 1,
        backoff=exponential_backoff(
            base=settings.CLICKUP_BACKOFF_BASE_SECONDS,
            cap=settings.CLICKUP_MAX_BACKOFF_SECONDS,
        ),
    )


def _is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# クライアント
# ---------------------------------------------------------------------------

class ClickUpClient:
    """ClickUp REST API v2 非同期クライアント。"""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: ClickUpRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """ClickUpClientを初期化する。

        Args:
            token: ClickUp APIトークン。省略時は設定値。
            base_url: APIのベースURL。省略時は設定値。
            timeout: 1リクエストあたりのタイムアウト秒数。省略時は設定値。
            retry_policy: リトライポリシー。省略時は設定値から生成。
            rate_limiter: レート制限管理。省略時はシングルトン。
            transport: httpxトランスポート（テスト用）。

        Raises:
            ConfigurationError: APIトークンが未設定の場合。
        """
        token = token if token is not None else settings.CLICKUP_API_TOKEN
        if not token:
            raise ConfigurationError(detail="CLICKUP_API_TOKEN is not configured")

        request_timeout = (
            timeout if timeout is not None else settings.CLICKUP_REQUEST_TIMEOUT_SECONDS
        )
        self._retry = retry_policy or default_retry_policy()
        self._rate_limiter = rate_limiter or get_rate_limiter()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.CLICKUP_API_BASE,
            headers={
                "Authorization": token,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(request_timeout, connect=10.0),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Public API Methods
    # ------------------------------------------------------------------

    async def fetch_page(self, list_id: str, page: int) -> PageResult:
        """リストのタスクを1ページ取得する。

        一時的エラーはリトライし、使い切った場合は FAILED を返す。
        リトライ対象外のエラーは TERMINAL を返す。いずれも例外は送出しない。

        Args:
            list_id: ClickUpリストID。
            page: 0始まりのページ番号。

        Returns:
            ページ取得結果。
        """
        params = {
            "archived": "false",
            "page": str(page),
            "subtasks": "false",
            "include_closed": "true",
        }
        try:
            response = await self._retry.call(
                self._request,
                "GET",
                f"/list/{list_id}/task",
                params=params,
            )
        except TransientAPIError as e:
            logger.error(
                "Giving up on page %d of list %s after retries: %s",
                page,
                list_id,
                e.detail,
            )
            return PageResult.failed(e.detail)
        except ExternalAPIError as e:
            logger.error(
                "Page %d of list %s returned a terminal error: %s",
                page,
                list_id,
                e.detail,
            )
            return PageResult.terminal(e.detail)

        try:
            data = response.json()
        except ValueError:
            logger.error("Page %d of list %s is not valid JSON", page, list_id)
            return PageResult.failed("Invalid JSON in task page response")

        raw_tasks = data.get("tasks") or [] if isinstance(data, dict) else []
        tasks = self._parse_tasks(raw_tasks, list_id)
        return PageResult.ok(tasks, has_more=len(raw_tasks) >= PAGE_SIZE)

    async def get_task(self, task_id: str) -> ClickUpTask:
        """単一タスクを取得する。

        Args:
            task_id: ClickUpタスクID。

        Returns:
            タスク。

        Raises:
            ExternalAPIError: API呼び出しに失敗した場合。
        """
        response = await self._retry.call(self._request, "GET", f"/task/{task_id}")
        try:
            return ClickUpTask.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ExternalAPIError(detail=f"Malformed task payload for {task_id}: {e}")

    async def get_task_comments(self, task_id: str) -> list[dict[str, Any]]:
        """タスクのコメント一覧を取得する。

        Args:
            task_id: ClickUpタスクID。

        Returns:
            コメント辞書のリスト。
        """
        response = await self._retry.call(
            self._request, "GET", f"/task/{task_id}/comment"
        )
        return response.json().get("comments") or []

    async def post_task_comment(
        self,
        task_id: str,
        comment_text: str,
    ) -> dict[str, Any]:
        """タスクにコメントを投稿する。

        POSTは重複投稿を避けるためリトライしない。

        Args:
            task_id: ClickUpタスクID。
            comment_text: コメント本文。

        Returns:
            作成されたコメント辞書。
        """
        response = await self._request(
            "POST",
            f"/task/{task_id}/comment",
            json={"comment_text": comment_text, "notify_all": True},
        )
        return response.json()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """共通HTTPリクエストメソッド。

        レート制限の取得、レスポンスヘッダーからのレート制限情報更新、
        ステータスコードに応じた例外の送出を行う。

        Args:
            method: HTTPメソッド。
            url: リクエストURL（ベースURLからの相対パス）。
            **kwargs: httpx.AsyncClient.request に渡す追加引数。

        Returns:
            HTTPレスポンス。

        Raises:
            ClickUpRateLimitError: HTTP 429。
            ClickUpServerError: HTTP 5xx、タイムアウト、通信エラー。
            ExternalAPIError: その他の非2xx。
        """
        await self._rate_limiter.acquire()

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("ClickUp API request timed out: %s %s", method, url)
            raise ClickUpServerError(detail=f"ClickUp API request timed out: {e}")
        except httpx.HTTPError as e:
            logger.warning("ClickUp API request failed: %s %s - %s", method, url, e)
            raise ClickUpServerError(detail=f"ClickUp API request failed: {e}")

        self._rate_limiter.update_limits(response.headers)

        if response.status_code == 429:
            raise ClickUpRateLimitError(
                detail="ClickUp API rate limit exceeded",
                retry_after=self._retry_after_seconds(response),
            )

        if response.status_code >= 500:
            raise ClickUpServerError(
                detail=(
                    f"ClickUp API error {response.status_code}: "
                    f"{response.text[:200]}"
                )
            )

        if response.status_code >= 400:
            raise ExternalAPIError(
                detail=(
                    f"ClickUp API error {response.status_code}: "
                    f"{response.text[:200]}"
                )
            )

        return response

    @staticmethod
    def _retry_after_seconds(response: httpx.Response) -> float:
        """429レスポンスから待機秒数を求める。

        retry-after ヘッダー、X-RateLimit-Reset ヘッダー、既定値の順に使う。
        ジョブが期限切れ扱いにならないよう CLICKUP_MAX_RETRY_AFTER_SECONDS で上限を設ける。

        Args:
            response: 429レスポンス。

        Returns:
            待機秒数。
        """
        wait = settings.CLICKUP_DEFAULT_RETRY_AFTER_SECONDS

        retry_after = response.headers.get("retry-after")
        reset = response.headers.get("X-RateLimit-Reset")
        if retry_after is not None and _is_number(retry_after):
            wait = max(0.0, float(retry_after))
        elif reset is not None and _is_number(reset):
            wait = max(0.0, float(reset) - time.time())

        return min(wait, settings.CLICKUP_MAX_RETRY_AFTER_SECONDS)

    @staticmethod
    def _parse_tasks(
        raw_tasks: list[Any],
        list_id: str,
    ) -> list[ClickUpTask]:
        """生のタスク辞書を検証する。構造が不正なタスクはスキップする。

        Args:
            raw_tasks: APIレスポンスのタスク配列。
            list_id: ログ用のリストID。

        Returns:
            検証済みタスクのリスト。
        """
        tasks: list[ClickUpTask] = []
        for raw in raw_tasks:
            try:
                tasks.append(ClickUpTask.model_validate(raw))
            except ValidationError as e:
                task_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning(
                    "Skipping malformed task %s in list %s: %s",
                    task_id,
                    list_id,
                    e.error_count(),
                )
        return tasks

    async def close(self) -> None:
        """HTTPクライアントセッションを閉じる。"""
        await self._client.aclose()
        logger.debug("ClickUpClient session closed")

    async def __aenter__(self) -> ClickUpClient:
        """async with 構文のサポート。"""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """async with 構文のサポート。"""
        await self.close()
