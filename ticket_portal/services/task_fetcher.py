"""複数リストのタスク取得オーケストレーター。

設定された各ClickUpリストを順次（または並列に）ページングし、
結果を作成日時の降順に並べ替えて集約する。個々のページ・リストの失敗は
そのリストに閉じ、実行全体を中断しない。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from ticket_portal.config import settings
from ticket_portal.external.clickup_client import ClickUpTask, PageResult, PageStatus
from ticket_portal.services.field_extraction import EPOCH, parse_epoch_ms

logger = logging.getLogger(__name__)

# (list_id, page, tasks) を受け取るページ単位コールバック
PageCallback = Callable[[str, int, list[ClickUpTask]], Awaitable[Any]]


class PageSource(Protocol):
    """``fetch_page`` を提供するタスク取得元。"""

    async def fetch_page(self, list_id: str, page: int) -> PageResult: ...


@dataclass
class ListOutcome:
    """1リスト分の取得結果。

    Attributes:
        tasks: 取得したタスク。
        pages: 取得を試みたページ数。
        failed_pages: FAILED となったページ数。
        abandoned: 連続エラー上限で残りのページを諦めたか。
    """

    tasks: list[ClickUpTask] = field(default_factory=list)
    pages: int = 0
    failed_pages: int = 0
    abandoned: bool = False


@dataclass
class AggregateResult:
    """全リストの集約結果。

    Attributes:
        tasks: 作成日時の降順に並べたタスク。
        per_list_counts: リストIDごとの取得件数。
        abandoned_lists: 途中で取得を諦めたリストID。
    """

    tasks: list[ClickUpTask] = field(default_factory=list)
    per_list_counts: dict[str, int] = field(default_factory=dict)
    abandoned_lists: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.tasks)


def _created_at_key(task: ClickUpTask) -> datetime:
    return parse_epoch_ms(task.date_created) or EPOCH


class ListFetcher:
    """ClickUpリスト群のページングと集約を行う。"""

    def __init__(
        self,
        source: PageSource,
        page_delay: float | None = None,
        list_delay: float | None = None,
        max_consecutive_errors: int | None = None,
        parallel: bool | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """ListFetcherを初期化する。

        Args:
            source: ページ取得元（通常は ClickUpClient）。
            page_delay: ページ間の待機秒数。省略時は設定値。
            list_delay: リスト間の待機秒数。省略時は設定値。
            max_consecutive_errors: リストを諦めるまでの連続ページエラー数。
            parallel: Trueの場合、リストを並列に取得する。
            sleep: 待機に使うコルーチン関数（テストで差し替え可能）。
        """
        self.source = source
        self.page_delay = (
            settings.SYNC_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        )
        self.list_delay = (
            settings.SYNC_LIST_DELAY_SECONDS if list_delay is None else list_delay
        )
        self.max_consecutive_errors = (
            settings.SYNC_MAX_CONSECUTIVE_PAGE_ERRORS
            if max_consecutive_errors is None
            else max_consecutive_errors
        )
        self.parallel = settings.SYNC_PARALLEL_LISTS if parallel is None else parallel
        self._sleep = sleep

    async def fetch_list(
        self,
        list_id: str,
        on_page: PageCallback | None = None,
    ) -> ListOutcome:
        """1リストの全ページを取得する。

        ``has_more`` が偽になるか、連続エラー数が上限に達するまでページングする。
        FAILED のページはスキップして次のページへ進む。

        Args:
            list_id: ClickUpリストID。
            on_page: 空でないページを取得するたびに呼ばれるコールバック。

        Returns:
            リストの取得結果。
        """
        outcome = ListOutcome()
        consecutive_errors = 0
        page = 0

        while True:
            if page > 0 and self.page_delay > 0:
                await self._sleep(self.page_delay)

            result = await self.source.fetch_page(list_id, page)
            outcome.pages += 1

            if result.status is PageStatus.FAILED:
                outcome.failed_pages += 1
                consecutive_errors += 1
                if consecutive_errors >= self.max_consecutive_errors:
                    outcome.abandoned = True
                    logger.error(
                        "Abandoning list %s after %d consecutive page errors "
                        "(%d tasks kept)",
                        list_id,
                        consecutive_errors,
                        len(outcome.tasks),
                    )
                    break
                page += 1
                continue

            consecutive_errors = 0

            if result.tasks:
                outcome.tasks.extend(result.tasks)
                logger.info(
                    "List %s page %d: %d tasks (%d so far)",
                    list_id,
                    page,
                    len(result.tasks),
                    len(outcome.tasks),
                )
                if on_page is not None:
                    await on_page(list_id, page, result.tasks)

            if result.status is PageStatus.TERMINAL or not result.has_more:
                break
            page += 1

        return outcome

    async def sync_all(
        self,
        list_ids: list[str],
        on_page: PageCallback | None = None,
    ) -> AggregateResult:
        """全リストを取得し、作成日時の降順で集約する。

        Args:
            list_ids: ClickUpリストIDのリスト。
            on_page: ページ単位コールバック。

        Returns:
            集約結果。

        Raises:
            Exception: 並列モードでいずれかのリストが例外で終わった場合、
                残りのリストをキャンセルした上で最初の例外を送出する。
        """
        if self.parallel:
            # 1リストが例外で終われば残りのリストもキャンセルして待ち合わせる
            try:
                async with asyncio.TaskGroup() as group:
                    running = [
                        group.create_task(self.fetch_list(list_id, on_page))
                        for list_id in list_ids
                    ]
            except ExceptionGroup as errors:
                raise errors.exceptions[0] from errors
            outcomes = [task.result() for task in running]
        else:
            outcomes = []
            for index, list_id in enumerate(list_ids):
                if index > 0 and self.list_delay > 0:
                    await self._sleep(self.list_delay)
                outcomes.append(await self.fetch_list(list_id, on_page))

        aggregate = AggregateResult()
        for list_id, outcome in zip(list_ids, outcomes):
            aggregate.tasks.extend(outcome.tasks)
            aggregate.per_list_counts[list_id] = len(outcome.tasks)
            if outcome.abandoned:
                aggregate.abandoned_lists.append(list_id)

        aggregate.tasks.sort(key=_created_at_key, reverse=True)

        logger.info(
            "Fetched %d tasks from %d lists: %s",
            aggregate.total,
            len(list_ids),
            aggregate.per_list_counts,
        )
        return aggregate
