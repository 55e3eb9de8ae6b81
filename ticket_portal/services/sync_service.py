"""チケット同期サービス。

同期ジョブの実行（取得 → 正規化 → upsert → 進捗記録）と、
同期開始のトリガーポリシー（手動・強制・鮮度ベースの自動起動）を提供する。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from ticket_portal.config import settings
from ticket_portal.core.exceptions import ConfigurationError, SyncConflictError
from ticket_portal.external.clickup_client import ClickUpClient, ClickUpTask
from ticket_portal.models import SyncLog
from ticket_portal.services.field_extraction import (
    ExtractionConfig,
    TicketRecord,
    normalize,
)
from ticket_portal.services.sync_jobs import SyncJobManager
from ticket_portal.services.task_fetcher import ListFetcher
from ticket_portal.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


@dataclass
class SyncCounters:
    """実行中ジョブの累積カウンタ。"""

    synced: int = 0
    total: int = 0


class SyncService:
    """1回分の同期ジョブを実行する。

    ページを取得するたびに正規化・保存し、進捗をジョブ行に記録する。
    ジョブは成功・例外・キャンセルのいずれの経路でも必ず1回だけ
    終了状態に遷移する。
    """

    def __init__(
        self,
        fetcher: ListFetcher,
        store: TicketStore | None = None,
        jobs: SyncJobManager | None = None,
        list_ids: list[str] | None = None,
        extraction: ExtractionConfig | None = None,
    ) -> None:
        """SyncServiceを初期化する。

        Args:
            fetcher: リスト取得オーケストレーター。
            store: チケットストア。
            jobs: ジョブ状態管理。
            list_ids: 同期対象のリストID。省略時は設定値。
            extraction: フィールド抽出設定。省略時は設定値。
        """
        self.fetcher = fetcher
        self.store = store or TicketStore()
        self.jobs = jobs or SyncJobManager()
        self.list_ids = list_ids if list_ids is not None else settings.clickup_list_ids
        self.extraction = extraction or ExtractionConfig.from_settings()

    async def run_job(self, job_id: int) -> SyncCounters:
        """作成済みの running ジョブを実行する。

        Args:
            job_id: ``SyncJobManager.start`` で作成したSyncLog ID。

        Returns:
            最終カウンタ。
        """
        counters = SyncCounters()

        async def on_page(list_id: str, page: int, tasks: list[ClickUpTask]) -> None:
            records = self._normalize_page(tasks)
            counters.total += len(tasks)
            # 並列モードでは他のリストのコールバックがawait中に加算する
            saved = await self.store.upsert_batch(records)
            counters.synced += saved
            await self.jobs.progress(job_id, counters.synced, counters.total)

        logger.info(
            "Running sync job %d over %d list(s)",
            job_id,
            len(self.list_ids),
        )
        try:
            await self.fetcher.sync_all(self.list_ids, on_page=on_page)
        except asyncio.CancelledError:
            await self.jobs.fail(
                job_id,
                "Sync was cancelled",
                synced=counters.synced,
                total=counters.total,
            )
            raise
        except Exception as e:
            logger.exception("Sync job %d raised an unexpected error", job_id)
            await self.jobs.fail(
                job_id,
                f"{e.__class__.__name__}: {e}",
                synced=counters.synced,
                total=counters.total,
            )
            return counters

        await self.jobs.complete(job_id, counters.synced, counters.total)
        return counters

    def _normalize_page(self, tasks: list[ClickUpTask]) -> list[TicketRecord]:
        """ページ内のタスクを正規化する。正規化に失敗したタスクはスキップする。"""
        records: list[TicketRecord] = []
        for task in tasks:
            try:
                records.append(normalize(task, self.extraction))
            except (ValidationError, ValueError, TypeError):
                logger.warning("Skipping task %s: normalization failed", task.id, exc_info=True)
        return records


# ---------------------------------------------------------------------------
# トリガーポリシー
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TriggerResult:
    """トリガー結果。

    Attributes:
        started: 新しいジョブを開始したか。
        job: 開始したジョブ（競合時はNone）。
    """

    started: bool
    job: SyncLog | None = None


# ジョブIDを受け取りバックグラウンドで実行を開始する関数
Launcher = Callable[[int], Any]


class SyncTriggerPolicy:
    """同期の開始可否を判断する。

    同期はシステム全体で高々1件。判定はすべて SyncLog の running 行で行う。
    """

    def __init__(
        self,
        jobs: SyncJobManager | None = None,
        list_ids: list[str] | None = None,
        freshness: timedelta | None = None,
    ) -> None:
        """SyncTriggerPolicyを初期化する。

        Args:
            jobs: ジョブ状態管理。
            list_ids: 同期対象のリストID。省略時は設定値。
            freshness: 最後の完了からこの時間を超えたら自動起動する。
        """
        self.jobs = jobs or SyncJobManager()
        self.list_ids = list_ids if list_ids is not None else settings.clickup_list_ids
        self.freshness = freshness or timedelta(minutes=settings.SYNC_FRESHNESS_MINUTES)

    async def trigger(self, force: bool = False) -> TriggerResult:
        """同期ジョブを開始する。

        Args:
            force: Trueの場合、先に全ての running 行をリセットする。

        Returns:
            トリガー結果。実行中のジョブがあれば ``started=False``。

        Raises:
            ConfigurationError: 同期対象のリストが設定されていない場合。
        """
        if not self.list_ids:
            raise ConfigurationError(detail="CLICKUP_LIST_IDS is not configured")

        if force:
            await self.jobs.reset_stuck()

        try:
            job = await self.jobs.start()
        except SyncConflictError:
            return TriggerResult(started=False)
        return TriggerResult(started=True, job=job)

    async def maybe_auto_trigger(self, launch: Launcher) -> bool:
        """最後の同期が古ければバックグラウンドで同期を開始する。

        呼び出し元（チケット一覧の読み取り）はこの結果を待たずに応答できるよう、
        実行自体は ``launch`` に委ねる。

        Args:
            launch: ジョブIDを受け取り実行をスケジュールする関数。

        Returns:
            同期を開始した場合True。
        """
        if not self.list_ids:
            return False
        if await self.jobs.completed_within(self.freshness):
            return False
        if await self.jobs.is_running():
            return False

        result = await self.trigger()
        if not result.started or result.job is None:
            return False

        logger.info("Auto-triggered sync job %d (last sync is stale)", result.job.id)
        launched = launch(result.job.id)
        if isinstance(launched, Awaitable):
            await launched
        return True

    async def status(self) -> tuple[SyncLog | None, bool]:
        """(最後のジョブ, 実行中か) を返す。"""
        is_running = await self.jobs.is_running()
        last_sync = await self.jobs.last_sync()
        return last_sync, is_running

    async def reset_stuck(self) -> int:
        """全ての running 行を failed にする。"""
        return await self.jobs.reset_stuck()


def build_sync_service(client: ClickUpClient) -> SyncService:
    """設定値からSyncServiceを組み立てる。"""
    return SyncService(fetcher=ListFetcher(client))
