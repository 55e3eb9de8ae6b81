"""同期ジョブ状態管理サービス。

``sync_logs`` テーブルの行を running → completed / failed と遷移させる。
running 行はシステム全体で高々1件であり、これがプロセス間で共有される
唯一の排他制御となる。クラッシュで取り残された running 行は
経過時間で検出し failed に遷移させる。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_portal.config import settings
from ticket_portal.core.exceptions import NotFoundError, SyncConflictError
from ticket_portal.database import async_session_factory
from ticket_portal.models import SyncLog, SyncStatus

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Sync timed out: no progress within the staleness window"
RESET_JOB_MESSAGE = "Sync was manually reset"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncJobManager:
    """SyncLog行の状態遷移を管理する。

    各操作は独立したセッション・トランザクションで実行され、
    複数のリクエストやバックグラウンドタスクから同時に呼ばれても
    running 行の一意性はデータベースの部分ユニークインデックスで保証される。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        stale_after: timedelta | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """SyncJobManagerを初期化する。

        Args:
            session_factory: セッションファクトリ。省略時はアプリ共通のもの。
            stale_after: running 行を停止済みとみなす経過時間。省略時は設定値。
            now: 現在時刻を返す関数（テストで差し替え可能）。
        """
        self.session_factory = session_factory or async_session_factory
        self.stale_after = stale_after or timedelta(
            minutes=settings.SYNC_STALE_AFTER_MINUTES
        )
        self._now = now

    # ------------------------------------------------------------------
    # 状態遷移
    # ------------------------------------------------------------------

    async def start(self) -> SyncLog:
        """新しい running ジョブを作成する。

        期限切れの running 行は先に failed へ遷移させる。

        Returns:
            作成されたSyncLog。

        Raises:
            SyncConflictError: 有効な running ジョブが既に存在する場合。
        """
        await self.reap_stale()

        async with self.session_factory() as session:
            running_id = await session.scalar(
                select(SyncLog.id).where(SyncLog.status == SyncStatus.RUNNING.value)
            )
            if running_id is not None:
                logger.info("Sync job %d is already running", running_id)
                raise SyncConflictError()

            job = SyncLog(
                status=SyncStatus.RUNNING.value,
                started_at=self._now(),
                tickets_synced=0,
                tickets_total=0,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                # 別のコンテキストが同時に running 行を作成した
                await session.rollback()
                logger.info("Lost the race to start a sync job")
                raise SyncConflictError()

        logger.info("Started sync job %d", job.id)
        return job

    async def progress(self, job_id: int, synced: int, total: int) -> bool:
        """running 行の進捗カウンタを更新する。カウンタは減少しない。

        Args:
            job_id: SyncLog ID。
            synced: 保存済みチケット数。
            total: 取得済みタスク数。

        Returns:
            更新できた場合True（ジョブが既に終了していればFalse）。
        """
        stmt = (
            update(SyncLog)
            .where(
                SyncLog.id == job_id,
                SyncLog.status == SyncStatus.RUNNING.value,
            )
            .values(
                tickets_synced=case(
                    (SyncLog.tickets_synced < synced, synced),
                    else_=SyncLog.tickets_synced,
                ),
                tickets_total=case(
                    (SyncLog.tickets_total < total, total),
                    else_=SyncLog.tickets_total,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def complete(self, job_id: int, synced: int, total: int) -> bool:
        """ジョブを completed に遷移させる。

        Args:
            job_id: SyncLog ID。
            synced: 最終的な保存済みチケット数。
            total: 最終的な取得済みタスク数。

        Returns:
            遷移した場合True。既に終了状態ならFalse。
        """
        transitioned = await self._finish(
            job_id,
            SyncStatus.COMPLETED,
            tickets_synced=synced,
            tickets_total=total,
        )
        if transitioned:
            logger.info(
                "Sync job %d completed: %d/%d tickets synced",
                job_id,
                synced,
                total,
            )
        return transitioned

    async def fail(
        self,
        job_id: int,
        message: str,
        synced: int | None = None,
        total: int | None = None,
    ) -> bool:
        """ジョブを failed に遷移させる。

        Args:
            job_id: SyncLog ID。
            message: エラーメッセージ。
            synced: 失敗時点の保存済みチケット数。Noneなら既存値を保持。
            total: 失敗時点の取得済みタスク数。Noneなら既存値を保持。

        Returns:
            遷移した場合True。既に終了状態ならFalse。
        """
        values: dict = {"error_message": message}
        if synced is not None:
            values["tickets_synced"] = synced
        if total is not None:
            values["tickets_total"] = total

        transitioned = await self._finish(job_id, SyncStatus.FAILED, **values)
        if transitioned:
            logger.error("Sync job %d failed: %s", job_id, message)
        return transitioned

    async def reap_stale(self) -> int:
        """開始から期限を超えた running 行を failed にする。

        Returns:
            failed に遷移させた行数。
        """
        now = self._now()
        stmt = (
            update(SyncLog)
            .where(
                SyncLog.status == SyncStatus.RUNNING.value,
                SyncLog.started_at < now - self.stale_after,
            )
            .values(
                status=SyncStatus.FAILED.value,
                completed_at=now,
                error_message=STALE_JOB_MESSAGE,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount:
            logger.warning("Marked %d stale sync job(s) as failed", result.rowcount)
        return result.rowcount

    async def reset_stuck(self) -> int:
        """経過時間に関係なく、全ての running 行を failed にする。

        Returns:
            failed に遷移させた行数。
        """
        stmt = (
            update(SyncLog)
            .where(SyncLog.status == SyncStatus.RUNNING.value)
            .values(
                status=SyncStatus.FAILED.value,
                completed_at=self._now(),
                error_message=RESET_JOB_MESSAGE,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        logger.warning("Reset %d running sync job(s)", result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    async def is_running(self) -> bool:
        """有効な running ジョブが存在するかを返す。期限切れの行は先に回収する。"""
        await self.reap_stale()
        async with self.session_factory() as session:
            running_id = await session.scalar(
                select(SyncLog.id).where(SyncLog.status == SyncStatus.RUNNING.value)
            )
        return running_id is not None

    async def get(self, job_id: int) -> SyncLog:
        """IDでジョブを取得する。

        Raises:
            NotFoundError: 存在しない場合。
        """
        async with self.session_factory() as session:
            job = await session.get(SyncLog, job_id)
        if job is None:
            raise NotFoundError(detail=f"Sync job {job_id} not found")
        return job

    async def last_sync(self) -> SyncLog | None:
        """最も新しく開始されたジョブを返す。"""
        stmt = (
            select(SyncLog)
            .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
            .limit(1)
        )
        async with self.session_factory() as session:
            return await session.scalar(stmt)

    async def completed_within(self, window: timedelta) -> bool:
        """直近 ``window`` 以内に completed となったジョブがあるかを返す。"""
        stmt = select(SyncLog.id).where(
            SyncLog.status == SyncStatus.COMPLETED.value,
            SyncLog.completed_at >= self._now() - window,
        )
        async with self.session_factory() as session:
            return await session.scalar(stmt.limit(1)) is not None

    async def history(
        self,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[SyncLog], int]:
        """ジョブ履歴を新しい順にページネーションして返す。

        Args:
            page: 1始まりのページ番号。
            per_page: 1ページあたりの件数。

        Returns:
            (ジョブのリスト, 総件数) のタプル。
        """
        stmt = (
            select(SyncLog)
            .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        async with self.session_factory() as session:
            total = await session.scalar(select(func.count(SyncLog.id))) or 0
            result = await session.execute(stmt)
            jobs = list(result.scalars().all())
        return jobs, total

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _finish(self, job_id: int, status: SyncStatus, **values) -> bool:
        """running 行を終了状態へ遷移させる。遷移は1ジョブにつき1回のみ。"""
        stmt = (
            update(SyncLog)
            .where(
                SyncLog.id == job_id,
                SyncLog.status == SyncStatus.RUNNING.value,
            )
            .values(status=status.value, completed_at=self._now(), **values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount != 1:
            logger.warning(
                "Sync job %d was not running, ignoring transition to %s",
                job_id,
                status.value,
            )
            return False
        return True
