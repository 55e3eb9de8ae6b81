"""チケット同期バックグラウンドタスク。

BackgroundTasksから呼ばれる手動・自動トリガー用のタスク関数と、
APSchedulerから呼ばれる定期同期ジョブを提供する。
"""

from __future__ import annotations

import logging

from ticket_portal.core.exceptions import AppException
from ticket_portal.external.clickup_client import ClickUpClient
from ticket_portal.services.sync_jobs import SyncJobManager
from ticket_portal.services.sync_service import SyncTriggerPolicy, build_sync_service

logger = logging.getLogger(__name__)


async def run_sync_job(job_id: int) -> None:
    """作成済みの同期ジョブを実行する。

    トリガー時に作成したSyncLogを受け取り、完了または失敗まで進める。
    ClickUpクライアントを生成できない場合もジョブを failed にする。

    Args:
        job_id: ``SyncTriggerPolicy.trigger`` で作成したSyncLog ID。
    """
    logger.info("Starting background sync job %d", job_id)

    try:
        client = ClickUpClient()
    except AppException as e:
        await SyncJobManager().fail(job_id, e.detail)
        return

    async with client:
        counters = await build_sync_service(client).run_job(job_id)

    logger.info(
        "Background sync job %d finished: %d/%d tickets synced",
        job_id,
        counters.synced,
        counters.total,
    )


async def scheduled_ticket_sync_job() -> None:
    """APSchedulerから呼ばれる定期同期ジョブ。

    既に同期が実行中の場合はスキップする。
    """
    logger.info("Starting scheduled ticket sync job")

    policy = SyncTriggerPolicy()
    if not policy.list_ids:
        logger.info("No ClickUp lists configured. Skipping sync.")
        return

    result = await policy.trigger()
    if not result.started or result.job is None:
        logger.info("A sync is already running. Skipping scheduled sync.")
        return

    await run_sync_job(result.job.id)
