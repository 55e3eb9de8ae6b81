"""APSchedulerの設定と管理。

定期実行タスクのスケジュール登録を行う。
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ticket_portal.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def setup_jobs() -> None:
    """スケジューラにジョブを登録する。

    - ticket_sync_job: SYNC_INTERVAL_HOURS ごとに実行（デフォルト6時間、0で無効）
    """
    if settings.SYNC_INTERVAL_HOURS <= 0:
        logger.info("Periodic ticket sync is disabled (SYNC_INTERVAL_HOURS=0)")
        return

    from ticket_portal.tasks.ticket_sync import scheduled_ticket_sync_job

    # チケット同期ジョブ: 設定された間隔で定期実行
    scheduler.add_job(
        scheduled_ticket_sync_job,
        trigger=IntervalTrigger(hours=settings.SYNC_INTERVAL_HOURS),
        id="ticket_sync_job",
        name="ClickUp Ticket Sync",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Registered ticket_sync_job: every %d hours",
        settings.SYNC_INTERVAL_HOURS,
    )
