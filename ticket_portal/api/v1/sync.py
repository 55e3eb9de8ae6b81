"""同期エンドポイント。

同期トリガー、ステータス確認、実行中ジョブのリセット、同期履歴のAPIを提供する。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse

from ticket_portal.api.deps import CurrentUser, get_current_user
from ticket_portal.schemas.common import MAX_PER_PAGE, PaginationMeta
from ticket_portal.schemas.sync import (
    SyncConflictResponse,
    SyncHistoryResponse,
    SyncLogItem,
    SyncResetResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from ticket_portal.services.sync_jobs import SyncJobManager
from ticket_portal.services.sync_service import SyncTriggerPolicy
from ticket_portal.tasks.ticket_sync import run_sync_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/trigger",
    response_model=SyncTriggerResponse,
    status_code=202,
    responses={409: {"model": SyncConflictResponse}},
    summary="同期トリガー",
)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    request: SyncTriggerRequest | None = None,
    current_user: CurrentUser = Depends(get_current_user),
) -> SyncTriggerResponse | JSONResponse:
    """同期ジョブをバックグラウンドで開始する。

    同期が既に実行中の場合は、2件目をキューに入れず409を返す。

    Args:
        background_tasks: FastAPIバックグラウンドタスク。
        request: 同期トリガーリクエスト。
        current_user: 認証済みユーザー。

    Returns:
        開始したジョブIDを含む202レスポンス、または409レスポンス。
    """
    force = request.force if request is not None else False
    result = await SyncTriggerPolicy().trigger(force=force)

    if not result.started or result.job is None:
        logger.info("Sync trigger rejected for %s: already running", current_user.email)
        return JSONResponse(
            status_code=409,
            content=SyncConflictResponse().model_dump(),
        )

    logger.info(
        "Sync trigger: job_id=%d, user=%s, force=%s",
        result.job.id,
        current_user.email,
        force,
    )

    # ジョブ行は作成済み。実行はレスポンス送信後に行う
    background_tasks.add_task(run_sync_job, result.job.id)

    return SyncTriggerResponse(job_id=result.job.id)


@router.get(
    "/status",
    response_model=SyncStatusResponse,
    summary="同期ステータス確認",
)
async def get_sync_status(
    current_user: CurrentUser = Depends(get_current_user),
) -> SyncStatusResponse:
    """最後の同期ジョブと、同期が実行中かを返す。

    期限切れの running ジョブはこの呼び出しで failed に遷移する。

    Args:
        current_user: 認証済みユーザー。

    Returns:
        同期ステータス。
    """
    last_sync, is_running = await SyncTriggerPolicy().status()
    return SyncStatusResponse(
        last_sync=SyncLogItem.model_validate(last_sync) if last_sync else None,
        is_running=is_running,
    )


@router.post(
    "/reset",
    response_model=SyncResetResponse,
    summary="実行中ジョブのリセット",
)
async def reset_stuck_syncs(
    current_user: CurrentUser = Depends(get_current_user),
) -> SyncResetResponse:
    """経過時間に関係なく、全ての running ジョブを failed にする。

    Args:
        current_user: 認証済みユーザー。

    Returns:
        リセットしたジョブ数。
    """
    count = await SyncTriggerPolicy().reset_stuck()
    logger.warning("Sync reset by %s: %d job(s)", current_user.email, count)
    return SyncResetResponse(count=count)


@router.get(
    "/history",
    response_model=SyncHistoryResponse,
    summary="同期履歴",
)
async def get_sync_history(
    page: int = Query(default=1, ge=1, description="ページ番号"),
    per_page: int = Query(default=20, ge=1, le=MAX_PER_PAGE, description="1ページあたりの件数"),
    current_user: CurrentUser = Depends(get_current_user),
) -> SyncHistoryResponse:
    """同期ジョブの履歴を新しい順に取得する。

    Args:
        page: ページ番号。
        per_page: 1ページあたりの件数。
        current_user: 認証済みユーザー。

    Returns:
        同期履歴とページネーション情報。
    """
    jobs, total = await SyncJobManager().history(page=page, per_page=per_page)

    return SyncHistoryResponse(
        logs=[SyncLogItem.model_validate(job) for job in jobs],
        pagination=PaginationMeta(
            page=page,
            per_page=per_page,
            total=total,
        ),
    )
