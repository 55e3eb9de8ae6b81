"""チケットエンドポイント。

ユーザーのチケット一覧・詳細と、コメントの取得・投稿のAPIを提供する。
一覧・詳細はローカルのチケットストアのみを参照する。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_portal.api.deps import (
    CurrentUser,
    get_clickup_client,
    get_current_user,
    get_session,
)
from ticket_portal.config import settings
from ticket_portal.external.clickup_client import ClickUpClient
from ticket_portal.schemas.ticket import (
    AttachmentResponse,
    CommentCreateRequest,
    CommentListResponse,
    TicketDetailResponse,
    TicketListMetadata,
    TicketListResponse,
    TicketResponse,
)
from ticket_portal.services.sync_jobs import SyncJobManager
from ticket_portal.services.sync_service import SyncTriggerPolicy
from ticket_portal.services.ticket_service import TicketService
from ticket_portal.tasks.ticket_sync import run_sync_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=TicketListResponse,
    summary="チケット一覧",
)
async def list_tickets(
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
) -> TicketListResponse:
    """ユーザーのチケットを作成日時の降順で返す。

    最後の同期が鮮度期限を過ぎていて実行中の同期も無ければ、
    バックグラウンドで同期を開始する。応答はその完了を待たない。

    Args:
        background_tasks: FastAPIバックグラウンドタスク。
        session: データベースセッション。
        current_user: 認証済みユーザー。

    Returns:
        チケット一覧とメタ情報。
    """
    policy = SyncTriggerPolicy()
    try:
        sync_triggered = await policy.maybe_auto_trigger(
            lambda job_id: background_tasks.add_task(run_sync_job, job_id)
        )
    except Exception:
        # 自動同期の失敗で読み取りを止めない
        logger.exception("Auto-trigger check failed")
        sync_triggered = False

    service = TicketService(session)
    tickets = await service.list_user_tickets(current_user.email)
    total_tickets = await service.count_all()
    last_sync = await SyncJobManager().last_sync()

    return TicketListResponse(
        tickets=[TicketResponse.model_validate(t) for t in tickets],
        metadata=TicketListMetadata(
            total_tickets=total_tickets,
            user_tickets=len(tickets),
            list_count=len(settings.clickup_list_ids),
            last_sync_at=last_sync.started_at if last_sync else None,
            last_sync_status=last_sync.status if last_sync else None,
            sync_triggered=sync_triggered,
        ),
    )


@router.get(
    "/{ticket_id}",
    response_model=TicketDetailResponse,
    summary="チケット詳細",
)
async def get_ticket(
    ticket_id: str,
    session: AsyncSession = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    client: ClickUpClient = Depends(get_clickup_client),
) -> TicketDetailResponse:
    """チケット詳細を添付ファイル付きで返す。

    添付ファイルは初回参照時にClickUpから取得してキャッシュする。

    Args:
        ticket_id: リモートタスクID。
        session: データベースセッション。
        current_user: 認証済みユーザー。
        client: ClickUpクライアント。

    Returns:
        チケット詳細。

    Raises:
        NotFoundError: チケットが存在しない、または他ユーザーのものの場合。
    """
    service = TicketService(session)
    ticket = await service.get_user_ticket(ticket_id, current_user.email)
    attachments = await service.get_attachments(ticket, client)

    detail = TicketDetailResponse.model_validate(
        {
            **TicketResponse.model_validate(ticket).model_dump(),
            "attachments": [
                AttachmentResponse.model_validate(a) for a in attachments
            ],
        }
    )
    return detail


@router.get(
    "/{ticket_id}/comments",
    response_model=CommentListResponse,
    summary="コメント一覧",
)
async def list_comments(
    ticket_id: str,
    session: AsyncSession = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    client: ClickUpClient = Depends(get_clickup_client),
) -> CommentListResponse:
    """チケットのコメントをClickUpから取得する。

    Args:
        ticket_id: リモートタスクID。
        session: データベースセッション。
        current_user: 認証済みユーザー。
        client: ClickUpクライアント。

    Returns:
        コメント一覧。
    """
    await TicketService(session).get_user_ticket(ticket_id, current_user.email)
    comments = await client.get_task_comments(ticket_id)
    return CommentListResponse(comments=comments)


@router.post(
    "/{ticket_id}/comments",
    status_code=201,
    summary="コメント投稿",
)
async def create_comment(
    ticket_id: str,
    request: CommentCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    client: ClickUpClient = Depends(get_clickup_client),
) -> dict:
    """チケットにコメントを投稿する。

    Args:
        ticket_id: リモートタスクID。
        request: コメント投稿リクエスト。
        session: データベースセッション。
        current_user: 認証済みユーザー。
        client: ClickUpクライアント。

    Returns:
        ClickUpが返した作成済みコメント。
    """
    await TicketService(session).get_user_ticket(ticket_id, current_user.email)
    comment = await client.post_task_comment(ticket_id, request.comment_text)
    logger.info("Comment posted on ticket %s by %s", ticket_id, current_user.email)
    return comment
