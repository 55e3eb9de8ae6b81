"""リリースノートエンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_portal.api.deps import CurrentUser, get_current_user, get_session
from ticket_portal.schemas.ticket import ReleaseListResponse, TicketResponse
from ticket_portal.services.ticket_service import TicketService

router = APIRouter()


@router.get(
    "",
    response_model=ReleaseListResponse,
    summary="リリースノート一覧",
)
async def list_releases(
    session: AsyncSession = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
) -> ReleaseListResponse:
    """リリースノート対象の全チケットを期日の降順で返す。"""
    releases = await TicketService(session).list_releases()
    return ReleaseListResponse(
        releases=[TicketResponse.model_validate(t) for t in releases],
    )
