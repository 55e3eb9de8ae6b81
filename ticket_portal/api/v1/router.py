"""API v1 ルーター集約モジュール。

各ドメインのルーターを統合し、プレフィックスとタグを設定する。
"""

from __future__ import annotations

from fastapi import APIRouter

from ticket_portal.api.v1.releases import router as releases_router
from ticket_portal.api.v1.sync import router as sync_router
from ticket_portal.api.v1.tickets import router as tickets_router

router = APIRouter()

router.include_router(
    tickets_router,
    prefix="/tickets",
    tags=["tickets"],
)

router.include_router(
    releases_router,
    prefix="/releases",
    tags=["releases"],
)

router.include_router(
    sync_router,
    prefix="/sync",
    tags=["sync"],
)
