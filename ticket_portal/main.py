"""FastAPIアプリケーションのエントリポイント。

アプリケーションのライフサイクル管理、ミドルウェア設定、
ルーティング、例外ハンドラ登録を行う。
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from ticket_portal.api.v1.router import router as api_v1_router
from ticket_portal.config import settings
from ticket_portal.core.exceptions import register_exception_handlers
from ticket_portal.services.sync_jobs import SyncJobManager

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """アプリケーションのライフサイクルを管理する。

    起動時に期限切れの同期ジョブを片付けてからスケジューラを開始し、
    シャットダウン時に停止する。

    Args:
        app: FastAPIアプリケーションインスタンス。
    """
    # --- 起動処理 ---
    logger.info("Application startup")
    if not settings.clickup_list_ids:
        logger.warning("CLICKUP_LIST_IDS is empty; ticket sync will not run")

    # 前回プロセスの停止で取り残された running ジョブを片付ける
    try:
        await SyncJobManager().reap_stale()
    except SQLAlchemyError:
        logger.exception("Could not reap stale sync jobs on startup")

    from ticket_portal.tasks.scheduler import scheduler, setup_jobs

    setup_jobs()
    scheduler.start()
    logger.info("APScheduler started")

    yield

    # --- シャットダウン処理 ---
    logger.info("Application shutdown")

    scheduler.shutdown(wait=False)
    logger.info("APScheduler stopped")


app = FastAPI(
    title="Ticket Portal API",
    description="ClickUpタスクをローカルに同期し、ユーザーごとのチケットを提供するAPI",
    version="1.0.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# ミドルウェア
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# 例外ハンドラ
# ---------------------------------------------------------------------------
register_exception_handlers(app)

# ---------------------------------------------------------------------------
# ルーティング
# ---------------------------------------------------------------------------
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """ヘルスチェックエンドポイント。"""
    return {"status": "ok"}
