"""同期関連のPydanticスキーマ。

同期トリガー、ステータス確認、リセット、同期履歴のAPI用スキーマを定義する。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ticket_portal.schemas.common import PaginationMeta


class SyncTriggerRequest(BaseModel):
    """同期トリガーリクエスト。"""

    force: bool = Field(
        default=False,
        description="Trueの場合、実行中のジョブを全てリセットしてから開始する",
    )


class SyncTriggerResponse(BaseModel):
    """同期トリガーレスポンス（202）。"""

    status: Literal["started"] = "started"
    job_id: int


class SyncConflictResponse(BaseModel):
    """同期が実行中のためトリガーを拒否したレスポンス（409）。"""

    status: Literal["running"] = "running"
    conflict: bool = True


class SyncLogItem(BaseModel):
    """同期ジョブ記録。"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    tickets_synced: int = 0
    tickets_total: int = 0
    error_message: Optional[str] = None


class SyncStatusResponse(BaseModel):
    """同期ステータスレスポンス。"""

    last_sync: Optional[SyncLogItem] = Field(
        default=None,
        description="最も新しく開始されたジョブ。一度も実行されていなければnull",
    )
    is_running: bool


class SyncResetResponse(BaseModel):
    """リセットレスポンス。"""

    count: int = Field(..., ge=0, description="failedに遷移させたジョブ数")


class SyncHistoryResponse(BaseModel):
    """同期履歴レスポンス。"""

    logs: list[SyncLogItem]
    pagination: PaginationMeta
