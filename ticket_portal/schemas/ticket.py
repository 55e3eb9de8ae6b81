"""チケット関連のPydanticスキーマ。

チケット一覧・詳細、添付ファイル、コメント、リリースノートのAPI用スキーマを定義する。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TicketResponse(BaseModel):
    """チケットレスポンス。"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_code: str | None = None
    title: str
    description: str | None = None
    status: str
    priority: str
    user_email: str
    business_unit: str | None = None
    jira_status: str | None = None
    jira_assignee: str | None = None
    jira_url: str | None = None
    release_notes: bool = False
    due_date: datetime | None = None
    remote_created_at: datetime
    remote_updated_at: datetime
    synced_at: datetime


class TicketListMetadata(BaseModel):
    """チケット一覧のメタ情報。"""

    total_tickets: int = Field(..., ge=0, description="ストア内の全チケット数")
    user_tickets: int = Field(..., ge=0, description="呼び出しユーザーのチケット数")
    list_count: int = Field(..., ge=0, description="同期対象のリスト数")
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    sync_triggered: bool = Field(
        default=False,
        description="この読み取りで自動同期を開始したか",
    )


class TicketListResponse(BaseModel):
    """チケット一覧レスポンス。"""

    tickets: list[TicketResponse]
    metadata: TicketListMetadata


class AttachmentResponse(BaseModel):
    """添付ファイルレスポンス。"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    url: str
    extension: str | None = None
    size: int | None = None
    date_added: datetime | None = None


class TicketDetailResponse(TicketResponse):
    """添付ファイル付きチケット詳細レスポンス。"""

    attachments: list[AttachmentResponse] = Field(default_factory=list)


class CommentCreateRequest(BaseModel):
    """コメント投稿リクエスト。"""

    comment_text: str = Field(..., min_length=1, max_length=10000)


class CommentListResponse(BaseModel):
    """コメント一覧レスポンス（ClickUpのコメント構造をそのまま返す）。"""

    comments: list[dict[str, Any]]


class ReleaseListResponse(BaseModel):
    """リリースノート一覧レスポンス。"""

    releases: list[TicketResponse]
