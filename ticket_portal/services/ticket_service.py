"""チケット参照サービス。

チケット一覧・詳細・リリースノートの読み取りと、添付ファイルの
遅延キャッシュを提供する。読み取りはローカルのチケットストアのみを参照する。
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticket_portal.core.exceptions import ExternalAPIError, NotFoundError
from ticket_portal.external.clickup_client import ClickUpClient
from ticket_portal.models import Attachment, Ticket
from ticket_portal.services.field_extraction import extract_attachments
from ticket_portal.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)


class TicketService:
    """チケット参照サービス。"""

    def __init__(self, session: AsyncSession) -> None:
        """TicketServiceを初期化する。

        Args:
            session: 非同期データベースセッション。
        """
        self.session = session

    async def list_user_tickets(self, email: str) -> list[Ticket]:
        """ユーザーのチケットを作成日時の降順で返す。

        メールアドレスは大文字小文字を区別せず比較する。

        Args:
            email: ユーザーのメールアドレス。

        Returns:
            Ticketのリスト。
        """
        stmt = (
            select(Ticket)
            .where(func.lower(Ticket.user_email) == email.lower())
            .order_by(Ticket.remote_created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_all(self) -> int:
        """ストア内の全チケット数を返す。"""
        result = await self.session.execute(select(func.count(Ticket.id)))
        return result.scalar_one()

    async def get_user_ticket(self, ticket_id: str, email: str) -> Ticket:
        """ユーザーが所有するチケットを取得する。

        Args:
            ticket_id: リモートタスクID。
            email: ユーザーのメールアドレス。

        Returns:
            Ticket。

        Raises:
            NotFoundError: 存在しない、または他ユーザーのチケットの場合。
        """
        ticket = await self.session.get(Ticket, ticket_id)
        if ticket is None or ticket.user_email.lower() != email.lower():
            raise NotFoundError(detail=f"Ticket {ticket_id} not found")
        return ticket

    async def get_attachments(
        self,
        ticket: Ticket,
        client: ClickUpClient,
        store: TicketStore | None = None,
    ) -> list[Attachment]:
        """チケットの添付ファイルを返す。

        キャッシュ済みの行があればそれを返し、無ければリモートタスクを取得して
        添付ファイルをIDをキーに保存してから返す。リモート取得に失敗した場合は
        空リストを返す。

        Args:
            ticket: 対象チケット。
            client: ClickUpクライアント。
            store: 保存先。省略時はアプリ共通のもの。

        Returns:
            Attachmentのリスト。
        """
        cached = await self._cached_attachments(ticket.id)
        if cached:
            return cached

        try:
            task = await client.get_task(ticket.id)
        except ExternalAPIError as e:
            logger.warning(
                "Failed to fetch attachments for ticket %s: %s",
                ticket.id,
                e.detail,
            )
            return []

        records = extract_attachments(task)
        if not records:
            return []

        store = store or TicketStore()
        saved = await store.upsert_attachments(records)
        logger.info("Cached %d attachment(s) for ticket %s", saved, ticket.id)
        return await self._cached_attachments(ticket.id)

    async def list_releases(self) -> list[Ticket]:
        """リリースノート対象のチケットを期日の降順で返す。期日未設定は末尾。"""
        stmt = (
            select(Ticket)
            .where(Ticket.release_notes.is_(True))
            .order_by(Ticket.due_date.desc().nulls_last(), Ticket.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _cached_attachments(self, ticket_id: str) -> list[Attachment]:
        stmt = (
            select(Attachment)
            .where(Attachment.ticket_id == ticket_id)
            .order_by(Attachment.date_added.desc().nulls_last(), Attachment.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
