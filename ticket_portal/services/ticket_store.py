"""チケットストアのupsert層。

正規化済みレコードをリモートタスクIDをキーに全列上書きで保存する。
レコードごとに独立したトランザクションで処理し、1件の失敗は
ログに記録してスキップする。
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_portal.database import async_session_factory
from ticket_portal.models import Attachment, Ticket
from ticket_portal.services.field_extraction import AttachmentRecord, TicketRecord

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert_statement(session: AsyncSession, model: Any, row: dict[str, Any]):
    """方言ネイティブの INSERT .. ON CONFLICT DO UPDATE 文を生成する。

    主キー以外の全列を上書きする。
    """
    dialect = session.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}")

    stmt = insert(model).values(**row)
    return stmt.on_conflict_do_update(
        index_elements=[model.id],
        set_={
            column: stmt.excluded[column]
            for column in row
            if column != "id"
        },
    )


class TicketStore:
    """チケット・添付ファイルの保存を担当する。"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """TicketStoreを初期化する。

        Args:
            session_factory: セッションファクトリ。省略時はアプリ共通のもの。
            now: synced_at に使う現在時刻関数（テストで差し替え可能）。
        """
        self.session_factory = session_factory or async_session_factory
        self._now = now

    async def upsert_batch(self, records: Sequence[TicketRecord]) -> int:
        """チケットレコードをまとめてupsertする。

        各レコードは個別にコミットされ、失敗したレコードはスキップされる。

        Args:
            records: 正規化済みチケットレコード。

        Returns:
            保存に成功した件数。
        """
        if not records:
            return 0

        succeeded = 0
        async with self.session_factory() as session:
            for record in records:
                row = record.as_row()
                row["synced_at"] = self._now()
                try:
                    await session.execute(_upsert_statement(session, Ticket, row))
                    await session.commit()
                    succeeded += 1
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(
                        "Failed to upsert ticket %s: %s",
                        record.id,
                        e.__class__.__name__,
                    )
                    logger.debug("Upsert failure detail for %s", record.id, exc_info=True)

        if succeeded < len(records):
            logger.warning(
                "Upserted %d of %d tickets (%d skipped)",
                succeeded,
                len(records),
                len(records) - succeeded,
            )
        return succeeded

    async def upsert_attachments(self, records: Sequence[AttachmentRecord]) -> int:
        """添付ファイルをIDをキーにupsertする。

        Args:
            records: 正規化済み添付ファイルレコード。

        Returns:
            保存に成功した件数。
        """
        succeeded = 0
        async with self.session_factory() as session:
            for record in records:
                try:
                    await session.execute(
                        _upsert_statement(session, Attachment, record.as_row())
                    )
                    await session.commit()
                    succeeded += 1
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(
                        "Failed to upsert attachment %s of ticket %s: %s",
                        record.id,
                        record.ticket_id,
                        e.__class__.__name__,
                    )
        return succeeded
