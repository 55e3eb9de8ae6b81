"""Attachment ORM model."""

from datetime import datetime

from sqlalchemy import BigInteger, ForeignKey, String, TIMESTAMP, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticket_portal.database import Base


class Attachment(Base):
    """Cached attachment of a ticket, filled lazily on the first detail view."""

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Remote attachment ID",
    )
    ticket_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    extension: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )
    size: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    date_added: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # --- Relationships ---
    ticket: Mapped["Ticket"] = relationship(  # noqa: F821
        back_populates="attachments",
    )

    def __repr__(self) -> str:
        return f"<Attachment(id={self.id!r}, ticket_id={self.ticket_id!r})>"
