"""Ticket ORM model (local mirror of a remote ClickUp task)."""

from datetime import datetime

from sqlalchemy import Boolean, Index, String, TIMESTAMP, Text, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticket_portal.database import Base


class Ticket(Base):
    """Ticket mirrored from a remote task.

    Rows are written only by the sync engine: created on the first sync of a
    remote task ID and fully overwritten on every later sync.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_user_email", "user_email"),
        Index("ix_tickets_remote_created_at", "remote_created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Remote task ID",
    )
    ticket_code: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        server_default="normal",
    )
    user_email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
    )
    business_unit: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    jira_status: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    jira_assignee: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    jira_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    release_notes: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=false(),
    )
    due_date: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    remote_created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    remote_updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    synced_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )

    # --- Relationships ---
    attachments: Mapped[list["Attachment"]] = relationship(  # noqa: F821
        back_populates="ticket",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id!r}, status={self.status!r})>"
