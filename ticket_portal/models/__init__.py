"""ORM models package.

Importing this module ensures every model is registered with the
SQLAlchemy ``Base.metadata`` so that Alembic autogenerate can detect
all tables.
"""

from ticket_portal.models.attachment import Attachment
from ticket_portal.models.sync_log import SyncLog, SyncStatus
from ticket_portal.models.ticket import Ticket

__all__ = [
    "Attachment",
    "SyncLog",
    "SyncStatus",
    "Ticket",
]
