"""Shared test fixtures.

Provides a throwaway SQLite database (via aiosqlite) behind the real async
engine, an async HTTP client backed by the FastAPI app, authentication
helpers, and a factory for raw ClickUp task payloads.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ---------------------------------------------------------------------------
# Environment overrides must happen BEFORE importing the app so that
# ``pydantic-settings`` picks up the test values instead of trying to
# connect to the real database.
# ---------------------------------------------------------------------------
_DB_DIR = tempfile.mkdtemp(prefix="ticket-portal-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests-only-1234567890abcdef")
os.environ.setdefault("CLICKUP_API_TOKEN", "pk_test_token")
os.environ.setdefault("CLICKUP_LIST_IDS", "list-a,list-b")
os.environ.setdefault("SYNC_INTERVAL_HOURS", "0")

from ticket_portal.core.security import create_access_token  # noqa: E402
from ticket_portal.database import Base, engine  # noqa: E402
from ticket_portal.main import app  # noqa: E402

TEST_EMAIL = "alice@example.com"

EMAIL_FIELD_ID = "e041d530-cb4e-4fd1-9759-9cb3f9a9cbe4"
TICKET_ID_FIELD_ID = "faadba80-e7bc-474e-b01c-1a1c965c9a76"
RELEASE_NOTES_FIELD_ID = "060ed832-9a39-4143-8c9b-571b346eba15"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db() -> AsyncGenerator[None, None]:
    """Create the schema before the test and drop it afterwards."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # pooled connections must not outlive the test's event loop
    await engine.dispose()


# ---------------------------------------------------------------------------
# Async HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def async_client(db: None) -> AsyncGenerator[AsyncClient, None]:
    """Yield an ``httpx.AsyncClient`` wired to the FastAPI app."""
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Test user helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_email() -> str:
    return TEST_EMAIL


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    """Return HTTP headers containing a valid Bearer token for
    ``TEST_EMAIL``."""
    token = create_access_token(email=TEST_EMAIL)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# ClickUp payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_task() -> Callable[..., dict[str, Any]]:
    """Return a factory for raw ClickUp task dictionaries.

    ``email`` is placed in the well-known email custom field; pass
    ``custom_fields`` to replace the field list entirely.
    """

    def _make(
        task_id: str = "task-1",
        *,
        name: str = "Printer on fire",
        email: str | None = TEST_EMAIL,
        created_ms: int = 1_700_000_000_000,
        updated_ms: int | None = None,
        custom_fields: list[dict[str, Any]] | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        if custom_fields is None:
            custom_fields = []
            if email is not None:
                custom_fields.append(
                    {
                        "id": EMAIL_FIELD_ID,
                        "name": "Requester Email",
                        "type": "email",
                        "value": email,
                    }
                )
        task: dict[str, Any] = {
            "id": task_id,
            "name": name,
            "description": None,
            "status": {"status": "open"},
            "priority": {"priority": "high"},
            "date_created": str(created_ms),
            "date_updated": str(updated_ms if updated_ms is not None else created_ms),
            "due_date": None,
            "custom_fields": custom_fields,
            "attachments": [],
        }
        task.update(extra)
        return task

    return _make
