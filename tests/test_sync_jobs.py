"""Tests for ``ticket_portal.services.sync_jobs`` against the SQLite test database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ticket_portal.core.exceptions import NotFoundError, SyncConflictError
from ticket_portal.database import async_session_factory
from ticket_portal.models import SyncLog, SyncStatus
from ticket_portal.services.sync_jobs import (
    RESET_JOB_MESSAGE,
    STALE_JOB_MESSAGE,
    SyncJobManager,
)


class FakeClock:
    """Settable clock for the job manager."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def manager(db: None, clock: FakeClock) -> SyncJobManager:
    return SyncJobManager(stale_after=timedelta(minutes=20), now=clock)


async def _all_jobs() -> list[SyncLog]:
    async with async_session_factory() as session:
        result = await session.execute(select(SyncLog).order_by(SyncLog.id))
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# start / conflict
# ---------------------------------------------------------------------------


class TestStart:
    """SyncJobManager.start"""

    @pytest.mark.asyncio
    async def test_creates_running_row(self, manager: SyncJobManager) -> None:
        job = await manager.start()

        assert job.id is not None
        assert job.status == SyncStatus.RUNNING.value
        assert job.tickets_synced == 0
        assert await manager.is_running() is True

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self, manager: SyncJobManager) -> None:
        await manager.start()

        with pytest.raises(SyncConflictError):
            await manager.start()

        jobs = await _all_jobs()
        assert [j.status for j in jobs] == ["running"]

    @pytest.mark.asyncio
    async def test_concurrent_starts_yield_one_running(self, manager: SyncJobManager) -> None:
        results = await asyncio.gather(
            manager.start(),
            manager.start(),
            return_exceptions=True,
        )

        started = [r for r in results if isinstance(r, SyncLog)]
        conflicts = [r for r in results if isinstance(r, SyncConflictError)]
        assert len(started) == 1
        assert len(conflicts) == 1

        jobs = await _all_jobs()
        assert [j.status for j in jobs] == ["running"]

    @pytest.mark.asyncio
    async def test_database_rejects_second_running_row(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        async with async_session_factory() as session:
            session.add(SyncLog(status="running", started_at=clock()))
            session.add(SyncLog(status="running", started_at=clock()))
            with pytest.raises(IntegrityError):
                await session.commit()

    @pytest.mark.asyncio
    async def test_start_after_stale_job_reaps_it(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        old = await manager.start()
        clock.advance(minutes=21)

        new = await manager.start()

        assert new.id != old.id
        jobs = {j.id: j for j in await _all_jobs()}
        assert jobs[old.id].status == "failed"
        assert jobs[old.id].error_message == STALE_JOB_MESSAGE
        assert jobs[old.id].completed_at is not None
        assert jobs[new.id].status == "running"

    @pytest.mark.asyncio
    async def test_start_within_window_still_conflicts(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        await manager.start()
        clock.advance(minutes=19)

        with pytest.raises(SyncConflictError):
            await manager.start()


# ---------------------------------------------------------------------------
# is_running / stale reaping
# ---------------------------------------------------------------------------


class TestIsRunning:
    """SyncJobManager.is_running"""

    @pytest.mark.asyncio
    async def test_false_when_empty(self, manager: SyncJobManager) -> None:
        assert await manager.is_running() is False

    @pytest.mark.asyncio
    async def test_stale_row_is_reaped(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        job = await manager.start()
        clock.advance(minutes=45)

        assert await manager.is_running() is False

        reaped = await manager.get(job.id)
        assert reaped.status == "failed"
        assert reaped.error_message == STALE_JOB_MESSAGE

    @pytest.mark.asyncio
    async def test_completed_rows_are_ignored(self, manager: SyncJobManager) -> None:
        job = await manager.start()
        await manager.complete(job.id, 1, 1)

        assert await manager.is_running() is False


# ---------------------------------------------------------------------------
# progress / complete / fail
# ---------------------------------------------------------------------------


class TestTransitions:
    """progress, complete, fail"""

    @pytest.mark.asyncio
    async def test_progress_updates_counters(self, manager: SyncJobManager) -> None:
        job = await manager.start()

        assert await manager.progress(job.id, 50, 100) is True
        assert await manager.progress(job.id, 150, 200) is True

        current = await manager.get(job.id)
        assert (current.tickets_synced, current.tickets_total) == (150, 200)

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, manager: SyncJobManager) -> None:
        job = await manager.start()
        await manager.progress(job.id, 80, 100)

        await manager.progress(job.id, 10, 20)

        current = await manager.get(job.id)
        assert (current.tickets_synced, current.tickets_total) == (80, 100)

    @pytest.mark.asyncio
    async def test_complete_once(self, manager: SyncJobManager) -> None:
        job = await manager.start()

        assert await manager.complete(job.id, 9, 10) is True
        assert await manager.complete(job.id, 1, 1) is False
        assert await manager.fail(job.id, "late failure") is False

        current = await manager.get(job.id)
        assert current.status == "completed"
        assert (current.tickets_synced, current.tickets_total) == (9, 10)
        assert current.error_message is None
        assert current.completed_at is not None

    @pytest.mark.asyncio
    async def test_fail_records_message_and_counters(self, manager: SyncJobManager) -> None:
        job = await manager.start()
        await manager.progress(job.id, 3, 5)

        assert await manager.fail(job.id, "boom") is True

        current = await manager.get(job.id)
        assert current.status == "failed"
        assert current.error_message == "boom"
        assert (current.tickets_synced, current.tickets_total) == (3, 5)

    @pytest.mark.asyncio
    async def test_progress_after_terminal_is_ignored(self, manager: SyncJobManager) -> None:
        job = await manager.start()
        await manager.fail(job.id, "boom")

        assert await manager.progress(job.id, 100, 100) is False

    @pytest.mark.asyncio
    async def test_get_unknown_job(self, manager: SyncJobManager) -> None:
        with pytest.raises(NotFoundError):
            await manager.get(999)


# ---------------------------------------------------------------------------
# reset_stuck / history
# ---------------------------------------------------------------------------


class TestResetAndHistory:
    """reset_stuck, last_sync, completed_within, history"""

    @pytest.mark.asyncio
    async def test_reset_fresh_running_job(self, manager: SyncJobManager) -> None:
        job = await manager.start()

        assert await manager.reset_stuck() == 1
        assert await manager.reset_stuck() == 0

        current = await manager.get(job.id)
        assert current.status == "failed"
        assert current.error_message == RESET_JOB_MESSAGE
        assert await manager.is_running() is False

    @pytest.mark.asyncio
    async def test_last_sync_is_most_recent(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        assert await manager.last_sync() is None

        first = await manager.start()
        await manager.complete(first.id, 1, 1)
        clock.advance(minutes=5)
        second = await manager.start()

        last = await manager.last_sync()
        assert last is not None
        assert last.id == second.id

    @pytest.mark.asyncio
    async def test_completed_within(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        job = await manager.start()
        await manager.complete(job.id, 1, 1)

        assert await manager.completed_within(timedelta(hours=1)) is True
        clock.advance(minutes=61)
        assert await manager.completed_within(timedelta(hours=1)) is False

    @pytest.mark.asyncio
    async def test_failed_runs_do_not_count_as_fresh(self, manager: SyncJobManager) -> None:
        job = await manager.start()
        await manager.fail(job.id, "boom")

        assert await manager.completed_within(timedelta(hours=1)) is False

    @pytest.mark.asyncio
    async def test_history_paginates_newest_first(
        self, manager: SyncJobManager, clock: FakeClock
    ) -> None:
        ids = []
        for _ in range(3):
            job = await manager.start()
            await manager.complete(job.id, 0, 0)
            ids.append(job.id)
            clock.advance(minutes=1)

        page1, total = await manager.history(page=1, per_page=2)
        page2, _ = await manager.history(page=2, per_page=2)

        assert total == 3
        assert [j.id for j in page1] == [ids[2], ids[1]]
        assert [j.id for j in page2] == [ids[0]]
