"""
Integration tests for the SQL repositories (SQLite via aiosqlite)
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from cleanup.repositories import (
    SqlCompensationRepository,
    SqlContentRepository,
    SqlLogTableRepository,
    SqlMaintenanceRepository,
    SqlMediaRepository,
    SqlOrphanFileRegistry,
    SqlProtectedFileRegistry,
    SqlTransactionRepository,
)
from cleanup.types import OrphanFileInfo
from core.database import AsyncDatabaseManager
from core.enums import (
    CompensationActionType,
    CompensationStatus,
    OrphanFileStatus,
    TransactionStatus,
)
from core.models import (
    CleanupLog,
    CompensationAction,
    OrphanFile,
    Post,
    PostMedia,
    ProtectedFile,
    UploadTransaction,
)
from core.utils.time_utils import utcnow


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = AsyncDatabaseManager()
    manager.init(f"sqlite+aiosqlite:///{tmp_path}/janitor.db")
    await manager.create_tables()
    yield manager
    await manager.close()


async def add_all(db, *rows):
    async with db.get_session() as session:
        session.add_all(rows)


async def fetch_all(db, model):
    async with db.get_session() as session:
        return list((await session.execute(select(model))).scalars().all())


class TestFileRegistries:
    @pytest.mark.asyncio
    async def test_referenced_keys_include_thumbnails(self, db):
        await add_all(
            db,
            PostMedia(storage_key="a.jpg", thumbnail_key="a_thumb.jpg"),
            PostMedia(storage_key="b.mp4"),
        )

        keys = await SqlMediaRepository(db).get_referenced_keys()

        assert keys == {"a.jpg", "a_thumb.jpg", "b.mp4"}

    @pytest.mark.asyncio
    async def test_orphan_registry_upserts(self, db):
        registry = SqlOrphanFileRegistry(db)
        modified = utcnow() - timedelta(days=10)

        await registry.record_orphans([OrphanFileInfo("x.jpg", 10, modified)])
        first = (await fetch_all(db, OrphanFile))[0]

        await registry.record_orphans([OrphanFileInfo("x.jpg", 12, modified)])
        rows = await fetch_all(db, OrphanFile)

        assert len(rows) == 1
        assert rows[0].size == 12
        assert rows[0].first_seen == first.first_seen
        assert rows[0].last_seen >= first.last_seen

        await registry.mark_cleaned("x.jpg")
        row = (await fetch_all(db, OrphanFile))[0]
        assert row.status == OrphanFileStatus.CLEANED
        assert row.cleaned_at is not None
        assert row.cleaned_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_protected_keys(self, db):
        await add_all(db, ProtectedFile(storage_key="legal/hold.pdf", reason="legal hold"))

        assert await SqlProtectedFileRegistry(db).get_protected_keys() == {"legal/hold.pdf"}


class TestTransactions:
    @pytest.mark.asyncio
    async def test_expired_transaction_cleanup(self, db):
        past = utcnow() - timedelta(hours=1)
        await add_all(
            db,
            UploadTransaction(id="t1", status=TransactionStatus.PENDING, expires_at=past),
            UploadTransaction(id="t2", status=TransactionStatus.COMPLETED, expires_at=past),
            UploadTransaction(id="t3", status=TransactionStatus.IN_PROGRESS, expires_at=utcnow() + timedelta(hours=1)),
        )
        await add_all(
            db,
            CompensationAction(transaction_id="t1", action_type=CompensationActionType.DELETE_FILE),
            CompensationAction(transaction_id="t1", action_type=CompensationActionType.ROLLBACK_TRANSACTION),
        )
        repo = SqlTransactionRepository(db)

        expired = await repo.get_expired_transactions(utcnow(), limit=10)
        assert [tx.id for tx in expired] == ["t1"]
        assert expired[0].expires_at.tzinfo is not None

        assert await repo.cleanup_transaction("t1") == 2
        assert await fetch_all(db, CompensationAction) == []

        statuses = {tx.id: tx.status for tx in await fetch_all(db, UploadTransaction)}
        assert statuses["t1"] == TransactionStatus.CLEANED
        assert await repo.get_expired_transactions(utcnow(), limit=10) == []

    @pytest.mark.asyncio
    async def test_mark_rolled_back(self, db):
        await add_all(db, UploadTransaction(id="t1", status=TransactionStatus.FAILED, expires_at=utcnow()))
        repo = SqlTransactionRepository(db)

        assert await repo.mark_rolled_back("t1")
        assert not await repo.mark_rolled_back("missing")


class TestCompensations:
    @pytest.mark.asyncio
    async def test_retry_lifecycle(self, db):
        now = utcnow()
        await add_all(db, UploadTransaction(id="t1", status=TransactionStatus.FAILED, expires_at=now))
        await add_all(
            db,
            CompensationAction(
                transaction_id="t1",
                action_type=CompensationActionType.DELETE_FILE,
                status=CompensationStatus.FAILED,
                retry_count=2,
                payload={"key": "a.jpg"},
                created_at=now - timedelta(hours=2),
            ),
            CompensationAction(
                transaction_id="t1",
                action_type=CompensationActionType.DELETE_FILE,
                status=CompensationStatus.FAILED,
                retry_count=0,
                created_at=now - timedelta(hours=2),
                last_retry_at=now - timedelta(minutes=5),
            ),
        )
        repo = SqlCompensationRepository(db)

        retryable = await repo.get_retryable_actions(3, now - timedelta(hours=1), limit=10)
        assert len(retryable) == 1
        action = retryable[0]
        assert action.payload == {"key": "a.jpg"}

        await repo.mark_retry_started(action.id, now)
        assert await repo.get_retryable_actions(3, now + timedelta(hours=1), limit=10) != []

        exhausted = await repo.get_exhausted_actions(3, limit=10)
        assert [a.id for a in exhausted] == [action.id]
        assert exhausted[0].retry_count == 3

        await repo.mark_permanently_failed(action.id, now)
        await repo.mark_resolved(action.id, now)

        rows = {row.id: row for row in await fetch_all(db, CompensationAction)}
        assert rows[action.id].status == CompensationStatus.PERMANENTLY_FAILED
        assert rows[action.id].resolved_at is None
        assert await repo.get_exhausted_actions(3, limit=10) == []


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_log_table_batches(self, db):
        old = utcnow() - timedelta(days=40)
        await add_all(db, *[CleanupLog(message=f"m{i}", created_at=old) for i in range(3)], CleanupLog(message="new"))
        repo = SqlLogTableRepository(db)
        cutoff = utcnow() - timedelta(days=30)

        assert await repo.count_older_than("cleanup_logs", cutoff) == 3
        assert await repo.delete_older_than("cleanup_logs", cutoff, limit=2) == 2
        assert await repo.delete_older_than("cleanup_logs", cutoff, limit=2) == 1
        assert await repo.delete_older_than("cleanup_logs", cutoff, limit=2) == 0
        assert len(await fetch_all(db, CleanupLog)) == 1

        with pytest.raises(ValueError):
            await repo.count_older_than("users", cutoff)

    @pytest.mark.asyncio
    async def test_orphan_content(self, db):
        old = utcnow() - timedelta(days=2)
        await add_all(
            db,
            Post(id=1, title="with media", created_at=old),
            Post(id=2, title="empty old", created_at=old),
            Post(id=3, title="empty new"),
        )
        await add_all(
            db,
            PostMedia(post_id=1, storage_key="a.jpg"),
            PostMedia(post_id=99, storage_key="b.jpg"),
            PostMedia(post_id=None, storage_key="c.jpg"),
        )
        repo = SqlContentRepository(db)
        created_before = utcnow() - timedelta(hours=24)

        assert await repo.count_posts_without_media(created_before) == 1
        assert await repo.count_media_without_post() == 2

        assert await repo.delete_posts_without_media(created_before, limit=10) == 1
        assert await repo.delete_media_without_post(limit=10) == 2

        assert sorted(p.id for p in await fetch_all(db, Post)) == [1, 3]
        assert [m.storage_key for m in await fetch_all(db, PostMedia)] == ["a.jpg"]

    @pytest.mark.asyncio
    async def test_optimize_table(self, db):
        repo = SqlMaintenanceRepository(db)

        await repo.optimize_table("posts")

        with pytest.raises(ValueError):
            await repo.optimize_table("sqlite_master")
