"""SQLite TaskStore 持久化测试

测试内容：
1. WAL 模式生效
2. 重新打开数据库后任务仍在
3. 工厂函数按配置选择后端
"""

from pathlib import Path

import aiosqlite
from taskrelay.core.config import RelayConfig
from taskrelay.core.models import Task, TaskFilter, TaskState, TaskStatus
from taskrelay.core.store import (
    InMemoryTaskStore,
    SqliteTaskStore,
    create_sqlite_task_store,
    create_task_store,
)
from taskrelay.core.store.sqlite_init import verify_wal_mode


class TestSqliteInit:
    """数据库初始化"""

    async def test_wal_mode_enabled(self, db_conn: aiosqlite.Connection):
        assert await verify_wal_mode(db_conn) is True

    async def test_init_is_idempotent(self, db_conn: aiosqlite.Connection):
        from taskrelay.core.store.sqlite_init import init_db

        await init_db(db_conn)
        cursor = await db_conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='tasks'"
        )
        assert await cursor.fetchone() is not None


class TestSqliteDurability:
    """进程重启后数据仍可读"""

    async def test_reopen_preserves_tasks(self, tmp_path: Path):
        db_path = str(tmp_path / "nested" / "relay.db")

        store = await create_sqlite_task_store(db_path)
        await store.put_task(
            Task(
                id="t1",
                context_id="ctx",
                status=TaskStatus(state=TaskState.INPUT_REQUIRED),
                owner_id="alice",
            )
        )
        await store.close()

        reopened = await create_sqlite_task_store(db_path)
        try:
            task = await reopened.get_task("t1")
            assert task is not None
            assert task.status.state == TaskState.INPUT_REQUIRED
            assert task.owner_id == "alice"
            assert await reopened.count_tasks() == 1
        finally:
            await reopened.close()

    async def test_seq_survives_reopen(self, tmp_path: Path):
        db_path = str(tmp_path / "relay.db")
        store = await create_sqlite_task_store(db_path)
        for i in range(2):
            await store.put_task(
                Task(id=f"t{i}", context_id="c", status=TaskStatus(state=TaskState.WORKING))
            )
        await store.close()

        reopened = await create_sqlite_task_store(db_path)
        try:
            await reopened.put_task(
                Task(id="t2", context_id="c", status=TaskStatus(state=TaskState.WORKING))
            )
            rows = await reopened.list_tasks(TaskFilter())
            assert [t.id for _, t in rows] == ["t0", "t1", "t2"]
        finally:
            await reopened.close()


class TestStoreFactory:
    """create_task_store"""

    async def test_memory_backend(self):
        store = await create_task_store(RelayConfig(store_backend="memory"))
        assert isinstance(store, InMemoryTaskStore)

    async def test_sqlite_backend(self, tmp_path: Path):
        config = RelayConfig(store_backend="sqlite", db_path=str(tmp_path / "f.db"))
        store = await create_task_store(config)
        try:
            assert isinstance(store, SqliteTaskStore)
            assert (tmp_path / "f.db").exists()
        finally:
            await store.close()
