"""全局 pytest 配置 -- 临时 SQLite 数据库与 TaskStore fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from taskrelay.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def memory_store():
    """内存 TaskStore"""
    from taskrelay.core.store import InMemoryTaskStore

    return InMemoryTaskStore()


@pytest_asyncio.fixture
async def sqlite_store(db_conn: aiosqlite.Connection):
    """基于临时数据库的 SQLite TaskStore（连接由 db_conn 负责关闭）"""
    from taskrelay.core.store import SqliteTaskStore

    return SqliteTaskStore(db_conn)


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def task_store(request, tmp_db_path: Path):
    """两种 TaskStore 实现参数化，验证行为一致"""
    from taskrelay.core.store import InMemoryTaskStore, create_sqlite_task_store

    if request.param == "memory":
        yield InMemoryTaskStore()
        return

    store = await create_sqlite_task_store(str(tmp_db_path))
    yield store
    await store.close()
