"""TaskRelay Core Store -- 内存与 SQLite 两种 TaskStore 实现

提供工厂函数按配置创建 TaskStore。
"""

from pathlib import Path

import aiosqlite

from ..config import RelayConfig
from .memory import InMemoryTaskStore
from .protocols import TaskStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore


async def create_sqlite_task_store(db_path: str) -> SqliteTaskStore:
    """创建 SQLite TaskStore

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        已初始化的 SqliteTaskStore 实例，调用方负责 close()
    """
    # 确保数据库目录存在
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await init_db(conn)
    return SqliteTaskStore(conn)


async def create_task_store(config: RelayConfig) -> TaskStore:
    """按 store_backend 创建 TaskStore"""
    if config.store_backend == "sqlite":
        return await create_sqlite_task_store(config.db_path)
    return InMemoryTaskStore()


__all__ = [
    "TaskStore",
    "InMemoryTaskStore",
    "SqliteTaskStore",
    "create_sqlite_task_store",
    "create_task_store",
    "init_db",
]
