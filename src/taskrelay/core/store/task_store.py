"""TaskStore SQLite 实现

可过滤字段单独成列并建索引，完整 Task 以 JSON 存于 body 列。
每次 put_task 单独提交，失败回滚，不会留下半写入的记录。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.query import TaskFilter
from ..models.task import Task


def _ts(value: datetime) -> str:
    """统一时间格式，保证字符串比较与时间先后一致"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT body FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Task.model_validate_json(row[0])

    async def put_task(self, task: Task) -> None:
        """插入或覆盖任务（仅更新 state / updated_at / body）"""
        try:
            await self._conn.execute(
                """
                INSERT INTO tasks (task_id, context_id, state, owner_id,
                                   created_at, updated_at, body)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(task_id) DO UPDATE SET
                    state = excluded.state,
                    updated_at = excluded.updated_at,
                    body = excluded.body
                """,
                (
                    task.id,
                    task.context_id,
                    task.status.state.value,
                    task.owner_id,
                    _ts(task.created_at),
                    _ts(task.status.timestamp),
                    task.model_dump_json(),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def list_tasks(
        self,
        query: TaskFilter,
        *,
        after_seq: int | None = None,
        limit: int | None = None,
    ) -> list[tuple[int, Task]]:
        """按插入序号正序查询任务"""
        clauses: list[str] = []
        params: list = []

        if after_seq is not None:
            clauses.append("seq > ?")
            params.append(after_seq)
        if query.context_id is not None:
            clauses.append("context_id = ?")
            params.append(query.context_id)
        if query.state is not None:
            clauses.append("state = ?")
            params.append(query.state.value)
        if query.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(query.owner_id)
        if query.created_after is not None:
            clauses.append("created_at >= ?")
            params.append(_ts(query.created_after))
        if query.created_before is not None:
            clauses.append("created_at <= ?")
            params.append(_ts(query.created_before))

        sql = "SELECT seq, body FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [(row[0], Task.model_validate_json(row[1])) for row in rows]

    async def count_tasks(self) -> int:
        """任务总数"""
        cursor = await self._conn.execute("SELECT COUNT(*) FROM tasks")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def close(self) -> None:
        await self._conn.close()
