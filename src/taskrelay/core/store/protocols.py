"""Store Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing），
TaskManager 只依赖此接口：内存实现用于测试，SQLite 实现用于持久化，
替换存储不需要修改 TaskManager 逻辑。
"""

from typing import Protocol

from ..models.query import TaskFilter
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口

    没有删除操作：Task 只会进入终态，不会被移除。
    """

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务，返回独立副本"""
        ...

    async def put_task(self, task: Task) -> None:
        """插入或覆盖任务

        首次插入时分配单调递增的插入序号，之后覆盖不改变序号。
        """
        ...

    async def list_tasks(
        self,
        query: TaskFilter,
        *,
        after_seq: int | None = None,
        limit: int | None = None,
    ) -> list[tuple[int, Task]]:
        """按插入顺序查询任务

        Returns:
            (插入序号, Task) 列表，仅包含序号大于 after_seq 的记录
        """
        ...
