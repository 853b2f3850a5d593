"""TaskStore 内存实现

dict 保持插入顺序，额外记录插入序号用于游标分页。
读写都做深拷贝，调用方拿到的是快照，不能绕过 TaskManager 修改存储。
"""

import itertools

from ..models.query import TaskFilter
from ..models.task import Task


class InMemoryTaskStore:
    """TaskStore 的内存实现"""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._seqs: dict[str, int] = {}
        self._counter = itertools.count(1)

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    async def put_task(self, task: Task) -> None:
        if task.id not in self._seqs:
            self._seqs[task.id] = next(self._counter)
        self._tasks[task.id] = task.model_copy(deep=True)

    async def list_tasks(
        self,
        query: TaskFilter,
        *,
        after_seq: int | None = None,
        limit: int | None = None,
    ) -> list[tuple[int, Task]]:
        results: list[tuple[int, Task]] = []
        for task_id, task in self._tasks.items():
            seq = self._seqs[task_id]
            if after_seq is not None and seq <= after_seq:
                continue
            if not query.matches(task):
                continue
            results.append((seq, task.model_copy(deep=True)))
            if limit is not None and len(results) >= limit:
                break
        return results

    def __len__(self) -> int:
        return len(self._tasks)
