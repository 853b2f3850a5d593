"""StreamingSession -- 流式调用返回给传输层的句柄

只保存 task_id，订阅/退订/查询都转发给 TaskManager。
由 Gate 创建时会带上 Gate 的存活检查，Gate dispose 之后
subscribe 与 get_task 抛出 RevokedError；unsubscribe 始终可用，便于清理。
"""

from collections.abc import Callable

from taskrelay.core.models import Task

from .subscriber import TaskUpdateSubscriber
from .task_manager import TaskManager


class StreamingSession:
    def __init__(
        self,
        task_id: str,
        manager: TaskManager,
        guard: Callable[[], None] | None = None,
    ) -> None:
        self.task_id = task_id
        self._manager = manager
        self._guard = guard

    async def subscribe(self, subscriber: TaskUpdateSubscriber) -> None:
        self._check()
        await self._manager.subscribe(self.task_id, subscriber)

    async def unsubscribe(self, subscriber: TaskUpdateSubscriber) -> None:
        await self._manager.unsubscribe(self.task_id, subscriber)

    async def get_task(self, history_length: int | None = None) -> Task:
        self._check()
        return await self._manager.get_task(self.task_id, history_length)

    def _check(self) -> None:
        if self._guard is not None:
            self._guard()
