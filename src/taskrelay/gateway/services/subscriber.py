"""订阅者接口与基于队列的订阅者实现

订阅者是一个不透明的回调句柄，只有两个操作：
on_status_update / on_artifact_update。回调抛出异常（或超时）即视为投递失败，
发布器会将其移出订阅集合。
"""

import asyncio
from typing import Protocol

from taskrelay.core.models import (
    TaskArtifactUpdateEvent,
    TaskStatusUpdateEvent,
    TaskUpdateEvent,
)


class TaskUpdateSubscriber(Protocol):
    """任务更新订阅者"""

    async def on_status_update(self, event: TaskStatusUpdateEvent) -> None: ...

    async def on_artifact_update(self, event: TaskArtifactUpdateEvent) -> None: ...


class QueueSubscriber:
    """把事件推入 asyncio.Queue 的订阅者

    传输层可以 `async for event in subscriber` 逐个消费，收到 final 事件后迭代结束。
    队列满时 put_nowait 抛出 QueueFull，发布器据此移除该订阅者。
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[TaskUpdateEvent] = asyncio.Queue(maxsize=maxsize)
        self._finished = False

    async def on_status_update(self, event: TaskStatusUpdateEvent) -> None:
        self._queue.put_nowait(event)

    async def on_artifact_update(self, event: TaskArtifactUpdateEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> TaskUpdateEvent:
        """取下一个事件，超时抛出 TimeoutError"""
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def drain(self) -> list[TaskUpdateEvent]:
        """非阻塞地取出当前队列中的全部事件"""
        events: list[TaskUpdateEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def qsize(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "QueueSubscriber":
        return self

    async def __anext__(self) -> TaskUpdateEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.final:
            self._finished = True
        return event
