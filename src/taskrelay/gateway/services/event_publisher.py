"""EventPublisher -- 单个任务的事件扇出器

每个任务恰好拥有一个 EventPublisher。投递规则：
1. enqueue 是同步的，事件顺序在入队时确定；final 之后的事件一律丢弃
2. flush 同样是同步的：按入队顺序把事件分发到每个订阅者自己的投递队列，不等待任何回调
3. 每个订阅者由独立的投递任务按顺序回调，单个回调受 delivery_timeout_s 限制；
   失败或超时的订阅者被移除，其余订阅者照常接收
4. final 事件分发后清空订阅集合，各投递任务送达 final 后退出
5. 迟到的订阅者如果任务已有 final 事件，直接收到该 final 事件，不进入订阅集合

回调运行在投递任务里，回调内部可以再次变更同一任务（例如收到 working 后取消），
新事件排在该订阅者队列的末尾。慢订阅者只拖慢它自己的队列。
"""

import asyncio
from collections import deque

import structlog

from taskrelay.core.models import (
    TaskStatusUpdateEvent,
    TaskUpdateEvent,
)

from .subscriber import TaskUpdateSubscriber

log = structlog.get_logger()


class _Channel:
    """单个订阅者的有序投递队列（None 表示关闭）"""

    def __init__(self, subscriber: TaskUpdateSubscriber) -> None:
        self.subscriber = subscriber
        self.queue: asyncio.Queue[TaskUpdateEvent | None] = asyncio.Queue()
        self.runner: asyncio.Task | None = None


class EventPublisher:
    """单任务发布/订阅通道"""

    def __init__(
        self,
        task_id: str,
        context_id: str,
        *,
        delivery_timeout_s: float = 30.0,
        final_event: TaskStatusUpdateEvent | None = None,
    ) -> None:
        """
        Args:
            task_id: 所属任务 ID
            context_id: 所属上下文 ID
            delivery_timeout_s: 单个回调的超时时间
            final_event: 任务已在终态时传入其终态事件（从存储重建发布器时使用）
        """
        self.task_id = task_id
        self.context_id = context_id
        self._delivery_timeout_s = delivery_timeout_s
        self._channels: list[_Channel] = []
        # 投递任务仍在运行的通道（含已退订、尚未送完的通道）
        self._live: set[_Channel] = set()
        self._outbox: deque[TaskUpdateEvent] = deque()
        self._final_event = final_event
        self._finalized = final_event is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._channels)

    @property
    def final_event(self) -> TaskStatusUpdateEvent | None:
        return self._final_event

    @property
    def finalized(self) -> bool:
        """final 事件是否已分发（之后发布器不再接收事件或订阅）"""
        return self._finalized

    @property
    def delivering(self) -> bool:
        """是否还有投递任务在运行"""
        return bool(self._live)

    def has_subscriber(self, subscriber: TaskUpdateSubscriber) -> bool:
        return any(c.subscriber is subscriber for c in self._channels)

    def subscribe(self, subscriber: TaskUpdateSubscriber) -> None:
        """添加订阅者

        任务已有 final 事件时，只把 final 事件投递给新订阅者，且不加入订阅集合。
        """
        if self._final_event is not None:
            log.debug("late_subscriber_receives_final", task_id=self.task_id)
            self._open(subscriber).queue.put_nowait(self._final_event)
            return

        if not self.has_subscriber(subscriber):
            self._channels.append(self._open(subscriber))
        log.debug(
            "subscriber_added",
            task_id=self.task_id,
            subscriber_count=len(self._channels),
        )

    def unsubscribe(self, subscriber: TaskUpdateSubscriber) -> None:
        """移除订阅者（幂等：重复移除不报错）

        已分发到该订阅者队列的事件仍会送达，之后分发的事件不再投递。
        """
        for channel in [c for c in self._channels if c.subscriber is subscriber]:
            self._detach(channel)

    def enqueue(self, event: TaskUpdateEvent) -> bool:
        """事件入队（同步），返回是否被接受

        以下情况事件被丢弃：
        - 已有 final 事件（终态任务不再产生事件）
        - 事件的 task_id / context_id 与发布器不一致
        """
        if self._final_event is not None:
            log.warning(
                "event_dropped_after_final",
                task_id=self.task_id,
                event_kind=event.kind,
            )
            return False

        if event.task_id != self.task_id or event.context_id != self.context_id:
            log.error(
                "event_dropped_id_mismatch",
                task_id=self.task_id,
                event_task_id=event.task_id,
                event_context_id=event.context_id,
            )
            return False

        self._outbox.append(event)
        if event.final:
            self._final_event = event
        return True

    def flush(self) -> None:
        """按入队顺序把待发送事件分发到各订阅者的投递队列"""
        while self._outbox:
            event = self._outbox.popleft()
            for channel in self._channels:
                channel.queue.put_nowait(event)
            if event.final:
                self._channels.clear()
                self._finalized = True
                log.debug("publisher_finalized", task_id=self.task_id)

    def publish(self, event: TaskUpdateEvent) -> bool:
        """入队并立即分发"""
        accepted = self.enqueue(event)
        self.flush()
        return accepted

    async def wait_delivered(self) -> None:
        """等待已分发的事件全部送达（或对应订阅者被移除）"""
        channels = list(self._live)
        if channels:
            await asyncio.gather(*(c.queue.join() for c in channels))

    async def aclose(self) -> None:
        """停止全部投递任务，未送达的事件被丢弃"""
        self._channels.clear()
        runners = [c.runner for c in self._live if c.runner is not None]
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    def _open(self, subscriber: TaskUpdateSubscriber) -> _Channel:
        channel = _Channel(subscriber)
        channel.runner = asyncio.create_task(
            self._run(channel),
            name=f"deliver-{self.task_id}",
        )
        self._live.add(channel)
        return channel

    def _detach(self, channel: _Channel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
            channel.queue.put_nowait(None)

    async def _run(self, channel: _Channel) -> None:
        """按顺序把通道里的事件交给订阅者，直到 final、关闭或投递失败"""
        try:
            while True:
                event = await channel.queue.get()
                try:
                    if event is None:
                        return
                    if not await self._invoke(channel.subscriber, event):
                        self._detach(channel)
                        log.warning(
                            "subscriber_removed",
                            task_id=self.task_id,
                            remaining=len(self._channels),
                        )
                        return
                    if event.final:
                        return
                finally:
                    channel.queue.task_done()
        finally:
            self._live.discard(channel)
            # 丢弃剩余事件，让 wait_delivered 不会悬挂
            while not channel.queue.empty():
                channel.queue.get_nowait()
                channel.queue.task_done()

    async def _invoke(self, subscriber: TaskUpdateSubscriber, event: TaskUpdateEvent) -> bool:
        """调用订阅者对应的回调，返回是否投递成功"""
        if isinstance(event, TaskStatusUpdateEvent):
            callback = subscriber.on_status_update
        else:
            callback = subscriber.on_artifact_update

        try:
            await asyncio.wait_for(callback(event), timeout=self._delivery_timeout_s)
        except TimeoutError:
            log.warning(
                "subscriber_callback_timeout",
                task_id=self.task_id,
                event_kind=event.kind,
                timeout_s=self._delivery_timeout_s,
            )
            return False
        except Exception as e:
            # 订阅者失败只影响它自己，不向发布方和其他订阅者传播
            log.warning(
                "subscriber_callback_failed",
                task_id=self.task_id,
                event_kind=event.kind,
                error_type=type(e).__name__,
            )
            return False
        return True
