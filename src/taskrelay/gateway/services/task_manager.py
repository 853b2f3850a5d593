"""TaskManager -- 任务生命周期、状态机与事件发布

所有任务变更都经过这里：
1. 同一任务的变更在 task 级锁下串行执行（读取 -> 校验流转 -> 落盘 -> 事件入队）
2. 锁释放后再 flush 发布器；flush 只分发事件，订阅者回调在各自的投递任务中运行，变更方不等待回调
3. 内容生成器在任务进入 working 后以后台任务运行，产出的增量回灌到同一发布器
"""

import asyncio
import base64
import binascii
import contextlib
import json
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from ulid import ULID

from taskrelay.core.config import RelayConfig
from taskrelay.core.exceptions import (
    InvalidStateError,
    MessageValidationError,
    TaskNotFoundError,
)
from taskrelay.core.models import (
    CONTINUABLE_STATES,
    Artifact,
    Message,
    Pagination,
    Task,
    TaskArtifactUpdateEvent,
    TaskFilter,
    TaskPage,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    ensure_transition,
)
from taskrelay.core.store import TaskStore
from taskrelay.core.validation import validate_message
from taskrelay.provider import ArtifactDelta, ContentProducer, StatusDelta

from .event_publisher import EventPublisher
from .subscriber import TaskUpdateSubscriber

log = structlog.get_logger()


class TaskManager:
    """任务业务服务"""

    def __init__(
        self,
        store: TaskStore,
        config: RelayConfig | None = None,
        producer: ContentProducer | None = None,
    ) -> None:
        self._store = store
        self._config = config or RelayConfig()
        self._producer = producer
        self._publishers: dict[str, EventPublisher] = {}
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._task_locks_guard = asyncio.Lock()
        self._runs: set[asyncio.Task] = set()
        # 已释放但仍在投递 final 的发布器
        self._finishing: set[EventPublisher] = set()

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def active_publishers(self) -> int:
        """当前登记的发布器数量（终态任务的发布器在 final 投递后释放）"""
        return len(self._publishers)

    # ------------------------------------------------------------------
    # 任务变更
    # ------------------------------------------------------------------

    async def create_task(
        self,
        message: Message | dict[str, Any],
        *,
        owner_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        subscribers: Iterable[TaskUpdateSubscriber] = (),
    ) -> Task:
        """创建任务（消息接收入口）

        任务先以 submitted 落盘，随即推进到 working，两条状态事件依次发布。
        subscribers 在第一条事件之前挂到新任务的发布器上，因此能收到完整事件流。

        Args:
            message: 首条用户消息，不能携带 task_id
            owner_id: 所有者，创建后不可变
            metadata: 任务元数据
            subscribers: 预先挂载的订阅者

        Returns:
            working 状态的 Task
        """
        message = validate_message(message, self._config)
        if message.task_id is not None:
            raise MessageValidationError("New task message must not carry task_id")

        now = datetime.now(UTC)
        task_id = str(ULID())
        context_id = message.context_id or str(ULID())
        task = Task(
            id=task_id,
            context_id=context_id,
            status=TaskStatus(state=TaskState.SUBMITTED, timestamp=now),
            history=[message.model_copy(update={"task_id": task_id, "context_id": context_id})],
            owner_id=owner_id,
            metadata=dict(metadata or {}),
            created_at=now,
        )

        publisher = EventPublisher(
            task_id,
            context_id,
            delivery_timeout_s=self._config.delivery_timeout_s,
        )
        for subscriber in subscribers:
            publisher.subscribe(subscriber)

        lock = await self._get_task_lock(task_id)
        async with lock:
            # 落盘前登记发布器，并发订阅者拿到的一定是同一个实例
            self._publishers[task_id] = publisher
            try:
                await self._store.put_task(task)
                publisher.enqueue(self._status_event(task))

                working = self._transition(task, TaskState.WORKING)
                await self._store.put_task(working)
                publisher.enqueue(self._status_event(working))
            except Exception:
                self._publishers.pop(task_id, None)
                raise

        self._flush(publisher)
        log.info(
            "task_created",
            task_id=task_id,
            context_id=context_id,
            owner_id=owner_id,
        )
        return working

    async def continue_task(self, task_id: str, message: Message | dict[str, Any]) -> Task:
        """向已有任务追加用户消息

        - working: 保持 working，刷新状态时间戳并发布 working 事件
        - input-required: 推进到 working
        - 其他状态: InvalidStateError
        """
        message = validate_message(message, self._config)
        if message.task_id is not None and message.task_id != task_id:
            raise MessageValidationError("Message task_id does not match target task")

        lock = await self._get_task_lock(task_id)
        async with lock:
            task = await self._require_task(task_id)
            state = task.status.state
            if state not in CONTINUABLE_STATES:
                raise InvalidStateError(f"Cannot continue task in {state} state")
            if message.context_id is not None and message.context_id != task.context_id:
                raise MessageValidationError("Message context_id does not match task")

            publisher = self._publisher_for(task)
            updated = task.model_copy(deep=True)
            updated.history.append(
                message.model_copy(update={"task_id": task.id, "context_id": task.context_id})
            )
            if state != TaskState.WORKING:
                ensure_transition(state, TaskState.WORKING)
            updated.status = TaskStatus(state=TaskState.WORKING)

            await self._store.put_task(updated)
            publisher.enqueue(self._status_event(updated))

        self._flush(publisher)
        log.info("task_continued", task_id=task_id, from_state=state.value)
        return updated

    async def update_status(
        self,
        task_id: str,
        state: TaskState,
        message: Message | None = None,
    ) -> Task:
        """按状态机推进任务状态

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateError: 任务已在终态或流转非法
        """
        lock = await self._get_task_lock(task_id)
        async with lock:
            task = await self._require_task(task_id)
            if message is not None:
                message = message.model_copy(
                    update={"task_id": task.id, "context_id": task.context_id}
                )
            updated = self._transition(task, state, message)
            publisher = self._publisher_for(task)
            await self._store.put_task(updated)
            publisher.enqueue(self._status_event(updated))

        self._flush(publisher)
        if updated.is_terminal:
            await self._cleanup_task_lock(task_id)
        log.info(
            "task_state_changed",
            task_id=task_id,
            from_state=task.status.state.value,
            to_state=updated.status.state.value,
        )
        return updated

    async def cancel_task(self, task_id: str) -> Task:
        """取消任务

        Raises:
            TaskNotFoundError: 任务不存在
            InvalidStateError: 任务已在终态
        """
        lock = await self._get_task_lock(task_id)
        async with lock:
            task = await self._require_task(task_id)
            if task.is_terminal:
                raise InvalidStateError(
                    f"Task is already in terminal state: {task.status.state}"
                )
            publisher = self._publisher_for(task)
            updated = self._transition(task, TaskState.CANCELED)
            await self._store.put_task(updated)
            publisher.enqueue(self._status_event(updated))

        self._flush(publisher)
        await self._cleanup_task_lock(task_id)
        log.info("task_canceled", task_id=task_id, from_state=task.status.state.value)
        return updated

    async def add_artifact(
        self,
        task_id: str,
        artifact: Artifact,
        *,
        append: bool = False,
        last_chunk: bool = True,
    ) -> Task:
        """追加产物

        append=True 且同 artifact_id 已存在时，把 parts 拼接到已有产物上；
        append=False 时 artifact_id 必须是新的。
        """
        lock = await self._get_task_lock(task_id)
        async with lock:
            task = await self._require_task(task_id)
            if task.is_terminal:
                raise InvalidStateError(
                    f"Task is already in terminal state: {task.status.state}"
                )
            publisher = self._publisher_for(task)

            updated = task.model_copy(deep=True)
            index = next(
                (
                    i
                    for i, existing in enumerate(updated.artifacts)
                    if existing.artifact_id == artifact.artifact_id
                ),
                None,
            )
            if index is None:
                updated.artifacts.append(artifact.model_copy(deep=True))
            elif append:
                existing = updated.artifacts[index]
                updated.artifacts[index] = existing.model_copy(
                    update={"parts": [*existing.parts, *artifact.parts]}
                )
            else:
                raise MessageValidationError(
                    f"Artifact {artifact.artifact_id} already exists; set append to extend it"
                )

            await self._store.put_task(updated)
            publisher.enqueue(
                TaskArtifactUpdateEvent(
                    task_id=task.id,
                    context_id=task.context_id,
                    artifact=artifact.model_copy(deep=True),
                    append=append,
                    last_chunk=last_chunk,
                )
            )

        self._flush(publisher)
        log.debug(
            "artifact_added",
            task_id=task_id,
            artifact_id=artifact.artifact_id,
            append=append,
        )
        return updated

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str, history_length: int | None = None) -> Task:
        """查询任务详情

        Args:
            history_length: 只返回最近 N 条历史；0 表示不返回历史，None 表示全部
        """
        if history_length is not None and history_length < 0:
            raise MessageValidationError("history_length must be >= 0")

        task = await self._require_task(task_id)
        if history_length is not None:
            task.history = task.history[-history_length:] if history_length else []
        return task

    async def list_tasks(
        self,
        filter: TaskFilter | None = None,
        pagination: Pagination | None = None,
    ) -> TaskPage:
        """按插入顺序分页列出任务

        多取一条判断是否还有下一页；游标是不透明字符串，编码最后一条的插入序号。
        """
        filter = filter or TaskFilter()
        pagination = pagination or Pagination()
        limit = min(
            pagination.limit or self._config.default_page_size,
            self._config.max_page_size,
        )
        after_seq = _decode_cursor(pagination.cursor) if pagination.cursor else None

        rows = await self._store.list_tasks(filter, after_seq=after_seq, limit=limit + 1)
        has_more = len(rows) > limit
        rows = rows[:limit]

        return TaskPage(
            tasks=[task for _, task in rows],
            next_cursor=_encode_cursor(rows[-1][0]) if has_more else None,
        )

    # ------------------------------------------------------------------
    # 订阅
    # ------------------------------------------------------------------

    async def subscribe(self, task_id: str, subscriber: TaskUpdateSubscriber) -> None:
        """订阅任务更新；终态任务立即收到一次 final 状态事件"""
        publisher = self._publishers.get(task_id)
        if publisher is None:
            # 发布器只在终态事件落盘后释放，因此此时读到的存储状态是权威的
            task = await self._require_task(task_id)
            publisher = self._publishers.get(task_id) or self._publisher_for(task)

        publisher.subscribe(subscriber)
        self._release_if_final(publisher)

    async def unsubscribe(self, task_id: str, subscriber: TaskUpdateSubscriber) -> None:
        """取消订阅（幂等）"""
        publisher = self._publishers.get(task_id)
        if publisher is not None:
            publisher.unsubscribe(subscriber)

    # ------------------------------------------------------------------
    # 内容生成
    # ------------------------------------------------------------------

    def run_producer(self, task: Task, message: Message | None = None) -> asyncio.Task | None:
        """在后台运行内容生成器

        Args:
            task: working 状态的任务
            message: 触发本轮生成的消息，默认取 history 最后一条

        Returns:
            后台任务句柄；未配置生成器时返回 None
        """
        if self._producer is None:
            return None
        if message is None:
            message = task.history[-1]

        run = asyncio.create_task(
            self._drain_producer(task, message),
            name=f"producer-{task.id}",
        )
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)
        return run

    async def wait_for_runs(self) -> None:
        """等待所有后台生成任务结束，以及它们产生的事件送达订阅者"""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """等待已发布的事件全部送达订阅者"""
        publishers = [*self._publishers.values(), *self._finishing]
        if publishers:
            await asyncio.gather(*(p.wait_delivered() for p in publishers))
        self._finishing = {p for p in self._finishing if p.delivering}

    async def aclose(self) -> None:
        """取消所有后台生成任务，停止事件投递"""
        runs = list(self._runs)
        for run in runs:
            run.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)

        publishers = [*self._publishers.values(), *self._finishing]
        for publisher in publishers:
            await publisher.aclose()
        self._finishing.clear()
        log.info("task_manager_closed", cancelled_runs=len(runs))

    async def _drain_producer(self, task: Task, message: Message) -> None:
        """消费生成器增量并回灌为任务变更"""
        if self._producer is None:
            return
        with structlog.contextvars.bound_contextvars(task_id=task.id):
            try:
                async with contextlib.aclosing(self._producer(task, message)) as deltas:
                    async for delta in deltas:
                        if isinstance(delta, StatusDelta):
                            await self.update_status(task.id, delta.state, delta.message)
                        elif isinstance(delta, ArtifactDelta):
                            await self.add_artifact(
                                task.id,
                                delta.artifact,
                                append=delta.append,
                                last_chunk=delta.last_chunk,
                            )
                        if self._is_settled(task.id):
                            break
            except InvalidStateError as e:
                stored = await self._store.get_task(task.id)
                if stored is None or stored.is_terminal:
                    # 任务已被取消或已结束，后续增量全部丢弃
                    log.info("producer_event_dropped", reason="task_terminal")
                    return
                # 非终态任务上的非法流转是生成器的缺陷
                log.error("producer_failed", error_type=type(e).__name__)
                await self._fail_task(task.id)
            except Exception as e:
                log.error("producer_failed", error_type=type(e).__name__)
                await self._fail_task(task.id)

    def _is_settled(self, task_id: str) -> bool:
        publisher = self._publishers.get(task_id)
        return publisher is None or publisher.final_event is not None

    async def _fail_task(self, task_id: str) -> None:
        """生成器失败后把任务推进到 failed（已在终态则跳过）"""
        try:
            await self.update_status(task_id, TaskState.FAILED)
        except InvalidStateError:
            log.warning("skip_failure_transition_due_state_conflict")

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    async def _require_task(self, task_id: str) -> Task:
        task = await self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _publisher_for(self, task: Task) -> EventPublisher:
        """获取任务的发布器，不存在时按任务当前状态重建并登记

        必须传入变更前的任务快照：终态任务重建的发布器自带 final 事件。
        """
        publisher = self._publishers.get(task.id)
        if publisher is None:
            publisher = EventPublisher(
                task.id,
                task.context_id,
                delivery_timeout_s=self._config.delivery_timeout_s,
                final_event=self._status_event(task) if task.is_terminal else None,
            )
            self._publishers[task.id] = publisher
        return publisher

    def _flush(self, publisher: EventPublisher) -> None:
        publisher.flush()
        self._release_if_final(publisher)

    def _release_if_final(self, publisher: EventPublisher) -> None:
        """final 分发后释放发布器，之后的订阅会从存储重建"""
        if not publisher.finalized:
            return
        if self._publishers.get(publisher.task_id) is publisher:
            del self._publishers[publisher.task_id]
        self._finishing = {p for p in self._finishing if p.delivering}
        if publisher.delivering:
            self._finishing.add(publisher)

    @staticmethod
    def _transition(task: Task, state: TaskState, message: Message | None = None) -> Task:
        """返回推进到 state 后的任务副本（非法流转抛出 InvalidStateError）"""
        ensure_transition(task.status.state, state)
        updated = task.model_copy(deep=True)
        updated.status = TaskStatus(state=state, message=message)
        if message is not None:
            updated.history.append(message)
        return updated

    @staticmethod
    def _status_event(task: Task) -> TaskStatusUpdateEvent:
        return TaskStatusUpdateEvent(
            task_id=task.id,
            context_id=task.context_id,
            status=task.status.model_copy(deep=True),
            final=task.is_terminal,
        )

    async def _get_task_lock(self, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，序列化同一任务的变更。"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                self._task_locks[task_id] = lock
            return lock

    async def _cleanup_task_lock(self, task_id: str) -> None:
        """任务终态后清理 lock，避免字典无限增长。"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                self._task_locks.pop(task_id, None)


def _encode_cursor(seq: int) -> str:
    raw = json.dumps({"after": seq}).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _decode_cursor(cursor: str) -> int:
    """解码分页游标，任何格式问题都视为非法输入"""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
        seq = payload["after"]
    except (binascii.Error, ValueError, TypeError, KeyError) as e:
        raise MessageValidationError("Invalid pagination cursor") from e
    if not isinstance(seq, int) or isinstance(seq, bool) or seq < 0:
        raise MessageValidationError("Invalid pagination cursor")
    return seq
