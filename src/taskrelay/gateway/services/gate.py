"""Gate -- 认证后的能力句柄

认证成功后调用方只拿到 Gate，不直接接触 TaskManager。每次调用依次检查：
1. Gate 未被 dispose（RevokedError）
2. 权限：变更操作需要 write，查询需要 read（ForbiddenError）
3. 限流：配置了 RateLimiter 时按 user_id 计数（RateLimitedError）
4. 所有权：任务的 owner_id 必须等于 Gate 的 user_id（ForbiddenError）
5. 委托给 TaskManager

每个 await 之后、委托之前都会重新检查 dispose，
dispose 后尚未完成所有权检查的调用同样失败。
"""

from collections.abc import Callable
from types import TracebackType
from typing import Any, NoReturn

import structlog

from taskrelay.core.exceptions import ForbiddenError, RevokedError
from taskrelay.core.models import (
    READ,
    WRITE,
    Message,
    Pagination,
    Principal,
    Task,
    TaskFilter,
    TaskPage,
)
from taskrelay.core.validation import validate_message

from .rate_limit import RateLimiter
from .streaming import StreamingSession
from .subscriber import TaskUpdateSubscriber
from .task_manager import TaskManager

log = structlog.get_logger()


class Gate:
    """绑定单个 Principal 的 TaskManager 访问句柄"""

    def __init__(
        self,
        manager: TaskManager,
        principal: Principal,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._manager = manager
        self._principal = principal
        self._rate_limiter = rate_limiter
        self._disposed = False

    @property
    def user_id(self) -> str:
        return self._principal.user_id

    @property
    def permissions(self) -> frozenset[str]:
        return self._principal.permissions

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """永久吊销此 Gate（幂等）"""
        if not self._disposed:
            self._disposed = True
            log.info("gate_disposed", user_id=self.user_id)

    def read_only(self) -> "ReadOnlyGate":
        """派生只读 Gate，父 Gate dispose 时它同样失效"""
        self._ensure_active()
        return ReadOnlyGate(self)

    def __enter__(self) -> "Gate":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # 变更操作（write）
    # ------------------------------------------------------------------

    async def send_message(self, message: Message | dict[str, Any]) -> Task:
        """发送消息：无 task_id 时创建任务，否则继续该任务

        返回 working 状态的任务，内容生成在后台继续。
        """
        self._require(WRITE)
        message = validate_message(message, self._manager.config)

        if message.task_id is not None:
            await self._owned_task(message.task_id)
            task = await self._manager.continue_task(message.task_id, message)
        else:
            task = await self._manager.create_task(message, owner_id=self.user_id)

        self._manager.run_producer(task)
        return task

    async def send_message_streaming(
        self,
        message: Message | dict[str, Any],
        subscriber: TaskUpdateSubscriber | None = None,
    ) -> StreamingSession:
        """流式发送消息

        传入的 subscriber 在第一条事件之前完成订阅，能收到任务的完整事件流。
        """
        self._require(WRITE)
        message = validate_message(message, self._manager.config)

        if message.task_id is not None:
            await self._owned_task(message.task_id)
            if subscriber is None:
                task = await self._manager.continue_task(message.task_id, message)
            else:
                await self._manager.subscribe(message.task_id, subscriber)
                try:
                    self._ensure_active()
                    task = await self._manager.continue_task(message.task_id, message)
                except BaseException:
                    # 继续失败时撤销订阅，不留下悬挂的订阅者
                    await self._manager.unsubscribe(message.task_id, subscriber)
                    raise
        else:
            task = await self._manager.create_task(
                message,
                owner_id=self.user_id,
                subscribers=(subscriber,) if subscriber is not None else (),
            )

        self._manager.run_producer(task)
        return self._session(task.id)

    async def cancel_task(self, task_id: str) -> Task:
        self._require(WRITE)
        await self._owned_task(task_id)
        return await self._manager.cancel_task(task_id)

    # ------------------------------------------------------------------
    # 查询操作（read）
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str, history_length: int | None = None) -> Task:
        self._require(READ)
        return await self._owned_task(task_id, history_length)

    async def list_tasks(
        self,
        filter: TaskFilter | None = None,
        pagination: Pagination | None = None,
    ) -> TaskPage:
        """列出当前用户的任务（owner_id 始终限定为 Gate 的用户）"""
        self._require(READ)
        filter = filter or TaskFilter()
        if filter.owner_id is not None and filter.owner_id != self.user_id:
            raise ForbiddenError("Cannot list tasks owned by another user")

        page = await self._manager.list_tasks(
            filter.model_copy(update={"owner_id": self.user_id}),
            pagination,
        )
        self._ensure_active()
        return page

    async def resubscribe(self, task_id: str) -> StreamingSession:
        """为已有任务重新建立流式会话"""
        self._require(READ)
        await self._owned_task(task_id)
        return self._session(task_id)

    # ------------------------------------------------------------------
    # 内部检查
    # ------------------------------------------------------------------

    def _ensure_active(self) -> None:
        if self._disposed:
            raise RevokedError()

    def _require(self, permission: str) -> None:
        self._ensure_active()
        if not self._principal.can(permission):
            log.warning("gate_permission_denied", user_id=self.user_id, permission=permission)
            raise ForbiddenError(f"Permission '{permission}' required")
        if self._rate_limiter is not None:
            self._rate_limiter.consume(self.user_id)

    async def _owned_task(self, task_id: str, history_length: int | None = None) -> Task:
        """读取任务并校验所有权（无主任务对任何 Gate 都不可见）"""
        task = await self._manager.get_task(task_id, history_length)
        self._ensure_active()
        if task.owner_id is None or task.owner_id != self.user_id:
            log.warning("gate_ownership_denied", user_id=self.user_id, task_id=task_id)
            raise ForbiddenError("Task belongs to another user")
        return task

    def _session(
        self,
        task_id: str,
        guard: Callable[[], None] | None = None,
    ) -> StreamingSession:
        return StreamingSession(task_id, self._manager, guard=guard or self._ensure_active)


class ReadOnlyGate:
    """只读 Gate：转发查询，拒绝一切变更

    自身或父 Gate 任一被 dispose 即失效。
    """

    def __init__(self, parent: Gate) -> None:
        self._parent = parent
        self._disposed = False

    @property
    def user_id(self) -> str:
        return self._parent.user_id

    @property
    def permissions(self) -> frozenset[str]:
        return self._parent.permissions & {READ}

    @property
    def disposed(self) -> bool:
        return self._disposed or self._parent.disposed

    def dispose(self) -> None:
        self._disposed = True

    def read_only(self) -> "ReadOnlyGate":
        self._ensure_active()
        return self

    def __enter__(self) -> "ReadOnlyGate":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    async def get_task(self, task_id: str, history_length: int | None = None) -> Task:
        self._ensure_active()
        task = await self._parent.get_task(task_id, history_length)
        self._ensure_active()
        return task

    async def list_tasks(
        self,
        filter: TaskFilter | None = None,
        pagination: Pagination | None = None,
    ) -> TaskPage:
        self._ensure_active()
        page = await self._parent.list_tasks(filter, pagination)
        self._ensure_active()
        return page

    async def resubscribe(self, task_id: str) -> StreamingSession:
        self._ensure_active()
        await self._parent.resubscribe(task_id)
        self._ensure_active()
        return self._parent._session(task_id, guard=self._ensure_active)

    async def send_message(self, message: Message | dict[str, Any]) -> Task:
        self._deny("send_message")

    async def send_message_streaming(
        self,
        message: Message | dict[str, Any],
        subscriber: TaskUpdateSubscriber | None = None,
    ) -> StreamingSession:
        self._deny("send_message_streaming")

    async def cancel_task(self, task_id: str) -> Task:
        self._deny("cancel_task")

    def _ensure_active(self) -> None:
        if self.disposed:
            raise RevokedError()

    def _deny(self, operation: str) -> NoReturn:
        self._ensure_active()
        raise ForbiddenError(f"Read-only gate cannot {operation}")
