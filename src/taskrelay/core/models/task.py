"""Task Domain Model

Task 只能由 TaskManager 通过状态机校验后的流转修改；
owner_id 在创建时写入，之后不可变。Task 永不删除，只会进入终态。
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .artifact import Artifact
from .enums import TERMINAL_STATES, TaskState
from .message import Message


class TaskStatus(BaseModel):
    """Task 当前状态：state + 可选消息 + 时间戳"""

    state: TaskState = Field(description="当前状态")
    message: Message | None = Field(default=None, description="状态附带消息")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="状态变更时间",
    )


class Task(BaseModel):
    """Task 数据模型

    history 与 artifacts 只追加；status 只能经状态机变更。
    """

    kind: Literal["task"] = "task"
    id: str = Field(description="唯一标识，ULID 格式")
    context_id: str = Field(description="上下文（会话）标识")
    status: TaskStatus = Field(description="当前状态")
    history: list[Message] = Field(default_factory=list, description="消息历史")
    artifacts: list[Artifact] = Field(default_factory=list, description="产物列表")
    owner_id: str | None = Field(default=None, description="所有者 user_id")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="创建时间",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.state in TERMINAL_STATES
