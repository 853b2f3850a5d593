"""流式更新事件 -- StatusUpdate / ArtifactUpdate

事件是瞬时的：由 TaskManager 产生、EventPublisher 消费，
除 Task.history / Task.artifacts 外不做持久化。
每个任务的事件流中至多一个事件 final=True，且它是最后一个。
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .artifact import Artifact
from .task import TaskStatus


class TaskStatusUpdateEvent(BaseModel):
    """任务状态变更事件"""

    kind: Literal["status-update"] = "status-update"
    task_id: str
    context_id: str
    status: TaskStatus
    final: bool = Field(default=False, description="是否为该任务最后一个事件")
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskArtifactUpdateEvent(BaseModel):
    """任务产物更新事件（永不携带 final）"""

    kind: Literal["artifact-update"] = "artifact-update"
    task_id: str
    context_id: str
    artifact: Artifact
    append: bool = Field(default=False, description="是否追加到同 id 的已有产物")
    last_chunk: bool = Field(default=True, description="是否为该产物的最后一块")
    final: Literal[False] = False
    metadata: dict[str, Any] = Field(default_factory=dict)


TaskUpdateEvent = TaskStatusUpdateEvent | TaskArtifactUpdateEvent
