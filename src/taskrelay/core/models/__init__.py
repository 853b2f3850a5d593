"""TaskRelay Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .agent_card import AgentCapabilities, AgentCard
from .artifact import Artifact
from .auth import READ, WRITE, Credentials, Principal
from .enums import (
    CONTINUABLE_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PartKind,
    Role,
    TaskState,
    ensure_transition,
    is_terminal,
    validate_transition,
)
from .event import TaskArtifactUpdateEvent, TaskStatusUpdateEvent, TaskUpdateEvent
from .message import DataPart, FileContent, FilePart, Message, Part, TextPart
from .query import Pagination, TaskFilter, TaskPage
from .task import Task, TaskStatus

__all__ = [
    # 枚举
    "TaskState",
    "Role",
    "PartKind",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "CONTINUABLE_STATES",
    "validate_transition",
    "ensure_transition",
    "is_terminal",
    # Task
    "Task",
    "TaskStatus",
    # Message
    "Message",
    "Part",
    "TextPart",
    "FilePart",
    "FileContent",
    "DataPart",
    # Artifact
    "Artifact",
    # Event
    "TaskStatusUpdateEvent",
    "TaskArtifactUpdateEvent",
    "TaskUpdateEvent",
    # Query
    "TaskFilter",
    "Pagination",
    "TaskPage",
    # Auth
    "Credentials",
    "Principal",
    "READ",
    "WRITE",
    # Discovery
    "AgentCard",
    "AgentCapabilities",
]
