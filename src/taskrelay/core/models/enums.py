"""枚举定义 -- Task 状态机与消息角色

包含 TaskState 状态机、Role、PartKind 枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
状态取值与 A2A 协议的 TaskState 字符串保持一致。
"""

from enum import StrEnum

from ..exceptions import InvalidStateError


class TaskState(StrEnum):
    """Task 状态机"""

    # 活跃状态
    SUBMITTED = "submitted"
    WORKING = "working"

    # 中断状态（等待外部输入，可继续）
    INPUT_REQUIRED = "input-required"
    AUTH_REQUIRED = "auth-required"

    # 终态
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"
    REJECTED = "rejected"

    # 无法识别的状态（不参与任何流转）
    UNKNOWN = "unknown"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.SUBMITTED: {TaskState.WORKING},
    TaskState.WORKING: {
        TaskState.INPUT_REQUIRED,
        TaskState.AUTH_REQUIRED,
        TaskState.COMPLETED,
        TaskState.FAILED,
        TaskState.CANCELED,
    },
    TaskState.INPUT_REQUIRED: {TaskState.WORKING, TaskState.CANCELED},
    TaskState.AUTH_REQUIRED: {TaskState.WORKING, TaskState.CANCELED},
    # 终态不可再流转
    TaskState.COMPLETED: set(),
    TaskState.CANCELED: set(),
    TaskState.FAILED: set(),
    TaskState.REJECTED: set(),
    TaskState.UNKNOWN: set(),
}

TERMINAL_STATES: frozenset[TaskState] = frozenset(
    {
        TaskState.COMPLETED,
        TaskState.CANCELED,
        TaskState.FAILED,
        TaskState.REJECTED,
    }
)

# 允许追加消息继续执行的状态
CONTINUABLE_STATES: frozenset[TaskState] = frozenset(
    {TaskState.WORKING, TaskState.INPUT_REQUIRED}
)


class Role(StrEnum):
    """消息发送方"""

    USER = "user"
    AGENT = "agent"


class PartKind(StrEnum):
    """消息/Artifact Part 类型"""

    TEXT = "text"
    FILE = "file"
    DATA = "data"


def is_terminal(state: TaskState) -> bool:
    """判断状态是否为终态"""
    return state in TERMINAL_STATES


def validate_transition(from_state: TaskState, to_state: TaskState) -> bool:
    """验证状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_state, set())
    return to_state in allowed


def ensure_transition(from_state: TaskState, to_state: TaskState) -> None:
    """校验状态流转，不合法时抛出 InvalidStateError

    终态属于吸收态：任何后续流转都失败，而不是静默成功。
    """
    if validate_transition(from_state, to_state):
        return
    if from_state in TERMINAL_STATES:
        raise InvalidStateError(
            f"Task is already in terminal state: {from_state}",
        )
    raise InvalidStateError(f"Cannot transition from {from_state} to {to_state}")
