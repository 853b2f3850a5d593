"""TaskRelay 异常体系

所有异常对调用方都是终止性的：核心层不做内部重试，
重试策略（如有）属于传输层。每个异常携带稳定的 code，
供传输层映射为协议错误码。
"""


class TaskRelayError(Exception):
    """TaskRelay 基础异常"""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        """
        Args:
            message: 错误描述
            code: 覆盖默认错误码
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class MessageValidationError(TaskRelayError):
    """输入结构不合法（消息、分页游标、Artifact 等），立即返回，不重试"""

    code = "VALIDATION_ERROR"


class TaskNotFoundError(TaskRelayError):
    """任务不存在"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist")
        self.task_id = task_id


class InvalidStateError(TaskRelayError):
    """当前状态不允许该操作（终态吸收、非法流转）"""

    code = "INVALID_STATE"


class ForbiddenError(TaskRelayError):
    """所有权不匹配或权限不足"""

    code = "FORBIDDEN"


class UnauthorizedError(TaskRelayError):
    """凭证无效"""

    code = "UNAUTHORIZED"


class RevokedError(TaskRelayError):
    """Gate 已被 dispose，能力永久失效"""

    code = "REVOKED"

    def __init__(self, message: str = "Gate has been disposed") -> None:
        super().__init__(message)


class RateLimitedError(TaskRelayError):
    """调用频率超过限制"""

    code = "RATE_LIMITED"

    def __init__(self, retry_after_s: float) -> None:
        super().__init__(f"Rate limit exceeded. Try again in {retry_after_s:.0f} seconds")
        self.retry_after_s = retry_after_s
