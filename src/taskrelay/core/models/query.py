"""任务列表查询模型 -- 过滤条件 / 游标分页 / 分页结果"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from .enums import TaskState
from .task import Task


class TaskFilter(BaseModel):
    """任务过滤条件，各字段之间为 AND 关系"""

    context_id: str | None = Field(default=None, description="按上下文筛选")
    state: TaskState | None = Field(default=None, description="按当前状态筛选")
    owner_id: str | None = Field(default=None, description="按所有者筛选")
    created_after: datetime | None = Field(default=None, description="创建时间下界（含）")
    created_before: datetime | None = Field(default=None, description="创建时间上界（含）")

    @field_validator("created_after", "created_before")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # naive 时间按 UTC 处理
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def matches(self, task: Task) -> bool:
        """判断任务是否满足全部过滤条件"""
        if self.context_id is not None and task.context_id != self.context_id:
            return False
        if self.state is not None and task.status.state != self.state:
            return False
        if self.owner_id is not None and task.owner_id != self.owner_id:
            return False
        if self.created_after is not None and task.created_at < self.created_after:
            return False
        if self.created_before is not None and task.created_at > self.created_before:
            return False
        return True


class Pagination(BaseModel):
    """游标分页参数

    limit 为 None 时使用配置中的默认页大小。
    """

    cursor: str | None = Field(default=None, description="上一页返回的 next_cursor")
    limit: int | None = Field(default=None, ge=1, description="每页数量")


class TaskPage(BaseModel):
    """分页结果"""

    tasks: list[Task] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None, description="下一页游标，无更多时为 None")
