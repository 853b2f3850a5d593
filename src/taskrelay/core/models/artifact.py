"""Artifact Domain Model

采用 A2A 兼容的 parts 多部分结构。
同一 artifact_id 只能追加 parts，不能替换。
"""

from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from .message import Part


class Artifact(BaseModel):
    """Artifact 数据模型 -- 任务的命名输出"""

    artifact_id: str = Field(
        default_factory=lambda: str(ULID()),
        description="唯一标识，ULID 格式",
    )
    name: str | None = Field(default=None, description="产物名称")
    description: str | None = Field(default=None, description="产物描述")
    parts: list[Part] = Field(default_factory=list, description="Parts 数组")
    metadata: dict[str, Any] = Field(default_factory=dict)
