"""Message Domain Model -- A2A 兼容的消息与 Part 结构

Message 创建后不可变，进入 Task.history 后只追加不修改。
Part 按 kind 区分 text / file / data 三种变体。
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from ulid import ULID

from .enums import Role


class TextPart(BaseModel):
    """文本 Part"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str = Field(description="文本内容")
    metadata: dict[str, Any] = Field(default_factory=dict)


class FileContent(BaseModel):
    """文件内容：inline base64 或 URI 引用，二选一"""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="文件名")
    mime_type: str = Field(default="application/octet-stream", description="MIME 类型")
    bytes: str | None = Field(default=None, description="base64 编码的 inline 内容")
    uri: str | None = Field(default=None, description="文件引用 URI")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "FileContent":
        if (self.bytes is None) == (self.uri is None):
            raise ValueError("file must carry exactly one of 'bytes' or 'uri'")
        return self


class FilePart(BaseModel):
    """文件 Part"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    file: FileContent
    metadata: dict[str, Any] = Field(default_factory=dict)


class DataPart(BaseModel):
    """结构化数据 Part"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data"] = "data"
    data: dict[str, Any] = Field(description="结构化 JSON 对象")
    metadata: dict[str, Any] = Field(default_factory=dict)


Part = Annotated[TextPart | FilePart | DataPart, Field(discriminator="kind")]


class Message(BaseModel):
    """Message -- 一次对话轮次

    context_id / task_id 为可选反向引用：
    - 无 task_id 时创建新任务
    - 有 task_id 时继续已有任务
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    message_id: str = Field(
        default_factory=lambda: str(ULID()),
        description="消息 ID，默认 ULID",
    )
    role: Role = Field(description="发送方角色")
    parts: list[Part] = Field(default_factory=list, description="有序 Part 列表")
    context_id: str | None = Field(default=None, description="所属上下文 ID")
    task_id: str | None = Field(default=None, description="所属任务 ID")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def text(self) -> str:
        """拼接所有文本 Part"""
        return " ".join(p.text for p in self.parts if isinstance(p, TextPart))
