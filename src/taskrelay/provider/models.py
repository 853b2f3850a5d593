"""内容生成器输出模型

生成器只产出增量（状态变化 / 产物），由 TaskManager 负责校验、落盘和广播。
"""

from pydantic import BaseModel, Field

from taskrelay.core.models import Artifact, Message, TaskState


class StatusDelta(BaseModel):
    """状态增量：请求 TaskManager 把任务推进到 state"""

    state: TaskState
    message: Message | None = Field(default=None, description="附带的 agent 消息，写入 history")


class ArtifactDelta(BaseModel):
    """产物增量"""

    artifact: Artifact
    append: bool = Field(default=False, description="追加到同 id 的已有产物")
    last_chunk: bool = Field(default=True, description="是否为最后一块")


ProducerDelta = StatusDelta | ArtifactDelta
