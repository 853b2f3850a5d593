"""EchoContentProducer -- Echo 模式内容生成器

把用户消息的文本原样回声，作为默认的占位生成器：
先产出一个 echo-response 产物，再以 completed 状态结束任务。
"""

import asyncio
from collections.abc import AsyncIterator

from taskrelay.core.models import (
    Artifact,
    Message,
    Role,
    Task,
    TaskState,
    TextPart,
)

from .models import ArtifactDelta, ProducerDelta, StatusDelta

ECHO_ARTIFACT_NAME = "echo-response"


class EchoContentProducer:
    """Echo 生成器

    行为:
        1. 从消息中拼接所有文本 Part
        2. 产出 "Echo: {text}" 产物
        3. 产出 completed 状态，附带同样文本的 agent 消息
    """

    def __init__(self, delay_s: float = 0.01) -> None:
        self._delay_s = delay_s

    async def __call__(self, task: Task, message: Message) -> AsyncIterator[ProducerDelta]:
        # 模拟少量延迟
        if self._delay_s > 0:
            await asyncio.sleep(self._delay_s)

        response_text = f"Echo: {self._extract_text(message)}"

        yield ArtifactDelta(
            artifact=Artifact(
                name=ECHO_ARTIFACT_NAME,
                description="Echo 回声内容",
                parts=[TextPart(text=response_text)],
            ),
        )
        yield StatusDelta(
            state=TaskState.COMPLETED,
            message=Message(
                role=Role.AGENT,
                parts=[TextPart(text=response_text)],
                context_id=task.context_id,
                task_id=task.id,
            ),
        )

    @staticmethod
    def _extract_text(message: Message) -> str:
        """拼接文本 Part，无文本时返回 "(empty)" """
        text = message.text()
        return text if text else "(empty)"
