"""内容生成器接口

TaskManager 在任务进入 working 后异步调用生成器，并把产出的增量
依次回灌到同一个 EventPublisher。生成器需要自行观察取消：
任务进入终态后它产出的增量会被丢弃。
"""

from collections.abc import AsyncIterator
from typing import Protocol

from taskrelay.core.models import Message, Task

from .models import ProducerDelta


class ContentProducer(Protocol):
    """内容生成器：(task, message) -> 增量异步序列"""

    def __call__(self, task: Task, message: Message) -> AsyncIterator[ProducerDelta]: ...
