"""gateway 测试配置 -- 记录型订阅者、TaskManager 与服务 fixture"""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Callable

import pytest
import pytest_asyncio
from taskrelay.core.config import RelayConfig
from taskrelay.core.models import (
    Message,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskStatusUpdateEvent,
    TaskUpdateEvent,
    TextPart,
)
from taskrelay.core.store import InMemoryTaskStore
from taskrelay.gateway.services.task_manager import TaskManager
from taskrelay.provider import ProducerDelta


class RecordingSubscriber:
    """记录收到的全部事件，可选注入延迟或异常"""

    def __init__(
        self,
        name: str = "sub",
        *,
        delay_s: float = 0.0,
        fail_on: Callable[[TaskUpdateEvent], bool] | None = None,
    ) -> None:
        self.name = name
        self.events: list[TaskUpdateEvent] = []
        self.delay_s = delay_s
        self.fail_on = fail_on
        self.final_received = asyncio.Event()

    async def on_status_update(self, event: TaskStatusUpdateEvent) -> None:
        await self._record(event)

    async def on_artifact_update(self, event: TaskArtifactUpdateEvent) -> None:
        await self._record(event)

    async def _record(self, event: TaskUpdateEvent) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail_on is not None and self.fail_on(event):
            raise RuntimeError(f"{self.name} refused {event.kind}")
        self.events.append(event)
        if event.final:
            self.final_received.set()

    @property
    def states(self) -> list[str]:
        return [e.status.state.value for e in self.events if e.kind == "status-update"]

    @property
    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]


class ScriptedProducer:
    """按预设脚本产出增量的生成器，可在每步之间等待外部信号"""

    def __init__(self, deltas: list[ProducerDelta], *, gate: asyncio.Event | None = None):
        self._deltas = deltas
        self._gate = gate
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, task: Task, message: Message) -> AsyncIterator[ProducerDelta]:
        self.calls.append((task.id, message.message_id))
        for delta in self._deltas:
            if self._gate is not None:
                await self._gate.wait()
            yield delta


@pytest.fixture
def make_subscriber() -> Callable[..., RecordingSubscriber]:
    """RecordingSubscriber 工厂"""
    return RecordingSubscriber


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """用户消息工厂"""

    def _make(text: str = "hello", **fields) -> Message:
        return Message(role=Role.USER, parts=[TextPart(text=text)], **fields)

    return _make


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(delivery_timeout_s=0.5, echo_delay_s=0)


@pytest_asyncio.fixture
async def manager(relay_config: RelayConfig) -> AsyncGenerator[TaskManager, None]:
    """不带生成器的 TaskManager（任务停留在 working，由测试手动推进）"""
    mgr = TaskManager(InMemoryTaskStore(), relay_config)
    yield mgr
    await mgr.aclose()


@pytest.fixture
def scripted_producer() -> type[ScriptedProducer]:
    return ScriptedProducer
