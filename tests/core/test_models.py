"""Domain Models 单元测试

测试内容：
1. Part 按 kind 判别
2. FileContent bytes/uri 二选一
3. Task / Event 默认值与序列化
4. TaskFilter 匹配逻辑
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError
from taskrelay.core.models import (
    Artifact,
    Credentials,
    DataPart,
    FileContent,
    FilePart,
    Message,
    Principal,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskFilter,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
)


def _task(**overrides) -> Task:
    fields = {
        "id": "task-1",
        "context_id": "ctx-1",
        "status": TaskStatus(state=TaskState.WORKING),
    }
    fields.update(overrides)
    return Task(**fields)


class TestMessageModel:
    """Message / Part 模型"""

    def test_parts_discriminated_by_kind(self):
        msg = Message.model_validate(
            {
                "role": "user",
                "parts": [
                    {"kind": "text", "text": "hi"},
                    {"kind": "data", "data": {"a": 1}},
                    {"kind": "file", "file": {"uri": "https://example.com/a.txt"}},
                ],
            }
        )
        assert isinstance(msg.parts[0], TextPart)
        assert isinstance(msg.parts[1], DataPart)
        assert isinstance(msg.parts[2], FilePart)

    def test_unknown_part_kind_rejected(self):
        with pytest.raises(ValidationError):
            Message.model_validate({"role": "user", "parts": [{"kind": "video"}]})

    def test_message_id_defaults_to_ulid(self):
        a = Message(role=Role.USER, parts=[TextPart(text="x")])
        b = Message(role=Role.USER, parts=[TextPart(text="x")])
        assert len(a.message_id) == 26
        assert a.message_id != b.message_id

    def test_message_is_frozen(self):
        msg = Message(role=Role.USER, parts=[TextPart(text="x")])
        with pytest.raises(ValidationError):
            msg.task_id = "task-1"

    def test_text_joins_text_parts(self):
        msg = Message(
            role=Role.USER,
            parts=[TextPart(text="hello"), DataPart(data={}), TextPart(text="world")],
        )
        assert msg.text() == "hello world"


class TestFileContent:
    """FileContent 二选一校验"""

    def test_bytes_only(self):
        content = FileContent(bytes="aGVsbG8=", mime_type="text/plain")
        assert content.uri is None

    def test_both_sources_rejected(self):
        with pytest.raises(ValidationError):
            FileContent(bytes="aGVsbG8=", uri="https://example.com/x")

    def test_no_source_rejected(self):
        with pytest.raises(ValidationError):
            FileContent(name="empty.bin")


class TestTaskModel:
    """Task 模型"""

    def test_defaults(self):
        task = _task()
        assert task.kind == "task"
        assert task.history == []
        assert task.artifacts == []
        assert task.owner_id is None
        assert task.created_at.tzinfo is not None

    def test_is_terminal(self):
        assert not _task().is_terminal
        assert _task(status=TaskStatus(state=TaskState.FAILED)).is_terminal

    def test_json_roundtrip_preserves_parts(self):
        task = _task(
            history=[Message(role=Role.USER, parts=[TextPart(text="hi")])],
            artifacts=[Artifact(name="out", parts=[DataPart(data={"k": "v"})])],
        )
        restored = Task.model_validate_json(task.model_dump_json())
        assert restored == task
        assert isinstance(restored.artifacts[0].parts[0], DataPart)


class TestEvents:
    """流式事件模型"""

    def test_status_event_defaults_not_final(self):
        event = TaskStatusUpdateEvent(
            task_id="t",
            context_id="c",
            status=TaskStatus(state=TaskState.WORKING),
        )
        assert event.kind == "status-update"
        assert event.final is False

    def test_artifact_event_never_final(self):
        with pytest.raises(ValidationError):
            TaskArtifactUpdateEvent(
                task_id="t",
                context_id="c",
                artifact=Artifact(),
                final=True,
            )


class TestTaskFilter:
    """TaskFilter 匹配"""

    def test_empty_filter_matches_everything(self):
        assert TaskFilter().matches(_task())

    def test_fields_are_anded(self):
        task = _task(owner_id="alice")
        assert TaskFilter(context_id="ctx-1", owner_id="alice").matches(task)
        assert not TaskFilter(context_id="ctx-1", owner_id="bob").matches(task)
        assert not TaskFilter(state=TaskState.COMPLETED).matches(task)

    def test_created_range(self):
        now = datetime.now(UTC)
        task = _task(created_at=now)
        assert TaskFilter(created_after=now - timedelta(seconds=1)).matches(task)
        assert not TaskFilter(created_after=now + timedelta(seconds=1)).matches(task)
        assert TaskFilter(created_before=now).matches(task)

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 12, 0, 0)
        query = TaskFilter(created_after=naive)
        assert query.created_after == naive.replace(tzinfo=UTC)


class TestAuthModels:
    """凭证与主体"""

    def test_credentials_default_to_bearer(self):
        assert Credentials(token="abc").type == "bearer"

    def test_principal_permissions(self):
        principal = Principal(user_id="u", permissions=frozenset({"read"}))
        assert principal.can("read")
        assert not principal.can("write")

    def test_principal_default_read_write(self):
        principal = Principal(user_id="u")
        assert principal.can("read") and principal.can("write")
