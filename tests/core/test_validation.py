"""消息入站校验测试"""

import pytest
from taskrelay.core.config import RelayConfig
from taskrelay.core.exceptions import MessageValidationError
from taskrelay.core.models import FileContent, FilePart, Message, Role, TextPart
from taskrelay.core.validation import validate_message


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig(max_parts_per_message=3, max_text_length=10, max_id_length=8)


class TestValidateMessage:
    """validate_message"""

    def test_accepts_message_instance(self, config: RelayConfig):
        msg = Message(role=Role.USER, parts=[TextPart(text="hi")], message_id="m1")
        assert validate_message(msg, config) is msg

    def test_parses_dict(self, config: RelayConfig):
        msg = validate_message(
            {"role": "user", "message_id": "m1", "parts": [{"kind": "text", "text": "hi"}]},
            config,
        )
        assert isinstance(msg, Message)
        assert msg.text() == "hi"

    def test_malformed_dict_does_not_echo_input(self, config: RelayConfig):
        with pytest.raises(MessageValidationError) as exc_info:
            validate_message({"role": "robot-secret-value", "parts": []}, config)
        assert "robot-secret-value" not in str(exc_info.value)
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_empty_parts_rejected(self, config: RelayConfig):
        with pytest.raises(MessageValidationError, match="at least one part"):
            validate_message(Message(role=Role.USER, message_id="m1"), config)

    def test_too_many_parts(self, config: RelayConfig):
        msg = Message(
            role=Role.USER,
            message_id="m1",
            parts=[TextPart(text="a") for _ in range(4)],
        )
        with pytest.raises(MessageValidationError, match="Too many parts"):
            validate_message(msg, config)

    def test_text_too_long(self, config: RelayConfig):
        msg = Message(role=Role.USER, message_id="m1", parts=[TextPart(text="x" * 11)])
        with pytest.raises(MessageValidationError, match="exceeds 10"):
            validate_message(msg, config)

    def test_blank_id_rejected(self, config: RelayConfig):
        msg = Message(role=Role.USER, message_id="m1", context_id="  ", parts=[TextPart(text="a")])
        with pytest.raises(MessageValidationError, match="context_id"):
            validate_message(msg, config)

    def test_id_too_long(self, config: RelayConfig):
        msg = Message(role=Role.USER, message_id="m" * 9, parts=[TextPart(text="a")])
        with pytest.raises(MessageValidationError, match="message_id"):
            validate_message(msg, config)

    @pytest.mark.parametrize("uri", ["ftp://host/file", "javascript:alert(1)", "no-scheme"])
    def test_disallowed_uri_scheme(self, config: RelayConfig, uri: str):
        msg = Message(
            role=Role.USER,
            message_id="m1",
            parts=[FilePart(file=FileContent(uri=uri))],
        )
        with pytest.raises(MessageValidationError, match="URI scheme"):
            validate_message(msg, config)

    def test_allowed_uri_scheme(self, config: RelayConfig):
        msg = Message(
            role=Role.USER,
            message_id="m1",
            parts=[FilePart(file=FileContent(uri="https://example.com/a.png"))],
        )
        assert validate_message(msg, config) is msg
