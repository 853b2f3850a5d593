"""消息入站校验

在消息进入 TaskManager 之前检查结构与尺寸上限，
任何不合法输入统一转换为 MessageValidationError。
"""

from typing import Any
from urllib.parse import urlparse

import pydantic

from .config import RelayConfig
from .exceptions import MessageValidationError
from .models import FilePart, Message, TextPart


def validate_message(message: Message | dict[str, Any], config: RelayConfig) -> Message:
    """校验并返回 Message

    Args:
        message: Message 实例或原始 dict（来自传输层）
        config: 提供尺寸上限的配置

    Returns:
        校验通过的 Message

    Raises:
        MessageValidationError: 结构不合法或超出上限
    """
    if not isinstance(message, Message):
        try:
            message = Message.model_validate(message)
        except pydantic.ValidationError as e:
            raise MessageValidationError(f"Invalid message: {_summarize(e)}") from e

    if not message.parts:
        raise MessageValidationError("Message must contain at least one part")

    if len(message.parts) > config.max_parts_per_message:
        raise MessageValidationError(
            f"Too many parts ({len(message.parts)} > {config.max_parts_per_message})"
        )

    for field_name in ("message_id", "context_id", "task_id"):
        value = getattr(message, field_name)
        if value is None:
            continue
        if not value.strip():
            raise MessageValidationError(f"{field_name} must not be blank")
        if len(value) > config.max_id_length:
            raise MessageValidationError(f"{field_name} exceeds {config.max_id_length} characters")

    for part in message.parts:
        if isinstance(part, TextPart) and len(part.text) > config.max_text_length:
            raise MessageValidationError(
                f"Text part exceeds {config.max_text_length} characters"
            )
        if isinstance(part, FilePart) and part.file.uri is not None:
            scheme = urlparse(part.file.uri).scheme
            if scheme not in config.allowed_uri_schemes:
                raise MessageValidationError(f"URI scheme not allowed: {scheme or '(none)'}")

    return message


def _summarize(error: pydantic.ValidationError) -> str:
    """将 pydantic 错误压缩为一行，不回显输入值"""
    first = error.errors()[0]
    loc = ".".join(str(p) for p in first["loc"]) or "message"
    return f"{loc}: {first['msg']}"
