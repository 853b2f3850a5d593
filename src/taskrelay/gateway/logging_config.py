"""structlog 配置模块

dev 模式：ConsoleRenderer 可读输出
json 模式：每行一个 JSON 对象

structlog 通过标准库 logging 输出，aiosqlite 等第三方库的日志走同一个 formatter。
凭证类字段（token / secret / api_key 等）在渲染前统一打码。
"""

import logging
import os
from collections.abc import MutableMapping
from typing import Any, TextIO

import structlog

SERVICE_NAME = "taskrelay"

_REDACTED = "***"
_SECRET_KEYS = frozenset({"token", "secret", "api_key", "raw_key", "authorization", "password"})

# aiosqlite 在 DEBUG 下每条 SQL 都会打日志
_NOISY_LOGGERS = ("aiosqlite", "asyncio")


def _add_service(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = _REDACTED
    return event_dict


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    *,
    stream: TextIO | None = None,
) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 或 "dev"，默认读 TASKRELAY_LOG_FORMAT（dev）
        log_level: 默认读 TASKRELAY_LOG_LEVEL（INFO），无法识别时回落到 INFO
        stream: 输出流，默认 stderr
    """
    log_format = log_format or os.environ.get("TASKRELAY_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("TASKRELAY_LOG_LEVEL", "INFO")
    level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)

    # merge_contextvars 让后台生成任务绑定的 task_id 出现在每条日志里
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
