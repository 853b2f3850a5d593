"""RelayConfig -- 运行配置加载

从环境变量加载配置，非法数值降级为默认值并记录告警，不阻塞启动。
"""

import os
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKRELAY_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKRELAY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskrelay.db"),
    )


class RelayConfig(BaseModel):
    """TaskRelay 配置

    环境变量:
        TASKRELAY_STORE: 任务存储后端（memory/sqlite）
        TASKRELAY_DB_PATH: SQLite 数据库路径
        TASKRELAY_DEFAULT_PAGE_SIZE / TASKRELAY_MAX_PAGE_SIZE: 列表分页
        TASKRELAY_MAX_PARTS / TASKRELAY_MAX_TEXT_LENGTH: 消息校验上限
        TASKRELAY_DELIVERY_TIMEOUT_S: 单个订阅者回调超时（秒）
        TASKRELAY_ECHO_DELAY_S: Echo 生成器模拟延迟（秒）
        TASKRELAY_JWT_SECRET / _ISSUER / _AUDIENCE: 设置后启用 JWT bearer 校验（HS256）
        TASKRELAY_RATE_LIMIT_POINTS / _WINDOW_S / _BLOCK_S: 每用户限流，points=0 表示关闭
        TASKRELAY_AGENT_NAME / _DESCRIPTION / _URL: AgentCard 信息
    """

    store_backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="任务存储后端",
    )
    db_path: str = Field(default_factory=get_db_path, description="SQLite 数据库路径")
    default_page_size: int = Field(default=50, ge=1, description="默认页大小")
    max_page_size: int = Field(default=100, ge=1, description="最大页大小")
    max_parts_per_message: int = Field(default=100, ge=1, description="单条消息最大 Part 数")
    max_text_length: int = Field(
        default=512 * 1024,
        ge=1,
        description="单个文本 Part 最大字符数",
    )
    max_id_length: int = Field(default=256, ge=1, description="消息/上下文/任务 ID 最大长度")
    allowed_uri_schemes: frozenset[str] = Field(
        default=frozenset({"http", "https", "file"}),
        description="FilePart 允许的 URI scheme",
    )
    delivery_timeout_s: float = Field(default=30.0, gt=0, description="订阅者回调超时")
    echo_delay_s: float = Field(default=0.01, ge=0, description="Echo 模拟延迟")
    agent_name: str = Field(default="TaskRelay Agent", description="Agent 名称")
    agent_description: str = Field(
        default="A2A task relay with streaming updates",
        description="Agent 描述",
    )
    agent_url: str = Field(default="http://localhost:8080", description="Agent 访问地址")
    jwt_secret: SecretStr | None = Field(default=None, description="JWT HMAC 密钥")
    jwt_issuer: str | None = Field(default=None, description="要求的 iss")
    jwt_audience: str | None = Field(default=None, description="要求的 aud")
    rate_limit_points: int = Field(default=0, ge=0, description="每个窗口允许的调用次数")
    rate_limit_window_s: float = Field(default=60.0, gt=0, description="限流窗口长度")
    rate_limit_block_s: float = Field(default=0.0, ge=0, description="超限后的封禁时长")


# 环境变量 -> (字段名, 类型)
_NUMERIC_ENV: dict[str, tuple[str, type]] = {
    "TASKRELAY_DEFAULT_PAGE_SIZE": ("default_page_size", int),
    "TASKRELAY_MAX_PAGE_SIZE": ("max_page_size", int),
    "TASKRELAY_MAX_PARTS": ("max_parts_per_message", int),
    "TASKRELAY_MAX_TEXT_LENGTH": ("max_text_length", int),
    "TASKRELAY_DELIVERY_TIMEOUT_S": ("delivery_timeout_s", float),
    "TASKRELAY_ECHO_DELAY_S": ("echo_delay_s", float),
    "TASKRELAY_RATE_LIMIT_POINTS": ("rate_limit_points", int),
    "TASKRELAY_RATE_LIMIT_WINDOW_S": ("rate_limit_window_s", float),
    "TASKRELAY_RATE_LIMIT_BLOCK_S": ("rate_limit_block_s", float),
}

_STRING_ENV: dict[str, str] = {
    "TASKRELAY_STORE": "store_backend",
    "TASKRELAY_AGENT_NAME": "agent_name",
    "TASKRELAY_AGENT_DESCRIPTION": "agent_description",
    "TASKRELAY_AGENT_URL": "agent_url",
    "TASKRELAY_JWT_SECRET": "jwt_secret",
    "TASKRELAY_JWT_ISSUER": "jwt_issuer",
    "TASKRELAY_JWT_AUDIENCE": "jwt_audience",
}


def load_config() -> RelayConfig:
    """从环境变量加载 RelayConfig

    Returns:
        RelayConfig 实例
    """
    kwargs: dict = {"db_path": get_db_path()}

    for env_var, field_name in _STRING_ENV.items():
        if val := os.environ.get(env_var):
            kwargs[field_name] = val

    for env_var, (field_name, cast) in _NUMERIC_ENV.items():
        if val := os.environ.get(env_var):
            try:
                kwargs[field_name] = cast(val)
            except ValueError:
                log.warning(
                    "invalid_config_value",
                    env_var=env_var,
                    value=val,
                    fallback=RelayConfig.model_fields[field_name].default,
                )
                # 使用默认值，不阻塞启动

    return RelayConfig(**kwargs)
