"""TaskRelayService -- 组装入口

负责组装 TaskStore / TaskManager / 内容生成器 / 凭证校验器，
对外只暴露认证（换取 Gate）、AgentCard 与关闭。
"""

from typing import Any

import pydantic
import structlog

from taskrelay.core.config import RelayConfig
from taskrelay.core.exceptions import UnauthorizedError
from taskrelay.core.models import AgentCapabilities, AgentCard, Credentials
from taskrelay.core.store import InMemoryTaskStore, TaskStore, create_task_store
from taskrelay.provider import ContentProducer, EchoContentProducer

from .auth import BearerTokenValidator, CredentialValidator, JwtBearerValidator
from .gate import Gate
from .rate_limit import RateLimiter
from .task_manager import TaskManager

log = structlog.get_logger()


class TaskRelayService:
    """TaskRelay 服务"""

    def __init__(
        self,
        config: RelayConfig | None = None,
        store: TaskStore | None = None,
        producer: ContentProducer | None = None,
        validator: CredentialValidator | None = None,
    ) -> None:
        """
        Args:
            config: 运行配置，默认 RelayConfig()
            store: 任务存储，默认内存存储
            producer: 内容生成器，默认 Echo 生成器
            validator: 凭证校验器；默认在配置了 jwt_secret 时使用 JWT 校验，
                否则使用占位 bearer 校验
        """
        self._config = config or RelayConfig()
        self._store = store if store is not None else InMemoryTaskStore()
        if validator is None:
            validator = self._default_validator(self._config)
        self._validator = validator
        self._rate_limiter = (
            RateLimiter(
                self._config.rate_limit_points,
                self._config.rate_limit_window_s,
                block_s=self._config.rate_limit_block_s,
            )
            if self._config.rate_limit_points
            else None
        )
        self._manager = TaskManager(
            self._store,
            self._config,
            producer or EchoContentProducer(delay_s=self._config.echo_delay_s),
        )

    @classmethod
    async def create(
        cls,
        config: RelayConfig | None = None,
        *,
        producer: ContentProducer | None = None,
        validator: CredentialValidator | None = None,
    ) -> "TaskRelayService":
        """按 config.store_backend 创建存储并组装服务（SQLite 需要异步初始化）"""
        config = config or RelayConfig()
        store = await create_task_store(config)
        log.info("task_store_ready", backend=config.store_backend)
        return cls(config, store, producer, validator)

    @staticmethod
    def _default_validator(config: RelayConfig) -> CredentialValidator:
        if config.jwt_secret is None:
            log.warning("using_placeholder_bearer_authentication")
            return BearerTokenValidator()
        return JwtBearerValidator(
            config.jwt_secret.get_secret_value(),
            issuer=config.jwt_issuer,
            audience=config.jwt_audience,
        )

    @property
    def manager(self) -> TaskManager:
        return self._manager

    @property
    def config(self) -> RelayConfig:
        return self._config

    async def authenticate(self, credentials: Credentials | dict[str, Any]) -> Gate:
        """校验凭证并返回绑定该用户的 Gate

        Raises:
            UnauthorizedError: 凭证格式错误或校验失败
        """
        if not isinstance(credentials, Credentials):
            try:
                credentials = Credentials.model_validate(credentials)
            except pydantic.ValidationError as e:
                log.warning("authentication_failed", reason="malformed_credentials")
                raise UnauthorizedError("Malformed credentials") from e

        principal = await self._validator.validate(credentials)
        if principal is None:
            log.warning("authentication_failed", credential_type=credentials.type)
            raise UnauthorizedError("Invalid credentials")

        log.info(
            "authentication_succeeded",
            user_id=principal.user_id,
            credential_type=credentials.type,
        )
        return Gate(self._manager, principal, self._rate_limiter)

    def get_agent_card(self) -> AgentCard:
        return AgentCard(
            name=self._config.agent_name,
            description=self._config.agent_description,
            url=self._config.agent_url,
            capabilities=AgentCapabilities(
                streaming=True,
                push_notifications=False,
                state_transition_history=True,
            ),
        )

    async def aclose(self) -> None:
        """停止后台生成任务并关闭存储"""
        await self._manager.aclose()
        close = getattr(self._store, "close", None)
        if close is not None:
            await close()
        log.info("task_relay_service_closed")
