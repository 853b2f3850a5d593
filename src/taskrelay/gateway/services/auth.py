"""凭证校验器

CredentialValidator 把调用方凭证换成 Principal（user_id + 权限集合），
校验失败返回 None，由 TaskRelayService 转换为 UnauthorizedError。

- BearerTokenValidator: 占位实现，任何非空 token 都被接受
- JwtBearerValidator: HS256 JWT，校验签名、过期、iss/aud，支持按 jti 吊销
- ApiKeyValidator: 登记过的 API key，只保存 sha256 摘要，支持过期时间
- ChainedValidator: 按顺序尝试多个校验器
"""

import hashlib
import hmac
import secrets
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol

import jwt
import structlog
from pydantic import BaseModel, Field
from ulid import ULID

from taskrelay.core.models import READ, WRITE, Credentials, Principal

log = structlog.get_logger()


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class CredentialValidator(Protocol):
    async def validate(self, credentials: Credentials) -> Principal | None: ...


class BearerTokenValidator:
    """占位 bearer 校验：任何非空 token 都映射到一个稳定的 user_id

    user_id = "user-" + sha256(token) 前 16 位，同一 token 总是同一用户。
    """

    async def validate(self, credentials: Credentials) -> Principal | None:
        if credentials.type != "bearer" or not credentials.token:
            return None
        return Principal(
            user_id=f"user-{_sha256(credentials.token)[:16]}",
            permissions=frozenset({READ, WRITE}),
        )


class JwtBearerValidator:
    """JWT bearer 校验

    - 签名按 algorithms 校验（默认只接受 HS256）
    - exp 与 sub 必须存在；配置了 issuer / audience 时分别校验 iss / aud
    - 权限取自 permissions 列表，或空格分隔的 scope
    - 带 jti 的 token 可以被吊销
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        algorithms: Iterable[str] = ("HS256",),
        leeway_s: float = 0.0,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._algorithms = list(algorithms)
        self._leeway_s = leeway_s
        self._revoked: set[str] = set()

    def revoke_token(self, token_id: str) -> None:
        """按 jti 吊销 token"""
        self._revoked.add(token_id)
        log.info("jwt_revoked", token_id=token_id)

    async def validate(self, credentials: Credentials) -> Principal | None:
        if credentials.type != "bearer" or not credentials.token:
            return None

        try:
            claims = jwt.decode(
                credentials.token,
                self._secret,
                algorithms=self._algorithms,
                issuer=self._issuer,
                audience=self._audience,
                leeway=self._leeway_s,
                options={"require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            # 只记录错误类型，不记录 token
            log.info("jwt_validation_failed", error_type=type(e).__name__)
            return None

        token_id = claims.get("jti")
        if token_id is not None and token_id in self._revoked:
            log.info("jwt_validation_failed", error_type="RevokedToken")
            return None

        return Principal(user_id=claims["sub"], permissions=_claim_permissions(claims))


def _claim_permissions(claims: dict) -> frozenset[str]:
    permissions = claims.get("permissions")
    if isinstance(permissions, list):
        return frozenset(str(p) for p in permissions)
    scope = claims.get("scope")
    if isinstance(scope, str):
        return frozenset(scope.split())
    return frozenset()


class ApiKeyRecord(BaseModel):
    """已登记的 API key（不含明文）"""

    key_id: str = Field(default_factory=lambda: str(ULID()))
    key_hash: str
    user_id: str
    permissions: frozenset[str] = Field(default_factory=lambda: frozenset({READ, WRITE}))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None
    last_used_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at


class ApiKeyValidator:
    """API key 校验器

    明文 key 只在 issue_key 时返回一次，内部只保存摘要；
    比较使用 hmac.compare_digest。
    """

    def __init__(self) -> None:
        self._records: dict[str, ApiKeyRecord] = {}

    def issue_key(
        self,
        user_id: str,
        permissions: Iterable[str] = (READ, WRITE),
        *,
        expires_at: datetime | None = None,
        key: str | None = None,
    ) -> tuple[ApiKeyRecord, str]:
        """登记一个 API key

        Args:
            user_id: key 对应的用户
            permissions: 授予的权限
            expires_at: 过期时间，None 表示永不过期
            key: 指定明文 key，默认随机生成

        Returns:
            (登记记录, 明文 key)
        """
        raw_key = key or f"trk_{secrets.token_urlsafe(32)}"
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        record = ApiKeyRecord(
            key_hash=_sha256(raw_key),
            user_id=user_id,
            permissions=frozenset(permissions),
            expires_at=expires_at,
        )
        self._records[record.key_id] = record
        log.info("api_key_issued", key_id=record.key_id, user_id=user_id)
        return record, raw_key

    def revoke_key(self, key_id: str) -> bool:
        """吊销 API key，返回是否存在"""
        removed = self._records.pop(key_id, None) is not None
        if removed:
            log.info("api_key_revoked", key_id=key_id)
        return removed

    async def validate(self, credentials: Credentials) -> Principal | None:
        if credentials.type != "apikey" or not credentials.token:
            return None

        key_hash = _sha256(credentials.token)
        for record in self._records.values():
            if not hmac.compare_digest(record.key_hash, key_hash):
                continue
            now = datetime.now(UTC)
            if record.is_expired(now):
                log.info("api_key_expired", key_id=record.key_id)
                return None
            record.last_used_at = now
            return Principal(user_id=record.user_id, permissions=record.permissions)
        return None


class ChainedValidator:
    """依次尝试多个校验器，返回第一个成功的 Principal"""

    def __init__(self, *validators: CredentialValidator) -> None:
        self._validators = validators

    async def validate(self, credentials: Credentials) -> Principal | None:
        for validator in self._validators:
            principal = await validator.validate(credentials)
            if principal is not None:
                return principal
        return None
