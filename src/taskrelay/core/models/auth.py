"""认证相关模型 -- 凭证与认证主体"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

READ = "read"
WRITE = "write"


class Credentials(BaseModel):
    """调用方提交的凭证"""

    type: Literal["bearer", "apikey"] = Field(default="bearer", description="凭证类型")
    token: str = Field(default="", description="凭证值")


class Principal(BaseModel):
    """认证通过后的主体：user_id + 权限集合"""

    model_config = ConfigDict(frozen=True)

    user_id: str
    permissions: frozenset[str] = Field(default_factory=lambda: frozenset({READ, WRITE}))

    def can(self, permission: str) -> bool:
        return permission in self.permissions
