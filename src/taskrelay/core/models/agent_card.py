"""AgentCard -- Agent 发现信息"""

from pydantic import BaseModel, Field


class AgentCapabilities(BaseModel):
    """Agent 能力声明"""

    streaming: bool = True
    push_notifications: bool = True
    state_transition_history: bool = True


class AgentCard(BaseModel):
    """对外公开的 Agent 描述"""

    name: str
    description: str
    url: str
    protocol_version: str = "0.4.0"
    version: str = "0.1.0"
    capabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    default_input_modes: list[str] = Field(default_factory=lambda: ["text/plain"])
    default_output_modes: list[str] = Field(default_factory=lambda: ["text/plain"])
    security_schemes: list[str] = Field(default_factory=lambda: ["bearer", "apikey"])
