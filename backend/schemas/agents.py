"""
Agent mapping schema: agent id -> (channel, callback URL).
Loaded once from static configuration and immutable afterwards.
"""

from urllib.parse import urlparse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class AgentMapping(BaseModel):
    """One row of the agent mapping table."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    agent_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("agentId", "agent_id", "agent"),
    )
    channel: str = Field(
        default="",
        validation_alias=AliasChoices("channel", "npc"),
        description="Stream channel; defaults to the agent id",
    )
    callback_url: str = Field(
        validation_alias=AliasChoices("callbackUrl", "callback_url", "webhookUrl"),
        description="Workflow runtime trigger address",
    )

    @field_validator("callback_url")
    @classmethod
    def absolute_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"callback URL must be an absolute http(s) URL: {value!r}")
        return value

    @model_validator(mode="after")
    def default_channel(self) -> "AgentMapping":
        if not self.channel:
            # frozen model: bypass __setattr__
            object.__setattr__(self, "channel", self.agent_id)
        return self
