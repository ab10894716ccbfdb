"""
Pydantic schemas for orchestrator inputs, conversation messages and API responses.

Inputs arrive camelCased from the web tier; every model also accepts the
snake_case field names.
"""

import json
import uuid
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, Any, Optional, List, Literal
from datetime import datetime, timezone
from enum import Enum


def new_id() -> str:
    """Generate an opaque message id."""
    return uuid.uuid4().hex


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting both spellings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AgentType(str, Enum):
    """Personas that can own a turn."""
    ROUTER = "router"          # Casual conversation, no tools
    FINANCIAL = "financial"    # Bills, fees, refunds, subscriptions
    INSURANCE = "insurance"    # Claims, premiums, compensation
    BOOKING = "booking"        # Appointments, reservations, scheduling
    ACCOUNT = "account"        # Account setup, changes, cancellation
    SUPPORT = "support"        # Technical issues, outages, status checks

    @classmethod
    def parse(cls, value: Optional[str]) -> "AgentType":
        """Restore a persisted label, falling back to the router persona."""
        try:
            return cls(value)
        except ValueError:
            return cls.ROUTER


SPECIALISTS = [
    AgentType.FINANCIAL,
    AgentType.INSURANCE,
    AgentType.BOOKING,
    AgentType.ACCOUNT,
    AgentType.SUPPORT,
]


class ConversationStatus(str, Enum):
    """Turn status. Order matters: status only ever moves forward."""
    ROUTING = "routing"
    COLLECTING = "collecting"
    CALLING = "calling"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return list(ConversationStatus).index(self)


class ToolCallDefinition(CamelModel):
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Message(CamelModel):
    """One conversation entry."""
    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    tool_calls: Optional[List[ToolCallDefinition]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _default_content(cls, value: Any) -> str:
        return "" if value is None else value


class RequestContext(CamelModel):
    """Best-effort identity hints supplied with the request."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    address: Optional[str] = None

    def is_empty(self) -> bool:
        return not any([self.name, self.email, self.phone, self.timezone, self.address])


class UserProfile(CamelModel):
    """Trusted profile settings saved by the user."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    timezone: Optional[str] = None
    birthdate: Optional[str] = None
    voice_id: Optional[str] = None
    selected_voice: Optional[str] = None
    test_mode_enabled: Optional[bool] = None
    test_mode_number: Optional[str] = None

    @field_validator("address", mode="before")
    @classmethod
    def _flatten_address(cls, value: Any) -> Any:
        # Structured addresses are kept as their JSON text
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    @property
    def full_name(self) -> Optional[str]:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.last_name


class SharedSecrets(CamelModel):
    """Session identifiers and the trusted profile snapshot."""
    issue_id: Optional[str] = None
    # Accepted on input, never serialised back out
    auth_token: Optional[str] = Field(default=None, exclude=True)
    settings: Optional[UserProfile] = None


class OrchestratorInput(CamelModel):
    """Everything the caller supplies for one turn."""
    messages: List[Message] = Field(default_factory=list)
    request_context: RequestContext = Field(default_factory=RequestContext)
    shared_secrets: SharedSecrets = Field(default_factory=SharedSecrets)
    current_agent: Optional[str] = Field(
        None,
        description="Persona label persisted from the previous turn"
    )
    processed_tool_call_ids: List[str] = Field(
        default_factory=list,
        description="Tool-call ids already executed earlier in the session"
    )

    @field_validator("request_context", "shared_secrets", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(default="healthy")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = Field(default="1.0.0")
