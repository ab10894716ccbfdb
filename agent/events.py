"""
Stream events emitted to the caller during one turn.

The set is closed: Event is a discriminated union on ``type`` and every
event serialises to one camelCase JSON object.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import Field

from agent.state import ConversationState
from models.schemas import AgentType, CamelModel


class AgentHeaderEvent(CamelModel):
    type: Literal["agent-header"] = "agent-header"
    agent: AgentType
    display_name: str
    emoji: str
    description: str


class TextStartEvent(CamelModel):
    type: Literal["text-start"] = "text-start"
    id: str
    metadata: Optional[Dict[str, Any]] = None


class TextDeltaEvent(CamelModel):
    type: Literal["text-delta"] = "text-delta"
    id: str
    delta: str


class TextEndEvent(CamelModel):
    type: Literal["text-end"] = "text-end"
    id: str
    text: str


class ToolCallMetadata(CamelModel):
    display_name: str
    description: str
    estimated_duration: Optional[int] = None
    agent_type: Optional[AgentType] = None


class ToolCallEvent(CamelModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[ToolCallMetadata] = None


class ToolResultEvent(CamelModel):
    type: Literal["tool-result"] = "tool-result"
    id: str
    name: str
    output: Any = None
    is_error: bool = False


class StatusEvent(CamelModel):
    type: Literal["status"] = "status"
    status: str
    metadata: Optional[Dict[str, Any]] = None


class AgentSwitchEvent(CamelModel):
    type: Literal["agent-switch"] = "agent-switch"
    from_agent: AgentType = Field(..., alias="from")
    to: AgentType
    reason: Optional[str] = None
    confidence: Optional[float] = None
    previous_turn_count: Optional[int] = None


class FinalEvent(CamelModel):
    type: Literal["final"] = "final"
    state: ConversationState


Event = Annotated[
    Union[
        AgentHeaderEvent,
        TextStartEvent,
        TextDeltaEvent,
        TextEndEvent,
        ToolCallEvent,
        ToolResultEvent,
        StatusEvent,
        AgentSwitchEvent,
        FinalEvent,
    ],
    Field(discriminator="type"),
]


def event_to_json(event: CamelModel) -> str:
    """Serialise one event as a single JSON line body."""
    return event.model_dump_json(by_alias=True)
