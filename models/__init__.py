"""Data models and schemas."""

from models.schemas import (
    CamelModel, AgentType, SPECIALISTS, ConversationStatus,
    ToolCallDefinition, Message, RequestContext, UserProfile,
    SharedSecrets, OrchestratorInput, HealthResponse, new_id
)
from models.call_context import (
    StartCallContext, StartCallArguments, StartCallToolArguments
)

__all__ = [
    "CamelModel", "AgentType", "SPECIALISTS", "ConversationStatus",
    "ToolCallDefinition", "Message", "RequestContext", "UserProfile",
    "SharedSecrets", "OrchestratorInput", "HealthResponse", "new_id",
    "StartCallContext", "StartCallArguments", "StartCallToolArguments"
]
