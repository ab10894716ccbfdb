"""
Conversation state carried through the orchestration state machine.
"""

from typing import List, Dict, Optional
from pydantic import Field

from models.schemas import (
    AgentType, CamelModel, ConversationStatus, Message,
    OrchestratorInput, RequestContext, SharedSecrets, ToolCallDefinition
)


class ConversationState(CamelModel):
    """State object mutated by the nodes during one turn."""

    # Input
    messages: List[Message] = Field(default_factory=list)
    request_context: RequestContext = Field(default_factory=RequestContext)
    shared_secrets: SharedSecrets = Field(default_factory=SharedSecrets)

    # Routing
    status: ConversationStatus = ConversationStatus.ROUTING
    current_agent: AgentType = AgentType.ROUTER
    agent_turn_count: int = 0
    gathered_info: Dict[str, str] = Field(default_factory=dict)

    # Tools
    processed_tool_call_ids: List[str] = Field(default_factory=list)
    consecutive_tool_failures: int = 0
    last_failed_tool: Optional[str] = None

    # Result
    call_result: Optional[Dict] = None

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def user_messages(self) -> List[Message]:
        return [m for m in self.messages if m.role == "user"]

    def pending_tool_calls(self) -> List[ToolCallDefinition]:
        """Tool calls on the last message that have not been executed yet."""
        last = self.last_message
        if last is None or not last.tool_calls:
            return []
        processed = set(self.processed_tool_call_ids)
        return [call for call in last.tool_calls if call.id not in processed]

    def drop_pending_tool_calls(self) -> List[str]:
        """Strip unanswered calls from the last message. Returns their ids."""
        pending = self.pending_tool_calls()
        if not pending:
            return []
        dropped = {call.id for call in pending}
        last = self.last_message
        last.tool_calls = [call for call in last.tool_calls if call.id not in dropped] or None
        return [call.id for call in pending]

    def mark_processed(self, call_id: str) -> None:
        if call_id not in self.processed_tool_call_ids:
            self.processed_tool_call_ids.append(call_id)

    def trim_processed(self, keep: int) -> None:
        self.processed_tool_call_ids = self.processed_tool_call_ids[-keep:]

    def advance_status(self, target: ConversationStatus) -> None:
        """Move status forward; requests to move backwards are ignored."""
        if target.rank > self.status.rank:
            self.status = target

    def circuit_open(self, tool_name: str, threshold: int) -> bool:
        return (
            self.consecutive_tool_failures >= threshold
            and self.last_failed_tool == tool_name
        )

    def record_tool_outcome(self, tool_name: str, success: bool) -> None:
        """Update the consecutive-failure counters after one tool call."""
        if success:
            self.consecutive_tool_failures = 0
            self.last_failed_tool = None
        elif self.last_failed_tool == tool_name:
            self.consecutive_tool_failures += 1
        else:
            self.consecutive_tool_failures = 1
            self.last_failed_tool = tool_name


def build_initial_state(request: OrchestratorInput) -> ConversationState:
    """Fresh state for one turn, restoring the persisted persona label."""
    return ConversationState(
        messages=[m.model_copy(deep=True) for m in request.messages],
        request_context=request.request_context,
        shared_secrets=request.shared_secrets,
        current_agent=AgentType.parse(request.current_agent),
        processed_tool_call_ids=list(request.processed_tool_call_ids),
    )
