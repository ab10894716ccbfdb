"""
State machine node implementations.
Each node mutates the conversation state and emits stream events as it goes.
"""

import json
import secrets
import time
import uuid
from typing import Any, Callable, List, Optional

from agent.cache import ModelClientCache, PromptCache
from agent.events import (
    AgentHeaderEvent, StatusEvent, TextDeltaEvent, TextEndEvent,
    TextStartEvent, ToolCallEvent, ToolCallMetadata, ToolResultEvent
)
from agent.personas import PERSONAS
from agent.state import ConversationState
from config import settings
from models.schemas import AgentType, ConversationStatus, Message, ToolCallDefinition
from observability import trace_logger
from tools.base import ToolCatalog, ToolResult


Emit = Callable[[Any], None]


def disambiguate_call_id(provider_id: Optional[str]) -> str:
    """Make a provider tool-call id unique for the session."""
    base = provider_id or "call"
    return f"{base}-{int(time.time() * 1000)}-{secrets.token_urlsafe(6)[:8]}"


def serialize_output(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output, default=str)


class AgentNode:
    """Runs one persona: streams the model reply and surfaces its tool calls."""

    def __init__(self, agent: AgentType, models: ModelClientCache, prompts: PromptCache):
        self.agent = agent
        self.models = models
        self.prompts = prompts

    async def __call__(self, state: ConversationState, emit: Emit) -> None:
        persona = PERSONAS[self.agent]
        run_id = uuid.uuid4().hex
        label = self.agent.value

        trace_logger.agent_started(
            agent=label,
            run_id=run_id,
            message_count=len(state.messages),
            consecutive_failures=state.consecutive_tool_failures
        )

        emit(AgentHeaderEvent(
            agent=self.agent,
            display_name=persona.display_name,
            emoji=persona.emoji,
            description=persona.description,
        ))
        emit(StatusEvent(status=f"{label}_agent_start", metadata={"runId": run_id}))
        emit(TextStartEvent(id=run_id, metadata={"source": label}))

        system_prompt = self.prompts.system_prompt(
            self.agent,
            state.request_context,
            state.shared_secrets.settings,
            failures=state.consecutive_tool_failures,
            failing_tool=state.last_failed_tool,
        )
        model = self.models.for_agent(self.agent)

        full_text = ""
        seen_provider_ids = set()
        new_calls: List[ToolCallDefinition] = []

        try:
            async for chunk in model.stream(system_prompt, state.messages):
                for call in chunk.tool_calls:
                    if call.id in seen_provider_ids:
                        continue
                    seen_provider_ids.add(call.id)
                    unique = call.model_copy(update={"id": disambiguate_call_id(call.id)})
                    new_calls.append(unique)
                    emit(ToolCallEvent(id=unique.id, name=unique.name, arguments=unique.arguments))

                if chunk.text:
                    full_text += chunk.text
                    if chunk.text.strip():
                        emit(TextDeltaEvent(id=run_id, delta=chunk.text))
        except Exception as e:
            trace_logger.error_occurred(
                error_type="model_stream_error",
                error_message=str(e),
                context={"agent": label, "run_id": run_id}
            )
            raise

        emit(TextEndEvent(id=run_id, text=full_text))
        emit(StatusEvent(status=f"{label}_agent_end", metadata={"runId": run_id}))

        processed = set(state.processed_tool_call_ids)
        pending = [call for call in new_calls if call.id not in processed]
        state.messages.append(Message(
            role="assistant",
            content=full_text,
            tool_calls=pending or None,
        ))

        state.advance_status(ConversationStatus.CALLING if pending else ConversationStatus.COLLECTING)
        state.agent_turn_count = state.agent_turn_count + 1 if state.current_agent == self.agent else 1
        state.current_agent = self.agent

        trace_logger.agent_completed(
            agent=label,
            run_id=run_id,
            response_length=len(full_text),
            tool_calls=len(pending),
            status=state.status.value
        )


class ToolExecutionNode:
    """Executes pending tool calls one at a time with retries and a circuit breaker."""

    def __init__(
        self,
        catalog: ToolCatalog,
        threshold: Optional[int] = None,
        retention: Optional[int] = None,
        timeout: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None
    ):
        self.catalog = catalog
        self.threshold = threshold or settings.circuit_breaker_threshold
        self.retention = retention or settings.processed_tool_call_retention
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    async def __call__(self, state: ConversationState, emit: Emit) -> None:
        pending = state.pending_tool_calls()
        if not pending:
            state.advance_status(ConversationStatus.COLLECTING)
            return

        for call in pending:
            state.mark_processed(call.id)
            await self._run_call(call, state, emit)

        state.trim_processed(self.retention)

    async def _run_call(self, call: ToolCallDefinition, state: ConversationState, emit: Emit) -> None:
        tool = self.catalog.get(call.name)
        display = self.catalog.display_for(call.name)
        secrets_ = state.shared_secrets
        arguments = tool.display_arguments(call.arguments, secrets_) if tool else dict(call.arguments)

        emit(ToolCallEvent(
            id=call.id,
            name=call.name,
            arguments=arguments,
            metadata=ToolCallMetadata(
                display_name=display.display_name,
                description=display.description,
                estimated_duration=display.estimated_duration_ms,
                agent_type=state.current_agent,
            ),
        ))

        if state.circuit_open(call.name, self.threshold):
            message = (
                f"Circuit breaker: {call.name} has failed "
                f"{state.consecutive_tool_failures} times, skipping execution"
            )
            trace_logger.circuit_breaker_triggered(
                tool_name=call.name,
                failures=state.consecutive_tool_failures
            )
            self._record(state, emit, call, {"error": message}, message, is_error=True)
            return

        if tool is None:
            output = {"warning": f"Unknown tool: {call.name}"}
            trace_logger.warning(f"Unknown tool requested: {call.name}", call_id=call.id)
            state.record_tool_outcome(call.name, success=True)
            self._record(state, emit, call, output, serialize_output(output))
            return

        trace_logger.tool_called(tool_name=call.name, call_id=call.id, max_attempts=tool.max_attempts)
        result: ToolResult = await tool.execute_with_retry(
            call.arguments,
            secrets_,
            timeout=self.timeout,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
        )
        trace_logger.tool_result(
            tool_name=call.name,
            success=result.success,
            error=result.error,
            attempts=result.attempts
        )
        state.record_tool_outcome(call.name, result.success)

        if not result.success:
            message = f"Tool {call.name} failed after {result.attempts} attempts: {result.error}"
            self._record(state, emit, call, {"error": message}, message, is_error=True)
            return

        if tool.completes_call:
            state.call_result = result.data if isinstance(result.data, dict) else {"result": result.data}
            state.advance_status(ConversationStatus.COMPLETED)
        self._record(state, emit, call, result.data, serialize_output(result.data))

    @staticmethod
    def _record(
        state: ConversationState,
        emit: Emit,
        call: ToolCallDefinition,
        output: Any,
        content: str,
        is_error: bool = False
    ) -> None:
        emit(ToolResultEvent(id=call.id, name=call.name, output=output, is_error=is_error))
        state.messages.append(Message(
            role="tool",
            content=content,
            tool_call_id=call.id,
            name=call.name,
        ))
